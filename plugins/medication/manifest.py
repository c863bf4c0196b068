PLUGIN_MANIFEST = {
    "id": "medication",
    "name": "Medication",
    "version": "1.0.0",
    "description": "Track medications and reminders",
    "trust_level": "OFFICIAL",
    "security": {
        "requested_capabilities": [
            "COLLECT_DATA",
            "READ_OWN_DATA",
            "LOCAL_STORAGE",
            "EXPORT_DATA",
            "SHOW_NOTIFICATIONS",
        ],
        "data_sensitivity": "SENSITIVE",
        "data_access": ["OWN_DATA_ONLY"],
        "privacy_policy": (
            "Medication data is sensitive health information and never leaves your "
            "device without explicit consent."
        ),
        "data_retention": "USER_CONTROLLED",
    },
}
