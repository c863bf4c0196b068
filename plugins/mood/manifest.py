PLUGIN_MANIFEST = {
    "id": "mood",
    "name": "Mood Tracker",
    "version": "1.0.0",
    "description": "Log how you feel throughout the day",
    "trust_level": "OFFICIAL",
    "security": {
        "requested_capabilities": ["COLLECT_DATA", "READ_OWN_DATA", "LOCAL_STORAGE", "EXPORT_DATA"],
        # Mood entries are personal; keep them on the device
        "data_sensitivity": "SENSITIVE",
        "data_access": ["OWN_DATA_ONLY"],
        "privacy_policy": (
            "Mood data is sensitive personal information. It is stored locally and "
            "never shared without your explicit consent."
        ),
        "data_retention": "USER_CONTROLLED",
    },
}
