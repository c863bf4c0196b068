PLUGIN_MANIFEST = {
    "id": "water",
    "name": "Water Intake",
    "version": "1.0.0",
    "description": "Track daily water consumption",
    "trust_level": "OFFICIAL",
    "security": {
        "requested_capabilities": ["COLLECT_DATA", "READ_OWN_DATA", "LOCAL_STORAGE"],
        "data_sensitivity": "NORMAL",
        "data_access": ["OWN_DATA_ONLY"],
        "privacy_policy": "Water intake data is stored locally and never shared without your permission.",
        "data_retention": "USER_CONTROLLED",
    },
}
