PLUGIN_MANIFEST = {
    "id": "thirdparty",
    "name": "Weather Sync",
    "version": "0.3.1",
    "description": "Annotates entries with local weather conditions",
    # Community plugins need explicit user consent before they can be enabled
    "trust_level": "COMMUNITY",
    "security": {
        "requested_capabilities": ["NETWORK_ACCESS"],
        "network_domains": ["api.open-meteo.com"],
        "data_access": ["OWN_DATA_ONLY"],
        "privacy_policy": "Only the coarse region is sent to the weather service.",
        "data_retention": "TEMPORARY",
    },
}
