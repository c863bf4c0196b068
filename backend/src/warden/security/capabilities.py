"""Capability catalog.

The static taxonomy of every capability a plugin may request, with its risk
tier, a human-readable description, and the OS permissions it implies. All
lookups are pure and total; the module refuses to import if a capability is
missing from a table.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class RiskTier(str, Enum):
    """Ordered risk classification: LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank >= other.rank


_RISK_RANK = {RiskTier.LOW: 0, RiskTier.MEDIUM: 1, RiskTier.HIGH: 2, RiskTier.CRITICAL: 3}


class Capability(str, Enum):
    """A named permission a plugin may request."""

    # Data
    COLLECT_DATA = "COLLECT_DATA"
    READ_OWN_DATA = "READ_OWN_DATA"
    READ_ALL_DATA = "READ_ALL_DATA"
    MODIFY_DATA = "MODIFY_DATA"
    DELETE_DATA = "DELETE_DATA"

    # UI
    CUSTOM_UI = "CUSTOM_UI"
    MODIFY_THEME = "MODIFY_THEME"
    ADD_MENU_ITEMS = "ADD_MENU_ITEMS"
    SHOW_NOTIFICATIONS = "SHOW_NOTIFICATIONS"
    FULLSCREEN_UI = "FULLSCREEN_UI"

    # System
    BACKGROUND_SYNC = "BACKGROUND_SYNC"
    BACKGROUND_PROCESS = "BACKGROUND_PROCESS"
    NETWORK_ACCESS = "NETWORK_ACCESS"
    FILE_ACCESS = "FILE_ACCESS"
    CAMERA_ACCESS = "CAMERA_ACCESS"
    MICROPHONE_ACCESS = "MICROPHONE_ACCESS"

    # Integration
    SHARE_DATA = "SHARE_DATA"
    IMPORT_DATA = "IMPORT_DATA"
    EXPORT_DATA = "EXPORT_DATA"
    INTEGRATE_SERVICES = "INTEGRATE_SERVICES"

    # Advanced
    ACCESS_SENSORS = "ACCESS_SENSORS"
    ACCESS_LOCATION = "ACCESS_LOCATION"
    ACCESS_BIOMETRIC = "ACCESS_BIOMETRIC"
    MODIFY_SETTINGS = "MODIFY_SETTINGS"
    INSTALL_PLUGINS = "INSTALL_PLUGINS"

    # Analytics
    ANALYTICS_BASIC = "ANALYTICS_BASIC"
    ANALYTICS_DETAILED = "ANALYTICS_DETAILED"

    # Communication
    SEND_EMAILS = "SEND_EMAILS"
    SEND_SMS = "SEND_SMS"
    PUSH_NOTIFICATIONS = "PUSH_NOTIFICATIONS"

    # Storage
    LOCAL_STORAGE = "LOCAL_STORAGE"
    CLOUD_STORAGE = "CLOUD_STORAGE"
    CACHE_DATA = "CACHE_DATA"


_RISK: dict[Capability, RiskTier] = {
    # Low risk - basic functionality
    Capability.COLLECT_DATA: RiskTier.LOW,
    Capability.READ_OWN_DATA: RiskTier.LOW,
    Capability.CUSTOM_UI: RiskTier.LOW,
    Capability.LOCAL_STORAGE: RiskTier.LOW,
    Capability.CACHE_DATA: RiskTier.LOW,
    # Medium risk - extended functionality
    Capability.SHOW_NOTIFICATIONS: RiskTier.MEDIUM,
    Capability.ADD_MENU_ITEMS: RiskTier.MEDIUM,
    Capability.BACKGROUND_SYNC: RiskTier.MEDIUM,
    Capability.NETWORK_ACCESS: RiskTier.MEDIUM,
    Capability.SHARE_DATA: RiskTier.MEDIUM,
    Capability.ANALYTICS_BASIC: RiskTier.MEDIUM,
    # High risk - sensitive access
    Capability.READ_ALL_DATA: RiskTier.HIGH,
    Capability.MODIFY_DATA: RiskTier.HIGH,
    Capability.DELETE_DATA: RiskTier.HIGH,
    Capability.FILE_ACCESS: RiskTier.HIGH,
    Capability.ACCESS_LOCATION: RiskTier.HIGH,
    Capability.EXPORT_DATA: RiskTier.HIGH,
    Capability.IMPORT_DATA: RiskTier.HIGH,
    Capability.INTEGRATE_SERVICES: RiskTier.HIGH,
    Capability.ANALYTICS_DETAILED: RiskTier.HIGH,
    # Critical risk - full access
    Capability.MODIFY_SETTINGS: RiskTier.CRITICAL,
    Capability.INSTALL_PLUGINS: RiskTier.CRITICAL,
    Capability.ACCESS_BIOMETRIC: RiskTier.CRITICAL,
    Capability.ACCESS_SENSORS: RiskTier.CRITICAL,
    Capability.CAMERA_ACCESS: RiskTier.CRITICAL,
    Capability.MICROPHONE_ACCESS: RiskTier.CRITICAL,
    Capability.SEND_EMAILS: RiskTier.CRITICAL,
    Capability.SEND_SMS: RiskTier.CRITICAL,
    Capability.CLOUD_STORAGE: RiskTier.CRITICAL,
    Capability.MODIFY_THEME: RiskTier.CRITICAL,
    Capability.FULLSCREEN_UI: RiskTier.CRITICAL,
    Capability.BACKGROUND_PROCESS: RiskTier.CRITICAL,
    Capability.PUSH_NOTIFICATIONS: RiskTier.CRITICAL,
}

_DESCRIPTIONS: dict[Capability, str] = {
    Capability.COLLECT_DATA: "Create and save new data entries",
    Capability.READ_OWN_DATA: "View data this plugin has created",
    Capability.READ_ALL_DATA: "View all data from any plugin",
    Capability.MODIFY_DATA: "Edit existing data entries",
    Capability.DELETE_DATA: "Remove data permanently",
    Capability.CUSTOM_UI: "Display custom interface elements",
    Capability.MODIFY_THEME: "Change app colors and appearance",
    Capability.ADD_MENU_ITEMS: "Add options to app menus",
    Capability.SHOW_NOTIFICATIONS: "Display system notifications",
    Capability.FULLSCREEN_UI: "Take control of entire screen",
    Capability.BACKGROUND_SYNC: "Sync data when app is closed",
    Capability.BACKGROUND_PROCESS: "Run tasks in background",
    Capability.NETWORK_ACCESS: "Connect to the internet",
    Capability.FILE_ACCESS: "Read and write files on device",
    Capability.CAMERA_ACCESS: "Use device camera",
    Capability.MICROPHONE_ACCESS: "Use device microphone",
    Capability.SHARE_DATA: "Share data with other apps",
    Capability.IMPORT_DATA: "Import data from external sources",
    Capability.EXPORT_DATA: "Export data to files",
    Capability.INTEGRATE_SERVICES: "Connect to external services",
    Capability.ACCESS_SENSORS: "Use device sensors (accelerometer, etc.)",
    Capability.ACCESS_LOCATION: "Access device location",
    Capability.ACCESS_BIOMETRIC: "Access health and biometric data",
    Capability.MODIFY_SETTINGS: "Change app settings",
    Capability.INSTALL_PLUGINS: "Install additional plugins",
    Capability.ANALYTICS_BASIC: "Track basic usage patterns",
    Capability.ANALYTICS_DETAILED: "Track detailed user behavior",
    Capability.SEND_EMAILS: "Send emails on your behalf",
    Capability.SEND_SMS: "Send text messages",
    Capability.PUSH_NOTIFICATIONS: "Send push notifications",
    Capability.LOCAL_STORAGE: "Store data on device",
    Capability.CLOUD_STORAGE: "Store data in cloud",
    Capability.CACHE_DATA: "Cache temporary data",
}

# Capabilities absent here imply no OS permission
_OS_PERMISSIONS: dict[Capability, tuple[str, ...]] = {
    Capability.CAMERA_ACCESS: ("android.permission.CAMERA",),
    Capability.MICROPHONE_ACCESS: ("android.permission.RECORD_AUDIO",),
    Capability.ACCESS_LOCATION: (
        "android.permission.ACCESS_FINE_LOCATION",
        "android.permission.ACCESS_COARSE_LOCATION",
    ),
    Capability.NETWORK_ACCESS: ("android.permission.INTERNET",),
    Capability.FILE_ACCESS: (
        "android.permission.READ_EXTERNAL_STORAGE",
        "android.permission.WRITE_EXTERNAL_STORAGE",
    ),
    Capability.SEND_SMS: ("android.permission.SEND_SMS",),
    Capability.SHOW_NOTIFICATIONS: ("android.permission.POST_NOTIFICATIONS",),
}


def _check_tables_total() -> None:
    for table_name, table in (("risk", _RISK), ("description", _DESCRIPTIONS)):
        missing = [c.name for c in Capability if c not in table]
        if missing:
            raise RuntimeError(f"Capability {table_name} table is missing entries: {', '.join(missing)}")
    unknown = [c for c in _OS_PERMISSIONS if not isinstance(c, Capability)]
    if unknown:
        raise RuntimeError(f"OS permission table has unknown keys: {unknown}")


_check_tables_total()


def risk_of(capability: Capability) -> RiskTier:
    return _RISK[Capability(capability)]


def description_of(capability: Capability) -> str:
    return _DESCRIPTIONS[Capability(capability)]


def os_permissions_of(capability: Capability) -> list[str]:
    """OS permission identifiers implied by ``capability`` (possibly empty)."""
    return list(_OS_PERMISSIONS.get(Capability(capability), ()))


def sorted_by_risk(capabilities: Iterable[Capability]) -> list[Capability]:
    """Highest risk first, ties broken by name for stable output."""
    return sorted(set(capabilities), key=lambda c: (-risk_of(c).rank, c.value))


def highest_risk(capabilities: Iterable[Capability]) -> Capability | None:
    ordered = sorted_by_risk(capabilities)
    return ordered[0] if ordered else None


def parse_capabilities(names: Iterable[str | Capability]) -> frozenset[Capability]:
    """Parse capability names (case-insensitive); unknown names raise ValueError."""
    out: set[Capability] = set()
    for name in names:
        if isinstance(name, Capability):
            out.add(name)
            continue
        key = str(name).strip().upper()
        try:
            out.add(Capability(key))
        except ValueError:
            raise ValueError(f"Unknown capability '{name}'") from None
    return frozenset(out)
