"""Security events.

Immutable, timestamped records of every authorization decision. The monitor
appends them to its trail; audit sinks receive them as they arrive.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from .capabilities import Capability


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ViolationSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_high_risk(self) -> bool:
        return self.rank >= _SEVERITY_RANK[ViolationSeverity.HIGH]


_SEVERITY_RANK = {
    ViolationSeverity.LOW: 0,
    ViolationSeverity.MEDIUM: 1,
    ViolationSeverity.HIGH: 2,
    ViolationSeverity.CRITICAL: 3,
}


class ViolationKind(str, Enum):
    OWNERSHIP_VIOLATION = "OWNERSHIP_VIOLATION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    PLUGIN_DISABLED = "PLUGIN_DISABLED"
    TRUST_POLICY_BLOCK = "TRUST_POLICY_BLOCK"
    USER_BLOCKED = "USER_BLOCKED"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"


class AccessType(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    DELETE = "DELETE"
    EXPORT = "EXPORT"
    COUNT = "COUNT"


@dataclass(frozen=True)
class PermissionRequested:
    plugin_id: str
    capability: Capability
    reason: str = ""
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class PermissionGranted:
    plugin_id: str
    capability: Capability
    granted_by: str
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class PermissionDenied:
    plugin_id: str
    capability: Capability
    reason: str
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class PermissionRevoked:
    plugin_id: str
    capability: Capability
    revoked_by: str = "system"
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class SecurityViolation:
    plugin_id: str
    kind: ViolationKind
    severity: ViolationSeverity
    detail: str
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class DataAccess:
    plugin_id: str
    access_type: AccessType
    record_count: int = 0
    target_plugin_id: str | None = None
    timestamp: datetime = field(default_factory=_utc_now)


SecurityEvent = Union[
    PermissionRequested,
    PermissionGranted,
    PermissionDenied,
    PermissionRevoked,
    SecurityViolation,
    DataAccess,
]

# Receives every event; usually the monitor's ``record``
EventEmitter = Callable[[SecurityEvent], None]

EVENT_TYPES: tuple[type, ...] = (
    PermissionRequested,
    PermissionGranted,
    PermissionDenied,
    PermissionRevoked,
    SecurityViolation,
    DataAccess,
)


def event_to_dict(event: SecurityEvent) -> dict[str, Any]:
    """Flatten an event into JSON-friendly primitives, tagged with its type."""
    if not isinstance(event, EVENT_TYPES):
        raise TypeError(f"Not a security event: {type(event).__name__}")
    out: dict[str, Any] = {"event_type": type(event).__name__}
    for key, value in asdict(event).items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out
