"""
Security monitor.

Append-only audit trail of every security event plus derived views:
- a recent-events window (capped by ``monitor_event_window``) for dashboards
- active violations grouped by plugin and the high-risk plugin count
- per-plugin summaries with a 0..100 risk score and anomaly detection

The trail is pruned on demand by ``cleanup_old_events`` using the
``monitor_retention_days`` setting.

Writers may call ``record`` from any thread. Events of one plugin are never
lost or reordered, and readers always get an immutable snapshot.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Protocol, runtime_checkable

import structlog

from ..core.config import Settings
from ..core.logging import get_logger
from .events import (
    AccessType,
    DataAccess,
    PermissionDenied,
    PermissionGranted,
    PermissionRevoked,
    SecurityEvent,
    SecurityViolation,
    ViolationSeverity,
    event_to_dict,
)

logger = get_logger(__name__)

# Risk score weights
_SEVERITY_WEIGHT = {
    ViolationSeverity.LOW: 1,
    ViolationSeverity.MEDIUM: 5,
    ViolationSeverity.HIGH: 10,
    ViolationSeverity.CRITICAL: 20,
}
_DENIAL_WEIGHT = 2
_DELETE_WEIGHT = 3
_BULK_ACCESS_WEIGHT = 2
_BULK_ACCESS_RECORDS = 100
_MAX_RISK_SCORE = 100
_CRITICAL_LOOKBACK = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class AuditSink(Protocol):
    """Subscriber receiving each security event as it is recorded.

    Called while the monitor holds its lock, so implementations must be
    quick and must not call back into the monitor.
    """

    def handle(self, event: SecurityEvent) -> None: ...


class StructlogAuditSink:
    """Writes each event as one structured log line."""

    def __init__(self, logger_name: str = "warden.audit"):
        self._logger = structlog.get_logger(logger_name)

    def handle(self, event: SecurityEvent) -> None:
        fields = event_to_dict(event)
        if isinstance(event, SecurityViolation):
            self._logger.warning("security_violation", **fields)
        elif isinstance(event, PermissionDenied):
            self._logger.info("permission_denied", **fields)
        else:
            self._logger.info("security_event", **fields)


@dataclass(frozen=True)
class SecuritySummary:
    plugin_id: str
    total_events: int
    violations: int
    active_violations: int
    denials: int
    grants: int
    revocations: int
    data_accesses: int
    records_accessed: int
    risk_score: int
    anomalous: bool
    last_violation_at: datetime | None = None


class SecurityMonitor:
    def __init__(
        self,
        settings: Settings,
        *,
        sinks: tuple[AuditSink, ...] = (),
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._window_size = settings.monitor_event_window
        self._anomaly_threshold = settings.anomaly_violation_threshold
        self._anomaly_window = timedelta(seconds=settings.anomaly_window_seconds)
        self._quarantine_score = settings.quarantine_risk_score
        self._retention = timedelta(days=settings.monitor_retention_days)
        self._clock = clock
        self._lock = threading.Lock()
        self._sinks: list[AuditSink] = list(sinks)

        self._log: list[SecurityEvent] = []
        self._window: deque[SecurityEvent] = deque(maxlen=self._window_size)
        self._by_plugin: dict[str, list[SecurityEvent]] = {}
        # Replaced wholesale on every change; readers may hold the old one
        self._active: Mapping[str, tuple[SecurityViolation, ...]] = MappingProxyType({})

    def subscribe(self, sink: AuditSink) -> Callable[[], None]:
        """Register ``sink``; returns a callable that unsubscribes it."""
        with self._lock:
            self._sinks.append(sink)

        def _unsubscribe() -> None:
            with self._lock:
                if sink in self._sinks:
                    self._sinks.remove(sink)

        return _unsubscribe

    def record(self, event: SecurityEvent) -> None:
        with self._lock:
            self._log.append(event)
            self._window.append(event)
            self._by_plugin.setdefault(event.plugin_id, []).append(event)
            if isinstance(event, SecurityViolation):
                active = dict(self._active)
                active[event.plugin_id] = active.get(event.plugin_id, ()) + (event,)
                self._active = MappingProxyType(active)
            # Dispatch under the lock so sinks see per-plugin order too
            for sink in self._sinks:
                try:
                    sink.handle(event)
                except Exception as e:
                    logger.error("Audit sink %s failed: %s", type(sink).__name__, e)

        if isinstance(event, SecurityViolation):
            logger.warning(
                "Security violation: plugin=%s kind=%s severity=%s detail=%s",
                event.plugin_id,
                event.kind.value,
                event.severity.value,
                event.detail,
            )
        elif isinstance(event, PermissionDenied):
            logger.info("Permission denied: plugin=%s capability=%s", event.plugin_id, event.capability.value)

    # Snapshot views

    def events(self) -> tuple[SecurityEvent, ...]:
        """Most recent events in arrival order, capped by the event window."""
        with self._lock:
            return tuple(self._window)

    def log(self) -> tuple[SecurityEvent, ...]:
        """The full trail, minus anything dropped by ``cleanup_old_events``."""
        with self._lock:
            return tuple(self._log)

    def events_for(self, plugin_id: str) -> tuple[SecurityEvent, ...]:
        with self._lock:
            return tuple(self._by_plugin.get(plugin_id, ()))

    def active_violations(self) -> Mapping[str, tuple[SecurityViolation, ...]]:
        return self._active

    def high_risk_plugin_count(self) -> int:
        active = self._active
        return sum(1 for violations in active.values() if any(v.severity.is_high_risk for v in violations))

    def severity_counts(self) -> dict[ViolationSeverity, int]:
        counts = {severity: 0 for severity in ViolationSeverity}
        for violations in self._active.values():
            for violation in violations:
                counts[violation.severity] += 1
        return counts

    def resolve_violations(self, plugin_id: str) -> int:
        """Clear the plugin's active violations; the trail keeps them."""
        with self._lock:
            resolved = len(self._active.get(plugin_id, ()))
            if resolved:
                active = dict(self._active)
                del active[plugin_id]
                self._active = MappingProxyType(active)
        if resolved:
            logger.info("Resolved %d violation(s) for plugin %s", resolved, plugin_id)
        return resolved

    def cleanup_old_events(self, older_than: timedelta | None = None) -> int:
        """Drop trail events older than ``older_than`` and return how many went.

        Defaults to ``monitor_retention_days``. Active violations are left
        alone; they only clear through ``resolve_violations``.
        """
        cutoff = self._clock() - (older_than if older_than is not None else self._retention)
        with self._lock:
            kept = [e for e in self._log if e.timestamp >= cutoff]
            removed = len(self._log) - len(kept)
            if removed:
                self._log = kept
                self._window = deque((e for e in self._window if e.timestamp >= cutoff), maxlen=self._window_size)
                by_plugin: dict[str, list[SecurityEvent]] = {}
                for plugin_id, events in self._by_plugin.items():
                    recent = [e for e in events if e.timestamp >= cutoff]
                    if recent:
                        by_plugin[plugin_id] = recent
                self._by_plugin = by_plugin
        if removed:
            logger.info("Pruned %d security event(s) recorded before %s", removed, cutoff.isoformat())
        return removed

    # Derived analysis

    def risk_score(self, plugin_id: str) -> int:
        return self.summary(plugin_id).risk_score

    def is_anomalous(self, plugin_id: str) -> bool:
        """True when the plugin hit the violation threshold within the anomaly window."""
        cutoff = self._clock() - self._anomaly_window
        recent = [v for v in self._active.get(plugin_id, ()) if v.timestamp >= cutoff]
        return len(recent) >= self._anomaly_threshold

    def should_quarantine(self, plugin_id: str) -> bool:
        summary = self.summary(plugin_id)
        if summary.risk_score > self._quarantine_score or summary.anomalous:
            return True
        cutoff = self._clock() - _CRITICAL_LOOKBACK
        return any(
            v.severity is ViolationSeverity.CRITICAL and v.timestamp >= cutoff
            for v in self._active.get(plugin_id, ())
        )

    def summary(self, plugin_id: str) -> SecuritySummary:
        events = self.events_for(plugin_id)
        active = self._active.get(plugin_id, ())

        violations = [e for e in events if isinstance(e, SecurityViolation)]
        denials = sum(1 for e in events if isinstance(e, PermissionDenied))
        accesses = [e for e in events if isinstance(e, DataAccess)]

        score = sum(_SEVERITY_WEIGHT[v.severity] for v in active)
        score += denials * _DENIAL_WEIGHT
        score += sum(_DELETE_WEIGHT for a in accesses if a.access_type is AccessType.DELETE)
        score += sum(_BULK_ACCESS_WEIGHT for a in accesses if a.record_count > _BULK_ACCESS_RECORDS)

        return SecuritySummary(
            plugin_id=plugin_id,
            total_events=len(events),
            violations=len(violations),
            active_violations=len(active),
            denials=denials,
            grants=sum(1 for e in events if isinstance(e, PermissionGranted)),
            revocations=sum(1 for e in events if isinstance(e, PermissionRevoked)),
            data_accesses=len(accesses),
            records_accessed=sum(a.record_count for a in accesses),
            risk_score=min(score, _MAX_RISK_SCORE),
            anomalous=self.is_anomalous(plugin_id),
            last_violation_at=violations[-1].timestamp if violations else None,
        )
