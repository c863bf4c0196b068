"""
Plugin lifecycle controller.

Orchestrates registration, enable and disable. Enabling checks that the
plugin's grants cover its manifest: official plugins get the missing
capabilities auto-granted, every other trust level is refused until the user
consented through ``grant_consent``. Transitions for one plugin are
serialized; ``enable``, ``disable``, ``block`` and ``record_collection`` never
raise, they return a ``LifecycleOutcome`` and record failures in the plugin's
runtime state.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from ..core.config import Settings
from ..core.exceptions import ConfigurationError, PluginNotFoundError, SecurityViolationError, WardenException
from ..core.keyed_lock import KeyedLock
from ..core.logging import get_logger
from ..security.capabilities import Capability, description_of, parse_capabilities, risk_of, sorted_by_risk
from ..security.events import (
    EventEmitter,
    PermissionDenied,
    PermissionRequested,
    SecurityViolation,
    ViolationKind,
    ViolationSeverity,
)
from ..security.ledger import PermissionLedger
from ..security.manifest import SecurityManifest, TrustLevel, requires_explicit_consent
from ..security.os_permissions import OsPermissionBridge, missing_os_permissions
from ..security.results import OperationResult
from .registry import PluginDescriptor, PluginRegistry
from .state import PluginRuntimeState, PluginStatus, StateStore

logger = get_logger(__name__)

AUTO_GRANTOR = "system:auto"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LifecycleOutcome:
    plugin_id: str
    success: bool
    state: PluginRuntimeState | None = None
    reason: str | None = None
    missing: tuple[Capability, ...] = field(default_factory=tuple)
    error_code: str | None = None

    def __bool__(self) -> bool:
        return self.success


class PluginLifecycleController:
    def __init__(
        self,
        registry: PluginRegistry,
        ledger: PermissionLedger,
        state_store: StateStore,
        emit: EventEmitter,
        *,
        settings: Settings,
        os_bridge: OsPermissionBridge | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._registry = registry
        self._ledger = ledger
        self._store = state_store
        self._emit = emit
        self._revoke_on_disable = settings.revoke_on_disable
        self._consent_threshold = settings.consent_risk_threshold
        self._os_bridge = os_bridge
        self._clock = clock
        self._locks = KeyedLock()
        self._states: Mapping[str, PluginRuntimeState] = MappingProxyType({})

    # State snapshots

    def _publish(self, state: PluginRuntimeState) -> None:
        self._states = MappingProxyType({**self._states, state.plugin_id: state})

    def _forget(self, plugin_id: str) -> None:
        remaining = dict(self._states)
        remaining.pop(plugin_id, None)
        self._states = MappingProxyType(remaining)

    def state(self, plugin_id: str) -> PluginRuntimeState | None:
        return self._states.get(plugin_id)

    def states(self) -> Mapping[str, PluginRuntimeState]:
        return self._states

    def is_enabled(self, plugin_id: str) -> bool:
        state = self._states.get(plugin_id)
        return bool(state and state.is_enabled)

    async def hydrate(self) -> None:
        """Load persisted states for registered plugins; create missing ones."""
        stored = await self._store.load_all()
        for plugin_id in self._registry.ids():
            state = stored.get(plugin_id)
            if state is None:
                state = PluginRuntimeState(plugin_id=plugin_id, updated_at=self._clock())
                await self._store.put(state)
            self._publish(state)
        logger.info("Plugin states hydrated for %d plugins", len(self._registry))

    # Registration

    async def register(
        self,
        plugin_id: str,
        name: str,
        version: str,
        trust_level: TrustLevel | str,
        manifest: SecurityManifest | Mapping[str, Any] | None,
        *,
        description: str = "",
    ) -> PluginDescriptor:
        """Register a plugin and create its runtime state.

        Raises:
            ConfigurationError: If the id, trust level or manifest is invalid,
                or the plugin is already registered.
            StorageFailureError: If the runtime state cannot be stored. The
                registry entry is rolled back.
        """
        descriptor = self._registry.register(
            plugin_id, name, version, trust_level, manifest, description=description
        )
        async with self._locks.hold(plugin_id):
            try:
                state = await self._store.get(plugin_id)
                if state is None:
                    state = PluginRuntimeState(plugin_id=plugin_id, updated_at=self._clock())
                    await self._store.put(state)
            except Exception:
                self._registry.unregister(plugin_id)
                raise
            self._publish(state)
        return descriptor

    async def unregister(self, plugin_id: str) -> bool:
        """Revoke every grant, drop the runtime state and remove the plugin."""
        if plugin_id not in self._registry:
            return False
        async with self._locks.hold(plugin_id):
            (await self._ledger.revoke(plugin_id, revoked_by="system:unregister")).unwrap()
            await self._store.remove(plugin_id)
            self._forget(plugin_id)
            self._registry.unregister(plugin_id)
        self._locks.discard(plugin_id)
        return True

    # Transitions

    async def enable(self, plugin_id: str) -> LifecycleOutcome:
        descriptor = self._registry.get(plugin_id)
        if descriptor is None:
            return self._not_found(plugin_id)

        async with self._locks.hold(plugin_id):
            state = self._current(plugin_id)
            try:
                if not descriptor.trust_level.can_enable:
                    detail = f"enable refused for trust level {descriptor.trust_level.value}"
                    self._emit(
                        SecurityViolation(
                            plugin_id=plugin_id,
                            kind=ViolationKind.TRUST_POLICY_BLOCK,
                            severity=ViolationSeverity.MEDIUM,
                            detail=detail,
                        )
                    )
                    return LifecycleOutcome(
                        plugin_id, False, state, reason=detail, error_code="TRUST_POLICY_BLOCK"
                    )

                requested = descriptor.manifest.requested_capabilities
                missing = requested - self._ledger.granted(plugin_id)
                if missing:
                    if descriptor.trust_level.auto_grants:
                        granted = await self._ledger.grant(plugin_id, missing, AUTO_GRANTOR)
                        granted.unwrap()
                    else:
                        return self._refuse_missing_consent(plugin_id, state, missing)

                enabled = replace(
                    state,
                    status=PluginStatus.ENABLED,
                    is_enabled=True,
                    is_collecting=True,
                    error_count=0,
                    last_error=None,
                    updated_at=self._clock(),
                )
                await self._store.put(enabled)
                self._publish(enabled)
            except Exception as e:
                return await self._record_error(state, "enable", e)

        logger.info("Enabled plugin %s", plugin_id)
        return LifecycleOutcome(plugin_id, True, enabled)

    async def disable(self, plugin_id: str, *, revoke_grants: bool | None = None) -> LifecycleOutcome:
        """Stop the plugin. Grants are revoked only when ``revoke_grants``
        (default: the ``revoke_on_disable`` setting) is true.
        """
        descriptor = self._registry.get(plugin_id)
        if descriptor is None:
            return self._not_found(plugin_id)
        revoke = self._revoke_on_disable if revoke_grants is None else revoke_grants

        async with self._locks.hold(plugin_id):
            state = self._current(plugin_id)
            try:
                if revoke:
                    (await self._ledger.revoke(plugin_id, revoked_by="system:disable")).unwrap()
                disabled = replace(
                    state,
                    status=PluginStatus.DISABLED,
                    is_enabled=False,
                    is_collecting=False,
                    updated_at=self._clock(),
                )
                await self._store.put(disabled)
                self._publish(disabled)
            except Exception as e:
                return await self._record_error(state, "disable", e)

        logger.info("Disabled plugin %s (grants revoked: %s)", plugin_id, revoke)
        return LifecycleOutcome(plugin_id, True, disabled)

    async def block(self, plugin_id: str, reason: str = "blocked by user") -> LifecycleOutcome:
        """Revoke every grant, disable, and mark the plugin BLOCKED for good."""
        if plugin_id not in self._registry:
            return self._not_found(plugin_id)
        self._registry.set_trust_level(plugin_id, TrustLevel.BLOCKED)
        outcome = await self.disable(plugin_id, revoke_grants=True)
        self._emit(
            SecurityViolation(
                plugin_id=plugin_id,
                kind=ViolationKind.USER_BLOCKED,
                severity=ViolationSeverity.HIGH,
                detail=reason,
            )
        )
        return outcome

    async def quarantine(self, plugin_id: str) -> LifecycleOutcome:
        """Disable the plugin and keep it disabled until its trust is restored."""
        if plugin_id not in self._registry:
            return self._not_found(plugin_id)
        self._registry.set_trust_level(plugin_id, TrustLevel.QUARANTINED)
        return await self.disable(plugin_id)

    async def record_collection(self, plugin_id: str) -> LifecycleOutcome:
        if plugin_id not in self._registry:
            return self._not_found(plugin_id)
        async with self._locks.hold(plugin_id):
            state = self._current(plugin_id)
            if not state.is_collecting:
                return LifecycleOutcome(plugin_id, False, state, reason="plugin is not collecting")
            try:
                now = self._clock()
                stamped = replace(state, last_collection_time=now, updated_at=now)
                await self._store.put(stamped)
                self._publish(stamped)
            except Exception as e:
                return await self._record_error(state, "record collection", e)
        return LifecycleOutcome(plugin_id, True, stamped)

    # Consent

    def pending_consent(self, plugin_id: str) -> list[Capability]:
        """Requested but ungranted capabilities, highest risk first."""
        manifest = self._registry.manifest_of(plugin_id)
        if manifest is None:
            return []
        return sorted_by_risk(manifest.requested_capabilities - self._ledger.granted(plugin_id))

    def consent_required(self, plugin_id: str) -> list[Capability]:
        """Pending capabilities at or above the configured consent threshold."""
        return [
            c for c in self.pending_consent(plugin_id) if requires_explicit_consent(c, self._consent_threshold)
        ]

    async def grant_consent(
        self,
        plugin_id: str,
        capabilities: Iterable[Capability | str],
        granted_by: str = "user",
    ) -> OperationResult[frozenset[Capability]]:
        """Record explicit user consent for ``capabilities`` and grant them."""
        descriptor = self._registry.get(plugin_id)
        if descriptor is None:
            return OperationResult.err(PluginNotFoundError(plugin_id))
        try:
            requested = parse_capabilities(capabilities)
        except ValueError as e:
            return OperationResult.err(ConfigurationError(str(e), plugin_id=plugin_id))
        outside = requested - descriptor.manifest.requested_capabilities
        if outside:
            names = sorted(c.value for c in outside)
            return OperationResult.err(
                ConfigurationError(
                    f"Capabilities not declared in manifest of '{plugin_id}': {', '.join(names)}",
                    plugin_id=plugin_id,
                    details={"capabilities": names},
                )
            )
        if not descriptor.trust_level.can_enable:
            detail = f"consent refused for trust level {descriptor.trust_level.value}"
            self._emit(
                SecurityViolation(
                    plugin_id=plugin_id,
                    kind=ViolationKind.TRUST_POLICY_BLOCK,
                    severity=ViolationSeverity.MEDIUM,
                    detail=detail,
                )
            )
            return OperationResult.err(SecurityViolationError(plugin_id, ViolationKind.TRUST_POLICY_BLOCK.value, detail))

        for capability in sorted_by_risk(requested):
            self._emit(
                PermissionRequested(
                    plugin_id=plugin_id,
                    capability=capability,
                    reason=f"{description_of(capability)} ({risk_of(capability).value} risk)",
                )
            )
        return await self._ledger.grant(plugin_id, requested, granted_by)

    def missing_os_permissions(self, plugin_id: str) -> list[str]:
        """OS permissions the host still has to grant before the plugin can work."""
        manifest = self._registry.manifest_of(plugin_id)
        if manifest is None or self._os_bridge is None:
            return []
        return missing_os_permissions(self._os_bridge, manifest.requested_capabilities)

    # Helpers

    def _current(self, plugin_id: str) -> PluginRuntimeState:
        state = self._states.get(plugin_id)
        if state is None:
            state = PluginRuntimeState(plugin_id=plugin_id, updated_at=self._clock())
        return state

    def _not_found(self, plugin_id: str) -> LifecycleOutcome:
        error = PluginNotFoundError(plugin_id)
        logger.warning(error.message)
        return LifecycleOutcome(plugin_id, False, None, reason=error.message, error_code=error.error_code)

    def _refuse_missing_consent(
        self, plugin_id: str, state: PluginRuntimeState, missing: frozenset[Capability]
    ) -> LifecycleOutcome:
        ordered = tuple(sorted_by_risk(missing))
        reason = f"Missing capabilities requiring consent: {', '.join(c.value for c in ordered)}"
        self._emit(PermissionDenied(plugin_id=plugin_id, capability=ordered[0], reason=reason))
        logger.info("Enable of plugin %s refused: %s", plugin_id, reason)
        return LifecycleOutcome(
            plugin_id, False, state, reason=reason, missing=ordered, error_code="PERMISSION_DENIED"
        )

    async def _record_error(self, state: PluginRuntimeState, operation: str, error: Exception) -> LifecycleOutcome:
        message = error.message if isinstance(error, WardenException) else str(error) or type(error).__name__
        code = error.error_code if isinstance(error, WardenException) else "LIFECYCLE_ERROR"
        logger.error("Failed to %s plugin %s: %s", operation, state.plugin_id, message)
        failed = replace(
            state,
            status=PluginStatus.ERROR,
            error_count=state.error_count + 1,
            last_error=message,
            updated_at=self._clock(),
        )
        self._publish(failed)
        try:
            await self._store.put(failed)
        except Exception as e:
            logger.error("Could not persist error state for plugin %s: %s", state.plugin_id, e)
        return LifecycleOutcome(state.plugin_id, False, failed, reason=message, error_code=code)
