"""
Permission ledger.

The runtime record of which capabilities are granted to which plugin, by
whom and when. Mutations for one plugin are serialized on a per-plugin
asyncio lock; reads go against an immutable per-plugin snapshot that is only
replaced after the grant store accepted the write, so readers never see a
partial update and a failed write changes nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from ..core.exceptions import ConfigurationError, StorageFailureError
from ..core.keyed_lock import KeyedLock
from ..core.logging import get_logger
from .capabilities import Capability, parse_capabilities
from .events import EventEmitter, PermissionGranted, PermissionRevoked
from .grant_store import GrantStore, PermissionGrant
from .manifest import SecurityManifest
from .results import OperationResult

logger = get_logger(__name__)

ManifestLookup = Callable[[str], SecurityManifest | None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _PluginGrants:
    records: tuple[PermissionGrant, ...] = ()

    @property
    def granted(self) -> frozenset[Capability]:
        return frozenset(r.capability for r in self.records if r.active)

    def by_capability(self) -> dict[Capability, PermissionGrant]:
        return {r.capability: r for r in self.records}


_EMPTY = _PluginGrants()


class PermissionLedger:
    """Race-free facade over a ``GrantStore``."""

    def __init__(
        self,
        store: GrantStore,
        manifests: ManifestLookup,
        emit: EventEmitter,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._store = store
        self._manifests = manifests
        self._emit = emit
        self._clock = clock
        self._locks = KeyedLock()
        self._entries: dict[str, _PluginGrants] = {}

    async def hydrate(self) -> int:
        """Load every stored grant into memory. Returns the active grant count.

        Active grants for capabilities no longer in a registered plugin's
        manifest are ignored.
        """
        loaded = await self._store.load_all()
        active = 0
        for plugin_id, records in loaded.items():
            manifest = self._manifests(plugin_id)
            kept = []
            for record in records:
                if record.active and manifest is not None and not manifest.requests(record.capability):
                    logger.warning(
                        "Ignoring stored grant outside manifest: plugin=%s capability=%s",
                        plugin_id,
                        record.capability.value,
                    )
                    continue
                kept.append(record)
            entry = _PluginGrants(tuple(kept))
            self._entries[plugin_id] = entry
            active += len(entry.granted)
        logger.info("Permission ledger hydrated: %d plugins, %d active grants", len(loaded), active)
        return active

    # Reads never take the lock

    def granted(self, plugin_id: str) -> frozenset[Capability]:
        return self._entries.get(plugin_id, _EMPTY).granted

    def has(self, plugin_id: str, capability: Capability) -> bool:
        manifest = self._manifests(plugin_id)
        if manifest is None or not manifest.requests(capability):
            return False
        return capability in self.granted(plugin_id)

    def grants(self, plugin_id: str, *, include_inactive: bool = False) -> tuple[PermissionGrant, ...]:
        """Grant records for ``plugin_id``, ordered by capability name."""
        records = self._entries.get(plugin_id, _EMPTY).records
        if not include_inactive:
            records = tuple(r for r in records if r.active)
        return tuple(sorted(records, key=lambda r: r.capability.value))

    async def grant(
        self,
        plugin_id: str,
        capabilities: Iterable[Capability | str],
        granted_by: str,
    ) -> OperationResult[frozenset[Capability]]:
        """Union-merge ``capabilities`` into the plugin's active grants.

        Every capability must be in the plugin's manifest; otherwise nothing
        is granted. The result carries the effective granted set.
        """
        try:
            requested = parse_capabilities(capabilities)
        except ValueError as e:
            return OperationResult.err(ConfigurationError(str(e), plugin_id=plugin_id))

        manifest = self._manifests(plugin_id)
        if manifest is None:
            return OperationResult.err(
                ConfigurationError(f"Cannot grant to unregistered plugin '{plugin_id}'", plugin_id=plugin_id)
            )
        outside = requested - manifest.requested_capabilities
        if outside:
            names = sorted(c.value for c in outside)
            return OperationResult.err(
                ConfigurationError(
                    f"Capabilities not declared in manifest of '{plugin_id}': {', '.join(names)}",
                    plugin_id=plugin_id,
                    details={"capabilities": names},
                )
            )

        async with self._locks.hold(plugin_id):
            entry = self._entries.get(plugin_id, _EMPTY)
            added = requested - entry.granted
            if not added:
                return OperationResult.ok(entry.granted)

            now = self._clock()
            records = entry.by_capability()
            for capability in added:
                records[capability] = PermissionGrant(
                    plugin_id=plugin_id,
                    capability=capability,
                    granted_by=granted_by,
                    granted_at=now,
                )
            updated = _PluginGrants(tuple(records.values()))

            failure = await self._persist(plugin_id, updated, "persist grants")
            if failure is not None:
                return OperationResult.err(failure)

            self._entries[plugin_id] = updated
            for capability in sorted(added, key=lambda c: c.value):
                self._emit(PermissionGranted(plugin_id=plugin_id, capability=capability, granted_by=granted_by))
            logger.info(
                "Granted %s to plugin %s (by %s)",
                ", ".join(sorted(c.value for c in added)),
                plugin_id,
                granted_by,
            )
            return OperationResult.ok(updated.granted)

    async def revoke(
        self,
        plugin_id: str,
        capabilities: Iterable[Capability | str] | None = None,
        *,
        revoked_by: str = "system",
    ) -> OperationResult[frozenset[Capability]]:
        """Revoke ``capabilities``, or every active grant when None.

        Idempotent. The result carries the capabilities this call revoked.
        """
        try:
            targets = None if capabilities is None else parse_capabilities(capabilities)
        except ValueError as e:
            return OperationResult.err(ConfigurationError(str(e), plugin_id=plugin_id))

        async with self._locks.hold(plugin_id):
            entry = self._entries.get(plugin_id, _EMPTY)
            revoking = entry.granted if targets is None else targets & entry.granted
            if not revoking:
                return OperationResult.ok(frozenset())

            records = entry.by_capability()
            for capability in revoking:
                records[capability] = records[capability].deactivated()
            updated = _PluginGrants(tuple(records.values()))

            failure = await self._persist(plugin_id, updated, "persist revocation")
            if failure is not None:
                return OperationResult.err(failure)

            self._entries[plugin_id] = updated
            for capability in sorted(revoking, key=lambda c: c.value):
                self._emit(PermissionRevoked(plugin_id=plugin_id, capability=capability, revoked_by=revoked_by))
            logger.info(
                "Revoked %s from plugin %s (by %s)",
                ", ".join(sorted(c.value for c in revoking)),
                plugin_id,
                revoked_by,
            )
            return OperationResult.ok(frozenset(revoking))

    async def _persist(self, plugin_id: str, entry: _PluginGrants, operation: str) -> StorageFailureError | None:
        try:
            await self._store.put(plugin_id, list(entry.records))
        except StorageFailureError as e:
            logger.error("Grant store write failed for %s: %s", plugin_id, e.message)
            return e
        except Exception as e:
            logger.error("Grant store write failed for %s: %s", plugin_id, e)
            return StorageFailureError(operation, e)
        return None
