"""
Secure data gateway.

The only path by which a plugin reads, writes or deletes data. Every call
decides authorization up front against the ledger, emits exactly one
security event for the decision, and only then touches the store:

- a denial emits ``PermissionDenied`` (missing capability) or
  ``SecurityViolation`` (ownership, rate limit, disabled plugin, data scope)
  and the store is never called
- a success emits one ``DataAccess``

Writes and deletes return an ``OperationResult``. Streaming reads raise the
typed error at subscription time. ``count`` never raises for a denial; it
returns 0 so callers cannot tell "no records" from "not allowed".
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterable
from datetime import datetime, timezone

from ..core.config import Settings
from ..core.exceptions import (
    OwnershipViolationError,
    PermissionDeniedError,
    SecurityViolationError,
    StorageFailureError,
    WardenException,
)
from ..core.logging import get_logger
from ..data.data_point import DataPoint
from ..data.store import DataStore
from .capabilities import Capability
from .events import (
    AccessType,
    DataAccess,
    EventEmitter,
    PermissionDenied,
    SecurityViolation,
    ViolationKind,
    ViolationSeverity,
)
from .ledger import ManifestLookup, PermissionLedger
from .manifest import can_access_data_type
from .rate_limit import OperationRateLimiter
from .results import OperationResult

logger = get_logger(__name__)

SECURITY_VERSION = "1"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DataSubscription:
    """A cancellable stream of data batches for one authorized read.

    Iterate with ``async for``; stop with ``close()`` or by leaving an
    ``async with`` block. Authorization happened when the subscription was
    created and is not repeated per batch.
    """

    def __init__(self, plugin_id: str, target_plugin_id: str, source: AsyncIterator[list[DataPoint]]):
        self.plugin_id = plugin_id
        self.target_plugin_id = target_plugin_id
        self._source = source
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> DataSubscription:
        return self

    async def __anext__(self) -> list[DataPoint]:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._closed = True
            raise
        except StorageFailureError:
            raise
        except Exception as e:
            logger.error("Data stream for %s failed: %s", self.target_plugin_id, e)
            raise StorageFailureError("stream data points", e) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> DataSubscription:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class SecureDataGateway:
    def __init__(
        self,
        store: DataStore,
        ledger: PermissionLedger,
        manifests: ManifestLookup,
        emit: EventEmitter,
        *,
        settings: Settings,
        is_enabled: Callable[[str], bool] | None = None,
        rate_limiter: OperationRateLimiter | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._store = store
        self._ledger = ledger
        self._manifests = manifests
        self._emit = emit
        self._require_enabled = settings.gateway_require_enabled and is_enabled is not None
        self._is_enabled = is_enabled
        if rate_limiter is None and settings.rate_limit_enabled:
            rate_limiter = OperationRateLimiter(settings)
        self._rate_limiter = rate_limiter
        self._clock = clock

    # Decision helpers. Each one that refuses emits exactly one event.

    def _deny(self, plugin_id: str, capability: Capability, reason: str) -> PermissionDeniedError:
        self._emit(PermissionDenied(plugin_id=plugin_id, capability=capability, reason=reason))
        return PermissionDeniedError(plugin_id, capability, reason)

    def _violation(
        self, plugin_id: str, kind: ViolationKind, severity: ViolationSeverity, detail: str
    ) -> SecurityViolationError:
        self._emit(SecurityViolation(plugin_id=plugin_id, kind=kind, severity=severity, detail=detail))
        return SecurityViolationError(plugin_id, kind.value, detail)

    async def _check_policy(self, plugin_id: str, access_type: AccessType) -> WardenException | None:
        if self._require_enabled and not self._is_enabled(plugin_id):  # type: ignore[misc]
            return self._violation(
                plugin_id,
                ViolationKind.PLUGIN_DISABLED,
                ViolationSeverity.LOW,
                f"{access_type.value} attempted while plugin is disabled",
            )
        if self._rate_limiter is not None:
            allowed, retry_after = await self._rate_limiter.allow(plugin_id, access_type)
            if not allowed:
                return self._violation(
                    plugin_id,
                    ViolationKind.RATE_LIMIT_EXCEEDED,
                    ViolationSeverity.HIGH,
                    f"{access_type.value} limit of {self._rate_limiter.capacity_for(access_type)} "
                    f"exceeded; retry after {retry_after}s",
                )
        return None

    def _check_capability(self, plugin_id: str, capability: Capability, action: str) -> PermissionDeniedError | None:
        if self._ledger.has(plugin_id, capability):
            return None
        return self._deny(plugin_id, capability, f"{capability.value} is required to {action}")

    @staticmethod
    def _read_capability(plugin_id: str, target_plugin_id: str) -> Capability:
        return Capability.READ_OWN_DATA if plugin_id == target_plugin_id else Capability.READ_ALL_DATA

    async def _authorize_read(
        self, plugin_id: str, target_plugin_id: str, access_type: AccessType
    ) -> WardenException | None:
        refused = await self._check_policy(plugin_id, access_type)
        if refused is not None:
            return refused
        capability = self._read_capability(plugin_id, target_plugin_id)
        action = "read its own data" if plugin_id == target_plugin_id else f"read data of '{target_plugin_id}'"
        return self._check_capability(plugin_id, capability, action)

    # Operations

    async def save(self, plugin_id: str, point: DataPoint) -> OperationResult[DataPoint]:
        """Persist ``point`` on behalf of ``plugin_id``.

        The ownership check runs before anything else: a plugin can never
        write another plugin's data, whatever it has been granted. Reusing
        the id of a record owned by another plugin is refused the same way.
        """
        if point.plugin_id != plugin_id:
            self._emit(
                SecurityViolation(
                    plugin_id=plugin_id,
                    kind=ViolationKind.OWNERSHIP_VIOLATION,
                    severity=ViolationSeverity.HIGH,
                    detail=f"attempted to save data point {point.id} owned by '{point.plugin_id}'",
                )
            )
            return OperationResult.err(OwnershipViolationError(plugin_id, point.plugin_id, "save"))

        refused = await self._check_policy(plugin_id, AccessType.WRITE)
        if refused is None:
            refused = self._check_capability(plugin_id, Capability.COLLECT_DATA, "save data")
        if refused is None:
            manifest = self._manifests(plugin_id)
            if manifest is not None and not can_access_data_type(manifest, point.type):
                refused = self._violation(
                    plugin_id,
                    ViolationKind.SCOPE_VIOLATION,
                    ViolationSeverity.MEDIUM,
                    f"data type '{point.type}' is outside the declared data access scope",
                )
        if refused is not None:
            return OperationResult.err(refused)

        # Saving is insert-or-replace by id, so an id already owned by
        # another plugin would hand that record over to the caller
        try:
            owners = await self._store.owners_of([point.id])
        except Exception as e:
            return OperationResult.err(self._storage_failure("resolve owners", plugin_id, e))
        owner = owners.get(point.id)
        if owner is not None and owner != plugin_id:
            self._emit(
                SecurityViolation(
                    plugin_id=plugin_id,
                    kind=ViolationKind.OWNERSHIP_VIOLATION,
                    severity=ViolationSeverity.HIGH,
                    detail=f"attempted to overwrite data point {point.id} owned by '{owner}'",
                )
            )
            return OperationResult.err(OwnershipViolationError(plugin_id, owner, "overwrite"))

        stamped = point.with_metadata(
            created_by_plugin=plugin_id,
            security_version=SECURITY_VERSION,
            recorded_at=self._clock().isoformat(),
        )
        self._emit(DataAccess(plugin_id=plugin_id, access_type=AccessType.WRITE, record_count=1))
        try:
            await self._store.save(stamped)
        except Exception as e:
            return OperationResult.err(self._storage_failure("save", plugin_id, e))
        return OperationResult.ok(stamped)

    async def read_own(self, plugin_id: str) -> DataSubscription:
        return await self.read_other(plugin_id, plugin_id)

    async def read_other(self, plugin_id: str, target_plugin_id: str) -> DataSubscription:
        """Open a stream of ``target_plugin_id``'s data for ``plugin_id``.

        Raises:
            PermissionDeniedError: If the caller lacks the read capability.
            SecurityViolationError: If a gateway policy refuses the call.
        """
        refused = await self._authorize_read(plugin_id, target_plugin_id, AccessType.READ)
        if refused is not None:
            raise refused
        self._emit(
            DataAccess(
                plugin_id=plugin_id,
                access_type=AccessType.READ,
                record_count=0,
                target_plugin_id=target_plugin_id,
            )
        )
        return DataSubscription(plugin_id, target_plugin_id, self._store.stream_for(target_plugin_id))

    async def count(self, plugin_id: str, target_plugin_id: str) -> int:
        """Number of records owned by ``target_plugin_id``, or 0 when refused.

        Raises:
            StorageFailureError: If the store fails after authorization.
        """
        refused = await self._authorize_read(plugin_id, target_plugin_id, AccessType.COUNT)
        if refused is not None:
            return 0
        try:
            total = await self._store.count_for(target_plugin_id)
        except Exception as e:
            raise self._storage_failure("count", plugin_id, e) from e
        self._emit(
            DataAccess(
                plugin_id=plugin_id,
                access_type=AccessType.COUNT,
                record_count=total,
                target_plugin_id=target_plugin_id,
            )
        )
        return total

    async def delete(self, plugin_id: str, ids: Iterable[str]) -> OperationResult[int]:
        """Delete records by id. Every id must be owned by ``plugin_id``.

        If any id belongs to another plugin, nothing is deleted. Unknown ids
        are ignored. The result carries the number of records deleted.
        """
        wanted = sorted(set(ids))
        refused = await self._check_policy(plugin_id, AccessType.DELETE)
        if refused is None:
            refused = self._check_capability(plugin_id, Capability.DELETE_DATA, "delete data")
        if refused is not None:
            return OperationResult.err(refused)

        try:
            owners = await self._store.owners_of(wanted)
        except Exception as e:
            return OperationResult.err(self._storage_failure("resolve owners", plugin_id, e))

        foreign = sorted({owner for owner in owners.values() if owner != plugin_id})
        if foreign:
            foreign_ids = sorted(i for i, owner in owners.items() if owner != plugin_id)
            self._emit(
                SecurityViolation(
                    plugin_id=plugin_id,
                    kind=ViolationKind.OWNERSHIP_VIOLATION,
                    severity=ViolationSeverity.HIGH,
                    detail=f"attempted to delete {len(foreign_ids)} record(s) owned by {', '.join(foreign)}",
                )
            )
            return OperationResult.err(OwnershipViolationError(plugin_id, foreign, "delete"))

        owned = sorted(owners)
        self._emit(DataAccess(plugin_id=plugin_id, access_type=AccessType.DELETE, record_count=len(owned)))
        if not owned:
            return OperationResult.ok(0)
        try:
            deleted = await self._store.delete_by_ids(owned)
        except Exception as e:
            return OperationResult.err(self._storage_failure("delete", plugin_id, e))
        return OperationResult.ok(deleted)

    async def export(self, plugin_id: str) -> OperationResult[list[DataPoint]]:
        """Snapshot of the caller's own records, newest first."""
        refused = await self._check_policy(plugin_id, AccessType.EXPORT)
        if refused is None:
            refused = self._check_capability(plugin_id, Capability.EXPORT_DATA, "export data")
        if refused is not None:
            return OperationResult.err(refused)
        try:
            points = await self._store.snapshot_for(plugin_id)
        except Exception as e:
            return OperationResult.err(self._storage_failure("export", plugin_id, e))
        self._emit(DataAccess(plugin_id=plugin_id, access_type=AccessType.EXPORT, record_count=len(points)))
        return OperationResult.ok(points)

    @staticmethod
    def _storage_failure(operation: str, plugin_id: str, error: Exception) -> StorageFailureError:
        # Logged only; a store outage is not a security event
        logger.error("Store failed during %s for plugin %s: %s", operation, plugin_id, error)
        if isinstance(error, StorageFailureError):
            return error
        return StorageFailureError(operation, error)
