"""
Durable grant storage for the permission ledger.

This module defines the GrantStore protocol, a key-value persistence of
``plugin_id -> grant records``, and two interchangeable implementations:
- InMemoryGrantStore: For tests and ephemeral embedding
- SqlAlchemyGrantStore: For durable storage in the ``permission_grants`` table

The ledger is the only writer. It always writes the complete record list of
one plugin, so implementations only need per-plugin replace semantics.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from sqlalchemy import select

from ..core.database import Database
from ..core.exceptions import StorageFailureError
from ..core.logging import get_logger
from ..models.permission_grant import PermissionGrantRecord
from .capabilities import Capability

logger = get_logger(__name__)


@dataclass(frozen=True)
class PermissionGrant:
    """A runtime record authorizing ``plugin_id`` to use ``capability``.

    Never mutated; revocation produces an inactive copy.
    """

    plugin_id: str
    capability: Capability
    granted_by: str
    granted_at: datetime
    active: bool = True

    def deactivated(self) -> PermissionGrant:
        return replace(self, active=False)


@runtime_checkable
class GrantStore(Protocol):
    """Protocol for durable grant persistence.

    Thread Safety:
        Implementations must tolerate concurrent calls for different
        plugins. Calls for the same plugin are serialized by the ledger.
    """

    async def load_all(self) -> dict[str, list[PermissionGrant]]:
        """Return every stored record, active or not, grouped by plugin id.

        Raises:
            StorageFailureError: If the backend cannot be read.
        """
        ...

    async def put(self, plugin_id: str, grants: list[PermissionGrant]) -> None:
        """Replace the stored records for ``plugin_id`` with ``grants``.

        Either every record is written or none is.

        Raises:
            StorageFailureError: If the write fails.
        """
        ...


class InMemoryGrantStore:
    """Grant store kept in a process-local dict.

    Uses threading.RLock so it can be shared with code running in worker
    threads. Data is lost on process restart.
    """

    def __init__(self) -> None:
        self._records: dict[str, tuple[PermissionGrant, ...]] = {}
        self._lock = threading.RLock()

    async def load_all(self) -> dict[str, list[PermissionGrant]]:
        with self._lock:
            return {plugin_id: list(grants) for plugin_id, grants in self._records.items()}

    async def put(self, plugin_id: str, grants: list[PermissionGrant]) -> None:
        with self._lock:
            self._records[plugin_id] = tuple(grants)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _from_row(row: PermissionGrantRecord) -> PermissionGrant:
    return PermissionGrant(
        plugin_id=row.plugin_id,
        capability=Capability(row.capability),
        granted_by=row.granted_by,
        granted_at=_as_utc(row.granted_at),
        active=bool(row.active),
    )


class SqlAlchemyGrantStore:
    """Grant store backed by the ``permission_grants`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def load_all(self) -> dict[str, list[PermissionGrant]]:
        try:
            async with self.database.session() as session:
                result = await session.execute(select(PermissionGrantRecord))
                rows = result.scalars().all()
        except Exception as e:
            logger.error("Failed to load permission grants: %s", e)
            raise StorageFailureError("load grants", e) from e
        grouped: dict[str, list[PermissionGrant]] = {}
        for row in rows:
            grouped.setdefault(row.plugin_id, []).append(_from_row(row))
        return grouped

    async def put(self, plugin_id: str, grants: list[PermissionGrant]) -> None:
        try:
            async with self.database.session() as session:
                stmt = select(PermissionGrantRecord).where(PermissionGrantRecord.plugin_id == plugin_id)
                result = await session.execute(stmt)
                existing = {row.capability: row for row in result.scalars().all()}
                wanted = {grant.capability.value: grant for grant in grants}

                for capability, grant in wanted.items():
                    row = existing.get(capability)
                    if row is None:
                        session.add(
                            PermissionGrantRecord(
                                plugin_id=plugin_id,
                                capability=capability,
                                granted_by=grant.granted_by,
                                granted_at=grant.granted_at,
                                active=grant.active,
                            )
                        )
                    else:
                        row.granted_by = grant.granted_by
                        row.granted_at = grant.granted_at
                        row.active = grant.active

                for capability, row in existing.items():
                    if capability not in wanted:
                        await session.delete(row)

                await session.commit()
        except Exception as e:
            logger.error("Failed to persist permission grants for %s: %s", plugin_id, e)
            raise StorageFailureError("persist grants", e) from e
