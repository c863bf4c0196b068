"""
Plugin runtime state and its persistence.

One ``PluginRuntimeState`` per registered plugin. It is created at
registration, only ever replaced by the lifecycle controller, and removed
only when the plugin is unregistered.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, select

from ..core.database import Database
from ..core.exceptions import StorageFailureError
from ..core.logging import get_logger
from ..models.plugin_state import PluginStateRecord

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PluginStatus(str, Enum):
    REGISTERED = "registered"
    DISABLED = "disabled"
    ENABLED = "enabled"
    ERROR = "error"


@dataclass(frozen=True)
class PluginRuntimeState:
    plugin_id: str
    status: PluginStatus = PluginStatus.REGISTERED
    is_enabled: bool = False
    is_collecting: bool = False
    error_count: int = 0
    last_error: str | None = None
    last_collection_time: datetime | None = None
    updated_at: datetime = field(default_factory=_utc_now)


@runtime_checkable
class StateStore(Protocol):
    async def load_all(self) -> dict[str, PluginRuntimeState]: ...

    async def get(self, plugin_id: str) -> PluginRuntimeState | None: ...

    async def put(self, state: PluginRuntimeState) -> None:
        """Insert or replace the state for ``state.plugin_id``.

        Raises:
            StorageFailureError: If the write fails.
        """
        ...

    async def remove(self, plugin_id: str) -> None: ...


class InMemoryStateStore:
    def __init__(self) -> None:
        self._states: dict[str, PluginRuntimeState] = {}
        self._lock = threading.RLock()

    async def load_all(self) -> dict[str, PluginRuntimeState]:
        with self._lock:
            return dict(self._states)

    async def get(self, plugin_id: str) -> PluginRuntimeState | None:
        with self._lock:
            return self._states.get(plugin_id)

    async def put(self, state: PluginRuntimeState) -> None:
        with self._lock:
            self._states[state.plugin_id] = state

    async def remove(self, plugin_id: str) -> None:
        with self._lock:
            self._states.pop(plugin_id, None)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _from_row(row: PluginStateRecord) -> PluginRuntimeState:
    return PluginRuntimeState(
        plugin_id=row.plugin_id,
        status=PluginStatus(row.status),
        is_enabled=bool(row.is_enabled),
        is_collecting=bool(row.is_collecting),
        error_count=int(row.error_count or 0),
        last_error=row.last_error,
        last_collection_time=_aware(row.last_collection_time),
        updated_at=_aware(row.updated_at) or _utc_now(),
    )


class SqlAlchemyStateStore:
    """State store backed by the ``plugin_states`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def load_all(self) -> dict[str, PluginRuntimeState]:
        try:
            async with self.database.session() as session:
                result = await session.execute(select(PluginStateRecord))
                return {row.plugin_id: _from_row(row) for row in result.scalars().all()}
        except Exception as e:
            logger.error("Failed to load plugin states: %s", e)
            raise StorageFailureError("load plugin states", e) from e

    async def get(self, plugin_id: str) -> PluginRuntimeState | None:
        try:
            async with self.database.session() as session:
                row = await session.get(PluginStateRecord, plugin_id)
                return _from_row(row) if row is not None else None
        except Exception as e:
            logger.error("Failed to load state for plugin %s: %s", plugin_id, e)
            raise StorageFailureError("load plugin state", e) from e

    async def put(self, state: PluginRuntimeState) -> None:
        try:
            async with self.database.session() as session:
                row = await session.get(PluginStateRecord, state.plugin_id)
                if row is None:
                    row = PluginStateRecord(plugin_id=state.plugin_id)
                    session.add(row)
                row.status = state.status.value
                row.is_enabled = state.is_enabled
                row.is_collecting = state.is_collecting
                row.error_count = state.error_count
                row.last_error = state.last_error
                row.last_collection_time = state.last_collection_time
                row.updated_at = state.updated_at
                await session.commit()
        except Exception as e:
            logger.error("Failed to persist state for plugin %s: %s", state.plugin_id, e)
            raise StorageFailureError("persist plugin state", e) from e

    async def remove(self, plugin_id: str) -> None:
        try:
            async with self.database.session() as session:
                await session.execute(delete(PluginStateRecord).where(PluginStateRecord.plugin_id == plugin_id))
                await session.commit()
        except Exception as e:
            logger.error("Failed to remove state for plugin %s: %s", plugin_id, e)
            raise StorageFailureError("remove plugin state", e) from e
