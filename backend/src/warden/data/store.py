"""
Data store backends.

The DataStore protocol is the external durable store the gateway delegates
to once a call is authorized. Two implementations:
- InMemoryDataStore: pushes a fresh batch to every open stream on change
- SqlAlchemyDataStore: persists to ``data_points`` and polls for changes

Stores know nothing about permissions. All failures surface as
``StorageFailureError``.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Iterable
from datetime import timezone
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, func, select

from ..core.database import Database
from ..core.exceptions import StorageFailureError
from ..core.logging import get_logger
from ..models.data_point import DataPointRecord
from .data_point import DataPoint, GeoLocation
from .values import decode_payload, encode_payload

logger = get_logger(__name__)


def _newest_first(points: Iterable[DataPoint]) -> list[DataPoint]:
    return sorted(points, key=lambda p: (p.timestamp, p.id), reverse=True)


@runtime_checkable
class DataStore(Protocol):
    async def save(self, point: DataPoint) -> None:
        """Insert or replace ``point`` (keyed by id)."""
        ...

    def stream_for(self, plugin_id: str) -> AsyncIterator[list[DataPoint]]:
        """Yield the plugin's points now and again after every change, newest first.

        Closing the iterator (``aclose``) ends the stream.
        """
        ...

    async def count_for(self, plugin_id: str) -> int: ...

    async def delete_by_ids(self, ids: Iterable[str]) -> int:
        """Delete the given ids; unknown ids are ignored. Returns the number deleted."""
        ...

    async def owners_of(self, ids: Iterable[str]) -> dict[str, str]:
        """Map each known id to its owning plugin id; unknown ids are omitted."""
        ...

    async def snapshot_for(self, plugin_id: str) -> list[DataPoint]: ...


class InMemoryDataStore:
    """Process-local store. Data is lost on process restart."""

    def __init__(self) -> None:
        self._points: dict[str, DataPoint] = {}
        self._versions: dict[str, int] = {}
        self._lock = threading.RLock()
        self._changed: asyncio.Condition | None = None

    def _condition(self) -> asyncio.Condition:
        if self._changed is None:
            self._changed = asyncio.Condition()
        return self._changed

    def _version_of(self, plugin_id: str) -> int:
        with self._lock:
            return self._versions.get(plugin_id, 0)

    async def _notify(self) -> None:
        condition = self._condition()
        async with condition:
            condition.notify_all()

    async def save(self, point: DataPoint) -> None:
        with self._lock:
            previous = self._points.get(point.id)
            self._points[point.id] = point
            for plugin_id in {point.plugin_id, previous.plugin_id if previous else point.plugin_id}:
                self._versions[plugin_id] = self._versions.get(plugin_id, 0) + 1
        await self._notify()

    async def snapshot_for(self, plugin_id: str) -> list[DataPoint]:
        with self._lock:
            return _newest_first(p for p in self._points.values() if p.plugin_id == plugin_id)

    async def stream_for(self, plugin_id: str) -> AsyncIterator[list[DataPoint]]:
        condition = self._condition()
        seen: int | None = None
        while True:
            async with condition:
                await condition.wait_for(lambda: self._version_of(plugin_id) != seen)
                seen = self._version_of(plugin_id)
            yield await self.snapshot_for(plugin_id)

    async def count_for(self, plugin_id: str) -> int:
        with self._lock:
            return sum(1 for p in self._points.values() if p.plugin_id == plugin_id)

    async def owners_of(self, ids: Iterable[str]) -> dict[str, str]:
        with self._lock:
            return {i: self._points[i].plugin_id for i in ids if i in self._points}

    async def delete_by_ids(self, ids: Iterable[str]) -> int:
        deleted = 0
        with self._lock:
            for i in set(ids):
                point = self._points.pop(i, None)
                if point is None:
                    continue
                deleted += 1
                self._versions[point.plugin_id] = self._versions.get(point.plugin_id, 0) + 1
        if deleted:
            await self._notify()
        return deleted


def _to_point(row: DataPointRecord) -> DataPoint:
    timestamp = row.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return DataPoint(
        id=row.id,
        plugin_id=row.plugin_id,
        type=row.type,
        timestamp=timestamp,
        value=decode_payload(row.value or {}),
        metadata=row.meta or {},
        location=GeoLocation.from_dict(row.location) if row.location else None,
    )


class SqlAlchemyDataStore:
    """Store backed by the ``data_points`` table; streams poll for changes."""

    def __init__(self, database: Database, *, poll_interval_seconds: float = 2.0):
        self.database = database
        self.poll_interval_seconds = poll_interval_seconds

    async def save(self, point: DataPoint) -> None:
        try:
            async with self.database.session() as session:
                row = await session.get(DataPointRecord, point.id)
                if row is None:
                    row = DataPointRecord(id=point.id)
                    session.add(row)
                row.plugin_id = point.plugin_id
                row.type = point.type
                row.timestamp = point.timestamp
                row.value = encode_payload(point.value)
                row.meta = dict(point.metadata)
                row.location = point.location.to_dict() if point.location else None
                await session.commit()
        except Exception as e:
            logger.error("Failed to save data point %s: %s", point.id, e)
            raise StorageFailureError("save data point", e) from e

    async def snapshot_for(self, plugin_id: str) -> list[DataPoint]:
        try:
            async with self.database.session() as session:
                stmt = (
                    select(DataPointRecord)
                    .where(DataPointRecord.plugin_id == plugin_id)
                    .order_by(DataPointRecord.timestamp.desc(), DataPointRecord.id.desc())
                )
                result = await session.execute(stmt)
                return [_to_point(row) for row in result.scalars().all()]
        except Exception as e:
            logger.error("Failed to read data points for %s: %s", plugin_id, e)
            raise StorageFailureError("read data points", e) from e

    async def stream_for(self, plugin_id: str) -> AsyncIterator[list[DataPoint]]:
        last: list[dict] | None = None
        while True:
            points = await self.snapshot_for(plugin_id)
            fingerprint = [p.to_dict() for p in points]
            if fingerprint != last:
                last = fingerprint
                yield points
            await asyncio.sleep(self.poll_interval_seconds)

    async def count_for(self, plugin_id: str) -> int:
        try:
            async with self.database.session() as session:
                stmt = select(func.count(DataPointRecord.id)).where(DataPointRecord.plugin_id == plugin_id)
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except Exception as e:
            logger.error("Failed to count data points for %s: %s", plugin_id, e)
            raise StorageFailureError("count data points", e) from e

    async def owners_of(self, ids: Iterable[str]) -> dict[str, str]:
        wanted = list(set(ids))
        if not wanted:
            return {}
        try:
            async with self.database.session() as session:
                stmt = select(DataPointRecord.id, DataPointRecord.plugin_id).where(DataPointRecord.id.in_(wanted))
                result = await session.execute(stmt)
                return {row_id: owner for row_id, owner in result.all()}
        except Exception as e:
            logger.error("Failed to resolve data point owners: %s", e)
            raise StorageFailureError("resolve owners", e) from e

    async def delete_by_ids(self, ids: Iterable[str]) -> int:
        wanted = list(set(ids))
        if not wanted:
            return 0
        try:
            async with self.database.session() as session:
                result = await session.execute(delete(DataPointRecord).where(DataPointRecord.id.in_(wanted)))
                await session.commit()
                return int(result.rowcount or 0)
        except Exception as e:
            logger.error("Failed to delete data points: %s", e)
            raise StorageFailureError("delete data points", e) from e
