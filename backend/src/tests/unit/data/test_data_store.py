"""
Tests for the DataStore implementations.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from warden.core.database import Database
from warden.data.data_point import new_data_point
from warden.data.store import DataStore, InMemoryDataStore, SqlAlchemyDataStore

T0 = datetime(2026, 2, 1, 7, 0, tzinfo=timezone.utc)


def _point(plugin_id="water", minutes=0, **values):
    return new_data_point(plugin_id, "intake", values or {"amount": 250}, timestamp=T0 + timedelta(minutes=minutes))


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.init_schema()
    yield db
    await db.dispose()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, database):
    if request.param == "memory":
        return InMemoryDataStore()
    return SqlAlchemyDataStore(database, poll_interval_seconds=0.01)


class TestDataStoreContract:
    @pytest.mark.asyncio
    async def test_implements_protocol(self, store):
        assert isinstance(store, DataStore)

    @pytest.mark.asyncio
    async def test_save_and_snapshot_newest_first(self, store):
        old, new = _point(minutes=0), _point(minutes=5)
        await store.save(old)
        await store.save(new)
        await store.save(_point("mood"))
        snapshot = await store.snapshot_for("water")
        assert [p.id for p in snapshot] == [new.id, old.id]
        assert snapshot[0].timestamp == new.timestamp

    @pytest.mark.asyncio
    async def test_save_replaces_by_id(self, store):
        point = _point(amount=1)
        await store.save(point)
        await store.save(point.with_metadata(created_by_plugin="water"))
        (stored,) = await store.snapshot_for("water")
        assert stored.metadata["created_by_plugin"] == "water"
        assert await store.count_for("water") == 1

    @pytest.mark.asyncio
    async def test_count(self, store):
        for minutes in range(3):
            await store.save(_point(minutes=minutes))
        assert await store.count_for("water") == 3
        assert await store.count_for("mood") == 0

    @pytest.mark.asyncio
    async def test_owners_and_delete(self, store):
        water, mood = _point(), _point("mood")
        await store.save(water)
        await store.save(mood)

        owners = await store.owners_of([water.id, mood.id, "missing"])
        assert owners == {water.id: "water", mood.id: "mood"}

        assert await store.delete_by_ids([water.id, "missing"]) == 1
        assert await store.count_for("water") == 0
        assert await store.count_for("mood") == 1
        assert await store.delete_by_ids([]) == 0

    @pytest.mark.asyncio
    async def test_payload_survives_storage(self, store):
        point = _point(amount=1.5, note="after run", cold=True)
        await store.save(point)
        (stored,) = await store.snapshot_for("water")
        assert stored.to_dict()["value"] == point.to_dict()["value"]

    @pytest.mark.asyncio
    async def test_stream_yields_current_then_changes(self, store):
        first = _point(minutes=0)
        await store.save(first)
        stream = store.stream_for("water")
        try:
            batch = await asyncio.wait_for(stream.__anext__(), timeout=2)
            assert [p.id for p in batch] == [first.id]

            second = _point(minutes=1)
            await store.save(second)
            batch = await asyncio.wait_for(stream.__anext__(), timeout=2)
            assert [p.id for p in batch] == [second.id, first.id]
        finally:
            await stream.aclose()


class TestInMemoryStream:
    @pytest.mark.asyncio
    async def test_other_plugins_do_not_wake_the_stream(self):
        store = InMemoryDataStore()
        stream = store.stream_for("water")
        try:
            assert await asyncio.wait_for(stream.__anext__(), timeout=1) == []
            await store.save(_point("mood"))
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(stream.__anext__(), timeout=0.05)
        finally:
            await stream.aclose()
