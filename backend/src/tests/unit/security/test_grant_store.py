"""
Tests for the GrantStore implementations.

The SQLAlchemy store runs against an in-memory SQLite database through
aiosqlite.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from warden.core.database import Database
from warden.core.exceptions import StorageFailureError
from warden.security.capabilities import Capability
from warden.security.grant_store import GrantStore, InMemoryGrantStore, PermissionGrant, SqlAlchemyGrantStore

T0 = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)


def _grant(capability, *, active=True, granted_by="user", at=T0, plugin_id="water"):
    return PermissionGrant(plugin_id, capability, granted_by, at, active)


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.init_schema()
    yield db
    await db.dispose()


class TestPermissionGrant:
    def test_deactivated_is_a_copy(self):
        grant = _grant(Capability.COLLECT_DATA)
        revoked = grant.deactivated()
        assert grant.active
        assert not revoked.active
        assert revoked.granted_by == grant.granted_by


class TestInMemoryGrantStore:
    def test_implements_protocol(self):
        assert isinstance(InMemoryGrantStore(), GrantStore)

    @pytest.mark.asyncio
    async def test_put_replaces_plugin_records(self):
        store = InMemoryGrantStore()
        await store.put("water", [_grant(Capability.COLLECT_DATA), _grant(Capability.READ_OWN_DATA)])
        await store.put("water", [_grant(Capability.COLLECT_DATA, active=False)])
        records = (await store.load_all())["water"]
        assert [(r.capability, r.active) for r in records] == [(Capability.COLLECT_DATA, False)]

    @pytest.mark.asyncio
    async def test_empty_store_loads_nothing(self):
        assert await InMemoryGrantStore().load_all() == {}

    @pytest.mark.asyncio
    async def test_load_all_groups_by_plugin(self):
        store = InMemoryGrantStore()
        await store.put("water", [_grant(Capability.COLLECT_DATA)])
        await store.put("mood", [_grant(Capability.COLLECT_DATA, plugin_id="mood")])
        assert set(await store.load_all()) == {"water", "mood"}


class TestSqlAlchemyGrantStore:
    def test_implements_protocol(self):
        assert isinstance(SqlAlchemyGrantStore(Database("sqlite+aiosqlite:///:memory:")), GrantStore)

    @pytest.mark.asyncio
    async def test_round_trip(self, database):
        store = SqlAlchemyGrantStore(database)
        await store.put("water", [_grant(Capability.COLLECT_DATA), _grant(Capability.LOCAL_STORAGE, granted_by="system")])
        records = sorted((await store.load_all())["water"], key=lambda r: r.capability.value)
        assert [(r.capability, r.granted_by, r.active) for r in records] == [
            (Capability.COLLECT_DATA, "user", True),
            (Capability.LOCAL_STORAGE, "system", True),
        ]
        assert records[0].granted_at == T0

    @pytest.mark.asyncio
    async def test_put_updates_and_removes_rows(self, database):
        store = SqlAlchemyGrantStore(database)
        await store.put("water", [_grant(Capability.COLLECT_DATA), _grant(Capability.READ_OWN_DATA)])
        later = T0 + timedelta(hours=1)
        await store.put("water", [_grant(Capability.COLLECT_DATA, active=False, granted_by="admin", at=later)])
        (record,) = (await store.load_all())["water"]
        assert record.capability is Capability.COLLECT_DATA
        assert not record.active
        assert record.granted_by == "admin"
        assert record.granted_at == later

    @pytest.mark.asyncio
    async def test_load_all(self, database):
        store = SqlAlchemyGrantStore(database)
        await store.put("water", [_grant(Capability.COLLECT_DATA)])
        await store.put("mood", [_grant(Capability.EXPORT_DATA, plugin_id="mood")])
        loaded = await store.load_all()
        assert {pid: [r.capability for r in records] for pid, records in loaded.items()} == {
            "water": [Capability.COLLECT_DATA],
            "mood": [Capability.EXPORT_DATA],
        }

    @pytest.mark.asyncio
    async def test_failures_are_wrapped(self):
        broken = Database("sqlite+aiosqlite:////nonexistent-dir/warden.db")
        try:
            with pytest.raises(StorageFailureError) as exc_info:
                await SqlAlchemyGrantStore(broken).load_all()
            assert exc_info.value.error_code == "STORAGE_FAILURE"
        finally:
            await broken.dispose()
