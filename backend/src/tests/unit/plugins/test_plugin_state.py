"""
Tests for plugin runtime state persistence.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from warden.core.database import Database
from warden.plugins.state import (
    InMemoryStateStore,
    PluginRuntimeState,
    PluginStatus,
    SqlAlchemyStateStore,
    StateStore,
)

T0 = datetime(2026, 4, 2, 18, 45, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.init_schema()
    yield db
    await db.dispose()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def state_store(request, database):
    if request.param == "memory":
        return InMemoryStateStore()
    return SqlAlchemyStateStore(database)


def test_new_state_is_registered():
    state = PluginRuntimeState(plugin_id="water")
    assert state.status is PluginStatus.REGISTERED
    assert not state.is_enabled
    assert state.error_count == 0


class TestStateStores:
    @pytest.mark.asyncio
    async def test_implements_protocol(self, state_store):
        assert isinstance(state_store, StateStore)

    @pytest.mark.asyncio
    async def test_put_get_replace(self, state_store):
        await state_store.put(PluginRuntimeState(plugin_id="water", updated_at=T0))
        enabled = PluginRuntimeState(
            plugin_id="water",
            status=PluginStatus.ENABLED,
            is_enabled=True,
            is_collecting=True,
            last_collection_time=T0,
            updated_at=T0,
        )
        await state_store.put(enabled)
        assert await state_store.get("water") == enabled

    @pytest.mark.asyncio
    async def test_error_fields_survive(self, state_store):
        failed = PluginRuntimeState(
            plugin_id="water", status=PluginStatus.ERROR, error_count=2, last_error="disk full", updated_at=T0
        )
        await state_store.put(failed)
        loaded = await state_store.load_all()
        assert loaded == {"water": failed}

    @pytest.mark.asyncio
    async def test_remove(self, state_store):
        await state_store.put(PluginRuntimeState(plugin_id="water", updated_at=T0))
        await state_store.remove("water")
        await state_store.remove("water")
        assert await state_store.get("water") is None
        assert await state_store.load_all() == {}
