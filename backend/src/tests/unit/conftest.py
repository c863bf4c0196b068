"""
Shared pytest fixtures and path setup for unit tests.
"""

import sys
from pathlib import Path

# Add backend/src to sys.path so warden.* imports work when running pytest from repo root.
PROJECT_SRC = Path(__file__).resolve().parents[2]
if str(PROJECT_SRC) not in sys.path:
    sys.path.insert(0, str(PROJECT_SRC))

import pytest

from warden.container import build_warden
from warden.core.config import Settings
from warden.data.data_point import new_data_point
from warden.security.manifest import TrustLevel


@pytest.fixture
def settings():
    """Default settings, independent of the developer's environment and .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def warden(settings, tmp_path):
    """A fully wired in-memory Warden with no discovered plugins and no audit sinks."""
    return build_warden(settings, sinks=(), plugins_dir=tmp_path, configure_logging=False)


@pytest.fixture
def register_plugin(warden):
    """Register a plugin through the lifecycle controller.

    Usage: ``await register_plugin("water", ["COLLECT_DATA"], TrustLevel.OFFICIAL)``
    """

    async def _register(plugin_id, capabilities, trust=TrustLevel.COMMUNITY, **manifest):
        security = {"requested_capabilities": list(capabilities), **manifest}
        return await warden.lifecycle.register(plugin_id, plugin_id.title(), "1.0.0", trust, security)

    return _register


@pytest.fixture
def make_point():
    def _make(plugin_id, type="entry", **values):
        return new_data_point(plugin_id, type, values or {"amount": 1})

    return _make


def events_of(warden, event_type, plugin_id=None):
    """Events of ``event_type`` in the monitor trail, optionally for one plugin."""
    events = warden.monitor.log() if plugin_id is None else warden.monitor.events_for(plugin_id)
    return [e for e in events if isinstance(e, event_type)]


@pytest.fixture
def events():
    return events_of
