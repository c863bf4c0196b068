"""
Composition root.

Builds the registry, ledger, monitor, gateway and lifecycle controller from
one ``Settings`` object and wires them together. There is no module-level
state: every consumer receives the collaborators it needs from here.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .core.config import Settings, get_settings_instance
from .core.database import Database
from .core.logging import get_logger, setup_logging
from .data.store import DataStore, InMemoryDataStore, SqlAlchemyDataStore
from .plugins.lifecycle import PluginLifecycleController
from .plugins.loader import ManifestLoader
from .plugins.registry import PluginRegistry
from .plugins.state import InMemoryStateStore, SqlAlchemyStateStore, StateStore
from .security.gateway import SecureDataGateway
from .security.grant_store import GrantStore, InMemoryGrantStore, SqlAlchemyGrantStore
from .security.ledger import PermissionLedger
from .security.monitor import AuditSink, SecurityMonitor, StructlogAuditSink
from .security.os_permissions import OsPermissionBridge

logger = get_logger(__name__)


@dataclass
class Warden:
    settings: Settings
    registry: PluginRegistry
    monitor: SecurityMonitor
    ledger: PermissionLedger
    lifecycle: PluginLifecycleController
    gateway: SecureDataGateway
    data_store: DataStore
    grant_store: GrantStore
    state_store: StateStore
    loader: ManifestLoader
    database: Database | None = None

    async def start(self, *, discover: bool = True) -> None:
        """Create tables, register discovered plugins and load persisted state."""
        if self.database is not None:
            await self.database.init_schema()
        if discover:
            await self.loader.register_discovered(self.lifecycle)
        await self.ledger.hydrate()
        await self.lifecycle.hydrate()
        logger.info("Warden started with %d plugins", len(self.registry))

    async def close(self) -> None:
        if self.database is not None:
            await self.database.dispose()


def build_warden(
    settings: Settings | None = None,
    *,
    data_store: DataStore | None = None,
    grant_store: GrantStore | None = None,
    state_store: StateStore | None = None,
    os_bridge: OsPermissionBridge | None = None,
    sinks: tuple[AuditSink, ...] | None = None,
    plugins_dir: Path | None = None,
    configure_logging: bool = True,
) -> Warden:
    """Wire a complete Warden instance.

    Stores not passed in explicitly are SQL-backed when ``database_url`` is
    set and in-memory otherwise.
    """
    settings = settings or get_settings_instance()
    if configure_logging:
        setup_logging(settings)

    database = Database(settings.database_url) if settings.database_url else None
    if database is not None:
        data_store = data_store or SqlAlchemyDataStore(
            database, poll_interval_seconds=settings.store_poll_interval_seconds
        )
        grant_store = grant_store or SqlAlchemyGrantStore(database)
        state_store = state_store or SqlAlchemyStateStore(database)
    else:
        data_store = data_store or InMemoryDataStore()
        grant_store = grant_store or InMemoryGrantStore()
        state_store = state_store or InMemoryStateStore()

    registry = PluginRegistry()
    monitor = SecurityMonitor(settings, sinks=(StructlogAuditSink(),) if sinks is None else sinks)
    ledger = PermissionLedger(grant_store, registry.manifest_of, monitor.record)
    lifecycle = PluginLifecycleController(
        registry,
        ledger,
        state_store,
        monitor.record,
        settings=settings,
        os_bridge=os_bridge,
    )
    gateway = SecureDataGateway(
        data_store,
        ledger,
        registry.manifest_of,
        monitor.record,
        settings=settings,
        is_enabled=lifecycle.is_enabled,
    )
    return Warden(
        settings=settings,
        registry=registry,
        monitor=monitor,
        ledger=ledger,
        lifecycle=lifecycle,
        gateway=gateway,
        data_store=data_store,
        grant_store=grant_store,
        state_store=state_store,
        loader=ManifestLoader(plugins_dir=plugins_dir, settings=settings),
        database=database,
    )
