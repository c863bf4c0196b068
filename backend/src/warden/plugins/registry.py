"""
Plugin registry.

Holds the descriptor (identity, trust level, security manifest) of every
registered plugin. A plugin whose declaration is invalid never makes it in.
The registry is an explicitly constructed object owned by the composition
root; reads go against an immutable mapping swapped on every change.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from ..core.exceptions import ConfigurationError, PluginNotFoundError
from ..core.logging import get_logger
from ..security.manifest import SecurityManifest, TrustLevel

logger = get_logger(__name__)

PLUGIN_ID_PATTERN = re.compile(r"^[a-z0-9_-]{2,64}$")


@dataclass(frozen=True)
class PluginDescriptor:
    plugin_id: str
    name: str
    version: str
    trust_level: TrustLevel
    manifest: SecurityManifest
    description: str = ""


def _validation_messages(e: ValidationError) -> list[str]:
    return [str(err.get("msg", "")).removeprefix("Value error, ") for err in e.errors()]


def build_manifest(plugin_id: str, manifest: SecurityManifest | Mapping[str, Any] | None) -> SecurityManifest:
    """Validate a manifest declaration, raising ``ConfigurationError`` on any problem."""
    if isinstance(manifest, SecurityManifest):
        return manifest
    try:
        return SecurityManifest.model_validate(dict(manifest or {}))
    except ValidationError as e:
        problems = _validation_messages(e)
        raise ConfigurationError(
            f"Invalid security manifest for '{plugin_id}': {'; '.join(problems)}",
            plugin_id=plugin_id,
            details={"problems": problems},
        ) from e


class PluginRegistry:
    def __init__(self) -> None:
        self._plugins: Mapping[str, PluginDescriptor] = MappingProxyType({})
        self._lock = threading.Lock()

    def register(
        self,
        plugin_id: str,
        name: str,
        version: str,
        trust_level: TrustLevel | str,
        manifest: SecurityManifest | Mapping[str, Any] | None,
        *,
        description: str = "",
    ) -> PluginDescriptor:
        """Add a plugin, or raise ``ConfigurationError`` and leave the registry unchanged."""
        if not isinstance(plugin_id, str) or not PLUGIN_ID_PATTERN.match(plugin_id):
            raise ConfigurationError(
                f"Invalid plugin id {plugin_id!r}: expected 2-64 chars of [a-z0-9_-]",
                plugin_id=str(plugin_id),
            )
        try:
            trust = TrustLevel(str(getattr(trust_level, "value", trust_level)).upper())
        except ValueError:
            raise ConfigurationError(f"Unknown trust level {trust_level!r}", plugin_id=plugin_id) from None

        descriptor = PluginDescriptor(
            plugin_id=plugin_id,
            name=name or plugin_id,
            version=str(version or "0"),
            trust_level=trust,
            manifest=build_manifest(plugin_id, manifest),
            description=description,
        )
        with self._lock:
            if plugin_id in self._plugins:
                raise ConfigurationError(f"Plugin '{plugin_id}' is already registered", plugin_id=plugin_id)
            self._plugins = MappingProxyType({**self._plugins, plugin_id: descriptor})
        logger.info(
            "Registered plugin %s v%s (trust=%s, capabilities=%d)",
            plugin_id,
            descriptor.version,
            trust.value,
            len(descriptor.manifest.requested_capabilities),
        )
        return descriptor

    def unregister(self, plugin_id: str) -> bool:
        with self._lock:
            if plugin_id not in self._plugins:
                return False
            remaining = dict(self._plugins)
            del remaining[plugin_id]
            self._plugins = MappingProxyType(remaining)
        logger.info("Unregistered plugin %s", plugin_id)
        return True

    def set_trust_level(self, plugin_id: str, trust_level: TrustLevel) -> PluginDescriptor:
        with self._lock:
            current = self._plugins.get(plugin_id)
            if current is None:
                raise PluginNotFoundError(plugin_id)
            updated = replace(current, trust_level=trust_level)
            self._plugins = MappingProxyType({**self._plugins, plugin_id: updated})
        logger.warning("Trust level of plugin %s changed: %s -> %s", plugin_id, current.trust_level.value, trust_level.value)
        return updated

    def get(self, plugin_id: str) -> PluginDescriptor | None:
        return self._plugins.get(plugin_id)

    def require(self, plugin_id: str) -> PluginDescriptor:
        descriptor = self._plugins.get(plugin_id)
        if descriptor is None:
            raise PluginNotFoundError(plugin_id)
        return descriptor

    def manifest_of(self, plugin_id: str) -> SecurityManifest | None:
        descriptor = self._plugins.get(plugin_id)
        return descriptor.manifest if descriptor is not None else None

    def ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._plugins))

    def all(self) -> tuple[PluginDescriptor, ...]:
        plugins = self._plugins
        return tuple(plugins[pid] for pid in sorted(plugins))

    def __contains__(self, plugin_id: object) -> bool:
        return plugin_id in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)
