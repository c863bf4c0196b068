"""
Manifest loader: discovers local plugins under <plugins_root>/* directories.
- Each plugin folder provides a manifest.py with a PLUGIN_MANIFEST dict:
  {"id": str, "name": str, "version": str, "trust_level": str,
   "security": {<SecurityManifest fields>}}
- Broken entries are logged and skipped; they never stop discovery.
"""
from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..core.config import Settings, get_settings_instance
from ..core.exceptions import WardenException
from ..security.manifest import TrustLevel

if TYPE_CHECKING:
    from .lifecycle import PluginLifecycleController

logger = logging.getLogger(__name__)


@dataclass
class ManifestEntry:
    plugin_id: str
    name: str
    version: str
    trust_level: str
    security: dict[str, Any]
    description: str = ""
    plugin_dir: Path | None = None


def _repo_root() -> Path:
    # Layout: <repo>/backend/src/warden/plugins/loader.py
    src_dir = Path(__file__).resolve().parents[2]
    candidate_parent = src_dir.parent
    return candidate_parent.parent if candidate_parent.name == "backend" else candidate_parent


class ManifestLoader:
    def __init__(self, *, plugins_dir: Path | None = None, settings: Settings | None = None):
        if plugins_dir is None:
            settings = settings or get_settings_instance()
            configured = Path(settings.plugins_root)
            # Resolve relative paths against repo root
            if not configured.is_absolute():
                configured = (_repo_root() / configured).resolve()
            plugins_dir = configured
        self.plugins_dir = Path(plugins_dir)
        logger.info("Manifest loader using plugins_dir=%s", self.plugins_dir)

    def _read_manifest(self, child: Path) -> dict[str, Any] | None:
        manifest_py = child / "manifest.py"
        module_name = f"warden_plugin_manifests.{child.name}"
        spec = importlib.util.spec_from_file_location(module_name, manifest_py)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load {manifest_py}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        m = getattr(module, "PLUGIN_MANIFEST", None)
        return m if isinstance(m, dict) else None

    def discover(self) -> dict[str, ManifestEntry]:
        entries: dict[str, ManifestEntry] = {}
        if not self.plugins_dir.exists():
            logger.warning("Plugins directory %s does not exist", self.plugins_dir)
            return entries
        for child in sorted(self.plugins_dir.iterdir()):
            if not child.is_dir() or not (child / "manifest.py").exists():
                continue
            try:
                m = self._read_manifest(child)
                if not m:
                    logger.warning("Skipping %s: no PLUGIN_MANIFEST dict", child.name)
                    continue
                plugin_id = m.get("id") or child.name
                if plugin_id in entries:
                    logger.warning("Skipping %s: duplicate plugin id %s", child.name, plugin_id)
                    continue
                entries[plugin_id] = ManifestEntry(
                    plugin_id=plugin_id,
                    name=m.get("name") or plugin_id,
                    version=str(m.get("version", "0")),
                    trust_level=str(m.get("trust_level") or TrustLevel.UNTRUSTED.value),
                    security=dict(m.get("security") or {}),
                    description=m.get("description") or "",
                    plugin_dir=child,
                )
            except Exception as e:  # noqa: BLE001
                logger.exception("Failed loading manifest for %s: %s", child.name, e)
        return entries

    async def register_discovered(self, lifecycle: PluginLifecycleController) -> list[str]:
        """Register every discovered plugin.

        Plugins that fail validation or whose runtime state cannot be stored
        are logged and excluded; the rest still register.
        """
        registered: list[str] = []
        for plugin_id, entry in self.discover().items():
            try:
                await lifecycle.register(
                    entry.plugin_id,
                    entry.name,
                    entry.version,
                    entry.trust_level,
                    entry.security,
                    description=entry.description,
                )
            except WardenException as e:
                logger.error("Excluding plugin %s: %s (%s)", plugin_id, e.message, e.error_code)
                continue
            registered.append(plugin_id)
        logger.info("Registered %d of discovered plugins: %s", len(registered), ", ".join(registered))
        return registered
