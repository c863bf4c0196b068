"""
Database models for Warden.

SQLAlchemy models for the durable grant, plugin state, and data point stores.
"""

from .base import Base, BaseModel
from .data_point import DataPointRecord
from .permission_grant import PermissionGrantRecord
from .plugin_state import PluginStateRecord


def register_all_models() -> None:
    """Import side effect hook so ``Base.metadata`` knows every table."""
    return None


__all__ = [
    "Base",
    "BaseModel",
    "DataPointRecord",
    "PermissionGrantRecord",
    "PluginStateRecord",
    "register_all_models",
]
