"""Plugin runtime state rows."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from .base import Base, _utc_now


class PluginStateRecord(Base):
    """Runtime state of a registered plugin, keyed by plugin id."""

    __tablename__ = "plugin_states"

    plugin_id = Column(String(64), primary_key=True)
    status = Column(String(16), nullable=False, default="registered")
    is_enabled = Column(Boolean, nullable=False, default=False)
    is_collecting = Column(Boolean, nullable=False, default=False)
    error_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_collection_time = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    def __repr__(self) -> str:
        return f"<PluginStateRecord(plugin_id={self.plugin_id}, status={self.status})>"
