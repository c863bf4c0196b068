"""Data point rows for the SQL-backed data store."""

from sqlalchemy import JSON, Column, DateTime, Index, String

from .base import Base


class DataPointRecord(Base):
    """A single behavioral data point owned by ``plugin_id``.

    ``value`` holds the tagged JSON encoding produced by
    ``warden.data.values.encode_payload``.
    """

    __tablename__ = "data_points"

    id = Column(String(64), primary_key=True)
    plugin_id = Column(String(64), nullable=False, index=True)
    type = Column(String(64), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    value = Column(JSON, nullable=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    location = Column(JSON, nullable=True)

    __table_args__ = (Index("ix_data_points_plugin_timestamp", "plugin_id", "timestamp"),)

    def __repr__(self) -> str:
        return f"<DataPointRecord(id={self.id}, plugin_id={self.plugin_id}, type={self.type})>"
