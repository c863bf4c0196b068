"""Permission grant rows backing the durable grant store."""

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint

from .base import BaseModel


class PermissionGrantRecord(BaseModel):
    """One row per (plugin_id, capability).

    Revocation flips ``active`` to False instead of deleting the row so the
    grantor and grant time stay visible to the audit view.
    """

    __tablename__ = "permission_grants"

    plugin_id = Column(String(64), nullable=False, index=True)
    capability = Column(String(64), nullable=False)
    granted_by = Column(String(128), nullable=False)
    granted_at = Column(DateTime(timezone=True), nullable=False)
    active = Column(Boolean, nullable=False, default=True, index=True)

    __table_args__ = (UniqueConstraint("plugin_id", "capability", name="uq_permission_grant_plugin_capability"),)

    def __repr__(self) -> str:
        return (
            f"<PermissionGrantRecord(plugin_id={self.plugin_id}, capability={self.capability}, "
            f"active={self.active})>"
        )
