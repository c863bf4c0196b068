"""
Base model class for Warden.

This module provides the base model class with common functionality
for all database models.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_mixin

# Import Base from the database module to avoid duplicate declarations
from ..core.database import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@declarative_mixin
class TimestampMixin:
    """Mixin for adding timestamp columns to models."""

    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False)


@declarative_mixin
class UUIDMixin:
    """Mixin for adding UUID primary key to models."""

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))


class BaseModel(Base, TimestampMixin, UUIDMixin):
    """Base model class with common functionality."""

    __abstract__ = True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"
