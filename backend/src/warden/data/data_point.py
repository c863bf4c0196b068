"""Data points: the unit of behavioral data a plugin collects."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from ..core.exceptions import ValueValidationError
from .values import VALUE_TYPES, DataValue, decode_payload, encode_payload, from_plain


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float
    accuracy: float | None = None

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueValidationError("latitude must be within [-90, 90]", field="latitude")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueValidationError("longitude must be within [-180, 180]", field="longitude")

    def to_dict(self) -> dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, "accuracy": self.accuracy}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> GeoLocation:
        return cls(float(raw["latitude"]), float(raw["longitude"]), raw.get("accuracy"))


@dataclass(frozen=True)
class DataPoint:
    """A single record, owned exclusively by the plugin named in ``plugin_id``."""

    id: str
    plugin_id: str
    type: str
    timestamp: datetime
    value: Mapping[str, DataValue] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)
    location: GeoLocation | None = None

    def __post_init__(self) -> None:
        for name in ("id", "plugin_id", "type"):
            if not getattr(self, name):
                raise ValueValidationError(f"DataPoint.{name} must not be empty", field=name)
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))
        for key, item in self.value.items():
            if not isinstance(item, VALUE_TYPES):
                raise ValueValidationError(
                    f"Field '{key}' must be a data value, got {type(item).__name__}", field=str(key)
                )
        object.__setattr__(self, "value", MappingProxyType(dict(self.value)))
        object.__setattr__(self, "metadata", MappingProxyType({str(k): str(v) for k, v in self.metadata.items()}))

    def with_metadata(self, **extra: str) -> DataPoint:
        merged = dict(self.metadata)
        merged.update(extra)
        return replace(self, metadata=merged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plugin_id": self.plugin_id,
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            "value": encode_payload(self.value),
            "metadata": dict(self.metadata),
            "location": self.location.to_dict() if self.location else None,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> DataPoint:
        location = raw.get("location")
        timestamp = raw["timestamp"]
        return cls(
            id=raw["id"],
            plugin_id=raw["plugin_id"],
            type=raw["type"],
            timestamp=datetime.fromisoformat(timestamp) if isinstance(timestamp, str) else timestamp,
            value=decode_payload(raw.get("value") or {}),
            metadata=raw.get("metadata") or {},
            location=GeoLocation.from_dict(location) if location else None,
        )


def new_data_point(
    plugin_id: str,
    type: str,
    value: Mapping[str, Any] | None = None,
    *,
    timestamp: datetime | None = None,
    metadata: Mapping[str, str] | None = None,
    location: GeoLocation | None = None,
) -> DataPoint:
    """Build a data point with a fresh id; plain payload values are converted."""
    return DataPoint(
        id=str(uuid.uuid4()),
        plugin_id=plugin_id,
        type=type,
        timestamp=timestamp or datetime.now(timezone.utc),
        value={name: from_plain(item) for name, item in (value or {}).items()},
        metadata=metadata or {},
        location=location,
    )
