"""
Typed data values.

Plugin payloads are maps from field name to one of a closed set of value
types. The JSON encoding is tagged (``{"type": "number", "value": 3}``) and
decoding rejects unknown tags, so every consumer can branch exhaustively.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from ..core.exceptions import ValueValidationError


@dataclass(frozen=True)
class NumberValue:
    value: float

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValueValidationError(f"NumberValue requires a number, got {type(self.value).__name__}")
        if not math.isfinite(self.value):
            raise ValueValidationError("NumberValue must be finite")


@dataclass(frozen=True)
class TextValue:
    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise ValueValidationError(f"TextValue requires a string, got {type(self.value).__name__}")


@dataclass(frozen=True)
class BoolValue:
    value: bool

    def __post_init__(self) -> None:
        if not isinstance(self.value, bool):
            raise ValueValidationError(f"BoolValue requires a bool, got {type(self.value).__name__}")


@dataclass(frozen=True)
class ChoiceValue:
    """One option picked from a fixed list; ``options`` may be empty when unknown."""

    value: str
    options: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise ValueValidationError(f"ChoiceValue requires a string, got {type(self.value).__name__}")
        object.__setattr__(self, "options", tuple(self.options))
        if self.options and self.value not in self.options:
            raise ValueValidationError(f"Choice '{self.value}' is not one of {list(self.options)}")


@dataclass(frozen=True)
class ListValue:
    items: tuple[DataValue, ...] = ()

    def __post_init__(self) -> None:
        items = tuple(self.items)
        for item in items:
            if not isinstance(item, VALUE_TYPES):
                raise ValueValidationError(f"ListValue items must be data values, got {type(item).__name__}")
        object.__setattr__(self, "items", items)


DataValue = Union[NumberValue, TextValue, BoolValue, ChoiceValue, ListValue]

VALUE_TYPES: tuple[type, ...] = (NumberValue, TextValue, BoolValue, ChoiceValue, ListValue)


def encode_value(value: DataValue) -> dict[str, Any]:
    if isinstance(value, NumberValue):
        return {"type": "number", "value": value.value}
    if isinstance(value, TextValue):
        return {"type": "text", "value": value.value}
    if isinstance(value, BoolValue):
        return {"type": "bool", "value": value.value}
    if isinstance(value, ChoiceValue):
        return {"type": "choice", "value": value.value, "options": list(value.options)}
    if isinstance(value, ListValue):
        return {"type": "list", "items": [encode_value(item) for item in value.items]}
    raise ValueValidationError(f"Cannot encode {type(value).__name__} as a data value")


def decode_value(raw: Any) -> DataValue:
    if not isinstance(raw, Mapping):
        raise ValueValidationError(f"Encoded data value must be an object, got {type(raw).__name__}")
    tag = raw.get("type")
    try:
        if tag == "number":
            return NumberValue(raw["value"])
        if tag == "text":
            return TextValue(raw["value"])
        if tag == "bool":
            return BoolValue(raw["value"])
        if tag == "choice":
            return ChoiceValue(raw["value"], tuple(raw.get("options") or ()))
        if tag == "list":
            return ListValue(tuple(decode_value(item) for item in raw.get("items") or ()))
    except KeyError as e:
        raise ValueValidationError(f"Encoded '{tag}' value is missing {e}", field=str(e.args[0])) from None
    raise ValueValidationError(f"Unknown data value type '{tag}'", field="type")


def encode_payload(payload: Mapping[str, DataValue]) -> dict[str, dict[str, Any]]:
    return {name: encode_value(value) for name, value in payload.items()}


def decode_payload(raw: Mapping[str, Any]) -> dict[str, DataValue]:
    if not isinstance(raw, Mapping):
        raise ValueValidationError("Encoded payload must be an object")
    out: dict[str, DataValue] = {}
    for name, value in raw.items():
        try:
            out[str(name)] = decode_value(value)
        except ValueValidationError as e:
            raise ValueValidationError(f"Field '{name}': {e.message}", field=str(name)) from e
    return out


def from_plain(obj: Any) -> DataValue:
    """Infer a data value from a plain Python value (bool, number, str, list)."""
    if isinstance(obj, VALUE_TYPES):
        return obj
    if isinstance(obj, bool):
        return BoolValue(obj)
    if isinstance(obj, (int, float)):
        return NumberValue(obj)
    if isinstance(obj, str):
        return TextValue(obj)
    if isinstance(obj, (list, tuple)):
        return ListValue(tuple(from_plain(item) for item in obj))
    raise ValueValidationError(f"Unsupported payload value of type {type(obj).__name__}")


def to_plain(value: DataValue) -> Any:
    """Strip the tags, e.g. for export formatting."""
    if isinstance(value, ListValue):
        return [to_plain(item) for item in value.items]
    if isinstance(value, VALUE_TYPES):
        return value.value
    raise ValueValidationError(f"Not a data value: {type(value).__name__}")
