"""
Data package for Warden.

Typed data values, data points, and the data store backends the gateway
delegates to.
"""

from .data_point import DataPoint, GeoLocation, new_data_point
from .store import DataStore, InMemoryDataStore, SqlAlchemyDataStore
from .values import (
    BoolValue,
    ChoiceValue,
    DataValue,
    ListValue,
    NumberValue,
    TextValue,
    decode_payload,
    decode_value,
    encode_payload,
    encode_value,
)

__all__ = [
    "BoolValue",
    "ChoiceValue",
    "DataPoint",
    "DataStore",
    "DataValue",
    "GeoLocation",
    "InMemoryDataStore",
    "ListValue",
    "NumberValue",
    "SqlAlchemyDataStore",
    "TextValue",
    "decode_payload",
    "decode_value",
    "encode_payload",
    "encode_value",
    "new_data_point",
]
