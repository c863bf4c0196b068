"""Typed success/failure results for mutating security operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from ..core.exceptions import WardenException

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Either a value or a ``WardenException``, never both."""

    value: T | None = None
    error: WardenException | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> OperationResult[T]:
        return cls(value=value)

    @classmethod
    def err(cls, error: WardenException) -> OperationResult[T]:
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> str | None:
        return self.error.error_code if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __bool__(self) -> bool:
        return self.is_ok
