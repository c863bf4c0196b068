"""Custom exceptions for Warden.

Every failure the authorization layer reports is a ``WardenException`` with a
stable ``error_code`` so callers can branch without parsing messages.
"""

from typing import Any


class WardenException(Exception):
    """Base exception class for Warden."""

    def __init__(
        self,
        message: str,
        error_code: str,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message, "details": dict(self.details)}


class PermissionDeniedError(WardenException):
    """Raised when a plugin lacks the capability an operation requires.

    Recoverable: granting the capability and retrying will succeed.
    """

    def __init__(self, plugin_id: str, capability: Any, reason: str | None = None):
        self.plugin_id = plugin_id
        self.capability = capability
        cap_name = getattr(capability, "value", capability)
        super().__init__(
            message=reason or f"Plugin '{plugin_id}' is missing capability '{cap_name}'",
            error_code="PERMISSION_DENIED",
            details={"plugin_id": plugin_id, "capability": cap_name},
        )


class OwnershipViolationError(WardenException):
    """Raised when a plugin writes or deletes data it does not own.

    Always fatal for the call, whatever capabilities the plugin holds.
    """

    def __init__(self, plugin_id: str, owner_ids: list[str] | str, operation: str):
        self.plugin_id = plugin_id
        self.owner_ids = [owner_ids] if isinstance(owner_ids, str) else sorted(set(owner_ids))
        self.operation = operation
        super().__init__(
            message=(
                f"Plugin '{plugin_id}' attempted to {operation} data owned by "
                f"{', '.join(repr(o) for o in self.owner_ids)}"
            ),
            error_code="OWNERSHIP_VIOLATION",
            details={"plugin_id": plugin_id, "owner_ids": self.owner_ids, "operation": operation},
        )


class SecurityViolationError(WardenException):
    """Raised for a generic policy breach (rate limit, blocked plugin, ...)."""

    def __init__(self, plugin_id: str, kind: str, detail: str):
        self.plugin_id = plugin_id
        self.kind = kind
        super().__init__(
            message=f"Security violation by plugin '{plugin_id}' ({kind}): {detail}",
            error_code="SECURITY_VIOLATION",
            details={"plugin_id": plugin_id, "kind": kind, "detail": detail},
        )


class ConfigurationError(WardenException):
    """Raised when a manifest or capability request is inconsistent.

    At registration time this excludes the plugin from the registry.
    """

    def __init__(self, message: str, plugin_id: str | None = None, details: dict[str, Any] | None = None):
        self.plugin_id = plugin_id
        merged = {"plugin_id": plugin_id}
        merged.update(details or {})
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=merged,
        )


class PluginNotFoundError(WardenException):
    """Raised when an operation names a plugin that is not registered."""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(
            message=f"Plugin '{plugin_id}' is not registered",
            error_code="PLUGIN_NOT_FOUND",
            details={"plugin_id": plugin_id},
        )


class StorageFailureError(WardenException):
    """Wraps a failure from an external store. Not a security failure."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        reason = str(cause) if cause is not None else "unknown error"
        super().__init__(
            message=f"Storage operation '{operation}' failed: {reason}",
            error_code="STORAGE_FAILURE",
            details={"operation": operation, "cause_type": type(cause).__name__ if cause else None},
        )


class ValueValidationError(WardenException):
    """Raised when a data value or data point is malformed."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(
            message=message,
            error_code="VALUE_VALIDATION_ERROR",
            details={"field": field},
        )
