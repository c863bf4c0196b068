"""Security manifests and trust levels.

A plugin declares, once at registration, everything it wants to do: the
capabilities it requests, how sensitive its data is, which data scopes it
reads, and how long its data is retained. The manifest is immutable; a
contradictory declaration fails construction with a ``ValueError`` which the
registry reports as a ``ConfigurationError``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .capabilities import Capability, RiskTier, parse_capabilities, risk_of


class TrustLevel(str, Enum):
    """Provenance of a plugin, highest trust first."""

    OFFICIAL = "OFFICIAL"  # Created by the app developers
    VERIFIED = "VERIFIED"  # Community reviewed and signed
    COMMUNITY = "COMMUNITY"  # Basic checks passed
    UNTRUSTED = "UNTRUSTED"  # No verification
    QUARANTINED = "QUARANTINED"  # Under review for suspicious behavior
    BLOCKED = "BLOCKED"  # Known malicious or policy violation

    @property
    def rank(self) -> int:
        return _TRUST_RANK[self]

    @property
    def auto_grants(self) -> bool:
        """Whether requested capabilities are granted without a consent step."""
        return self is TrustLevel.OFFICIAL

    @property
    def can_enable(self) -> bool:
        return self not in (TrustLevel.BLOCKED, TrustLevel.QUARANTINED)

    def at_least(self, other: TrustLevel) -> bool:
        return self.rank >= other.rank


_TRUST_RANK = {
    TrustLevel.BLOCKED: 0,
    TrustLevel.QUARANTINED: 1,
    TrustLevel.UNTRUSTED: 2,
    TrustLevel.COMMUNITY: 3,
    TrustLevel.VERIFIED: 4,
    TrustLevel.OFFICIAL: 5,
}


class DataSensitivity(str, Enum):
    NORMAL = "NORMAL"
    SENSITIVE = "SENSITIVE"
    PRIVATE = "PRIVATE"
    REGULATED = "REGULATED"


class DataAccessScope(str, Enum):
    OWN_DATA_ONLY = "OWN_DATA_ONLY"
    CATEGORY_DATA = "CATEGORY_DATA"
    ALL_DATA_READ = "ALL_DATA_READ"
    ALL_DATA_WRITE = "ALL_DATA_WRITE"
    USER_PROFILE = "USER_PROFILE"
    DEVICE_INFO = "DEVICE_INFO"
    LOCATION = "LOCATION"
    BIOMETRIC = "BIOMETRIC"
    EXPORT_DATA = "EXPORT_DATA"
    DELETE_DATA = "DELETE_DATA"


class DataRetentionPolicy(str, Enum):
    DEFAULT = "DEFAULT"  # Follow app defaults
    TEMPORARY = "TEMPORARY"  # Delete after session
    USER_CONTROLLED = "USER_CONTROLLED"  # User decides retention
    PERMANENT = "PERMANENT"  # Never auto-delete


# Sensitivity levels whose data must never leave the device
_RESTRICTED_SENSITIVITY = frozenset({DataSensitivity.PRIVATE, DataSensitivity.REGULATED})
_OFF_DEVICE_CAPABILITIES = frozenset({Capability.CLOUD_STORAGE, Capability.SHARE_DATA})

# data type name -> scope that must be declared to access it
_DATA_TYPE_SCOPES = {
    "location": DataAccessScope.LOCATION,
    "biometric": DataAccessScope.BIOMETRIC,
    "profile": DataAccessScope.USER_PROFILE,
    "device": DataAccessScope.DEVICE_INFO,
}


class SecurityManifest(BaseModel):
    """Immutable declaration of what a plugin may access and do."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    requested_capabilities: frozenset[Capability] = Field(default_factory=frozenset)
    data_sensitivity: DataSensitivity = DataSensitivity.NORMAL
    network_domains: tuple[str, ...] = ()
    data_access: frozenset[DataAccessScope] = Field(default_factory=lambda: frozenset({DataAccessScope.OWN_DATA_ONLY}))
    signature: str | None = None
    privacy_policy: str | None = None
    data_retention: DataRetentionPolicy = DataRetentionPolicy.DEFAULT

    @field_validator("requested_capabilities", mode="before")
    @classmethod
    def _parse_capabilities(cls, v: Any) -> frozenset[Capability]:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        return parse_capabilities(v)

    @field_validator("network_domains", mode="before")
    @classmethod
    def _normalize_domains(cls, v: Any) -> tuple[str, ...]:
        if not v:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(sorted({str(d).strip().lower() for d in v if str(d).strip()}))

    @model_validator(mode="after")
    def _check_consistency(self) -> SecurityManifest:
        problems = manifest_problems(self)
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def requests(self, capability: Capability) -> bool:
        return capability in self.requested_capabilities

    def high_risk_capabilities(self, threshold: RiskTier = RiskTier.HIGH) -> frozenset[Capability]:
        return frozenset(c for c in self.requested_capabilities if risk_of(c) >= threshold)


def manifest_problems(manifest: SecurityManifest) -> list[str]:
    """Return every contradiction in ``manifest`` (empty when consistent)."""
    problems: list[str] = []
    caps = manifest.requested_capabilities
    scopes = manifest.data_access

    if manifest.data_sensitivity in _RESTRICTED_SENSITIVITY:
        leaking = sorted(c.value for c in caps & _OFF_DEVICE_CAPABILITIES)
        if leaking:
            problems.append(
                f"{manifest.data_sensitivity.value} data cannot be combined with {', '.join(leaking)}"
            )

    if DataAccessScope.OWN_DATA_ONLY in scopes:
        if Capability.READ_ALL_DATA in caps:
            problems.append("OWN_DATA_ONLY scope contradicts READ_ALL_DATA capability")
        broad = sorted(s.value for s in scopes & {DataAccessScope.ALL_DATA_READ, DataAccessScope.ALL_DATA_WRITE})
        if broad:
            problems.append(f"OWN_DATA_ONLY scope contradicts {', '.join(broad)}")

    if DataAccessScope.ALL_DATA_READ in scopes and Capability.READ_ALL_DATA not in caps:
        problems.append("ALL_DATA_READ scope requires READ_ALL_DATA capability")
    if DataAccessScope.ALL_DATA_WRITE in scopes and Capability.MODIFY_DATA not in caps:
        problems.append("ALL_DATA_WRITE scope requires MODIFY_DATA capability")

    if manifest.network_domains and Capability.NETWORK_ACCESS not in caps:
        problems.append("network_domains declared without NETWORK_ACCESS capability")

    return problems


def requires_explicit_consent(capability: Capability, threshold: RiskTier = RiskTier.HIGH) -> bool:
    """True when ``capability`` is risky enough to need an explicit user grant."""
    return risk_of(capability) >= threshold


def can_access_data_type(manifest: SecurityManifest, data_type: str) -> bool:
    """Whether ``manifest`` declares the scope guarding ``data_type``.

    Data types without a dedicated scope are always accessible.
    """
    scope = _DATA_TYPE_SCOPES.get(data_type.strip().lower())
    return scope is None or scope in manifest.data_access
