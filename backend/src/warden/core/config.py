"""Configuration management for Warden.

Uses Pydantic Settings for type-safe, environment-based configuration.
Components receive a ``Settings`` instance from the composition root; the
process-wide instance from ``get_settings_instance()`` is only the default.
"""

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..security.capabilities import RiskTier

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # App configuration
    app_name: str = Field("Warden", alias="WARDEN_APP_NAME")
    environment: str = Field("development", alias="WARDEN_ENVIRONMENT")

    # Logging configuration
    log_level: str = Field("INFO", alias="WARDEN_LOG_LEVEL")
    log_format: str = Field("text", alias="WARDEN_LOG_FORMAT")  # text or json
    # Unset means console only
    log_dir: str | None = Field(None, alias="WARDEN_LOG_DIR")

    # Durable stores. Unset means in-memory stores (data is lost on restart).
    database_url: str | None = Field(None, alias="WARDEN_DATABASE_URL")
    store_poll_interval_seconds: float = Field(2.0, alias="WARDEN_STORE_POLL_INTERVAL_SECONDS")

    # Consent policy
    consent_risk_threshold: RiskTier = Field(RiskTier.HIGH, alias="WARDEN_CONSENT_RISK_THRESHOLD")
    revoke_on_disable: bool = Field(False, alias="WARDEN_REVOKE_ON_DISABLE")

    # Security monitor
    monitor_event_window: int = Field(1000, alias="WARDEN_MONITOR_EVENT_WINDOW")
    anomaly_violation_threshold: int = Field(5, alias="WARDEN_ANOMALY_VIOLATION_THRESHOLD")
    anomaly_window_seconds: int = Field(60, alias="WARDEN_ANOMALY_WINDOW_SECONDS")
    quarantine_risk_score: int = Field(50, alias="WARDEN_QUARANTINE_RISK_SCORE")
    monitor_retention_days: int = Field(30, alias="WARDEN_MONITOR_RETENTION_DAYS")

    # Gateway
    gateway_require_enabled: bool = Field(False, alias="WARDEN_GATEWAY_REQUIRE_ENABLED")
    rate_limit_enabled: bool = Field(False, alias="WARDEN_RATE_LIMIT_ENABLED")
    rate_limit_window_seconds: int = Field(3600, alias="WARDEN_RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_reads: int = Field(1000, alias="WARDEN_RATE_LIMIT_READS")
    rate_limit_writes: int = Field(100, alias="WARDEN_RATE_LIMIT_WRITES")
    rate_limit_deletes: int = Field(100, alias="WARDEN_RATE_LIMIT_DELETES")

    # Plugin discovery
    plugins_root: str = Field("plugins", alias="WARDEN_PLUGINS_ROOT")

    @field_validator("consent_risk_threshold", mode="before")
    @classmethod
    def parse_risk_tier(cls, v: str | RiskTier) -> RiskTier:
        """Accept tier names in any case (e.g. ``high``)."""
        if isinstance(v, str):
            return RiskTier(v.strip().upper())
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = (v or "text").strip().lower()
        if fmt not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return fmt

    @field_validator(
        "monitor_event_window",
        "anomaly_violation_threshold",
        "anomaly_window_seconds",
        "monitor_retention_days",
        "rate_limit_window_seconds",
        "rate_limit_reads",
        "rate_limit_writes",
        "rate_limit_deletes",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        populate_by_name=True,
        extra="ignore",
    )


def get_settings() -> Settings:
    """Build a fresh settings instance from the environment."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance - will be created when first accessed
settings = None


def get_settings_instance() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global settings  # noqa: PLW0603
    if settings is None:
        settings = get_settings()
    return settings
