from __future__ import annotations

"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for all service configuration.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: BILLING__INTENT_TTL_MINUTES=30
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("creatorhub-subscriptions", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    host: str = Field(
        "0.0.0.0", description="Server host"
    )  # nosec B104 - Production deployments use proxy
    port: int = Field(8000, description="Server port")

    secret_key: str = Field("change-me-in-production", description="Secret key for signing")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full async database URL")
        host: str = Field("localhost", description="Database host")
        port: int = Field(5432, description="Database port")
        database: str = Field("creatorhub", description="Database name")
        username: str = Field("creatorhub", description="Database username")
        password: str = Field("", description="Database password")

        # Connection pool
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")
        auto_create_tables: bool = Field(
            False, description="Create missing tables at application startup"
        )

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # JWT & Authentication
    # ============================================================

    class JWTSettings(BaseModel):
        """JWT configuration."""

        secret_key: str = Field("change-me", description="JWT secret key")
        algorithm: str = Field("HS256", description="JWT algorithm")
        access_token_expire_minutes: int = Field(30, description="Access token expiration")
        issuer: str = Field("creatorhub", description="JWT issuer")

    jwt: JWTSettings = JWTSettings()  # type: ignore[call-arg]

    # ============================================================
    # CORS Configuration
    # ============================================================

    class CORSSettings(BaseModel):
        """CORS configuration."""

        enabled: bool = Field(True, description="Enable CORS")
        origins: list[str] = Field(
            default_factory=lambda: [
                "http://localhost:3000",
                "http://localhost:5173",
                "http://127.0.0.1:3000",
            ],
            description="Allowed origins for CORS",
        )
        credentials: bool = Field(True, description="Allow credentials")

    cors: CORSSettings = CORSSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Observability configuration."""

        # Logging
        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_correlation_ids: bool = Field(True, description="Enable correlation IDs")
        correlation_id_header: str = Field("X-Correlation-ID", description="Correlation ID header")

        # OpenTelemetry
        otel_enabled: bool = Field(False, description="Enable OpenTelemetry export")
        otel_endpoint: str | None = Field(
            "http://localhost:4318", description="OTLP HTTP endpoint base URL"
        )
        otel_service_name: str = Field("creatorhub-subscriptions", description="Service name")
        otel_resource_attributes: dict[str, str] = Field(
            default_factory=dict, description="Resource attributes"
        )
        otel_instrument_fastapi: bool = Field(
            True, description="Enable FastAPI instrumentation when OTEL is enabled"
        )
        otel_instrument_sqlalchemy: bool = Field(
            True, description="Enable SQLAlchemy instrumentation when OTEL is enabled"
        )

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Subscription billing
    # ============================================================

    class BillingSettings(BaseModel):
        """Subscription lifecycle configuration."""

        default_currency: str = Field("USD", description="Default currency for creator prices")
        default_interval: str = Field("month", description="Default billing interval")
        payment_method: str = Field("paypal", description="Payment method recorded on subscriptions")

        # Intent handling
        intent_ttl_minutes: int = Field(15, description="Lifetime of an unapproved intent")
        intent_sweep_interval_seconds: int = Field(
            300, description="Interval of the optional expired-intent sweep (0 disables it)"
        )
        intent_retention_minutes: int = Field(
            1440, description="How long expired intents are kept for late processor approvals"
        )

        # Processor calls
        processor: str = Field("paypal", description="Processor gateway (paypal or memory)")
        processor_timeout_seconds: float = Field(10.0, description="Processor request timeout")

        # Optimistic concurrency
        max_conflict_retries: int = Field(
            3, description="Attempts before a lost version race surfaces as a conflict"
        )
        conflict_retry_wait_seconds: float = Field(
            0.05, description="Initial wait between conflict retries"
        )
        operation_claim_timeout_seconds: int = Field(
            60, description="Age after which an in-flight lifecycle claim is considered stale"
        )

        # Client polling
        status_poll_interval_seconds: float = Field(
            5.0, description="Interval used by status polling sessions"
        )

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    class PayPalSettings(BaseModel):
        """PayPal processor credentials (loaded from the environment or a secrets store)."""

        client_id: str = Field("", description="PayPal client ID")
        client_secret: str = Field("", description="PayPal client secret")
        mode: str = Field("sandbox", description="PayPal environment (sandbox/live)")
        webhook_id: str = Field("", description="PayPal webhook ID for signature verification")
        default_plan_id: str = Field("", description="Fallback PayPal plan ID")
        brand_name: str = Field("CreatorHub", description="Brand shown on the approval page")
        return_url: str = Field(
            "http://localhost:3000/payment/success", description="Approval return URL"
        )
        cancel_url: str = Field(
            "http://localhost:3000/payment/cancel", description="Approval cancel URL"
        )

    paypal: PayPalSettings = PayPalSettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Any:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info: Any) -> str:
        """Validate secret key."""
        if (
            v == "change-me-in-production"
            and info.data.get("environment") == Environment.PRODUCTION
        ):
            raise ValueError("Secret key must be changed in production")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
