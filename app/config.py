"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Deployment environment (production disables placeholder provisioning)
    environment: str = PRODUCTION

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "VPS Billing API"
    api_version: str = "0.1.0"
    api_description: str = "Subscription billing and VPS provisioning reconciliation"

    # Browser origins allowed to call the API; empty disables CORS responses
    cors_allow_origins: list[str] = []

    # Session tokens issued by the login flow (HS256)
    session_jwt_secret: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "vps-billing-api"

    # Payment Processor - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_timeout_seconds: float = 15.0

    # Provisioning Provider
    provisioning_provider: str = "http"  # http or placeholder
    provider_api_url: str = "https://api.cloudzy.com/developers/v1"
    provider_api_token: str = ""
    provider_timeout_seconds: float = 30.0
    provider_os_id: str = "5804e78eb6225097297da141deb78b3910fc1e3556c8fc3f85d634907bf7416d"
    provider_app_id: str = "cbfe4063d84e0e56f21d938e9605e095cba44b98d44f7e24998ffd9af777c155"
    # Non-production only: synthesize placeholder instances on transient create failures
    provider_placeholder_fallback: bool = False
    placeholder_ready_after_seconds: int = 60

    # Orders without a location are placed here
    default_location: str = "london"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        """True when running with production safeguards."""
        return self.environment.lower() == PRODUCTION

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing, or if a
        placeholder provisioning mode is enabled in production.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.provisioning_provider not in ("http", "placeholder"):
            errors.append(
                f"PROVISIONING_PROVIDER must be 'http' or 'placeholder', "
                f"got: {self.provisioning_provider}"
            )

        if self.is_production:
            if self.provisioning_provider == "placeholder":
                errors.append("PROVISIONING_PROVIDER=placeholder is not allowed in production")
            if self.provider_placeholder_fallback:
                errors.append("PROVIDER_PLACEHOLDER_FALLBACK is not allowed in production")

        if self.provisioning_provider == "http" and not self.provider_api_url:
            errors.append("PROVIDER_API_URL is required for the http provisioning provider")

        # If we have errors, fail immediately with clear messaging
        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
