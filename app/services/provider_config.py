"""
Provider Configuration - Builds the process-wide provider clients from settings.

Called once from the application lifespan; the clients are stored on
app.state and injected into each request's services.
"""

from structlog import get_logger

from app.config import ConfigurationError, Settings
from app.services.cloud_provider import CloudProvider
from app.services.placeholder_provider import FallbackProvider, PlaceholderProvider
from app.services.provisioning_provider import ProvisioningProvider
from app.services.stripe_provider import StripeProvider

logger = get_logger(__name__)


def build_provisioning_provider(settings: Settings) -> ProvisioningProvider:
    """
    Select the provisioning backend.

    Raises:
        ConfigurationError: If a placeholder mode is requested in production
    """
    placeholder_requested = (
        settings.provisioning_provider == "placeholder" or settings.provider_placeholder_fallback
    )
    if placeholder_requested and settings.is_production:
        raise ConfigurationError("Placeholder provisioning is not allowed in production")

    if settings.provisioning_provider == "placeholder":
        logger.warning(
            "placeholder_provisioning_enabled",
            environment=settings.environment,
            ready_after_seconds=settings.placeholder_ready_after_seconds,
        )
        return PlaceholderProvider(settings.placeholder_ready_after_seconds)

    cloud = CloudProvider(
        api_url=settings.provider_api_url,
        api_token=settings.provider_api_token,
        timeout_seconds=settings.provider_timeout_seconds,
        os_id=settings.provider_os_id,
        app_id=settings.provider_app_id or None,
    )
    if settings.provider_placeholder_fallback:
        logger.warning("placeholder_fallback_enabled", environment=settings.environment)
        placeholder = PlaceholderProvider(settings.placeholder_ready_after_seconds)
        return FallbackProvider(cloud, placeholder)

    logger.info("cloud_provisioning_enabled", api_url=settings.provider_api_url)
    return cloud


def build_payment_processor(settings: Settings) -> StripeProvider:
    """Create the Stripe client."""
    if not settings.stripe_api_key:
        logger.warning("stripe_api_key_missing")
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.stripe_timeout_seconds,
    )
