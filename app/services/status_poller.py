"""
Status Poller - Read-triggered promotion of provisioning services.

Runs on every user-state read; there is no background scheduler. A server that
comes up after its subscription was deleted is suspended right away. Only the
provisioning status and credentials are written, never billing fields.
"""

from dataclasses import replace

from structlog import get_logger

from app.exceptions import DatabaseError, ProvisioningProviderError
from app.models.api import ProvisioningStatus, SubscriptionStatus
from app.models.domain import Credentials, ServiceView
from app.observability.metrics import metrics
from app.services.provisioning_provider import ProvisioningProvider
from app.services.service_store import ServiceStore

logger = get_logger(__name__)

DEFAULT_USERNAME = "Administrator"


class StatusPoller:
    """Promotes provisioning services to active once the provider reports them ready."""

    def __init__(self, store: ServiceStore, provider: ProvisioningProvider) -> None:
        self.store = store
        self.provider = provider

    async def poll(self, services: list[ServiceView]) -> list[ServiceView]:
        """
        Poll every service still provisioning.

        Returns:
            The list in the same order, with promoted services replaced by
            their active version. Failures leave a service unchanged.
        """
        return [await self.poll_one(service) for service in services]

    async def poll_one(self, service: ServiceView) -> ServiceView:
        """Poll one service; a no-op unless it is provisioning with an instance id."""
        if (
            service.provisioning_status != ProvisioningStatus.PROVISIONING
            or not service.provider_instance_id
        ):
            return service

        try:
            status = await self.provider.fetch_status(service.provider_instance_id)
        except ProvisioningProviderError as exc:
            logger.warning(
                "status_poll_failed",
                service_id=service.service_id,
                instance_id=service.provider_instance_id,
                error=exc.message,
                classification=exc.classification,
            )
            metrics.record_poller_check("error")
            return service

        if not status.ready or not status.address:
            metrics.record_poller_check("not_ready")
            return service

        credentials = Credentials(
            host_address=status.address,
            username=status.username or DEFAULT_USERNAME,
            secret=status.secret or "",
        )
        try:
            promoted = await self.store.advance_provisioning(
                service, ProvisioningStatus.ACTIVE, credentials=credentials
            )
        except DatabaseError as exc:
            logger.warning("status_promotion_failed", service_id=service.service_id, error=str(exc))
            metrics.record_poller_check("error")
            return service

        if not promoted:
            # Another writer moved the service on first
            metrics.record_poller_check("superseded")
            return service

        logger.info(
            "service_became_active",
            service_id=service.service_id,
            instance_id=service.provider_instance_id,
            host_address=credentials.host_address,
        )
        active = replace(
            service, provisioning_status=ProvisioningStatus.ACTIVE, credentials=credentials
        )
        if service.subscription_status == SubscriptionStatus.CANCELED:
            return await self._suspend_canceled(active)

        metrics.record_poller_check("promoted")
        return active

    async def _suspend_canceled(self, service: ServiceView) -> ServiceView:
        """Suspend a server that came up after its subscription was deleted."""
        try:
            suspended = await self.store.advance_provisioning(
                service, ProvisioningStatus.SUSPENDED
            )
        except DatabaseError as exc:
            logger.error(
                "canceled_service_suspension_failed",
                service_id=service.service_id,
                error=str(exc),
            )
            metrics.record_poller_check("error")
            return service

        if not suspended:
            metrics.record_poller_check("superseded")
            return service

        logger.info(
            "canceled_service_suspended",
            service_id=service.service_id,
            instance_id=service.provider_instance_id,
        )
        metrics.record_poller_check("suspended")
        return replace(service, provisioning_status=ProvisioningStatus.SUSPENDED)
