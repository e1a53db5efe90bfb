"""
Event Intake - Applies payment processor webhook events to service state.

Every handler is safe to run any number of times with the same event: the
processor redelivers until it gets a 2xx, and unknown kinds are acknowledged.
"""

from dataclasses import dataclass

from structlog import get_logger

from app.models.api import ProvisioningStatus, SubscriptionStatus
from app.models.domain import ServiceView
from app.observability.metrics import metrics
from app.services.payment_provider import (
    CheckoutCompleted,
    PaymentFailed,
    PaymentProcessor,
    ProcessorEvent,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from app.services.provisioning import ProvisioningOrchestrator, request_from_checkout
from app.services.schema_adapter import resolve_services
from app.services.service_store import ServiceStore
from app.services.subscription_sync import map_subscription_status

logger = get_logger(__name__)

SUBSCRIPTION_MODE = "subscription"


@dataclass(frozen=True)
class IntakeResult:
    """What an event did."""

    action: str
    service_id: str | None = None
    detail: str | None = None


class EventIntake:
    """Stateless handler for the four processor event kinds the service acts on."""

    def __init__(
        self,
        store: ServiceStore,
        orchestrator: ProvisioningOrchestrator,
        processor: PaymentProcessor,
        default_location: str,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.processor = processor
        self.default_location = default_location

    async def handle(self, event: ProcessorEvent) -> IntakeResult:
        """
        Apply one event.

        Raises:
            ValidationError: If a checkout event carries unusable order metadata
            NotFoundError: If a checkout event names an unknown user
        """
        if isinstance(event, CheckoutCompleted):
            result = await self._checkout_completed(event)
        elif isinstance(event, SubscriptionUpdated):
            result = await self._subscription_updated(event)
        elif isinstance(event, SubscriptionDeleted):
            result = await self._subscription_deleted(event)
        elif isinstance(event, PaymentFailed):
            result = await self._payment_failed(event)
        else:
            logger.info("webhook_event_ignored", event_id=event.event_id, event_type=event.kind)
            result = IntakeResult(action="ignored")

        metrics.record_webhook_event(event.kind, result.action)
        logger.info(
            "webhook_event_processed",
            event_id=event.event_id,
            event_type=event.kind,
            action=result.action,
            service_id=result.service_id,
        )
        return result

    async def _checkout_completed(self, event: CheckoutCompleted) -> IntakeResult:
        session = event.session
        if session.mode != SUBSCRIPTION_MODE or not session.billing_subscription_id:
            return IntakeResult(action="ignored", detail="not a subscription checkout")

        request = await request_from_checkout(session, self.processor, self.default_location)
        outcome = await self.orchestrator.provision(request)

        if not outcome.created:
            action = "already_provisioned"
        elif outcome.error:
            action = "provisioning_failed"
        else:
            action = "provisioned"
        return IntakeResult(
            action=action, service_id=outcome.service.service_id, detail=outcome.error
        )

    async def _subscription_updated(self, event: SubscriptionUpdated) -> IntakeResult:
        snapshot = event.subscription
        service = await self.store.find_by_billing_subscription_id(snapshot.billing_subscription_id)
        if service is None:
            return self._no_match(snapshot.billing_subscription_id)

        await self.store.update_subscription_fields(
            service,
            subscription_status=map_subscription_status(snapshot.status),
            period_start=snapshot.period_start,
            period_end=snapshot.period_end,
        )
        return IntakeResult(action="updated", service_id=service.service_id)

    async def _subscription_deleted(self, event: SubscriptionDeleted) -> IntakeResult:
        """Cancel billing and suspend the instance. Termination is left to an operator."""
        snapshot = event.subscription
        service = await self.store.find_by_billing_subscription_id(snapshot.billing_subscription_id)
        if service is None:
            return self._no_match(snapshot.billing_subscription_id)

        await self.store.update_subscription_fields(
            service, subscription_status=SubscriptionStatus.CANCELED
        )
        suspended = await self.store.advance_provisioning(service, ProvisioningStatus.SUSPENDED)
        if not suspended:
            logger.info(
                "suspension_not_applicable",
                service_id=service.service_id,
                provisioning_status=service.provisioning_status.value,
            )
        return IntakeResult(
            action="suspended" if suspended else "canceled", service_id=service.service_id
        )

    async def _payment_failed(self, event: PaymentFailed) -> IntakeResult:
        service = await self._resolve_payment_target(event)
        if service is None:
            return self._no_match(event.billing_subscription_id or event.customer_ref or "")

        await self.store.update_subscription_fields(
            service, subscription_status=SubscriptionStatus.PAST_DUE
        )
        return IntakeResult(action="marked_past_due", service_id=service.service_id)

    async def _resolve_payment_target(self, event: PaymentFailed) -> ServiceView | None:
        """Match by subscription id; by customer only when that customer has exactly one service."""
        if event.billing_subscription_id:
            service = await self.store.find_by_billing_subscription_id(
                event.billing_subscription_id
            )
            if service is not None:
                return service

        if not event.customer_ref:
            return None
        user = await self.store.find_user_by_customer_ref(event.customer_ref)
        if user is None:
            return None
        services = resolve_services(user)
        if len(services) != 1:
            logger.warning(
                "payment_failed_ambiguous_customer",
                customer_ref=event.customer_ref,
                service_count=len(services),
            )
            return None
        return services[0]

    @staticmethod
    def _no_match(reference: str) -> IntakeResult:
        logger.warning("webhook_no_matching_service", reference=reference)
        return IntakeResult(action="no_matching_service", detail=reference)
