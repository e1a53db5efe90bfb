"""
Provisioning Orchestrator - At-most-once service creation per billing subscription.

Webhook intake and checkout verification both end here. Correctness under
concurrent delivery comes from the store's create-if-absent on
billing_subscription_id, not from locks.
"""

import re
import time
from uuid import UUID

from structlog import get_logger

from app.exceptions import (
    DuplicateOperationError,
    PaymentProviderError,
    ProvisioningProviderError,
    ValidationError,
)
from app.models.api import BillingCycle, ProvisioningStatus, SubscriptionStatus
from app.models.domain import (
    ProvisioningOutcome,
    ProvisioningRequest,
    ServiceView,
    UserAggregate,
)
from app.observability.metrics import metrics
from app.observability.tracing import add_span_attributes, trace_operation
from app.services.payment_provider import CheckoutSession, PaymentProcessor
from app.services.plans import get_plan, validate_location
from app.services.provisioning_provider import ProvisioningProvider
from app.services.schema_adapter import resolve_services
from app.services.service_store import ServiceStore
from app.services.subscription_sync import resolve_billing_period

logger = get_logger(__name__)

_LABEL_INVALID = re.compile(r"[^a-z0-9-]+")


def build_label(user: UserAggregate, now: float | None = None) -> str:
    """Instance label vps-<first>-<last>-<epoch>, falling back to the user id."""
    parts = [part for part in (user.first_name, user.last_name) if part]
    name = "-".join(parts) if parts else user.user_id.hex[:8]
    slug = _LABEL_INVALID.sub("-", name.lower()).strip("-") or user.user_id.hex[:8]
    return f"vps-{slug}-{int(now if now is not None else time.time())}"


async def request_from_checkout(
    session: CheckoutSession,
    processor: PaymentProcessor,
    default_location: str,
) -> ProvisioningRequest:
    """
    Build the provisioning input carried by a completed checkout session.

    The billing period comes from the processor's subscription when it can be
    read, otherwise it starts now and lasts one billing cycle.

    Raises:
        ValidationError: If the session lacks a subscription or valid order metadata
    """
    if not session.billing_subscription_id:
        raise ValidationError(f"Checkout session {session.session_id} has no subscription")
    if not session.user_id or not session.plan_id:
        raise ValidationError(f"Checkout session {session.session_id} is missing order metadata")

    try:
        user_id = UUID(session.user_id)
    except ValueError as exc:
        raise ValidationError(f"Invalid userId in session metadata: {session.user_id}") from exc
    try:
        cycle = BillingCycle(session.billing_cycle or BillingCycle.MONTHLY.value)
    except ValueError as exc:
        raise ValidationError(f"Invalid billingCycle: {session.billing_cycle}") from exc
    plan = get_plan(session.plan_id)
    location = validate_location(session.location or default_location)

    try:
        subscription = await processor.retrieve_subscription(session.billing_subscription_id)
    except PaymentProviderError as exc:
        logger.warning(
            "checkout_subscription_lookup_failed",
            billing_subscription_id=session.billing_subscription_id,
            error=exc.message,
        )
        subscription = None
    period_start, period_end = resolve_billing_period(subscription, cycle)

    return ProvisioningRequest(
        user_id=user_id,
        billing_subscription_id=session.billing_subscription_id,
        plan_id=plan.plan_id,
        billing_cycle=cycle,
        location=location,
        period_start=period_start,
        period_end=period_end,
    )


class ProvisioningOrchestrator:
    """Creates at most one service, and at most one kept instance, per billing subscription."""

    def __init__(self, store: ServiceStore, provider: ProvisioningProvider) -> None:
        self.store = store
        self.provider = provider

    async def provision(self, request: ProvisioningRequest) -> ProvisioningOutcome:
        """
        Provision the service paid for by request.billing_subscription_id.

        Steps:
        1. Return the existing service if one already carries the subscription id.
        2. Create the instance at the provider.
        3. On a provider error, record the service as failed instead of raising,
           since the customer has already paid.
        4. Insert via create-if-absent; if another caller won, delete the
           instance created here and return the winner.

        Returns:
            Outcome with the persisted service, whether this call created it,
            and the provider error message when provisioning failed

        Raises:
            NotFoundError: If the user does not exist
        """
        with trace_operation(
            "provision_service",
            user_id=str(request.user_id),
            billing_subscription_id=request.billing_subscription_id,
            plan_id=request.plan_id,
        ) as span:
            user = await self.store.get_user(request.user_id)

            existing = await self._find_existing(user, request.billing_subscription_id)
            if existing is not None:
                logger.info(
                    "provisioning_already_done",
                    service_id=existing.service_id,
                    billing_subscription_id=request.billing_subscription_id,
                )
                metrics.record_provisioning("existing")
                add_span_attributes(span, outcome="existing")
                return ProvisioningOutcome(service=existing, created=False)

            instance_id, error = await self._create_instance(user, request)

            draft = ServiceView(
                service_id="",
                user_id=request.user_id,
                plan_id=request.plan_id,
                billing_cycle=request.billing_cycle,
                location=request.location,
                subscription_status=SubscriptionStatus.ACTIVE,
                provisioning_status=ProvisioningStatus.FAILED
                if error
                else ProvisioningStatus.PROVISIONING,
                billing_subscription_id=request.billing_subscription_id,
                provider_instance_id=instance_id,
                credentials=None,
                current_period_start=request.period_start,
                current_period_end=request.period_end,
                created_at=None,
                provisioning_error=error,
            )

            try:
                service = await self.store.create_if_absent(user, draft)
            except DuplicateOperationError as dup:
                await self._discard_instance(instance_id, request.billing_subscription_id)
                metrics.record_provisioning("race_lost")
                add_span_attributes(span, outcome="race_lost")
                return ProvisioningOutcome(service=dup.existing, created=False)

            outcome = "failed" if error else "provisioning"
            metrics.record_provisioning(outcome)
            add_span_attributes(
                span, outcome=outcome, service_id=service.service_id, instance_id=instance_id
            )
            logger.info(
                "service_provisioned",
                service_id=service.service_id,
                user_id=str(request.user_id),
                billing_subscription_id=request.billing_subscription_id,
                provider_instance_id=instance_id,
                provisioning_status=service.provisioning_status.value,
            )
            return ProvisioningOutcome(service=service, created=True, error=error)

    async def _find_existing(
        self, user: UserAggregate, billing_subscription_id: str
    ) -> ServiceView | None:
        """Look for the subscription among the user's services, then across all users."""
        for service in resolve_services(user):
            if service.billing_subscription_id == billing_subscription_id:
                return service

        existing = await self.store.find_by_billing_subscription_id(billing_subscription_id)
        if existing is not None and existing.user_id != user.user_id:
            logger.warning(
                "subscription_owned_by_other_user",
                billing_subscription_id=billing_subscription_id,
                requested_user_id=str(user.user_id),
                owner_user_id=str(existing.user_id),
            )
        return existing

    async def _create_instance(
        self, user: UserAggregate, request: ProvisioningRequest
    ) -> tuple[str | None, str | None]:
        """Call the provider; returns (instance_id, None) or (None, error message)."""
        try:
            plan = get_plan(request.plan_id)
            instance_id = await self.provider.create(plan, build_label(user), request.location)
        except (ProvisioningProviderError, ValidationError) as exc:
            logger.error(
                "provider_create_failed",
                user_id=str(user.user_id),
                billing_subscription_id=request.billing_subscription_id,
                error=exc.message,
                transient=getattr(exc, "transient", False),
            )
            return None, exc.message
        return instance_id, None

    async def _discard_instance(
        self, instance_id: str | None, billing_subscription_id: str
    ) -> None:
        """Best-effort delete of an instance created by a caller that lost the insert race."""
        if instance_id is None:
            return
        try:
            deleted = await self.provider.delete(instance_id)
        except ProvisioningProviderError as exc:
            deleted = False
            logger.warning("orphan_instance_delete_error", error=exc.message)
        logger.info(
            "orphan_instance_discarded",
            instance_id=instance_id,
            billing_subscription_id=billing_subscription_id,
            deleted=deleted,
        )
