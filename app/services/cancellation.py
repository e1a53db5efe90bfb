"""
Cancellation Orchestrator - Operator-driven termination of a service.

Four sequential steps, each attempted regardless of the others and never
rolled back. A partially completed cancellation is a reportable outcome.
"""

from collections.abc import Awaitable
from dataclasses import dataclass, field
from uuid import UUID

from structlog import get_logger

from app.exceptions import NotFoundError, PartialFailureError
from app.models.api import ProvisioningStatus, SubscriptionStatus
from app.models.domain import ServiceView
from app.observability.metrics import metrics
from app.observability.tracing import add_span_attributes, trace_operation
from app.services.payment_provider import PaymentProcessor
from app.services.provisioning_provider import ProvisioningProvider
from app.services.schema_adapter import find_service
from app.services.service_store import ServiceStore

logger = get_logger(__name__)

STEP_BILLING_CANCEL = "billing_cancel"
STEP_INSTANCE_DELETE = "instance_delete"
STEP_RECORD_UPDATE = "record_update"
STEP_SUPPORT_CLOSED = "support_closed"


@dataclass
class CancellationResult:
    """Per-step outcome. failed_steps lists steps that were attempted and failed."""

    billing_cancel: bool = False
    instance_delete: bool = False
    record_update: bool = False
    support_closed: bool = False
    failed_steps: list[str] = field(default_factory=list)

    @property
    def needs_follow_up(self) -> bool:
        return bool(self.failed_steps)

    @property
    def partial_failure(self) -> PartialFailureError | None:
        """The incomplete steps as an error value, or None when everything attempted succeeded."""
        if not self.failed_steps:
            return None
        return PartialFailureError(list(self.failed_steps))


def build_closing_message(
    result: CancellationResult, service: ServiceView, reason: str | None
) -> str:
    """Admin message appended to the support ticket, summarizing the first three steps."""
    billing_line = (
        "Billing subscription canceled."
        if result.billing_cancel
        else "No billing subscription was canceled."
    )
    instance_line = (
        "Server deleted."
        if result.instance_delete
        else "Server was not deleted (it may already be gone)."
    )
    record_line = (
        "Service record updated." if result.record_update else "Service record update failed."
    )
    lines = [
        f"Your {service.plan_id} service has been canceled.",
        "",
        f"- {billing_line}",
        f"- {instance_line}",
        f"- {record_line}",
    ]
    if reason:
        lines.extend(["", f"Reason: {reason}"])
    if result.failed_steps:
        lines.extend(["", "Our team will complete the remaining steps manually."])
    return "\n".join(lines)


class CancellationOrchestrator:
    """Cancels billing, deletes the instance, terminates the record and closes the ticket."""

    def __init__(
        self,
        store: ServiceStore,
        processor: PaymentProcessor,
        provider: ProvisioningProvider,
    ) -> None:
        self.store = store
        self.processor = processor
        self.provider = provider

    async def cancel(
        self,
        user_id: UUID,
        service_id: str,
        support_ticket_id: UUID | None = None,
        reason: str | None = None,
    ) -> CancellationResult:
        """
        Cancel one service of a user.

        Args:
            user_id: Owner of the service
            service_id: Canonical service id ("legacy" for a legacy-only user)
            support_ticket_id: Ticket to close with a summary message
            reason: Operator's reason, quoted in the ticket message

        Returns:
            Per-step result; the record is terminated even when the billing
            or instance steps failed

        Raises:
            NotFoundError: If the user or service does not exist
        """
        user = await self.store.get_user(user_id)
        service = find_service(user, service_id)
        if service is None:
            raise NotFoundError("Service", service_id)

        result = CancellationResult()
        with trace_operation(
            "cancel_service", user_id=str(user_id), service_id=service_id
        ) as span:
            if service.billing_subscription_id:
                result.billing_cancel = await self._step(
                    result, STEP_BILLING_CANCEL, service, self._cancel_billing(service)
                )

            if service.provider_instance_id:
                result.instance_delete = await self._step(
                    result, STEP_INSTANCE_DELETE, service, self._delete_instance(service)
                )

            result.record_update = await self._step(
                result, STEP_RECORD_UPDATE, service, self._terminate_record(service)
            )

            if support_ticket_id is not None:
                message = build_closing_message(result, service, reason)
                result.support_closed = await self._step(
                    result,
                    STEP_SUPPORT_CLOSED,
                    service,
                    self._close_ticket(support_ticket_id, user_id, message),
                )

            add_span_attributes(
                span,
                billing_cancel=result.billing_cancel,
                instance_delete=result.instance_delete,
                record_update=result.record_update,
                support_closed=result.support_closed,
            )

        logger.info(
            "service_cancellation_processed",
            user_id=str(user_id),
            service_id=service_id,
            billing_cancel=result.billing_cancel,
            instance_delete=result.instance_delete,
            record_update=result.record_update,
            support_closed=result.support_closed,
            failed_steps=result.failed_steps,
            reason=reason,
        )
        return result

    async def _step(
        self,
        result: CancellationResult,
        name: str,
        service: ServiceView,
        action: Awaitable[bool],
    ) -> bool:
        """Await one step; any failure is recorded and absorbed."""
        try:
            succeeded = bool(await action)
        except Exception as exc:
            logger.error(
                "cancellation_step_failed",
                step=name,
                service_id=service.service_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            succeeded = False

        if not succeeded:
            result.failed_steps.append(name)
        metrics.record_cancellation_step(name, succeeded)
        return succeeded

    async def _cancel_billing(self, service: ServiceView) -> bool:
        assert service.billing_subscription_id is not None
        await self.processor.cancel_subscription(service.billing_subscription_id)
        return True

    async def _delete_instance(self, service: ServiceView) -> bool:
        assert service.provider_instance_id is not None
        return await self.provider.delete(service.provider_instance_id)

    async def _terminate_record(self, service: ServiceView) -> bool:
        return await self.store.advance_provisioning(
            service,
            ProvisioningStatus.TERMINATED,
            subscription_status=SubscriptionStatus.CANCELED,
            force=True,
        )

    async def _close_ticket(self, ticket_id: UUID, user_id: UUID, message: str) -> bool:
        await self.store.close_support_ticket(ticket_id, user_id, message)
        return True
