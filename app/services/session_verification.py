"""
Session Verification - Client-triggered fallback for a delayed checkout webhook.

Converges on the same idempotent orchestrator call as webhook intake, so it
is safe before, after or concurrently with the webhook.
"""

from dataclasses import dataclass
from uuid import UUID

from structlog import get_logger

from app.exceptions import AuthorizationError
from app.services.payment_provider import PaymentProcessor
from app.services.provisioning import ProvisioningOrchestrator, request_from_checkout

logger = get_logger(__name__)

NOT_COMPLETED = "not_completed"
PROVISIONED = "provisioned"
ALREADY_PROVISIONED = "already_provisioned"
PROVISIONING_FAILED = "provisioning_failed"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome reported to the client."""

    success: bool
    status: str
    instance_id: str | None = None
    service_id: str | None = None
    message: str | None = None


class SessionVerification:
    """Resolves a checkout session and provisions it if the payment went through."""

    def __init__(
        self,
        processor: PaymentProcessor,
        orchestrator: ProvisioningOrchestrator,
        default_location: str,
    ) -> None:
        self.processor = processor
        self.orchestrator = orchestrator
        self.default_location = default_location

    async def verify(self, session_id: str, caller_id: UUID) -> VerificationResult:
        """
        Verify a checkout session on behalf of the user who paid for it.

        Args:
            session_id: Checkout session id returned to the client
            caller_id: Authenticated user making the call

        Returns:
            not_completed while the payment is pending, otherwise the
            provisioning outcome

        Raises:
            NotFoundError: If the session does not exist
            ValidationError: If the session lacks a subscription or order metadata
            AuthorizationError: If the session was paid for by another user
            PaymentProviderError: If the processor cannot be reached
        """
        session = await self.processor.retrieve_checkout_session(session_id)
        if not session.paid:
            logger.info("checkout_session_not_paid", session_id=session_id)
            return VerificationResult(
                success=False, status=NOT_COMPLETED, message="Payment not completed yet"
            )

        request = await request_from_checkout(session, self.processor, self.default_location)
        if request.user_id != caller_id:
            logger.warning(
                "checkout_session_owner_mismatch",
                session_id=session_id,
                caller_id=str(caller_id),
                owner_id=str(request.user_id),
            )
            raise AuthorizationError("checkout:owner")

        outcome = await self.orchestrator.provision(request)
        service = outcome.service

        if outcome.error:
            status = PROVISIONING_FAILED
        elif outcome.created:
            status = PROVISIONED
        else:
            status = ALREADY_PROVISIONED

        logger.info(
            "checkout_session_verified",
            session_id=session_id,
            service_id=service.service_id,
            status=status,
        )
        return VerificationResult(
            success=outcome.error is None,
            status=status,
            instance_id=service.provider_instance_id,
            service_id=service.service_id,
            message=outcome.error,
        )
