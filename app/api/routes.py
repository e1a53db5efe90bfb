"""
API Routes - FastAPI endpoints for users and the payment processor.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import (
    CallerIdentity,
    get_current_user,
    get_payment_processor,
    get_provisioning_provider,
    get_service_store,
)
from app.config import settings
from app.db.session import get_read_db
from app.exceptions import (
    AuthorizationError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
    WebhookVerificationError,
)
from app.models.api import (
    CredentialsResponse,
    HealthResponse,
    ServiceResponse,
    SyncDetail,
    SyncReportResponse,
    UserStateResponse,
    VerifySessionRequest,
    VerifySessionResponse,
    WebhookAckResponse,
)
from app.models.domain import ServiceView
from app.observability.logging import log_context
from app.services.event_intake import EventIntake
from app.services.payment_provider import PaymentProcessor
from app.services.provisioning import ProvisioningOrchestrator
from app.services.provisioning_provider import ProvisioningProvider
from app.services.schema_adapter import resolve_services
from app.services.service_store import ServiceStore
from app.services.session_verification import SessionVerification
from app.services.status_poller import StatusPoller
from app.services.subscription_sync import SubscriptionSyncService, SyncReport

logger = get_logger(__name__)

router = APIRouter()


def to_service_response(service: ServiceView) -> ServiceResponse:
    """Serialize a canonical service for its owner (credentials included)."""
    credentials = None
    if service.credentials is not None:
        credentials = CredentialsResponse(
            host_address=service.credentials.host_address,
            username=service.credentials.username,
            secret=service.credentials.secret,
        )
    return ServiceResponse(
        service_id=service.service_id,
        plan_id=service.plan_id,
        billing_cycle=service.billing_cycle,
        location=service.location,
        subscription_status=service.subscription_status,
        provisioning_status=service.provisioning_status,
        billing_subscription_id=service.billing_subscription_id,
        provider_instance_id=service.provider_instance_id,
        credentials=credentials,
        current_period_start=service.current_period_start,
        current_period_end=service.current_period_end,
        created_at=service.created_at,
        provisioning_error=service.provisioning_error,
    )


def to_sync_report_response(report: SyncReport) -> SyncReportResponse:
    """Serialize a subscription sync run."""
    details = []
    for outcome in report.outcomes:
        if outcome.error is not None:
            result = "failed"
        elif outcome.updated:
            result = "updated"
        else:
            result = "unchanged"
        details.append(
            SyncDetail(
                service_id=outcome.service.service_id,
                user_id=outcome.service.user_id,
                billing_subscription_id=outcome.service.billing_subscription_id or "",
                outcome=result,
                subscription_status=outcome.subscription_status,
                error=outcome.error,
            )
        )
    return SyncReportResponse(
        total=report.total,
        updated=report.updated,
        failed=report.failed,
        details=details,
    )


# =============================================================================
# User-Facing Endpoints (session token auth)
# =============================================================================


@router.get("/v1/user", response_model=UserStateResponse)
async def get_user_state(
    caller: CallerIdentity = Depends(get_current_user),
    store: ServiceStore = Depends(get_service_store),
    provider: ProvisioningProvider = Depends(get_provisioning_provider),
) -> UserStateResponse:
    """
    Get the caller's profile and services.

    Services still provisioning are polled at the provider first, so a
    server that became ready since the last read is returned as active
    with its credentials.
    """
    try:
        user = await store.get_user(caller.user_id)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    services = await StatusPoller(store, provider).poll(resolve_services(user))

    return UserStateResponse(
        user_id=user.user_id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        services=[to_service_response(service) for service in services],
    )


@router.post("/v1/checkout/verify-session", response_model=VerifySessionResponse)
async def verify_checkout_session(
    body: VerifySessionRequest,
    caller: CallerIdentity = Depends(get_current_user),
    store: ServiceStore = Depends(get_service_store),
    provider: ProvisioningProvider = Depends(get_provisioning_provider),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> VerifySessionResponse:
    """
    Verify a checkout session after the redirect back from the processor.

    Provisions the service if the webhook has not done so yet. Safe to call
    repeatedly and concurrently with webhook delivery.
    """
    verification = SessionVerification(
        processor=processor,
        orchestrator=ProvisioningOrchestrator(store, provider),
        default_location=settings.default_location,
    )

    with log_context(session_id=body.session_id, user_id=str(caller.user_id)):
        try:
            result = await verification.verify(body.session_id, caller.user_id)
        except NotFoundError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=str(exc),
            ) from exc
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=exc.message,
            ) from exc
        except AuthorizationError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Checkout session belongs to another user",
            ) from exc
        except PaymentProviderError as exc:
            logger.error(
                "checkout_verification_processor_error",
                error=exc.message,
                classification=exc.classification,
            )
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Payment processor unavailable",
            ) from exc

    return VerifySessionResponse(
        success=result.success,
        status=result.status,
        instance_id=result.instance_id,
        service_id=result.service_id,
        message=result.message,
    )


@router.post("/v1/user/sync-subscription", response_model=SyncReportResponse)
async def sync_own_subscriptions(
    caller: CallerIdentity = Depends(get_current_user),
    store: ServiceStore = Depends(get_service_store),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> SyncReportResponse:
    """Refresh the caller's subscription status and billing period from the processor."""
    report = await SubscriptionSyncService(store, processor).sync_user(caller.user_id)
    return to_sync_report_response(report)


# =============================================================================
# Payment Processor Webhooks
# =============================================================================


@router.post("/v1/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    store: ServiceStore = Depends(get_service_store),
    provider: ProvisioningProvider = Depends(get_provisioning_provider),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> WebhookAckResponse:
    """
    Handle Stripe webhook events.

    Any 2xx stops redelivery, so events that can never succeed (bad order
    metadata, unknown user) are acknowledged as rejected. Database failures
    propagate as 500 and are retried by the processor.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("stripe_webhook_missing_signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    try:
        event = await processor.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        logger.error("stripe_webhook_verification_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc
    except ValidationError as exc:
        logger.error("stripe_webhook_malformed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed webhook payload",
        ) from exc

    intake = EventIntake(
        store=store,
        orchestrator=ProvisioningOrchestrator(store, provider),
        processor=processor,
        default_location=settings.default_location,
    )

    with log_context(event_id=event.event_id, event_type=event.kind):
        logger.info("stripe_webhook_received")
        try:
            result = await intake.handle(event)
        except (ValidationError, NotFoundError) as exc:
            logger.error("stripe_webhook_rejected", error=str(exc))
            return WebhookAckResponse(action="rejected")

    return WebhookAckResponse(action=result.action)


# =============================================================================
# Operational Endpoints
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
