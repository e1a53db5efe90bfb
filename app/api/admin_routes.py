"""
Admin API routes for operator actions on services and subscriptions.

Protected by session JWT authentication; every route requires the admin role.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from structlog import get_logger

from app.api.dependencies import (
    CallerIdentity,
    get_payment_processor,
    get_provisioning_provider,
    get_service_store,
    require_admin_role,
)
from app.api.routes import to_sync_report_response
from app.exceptions import NotFoundError
from app.models.api import (
    CancelServiceRequest,
    CancelServiceResponse,
    SyncReportResponse,
    SyncSubscriptionsRequest,
)
from app.services.cancellation import CancellationOrchestrator
from app.services.payment_provider import PaymentProcessor
from app.services.provisioning_provider import ProvisioningProvider
from app.services.service_store import ServiceStore
from app.services.subscription_sync import SubscriptionSyncService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/services/cancel", response_model=CancelServiceResponse)
async def cancel_service(
    body: CancelServiceRequest,
    admin: CallerIdentity = Depends(require_admin_role),
    store: ServiceStore = Depends(get_service_store),
    provider: ProvisioningProvider = Depends(get_provisioning_provider),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> CancelServiceResponse:
    """
    Cancel a user's service (admin only).

    Cancels the billing subscription, deletes the server, terminates the
    record and closes the support ticket. Steps are not rolled back; a
    response with needs_follow_up set lists what must be finished by hand.
    """
    logger.info(
        "admin_cancel_service_requested",
        admin_id=str(admin.user_id),
        user_id=str(body.user_id),
        service_id=body.service_id,
        support_ticket_id=str(body.support_ticket_id) if body.support_ticket_id else None,
    )

    orchestrator = CancellationOrchestrator(store, processor, provider)
    try:
        result = await orchestrator.cancel(
            user_id=body.user_id,
            service_id=body.service_id,
            support_ticket_id=body.support_ticket_id,
            reason=body.reason,
        )
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    if result.partial_failure is not None:
        logger.warning(
            "admin_cancel_service_incomplete",
            service_id=body.service_id,
            failed_steps=result.partial_failure.failed_steps,
        )

    return CancelServiceResponse(
        billing_cancel=result.billing_cancel,
        instance_delete=result.instance_delete,
        record_update=result.record_update,
        support_closed=result.support_closed,
        needs_follow_up=result.needs_follow_up,
        failed_steps=result.failed_steps,
    )


@router.post("/subscriptions/sync", response_model=SyncReportResponse)
async def sync_subscriptions(
    body: SyncSubscriptionsRequest,
    admin: CallerIdentity = Depends(require_admin_role),
    store: ServiceStore = Depends(get_service_store),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> SyncReportResponse:
    """Refresh subscription status and periods from the processor for one or all users."""
    logger.info(
        "admin_subscription_sync_requested",
        admin_id=str(admin.user_id),
        user_id=str(body.user_id) if body.user_id else None,
    )

    sync = SubscriptionSyncService(store, processor)
    report = await sync.sync_user(body.user_id) if body.user_id else await sync.sync_all()
    return to_sync_report_response(report)
