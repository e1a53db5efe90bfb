"""
Subscription Sync - Refresh billing-side fields from the payment processor.

Also hosts the processor status mapping and billing period resolution used
by webhook intake and checkout verification.
"""

import calendar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from structlog import get_logger

from app.exceptions import BillingError
from app.models.api import BillingCycle, SubscriptionStatus
from app.models.domain import ServiceView
from app.observability.metrics import metrics
from app.services.payment_provider import PaymentProcessor, SubscriptionSnapshot
from app.services.service_store import ServiceStore

logger = get_logger(__name__)

_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}


def map_subscription_status(processor_status: str) -> SubscriptionStatus:
    """Map the processor's status vocabulary; anything unmapped is pending."""
    return _STATUS_MAP.get(processor_status, SubscriptionStatus.PENDING)


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def resolve_billing_period(
    subscription: SubscriptionSnapshot | None,
    cycle: BillingCycle,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """
    Billing window of a new service.

    Uses the processor's period when it reports one, otherwise now until now
    plus one billing cycle.
    """
    if (
        subscription is not None
        and subscription.period_start is not None
        and subscription.period_end is not None
    ):
        return subscription.period_start, subscription.period_end
    start = now or datetime.now(UTC)
    return start, add_months(start, 12 if cycle == BillingCycle.YEARLY else 1)


@dataclass(frozen=True)
class SyncOutcome:
    """Result of syncing one service."""

    service: ServiceView
    updated: bool
    subscription_status: SubscriptionStatus | None = None
    error: str | None = None


@dataclass
class SyncReport:
    """Aggregate result of a sync run."""

    outcomes: list[SyncOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def updated(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.updated)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.error is not None)


class SubscriptionSyncService:
    """Re-reads subscriptions from the processor and writes status and period fields."""

    def __init__(self, store: ServiceStore, processor: PaymentProcessor) -> None:
        self.store = store
        self.processor = processor

    async def sync_service(self, service: ServiceView) -> SyncOutcome:
        """Sync one service. Processor and database failures are reported, not raised."""
        if not service.billing_subscription_id:
            return SyncOutcome(service=service, updated=False, error="no billing subscription")

        try:
            snapshot = await self.processor.retrieve_subscription(service.billing_subscription_id)
            status = map_subscription_status(snapshot.status)
            updated = await self.store.update_subscription_fields(
                service,
                subscription_status=status,
                period_start=snapshot.period_start,
                period_end=snapshot.period_end,
            )
        except BillingError as exc:
            logger.warning(
                "subscription_sync_failed",
                service_id=service.service_id,
                billing_subscription_id=service.billing_subscription_id,
                error=str(exc),
            )
            metrics.record_subscription_sync("failed")
            return SyncOutcome(service=service, updated=False, error=str(exc))

        metrics.record_subscription_sync("updated" if updated else "unchanged")
        return SyncOutcome(service=service, updated=updated, subscription_status=status)

    async def sync_user(self, user_id: UUID) -> SyncReport:
        """Sync every subscribed service of one user."""
        return await self._sync(await self.store.list_services_with_subscription(user_id))

    async def sync_all(self) -> SyncReport:
        """Sync every subscribed service of every user."""
        return await self._sync(await self.store.list_services_with_subscription())

    async def _sync(self, services: list[ServiceView]) -> SyncReport:
        report = SyncReport()
        for service in services:
            report.outcomes.append(await self.sync_service(service))
        logger.info(
            "subscription_sync_completed",
            total=report.total,
            updated=report.updated,
            failed=report.failed,
        )
        return report
