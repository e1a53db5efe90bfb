"""
Payment Processor Interface - Abstract payment processor.

NO DICTIONARIES - All processor data uses strongly typed models.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Union


@dataclass(frozen=True)
class CheckoutSession:
    """Checkout session as seen by the reconciliation logic."""

    session_id: str
    paid: bool
    mode: str | None
    billing_subscription_id: str | None
    customer_ref: str | None
    user_id: str | None
    plan_id: str | None
    billing_cycle: str | None
    location: str | None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Subscription state reported by the processor."""

    billing_subscription_id: str
    status: str  # processor vocabulary
    customer_ref: str | None
    period_start: datetime | None
    period_end: datetime | None


# ============================================================================
# Webhook events (tagged union)
# ============================================================================


@dataclass(frozen=True)
class CheckoutCompleted:
    """checkout.session.completed"""

    event_id: str
    session: CheckoutSession
    kind: str = "checkout.session.completed"


@dataclass(frozen=True)
class SubscriptionUpdated:
    """customer.subscription.updated"""

    event_id: str
    subscription: SubscriptionSnapshot
    kind: str = "customer.subscription.updated"


@dataclass(frozen=True)
class SubscriptionDeleted:
    """customer.subscription.deleted"""

    event_id: str
    subscription: SubscriptionSnapshot
    kind: str = "customer.subscription.deleted"


@dataclass(frozen=True)
class PaymentFailed:
    """invoice.payment_failed"""

    event_id: str
    billing_subscription_id: str | None
    customer_ref: str | None
    kind: str = "invoice.payment_failed"


@dataclass(frozen=True)
class UnrecognizedEvent:
    """Any event kind the service does not act on."""

    event_id: str
    kind: str


ProcessorEvent = Union[
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    PaymentFailed,
    UnrecognizedEvent,
]


class PaymentProcessor(Protocol):
    """Protocol for recurring-billing payment processors."""

    async def verify_webhook(self, payload: bytes, signature: str) -> ProcessorEvent:
        """
        Verify the signature of a webhook delivery and parse it.

        Raises:
            WebhookVerificationError: If the signature is invalid
            ValidationError: If the payload is malformed
        """
        ...

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """
        Look up a checkout session.

        Raises:
            NotFoundError: If the session does not exist
            PaymentProviderError: If the processor call fails
        """
        ...

    async def retrieve_subscription(self, billing_subscription_id: str) -> SubscriptionSnapshot:
        """
        Look up a subscription.

        Raises:
            PaymentProviderError: If the processor call fails
        """
        ...

    async def cancel_subscription(self, billing_subscription_id: str) -> None:
        """
        Cancel a subscription immediately.

        Raises:
            PaymentProviderError: If the processor call fails
        """
        ...
