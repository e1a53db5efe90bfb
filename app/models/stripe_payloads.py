"""
Stripe payload models - Pydantic models for webhook events and API objects.

NO DICTIONARIES - Processor payloads are validated at the boundary; only
the fields the reconciliation logic reads are modelled, the rest is ignored.
"""

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class OrderMetadata(_Payload):
    """Metadata attached to the checkout session when the order was placed."""

    user_id: str | None = Field(None, alias="userId")
    plan_id: str | None = Field(None, alias="planId")
    billing_cycle: str | None = Field(None, alias="billingCycle")
    location: str | None = None


class CheckoutSessionObject(_Payload):
    """checkout.session object."""

    id: str
    mode: str | None = None
    status: str | None = None
    payment_status: str | None = None
    subscription: str | None = None
    customer: str | None = None
    metadata: OrderMetadata = Field(default_factory=OrderMetadata)


class SubscriptionItemObject(_Payload):
    """subscription_item object; carries the period on newer API versions."""

    current_period_start: int | None = None
    current_period_end: int | None = None


class SubscriptionItemList(_Payload):
    data: list[SubscriptionItemObject] = Field(default_factory=list)


class SubscriptionObject(_Payload):
    """subscription object."""

    id: str
    status: str
    customer: str | None = None
    current_period_start: int | None = None
    current_period_end: int | None = None
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)

    def period(self) -> tuple[int | None, int | None]:
        """Billing period as unix timestamps, from the subscription or its first item."""
        if self.current_period_start is not None and self.current_period_end is not None:
            return self.current_period_start, self.current_period_end
        if self.items.data:
            item = self.items.data[0]
            return item.current_period_start, item.current_period_end
        return None, None


class InvoiceSubscriptionDetails(_Payload):
    subscription: str | None = None


class InvoiceParent(_Payload):
    subscription_details: InvoiceSubscriptionDetails | None = None


class InvoiceObject(_Payload):
    """invoice object."""

    id: str
    customer: str | None = None
    subscription: str | None = None
    parent: InvoiceParent | None = None

    def subscription_id(self) -> str | None:
        """Subscription reference, top-level on older API versions, under parent on newer."""
        if self.subscription:
            return self.subscription
        if self.parent is not None and self.parent.subscription_details is not None:
            return self.parent.subscription_details.subscription
        return None


class EventEnvelope(_Payload):
    """Common shape of every webhook event; data.object is validated per type."""

    id: str
    type: str
    data: dict[str, object]


class CheckoutSessionEventData(_Payload):
    object: CheckoutSessionObject


class SubscriptionEventData(_Payload):
    object: SubscriptionObject


class InvoiceEventData(_Payload):
    object: InvoiceObject
