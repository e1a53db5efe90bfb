"""
Stripe Payment Processor Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

import asyncio
import json
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import stripe
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from app.exceptions import (
    NotFoundError,
    PaymentProviderError,
    ValidationError,
    WebhookVerificationError,
)
from app.models.stripe_payloads import (
    CheckoutSessionEventData,
    CheckoutSessionObject,
    EventEnvelope,
    InvoiceEventData,
    SubscriptionEventData,
    SubscriptionObject,
)
from app.observability.metrics import metrics
from app.services.payment_provider import (
    CheckoutCompleted,
    CheckoutSession,
    PaymentFailed,
    ProcessorEvent,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
    UnrecognizedEvent,
)

logger = get_logger(__name__)

T = TypeVar("T")

PAID = "paid"


def _to_plain(value: Any) -> Any:
    """Convert a StripeObject tree to plain dicts and lists."""
    to_dict = getattr(value, "to_dict_recursive", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, Mapping):
        return {key: _to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    return value


def _from_timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, UTC) if value is not None else None


def to_checkout_session(obj: CheckoutSessionObject) -> CheckoutSession:
    """Convert a validated checkout.session payload to the domain model."""
    return CheckoutSession(
        session_id=obj.id,
        paid=obj.payment_status == PAID,
        mode=obj.mode,
        billing_subscription_id=obj.subscription,
        customer_ref=obj.customer,
        user_id=obj.metadata.user_id,
        plan_id=obj.metadata.plan_id,
        billing_cycle=obj.metadata.billing_cycle,
        location=obj.metadata.location,
    )


def to_subscription_snapshot(obj: SubscriptionObject) -> SubscriptionSnapshot:
    """Convert a validated subscription payload to the domain model."""
    start, end = obj.period()
    return SubscriptionSnapshot(
        billing_subscription_id=obj.id,
        status=obj.status,
        customer_ref=obj.customer,
        period_start=_from_timestamp(start),
        period_end=_from_timestamp(end),
    )


def parse_event(payload: Mapping[str, Any]) -> ProcessorEvent:
    """
    Parse a webhook event body into the tagged event union.

    Raises:
        ValidationError: If the envelope or the object of a handled kind is malformed
    """
    try:
        envelope = EventEnvelope.model_validate(payload)
        if envelope.type == "checkout.session.completed":
            session = CheckoutSessionEventData.model_validate(envelope.data).object
            return CheckoutCompleted(event_id=envelope.id, session=to_checkout_session(session))
        if envelope.type == "customer.subscription.updated":
            subscription = SubscriptionEventData.model_validate(envelope.data).object
            return SubscriptionUpdated(
                event_id=envelope.id, subscription=to_subscription_snapshot(subscription)
            )
        if envelope.type == "customer.subscription.deleted":
            subscription = SubscriptionEventData.model_validate(envelope.data).object
            return SubscriptionDeleted(
                event_id=envelope.id, subscription=to_subscription_snapshot(subscription)
            )
        if envelope.type == "invoice.payment_failed":
            invoice = InvoiceEventData.model_validate(envelope.data).object
            return PaymentFailed(
                event_id=envelope.id,
                billing_subscription_id=invoice.subscription_id(),
                customer_ref=invoice.customer,
            )
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed Stripe event: {exc}") from exc

    return UnrecognizedEvent(event_id=envelope.id, kind=envelope.type)


class StripeProvider:
    """
    Stripe payment processor implementation.

    Implements the PaymentProcessor protocol. The Stripe SDK is synchronous,
    so every call runs in a worker thread bounded by timeout_seconds.
    """

    def __init__(self, api_key: str, webhook_secret: str, timeout_seconds: float = 15.0) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            timeout_seconds: Upper bound for each Stripe API call
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        stripe.api_key = api_key

    async def aclose(self) -> None:
        """The Stripe SDK keeps no per-instance resources."""

    async def verify_webhook(self, payload: bytes, signature: str) -> ProcessorEvent:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Returns:
            Parsed event

        Raises:
            WebhookVerificationError: If signature verification fails
            ValidationError: If the payload is not a well-formed event
        """
        logger.info("verifying_stripe_webhook", signature_present=bool(signature))
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc

        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise ValidationError(f"Webhook body is not JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise ValidationError("Webhook body is not a JSON object")

        event = parse_event(body)
        logger.info("stripe_webhook_verified", event_id=event.event_id, event_type=event.kind)
        return event

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Retrieve a checkout session by id."""
        logger.info("retrieving_stripe_checkout_session", session_id=session_id)
        try:
            raw = await self._call("retrieve_session", stripe.checkout.Session.retrieve, session_id)
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                raise NotFoundError("CheckoutSession", session_id) from exc
            raise self._wrap("retrieve_session", exc) from exc
        except stripe.StripeError as exc:
            raise self._wrap("retrieve_session", exc) from exc

        try:
            session = CheckoutSessionObject.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(f"Malformed checkout session {session_id}: {exc}") from exc

        logger.info(
            "stripe_checkout_session_retrieved",
            session_id=session_id,
            payment_status=session.payment_status,
        )
        return to_checkout_session(session)

    async def retrieve_subscription(self, billing_subscription_id: str) -> SubscriptionSnapshot:
        """Retrieve a subscription by id."""
        logger.info("retrieving_stripe_subscription", subscription_id=billing_subscription_id)
        try:
            raw = await self._call(
                "retrieve_subscription", stripe.Subscription.retrieve, billing_subscription_id
            )
        except stripe.StripeError as exc:
            raise self._wrap("retrieve_subscription", exc) from exc

        try:
            subscription = SubscriptionObject.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Malformed subscription {billing_subscription_id}: {exc}"
            ) from exc
        return to_subscription_snapshot(subscription)

    async def cancel_subscription(self, billing_subscription_id: str) -> None:
        """Cancel a subscription immediately."""
        logger.info("canceling_stripe_subscription", subscription_id=billing_subscription_id)
        try:
            await self._call(
                "cancel_subscription", stripe.Subscription.cancel, billing_subscription_id
            )
        except stripe.StripeError as exc:
            raise self._wrap("cancel_subscription", exc) from exc
        logger.info("stripe_subscription_canceled", subscription_id=billing_subscription_id)

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> dict[str, Any]:
        """Run a blocking SDK call in a thread with a timeout."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            result = await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            metrics.record_provider_call("stripe", operation, "transient", loop.time() - start)
            logger.error("stripe_call_timeout", operation=operation)
            raise PaymentProviderError(
                f"{operation} timed out after {self.timeout_seconds}s", transient=True
            ) from exc
        except stripe.StripeError as exc:
            outcome = "transient" if self._is_transient(exc) else "fatal"
            metrics.record_provider_call("stripe", operation, outcome, loop.time() - start)
            raise

        metrics.record_provider_call("stripe", operation, "success", loop.time() - start)
        plain: dict[str, Any] = _to_plain(result)
        return plain

    @staticmethod
    def _is_transient(exc: stripe.StripeError) -> bool:
        return isinstance(
            exc, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)
        )

    def _wrap(self, operation: str, exc: stripe.StripeError) -> PaymentProviderError:
        logger.error(
            "stripe_call_failed",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return PaymentProviderError(f"Stripe {operation} failed: {exc}", self._is_transient(exc))
