"""
Tests for the Stripe payment processor adapter.

The Stripe SDK is patched at the module boundary; no network calls are made.
"""

import json
import time
from unittest.mock import MagicMock, patch

import pytest
import stripe

from app.exceptions import (
    NotFoundError,
    PaymentProviderError,
    ValidationError,
    WebhookVerificationError,
)
from app.services.payment_provider import (
    CheckoutCompleted,
    PaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnrecognizedEvent,
)
from app.services.stripe_provider import StripeProvider, parse_event

PERIOD_START = 1790812800  # 2026-10-01T00:00:00Z
PERIOD_END = 1793491200  # 2026-11-01T00:00:00Z


def checkout_object(**overrides) -> dict:
    obj = {
        "id": "cs_test_123",
        "object": "checkout.session",
        "mode": "subscription",
        "payment_status": "paid",
        "subscription": "sub_123",
        "customer": "cus_test",
        "metadata": {
            "userId": "5f0c6a52-3f0e-4a47-9b4a-8a5d0e6f2c11",
            "planId": "prime",
            "billingCycle": "yearly",
            "location": "frankfurt",
        },
    }
    obj.update(overrides)
    return obj


def subscription_object(**overrides) -> dict:
    obj = {
        "id": "sub_123",
        "object": "subscription",
        "status": "active",
        "customer": "cus_test",
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
    }
    obj.update(overrides)
    return obj


def event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def stripe_provider() -> StripeProvider:
    return StripeProvider(api_key="sk_test_fake", webhook_secret="whsec_fake")


# ============================================================================
# Event Parsing
# ============================================================================


class TestParseEvent:
    """Tests for parse_event."""

    def test_checkout_completed(self):
        parsed = parse_event(event("checkout.session.completed", checkout_object()))

        assert isinstance(parsed, CheckoutCompleted)
        assert parsed.event_id == "evt_1"
        session = parsed.session
        assert session.session_id == "cs_test_123"
        assert session.paid is True
        assert session.billing_subscription_id == "sub_123"
        assert session.plan_id == "prime"
        assert session.billing_cycle == "yearly"
        assert session.location == "frankfurt"

    def test_unpaid_checkout(self):
        parsed = parse_event(
            event("checkout.session.completed", checkout_object(payment_status="unpaid"))
        )
        assert parsed.session.paid is False

    def test_subscription_updated(self):
        parsed = parse_event(event("customer.subscription.updated", subscription_object()))

        assert isinstance(parsed, SubscriptionUpdated)
        assert parsed.subscription.status == "active"
        assert parsed.subscription.period_start.year == 2026
        assert parsed.subscription.period_end.month == 11

    def test_period_from_subscription_item(self):
        """Newer API versions report the period on the first item."""
        obj = subscription_object(current_period_start=None, current_period_end=None)
        obj["items"] = {
            "data": [{"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}]
        }

        parsed = parse_event(event("customer.subscription.updated", obj))

        assert parsed.subscription.period_end is not None

    def test_subscription_deleted(self):
        parsed = parse_event(
            event("customer.subscription.deleted", subscription_object(status="canceled"))
        )
        assert isinstance(parsed, SubscriptionDeleted)
        assert parsed.subscription.billing_subscription_id == "sub_123"

    def test_payment_failed_top_level_subscription(self):
        obj = {"id": "in_1", "customer": "cus_test", "subscription": "sub_123"}
        parsed = parse_event(event("invoice.payment_failed", obj))

        assert isinstance(parsed, PaymentFailed)
        assert parsed.billing_subscription_id == "sub_123"
        assert parsed.customer_ref == "cus_test"

    def test_payment_failed_nested_subscription(self):
        obj = {
            "id": "in_1",
            "customer": "cus_test",
            "parent": {"subscription_details": {"subscription": "sub_456"}},
        }
        parsed = parse_event(event("invoice.payment_failed", obj))
        assert parsed.billing_subscription_id == "sub_456"

    def test_payment_failed_without_subscription(self):
        parsed = parse_event(event("invoice.payment_failed", {"id": "in_1", "customer": "c"}))
        assert parsed.billing_subscription_id is None

    def test_unrecognized(self):
        parsed = parse_event(event("charge.refunded", {"id": "ch_1"}))
        assert isinstance(parsed, UnrecognizedEvent)
        assert parsed.kind == "charge.refunded"

    def test_malformed_envelope(self):
        with pytest.raises(ValidationError, match="Malformed Stripe event"):
            parse_event({"type": "checkout.session.completed"})

    def test_malformed_object(self):
        """A handled kind whose object lacks required fields is rejected."""
        with pytest.raises(ValidationError):
            parse_event(event("customer.subscription.updated", {"id": "sub_1"}))


# ============================================================================
# Webhook Verification
# ============================================================================


class TestVerifyWebhook:
    """Tests for StripeProvider.verify_webhook."""

    async def test_valid_signature(self, stripe_provider):
        payload = json.dumps(event("checkout.session.completed", checkout_object())).encode()

        with patch.object(stripe.WebhookSignature, "verify_header") as verify:
            parsed = await stripe_provider.verify_webhook(payload, "t=1,v1=abc")

        verify.assert_called_once_with(payload.decode(), "t=1,v1=abc", "whsec_fake")
        assert isinstance(parsed, CheckoutCompleted)

    async def test_invalid_signature(self, stripe_provider):
        payload = json.dumps(event("charge.refunded", {"id": "ch_1"})).encode()

        with patch.object(
            stripe.WebhookSignature,
            "verify_header",
            side_effect=stripe.SignatureVerificationError("bad", "t=1,v1=abc"),
        ):
            with pytest.raises(WebhookVerificationError):
                await stripe_provider.verify_webhook(payload, "t=1,v1=abc")

    async def test_body_not_json(self, stripe_provider):
        with patch.object(stripe.WebhookSignature, "verify_header"):
            with pytest.raises(ValidationError, match="not JSON"):
                await stripe_provider.verify_webhook(b"not json", "sig")

    async def test_body_not_object(self, stripe_provider):
        with patch.object(stripe.WebhookSignature, "verify_header"):
            with pytest.raises(ValidationError, match="not a JSON object"):
                await stripe_provider.verify_webhook(b"[1, 2]", "sig")


# ============================================================================
# API Calls
# ============================================================================


class TestRetrieveCheckoutSession:
    """Tests for StripeProvider.retrieve_checkout_session."""

    async def test_success(self, stripe_provider):
        with patch.object(stripe.checkout.Session, "retrieve", return_value=checkout_object()):
            session = await stripe_provider.retrieve_checkout_session("cs_test_123")

        assert session.session_id == "cs_test_123"
        assert session.user_id == "5f0c6a52-3f0e-4a47-9b4a-8a5d0e6f2c11"

    async def test_missing_session(self, stripe_provider):
        error = stripe.InvalidRequestError(
            "No such checkout.session: cs_x", "id", code="resource_missing"
        )
        with patch.object(stripe.checkout.Session, "retrieve", side_effect=error):
            with pytest.raises(NotFoundError):
                await stripe_provider.retrieve_checkout_session("cs_x")

    async def test_connection_error_is_transient(self, stripe_provider):
        with patch.object(
            stripe.checkout.Session,
            "retrieve",
            side_effect=stripe.APIConnectionError("network down"),
        ):
            with pytest.raises(PaymentProviderError) as exc_info:
                await stripe_provider.retrieve_checkout_session("cs_test_123")

        assert exc_info.value.transient is True

    async def test_timeout(self):
        provider = StripeProvider("sk_test_fake", "whsec_fake", timeout_seconds=0.05)

        def slow(_):
            time.sleep(0.3)
            return checkout_object()

        with patch.object(stripe.checkout.Session, "retrieve", side_effect=slow):
            with pytest.raises(PaymentProviderError, match="timed out") as exc_info:
                await provider.retrieve_checkout_session("cs_test_123")

        assert exc_info.value.transient is True


class TestSubscriptionCalls:
    """Tests for retrieve_subscription and cancel_subscription."""

    async def test_retrieve(self, stripe_provider):
        with patch.object(
            stripe.Subscription, "retrieve", return_value=subscription_object(status="past_due")
        ):
            snapshot = await stripe_provider.retrieve_subscription("sub_123")

        assert snapshot.status == "past_due"
        assert snapshot.customer_ref == "cus_test"

    async def test_retrieve_malformed(self, stripe_provider):
        with patch.object(stripe.Subscription, "retrieve", return_value={"id": "sub_123"}):
            with pytest.raises(ValidationError, match="Malformed subscription"):
                await stripe_provider.retrieve_subscription("sub_123")

    async def test_cancel(self, stripe_provider):
        cancel = MagicMock(return_value=subscription_object(status="canceled"))
        with patch.object(stripe.Subscription, "cancel", cancel):
            await stripe_provider.cancel_subscription("sub_123")

        cancel.assert_called_once_with("sub_123")

    async def test_cancel_error_is_fatal(self, stripe_provider):
        error = stripe.InvalidRequestError("No such subscription", "id")
        with patch.object(stripe.Subscription, "cancel", side_effect=error):
            with pytest.raises(PaymentProviderError) as exc_info:
                await stripe_provider.cancel_subscription("sub_123")

        assert exc_info.value.transient is False
        assert "cancel_subscription" in exc_info.value.message
