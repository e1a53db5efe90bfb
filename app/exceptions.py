"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.models.domain import ServiceView


class BillingError(Exception):
    """Base exception for all billing and provisioning errors."""

    pass


class AuthenticationError(BillingError):
    """Raised when the caller has no valid identity (missing, invalid or expired token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(BillingError):
    """Raised when the caller lacks the required role or does not own the resource."""

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")


class NotFoundError(BillingError):
    """Raised when a user, service, session or support ticket cannot be resolved."""

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class ValidationError(BillingError, ValueError):
    """Raised when a request body or external payload is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Validation error: {message}")


class ProviderError(BillingError):
    """
    Raised when an outbound call to the payment processor or provisioning provider fails.

    Transient errors (timeouts, network failures, 5xx) may be retried or fall back;
    fatal errors (unknown plan or region, rejected request) must not.
    """

    kind = "provider"

    def __init__(self, message: str, transient: bool = False) -> None:
        self.message = message
        self.transient = transient
        super().__init__(f"{self.kind.capitalize()} provider error: {message}")

    @property
    def classification(self) -> str:
        """Return 'transient' or 'fatal'."""
        return "transient" if self.transient else "fatal"


class PaymentProviderError(ProviderError):
    """Raised when a payment processor operation fails."""

    kind = "payment"


class ProvisioningProviderError(ProviderError):
    """Raised when a provisioning provider operation fails."""

    kind = "provisioning"


class WebhookVerificationError(BillingError):
    """Raised when webhook signature verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class DuplicateOperationError(BillingError):
    """Raised by the store when a create loses the race on billing_subscription_id."""

    def __init__(self, existing: "ServiceView") -> None:
        self.existing = existing
        super().__init__(
            f"Service already exists for subscription {existing.billing_subscription_id}"
        )


class PartialFailureError(BillingError):
    """Describes a composite operation where some steps did not complete."""

    def __init__(self, failed_steps: list[str]) -> None:
        self.failed_steps = failed_steps
        super().__init__(f"Partial failure, incomplete steps: {', '.join(failed_steps)}")


class DatabaseError(BillingError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")
