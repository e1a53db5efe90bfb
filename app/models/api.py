"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Billing subscription status enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"


class ProvisioningStatus(str, Enum):
    """Provisioned instance status enumeration."""

    PROVISIONING = "provisioning"
    ACTIVE = "active"
    FAILED = "failed"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class BillingCycle(str, Enum):
    """Billing cycle enumeration."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class UserRole(str, Enum):
    """User role enumeration."""

    USER = "user"
    ADMIN = "admin"


class TicketStatus(str, Enum):
    """Support ticket status enumeration."""

    OPEN = "open"
    ANSWERED = "answered"
    CUSTOMER_REPLY = "customer_reply"
    CLOSED = "closed"


class MessageSender(str, Enum):
    """Author of a support ticket message."""

    USER = "user"
    ADMIN = "admin"


# ============================================================================
# Service Models
# ============================================================================


class CredentialsResponse(BaseModel):
    """Login details of a provisioned instance."""

    host_address: str
    username: str
    secret: str


class ServiceResponse(BaseModel):
    """One entry of the canonical service list."""

    service_id: str
    plan_id: str
    billing_cycle: BillingCycle
    location: str
    subscription_status: SubscriptionStatus
    provisioning_status: ProvisioningStatus
    billing_subscription_id: str | None = None
    provider_instance_id: str | None = None
    credentials: CredentialsResponse | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    created_at: datetime | None = None
    provisioning_error: str | None = None


class UserStateResponse(BaseModel):
    """GET /v1/user response."""

    user_id: UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole
    services: list[ServiceResponse]


# ============================================================================
# Checkout Session Verification Models
# ============================================================================


class VerifySessionRequest(BaseModel):
    """POST /v1/checkout/verify-session request body."""

    session_id: str = Field(..., min_length=1, max_length=255)

    @field_validator("session_id")
    @classmethod
    def validate_session_id(cls, v: str) -> str:
        """Checkout session ids are issued with the cs_ prefix."""
        if not v.startswith("cs_"):
            raise ValueError("session_id must be a checkout session id (cs_...)")
        return v


class VerifySessionResponse(BaseModel):
    """POST /v1/checkout/verify-session response body."""

    success: bool
    status: str = Field(..., description="provisioned, already_provisioned or not_completed")
    instance_id: str | None = None
    service_id: str | None = None
    message: str | None = None


# ============================================================================
# Cancellation Models
# ============================================================================


class CancelServiceRequest(BaseModel):
    """POST /admin/services/cancel request body."""

    user_id: UUID
    service_id: str = Field(..., min_length=1, max_length=64)
    support_ticket_id: UUID | None = None
    reason: str | None = Field(None, max_length=2000)


class CancelServiceResponse(BaseModel):
    """Per-step result of a cancellation."""

    billing_cancel: bool
    instance_delete: bool
    record_update: bool
    support_closed: bool
    needs_follow_up: bool
    failed_steps: list[str] = Field(default_factory=list)


# ============================================================================
# Subscription Sync Models
# ============================================================================


class SyncSubscriptionsRequest(BaseModel):
    """POST /admin/subscriptions/sync request body."""

    user_id: UUID | None = Field(None, description="Restrict the sync to one user")


class SyncDetail(BaseModel):
    """Outcome of syncing one service."""

    service_id: str
    user_id: UUID
    billing_subscription_id: str
    outcome: str = Field(..., description="updated, unchanged or failed")
    subscription_status: SubscriptionStatus | None = None
    error: str | None = None


class SyncReportResponse(BaseModel):
    """Subscription sync report."""

    total: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    details: list[SyncDetail]


# ============================================================================
# Webhook / Health Models
# ============================================================================


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = True
    action: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
