"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from app.exceptions import ValidationError
from app.models.api import BillingCycle, ProvisioningStatus, SubscriptionStatus, UserRole

LEGACY_SERVICE_ID = "legacy"


class WriteBackTarget(str, Enum):
    """Where mutations of a canonical service must be written."""

    SERVICES = "services"  # row in the services table
    LEGACY = "legacy"  # legacy_* columns on the users row


# ============================================================================
# Provisioning Status Transitions
# ============================================================================

# Forward-only moves. Forced termination by the cancellation flow bypasses this table.
PROVISIONING_TRANSITIONS: dict[ProvisioningStatus, frozenset[ProvisioningStatus]] = {
    ProvisioningStatus.PROVISIONING: frozenset(
        {ProvisioningStatus.ACTIVE, ProvisioningStatus.FAILED}
    ),
    ProvisioningStatus.ACTIVE: frozenset(
        {ProvisioningStatus.SUSPENDED, ProvisioningStatus.TERMINATED}
    ),
    ProvisioningStatus.SUSPENDED: frozenset(
        {ProvisioningStatus.ACTIVE, ProvisioningStatus.TERMINATED}
    ),
    ProvisioningStatus.FAILED: frozenset(),
    ProvisioningStatus.TERMINATED: frozenset(),
}


def can_transition(current: ProvisioningStatus, target: ProvisioningStatus) -> bool:
    """Return True if moving from current to target is a legal forward move."""
    return target in PROVISIONING_TRANSITIONS[current]


def transition_sources(target: ProvisioningStatus) -> frozenset[ProvisioningStatus]:
    """Return every status from which target may legally be reached."""
    return frozenset(
        source for source, targets in PROVISIONING_TRANSITIONS.items() if target in targets
    )


# ============================================================================
# Services
# ============================================================================


@dataclass(frozen=True)
class Credentials:
    """Login details of a provisioned instance."""

    host_address: str
    username: str
    secret: str

    def __post_init__(self) -> None:
        """Validate credential fields."""
        if not self.host_address:
            raise ValueError("host_address cannot be empty")
        if not self.username:
            raise ValueError("username cannot be empty")


@dataclass(frozen=True)
class ServiceView:
    """
    Canonical view of one service, regardless of how it is stored.

    write_back tells mutating components whether the record lives in the
    services table or in the legacy columns of the owning user.
    """

    service_id: str
    user_id: UUID
    plan_id: str
    billing_cycle: BillingCycle
    location: str
    subscription_status: SubscriptionStatus
    provisioning_status: ProvisioningStatus
    billing_subscription_id: str | None
    provider_instance_id: str | None
    credentials: Credentials | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    created_at: datetime | None
    provisioning_error: str | None = None
    write_back: WriteBackTarget = WriteBackTarget.SERVICES

    @property
    def is_legacy(self) -> bool:
        """True when the record must be written through the legacy columns."""
        return self.write_back == WriteBackTarget.LEGACY


@dataclass(frozen=True)
class LegacyService:
    """Deprecated singleton service stored on the user row. Every field may be absent."""

    plan_id: str | None = None
    billing_cycle: BillingCycle | None = None
    location: str | None = None
    subscription_status: SubscriptionStatus | None = None
    provisioning_status: ProvisioningStatus | None = None
    billing_subscription_id: str | None = None
    provider_instance_id: str | None = None
    host_address: str | None = None
    login_username: str | None = None
    login_secret: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_populated(self) -> bool:
        """A legacy record exists once a plan, subscription or instance was stored."""
        return bool(self.plan_id or self.billing_subscription_id or self.provider_instance_id)


@dataclass(frozen=True)
class UserAggregate:
    """User identity plus both service representations."""

    user_id: UUID
    email: str
    first_name: str | None
    last_name: str | None
    role: UserRole
    customer_ref: str | None
    services: tuple[ServiceView, ...]
    legacy: LegacyService | None


# ============================================================================
# Provisioning
# ============================================================================


@dataclass(frozen=True)
class ProvisioningRequest:
    """Validated input to the provisioning orchestrator."""

    user_id: UUID
    billing_subscription_id: str
    plan_id: str
    billing_cycle: BillingCycle
    location: str
    period_start: datetime
    period_end: datetime

    def __post_init__(self) -> None:
        """Validate provisioning request fields."""
        if not self.billing_subscription_id:
            raise ValidationError("billing_subscription_id cannot be empty")
        if not self.plan_id:
            raise ValidationError("plan_id cannot be empty")
        if not self.location:
            raise ValidationError("location cannot be empty")
        if self.period_end < self.period_start:
            raise ValidationError(
                f"period_end {self.period_end} is before period_start {self.period_start}"
            )


@dataclass(frozen=True)
class ProvisioningOutcome:
    """Result of a provisioning attempt. error carries the provider message on failure."""

    service: ServiceView
    created: bool
    error: str | None = None
