"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


SUBSCRIPTION_STATUSES = "('pending', 'active', 'past_due', 'canceled', 'trialing')"
PROVISIONING_STATUSES = "('provisioning', 'active', 'failed', 'suspended', 'terminated')"


class User(Base):
    """
    ORM model for users table.

    Identity fields plus the deprecated single-service representation
    (legacy_* columns). Users created after multi-service support leave the
    legacy columns empty and own rows in the services table instead.
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity fields
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")

    # Payment processor customer reference
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Legacy singleton subscription
    legacy_plan_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    legacy_billing_cycle: Mapped[str | None] = mapped_column(String(20), nullable=True)
    legacy_subscription_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    legacy_billing_subscription_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    legacy_current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    legacy_current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Legacy singleton instance
    legacy_location: Mapped[str | None] = mapped_column(String(50), nullable=True)
    legacy_provisioning_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    legacy_provider_instance_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    legacy_host_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    legacy_login_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    legacy_login_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    legacy_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')", name="ck_user_role"),
        UniqueConstraint("email", name="uq_users_email"),
        Index(
            "idx_users_stripe_customer_id",
            "stripe_customer_id",
            postgresql_where=(stripe_customer_id.isnot(None)),
        ),
        Index(
            "idx_users_legacy_billing_subscription_id",
            "legacy_billing_subscription_id",
            unique=True,
            postgresql_where=(legacy_billing_subscription_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class ServiceRecord(Base):
    """
    ORM model for services table.

    One row per provisioned instance. billing_subscription_id is the
    idempotency key for creation and is unique across all users.
    """

    __tablename__ = "services"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Foreign Keys
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    # Order details (immutable after creation)
    plan_id: Mapped[str] = mapped_column(String(20), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)
    location: Mapped[str] = mapped_column(String(50), nullable=False)

    # Billing side
    subscription_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    billing_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Provisioning side
    provisioning_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="provisioning"
    )
    provider_instance_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    host_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    login_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    login_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provisioning_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            f"subscription_status IN {SUBSCRIPTION_STATUSES}",
            name="ck_services_subscription_status",
        ),
        CheckConstraint(
            f"provisioning_status IN {PROVISIONING_STATUSES}",
            name="ck_services_provisioning_status",
        ),
        CheckConstraint(
            "provisioning_status <> 'active' OR "
            "(provider_instance_id IS NOT NULL AND host_address IS NOT NULL)",
            name="ck_services_active_has_instance",
        ),
        UniqueConstraint("billing_subscription_id", name="uq_services_billing_subscription_id"),
        Index("idx_services_user_id", "user_id"),
        Index(
            "idx_services_provisioning",
            "provisioning_status",
            postgresql_where=(provisioning_status == "provisioning"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ServiceRecord(id={self.id}, user_id={self.user_id}, "
            f"subscription={self.billing_subscription_id}, "
            f"provisioning_status={self.provisioning_status})>"
        )


class SupportTicket(Base):
    """ORM model for support_tickets table."""

    __tablename__ = "support_tickets"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'answered', 'customer_reply', 'closed')",
            name="ck_support_tickets_status",
        ),
        Index("idx_support_tickets_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<SupportTicket(id={self.id}, user_id={self.user_id}, status={self.status})>"


class SupportMessage(Base):
    """ORM model for support_messages table (append-only thread)."""

    __tablename__ = "support_messages"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("sender IN ('user', 'admin')", name="ck_support_messages_sender"),
        Index("idx_support_messages_ticket_id", "ticket_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<SupportMessage(id={self.id}, ticket_id={self.ticket_id}, sender={self.sender})>"
