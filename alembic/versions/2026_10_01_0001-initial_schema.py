"""initial schema

Revision ID: 2026_10_01_0001
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the service reconciliation schema:
- users: identity plus the legacy single-service columns
- services: one row per provisioned instance, unique billing_subscription_id
- support_tickets / support_messages: tickets closed by the cancellation flow
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_01_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("legacy_plan_id", sa.String(length=20), nullable=True),
        sa.Column("legacy_billing_cycle", sa.String(length=20), nullable=True),
        sa.Column("legacy_subscription_status", sa.String(length=20), nullable=True),
        sa.Column("legacy_billing_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("legacy_current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("legacy_current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("legacy_location", sa.String(length=50), nullable=True),
        sa.Column("legacy_provisioning_status", sa.String(length=20), nullable=True),
        sa.Column("legacy_provider_instance_id", sa.String(length=255), nullable=True),
        sa.Column("legacy_host_address", sa.String(length=255), nullable=True),
        sa.Column("legacy_login_username", sa.String(length=255), nullable=True),
        sa.Column("legacy_login_secret", sa.String(length=255), nullable=True),
        sa.Column("legacy_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_user_role"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index(
        "idx_users_stripe_customer_id",
        "users",
        ["stripe_customer_id"],
        postgresql_where=sa.text("stripe_customer_id IS NOT NULL"),
    )
    op.create_index(
        "idx_users_legacy_billing_subscription_id",
        "users",
        ["legacy_billing_subscription_id"],
        unique=True,
        postgresql_where=sa.text("legacy_billing_subscription_id IS NOT NULL"),
    )

    op.create_table(
        "services",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("plan_id", sa.String(length=20), nullable=False),
        sa.Column("billing_cycle", sa.String(length=20), nullable=False),
        sa.Column("location", sa.String(length=50), nullable=False),
        sa.Column(
            "subscription_status", sa.String(length=20), nullable=False, server_default="pending"
        ),
        sa.Column("billing_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "provisioning_status",
            sa.String(length=20),
            nullable=False,
            server_default="provisioning",
        ),
        sa.Column("provider_instance_id", sa.String(length=255), nullable=True),
        sa.Column("host_address", sa.String(length=255), nullable=True),
        sa.Column("login_username", sa.String(length=255), nullable=True),
        sa.Column("login_secret", sa.String(length=255), nullable=True),
        sa.Column("provisioning_error", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "subscription_status IN ('pending', 'active', 'past_due', 'canceled', 'trialing')",
            name="ck_services_subscription_status",
        ),
        sa.CheckConstraint(
            "provisioning_status IN "
            "('provisioning', 'active', 'failed', 'suspended', 'terminated')",
            name="ck_services_provisioning_status",
        ),
        sa.CheckConstraint(
            "provisioning_status <> 'active' OR "
            "(provider_instance_id IS NOT NULL AND host_address IS NOT NULL)",
            name="ck_services_active_has_instance",
        ),
        sa.UniqueConstraint(
            "billing_subscription_id", name="uq_services_billing_subscription_id"
        ),
    )
    op.create_index("idx_services_user_id", "services", ["user_id"])
    op.create_index(
        "idx_services_provisioning",
        "services",
        ["provisioning_status"],
        postgresql_where=sa.text("provisioning_status = 'provisioning'"),
    )

    op.create_table(
        "support_tickets",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('open', 'answered', 'customer_reply', 'closed')",
            name="ck_support_tickets_status",
        ),
    )
    op.create_index("idx_support_tickets_user_id", "support_tickets", ["user_id"])

    op.create_table(
        "support_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ticket_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender", sa.String(length=10), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["ticket_id"], ["support_tickets.id"], ondelete="CASCADE"),
        sa.CheckConstraint("sender IN ('user', 'admin')", name="ck_support_messages_sender"),
    )
    op.create_index(
        "idx_support_messages_ticket_id", "support_messages", ["ticket_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_support_messages_ticket_id", table_name="support_messages")
    op.drop_table("support_messages")
    op.drop_index("idx_support_tickets_user_id", table_name="support_tickets")
    op.drop_table("support_tickets")
    op.drop_index("idx_services_provisioning", table_name="services")
    op.drop_index("idx_services_user_id", table_name="services")
    op.drop_table("services")
    op.drop_index("idx_users_legacy_billing_subscription_id", table_name="users")
    op.drop_index("idx_users_stripe_customer_id", table_name="users")
    op.drop_table("users")
