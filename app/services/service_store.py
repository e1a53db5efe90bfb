"""
Service Record Store - Persisted, authoritative service state.

Writes are either an atomic create-if-absent keyed on billing_subscription_id
or field-scoped conditional updates. Nothing here deletes a service.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import exists, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import ServiceRecord, SupportMessage, SupportTicket, User
from app.exceptions import (
    DatabaseError,
    DuplicateOperationError,
    NotFoundError,
    ValidationError,
)
from app.models.api import (
    BillingCycle,
    MessageSender,
    ProvisioningStatus,
    SubscriptionStatus,
    TicketStatus,
    UserRole,
)
from app.models.domain import (
    Credentials,
    LegacyService,
    ServiceView,
    UserAggregate,
    transition_sources,
)
from app.services.schema_adapter import legacy_to_view

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class ServiceStore:
    """Persistence for users, their services and support tickets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_user(self, user_id: UUID) -> UserAggregate:
        """
        Load a user with both service representations.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self._find_user(user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        return await self._to_aggregate(user)

    async def find_user_by_customer_ref(self, customer_ref: str) -> UserAggregate | None:
        """Find the user owning a payment processor customer reference."""
        stmt = select(User).where(User.stripe_customer_id == customer_ref)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            return None
        return await self._to_aggregate(user)

    async def find_by_billing_subscription_id(
        self, billing_subscription_id: str
    ) -> ServiceView | None:
        """
        Find the service carrying a billing subscription id, in either representation.

        The services table is consulted first. The legacy columns only count for
        users that own no services rows, since otherwise they are a stale mirror.
        """
        stmt = select(ServiceRecord).where(
            ServiceRecord.billing_subscription_id == billing_subscription_id
        )
        result = await self.session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is not None:
            return self._record_to_view(record)

        legacy_stmt = select(User).where(
            User.legacy_billing_subscription_id == billing_subscription_id,
            ~exists().where(ServiceRecord.user_id == User.id),
        )
        legacy_result = await self.session.execute(legacy_stmt)
        user = legacy_result.scalar_one_or_none()
        if user is None:
            return None
        aggregate = self._user_to_aggregate(user, [])
        return legacy_to_view(aggregate, self._legacy_of(user))

    async def list_services_with_subscription(
        self, user_id: UUID | None = None
    ) -> list[ServiceView]:
        """List every canonical service that has a billing subscription id."""
        stmt = select(ServiceRecord).where(ServiceRecord.billing_subscription_id.isnot(None))
        if user_id is not None:
            stmt = stmt.where(ServiceRecord.user_id == user_id)
        result = await self.session.execute(stmt.order_by(ServiceRecord.created_at))
        views = [self._record_to_view(record) for record in result.scalars().all()]

        legacy_stmt = select(User).where(
            User.legacy_billing_subscription_id.isnot(None),
            ~exists().where(ServiceRecord.user_id == User.id),
        )
        if user_id is not None:
            legacy_stmt = legacy_stmt.where(User.id == user_id)
        legacy_result = await self.session.execute(legacy_stmt)
        for user in legacy_result.scalars().all():
            views.append(legacy_to_view(self._user_to_aggregate(user, []), self._legacy_of(user)))

        return views

    # ========================================================================
    # Creation
    # ========================================================================

    async def create_if_absent(self, user: UserAggregate, draft: ServiceView) -> ServiceView:
        """
        Insert a service unless one already carries its billing subscription id.

        When the user's only service still lives in the legacy columns, it is
        copied into the services table in the same transaction so that it stays
        visible once the services list becomes authoritative.

        Args:
            user: Owner of the new service
            draft: Service to insert; its service_id is ignored

        Returns:
            The inserted service with its store-assigned id

        Raises:
            DuplicateOperationError: If another writer inserted the same
                billing subscription id first (carries the winning record)
            DatabaseError: If the write fails for any other reason
        """
        if not draft.billing_subscription_id:
            raise ValidationError("billing_subscription_id is required to create a service")

        new_id = uuid4()
        now = _utc_now()
        values = self._draft_values(draft)
        values.update(id=new_id, user_id=user.user_id, created_at=now, updated_at=now)

        try:
            if not user.services and user.legacy is not None and user.legacy.is_populated:
                await self._promote_legacy(user)

            stmt = (
                pg_insert(ServiceRecord)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["billing_subscription_id"])
                .returning(ServiceRecord.id)
            )
            result = await self.session.execute(stmt)
            inserted_id = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "service_insert_failed",
                user_id=str(user.user_id),
                billing_subscription_id=draft.billing_subscription_id,
                error=str(exc),
            )
            raise DatabaseError(f"Service insert failed: {exc}") from exc

        if inserted_id is None:
            # Race condition - service created by another request
            await self.session.rollback()
            existing = await self.find_by_billing_subscription_id(draft.billing_subscription_id)
            if existing is None:
                raise DatabaseError(
                    f"Conflict on {draft.billing_subscription_id} but no existing service found"
                )
            logger.info(
                "service_insert_lost_race",
                billing_subscription_id=draft.billing_subscription_id,
                existing_service_id=existing.service_id,
            )
            raise DuplicateOperationError(existing)

        await self.session.commit()

        logger.info(
            "service_created",
            service_id=str(new_id),
            user_id=str(user.user_id),
            billing_subscription_id=draft.billing_subscription_id,
            provisioning_status=draft.provisioning_status.value,
        )
        return ServiceView(
            service_id=str(new_id),
            user_id=user.user_id,
            plan_id=draft.plan_id,
            billing_cycle=draft.billing_cycle,
            location=draft.location,
            subscription_status=draft.subscription_status,
            provisioning_status=draft.provisioning_status,
            billing_subscription_id=draft.billing_subscription_id,
            provider_instance_id=draft.provider_instance_id,
            credentials=draft.credentials,
            current_period_start=draft.current_period_start,
            current_period_end=draft.current_period_end,
            created_at=now,
            provisioning_error=draft.provisioning_error,
        )

    async def _promote_legacy(self, user: UserAggregate) -> None:
        """
        Copy the legacy singleton into the services table (uncommitted).

        The user row is locked first so concurrent first purchases serialize;
        whoever runs second sees the committed copy and skips the promotion.
        """
        assert user.legacy is not None
        lock_stmt = select(User.id).where(User.id == user.user_id).with_for_update()
        await self.session.execute(lock_stmt)

        existing_stmt = select(ServiceRecord.id).where(ServiceRecord.user_id == user.user_id)
        result = await self.session.execute(existing_stmt.limit(1))
        if result.scalar_one_or_none() is not None:
            logger.info("legacy_service_already_promoted", user_id=str(user.user_id))
            return

        legacy_view = legacy_to_view(user, user.legacy)
        values = self._draft_values(legacy_view)
        values.update(
            id=uuid4(),
            user_id=user.user_id,
            created_at=legacy_view.created_at or _utc_now(),
            updated_at=_utc_now(),
        )
        stmt = pg_insert(ServiceRecord).values(**values)
        if legacy_view.billing_subscription_id:
            stmt = stmt.on_conflict_do_nothing(index_elements=["billing_subscription_id"])
        await self.session.execute(stmt)
        logger.info(
            "legacy_service_promoted",
            user_id=str(user.user_id),
            billing_subscription_id=legacy_view.billing_subscription_id,
        )

    # ========================================================================
    # Field-scoped updates
    # ========================================================================

    async def update_subscription_fields(
        self,
        service: ServiceView,
        subscription_status: SubscriptionStatus | None = None,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> bool:
        """
        Update the billing-side fields of one service.

        Only the named fields are written. Returns True if a row was updated.
        """
        fields: dict[str, Any] = {}
        if subscription_status is not None:
            fields["subscription_status"] = subscription_status.value
        if period_start is not None:
            fields["current_period_start"] = period_start
        if period_end is not None:
            fields["current_period_end"] = period_end
        if not fields:
            return False

        updated = await self._apply(service, fields, allowed_sources=None)
        logger.info(
            "service_subscription_updated",
            service_id=service.service_id,
            user_id=str(service.user_id),
            fields=sorted(fields),
            updated=updated,
        )
        return updated

    async def advance_provisioning(
        self,
        service: ServiceView,
        target: ProvisioningStatus,
        credentials: Credentials | None = None,
        subscription_status: SubscriptionStatus | None = None,
        force: bool = False,
    ) -> bool:
        """
        Move a service's provisioning status forward.

        The update only applies while the stored status is one from which target
        may legally be reached, so concurrent or redelivered writers cannot move
        a service backwards. force skips that guard and is reserved for
        operator-driven termination.

        Args:
            service: Service to update
            target: New provisioning status
            credentials: Login details, required when target is ACTIVE
            subscription_status: Optional billing status written in the same update
            force: Apply regardless of the current status

        Returns:
            True if the row was updated, False if the guard rejected it

        Raises:
            ValidationError: If target is ACTIVE without an instance and credentials
        """
        if target == ProvisioningStatus.ACTIVE and (
            credentials is None or not service.provider_instance_id
        ):
            raise ValidationError(
                f"Service {service.service_id} cannot become active without "
                "a provider instance and credentials"
            )

        fields: dict[str, Any] = {"provisioning_status": target.value}
        if credentials is not None:
            fields["host_address"] = credentials.host_address
            fields["login_username"] = credentials.username
            fields["login_secret"] = credentials.secret
        if subscription_status is not None:
            fields["subscription_status"] = subscription_status.value

        sources = None if force else transition_sources(target)
        updated = await self._apply(service, fields, allowed_sources=sources)
        logger.info(
            "service_provisioning_advanced",
            service_id=service.service_id,
            user_id=str(service.user_id),
            target=target.value,
            forced=force,
            updated=updated,
        )
        return updated

    async def _apply(
        self,
        service: ServiceView,
        fields: dict[str, Any],
        allowed_sources: frozenset[ProvisioningStatus] | None,
    ) -> bool:
        """Run one conditional UPDATE against the service's write-back target."""
        source_values = [s.value for s in allowed_sources] if allowed_sources is not None else None

        if service.is_legacy:
            stmt = update(User).where(User.id == service.user_id)
            if source_values is not None:
                condition = User.legacy_provisioning_status.in_(source_values)
                if ProvisioningStatus.PROVISIONING.value in source_values:
                    # Unset legacy status reads as provisioning
                    condition = or_(condition, User.legacy_provisioning_status.is_(None))
                stmt = stmt.where(condition)
            stmt = stmt.values(**{f"legacy_{name}": value for name, value in fields.items()})
        else:
            stmt = update(ServiceRecord).where(ServiceRecord.id == UUID(service.service_id))
            if source_values is not None:
                stmt = stmt.where(ServiceRecord.provisioning_status.in_(source_values))
            stmt = stmt.values(updated_at=_utc_now(), **fields)

        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "service_update_failed",
                service_id=service.service_id,
                error=str(exc),
            )
            raise DatabaseError(f"Service update failed: {exc}") from exc

        return bool(result.rowcount)

    # ========================================================================
    # Support tickets
    # ========================================================================

    async def close_support_ticket(self, ticket_id: UUID, user_id: UUID, message: str) -> None:
        """
        Append an admin message to a user's ticket and close it.

        Raises:
            NotFoundError: If the ticket does not exist or belongs to someone else
        """
        stmt = select(SupportTicket).where(
            SupportTicket.id == ticket_id, SupportTicket.user_id == user_id
        )
        result = await self.session.execute(stmt)
        ticket = result.scalar_one_or_none()
        if ticket is None:
            raise NotFoundError("SupportTicket", str(ticket_id))

        self.session.add(
            SupportMessage(
                id=uuid4(),
                ticket_id=ticket.id,
                sender=MessageSender.ADMIN.value,
                content=message,
                created_at=_utc_now(),
            )
        )
        ticket.status = TicketStatus.CLOSED.value
        ticket.updated_at = _utc_now()

        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DatabaseError(f"Closing ticket {ticket_id} failed: {exc}") from exc

        logger.info("support_ticket_closed", ticket_id=str(ticket_id), user_id=str(user_id))

    # ========================================================================
    # Conversion helpers
    # ========================================================================

    async def _find_user(self, user_id: UUID) -> User | None:
        """Find user row by id."""
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _to_aggregate(self, user: User) -> UserAggregate:
        """Load the user's services rows and build the aggregate."""
        stmt = (
            select(ServiceRecord)
            .where(ServiceRecord.user_id == user.id)
            .order_by(ServiceRecord.created_at)
        )
        result = await self.session.execute(stmt)
        return self._user_to_aggregate(user, list(result.scalars().all()))

    def _user_to_aggregate(self, user: User, records: list[ServiceRecord]) -> UserAggregate:
        """Convert ORM rows to a user aggregate."""
        return UserAggregate(
            user_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=UserRole(user.role),
            customer_ref=user.stripe_customer_id,
            services=tuple(self._record_to_view(record) for record in records),
            legacy=self._legacy_of(user),
        )

    def _legacy_of(self, user: User) -> LegacyService:
        """Read the legacy columns of a user row."""
        return LegacyService(
            plan_id=user.legacy_plan_id,
            billing_cycle=BillingCycle(user.legacy_billing_cycle)
            if user.legacy_billing_cycle
            else None,
            location=user.legacy_location,
            subscription_status=SubscriptionStatus(user.legacy_subscription_status)
            if user.legacy_subscription_status
            else None,
            provisioning_status=ProvisioningStatus(user.legacy_provisioning_status)
            if user.legacy_provisioning_status
            else None,
            billing_subscription_id=user.legacy_billing_subscription_id,
            provider_instance_id=user.legacy_provider_instance_id,
            host_address=user.legacy_host_address,
            login_username=user.legacy_login_username,
            login_secret=user.legacy_login_secret,
            current_period_start=user.legacy_current_period_start,
            current_period_end=user.legacy_current_period_end,
            created_at=user.legacy_created_at,
        )

    def _record_to_view(self, record: ServiceRecord) -> ServiceView:
        """Convert a services row to its canonical view."""
        credentials = None
        if record.host_address and record.login_username:
            credentials = Credentials(
                host_address=record.host_address,
                username=record.login_username,
                secret=record.login_secret or "",
            )
        return ServiceView(
            service_id=str(record.id),
            user_id=record.user_id,
            plan_id=record.plan_id,
            billing_cycle=BillingCycle(record.billing_cycle),
            location=record.location,
            subscription_status=SubscriptionStatus(record.subscription_status),
            provisioning_status=ProvisioningStatus(record.provisioning_status),
            billing_subscription_id=record.billing_subscription_id,
            provider_instance_id=record.provider_instance_id,
            credentials=credentials,
            current_period_start=record.current_period_start,
            current_period_end=record.current_period_end,
            created_at=record.created_at,
            provisioning_error=record.provisioning_error,
        )

    @staticmethod
    def _draft_values(view: ServiceView) -> dict[str, Any]:
        """Column values of a service view, excluding identity and timestamps."""
        credentials = view.credentials
        return {
            "plan_id": view.plan_id,
            "billing_cycle": view.billing_cycle.value,
            "location": view.location,
            "subscription_status": view.subscription_status.value,
            "provisioning_status": view.provisioning_status.value,
            "billing_subscription_id": view.billing_subscription_id,
            "provider_instance_id": view.provider_instance_id,
            "host_address": credentials.host_address if credentials else None,
            "login_username": credentials.username if credentials else None,
            "login_secret": credentials.secret if credentials else None,
            "current_period_start": view.current_period_start,
            "current_period_end": view.current_period_end,
            "provisioning_error": view.provisioning_error,
        }
