"""
Schema Adapter - Resolves a user's canonical service list.

Users created before multi-service support keep their only service in
legacy_* columns on the users row. Once the services table holds at least
one row for a user, those rows are authoritative and the legacy columns
are ignored.
"""

from app.models.api import BillingCycle, ProvisioningStatus, SubscriptionStatus
from app.models.domain import (
    LEGACY_SERVICE_ID,
    Credentials,
    LegacyService,
    ServiceView,
    UserAggregate,
    WriteBackTarget,
)

LEGACY_DEFAULT_PLAN = "basic"
LEGACY_DEFAULT_LOCATION = "london"
LEGACY_DEFAULT_USERNAME = "Administrator"


def resolve_services(user: UserAggregate) -> list[ServiceView]:
    """
    Produce the canonical service list of a user.

    Args:
        user: User aggregate carrying both representations

    Returns:
        The services table rows verbatim when there are any; otherwise a
        single legacy-backed view when the legacy columns are populated;
        otherwise an empty list.
    """
    if user.services:
        return list(user.services)
    if user.legacy is not None and user.legacy.is_populated:
        return [legacy_to_view(user, user.legacy)]
    return []


def legacy_to_view(user: UserAggregate, legacy: LegacyService) -> ServiceView:
    """Synthesize a canonical view from the legacy columns, tagged for legacy write-back."""
    credentials = None
    if legacy.host_address:
        credentials = Credentials(
            host_address=legacy.host_address,
            username=legacy.login_username or LEGACY_DEFAULT_USERNAME,
            secret=legacy.login_secret or "",
        )

    return ServiceView(
        service_id=LEGACY_SERVICE_ID,
        user_id=user.user_id,
        plan_id=legacy.plan_id or LEGACY_DEFAULT_PLAN,
        billing_cycle=legacy.billing_cycle or BillingCycle.MONTHLY,
        location=legacy.location or LEGACY_DEFAULT_LOCATION,
        subscription_status=legacy.subscription_status or SubscriptionStatus.PENDING,
        provisioning_status=legacy.provisioning_status or ProvisioningStatus.PROVISIONING,
        billing_subscription_id=legacy.billing_subscription_id,
        provider_instance_id=legacy.provider_instance_id,
        credentials=credentials,
        current_period_start=legacy.current_period_start,
        current_period_end=legacy.current_period_end,
        created_at=legacy.created_at,
        write_back=WriteBackTarget.LEGACY,
    )


def find_service(user: UserAggregate, service_id: str) -> ServiceView | None:
    """Look up one canonical service of the user by id."""
    for service in resolve_services(user):
        if service.service_id == service_id:
            return service
    return None
