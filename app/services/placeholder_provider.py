"""
Placeholder Provisioning Provider - Non-production stand-in for the cloud provider.

Never selected implicitly: configuration refuses both placeholder modes when
ENVIRONMENT=production.
"""

import time
import uuid

from structlog import get_logger

from app.exceptions import ProvisioningProviderError
from app.services.plans import PlanSpec
from app.services.provisioning_provider import InstanceStatus, ProvisioningProvider

logger = get_logger(__name__)

PLACEHOLDER_PREFIX = "placeholder-"
PLACEHOLDER_ADDRESS = "192.0.2.10"  # TEST-NET-1
PLACEHOLDER_USERNAME = "Administrator"
PLACEHOLDER_SECRET = "placeholder-secret"


def is_placeholder_id(instance_id: str) -> bool:
    """True for identifiers synthesized by PlaceholderProvider."""
    return instance_id.startswith(PLACEHOLDER_PREFIX)


class PlaceholderProvider:
    """
    Null-object provider that fabricates instances.

    Instance ids encode their creation time; an instance reports ready once
    ready_after_seconds have elapsed since then.
    """

    name = "placeholder"

    def __init__(self, ready_after_seconds: int = 60) -> None:
        self.ready_after_seconds = ready_after_seconds

    async def aclose(self) -> None:
        """Nothing to release."""

    async def create(self, plan: PlanSpec, label: str, region: str) -> str:
        instance_id = f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex[:12]}-{int(time.time())}"
        logger.warning(
            "placeholder_instance_created",
            instance_id=instance_id,
            plan_id=plan.plan_id,
            region=region,
            label=label,
        )
        return instance_id

    async def fetch_status(self, instance_id: str) -> InstanceStatus:
        if not is_placeholder_id(instance_id):
            raise ProvisioningProviderError(f"{instance_id} is not a placeholder instance")
        try:
            created_at = int(instance_id.rsplit("-", 1)[1])
        except (IndexError, ValueError) as exc:
            raise ProvisioningProviderError(f"Malformed placeholder id {instance_id}") from exc

        if time.time() - created_at < self.ready_after_seconds:
            return InstanceStatus(
                instance_id=instance_id, ready=False, provider_status="provisioning"
            )
        return InstanceStatus(
            instance_id=instance_id,
            ready=True,
            address=PLACEHOLDER_ADDRESS,
            username=PLACEHOLDER_USERNAME,
            secret=PLACEHOLDER_SECRET,
            provider_status="active",
        )

    async def delete(self, instance_id: str) -> bool:
        logger.warning("placeholder_instance_deleted", instance_id=instance_id)
        return is_placeholder_id(instance_id)


class FallbackProvider:
    """
    Wraps a real provider and substitutes placeholder instances when create fails transiently.

    Fatal errors are never masked. Status and delete calls for placeholder ids
    go to the placeholder; everything else goes to the real provider.
    """

    def __init__(self, primary: ProvisioningProvider, placeholder: PlaceholderProvider) -> None:
        self.primary = primary
        self.placeholder = placeholder
        self.name = f"{primary.name}+placeholder"

    async def aclose(self) -> None:
        await self.primary.aclose()

    async def create(self, plan: PlanSpec, label: str, region: str) -> str:
        try:
            return await self.primary.create(plan, label, region)
        except ProvisioningProviderError as exc:
            if not exc.transient:
                raise
            logger.warning(
                "provider_create_fallback_to_placeholder",
                provider=self.primary.name,
                error=exc.message,
            )
            return await self.placeholder.create(plan, label, region)

    async def fetch_status(self, instance_id: str) -> InstanceStatus:
        if is_placeholder_id(instance_id):
            return await self.placeholder.fetch_status(instance_id)
        return await self.primary.fetch_status(instance_id)

    async def delete(self, instance_id: str) -> bool:
        if is_placeholder_id(instance_id):
            return await self.placeholder.delete(instance_id)
        return await self.primary.delete(instance_id)
