"""
Provisioning Provider Interface - Abstract compute provisioning backend.

NO DICTIONARIES - All provider data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol

from app.services.plans import PlanSpec


@dataclass(frozen=True)
class InstanceStatus:
    """Provider-reported state of one instance."""

    instance_id: str
    ready: bool
    address: str | None = None
    username: str | None = None
    secret: str | None = None
    provider_status: str | None = None

    def __post_init__(self) -> None:
        """An instance is only ready once it has a reachable address."""
        if self.ready and not self.address:
            raise ValueError(f"Instance {self.instance_id} reported ready without an address")


class ProvisioningProvider(Protocol):
    """
    Protocol for compute provisioning providers.

    Every call returns within the provider's configured timeout. Failures
    raise ProvisioningProviderError classified as transient or fatal.
    """

    name: str

    async def create(self, plan: PlanSpec, label: str, region: str) -> str:
        """
        Create an instance.

        Args:
            plan: Plan to provision
            label: Human-readable instance label
            region: Location identifier from the plan catalog

        Returns:
            Provider-native instance id

        Raises:
            ProvisioningProviderError: If the instance could not be created
        """
        ...

    async def fetch_status(self, instance_id: str) -> InstanceStatus:
        """
        Get the current state of an instance.

        Raises:
            ProvisioningProviderError: If the status could not be read
        """
        ...

    async def delete(self, instance_id: str) -> bool:
        """
        Delete an instance.

        Returns:
            True if the provider confirmed the deletion, False otherwise
        """
        ...

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
        ...
