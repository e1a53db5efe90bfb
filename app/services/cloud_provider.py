"""
Cloud Provisioning Provider - REST API client for the VPS provider.

NO DICTIONARIES - Requests and responses are validated pydantic models.
"""

import re
import time

import httpx
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from app.exceptions import ProvisioningProviderError
from app.models.cloud_provider import (
    CreateInstanceBody,
    CreateInstanceResponse,
    InstanceDetailsResponse,
)
from app.observability.metrics import metrics
from app.services.plans import PlanSpec
from app.services.provisioning_provider import InstanceStatus

logger = get_logger(__name__)

# Our plan IDs to provider product IDs
PRODUCT_MAPPING: dict[str, str] = {
    "basic": "bc1f70fe-558d-472d-b981-8cc29e995de1",
    "prime": "fe8bbbbe-3bd8-4fcb-9fb9-19f5ab96a6a8",
    "pro": "1f1cd048-6714-4aa2-82ac-a575fa24fec0",
}

# Our location IDs to provider region IDs
REGION_MAPPING: dict[str, str] = {
    "london": "UK-London",
    "frankfurt": "DE-Frankfurt",
    "newYork": "US-NewYork",
    "singapore": "SG-Singapore",
}

DEFAULT_USERNAME = "Administrator"
READY_STATUS = "active"
MAX_HOSTNAME_LENGTH = 50

_HOSTNAME_INVALID = re.compile(r"[^a-zA-Z0-9-]")


def sanitize_hostname(label: str) -> str:
    """Replace anything but alphanumerics and hyphens, truncated to the provider limit."""
    return _HOSTNAME_INVALID.sub("-", label)[:MAX_HOSTNAME_LENGTH]


class CloudProvider:
    """
    HTTP provisioning provider.

    Implements the ProvisioningProvider protocol. Timeouts, transport errors,
    rate limiting and 5xx responses are transient; unknown plans or regions and
    other 4xx responses are fatal.
    """

    name = "cloud"

    def __init__(
        self,
        api_url: str,
        api_token: str,
        timeout_seconds: float,
        os_id: str,
        app_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            api_url: Base URL of the provider API
            api_token: API token sent in the API-Token header
            timeout_seconds: Per-call timeout
            os_id: Operating system image to install
            app_id: Optional application image installed on top of the OS
            client: Pre-built HTTP client (tests inject a mock transport)
        """
        self.os_id = os_id
        self.app_id = app_id
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(
            base_url=api_url,
            headers={"API-Token": api_token, "Content-Type": "application/json"},
            timeout=timeout_seconds,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def create(self, plan: PlanSpec, label: str, region: str) -> str:
        """Create an instance and return its provider id."""
        product_id = PRODUCT_MAPPING.get(plan.plan_id)
        if product_id is None:
            raise ProvisioningProviderError(f"No product for plan {plan.plan_id}")
        provider_region = REGION_MAPPING.get(region)
        if provider_region is None:
            raise ProvisioningProviderError(f"Region {region} is not offered by the provider")

        body = CreateInstanceBody(
            hostnames=[sanitize_hostname(label)],
            region=provider_region,
            product_id=product_id,
            os_id=self.os_id,
            app_id=self.app_id,
        )

        logger.info(
            "creating_provider_instance",
            plan_id=plan.plan_id,
            region=provider_region,
            hostname=body.hostnames[0],
        )
        payload = await self._request(
            "POST", "/instances", "create", json=body.model_dump(by_alias=True, exclude_none=True)
        )

        try:
            instance_id = CreateInstanceResponse.model_validate(payload).instance_id()
        except PydanticValidationError as exc:
            raise ProvisioningProviderError(f"Malformed create response: {exc}") from exc
        if not instance_id:
            # Order accepted but no instance yet
            raise ProvisioningProviderError(
                "Create response carried no instance id", transient=True
            )

        logger.info("provider_instance_created", instance_id=instance_id, plan_id=plan.plan_id)
        return instance_id

    async def fetch_status(self, instance_id: str) -> InstanceStatus:
        """Get instance state. Ready means status active with an IPv4 address."""
        payload = await self._request("GET", f"/instances/{instance_id}", "fetch_status")

        try:
            instance = InstanceDetailsResponse.model_validate(payload).data.instance
        except PydanticValidationError as exc:
            raise ProvisioningProviderError(f"Malformed instance response: {exc}") from exc

        ready = instance.status == READY_STATUS and bool(instance.ipv4)
        return InstanceStatus(
            instance_id=instance.id,
            ready=ready,
            address=instance.ipv4 or None,
            username=instance.username or DEFAULT_USERNAME,
            secret=instance.password,
            provider_status=instance.status,
        )

    async def delete(self, instance_id: str) -> bool:
        """Delete an instance. Any failure is reported as False."""
        try:
            await self._request("DELETE", f"/instances/{instance_id}", "delete")
        except ProvisioningProviderError as exc:
            logger.warning(
                "provider_instance_delete_failed",
                instance_id=instance_id,
                error=exc.message,
                classification=exc.classification,
            )
            return False

        logger.info("provider_instance_deleted", instance_id=instance_id)
        return True

    async def _request(
        self, method: str, path: str, operation: str, json: dict[str, object] | None = None
    ) -> dict[str, object]:
        """Send one bounded request and classify failures."""
        start = time.perf_counter()
        try:
            response = await self._client.request(
                method, path, json=json, timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as exc:
            self._record(operation, "transient", start)
            logger.error("provider_request_timeout", operation=operation, path=path)
            raise ProvisioningProviderError(
                f"{operation} timed out after {self.timeout_seconds}s", transient=True
            ) from exc
        except httpx.TransportError as exc:
            self._record(operation, "transient", start)
            logger.error("provider_request_failed", operation=operation, path=path, error=str(exc))
            raise ProvisioningProviderError(f"{operation} failed: {exc}", transient=True) from exc

        if response.status_code >= 400:
            transient = response.status_code >= 500 or response.status_code == 429
            self._record(operation, "transient" if transient else "fatal", start)
            logger.error(
                "provider_api_error",
                operation=operation,
                path=path,
                status=response.status_code,
                error=response.text[:500],
            )
            raise ProvisioningProviderError(
                f"{operation} returned HTTP {response.status_code}", transient=transient
            )

        self._record(operation, "success", start)
        if not response.content:
            return {}
        try:
            result: dict[str, object] = response.json()
        except ValueError as exc:
            raise ProvisioningProviderError(f"{operation} returned invalid JSON") from exc
        return result

    def _record(self, operation: str, outcome: str, start: float) -> None:
        metrics.record_provider_call(
            self.name, operation, outcome, time.perf_counter() - start
        )
