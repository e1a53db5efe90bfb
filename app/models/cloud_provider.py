"""
Cloud provider wire models - Pydantic models for the provisioning REST API.

NO DICTIONARIES - Provider responses are validated before they reach the
reconciliation logic.

Responses are wrapped in a {"code": ..., "data": {...}} envelope. Create
returns the new instance under data.instances[0], older API revisions under
data or at the top level.
"""

from pydantic import BaseModel, ConfigDict, Field


class CreateInstanceBody(BaseModel):
    """POST /instances request body."""

    hostnames: list[str] = Field(..., min_length=1)
    region: str
    product_id: str = Field(..., serialization_alias="productId")
    os_id: str = Field(..., serialization_alias="osId")
    app_id: str | None = Field(None, serialization_alias="appId")
    billing_cycle: str = Field("monthly", serialization_alias="billingCycle")
    assign_ipv4: bool = Field(True, serialization_alias="assignIpv4")
    assign_ipv6: bool = Field(False, serialization_alias="assignIpv6")


class InstanceRef(BaseModel):
    """Instance reference inside a create response."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None


class CreateInstanceData(BaseModel):
    """data object of a create response."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    instances: list[InstanceRef] = Field(default_factory=list)


class CreateInstanceResponse(BaseModel):
    """POST /instances response."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    data: CreateInstanceData | None = None

    def instance_id(self) -> str | None:
        """First instance id found in any of the supported response shapes."""
        if self.data is not None:
            if self.data.instances and self.data.instances[0].id:
                return self.data.instances[0].id
            if self.data.id:
                return self.data.id
        return self.id


class InstanceDetails(BaseModel):
    """Instance object of a GET /instances/{id} response."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    hostname: str | None = None
    ipv4: str | None = None
    username: str | None = None
    password: str | None = None


class InstanceDetailsData(BaseModel):
    """data object of a GET /instances/{id} response."""

    model_config = ConfigDict(extra="ignore")

    instance: InstanceDetails


class InstanceDetailsResponse(BaseModel):
    """GET /instances/{id} response."""

    model_config = ConfigDict(extra="ignore")

    data: InstanceDetailsData
