"""
VPS plan catalog configuration.

Maps plan IDs to machine specs and prices, and lists the locations orders may target.
"""

from dataclasses import dataclass
from decimal import Decimal

from app.exceptions import ValidationError
from app.models.api import BillingCycle


@dataclass(frozen=True)
class PlanSpec:
    """VPS plan configuration."""

    plan_id: str
    name: str
    vcpu: int
    ram_gb: Decimal
    storage_gb: int
    monthly_price: Decimal
    yearly_price: Decimal
    operating_system: str = "Windows Server 2022"

    def __post_init__(self) -> None:
        """Validate plan configuration."""
        if not self.plan_id:
            raise ValueError("Plan ID required")
        if self.vcpu <= 0:
            raise ValueError(f"vCPU count must be positive: {self.vcpu}")
        if self.monthly_price <= 0 or self.yearly_price <= 0:
            raise ValueError(f"Prices must be positive for plan {self.plan_id}")

    def price_for(self, cycle: BillingCycle) -> Decimal:
        """Price charged per billing cycle."""
        return self.yearly_price if cycle == BillingCycle.YEARLY else self.monthly_price


# Plan catalog (must match the prices configured on the payment processor)
PLANS: dict[str, PlanSpec] = {
    "basic": PlanSpec(
        plan_id="basic",
        name="Starter",
        vcpu=1,
        ram_gb=Decimal("2.5"),
        storage_gb=17,
        monthly_price=Decimal("12.49"),
        yearly_price=Decimal("124.90"),
    ),
    "prime": PlanSpec(
        plan_id="prime",
        name="Professional",
        vcpu=2,
        ram_gb=Decimal("4"),
        storage_gb=35,
        monthly_price=Decimal("19.49"),
        yearly_price=Decimal("194.90"),
    ),
    "pro": PlanSpec(
        plan_id="pro",
        name="Enterprise",
        vcpu=4,
        ram_gb=Decimal("8"),
        storage_gb=65,
        monthly_price=Decimal("34.49"),
        yearly_price=Decimal("344.90"),
    ),
}

LOCATIONS: frozenset[str] = frozenset(
    {"london", "amsterdam", "frankfurt", "newYork", "singapore", "tokyo"}
)


def get_plan(plan_id: str) -> PlanSpec:
    """
    Get plan configuration by ID.

    Args:
        plan_id: Plan identifier (basic, prime, pro)

    Returns:
        Plan configuration

    Raises:
        ValidationError: If plan ID not found
    """
    plan = PLANS.get(plan_id)
    if not plan:
        raise ValidationError(f"Unknown plan ID: {plan_id}")
    return plan


def validate_location(location: str) -> str:
    """Return location unchanged if it is offered, else raise ValidationError."""
    if location not in LOCATIONS:
        raise ValidationError(f"Unknown location: {location}")
    return location
