# entro/domain/plans.py

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class PricingPlan(str, Enum):
    NON_PROFIT = "NON_PROFIT"
    PAY_PER_EVENT = "PAY_PER_EVENT"
    ORGANIZER = "ORGANIZER"
    PRO_ORGANIZER = "PRO_ORGANIZER"


@dataclass(frozen=True)
class PlanLimits:
    # None means unlimited
    active_events: int | None
    ticket_limit: int
    limit_period: Literal["event", "month"]
    # Cents per ticket over the limit; None means a hard limit
    overage_fee: int | None
    monthly_price: int | None
    event_price: int | None
    branding_removal_allowed: bool
    whitelabel_included: bool


PLAN_LIMITS: dict[PricingPlan, PlanLimits] = {
    PricingPlan.NON_PROFIT: PlanLimits(
        active_events=1,
        ticket_limit=500,
        limit_period="event",
        overage_fee=None,
        monthly_price=0,
        event_price=None,
        branding_removal_allowed=True,
        whitelabel_included=False,
    ),
    PricingPlan.PAY_PER_EVENT: PlanLimits(
        active_events=1,
        ticket_limit=1000,
        limit_period="event",
        overage_fee=10,
        monthly_price=None,
        event_price=4900,
        branding_removal_allowed=True,
        whitelabel_included=False,
    ),
    PricingPlan.ORGANIZER: PlanLimits(
        active_events=None,
        ticket_limit=3000,
        limit_period="month",
        overage_fee=8,
        monthly_price=4900,
        event_price=None,
        branding_removal_allowed=True,
        whitelabel_included=False,
    ),
    PricingPlan.PRO_ORGANIZER: PlanLimits(
        active_events=None,
        ticket_limit=10000,
        limit_period="month",
        overage_fee=5,
        monthly_price=9900,
        event_price=None,
        branding_removal_allowed=False,
        whitelabel_included=True,
    ),
}

PLAN_DISPLAY_NAMES: dict[PricingPlan, str] = {
    PricingPlan.NON_PROFIT: "Non-profit & Stichtingen",
    PricingPlan.PAY_PER_EVENT: "Pay-Per-Event",
    PricingPlan.ORGANIZER: "Organizer",
    PricingPlan.PRO_ORGANIZER: "Pro Organizer",
}

DEFAULT_PLATFORM_FEE_BPS = 200
BRANDING_REMOVAL_FEE_BPS = 200


@dataclass(frozen=True)
class OverageCheck:
    allowed: bool
    current_sold: int
    limit: int
    overage_tickets: int
    overage_fee: int


def get_plan_limits(plan: PricingPlan) -> PlanLimits:
    return PLAN_LIMITS[PricingPlan(plan)]


def is_overage_allowed(plan: PricingPlan) -> bool:
    return get_plan_limits(plan).overage_fee is not None


def get_plan_overage_fee(plan: PricingPlan) -> int:
    return get_plan_limits(plan).overage_fee or 0


def is_monthly_plan(plan: PricingPlan) -> bool:
    monthly_price = get_plan_limits(plan).monthly_price
    return monthly_price is not None and monthly_price > 0


def is_pay_per_event_plan(plan: PricingPlan) -> bool:
    return PricingPlan(plan) == PricingPlan.PAY_PER_EVENT


def get_plan_display_name(plan: PricingPlan) -> str:
    return PLAN_DISPLAY_NAMES[PricingPlan(plan)]


def effective_platform_fee_bps(
    plan: PricingPlan,
    branding_removed: bool = False,
    override_bps: int | None = None,
) -> int:
    """
    Basis points the platform keeps from ticket revenue.

    A platform-admin override on the event wins. Otherwise removing the
    branding costs an extra surcharge, unless the plan is whitelabel already.
    """
    if override_bps is not None:
        return override_bps

    fee_bps = DEFAULT_PLATFORM_FEE_BPS
    if branding_removed and not get_plan_limits(plan).whitelabel_included:
        fee_bps += BRANDING_REMOVAL_FEE_BPS
    return fee_bps


def effective_overage_fee(plan: PricingPlan, override_cents: int | None = None) -> int:
    if override_cents is not None:
        return override_cents
    return get_plan_overage_fee(plan)


def calculate_overage(
    current_sold: int,
    quantity: int,
    plan: PricingPlan,
    override_fee: int | None = None,
) -> OverageCheck:
    """
    Check a sale of `quantity` tickets against the plan's ticket limit.

    Only tickets newly pushed over the limit are charged.
    """
    limits = get_plan_limits(plan)
    new_total = current_sold + quantity

    if new_total <= limits.ticket_limit:
        return OverageCheck(True, current_sold, limits.ticket_limit, 0, 0)

    if not is_overage_allowed(plan):
        return OverageCheck(False, current_sold, limits.ticket_limit, 0, 0)

    previous_overage = max(0, current_sold - limits.ticket_limit)
    overage_tickets = max(0, new_total - limits.ticket_limit) - previous_overage
    fee = overage_tickets * effective_overage_fee(plan, override_fee)
    return OverageCheck(True, current_sold, limits.ticket_limit, overage_tickets, fee)
