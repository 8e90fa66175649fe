# Overview: Compensation plan and commission tier resolution; pure functions over a resolved PayoutConfig.

"""
Compensation Resolution

WHY: Which rule paid an employee on a given day is a historical fact. A plan
edit made in June must not change what a February haircut paid, so plans are
always resolved by the transaction's BUSINESS DATE, never by "now".

DESIGN PRINCIPLES:
- Plans are half-open intervals [effective_from, effective_to)
- Overlapping plans are a data-integrity problem: fail loudly, never pick one
- Plan type is dispatched ONCE here into a CommissionRule; the snapshot
  calculator never branches on plan type
- Tier revenue is supplied by the caller; nothing here computes running totals
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable

from .payout_schemas import (
    CommissionRule,
    CommissionTier,
    CompensationPlan,
    PayoutConfig,
    PLAN_CHAIR_RENT,
    PLAN_COMMISSION,
    PLAN_HOURLY,
    PLAN_SALARY,
    PLAN_TIERED_COMMISSION,
    RATE_SOURCE_CHAIR_RENT,
    RATE_SOURCE_DEFAULT,
    RATE_SOURCE_NO_PLAN,
    RATE_SOURCE_OVERRIDE,
    RATE_SOURCE_PLAN,
    RATE_SOURCE_TIER,
)
from app.validation import MAX_BPS


logger = logging.getLogger(__name__)


class CompensationError(Exception):
    """Base class for compensation resolution errors."""


class NoActivePlanError(CompensationError):
    """No plan covers the employee on the requested business date."""

    def __init__(self, employee_id: int | None, business_date: date):
        super().__init__(f"No compensation plan covers employee {employee_id} on {business_date.isoformat()}")
        self.employee_id = employee_id
        self.business_date = business_date


class CompensationConfigError(CompensationError):
    """Stored compensation configuration violates an integrity rule; alert an operator."""


class OverlappingPlanError(CompensationConfigError):
    """More than one plan claims the same employee/date."""

    def __init__(self, employee_id: int, plan_ids: list[int | None], business_date: date | None = None):
        where = f" on {business_date.isoformat()}" if business_date else ""
        super().__init__(f"Overlapping compensation plans for employee {employee_id}{where}: {plan_ids}")
        self.employee_id = employee_id
        self.plan_ids = plan_ids
        self.business_date = business_date


NO_PLAN_RULE = CommissionRule(service_bps=0, product_bps=0, rate_source=RATE_SOURCE_NO_PLAN)


# =============================================================================
# PLAN RESOLUTION
# =============================================================================

def resolve_compensation_plan(
    employee_id: int,
    business_date: date,
    plans: Iterable[CompensationPlan],
) -> CompensationPlan:
    """
    Return the single plan whose [effective_from, effective_to) contains business_date.

    Raises:
        NoActivePlanError: nothing covers the date
        OverlappingPlanError: more than one plan covers the date, or more
            than one plan is open-ended
    """
    own = [p for p in plans if p.employee_id == employee_id]

    open_ended = [p for p in own if p.effective_to is None]
    if len(open_ended) > 1:
        raise OverlappingPlanError(employee_id, [p.plan_id for p in open_ended])

    matches = [p for p in own if p.covers(business_date)]
    if not matches:
        raise NoActivePlanError(employee_id, business_date)
    if len(matches) > 1:
        raise OverlappingPlanError(employee_id, [p.plan_id for p in matches], business_date)
    return matches[0]


def find_overlapping_plans(plans: Iterable[CompensationPlan]) -> list[tuple[CompensationPlan, CompensationPlan]]:
    """All pairs of one employee's plans whose intervals intersect."""
    ordered = sorted(plans, key=lambda p: (p.employee_id, p.effective_from))
    overlaps = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if second.employee_id != first.employee_id:
                break
            if first.effective_to is None or second.effective_from < first.effective_to:
                overlaps.append((first, second))
    return overlaps


# =============================================================================
# TIER RESOLUTION
# =============================================================================

def _tier_sort_key(tier: CommissionTier):
    # Lowest priority number wins; ties go to the most specific (highest) floor
    return (tier.priority, -tier.min_revenue_cents, tier.tier_id if tier.tier_id is not None else float("inf"))


def resolve_commission_tier(plan: CompensationPlan, revenue_cents: int) -> CommissionTier | None:
    """
    Pick the tier for a revenue figure, or None to fall back to the plan base.

    Ranges are half-open: revenue equal to a boundary belongs to the tier
    whose MINIMUM it is.
    """
    if plan.plan_type != PLAN_TIERED_COMMISSION:
        raise CompensationConfigError(f"Plan {plan.plan_id} is {plan.plan_type}, not {PLAN_TIERED_COMMISSION}")
    if not plan.tiers:
        raise CompensationConfigError(f"Tiered plan {plan.plan_id} has no commission tiers")

    candidates = [t for t in plan.tiers if t.contains(revenue_cents)]
    if not candidates:
        return None
    return min(candidates, key=_tier_sort_key)


# =============================================================================
# PLAN TYPE DISPATCH
# =============================================================================

def _base_service(plan: CompensationPlan, config: PayoutConfig, item_id: str | None) -> tuple[int, str]:
    if item_id is not None and item_id in plan.service_overrides:
        return plan.service_overrides[item_id], RATE_SOURCE_OVERRIDE
    if plan.service_commission_bps is not None:
        return plan.service_commission_bps, RATE_SOURCE_PLAN
    return config.default_service_commission_bps, RATE_SOURCE_DEFAULT


def _base_product(plan: CompensationPlan, config: PayoutConfig) -> tuple[int, str]:
    if plan.product_commission_bps is not None:
        return plan.product_commission_bps, RATE_SOURCE_PLAN
    return config.default_product_commission_bps, RATE_SOURCE_DEFAULT


def _commission_rule(plan, config, revenue_cents, item_id) -> CommissionRule:
    service_bps, service_source = _base_service(plan, config, item_id)
    product_bps, product_source = _base_product(plan, config)
    return CommissionRule(
        service_bps=service_bps,
        product_bps=product_bps,
        rate_source=product_source,
        service_rate_source=service_source,
        plan_id=plan.plan_id,
        plan_type=plan.plan_type,
    )


def _tiered_rule(plan, config, revenue_cents, item_id) -> CommissionRule:
    tier = resolve_commission_tier(plan, revenue_cents)
    product_bps, product_source = _base_product(plan, config)
    if tier is None:
        service_bps, service_source = _base_service(plan, config, item_id)
    else:
        service_bps, service_source = tier.percentage_bps, RATE_SOURCE_TIER
    return CommissionRule(
        service_bps=service_bps,
        product_bps=product_bps,
        rate_source=product_source,
        service_rate_source=service_source,
        plan_id=plan.plan_id,
        plan_type=plan.plan_type,
        tier_id=tier.tier_id if tier else None,
        tier_name=tier.name if tier else None,
    )


def _wage_rule(plan, config, revenue_cents, item_id) -> CommissionRule:
    # Hourly/salaried staff only earn commission their own plan grants
    if item_id is not None and item_id in plan.service_overrides:
        service_bps, service_source = plan.service_overrides[item_id], RATE_SOURCE_OVERRIDE
    else:
        service_bps, service_source = plan.service_commission_bps or 0, RATE_SOURCE_PLAN
    return CommissionRule(
        service_bps=service_bps,
        product_bps=plan.product_commission_bps or 0,
        rate_source=RATE_SOURCE_PLAN,
        service_rate_source=service_source,
        plan_id=plan.plan_id,
        plan_type=plan.plan_type,
    )


def _chair_rent_rule(plan, config, revenue_cents, item_id) -> CommissionRule:
    # Renter keeps service revenue; the business is paid through rent
    return CommissionRule(
        service_bps=MAX_BPS,
        product_bps=plan.product_commission_bps or 0,
        rate_source=RATE_SOURCE_PLAN,
        service_rate_source=RATE_SOURCE_CHAIR_RENT,
        plan_id=plan.plan_id,
        plan_type=plan.plan_type,
    )


RULE_HANDLERS: dict[str, Callable[..., CommissionRule]] = {
    PLAN_COMMISSION: _commission_rule,
    PLAN_TIERED_COMMISSION: _tiered_rule,
    PLAN_HOURLY: _wage_rule,
    PLAN_SALARY: _wage_rule,
    PLAN_CHAIR_RENT: _chair_rent_rule,
}


def resolve_commission_rule(
    employee_id: int | None,
    business_date: date,
    config: PayoutConfig,
    item_id: str | None = None,
) -> CommissionRule:
    """
    Resolve the commission rule for one employee on one business date.

    A missing plan is NOT fatal: the business keeps 100% for that line so a
    historical gap never blocks checkout. Overlaps and broken tier setups
    still raise.
    """
    if employee_id is None:
        return NO_PLAN_RULE

    try:
        plan = resolve_compensation_plan(employee_id, business_date, config.plans.get(employee_id, ()))
    except NoActivePlanError as exc:
        logger.warning("%s; owner keeps 100%%", exc)
        return NO_PLAN_RULE

    revenue_cents = config.qualifying_revenue_cents.get(employee_id, 0)
    return RULE_HANDLERS[plan.plan_type](plan, config, revenue_cents, item_id)
