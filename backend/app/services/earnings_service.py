# Overview: Per-employee earnings statements summed from stored payout snapshots.

"""
Earnings Statement

Sums snapshots only. Commission figures are whatever checkout froze; this
module never re-resolves a tier or a rate. Wages, salary and chair rent come
from the compensation plan in force for the period.

Gross pay by plan type:
- COMMISSION / TIERED_COMMISSION: commission + tips
- HOURLY: wages + tips (or max(wages, commission) + tips with "greater of")
- SALARY: salary + tips (or max(salary, commission) + tips with "greater of")
- CHAIR_RENT: commission + tips - rent (service commission IS the service revenue)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from app.validation import ValidationError, require_int
from .payout_schemas import (
    CompensationPlan,
    LineItemSnapshot,
    LINE_KIND_SERVICE,
    PLAN_CHAIR_RENT,
    PLAN_HOURLY,
    PLAN_SALARY,
    ROUNDING_HALF_UP,
)
from .payout_service import round_cents


@dataclass(frozen=True)
class EarningsStatement:
    employee_id: int
    period_start: date
    period_end: date
    plan_id: int | None
    plan_type: str | None
    line_count: int
    service_revenue_cents: int
    product_revenue_cents: int
    service_commission_cents: int
    product_commission_cents: int
    tips_cents: int
    hours_worked_minutes: int
    hourly_wages_cents: int
    base_salary_cents: int
    chair_rent_cents: int
    gross_pay_cents: int

    @property
    def commission_cents(self) -> int:
        return self.service_commission_cents + self.product_commission_cents

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["period_start"] = self.period_start.isoformat()
        data["period_end"] = self.period_end.isoformat()
        data["commission_cents"] = self.commission_cents
        return data


def _gross_pay(plan: CompensationPlan | None, commission: int, tips: int, wages: int, salary: int, rent: int) -> int:
    if plan is None:
        return commission + tips
    if plan.plan_type == PLAN_HOURLY:
        base = max(wages, commission) if plan.use_max_of_base_or_commission else wages
        return base + tips
    if plan.plan_type == PLAN_SALARY:
        base = max(salary, commission) if plan.use_max_of_base_or_commission else salary
        return base + tips
    if plan.plan_type == PLAN_CHAIR_RENT:
        return commission + tips - rent
    return commission + tips


def build_earnings_statement(
    employee_id: int,
    plan: CompensationPlan | None,
    snapshots: Iterable[LineItemSnapshot],
    period_start: date,
    period_end: date,
    hours_worked_minutes: int = 0,
) -> EarningsStatement:
    """
    Build one employee's statement for [period_start, period_end] (inclusive).

    Reversal snapshots are included so refunds inside the period reduce
    revenue and commission. Lines belonging to other employees and lines
    outside the period are ignored.
    """
    require_int("hours_worked_minutes", hours_worked_minutes)
    if hours_worked_minutes < 0:
        raise ValidationError("hours_worked_minutes must be >= 0")
    if period_end < period_start:
        raise ValidationError("period_end must not be before period_start")

    lines = [
        s for s in snapshots
        if s.employee_id == employee_id and period_start <= s.business_date <= period_end
    ]

    service_revenue = product_revenue = service_commission = product_commission = tips = 0
    for snap in lines:
        if snap.kind == LINE_KIND_SERVICE:
            service_revenue += snap.net_cents
            service_commission += snap.commission_cents
        else:
            product_revenue += snap.net_cents
            product_commission += snap.commission_cents
        tips += snap.employee_tip_cents

    wages = salary = rent = 0
    if plan is not None:
        if plan.plan_type == PLAN_HOURLY:
            wages = round_cents(Decimal(plan.hourly_rate_cents) * hours_worked_minutes / 60, ROUNDING_HALF_UP)
        elif plan.plan_type == PLAN_SALARY:
            salary = plan.base_salary_cents
        elif plan.plan_type == PLAN_CHAIR_RENT:
            rent = plan.chair_rent_cents

    commission = service_commission + product_commission
    return EarningsStatement(
        employee_id=employee_id,
        period_start=period_start,
        period_end=period_end,
        plan_id=plan.plan_id if plan else None,
        plan_type=plan.plan_type if plan else None,
        line_count=len(lines),
        service_revenue_cents=service_revenue,
        product_revenue_cents=product_revenue,
        service_commission_cents=service_commission,
        product_commission_cents=product_commission,
        tips_cents=tips,
        hours_worked_minutes=hours_worked_minutes,
        hourly_wages_cents=wages,
        base_salary_cents=salary,
        chair_rent_cents=rent,
        gross_pay_cents=_gross_pay(plan, commission, tips, wages, salary, rent),
    )
