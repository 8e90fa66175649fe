# Overview: Immutable value types shared by the payout engine services.

"""
Payout Engine Value Types

WHY: Every figure that reaches the ledger must be reconstructible from the
record alone. These types are frozen so a snapshot, once produced, can only
be corrected by a new opposite-signed snapshot, never by an edit.

CONVENTIONS:
- Money is integer cents (matches Store.tax_rate_bps / *_cents columns)
- Percentages are integer basis points (4000 = 40%)
- Fractions of a cent only exist inside Decimal math and are rounded once
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Mapping

from app.validation import (
    ValidationError,
    optional_bps,
    optional_cents,
    require_bps,
    require_cents,
    require_choice,
    require_quantity,
)


# =============================================================================
# CONSTANTS
# =============================================================================

LINE_KIND_SERVICE = "SERVICE"
LINE_KIND_PRODUCT = "PRODUCT"
LINE_KINDS = {LINE_KIND_SERVICE, LINE_KIND_PRODUCT}

PLAN_HOURLY = "HOURLY"
PLAN_SALARY = "SALARY"
PLAN_COMMISSION = "COMMISSION"
PLAN_TIERED_COMMISSION = "TIERED_COMMISSION"
PLAN_CHAIR_RENT = "CHAIR_RENT"
PLAN_TYPES = {PLAN_HOURLY, PLAN_SALARY, PLAN_COMMISSION, PLAN_TIERED_COMMISSION, PLAN_CHAIR_RENT}

ROUNDING_HALF_UP = "HALF_UP"
ROUNDING_HALF_EVEN = "HALF_EVEN"
ROUNDING_MODES = {ROUNDING_HALF_UP, ROUNDING_HALF_EVEN}

TIP_RECIPIENT_EMPLOYEE = "EMPLOYEE"
TIP_RECIPIENT_OWNER = "OWNER"
TIP_RECIPIENTS = {TIP_RECIPIENT_EMPLOYEE, TIP_RECIPIENT_OWNER}

# Where the commission percentage on a snapshot came from
RATE_SOURCE_PLAN = "PLAN"
RATE_SOURCE_TIER = "TIER"
RATE_SOURCE_OVERRIDE = "OVERRIDE"
RATE_SOURCE_DEFAULT = "DEFAULT"
RATE_SOURCE_CHAIR_RENT = "CHAIR_RENT"
RATE_SOURCE_NO_PLAN = "NO_PLAN"

SNAPSHOT_STATUS_PAID = "PAID"
SNAPSHOT_STATUS_REFUNDED = "REFUNDED"

REFUND_KIND_FULL = "FULL"
REFUND_KIND_QUANTITY = "QUANTITY"
REFUND_KIND_AMOUNT = "AMOUNT"


def _frozen_mapping(value: Mapping | None) -> Mapping:
    return MappingProxyType(dict(value or {}))


# =============================================================================
# COMPENSATION
# =============================================================================

@dataclass(frozen=True)
class CommissionTier:
    """One revenue bracket of a tiered plan: [min, max) -> percentage."""
    min_revenue_cents: int
    max_revenue_cents: int | None
    percentage_bps: int
    priority: int = 0
    tier_id: int | None = None
    name: str | None = None

    def __post_init__(self):
        require_cents("min_revenue_cents", self.min_revenue_cents)
        optional_cents("max_revenue_cents", self.max_revenue_cents)
        require_bps("percentage_bps", self.percentage_bps)
        if self.max_revenue_cents is not None and self.max_revenue_cents <= self.min_revenue_cents:
            raise ValidationError("max_revenue_cents must be greater than min_revenue_cents")

    def contains(self, revenue_cents: int) -> bool:
        if revenue_cents < self.min_revenue_cents:
            return False
        return self.max_revenue_cents is None or revenue_cents < self.max_revenue_cents


@dataclass(frozen=True)
class CompensationPlan:
    """
    One employee's compensation rule over [effective_from, effective_to).

    effective_to=None means the plan is still open (currently active).
    """
    plan_id: int | None
    employee_id: int
    plan_type: str
    effective_from: date
    effective_to: date | None = None
    service_commission_bps: int | None = None
    product_commission_bps: int | None = None
    tiers: tuple[CommissionTier, ...] = ()
    service_overrides: Mapping[str, int] = field(default_factory=dict)
    hourly_rate_cents: int = 0
    base_salary_cents: int = 0
    chair_rent_cents: int = 0
    use_max_of_base_or_commission: bool = False

    def __post_init__(self):
        require_choice("plan_type", self.plan_type, PLAN_TYPES)
        if not isinstance(self.effective_from, date) or isinstance(self.effective_from, datetime):
            raise ValidationError("effective_from must be a date")
        if self.effective_to is not None:
            if not isinstance(self.effective_to, date) or isinstance(self.effective_to, datetime):
                raise ValidationError("effective_to must be a date")
            if self.effective_to <= self.effective_from:
                raise ValidationError("effective_to must be after effective_from")
        optional_bps("service_commission_bps", self.service_commission_bps)
        optional_bps("product_commission_bps", self.product_commission_bps)
        for key, bps in dict(self.service_overrides).items():
            require_bps(f"service_overrides[{key}]", bps)
        require_cents("hourly_rate_cents", self.hourly_rate_cents)
        require_cents("base_salary_cents", self.base_salary_cents)
        require_cents("chair_rent_cents", self.chair_rent_cents)
        object.__setattr__(self, "tiers", tuple(self.tiers))
        object.__setattr__(self, "service_overrides", _frozen_mapping(self.service_overrides))

    def covers(self, business_date: date) -> bool:
        if business_date < self.effective_from:
            return False
        return self.effective_to is None or business_date < self.effective_to


@dataclass(frozen=True)
class CommissionRule:
    """Result of dispatching once on plan type; all the calculator needs."""
    service_bps: int
    product_bps: int
    rate_source: str
    plan_id: int | None = None
    plan_type: str | None = None
    tier_id: int | None = None
    tier_name: str | None = None
    service_rate_source: str | None = None

    def bps_for(self, kind: str) -> int:
        return self.service_bps if kind == LINE_KIND_SERVICE else self.product_bps

    def source_for(self, kind: str) -> str:
        if kind == LINE_KIND_SERVICE and self.service_rate_source:
            return self.service_rate_source
        return self.rate_source


# =============================================================================
# CHECKOUT INPUTS
# =============================================================================

@dataclass(frozen=True)
class LineItemInput:
    kind: str
    unit_price_cents: int
    quantity: int = 1
    price_override_cents: int | None = None
    employee_id: int | None = None
    discount_cents: int = 0
    tip_cents: int = 0
    line_ref: str | None = None
    item_id: str | None = None
    item_name: str | None = None

    def __post_init__(self):
        require_choice("kind", self.kind, LINE_KINDS)
        require_cents("unit_price_cents", self.unit_price_cents)
        require_quantity("quantity", self.quantity)
        optional_cents("price_override_cents", self.price_override_cents)
        require_cents("discount_cents", self.discount_cents)
        require_cents("tip_cents", self.tip_cents)

    @property
    def effective_unit_price_cents(self) -> int:
        if self.price_override_cents is not None:
            return self.price_override_cents
        return self.unit_price_cents


@dataclass(frozen=True)
class PayoutConfig:
    """
    Point-in-time configuration for ONE transaction.

    Resolved once before any line math runs and handed down explicitly, so a
    plan edit landing mid-checkout can never split a transaction across two
    configurations.

    plans: employee_id -> that employee's full plan history
    qualifying_revenue_cents: employee_id -> revenue used for tier selection
    """
    default_service_commission_bps: int = 0
    default_product_commission_bps: int = 0
    tips_affect_commission: bool = False
    tip_recipient: str = TIP_RECIPIENT_EMPLOYEE
    rounding_mode: str = ROUNDING_HALF_UP
    business_day_cutoff_hour: int = 0
    tax_rate_bps: int = 0
    timezone: str | None = None
    occurred_at: datetime | None = None
    plans: Mapping[int, tuple[CompensationPlan, ...]] = field(default_factory=dict)
    qualifying_revenue_cents: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self):
        require_bps("default_service_commission_bps", self.default_service_commission_bps)
        require_bps("default_product_commission_bps", self.default_product_commission_bps)
        require_choice("tip_recipient", self.tip_recipient, TIP_RECIPIENTS)
        require_choice("rounding_mode", self.rounding_mode, ROUNDING_MODES)
        require_bps("tax_rate_bps", self.tax_rate_bps)
        cutoff = self.business_day_cutoff_hour
        if isinstance(cutoff, bool) or not isinstance(cutoff, int) or not 0 <= cutoff <= 23:
            raise ValidationError("business_day_cutoff_hour must be an integer between 0 and 23")
        object.__setattr__(
            self, "plans", _frozen_mapping({k: tuple(v) for k, v in dict(self.plans).items()})
        )
        object.__setattr__(self, "qualifying_revenue_cents", _frozen_mapping(self.qualifying_revenue_cents))


@dataclass(frozen=True)
class FranchiseSplitConfig:
    """Franchise-level carve-out applied to the owner amount only."""
    enabled: bool = False
    royalty_bps: int = 0
    marketing_bps: int = 0
    rounding_mode: str = ROUNDING_HALF_UP


# =============================================================================
# OUTPUTS
# =============================================================================

@dataclass(frozen=True)
class LineItemSnapshot:
    """
    Frozen payout record for one line item.

    Stores the percentage, tier and rounding mode actually used so that a
    reversal reproduces the original math instead of today's.
    """
    kind: str
    quantity: int
    unit_price_cents: int
    gross_cents: int
    discount_cents: int
    net_cents: int
    tax_cents: int
    tip_cents: int
    employee_tip_cents: int
    owner_tip_cents: int
    commission_bps: int
    commission_cents: int
    owner_cents: int
    business_date: date
    rounding_mode: str
    rate_source: str
    tips_affect_commission: bool = False
    plan_id: int | None = None
    plan_type: str | None = None
    tier_id: int | None = None
    tier_name: str | None = None
    employee_id: int | None = None
    line_ref: str | None = None
    item_id: str | None = None
    item_name: str | None = None
    status: str = SNAPSHOT_STATUS_PAID

    @property
    def is_reversal(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["business_date"] = self.business_date.isoformat()
        return data


@dataclass(frozen=True)
class RefundReversal(LineItemSnapshot):
    """Opposite-signed snapshot cancelling (part of) an original snapshot."""
    reverses_ref: str | None = None
    refund_kind: str = REFUND_KIND_FULL
    reason: str | None = None

    def __post_init__(self):
        if not self.reverses_ref:
            raise ValidationError("A refund reversal must reference the snapshot it reverses")

    @property
    def is_reversal(self) -> bool:
        return True


@dataclass(frozen=True)
class RefundRequest:
    """
    Refund one original line.

    quantity / amount_cents both None -> refund whatever remains of the line.
    """
    line_ref: str
    quantity: int | None = None
    amount_cents: int | None = None

    def __post_init__(self):
        if not self.line_ref:
            raise ValidationError("line_ref is required")
        if self.quantity is not None and self.amount_cents is not None:
            raise ValidationError("Refund by quantity or by amount, not both")
        if self.quantity is not None:
            require_quantity("quantity", self.quantity)
        if self.amount_cents is not None:
            require_cents("amount_cents", self.amount_cents)
            if self.amount_cents == 0:
                raise ValidationError("amount_cents must be > 0")


@dataclass(frozen=True)
class TransactionPayout:
    """
    Computed view over one transaction's snapshots. Never a source of truth:
    always re-derivable by summing the line snapshots.
    """
    line_count: int
    gross_cents: int
    discount_cents: int
    net_cents: int
    tax_cents: int
    tip_cents: int
    employee_tip_cents: int
    owner_tip_cents: int
    commission_cents: int
    owner_cents: int
    grand_total_cents: int
    invariant_ok: bool
    royalty_cents: int = 0
    marketing_cents: int = 0
    owner_net_cents: int | None = None
    split_applied: bool = False

    def __post_init__(self):
        if self.owner_net_cents is None:
            object.__setattr__(self, "owner_net_cents", self.owner_cents)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
