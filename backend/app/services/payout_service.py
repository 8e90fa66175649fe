# Overview: Payout engine core; line snapshots, transaction aggregation and franchise splits.

"""
Payout Engine: Single Source of Truth for Commission/Payout Math

WHY: Reports never recompute payouts; they sum the snapshots frozen here at
checkout. A rounding slip in this module becomes a silent misstatement in
every report that reads the ledger, so the rules are narrow and explicit.

DESIGN PRINCIPLES:
- One PayoutConfig per transaction, passed in; nothing here reads live config
- Money is integer cents; fractions exist only inside Decimal math
- Rounding happens ONCE, at the line, under the config's named rounding mode
- owner = net - commission (subtraction, so the split always adds back up)
- Tips never enter the commission amount
- Aggregates are plain sums of already-rounded line figures

CHECKOUT FLOW:
1. calculate_line_item_snapshot() per line
2. calculate_transaction_payouts() over the snapshots
3. apply_split_payout() if the franchise carves royalty/marketing
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Iterable, Mapping, Sequence

from app.time_utils import get_business_date
from app.validation import MAX_BPS, ValidationError, require_bps, require_cents
from .compensation_service import resolve_commission_rule
from .payout_invariants import (
    PayoutInvariantError,
    assert_commission_invariant,
    validate_commission_invariant,
)
from .payout_schemas import (
    FranchiseSplitConfig,
    LineItemInput,
    LineItemSnapshot,
    PayoutConfig,
    TransactionPayout,
    LINE_KIND_SERVICE,
    ROUNDING_HALF_EVEN,
    ROUNDING_HALF_UP,
    SNAPSHOT_STATUS_PAID,
    TIP_RECIPIENT_OWNER,
)


logger = logging.getLogger(__name__)

_DECIMAL_ROUNDING = {
    ROUNDING_HALF_UP: ROUND_HALF_UP,
    ROUNDING_HALF_EVEN: ROUND_HALF_EVEN,
}

# Base commission 0%, tips excluded from commission, round-half-up, midnight cutoff
DEFAULT_PAYOUT_CONFIG = PayoutConfig()


# =============================================================================
# MONEY HELPERS
# =============================================================================

def round_cents(amount: Decimal, rounding_mode: str) -> int:
    """Round a Decimal amount of cents to a whole cent."""
    try:
        rounding = _DECIMAL_ROUNDING[rounding_mode]
    except KeyError:
        raise ValidationError(f"Unknown rounding mode: {rounding_mode!r}")
    return int(amount.quantize(Decimal("1"), rounding=rounding))


def apply_bps(cents: int, bps: int, rounding_mode: str) -> int:
    """cents * bps / 10000, rounded once."""
    return round_cents(Decimal(cents) * Decimal(bps) / Decimal(MAX_BPS), rounding_mode)


def payout_config_from_settings(settings: Mapping) -> PayoutConfig:
    """
    Build the deployment-wide base PayoutConfig from a Flask config mapping.

    Organization settings and the per-transaction fields (plans, timestamp,
    revenue) are layered on top by the payout ledger before checkout.
    """
    return PayoutConfig(
        default_service_commission_bps=settings.get(
            "PAYOUT_DEFAULT_SERVICE_COMMISSION_BPS", DEFAULT_PAYOUT_CONFIG.default_service_commission_bps
        ),
        default_product_commission_bps=settings.get(
            "PAYOUT_DEFAULT_PRODUCT_COMMISSION_BPS", DEFAULT_PAYOUT_CONFIG.default_product_commission_bps
        ),
        tips_affect_commission=bool(
            settings.get("PAYOUT_TIPS_AFFECT_COMMISSION", DEFAULT_PAYOUT_CONFIG.tips_affect_commission)
        ),
        rounding_mode=settings.get("PAYOUT_ROUNDING_MODE", DEFAULT_PAYOUT_CONFIG.rounding_mode),
        business_day_cutoff_hour=settings.get(
            "PAYOUT_BUSINESS_DAY_CUTOFF_HOUR", DEFAULT_PAYOUT_CONFIG.business_day_cutoff_hour
        ),
    )


# =============================================================================
# TIP ALLOCATION
# =============================================================================

def allocate_transaction_tip(total_tip_cents: int, items: Sequence[LineItemInput]) -> list[LineItemInput]:
    """
    Spread a transaction-level tip evenly over service lines that have an employee.

    Leftover cents go to the earliest eligible lines, so the allocation sums
    to exactly total_tip_cents. Returns new LineItemInputs; inputs are untouched.
    """
    require_cents("total_tip_cents", total_tip_cents)
    items = list(items)
    if total_tip_cents == 0:
        return items

    eligible = [i for i, item in enumerate(items) if item.kind == LINE_KIND_SERVICE and item.employee_id is not None]
    if not eligible:
        raise ValidationError("Cannot allocate a tip: no service line has an assigned employee")

    share, remainder = divmod(total_tip_cents, len(eligible))
    allocated = list(items)
    for position, index in enumerate(eligible):
        extra = share + (1 if position < remainder else 0)
        allocated[index] = replace(items[index], tip_cents=items[index].tip_cents + extra)
    return allocated


def _split_tip(item: LineItemInput, commission_bps: int, config: PayoutConfig) -> tuple[int, int]:
    """Returns (employee_tip_cents, owner_tip_cents)."""
    tip = item.tip_cents
    if tip == 0:
        return 0, 0
    if item.employee_id is None or config.tip_recipient == TIP_RECIPIENT_OWNER:
        return 0, tip
    if not config.tips_affect_commission:
        # Default policy: tip passes through to the employee untouched
        return tip, 0
    employee_tip = apply_bps(tip, commission_bps, config.rounding_mode)
    return employee_tip, tip - employee_tip


# =============================================================================
# LINE SNAPSHOT
# =============================================================================

def calculate_line_item_snapshot(item: LineItemInput, config: PayoutConfig) -> LineItemSnapshot:
    """
    Compute and freeze the payout for one line item.

    Args:
        item: The sold line (price, quantity, discount, tip, employee)
        config: The transaction's resolved PayoutConfig (must carry occurred_at)

    Returns:
        Immutable LineItemSnapshot capturing every figure and the rule used

    Raises:
        ValidationError: negative net amount, missing transaction timestamp
        CompensationConfigError: overlapping plans / broken tier setup
        PayoutInvariantError: split does not add back up (engine bug)
    """
    if config.occurred_at is None:
        raise ValidationError("PayoutConfig.occurred_at is required to resolve the business date")

    business_date = get_business_date(config.occurred_at, config.business_day_cutoff_hour, config.timezone)

    unit_price = item.effective_unit_price_cents
    gross = require_cents("gross_cents", unit_price * item.quantity)
    net = gross - item.discount_cents
    if net < 0:
        raise ValidationError(
            f"Discount {item.discount_cents} exceeds line price {gross}"
            + (f" on line {item.line_ref}" if item.line_ref else "")
        )

    rule = resolve_commission_rule(item.employee_id, business_date, config, item.item_id)
    commission_bps = rule.bps_for(item.kind)

    commission = apply_bps(net, commission_bps, config.rounding_mode)
    owner = net - commission
    tax = apply_bps(net, config.tax_rate_bps, config.rounding_mode)
    employee_tip, owner_tip = _split_tip(item, commission_bps, config)

    snapshot = LineItemSnapshot(
        kind=item.kind,
        quantity=item.quantity,
        unit_price_cents=unit_price,
        gross_cents=gross,
        discount_cents=item.discount_cents,
        net_cents=net,
        tax_cents=tax,
        tip_cents=item.tip_cents,
        employee_tip_cents=employee_tip,
        owner_tip_cents=owner_tip,
        commission_bps=commission_bps,
        commission_cents=commission,
        owner_cents=owner,
        business_date=business_date,
        rounding_mode=config.rounding_mode,
        rate_source=rule.source_for(item.kind),
        tips_affect_commission=config.tips_affect_commission,
        plan_id=rule.plan_id,
        plan_type=rule.plan_type,
        tier_id=rule.tier_id,
        tier_name=rule.tier_name,
        employee_id=item.employee_id,
        line_ref=item.line_ref,
        item_id=item.item_id,
        item_name=item.item_name,
        status=SNAPSHOT_STATUS_PAID,
    )
    assert_commission_invariant(snapshot)
    return snapshot


def calculate_line_item_snapshots(items: Iterable[LineItemInput], config: PayoutConfig) -> list[LineItemSnapshot]:
    """Snapshot every line of one transaction against the same config."""
    return [calculate_line_item_snapshot(item, config) for item in items]


# =============================================================================
# TRANSACTION AGGREGATE
# =============================================================================

def calculate_transaction_payouts(snapshots: Sequence[LineItemSnapshot]) -> TransactionPayout:
    """
    Sum a transaction's line snapshots into totals.

    No re-rounding: every total is a plain sum of already-rounded line
    figures, which is exactly what an auditor adding up lines would get.

    Raises:
        PayoutInvariantError: any snapshot breaks commission + owner == net
    """
    snapshots = list(snapshots)

    broken = [s for s in snapshots if not validate_commission_invariant(s)]
    if broken:
        logger.error(
            "Refusing to aggregate %d snapshot(s) violating commission + owner == net: %r",
            len(broken),
            [s.to_dict() for s in broken],
        )
        raise PayoutInvariantError("commission + owner != net", broken)

    def total(name: str) -> int:
        return sum(getattr(s, name) for s in snapshots)

    net = total("net_cents")
    tax = total("tax_cents")
    tip = total("tip_cents")

    return TransactionPayout(
        line_count=len(snapshots),
        gross_cents=total("gross_cents"),
        discount_cents=total("discount_cents"),
        net_cents=net,
        tax_cents=tax,
        tip_cents=tip,
        employee_tip_cents=total("employee_tip_cents"),
        owner_tip_cents=total("owner_tip_cents"),
        commission_cents=total("commission_cents"),
        owner_cents=total("owner_cents"),
        grand_total_cents=net + tax + tip,
        invariant_ok=True,
    )


# =============================================================================
# FRANCHISE SPLIT
# =============================================================================

def apply_split_payout(
    payout: TransactionPayout,
    split_config: FranchiseSplitConfig | None = None,
) -> TransactionPayout:
    """
    Carve franchise royalty and marketing out of the OWNER amount.

    Runs strictly after the owner amount is final; commission and tips are
    never touched. Absent or disabled config -> payout returned unchanged.
    """
    if split_config is None or not split_config.enabled:
        return payout

    if payout.split_applied:
        raise ValidationError("Franchise split has already been applied to this payout")

    royalty_bps = require_bps("royalty_bps", split_config.royalty_bps)
    marketing_bps = require_bps("marketing_bps", split_config.marketing_bps)
    if royalty_bps + marketing_bps > MAX_BPS:
        raise ValidationError("royalty_bps + marketing_bps cannot exceed 100%")

    # Round the combined carve once so royalty + marketing never exceeds owner
    carve = apply_bps(payout.owner_cents, royalty_bps + marketing_bps, split_config.rounding_mode)
    royalty = min(apply_bps(payout.owner_cents, royalty_bps, split_config.rounding_mode), carve)
    marketing = carve - royalty

    return replace(
        payout,
        royalty_cents=royalty,
        marketing_cents=marketing,
        owner_net_cents=payout.owner_cents - royalty - marketing,
        split_applied=True,
    )
