# Overview: Refund reversal generation; mirrors original payout snapshots without touching them.

"""
Refund Reversal Service

WHY: A refund must cancel what the sale ORIGINALLY paid out, not what today's
configuration would pay. Commission rates, tiers and rounding rules change;
the snapshot recorded at checkout does not. Reversals are therefore derived
from the stored snapshot alone (its commission_bps and rounding_mode) and
never by re-running the line calculator.

DESIGN PRINCIPLES:
- Append-only: a reversal is a new opposite-signed snapshot; originals are
  never edited (snapshots are frozen)
- Full refund negates whatever remains of the line
- Partial refunds (by quantity or amount) scale the original proportionally
  and recompute commission from the STORED percentage
- The refund that exhausts a line sweeps the exact remainder, so any series
  of partials that adds up to a full refund nets to zero
- A partial never exceeds what remains of any field
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Sequence

from app.validation import ValidationError
from .payout_schemas import (
    LineItemSnapshot,
    RefundReversal,
    RefundRequest,
    REFUND_KIND_AMOUNT,
    REFUND_KIND_FULL,
    REFUND_KIND_QUANTITY,
    SNAPSHOT_STATUS_REFUNDED,
)
from .payout_service import apply_bps, round_cents


MONEY_FIELDS = (
    "gross_cents",
    "discount_cents",
    "net_cents",
    "tax_cents",
    "tip_cents",
    "employee_tip_cents",
    "owner_tip_cents",
    "commission_cents",
    "owner_cents",
)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _remaining(original: LineItemSnapshot, reversals: Sequence[LineItemSnapshot]) -> dict[str, int]:
    """What is still unreversed on a line (reversal amounts are negative)."""
    left = {name: getattr(original, name) for name in MONEY_FIELDS}
    for rev in reversals:
        for name in MONEY_FIELDS:
            left[name] += getattr(rev, name)
    left["quantity"] = original.quantity - sum(rev.quantity for rev in reversals)
    return left


def _is_exhausted(left: dict[str, int]) -> bool:
    return left["quantity"] <= 0 and not any(left[name] for name in MONEY_FIELDS)


def _scaled_amounts(
    original: LineItemSnapshot,
    left: dict[str, int],
    numerator: int,
    denominator: int,
    net_override: int | None = None,
) -> dict[str, int]:
    """
    Proportional slice of the original line, rebuilt from its stored rule.

    Every figure is clamped to what remains so rounding on earlier partials
    can never push a later one past the original.
    """
    mode = original.rounding_mode

    def scale(value: int) -> int:
        return round_cents(Decimal(value) * Decimal(numerator) / Decimal(denominator), mode)

    net = net_override if net_override is not None else scale(original.net_cents)
    net = _clamp(net, 0, left["net_cents"])

    gross = _clamp(scale(original.gross_cents), net, net + left["discount_cents"])

    commission = apply_bps(net, original.commission_bps, mode)
    commission = _clamp(commission, max(0, net - left["owner_cents"]), min(net, left["commission_cents"]))

    tip = _clamp(scale(original.tip_cents), 0, left["tip_cents"])
    employee_tip = _clamp(
        scale(original.employee_tip_cents),
        max(0, tip - left["owner_tip_cents"]),
        min(tip, left["employee_tip_cents"]),
    )

    return {
        "gross_cents": gross,
        "discount_cents": gross - net,
        "net_cents": net,
        "tax_cents": _clamp(scale(original.tax_cents), 0, left["tax_cents"]),
        "tip_cents": tip,
        "employee_tip_cents": employee_tip,
        "owner_tip_cents": tip - employee_tip,
        "commission_cents": commission,
        "owner_cents": net - commission,
    }


def _reverse_line(
    original: LineItemSnapshot,
    prior: Sequence[LineItemSnapshot],
    request: RefundRequest,
    reason: str | None,
    business_date: date | None,
) -> RefundReversal:
    left = _remaining(original, prior)
    if _is_exhausted(left):
        raise ValidationError(f"Line {original.line_ref} has already been fully refunded")

    if request.quantity is not None:
        if request.quantity > left["quantity"]:
            raise ValidationError(
                f"Cannot refund {request.quantity} units of line {original.line_ref}. "
                f"Original quantity: {original.quantity}, available: {max(left['quantity'], 0)}"
            )
        kind = REFUND_KIND_QUANTITY
        quantity = request.quantity
        if request.quantity == left["quantity"]:
            amounts = {name: left[name] for name in MONEY_FIELDS}
        else:
            amounts = _scaled_amounts(original, left, request.quantity, original.quantity)

    elif request.amount_cents is not None:
        if request.amount_cents > left["net_cents"]:
            raise ValidationError(
                f"Cannot refund {request.amount_cents} cents on line {original.line_ref}. "
                f"Original net: {original.net_cents}, available: {left['net_cents']}"
            )
        kind = REFUND_KIND_AMOUNT
        if request.amount_cents == left["net_cents"]:
            quantity = max(left["quantity"], 0)
            amounts = {name: left[name] for name in MONEY_FIELDS}
        else:
            quantity = 0
            amounts = _scaled_amounts(
                original, left, request.amount_cents, original.net_cents, net_override=request.amount_cents
            )

    else:
        kind = REFUND_KIND_FULL
        quantity = max(left["quantity"], 0)
        amounts = {name: left[name] for name in MONEY_FIELDS}

    return RefundReversal(
        kind=original.kind,
        quantity=quantity,
        unit_price_cents=original.unit_price_cents,
        business_date=business_date or original.business_date,
        rounding_mode=original.rounding_mode,
        rate_source=original.rate_source,
        commission_bps=original.commission_bps,
        tips_affect_commission=original.tips_affect_commission,
        plan_id=original.plan_id,
        plan_type=original.plan_type,
        tier_id=original.tier_id,
        tier_name=original.tier_name,
        employee_id=original.employee_id,
        line_ref=original.line_ref,
        item_id=original.item_id,
        item_name=original.item_name,
        status=SNAPSHOT_STATUS_REFUNDED,
        reverses_ref=original.line_ref,
        refund_kind=kind,
        reason=reason,
        **{name: -value for name, value in amounts.items()},
    )


def create_refund_reversals(
    originals: Sequence[LineItemSnapshot],
    requests: Sequence[RefundRequest] | None = None,
    prior_reversals: Sequence[RefundReversal] = (),
    reason: str | None = None,
    business_date: date | None = None,
) -> list[RefundReversal]:
    """
    Produce opposite-signed snapshots refunding (part of) a transaction.

    Args:
        originals: The transaction's persisted line snapshots
        requests: Lines/quantities/amounts to refund; None refunds everything left
        prior_reversals: Reversals already recorded against these originals
        reason: Free-text refund reason carried on every reversal
        business_date: Business day to book the reversal on (default: the
            original line's business date)

    Returns:
        New RefundReversal snapshots; originals are left untouched

    Raises:
        ValidationError: over-refund, unknown line, refunding a reversal,
            or nothing left to refund
    """
    by_ref: dict[str, LineItemSnapshot] = {}
    for snap in originals:
        if snap.is_reversal:
            raise ValidationError("Cannot refund a refund reversal")
        if not snap.line_ref:
            raise ValidationError("Original snapshots must carry a line_ref to be refunded")
        if snap.line_ref in by_ref:
            raise ValidationError(f"Duplicate original snapshot for line {snap.line_ref}")
        by_ref[snap.line_ref] = snap

    prior: dict[str, list[LineItemSnapshot]] = defaultdict(list)
    for rev in prior_reversals:
        if rev.reverses_ref not in by_ref:
            raise ValidationError(f"Prior reversal references unknown line {rev.reverses_ref}")
        prior[rev.reverses_ref].append(rev)

    if requests is None:
        requests = [
            RefundRequest(line_ref=ref)
            for ref, snap in by_ref.items()
            if not _is_exhausted(_remaining(snap, prior[ref]))
        ]
        if not requests:
            raise ValidationError("Transaction has already been fully refunded")

    reversals: list[RefundReversal] = []
    for request in requests:
        original = by_ref.get(request.line_ref)
        if original is None:
            raise ValidationError(f"Line {request.line_ref} is not part of this transaction")
        reversal = _reverse_line(original, prior[request.line_ref], request, reason, business_date)
        prior[request.line_ref].append(reversal)
        reversals.append(reversal)
    return reversals


def is_fully_refunded(
    originals: Sequence[LineItemSnapshot],
    reversals: Sequence[LineItemSnapshot],
) -> bool:
    """True once nothing is left unreversed on any original line."""
    prior: dict[str, list[LineItemSnapshot]] = defaultdict(list)
    for rev in reversals:
        prior[getattr(rev, "reverses_ref", None)].append(rev)
    return all(_is_exhausted(_remaining(snap, prior[snap.line_ref])) for snap in originals)
