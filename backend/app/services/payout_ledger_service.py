# Overview: Payout ledger storage boundary; resolves config from the DB and appends snapshot rows.

"""
Payout Ledger Invariants (authoritative)

- Rows are INSERT-only; mapper events reject UPDATE and DELETE.
- PayoutConfig is resolved ONCE per transaction, before any line math.
- Every write carries an idempotency_key; replaying a key returns the rows
  already stored and never recomputes them.
- Refund rows link to the SALE row they reverse (reverses_entry_id).
- Reads re-derive totals by summing rows; no totals are stored.
- Services flush; the caller owns the commit.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Iterable, Mapping, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    ENTRY_TYPE_REFUND,
    ENTRY_TYPE_SALE,
    EmployeeCompensationPlan,
    LedgerImmutableError,
    OrganizationPayoutSetting,
    PayoutSnapshotEntry,
    Store,
)
from app.time_utils import utcnow
from app.validation import ValidationError
from .compensation_service import NoActivePlanError, find_overlapping_plans as _overlapping_pairs, resolve_compensation_plan
from .concurrency import lock_for_update, run_with_retry
from .earnings_service import EarningsStatement, build_earnings_statement
from .payout_invariants import assert_refund_nets_to_zero
from .payout_schemas import (
    CompensationPlan,
    FranchiseSplitConfig,
    LineItemInput,
    PayoutConfig,
    RefundRequest,
    RefundReversal,
    TransactionPayout,
)
from .payout_service import (
    apply_split_payout,
    calculate_line_item_snapshots,
    calculate_transaction_payouts,
    payout_config_from_settings,
)
from .refund_reversal_service import create_refund_reversals, is_fully_refunded


__all__ = [
    "PayoutLedgerError",
    "LedgerImmutableError",
    "resolve_payout_config",
    "resolve_split_config",
    "record_transaction_payouts",
    "record_refund_reversals",
    "get_transaction_payout",
    "get_transaction_entries",
    "get_employee_earnings",
    "find_overlapping_plans",
]


class PayoutLedgerError(Exception):
    """Raised for unknown stores/transactions and misused idempotency keys."""


# Organization setting column -> PayoutConfig field (NULL = keep deployment default)
_SETTING_OVERRIDES = (
    "default_service_commission_bps",
    "default_product_commission_bps",
    "tips_affect_commission",
    "tip_recipient",
    "rounding_mode",
    "business_day_cutoff_hour",
)


def _get_store(store_id: int) -> Store:
    store = db.session.query(Store).filter_by(id=store_id).first()
    if not store:
        raise PayoutLedgerError(f"Store {store_id} not found")
    return store


def _org_setting(org_id: int) -> OrganizationPayoutSetting | None:
    return db.session.query(OrganizationPayoutSetting).filter_by(org_id=org_id).first()


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _plans_for(employee_ids: Iterable[int], org_id: int | None = None) -> dict[int, tuple[CompensationPlan, ...]]:
    ids = sorted({e for e in employee_ids if e is not None})
    if not ids:
        return {}
    query = db.session.query(EmployeeCompensationPlan).filter(EmployeeCompensationPlan.employee_id.in_(ids))
    if org_id is not None:
        query = query.filter(EmployeeCompensationPlan.org_id == org_id)
    plans: dict[int, list[CompensationPlan]] = {e: [] for e in ids}
    for row in query.order_by(EmployeeCompensationPlan.effective_from).all():
        plans[row.employee_id].append(row.to_plan())
    return {e: tuple(p) for e, p in plans.items()}


# =============================================================================
# CONFIG RESOLUTION
# =============================================================================

def resolve_payout_config(
    store_id: int,
    occurred_at: datetime,
    employee_ids: Iterable[int],
    qualifying_revenue_cents: Mapping[int, int] | None = None,
) -> PayoutConfig:
    """
    Freeze everything one transaction needs into a PayoutConfig.

    Layering: Flask config PAYOUT_* defaults, then the organization's
    payout setting, then the store's timezone and tax rate. Plans are
    loaded in full history; the engine picks by business date.
    """
    store = _get_store(store_id)
    config = payout_config_from_settings(current_app.config)

    setting = _org_setting(store.org_id)
    overrides = {}
    if setting is not None:
        for name in _SETTING_OVERRIDES:
            value = getattr(setting, name)
            if value is not None:
                overrides[name] = value

    return replace(
        config,
        **overrides,
        timezone=store.timezone,
        tax_rate_bps=store.tax_rate_bps or 0,
        occurred_at=occurred_at,
        plans=_plans_for(employee_ids, store.org_id),
        qualifying_revenue_cents=dict(qualifying_revenue_cents or {}),
    )


def resolve_split_config(store_id: int) -> FranchiseSplitConfig | None:
    """The organization's franchise split, or None when it has none configured."""
    store = _get_store(store_id)
    setting = _org_setting(store.org_id)
    if setting is None or not setting.split_enabled:
        return None
    config = payout_config_from_settings(current_app.config)
    return FranchiseSplitConfig(
        enabled=True,
        royalty_bps=setting.royalty_bps,
        marketing_bps=setting.marketing_bps,
        rounding_mode=setting.rounding_mode or config.rounding_mode,
    )


# =============================================================================
# WRITES
# =============================================================================

def _entries_for_key(idempotency_key: str) -> list[PayoutSnapshotEntry]:
    return (
        db.session.query(PayoutSnapshotEntry)
        .filter_by(idempotency_key=idempotency_key)
        .order_by(PayoutSnapshotEntry.line_index)
        .all()
    )


def _check_replay(
    entries: Sequence[PayoutSnapshotEntry], store_id: int, transaction_ref: str, entry_type: str
) -> None:
    for entry in entries:
        if (
            entry.store_id != store_id
            or entry.transaction_ref != transaction_ref
            or entry.entry_type != entry_type
        ):
            raise PayoutLedgerError(
                f"Idempotency key {entry.idempotency_key!r} already used for "
                f"{entry.entry_type} on transaction {entry.transaction_ref} in store {entry.store_id}"
            )


def _split_from_entries(entries: Sequence[PayoutSnapshotEntry]) -> FranchiseSplitConfig | None:
    for entry in entries:
        if entry.entry_type == ENTRY_TYPE_SALE and entry.royalty_bps is not None:
            return FranchiseSplitConfig(
                enabled=True,
                royalty_bps=entry.royalty_bps,
                marketing_bps=entry.marketing_bps or 0,
                rounding_mode=entry.split_rounding_mode or entry.rounding_mode,
            )
    return None


def _payout_from_entries(entries: Sequence[PayoutSnapshotEntry]) -> TransactionPayout:
    payout = calculate_transaction_payouts([e.to_snapshot() for e in entries])
    return apply_split_payout(payout, _split_from_entries(entries))


def _replay(store_id: int, transaction_ref: str, idempotency_key: str, entry_type: str):
    """Rows already stored under this key, or None when the key is unused."""
    existing = _entries_for_key(idempotency_key)
    if not existing:
        return None
    _check_replay(existing, store_id, transaction_ref, entry_type)
    current_app.logger.info(
        "%s write replayed for transaction %s (key %s); returning stored rows",
        entry_type,
        transaction_ref,
        idempotency_key,
    )
    return existing


def _sale_recorded(store_id: int, transaction_ref: str) -> bool:
    return (
        db.session.query(PayoutSnapshotEntry.id)
        .filter_by(store_id=store_id, transaction_ref=transaction_ref, entry_type=ENTRY_TYPE_SALE)
        .first()
        is not None
    )


def record_transaction_payouts(
    store_id: int,
    transaction_ref: str,
    items: Sequence[LineItemInput],
    config: PayoutConfig,
    idempotency_key: str,
    split_config: FranchiseSplitConfig | None = None,
) -> TransactionPayout:
    """
    Compute and append the payout snapshots for one completed sale.

    Lines without a line_ref are numbered "1", "2", ... in order.

    A concurrent writer that lands first is detected by the unique indexes
    at flush: the session is rolled back and the stored rows are returned
    when the key matches, otherwise the write is rejected.

    Returns:
        The transaction aggregate (with franchise split when enabled)

    Raises:
        ValidationError: bad line input, no lines
        PayoutLedgerError: unknown store, transaction already recorded,
            idempotency key reused for another write
        PayoutInvariantError: engine produced inconsistent numbers (nothing written)
    """
    if not idempotency_key:
        raise ValidationError("idempotency_key is required")
    if not transaction_ref:
        raise ValidationError("transaction_ref is required")

    def _op():
        existing = _replay(store_id, transaction_ref, idempotency_key, ENTRY_TYPE_SALE)
        if existing:
            return _payout_from_entries(existing)

        store = _get_store(store_id)
        if _sale_recorded(store_id, transaction_ref):
            raise PayoutLedgerError(f"Payouts for transaction {transaction_ref} are already recorded")

        lines = [
            item if item.line_ref else replace(item, line_ref=str(index + 1))
            for index, item in enumerate(items)
        ]
        if not lines:
            raise ValidationError("A transaction needs at least one line item")
        refs = [line.line_ref for line in lines]
        if len(set(refs)) != len(refs):
            raise ValidationError(f"Duplicate line_ref in transaction {transaction_ref}")

        snapshots = calculate_line_item_snapshots(lines, config)
        payout = apply_split_payout(calculate_transaction_payouts(snapshots), split_config)

        split_columns = {}
        if payout.split_applied:
            split_columns = {
                "royalty_bps": split_config.royalty_bps,
                "marketing_bps": split_config.marketing_bps,
                "split_rounding_mode": split_config.rounding_mode,
            }

        occurred_at = _to_utc_naive(config.occurred_at)
        for index, snapshot in enumerate(snapshots):
            db.session.add(
                PayoutSnapshotEntry.from_snapshot(
                    snapshot,
                    org_id=store.org_id,
                    store_id=store_id,
                    transaction_ref=transaction_ref,
                    idempotency_key=idempotency_key,
                    entry_type=ENTRY_TYPE_SALE,
                    line_index=index,
                    occurred_at=occurred_at,
                    **split_columns,
                )
            )
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            existing = _replay(store_id, transaction_ref, idempotency_key, ENTRY_TYPE_SALE)
            if existing:
                return _payout_from_entries(existing)
            if _sale_recorded(store_id, transaction_ref):
                raise PayoutLedgerError(f"Payouts for transaction {transaction_ref} are already recorded")
            raise

        current_app.logger.info(
            "Recorded %d payout snapshot(s) for transaction %s: commission=%s owner=%s",
            len(snapshots),
            transaction_ref,
            payout.commission_cents,
            payout.owner_cents,
        )
        return payout

    return run_with_retry(_op)


def record_refund_reversals(
    store_id: int,
    transaction_ref: str,
    idempotency_key: str,
    requests: Sequence[RefundRequest] | None = None,
    reason: str | None = None,
    refunded_at: datetime | None = None,
) -> list[RefundReversal]:
    """
    Append refund reversal rows beside a transaction's original snapshots.

    requests=None refunds everything still unreversed. Reversals are booked
    on the original line's business date.

    Raises:
        ValidationError: over-refund, unknown line, nothing left to refund
        PayoutLedgerError: unknown transaction, idempotency key reused
        PayoutInvariantError: a completed refund does not net to zero
    """
    if not idempotency_key:
        raise ValidationError("idempotency_key is required")

    def _op():
        existing = _replay(store_id, transaction_ref, idempotency_key, ENTRY_TYPE_REFUND)
        if existing:
            return [e.to_snapshot() for e in existing]

        store = _get_store(store_id)
        original_rows = lock_for_update(
            db.session.query(PayoutSnapshotEntry).filter_by(
                store_id=store_id, transaction_ref=transaction_ref, entry_type=ENTRY_TYPE_SALE
            )
        ).order_by(PayoutSnapshotEntry.line_index).all()
        if not original_rows:
            raise PayoutLedgerError(f"No payout snapshots recorded for transaction {transaction_ref}")

        prior_rows = (
            db.session.query(PayoutSnapshotEntry)
            .filter_by(store_id=store_id, transaction_ref=transaction_ref, entry_type=ENTRY_TYPE_REFUND)
            .order_by(PayoutSnapshotEntry.id)
            .all()
        )

        originals = [row.to_snapshot() for row in original_rows]
        prior = [row.to_snapshot() for row in prior_rows]
        reversals = create_refund_reversals(originals, requests, prior, reason)

        all_reversals = [*prior, *reversals]
        if is_fully_refunded(originals, all_reversals):
            assert_refund_nets_to_zero(originals, all_reversals)

        row_by_ref = {row.line_ref: row for row in original_rows}
        occurred_at = _to_utc_naive(refunded_at or utcnow())
        for index, reversal in enumerate(reversals):
            db.session.add(
                PayoutSnapshotEntry.from_snapshot(
                    reversal,
                    org_id=store.org_id,
                    store_id=store_id,
                    transaction_ref=transaction_ref,
                    idempotency_key=idempotency_key,
                    entry_type=ENTRY_TYPE_REFUND,
                    line_index=index,
                    occurred_at=occurred_at,
                    reverses_entry_id=row_by_ref[reversal.reverses_ref].id,
                )
            )
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            existing = _replay(store_id, transaction_ref, idempotency_key, ENTRY_TYPE_REFUND)
            if existing:
                return [e.to_snapshot() for e in existing]
            raise

        current_app.logger.info(
            "Recorded %d refund reversal(s) for transaction %s: commission=%s",
            len(reversals),
            transaction_ref,
            sum(r.commission_cents for r in reversals),
        )
        return reversals

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_transaction_entries(transaction_ref: str, store_id: int | None = None) -> list[PayoutSnapshotEntry]:
    """
    A transaction's rows in insert order.

    transaction_ref is only unique per store: without store_id the ref must
    resolve to exactly one store, otherwise PayoutLedgerError.
    """
    query = db.session.query(PayoutSnapshotEntry).filter_by(transaction_ref=transaction_ref)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    entries = query.order_by(PayoutSnapshotEntry.id).all()
    if store_id is None and len({e.store_id for e in entries}) > 1:
        raise PayoutLedgerError(
            f"Transaction {transaction_ref} is recorded in more than one store; pass store_id"
        )
    return entries


def get_transaction_payout(transaction_ref: str, store_id: int | None = None) -> TransactionPayout:
    """
    Re-derive a transaction's totals from its stored rows.

    Refund rows are included, so the result is the NET position; the
    franchise split recorded at sale time is re-applied to the net owner amount.
    """
    entries = get_transaction_entries(transaction_ref, store_id)
    if not entries:
        raise PayoutLedgerError(f"No payout snapshots recorded for transaction {transaction_ref}")
    return _payout_from_entries(entries)


def _plan_for_period(org_id: int, employee_id: int, start: date, end: date) -> CompensationPlan | None:
    plans = _plans_for([employee_id], org_id).get(employee_id, ())
    for day in (end, start):
        try:
            return resolve_compensation_plan(employee_id, day, plans)
        except NoActivePlanError:
            continue
    return None


def get_employee_earnings(
    employee_id: int,
    start: date,
    end: date,
    hours_worked_minutes: int = 0,
    *,
    org_id: int,
) -> EarningsStatement:
    """
    Earnings statement over [start, end] built from stored rows only.

    Employee ids are scoped to an organization; plans and ledger rows of
    other organizations are never read.
    """
    entries = (
        db.session.query(PayoutSnapshotEntry)
        .filter(
            PayoutSnapshotEntry.org_id == org_id,
            PayoutSnapshotEntry.employee_id == employee_id,
            PayoutSnapshotEntry.business_date >= start,
            PayoutSnapshotEntry.business_date <= end,
        )
        .order_by(PayoutSnapshotEntry.id)
        .all()
    )
    plan = _plan_for_period(org_id, employee_id, start, end)
    return build_earnings_statement(
        employee_id,
        plan,
        [e.to_snapshot() for e in entries],
        start,
        end,
        hours_worked_minutes,
    )


def find_overlapping_plans(employee_id: int, *, org_id: int) -> list[tuple[CompensationPlan, CompensationPlan]]:
    """Pairs of this employee's stored plans in one organization whose intervals intersect."""
    plans = _plans_for([employee_id], org_id).get(employee_id, ())
    return _overlapping_pairs(plans)
