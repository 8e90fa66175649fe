from __future__ import annotations

from sqlalchemy import event, text

from ..extensions import db
from app.time_utils import to_utc_z
from app.services.payout_schemas import LineItemSnapshot, RefundReversal


ENTRY_TYPE_SALE = "SALE"
ENTRY_TYPE_REFUND = "REFUND"


class LedgerImmutableError(Exception):
    """Raised on any attempt to UPDATE or DELETE a payout ledger row."""


class PayoutSnapshotEntry(db.Model):
    """
    Append-only payout ledger: one row per line snapshot.

    WHY: Reports and payroll sum these rows; they never recompute. A sale's
    row records the percentage, tier and rounding mode actually used, so a
    later plan edit cannot change history.

    DESIGN PRINCIPLES:
    - INSERT only. Corrections are new REFUND rows with negated amounts that
      point at the SALE row they reverse (reverses_entry_id)
    - One idempotency_key per ledger write; a retried write returns the rows
      already stored
    - Franchise split bps are recorded on SALE rows so transaction totals
      can be re-derived exactly
    """
    __tablename__ = "payout_snapshot_entries"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", "line_index", name="uq_payout_entries_key_line"),
        # One SALE row per line of a transaction; refunds may repeat a line_ref
        db.Index(
            "uq_payout_entries_sale_line",
            "store_id",
            "transaction_ref",
            "line_ref",
            unique=True,
            sqlite_where=text("entry_type = 'SALE'"),
            postgresql_where=text("entry_type = 'SALE'"),
        ),
        db.Index("ix_payout_entries_txn", "store_id", "transaction_ref"),
        db.Index("ix_payout_entries_employee_date", "employee_id", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    transaction_ref = db.Column(db.String(64), nullable=False, index=True)
    idempotency_key = db.Column(db.String(128), nullable=False, index=True)
    entry_type = db.Column(db.String(16), nullable=False, index=True)  # SALE, REFUND
    line_index = db.Column(db.Integer, nullable=False)  # Position within one write
    line_ref = db.Column(db.String(64), nullable=False)

    # What was sold
    kind = db.Column(db.String(16), nullable=False)  # SERVICE, PRODUCT
    item_id = db.Column(db.String(64), nullable=True)
    item_name = db.Column(db.String(255), nullable=True)  # Name at time of sale
    employee_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    # Amounts (negative on REFUND rows)
    gross_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tip_cents = db.Column(db.Integer, nullable=False, default=0)
    employee_tip_cents = db.Column(db.Integer, nullable=False, default=0)
    owner_tip_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_cents = db.Column(db.Integer, nullable=False)
    owner_cents = db.Column(db.Integer, nullable=False)

    # The rule that produced the amounts
    commission_bps = db.Column(db.Integer, nullable=False)
    rate_source = db.Column(db.String(16), nullable=False)
    rounding_mode = db.Column(db.String(16), nullable=False)
    tips_affect_commission = db.Column(db.Boolean, nullable=False, default=False)
    plan_id = db.Column(db.Integer, nullable=True)  # No FK: history survives plan cleanup
    plan_type = db.Column(db.String(32), nullable=True)
    tier_id = db.Column(db.Integer, nullable=True)
    tier_name = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PAID")  # PAID, REFUNDED
    business_date = db.Column(db.Date, nullable=False, index=True)

    # Franchise split in force at sale time (SALE rows only)
    royalty_bps = db.Column(db.Integer, nullable=True)
    marketing_bps = db.Column(db.Integer, nullable=True)
    split_rounding_mode = db.Column(db.String(16), nullable=True)

    # Refund linkage (REFUND rows only)
    reverses_entry_id = db.Column(db.Integer, db.ForeignKey("payout_snapshot_entries.id"), nullable=True, index=True)
    refund_kind = db.Column(db.String(16), nullable=True)  # FULL, QUANTITY, AMOUNT
    reason = db.Column(db.Text, nullable=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("payout_entries", lazy=True))
    reverses_entry = db.relationship("PayoutSnapshotEntry", remote_side=[id], backref=db.backref("reversals", lazy=True))

    def __repr__(self) -> str:
        return f"<PayoutSnapshotEntry id={self.id} txn={self.transaction_ref!r} type={self.entry_type}>"

    @classmethod
    def from_snapshot(cls, snapshot: LineItemSnapshot, **columns) -> "PayoutSnapshotEntry":
        """Build a row holding the snapshot verbatim; extra columns passed through."""
        fields = snapshot.to_dict()
        fields["business_date"] = snapshot.business_date
        # Reversals share the original's line_ref; the link is reverses_entry_id
        fields.pop("reverses_ref", None)
        fields.update(columns)
        return cls(**fields)

    def to_snapshot(self) -> LineItemSnapshot:
        """Rebuild the immutable engine snapshot from the stored row."""
        values = dict(
            kind=self.kind,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
            gross_cents=self.gross_cents,
            discount_cents=self.discount_cents,
            net_cents=self.net_cents,
            tax_cents=self.tax_cents,
            tip_cents=self.tip_cents,
            employee_tip_cents=self.employee_tip_cents,
            owner_tip_cents=self.owner_tip_cents,
            commission_bps=self.commission_bps,
            commission_cents=self.commission_cents,
            owner_cents=self.owner_cents,
            business_date=self.business_date,
            rounding_mode=self.rounding_mode,
            rate_source=self.rate_source,
            tips_affect_commission=self.tips_affect_commission,
            plan_id=self.plan_id,
            plan_type=self.plan_type,
            tier_id=self.tier_id,
            tier_name=self.tier_name,
            employee_id=self.employee_id,
            line_ref=self.line_ref,
            item_id=self.item_id,
            item_name=self.item_name,
            status=self.status,
        )
        if self.entry_type == ENTRY_TYPE_REFUND:
            return RefundReversal(
                reverses_ref=self.line_ref,
                refund_kind=self.refund_kind,
                reason=self.reason,
                **values,
            )
        return LineItemSnapshot(**values)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "transaction_ref": self.transaction_ref,
            "idempotency_key": self.idempotency_key,
            "entry_type": self.entry_type,
            "line_index": self.line_index,
            "line_ref": self.line_ref,
            "kind": self.kind,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "employee_id": self.employee_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "gross_cents": self.gross_cents,
            "discount_cents": self.discount_cents,
            "net_cents": self.net_cents,
            "tax_cents": self.tax_cents,
            "tip_cents": self.tip_cents,
            "employee_tip_cents": self.employee_tip_cents,
            "owner_tip_cents": self.owner_tip_cents,
            "commission_bps": self.commission_bps,
            "commission_cents": self.commission_cents,
            "owner_cents": self.owner_cents,
            "rate_source": self.rate_source,
            "rounding_mode": self.rounding_mode,
            "tips_affect_commission": self.tips_affect_commission,
            "plan_id": self.plan_id,
            "plan_type": self.plan_type,
            "tier_id": self.tier_id,
            "tier_name": self.tier_name,
            "status": self.status,
            "business_date": self.business_date.isoformat(),
            "royalty_bps": self.royalty_bps,
            "marketing_bps": self.marketing_bps,
            "split_rounding_mode": self.split_rounding_mode,
            "reverses_entry_id": self.reverses_entry_id,
            "refund_kind": self.refund_kind,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(PayoutSnapshotEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise LedgerImmutableError(f"Payout ledger entry {target.id} is append-only and cannot be updated")


@event.listens_for(PayoutSnapshotEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Payout ledger entry {target.id} is append-only and cannot be deleted")
