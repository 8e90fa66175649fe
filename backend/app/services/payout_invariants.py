# Overview: Payout invariant predicates; used at write time and by the test suite.

"""
Payout Invariants (authoritative)

- commission + owner == net for every snapshot (integer cents: exact)
- a fully refunded transaction nets to zero on every monetary field

A violation means the engine itself is wrong. It is logged with the full
snapshot contents and raised; it is never swallowed and never persisted.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .payout_schemas import LineItemSnapshot


logger = logging.getLogger(__name__)

# Fields that must sum to zero once a transaction is fully reversed
NETTING_FIELDS = (
    "commission_cents",
    "owner_cents",
    "tip_cents",
    "employee_tip_cents",
    "owner_tip_cents",
    "net_cents",
    "tax_cents",
)


class PayoutInvariantError(RuntimeError):
    """Fatal: the payout engine produced inconsistent numbers."""

    def __init__(self, message: str, snapshots: Sequence[LineItemSnapshot] = ()):
        super().__init__(message)
        self.snapshots = list(snapshots)


def validate_commission_invariant(snapshot: LineItemSnapshot) -> bool:
    """commission + owner == net, to within less than one cent."""
    return abs((snapshot.commission_cents + snapshot.owner_cents) - snapshot.net_cents) < 1


def _field_totals(snapshots: Iterable[LineItemSnapshot]) -> dict[str, int]:
    totals = dict.fromkeys(NETTING_FIELDS, 0)
    for snap in snapshots:
        for name in NETTING_FIELDS:
            totals[name] += getattr(snap, name)
    return totals


def refund_residuals(
    snapshots: Sequence[LineItemSnapshot],
    reversals: Sequence[LineItemSnapshot],
) -> dict[str, int]:
    """Per-field sum of originals + reversals; all zeros when fully reversed."""
    totals = _field_totals(snapshots)
    for name, value in _field_totals(reversals).items():
        totals[name] += value
    return totals


def validate_refund_nets_to_zero(
    snapshots: Sequence[LineItemSnapshot],
    reversals: Sequence[LineItemSnapshot],
) -> bool:
    return not any(refund_residuals(snapshots, reversals).values())


def assert_commission_invariant(snapshot: LineItemSnapshot) -> None:
    if validate_commission_invariant(snapshot):
        return
    logger.error(
        "Commission invariant violated: commission %s + owner %s != net %s; snapshot=%r",
        snapshot.commission_cents,
        snapshot.owner_cents,
        snapshot.net_cents,
        snapshot.to_dict(),
    )
    raise PayoutInvariantError("commission + owner != net", [snapshot])


def assert_refund_nets_to_zero(
    snapshots: Sequence[LineItemSnapshot],
    reversals: Sequence[LineItemSnapshot],
) -> None:
    residuals = refund_residuals(snapshots, reversals)
    if not any(residuals.values()):
        return
    logger.error(
        "Refund does not net to zero: residuals=%r snapshots=%r reversals=%r",
        {k: v for k, v in residuals.items() if v},
        [s.to_dict() for s in snapshots],
        [r.to_dict() for r in reversals],
    )
    raise PayoutInvariantError("refund does not net to zero", [*snapshots, *reversals])
