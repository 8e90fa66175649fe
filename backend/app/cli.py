# Overview: Flask CLI command group for payout ledger inspection and verification.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Payout ledger:
# - python -m flask payouts show --transaction T-1001 [--store-id 1]
#   Print stored snapshot rows and the re-derived transaction totals.
# - python -m flask payouts verify --transaction T-1001
#   Check commission + owner == net per row, and netting once fully refunded.
#   Exits 1 on any failure.
# - python -m flask payouts check-plans --org-id 1 --employee-id 7
#   Report overlapping compensation plans (exits 1 if any).
# - python -m flask payouts earnings --org-id 1 --employee-id 7 --start 2026-01-01 --end 2026-01-15 --hours 80
#   Print an earnings statement built from stored snapshots.

import click
from flask.cli import with_appcontext

from .models import ENTRY_TYPE_REFUND, ENTRY_TYPE_SALE
from .services import payout_ledger_service
from .services.compensation_service import CompensationConfigError
from .services.payout_invariants import refund_residuals, validate_commission_invariant
from .services.refund_reversal_service import is_fully_refunded
from .validation import ValidationError


def _money(cents) -> str:
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def _load_entries(transaction_ref, store_id):
    try:
        entries = payout_ledger_service.get_transaction_entries(transaction_ref, store_id)
    except payout_ledger_service.PayoutLedgerError as exc:
        click.echo(f"FAIL {exc}")
        raise SystemExit(1)
    if not entries:
        click.echo(f"FAIL No payout snapshots recorded for transaction {transaction_ref}")
        raise SystemExit(1)
    return entries


@click.group('payouts')
def payouts_group():
    """Payout ledger inspection and verification commands."""


@payouts_group.command('show')
@click.option('--transaction', 'transaction_ref', required=True, help='Transaction reference')
@click.option('--store-id', type=int, help='Restrict to one store')
@with_appcontext
def show_transaction_cli(transaction_ref, store_id):
    """
    Show a transaction's payout rows and totals.

    Example:
        flask payouts show --transaction T-1001
    """
    entries = _load_entries(transaction_ref, store_id)

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'Type':<7} {'Line':<6} {'Kind':<8} {'Emp':<6} {'Net':>12} {'Commission':>12} "
               f"{'Owner':>12} {'Tip':>10} {'Bps':>6} {'Source':<11} {'Date'}")
    click.echo("="*110)

    for e in entries:
        employee = str(e.employee_id) if e.employee_id is not None else "-"
        click.echo(f"{e.id:<6} {e.entry_type:<7} {e.line_ref:<6} {e.kind:<8} {employee:<6} {_money(e.net_cents):>12} "
                   f"{_money(e.commission_cents):>12} {_money(e.owner_cents):>12} {_money(e.tip_cents):>10} "
                   f"{e.commission_bps:>6} {e.rate_source:<11} {e.business_date.isoformat()}")

    payout = payout_ledger_service.get_transaction_payout(transaction_ref, store_id)
    click.echo("-"*110)
    click.echo(f"Net:         {_money(payout.net_cents)}")
    click.echo(f"Tax:         {_money(payout.tax_cents)}")
    click.echo(f"Tips:        {_money(payout.tip_cents)} (employee {_money(payout.employee_tip_cents)}, "
               f"owner {_money(payout.owner_tip_cents)})")
    click.echo(f"Commission:  {_money(payout.commission_cents)}")
    click.echo(f"Owner:       {_money(payout.owner_cents)}")
    if payout.split_applied:
        click.echo(f"Royalty:     {_money(payout.royalty_cents)}")
        click.echo(f"Marketing:   {_money(payout.marketing_cents)}")
        click.echo(f"Owner net:   {_money(payout.owner_net_cents)}")
    click.echo(f"Grand total: {_money(payout.grand_total_cents)}")
    click.echo("="*110 + "\n")


@payouts_group.command('verify')
@click.option('--transaction', 'transaction_ref', required=True, help='Transaction reference')
@click.option('--store-id', type=int, help='Restrict to one store')
@with_appcontext
def verify_transaction_cli(transaction_ref, store_id):
    """
    Verify payout invariants for a stored transaction.

    Example:
        flask payouts verify --transaction T-1001
    """
    entries = _load_entries(transaction_ref, store_id)

    failures = 0
    for e in entries:
        if not validate_commission_invariant(e.to_snapshot()):
            failures += 1
            click.echo(f"FAIL Entry {e.id}: commission {e.commission_cents} + owner {e.owner_cents} != net {e.net_cents}")

    originals = [e.to_snapshot() for e in entries if e.entry_type == ENTRY_TYPE_SALE]
    reversals = [e.to_snapshot() for e in entries if e.entry_type == ENTRY_TYPE_REFUND]
    if reversals and is_fully_refunded(originals, reversals):
        residuals = {k: v for k, v in refund_residuals(originals, reversals).items() if v}
        if residuals:
            failures += 1
            click.echo(f"FAIL Fully refunded transaction does not net to zero: {residuals}")
        else:
            click.echo("PASS Refund nets to zero")

    if failures:
        click.echo(f"FAIL {failures} invariant violation(s) in transaction {transaction_ref}")
        raise SystemExit(1)
    click.echo(f"PASS {len(entries)} payout row(s) verified for transaction {transaction_ref}")


@payouts_group.command('check-plans')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--employee-id', type=int, required=True, help='Employee ID')
@with_appcontext
def check_plans_cli(org_id, employee_id):
    """
    Report overlapping compensation plans for an employee.

    Example:
        flask payouts check-plans --org-id 1 --employee-id 7
    """
    overlaps = payout_ledger_service.find_overlapping_plans(employee_id, org_id=org_id)
    if not overlaps:
        click.echo(f"PASS No overlapping plans for employee {employee_id}")
        return

    for first, second in overlaps:
        click.echo(
            f"WARN Plan {first.plan_id} ({first.effective_from} to {first.effective_to or 'open'}) overlaps "
            f"plan {second.plan_id} ({second.effective_from} to {second.effective_to or 'open'})"
        )
    click.echo(f"FAIL {len(overlaps)} overlapping plan pair(s) for employee {employee_id}")
    raise SystemExit(1)


@payouts_group.command('earnings')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--employee-id', type=int, required=True, help='Employee ID')
@click.option('--start', type=click.DateTime(formats=['%Y-%m-%d']), required=True, help='Period start (YYYY-MM-DD)')
@click.option('--end', type=click.DateTime(formats=['%Y-%m-%d']), required=True, help='Period end, inclusive (YYYY-MM-DD)')
@click.option('--hours', type=float, default=0.0, show_default=True, help='Hours worked (hourly plans)')
@with_appcontext
def earnings_cli(org_id, employee_id, start, end, hours):
    """
    Print an earnings statement built from stored payout snapshots.

    Example:
        flask payouts earnings --org-id 1 --employee-id 7 --start 2026-01-01 --end 2026-01-15 --hours 80
    """
    if hours < 0:
        click.echo("FAIL --hours must be >= 0")
        raise SystemExit(1)

    try:
        statement = payout_ledger_service.get_employee_earnings(
            employee_id,
            start.date(),
            end.date(),
            hours_worked_minutes=round(hours * 60),
            org_id=org_id,
        )
    except (ValidationError, CompensationConfigError) as exc:
        click.echo(f"FAIL {exc}")
        raise SystemExit(1)

    click.echo("\n" + "="*60)
    click.echo(f"Employee {employee_id}  {statement.period_start} to {statement.period_end}")
    click.echo(f"Plan: {statement.plan_type or 'none'} (ID: {statement.plan_id or '-'})")
    click.echo("="*60)
    click.echo(f"Lines:               {statement.line_count}")
    click.echo(f"Service revenue:     {_money(statement.service_revenue_cents)}")
    click.echo(f"Product revenue:     {_money(statement.product_revenue_cents)}")
    click.echo(f"Service commission:  {_money(statement.service_commission_cents)}")
    click.echo(f"Product commission:  {_money(statement.product_commission_cents)}")
    click.echo(f"Tips:                {_money(statement.tips_cents)}")
    if statement.hourly_wages_cents:
        click.echo(f"Hourly wages:        {_money(statement.hourly_wages_cents)}")
    if statement.base_salary_cents:
        click.echo(f"Base salary:         {_money(statement.base_salary_cents)}")
    if statement.chair_rent_cents:
        click.echo(f"Chair rent:          -{_money(statement.chair_rent_cents)}")
    click.echo("-"*60)
    click.echo(f"Gross pay:           {_money(statement.gross_pay_cents)}")
    click.echo("="*60 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(payouts_group)
