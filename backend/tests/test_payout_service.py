# Overview: Pytest coverage for line snapshots, transaction aggregation, tips and franchise splits.

from dataclasses import replace
from datetime import date, datetime

import pytest

from app.services.compensation_service import OverlappingPlanError
from app.services.payout_invariants import PayoutInvariantError, validate_commission_invariant
from app.services.payout_schemas import (
    CompensationPlan,
    FranchiseSplitConfig,
    LineItemInput,
    LineItemSnapshot,
    PayoutConfig,
    RATE_SOURCE_CHAIR_RENT,
    RATE_SOURCE_DEFAULT,
    RATE_SOURCE_NO_PLAN,
    RATE_SOURCE_OVERRIDE,
    RATE_SOURCE_PLAN,
)
from app.services.payout_service import (
    DEFAULT_PAYOUT_CONFIG,
    allocate_transaction_tip,
    apply_split_payout,
    calculate_line_item_snapshot,
    calculate_line_item_snapshots,
    calculate_transaction_payouts,
    payout_config_from_settings,
)
from app.services.refund_reversal_service import create_refund_reversals
from app.validation import ValidationError


EMPLOYEE = 7
OCCURRED = datetime(2026, 2, 15, 14, 30)


def commission_plan(service_bps=4000, product_bps=1000, **kwargs):
    values = dict(
        plan_id=1,
        employee_id=EMPLOYEE,
        plan_type="COMMISSION",
        effective_from=date(2026, 1, 1),
        service_commission_bps=service_bps,
        product_commission_bps=product_bps,
    )
    values.update(kwargs)
    return CompensationPlan(**values)


def make_config(*plans, **kwargs):
    kwargs.setdefault("occurred_at", OCCURRED)
    grouped = {}
    for plan in plans:
        grouped.setdefault(plan.employee_id, []).append(plan)
    return PayoutConfig(plans=grouped, **kwargs)


def service(price=10_000, **kwargs):
    kwargs.setdefault("employee_id", EMPLOYEE)
    return LineItemInput(kind="SERVICE", unit_price_cents=price, **kwargs)


class TestLineSnapshot:
    def test_forty_percent_commission(self):
        """$100 service at 40% -> $40 commission, $60 owner."""
        snap = calculate_line_item_snapshot(service(), make_config(commission_plan()))
        assert snap.net_cents == 10_000
        assert snap.commission_cents == 4000
        assert snap.owner_cents == 6000
        assert snap.commission_bps == 4000
        assert snap.rate_source == RATE_SOURCE_PLAN
        assert snap.plan_id == 1
        assert snap.business_date == date(2026, 2, 15)
        assert validate_commission_invariant(snap)

    def test_tip_passes_through_by_default(self):
        """A $10 tip leaves the $40 commission untouched."""
        snap = calculate_line_item_snapshot(service(tip_cents=1000), make_config(commission_plan()))
        assert snap.commission_cents == 4000
        assert snap.tip_cents == 1000
        assert snap.employee_tip_cents == 1000
        assert snap.owner_tip_cents == 0

    @pytest.mark.parametrize("tip", [0, 1, 999, 1000, 12_345])
    def test_tip_never_changes_commission(self, tip):
        config = make_config(commission_plan())
        base = calculate_line_item_snapshot(service(price=7_777), config)
        tipped = calculate_line_item_snapshot(service(price=7_777, tip_cents=tip), config)
        assert tipped.commission_cents == base.commission_cents
        assert tipped.owner_cents == base.owner_cents

    @pytest.mark.parametrize("rounding_mode", ["HALF_UP", "HALF_EVEN"])
    @pytest.mark.parametrize("bps", [0, 1, 3333, 4000, 6667, 10_000])
    @pytest.mark.parametrize("price,quantity,discount", [(1, 1, 0), (999, 3, 7), (10_000, 1, 2_500), (12_345, 2, 1)])
    def test_commission_plus_owner_equals_net(self, rounding_mode, bps, price, quantity, discount):
        config = make_config(commission_plan(service_bps=bps), rounding_mode=rounding_mode)
        snap = calculate_line_item_snapshot(
            service(price=price, quantity=quantity, discount_cents=discount), config
        )
        assert snap.commission_cents + snap.owner_cents == snap.net_cents

    def test_line_gross_bounded(self):
        config = make_config(commission_plan())
        with pytest.raises(ValidationError):
            calculate_line_item_snapshot(service(price=999_999_999, quantity=2), config)
        with pytest.raises(ValidationError):
            calculate_line_item_snapshot(service(price=10_000, quantity=100_000), config)

    def test_rounding_mode_applied_once_at_line(self):
        """25 cents at 50%: half-up gives 13, banker's rounding gives 12."""
        plan = commission_plan(service_bps=5000)
        up = calculate_line_item_snapshot(service(price=25), make_config(plan, rounding_mode="HALF_UP"))
        even = calculate_line_item_snapshot(service(price=25), make_config(plan, rounding_mode="HALF_EVEN"))
        assert (up.commission_cents, up.owner_cents) == (13, 12)
        assert (even.commission_cents, even.owner_cents) == (12, 13)
        assert even.rounding_mode == "HALF_EVEN"

    def test_price_override_quantity_and_discount(self):
        item = service(price=5000, price_override_cents=4500, quantity=2, discount_cents=500)
        snap = calculate_line_item_snapshot(item, make_config(commission_plan()))
        assert snap.unit_price_cents == 4500
        assert snap.gross_cents == 9000
        assert snap.discount_cents == 500
        assert snap.net_cents == 8500
        assert snap.commission_cents == 3400

    def test_discount_beyond_price_rejected(self):
        with pytest.raises(ValidationError):
            calculate_line_item_snapshot(service(price=1000, discount_cents=1500), make_config(commission_plan()))

    @pytest.mark.parametrize("field,value", [
        ("unit_price_cents", -1),
        ("quantity", 0),
        ("discount_cents", -5),
        ("tip_cents", -100),
    ])
    def test_negative_inputs_rejected(self, field, value):
        values = dict(kind="SERVICE", unit_price_cents=1000)
        values[field] = value
        with pytest.raises(ValidationError):
            LineItemInput(**values)

    def test_missing_transaction_time_rejected(self):
        with pytest.raises(ValidationError):
            calculate_line_item_snapshot(service(), PayoutConfig())

    def test_product_line_uses_product_rate(self):
        item = LineItemInput(kind="PRODUCT", unit_price_cents=2000, employee_id=EMPLOYEE)
        snap = calculate_line_item_snapshot(item, make_config(commission_plan()))
        assert snap.commission_cents == 200
        assert snap.owner_cents == 1800

    def test_default_rate_when_plan_has_none(self):
        plan = commission_plan(service_bps=None)
        snap = calculate_line_item_snapshot(service(), make_config(plan, default_service_commission_bps=3000))
        assert snap.commission_cents == 3000
        assert snap.rate_source == RATE_SOURCE_DEFAULT

    def test_service_override(self):
        plan = commission_plan(service_overrides={"svc-color": 5000})
        snap = calculate_line_item_snapshot(service(item_id="svc-color"), make_config(plan))
        assert snap.commission_cents == 5000
        assert snap.rate_source == RATE_SOURCE_OVERRIDE

    def test_chair_rent_line(self):
        plan = commission_plan(plan_type="CHAIR_RENT", service_bps=None, chair_rent_cents=30_000)
        snap = calculate_line_item_snapshot(service(), make_config(plan))
        assert snap.commission_cents == 10_000
        assert snap.owner_cents == 0
        assert snap.rate_source == RATE_SOURCE_CHAIR_RENT

    def test_no_plan_owner_keeps_everything(self):
        snap = calculate_line_item_snapshot(service(tip_cents=500), make_config())
        assert snap.commission_cents == 0
        assert snap.owner_cents == 10_000
        assert snap.rate_source == RATE_SOURCE_NO_PLAN
        assert snap.employee_tip_cents == 500

    def test_line_without_employee(self):
        item = LineItemInput(kind="SERVICE", unit_price_cents=10_000, tip_cents=500)
        snap = calculate_line_item_snapshot(item, make_config(commission_plan()))
        assert snap.commission_cents == 0
        assert snap.employee_id is None
        assert snap.owner_tip_cents == 500

    def test_tax_outside_the_split(self):
        snap = calculate_line_item_snapshot(service(), make_config(commission_plan(), tax_rate_bps=825))
        assert snap.tax_cents == 825
        assert snap.commission_cents + snap.owner_cents == snap.net_cents == 10_000

    def test_overlapping_plans_block_checkout(self):
        clash = commission_plan(plan_id=2, effective_from=date(2026, 2, 1))
        with pytest.raises(OverlappingPlanError):
            calculate_line_item_snapshot(service(), make_config(commission_plan(), clash))

    def test_plan_resolved_by_business_date_not_today(self):
        """Feb 15 sale computed after a March plan change still pays plan A's 30%."""
        plan_a = commission_plan(plan_id=1, service_bps=3000, effective_to=date(2026, 3, 1))
        plan_b = commission_plan(plan_id=2, service_bps=3500, effective_from=date(2026, 3, 1))
        snap = calculate_line_item_snapshot(service(), make_config(plan_a, plan_b))
        assert snap.commission_cents == 3000
        assert snap.plan_id == 1

    def test_cutoff_moves_late_sale_to_previous_plan(self):
        """A 2 AM Mar 1 sale with a 4 AM cutoff belongs to Feb 28."""
        plan_a = commission_plan(plan_id=1, service_bps=3000, effective_to=date(2026, 3, 1))
        plan_b = commission_plan(plan_id=2, service_bps=3500, effective_from=date(2026, 3, 1))
        config = make_config(plan_a, plan_b, occurred_at=datetime(2026, 3, 1, 2, 0), business_day_cutoff_hour=4)
        snap = calculate_line_item_snapshot(service(), config)
        assert snap.business_date == date(2026, 2, 28)
        assert snap.commission_bps == 3000


class TestTipPolicies:
    def test_tips_affect_commission_splits_tip_at_line_rate(self):
        config = make_config(commission_plan(), tips_affect_commission=True)
        snap = calculate_line_item_snapshot(service(tip_cents=1000), config)
        assert snap.commission_cents == 4000
        assert snap.employee_tip_cents == 400
        assert snap.owner_tip_cents == 600
        assert snap.tips_affect_commission is True

    def test_owner_tip_recipient(self):
        config = make_config(commission_plan(), tip_recipient="OWNER")
        snap = calculate_line_item_snapshot(service(tip_cents=1000), config)
        assert (snap.employee_tip_cents, snap.owner_tip_cents) == (0, 1000)

    def test_allocate_tip_evenly_with_leftover_to_earliest(self):
        items = [
            service(line_ref="1"),
            LineItemInput(kind="PRODUCT", unit_price_cents=2000, employee_id=EMPLOYEE, line_ref="2"),
            service(line_ref="3", employee_id=8),
            service(line_ref="4", employee_id=9),
        ]
        allocated = allocate_transaction_tip(1000, items)
        assert [i.tip_cents for i in allocated] == [334, 0, 333, 333]
        assert sum(i.tip_cents for i in allocated) == 1000
        assert items[0].tip_cents == 0

    def test_allocate_tip_needs_an_employee_service_line(self):
        items = [LineItemInput(kind="SERVICE", unit_price_cents=1000)]
        with pytest.raises(ValidationError):
            allocate_transaction_tip(500, items)

    def test_allocate_zero_tip_is_noop(self):
        items = [LineItemInput(kind="SERVICE", unit_price_cents=1000)]
        assert allocate_transaction_tip(0, items) == items


class TestTransactionPayout:
    def lines(self):
        config = make_config(commission_plan())
        return calculate_line_item_snapshots(
            [
                service(tip_cents=1000, line_ref="1"),
                LineItemInput(kind="PRODUCT", unit_price_cents=2000, employee_id=EMPLOYEE, line_ref="2"),
            ],
            config,
        )

    def test_sums_line_figures(self):
        payout = calculate_transaction_payouts(self.lines())
        assert payout.line_count == 2
        assert payout.net_cents == 12_000
        assert payout.commission_cents == 4200
        assert payout.owner_cents == 7800
        assert payout.tip_cents == 1000
        assert payout.grand_total_cents == 13_000
        assert payout.invariant_ok is True
        assert payout.owner_net_cents == payout.owner_cents

    def test_empty_transaction(self):
        payout = calculate_transaction_payouts([])
        assert payout.line_count == 0
        assert payout.grand_total_cents == 0

    def test_broken_snapshot_is_fatal(self, caplog):
        broken = replace(self.lines()[0], owner_cents=1)
        with pytest.raises(PayoutInvariantError) as excinfo:
            calculate_transaction_payouts([broken])
        assert excinfo.value.snapshots == [broken]
        assert "commission + owner == net" in caplog.text

    def test_reversals_net_out(self):
        lines = self.lines()
        payout = calculate_transaction_payouts([*lines, *create_refund_reversals(lines)])
        assert payout.net_cents == 0
        assert payout.commission_cents == 0
        assert payout.owner_cents == 0
        assert payout.tip_cents == 0


class TestSplitPayout:
    def payout(self):
        snap = calculate_line_item_snapshot(service(), make_config(commission_plan()))
        return calculate_transaction_payouts([snap])

    def test_carves_from_owner_only(self):
        split = apply_split_payout(self.payout(), FranchiseSplitConfig(enabled=True, royalty_bps=800, marketing_bps=200))
        assert split.royalty_cents == 480
        assert split.marketing_cents == 120
        assert split.owner_net_cents == 5400
        assert split.commission_cents == 4000
        assert split.owner_cents == 6000
        assert split.split_applied is True

    def test_absent_or_disabled_config_is_noop(self):
        payout = self.payout()
        assert apply_split_payout(payout) is payout
        assert apply_split_payout(payout, FranchiseSplitConfig(enabled=False, royalty_bps=800)) is payout

    @pytest.mark.parametrize("royalty,marketing", [(9000, 1001), (-1, 0), (0, -50)])
    def test_invalid_percentages_rejected(self, royalty, marketing):
        with pytest.raises(ValidationError):
            apply_split_payout(self.payout(), FranchiseSplitConfig(enabled=True, royalty_bps=royalty, marketing_bps=marketing))

    def test_full_carve_never_exceeds_owner(self):
        snap = calculate_line_item_snapshot(LineItemInput(kind="PRODUCT", unit_price_cents=3), make_config())
        payout = calculate_transaction_payouts([snap])
        assert payout.owner_cents == 3

        split = apply_split_payout(payout, FranchiseSplitConfig(enabled=True, royalty_bps=5000, marketing_bps=5000))
        assert split.royalty_cents == 2
        assert split.marketing_cents == 1
        assert split.owner_net_cents == 0

    @pytest.mark.parametrize("owner", [1, 3, 7, 99, 101])
    def test_carve_bounded_near_full_rates(self, owner):
        snap = calculate_line_item_snapshot(LineItemInput(kind="PRODUCT", unit_price_cents=owner), make_config())
        split = apply_split_payout(
            calculate_transaction_payouts([snap]),
            FranchiseSplitConfig(enabled=True, royalty_bps=4950, marketing_bps=4950),
        )
        assert split.royalty_cents + split.marketing_cents <= owner
        assert split.owner_net_cents >= 0

    def test_split_cannot_apply_twice(self):
        config = FranchiseSplitConfig(enabled=True, royalty_bps=800)
        once = apply_split_payout(self.payout(), config)
        with pytest.raises(ValidationError):
            apply_split_payout(once, config)


class TestDefaults:
    def test_default_config(self):
        assert DEFAULT_PAYOUT_CONFIG.default_service_commission_bps == 0
        assert DEFAULT_PAYOUT_CONFIG.tips_affect_commission is False
        assert DEFAULT_PAYOUT_CONFIG.rounding_mode == "HALF_UP"
        assert DEFAULT_PAYOUT_CONFIG.business_day_cutoff_hour == 0

    def test_config_from_settings(self):
        config = payout_config_from_settings({
            "PAYOUT_BUSINESS_DAY_CUTOFF_HOUR": 4,
            "PAYOUT_ROUNDING_MODE": "HALF_EVEN",
            "PAYOUT_DEFAULT_SERVICE_COMMISSION_BPS": 3500,
            "PAYOUT_TIPS_AFFECT_COMMISSION": True,
        })
        assert config.business_day_cutoff_hour == 4
        assert config.rounding_mode == "HALF_EVEN"
        assert config.default_service_commission_bps == 3500
        assert config.default_product_commission_bps == 0
        assert config.tips_affect_commission is True

    def test_bad_rounding_setting_rejected(self):
        with pytest.raises(ValidationError):
            payout_config_from_settings({"PAYOUT_ROUNDING_MODE": "CEILING"})
