# Overview: Pytest coverage for earnings statements.

from datetime import date

import pytest

from app.services.earnings_service import build_earnings_statement
from app.services.payout_schemas import CompensationPlan, LineItemSnapshot, RefundReversal
from app.validation import ValidationError


EMPLOYEE = 7
START = date(2026, 2, 1)
END = date(2026, 2, 15)


def line(net, commission, tip=0, kind="SERVICE", employee_id=EMPLOYEE, business_date=date(2026, 2, 10), bps=4000):
    return LineItemSnapshot(
        kind=kind,
        quantity=1,
        unit_price_cents=net,
        gross_cents=net,
        discount_cents=0,
        net_cents=net,
        tax_cents=0,
        tip_cents=tip,
        employee_tip_cents=tip,
        owner_tip_cents=0,
        commission_bps=bps,
        commission_cents=commission,
        owner_cents=net - commission,
        business_date=business_date,
        rounding_mode="HALF_UP",
        rate_source="PLAN",
        employee_id=employee_id,
        line_ref="1",
    )


def plan(plan_type, **kwargs):
    return CompensationPlan(plan_id=1, employee_id=EMPLOYEE, plan_type=plan_type, effective_from=date(2026, 1, 1), **kwargs)


class TestEarningsStatement:
    def test_commission_plan(self):
        snapshots = [
            line(10_000, 4000, tip=1000),
            line(2000, 200, kind="PRODUCT"),
            line(5000, 2000, employee_id=8),
            line(5000, 2000, business_date=date(2026, 2, 16)),
        ]
        statement = build_earnings_statement(EMPLOYEE, plan("COMMISSION"), snapshots, START, END)
        assert statement.line_count == 2
        assert statement.service_revenue_cents == 10_000
        assert statement.product_revenue_cents == 2000
        assert statement.service_commission_cents == 4000
        assert statement.product_commission_cents == 200
        assert statement.tips_cents == 1000
        assert statement.gross_pay_cents == 5200

    def test_period_bounds_inclusive(self):
        snapshots = [line(1000, 400, business_date=START), line(1000, 400, business_date=END)]
        statement = build_earnings_statement(EMPLOYEE, plan("COMMISSION"), snapshots, START, END)
        assert statement.line_count == 2

    def test_refunds_in_period_reduce_commission(self):
        original = line(10_000, 4000, tip=1000)
        reversal = RefundReversal(
            kind="SERVICE", quantity=0, unit_price_cents=10_000, gross_cents=-5000, discount_cents=0,
            net_cents=-5000, tax_cents=0, tip_cents=-500, employee_tip_cents=-500, owner_tip_cents=0,
            commission_bps=4000, commission_cents=-2000, owner_cents=-3000, business_date=date(2026, 2, 12),
            rounding_mode="HALF_UP", rate_source="PLAN", employee_id=EMPLOYEE, line_ref="1", reverses_ref="1",
        )
        statement = build_earnings_statement(EMPLOYEE, plan("COMMISSION"), [original, reversal], START, END)
        assert statement.service_commission_cents == 2000
        assert statement.tips_cents == 500
        assert statement.gross_pay_cents == 2500

    def test_hourly_wages(self):
        statement = build_earnings_statement(
            EMPLOYEE, plan("HOURLY", hourly_rate_cents=2000), [line(10_000, 0, tip=700)], START, END,
            hours_worked_minutes=90,
        )
        assert statement.hourly_wages_cents == 3000
        assert statement.gross_pay_cents == 3700

    def test_hourly_greater_of_wages_or_commission(self):
        hourly = plan("HOURLY", hourly_rate_cents=2000, service_commission_bps=4000, use_max_of_base_or_commission=True)
        busy = build_earnings_statement(EMPLOYEE, hourly, [line(50_000, 20_000, tip=1000)], START, END, 480)
        assert busy.hourly_wages_cents == 16_000
        assert busy.gross_pay_cents == 21_000
        slow = build_earnings_statement(EMPLOYEE, hourly, [line(10_000, 4000)], START, END, 480)
        assert slow.gross_pay_cents == 16_000

    def test_salary(self):
        salaried = plan("SALARY", base_salary_cents=250_000)
        statement = build_earnings_statement(EMPLOYEE, salaried, [line(10_000, 0, tip=1500)], START, END)
        assert statement.base_salary_cents == 250_000
        assert statement.gross_pay_cents == 251_500

    def test_salary_greater_of(self):
        salaried = plan("SALARY", base_salary_cents=100_000, use_max_of_base_or_commission=True)
        statement = build_earnings_statement(EMPLOYEE, salaried, [line(300_000, 120_000)], START, END)
        assert statement.gross_pay_cents == 120_000

    def test_chair_rent_deducts_rent(self):
        renter = plan("CHAIR_RENT", chair_rent_cents=30_000)
        statement = build_earnings_statement(
            EMPLOYEE, renter, [line(50_000, 50_000, tip=2000, bps=10_000)], START, END,
        )
        assert statement.chair_rent_cents == 30_000
        assert statement.gross_pay_cents == 22_000

    def test_no_plan_pays_commission_and_tips(self):
        statement = build_earnings_statement(EMPLOYEE, None, [line(10_000, 4000, tip=100)], START, END)
        assert statement.plan_type is None
        assert statement.gross_pay_cents == 4100

    def test_to_dict(self):
        data = build_earnings_statement(EMPLOYEE, plan("COMMISSION"), [line(10_000, 4000)], START, END).to_dict()
        assert data["period_start"] == "2026-02-01"
        assert data["commission_cents"] == 4000

    def test_negative_hours_rejected(self):
        with pytest.raises(ValidationError):
            build_earnings_statement(EMPLOYEE, plan("HOURLY"), [], START, END, hours_worked_minutes=-1)

    def test_inverted_period_rejected(self):
        with pytest.raises(ValidationError):
            build_earnings_statement(EMPLOYEE, plan("COMMISSION"), [], END, START)
