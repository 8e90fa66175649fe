from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z
from app.services.payout_schemas import CommissionTier, CompensationPlan


class OrganizationPayoutSetting(db.Model):
    """
    Organization-level payout policy.

    NULL columns fall back to the deployment defaults in Config (PAYOUT_*).
    Read once per transaction and frozen into a PayoutConfig; a change here
    only affects sales recorded after it.
    """
    __tablename__ = "organization_payout_settings"
    __table_args__ = (
        db.UniqueConstraint("org_id", name="uq_org_payout_settings_org"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    default_service_commission_bps = db.Column(db.Integer, nullable=True)
    default_product_commission_bps = db.Column(db.Integer, nullable=True)
    tips_affect_commission = db.Column(db.Boolean, nullable=True)
    tip_recipient = db.Column(db.String(16), nullable=True)  # EMPLOYEE, OWNER
    rounding_mode = db.Column(db.String(16), nullable=True)  # HALF_UP, HALF_EVEN
    business_day_cutoff_hour = db.Column(db.Integer, nullable=True)

    # Franchise carve-out from the owner amount
    split_enabled = db.Column(db.Boolean, nullable=False, default=False)
    royalty_bps = db.Column(db.Integer, nullable=False, default=0)
    marketing_bps = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("payout_setting", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "default_service_commission_bps": self.default_service_commission_bps,
            "default_product_commission_bps": self.default_product_commission_bps,
            "tips_affect_commission": self.tips_affect_commission,
            "tip_recipient": self.tip_recipient,
            "rounding_mode": self.rounding_mode,
            "business_day_cutoff_hour": self.business_day_cutoff_hour,
            "split_enabled": self.split_enabled,
            "royalty_bps": self.royalty_bps,
            "marketing_bps": self.marketing_bps,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class EmployeeCompensationPlan(db.Model):
    """
    One employee's compensation rule over [effective_from, effective_to).

    WHY: Payouts are resolved by business date, so plan history is kept,
    never overwritten. A pay change closes the current plan (sets
    effective_to) and opens a new one.

    PLAN TYPES: HOURLY, SALARY, COMMISSION, TIERED_COMMISSION, CHAIR_RENT
    """
    __tablename__ = "employee_compensation_plans"
    __table_args__ = (
        db.Index("ix_comp_plans_employee_from", "employee_id", "effective_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, nullable=False, index=True)

    plan_type = db.Column(db.String(32), nullable=False)
    effective_from = db.Column(db.Date, nullable=False)
    effective_to = db.Column(db.Date, nullable=True)  # NULL = open-ended (current plan)

    service_commission_bps = db.Column(db.Integer, nullable=True)
    product_commission_bps = db.Column(db.Integer, nullable=True)

    hourly_rate_cents = db.Column(db.Integer, nullable=False, default=0)
    base_salary_cents = db.Column(db.Integer, nullable=False, default=0)  # Per pay period
    chair_rent_cents = db.Column(db.Integer, nullable=False, default=0)  # Per pay period
    use_max_of_base_or_commission = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("compensation_plans", lazy=True))
    tiers = db.relationship(
        "EmployeeCommissionTier",
        backref="plan",
        lazy=True,
        order_by="EmployeeCommissionTier.priority",
    )
    service_overrides = db.relationship("ServiceCommissionOverride", backref="plan", lazy=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<EmployeeCompensationPlan id={self.id} employee_id={self.employee_id} type={self.plan_type}>"

    def to_plan(self) -> CompensationPlan:
        """Detach into the immutable engine type."""
        return CompensationPlan(
            plan_id=self.id,
            employee_id=self.employee_id,
            plan_type=self.plan_type,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            service_commission_bps=self.service_commission_bps,
            product_commission_bps=self.product_commission_bps,
            tiers=tuple(t.to_tier() for t in self.tiers),
            service_overrides={o.item_id: o.commission_bps for o in self.service_overrides},
            hourly_rate_cents=self.hourly_rate_cents or 0,
            base_salary_cents=self.base_salary_cents or 0,
            chair_rent_cents=self.chair_rent_cents or 0,
            use_max_of_base_or_commission=bool(self.use_max_of_base_or_commission),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "employee_id": self.employee_id,
            "plan_type": self.plan_type,
            "effective_from": self.effective_from.isoformat(),
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
            "service_commission_bps": self.service_commission_bps,
            "product_commission_bps": self.product_commission_bps,
            "hourly_rate_cents": self.hourly_rate_cents,
            "base_salary_cents": self.base_salary_cents,
            "chair_rent_cents": self.chair_rent_cents,
            "use_max_of_base_or_commission": self.use_max_of_base_or_commission,
            "tiers": [t.to_dict() for t in self.tiers],
            "service_overrides": [o.to_dict() for o in self.service_overrides],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class EmployeeCommissionTier(db.Model):
    """Revenue bracket [min, max) of a TIERED_COMMISSION plan. Lower priority wins."""
    __tablename__ = "employee_commission_tiers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("employee_compensation_plans.id"), nullable=False, index=True)

    name = db.Column(db.String(64), nullable=True)
    min_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    max_revenue_cents = db.Column(db.Integer, nullable=True)  # NULL = unbounded
    percentage_bps = db.Column(db.Integer, nullable=False)
    priority = db.Column(db.Integer, nullable=False, default=0)

    def to_tier(self) -> CommissionTier:
        return CommissionTier(
            min_revenue_cents=self.min_revenue_cents,
            max_revenue_cents=self.max_revenue_cents,
            percentage_bps=self.percentage_bps,
            priority=self.priority,
            tier_id=self.id,
            name=self.name,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "name": self.name,
            "min_revenue_cents": self.min_revenue_cents,
            "max_revenue_cents": self.max_revenue_cents,
            "percentage_bps": self.percentage_bps,
            "priority": self.priority,
        }


class ServiceCommissionOverride(db.Model):
    """Per-service commission rate that replaces the plan's base service rate."""
    __tablename__ = "service_commission_overrides"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "item_id", name="uq_service_overrides_plan_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("employee_compensation_plans.id"), nullable=False, index=True)
    item_id = db.Column(db.String(64), nullable=False)
    commission_bps = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "item_id": self.item_id,
            "commission_bps": self.commission_bps,
        }
