"""Payout engine schema: tenancy, compensation plans, append-only payout ledger

Revision ID: 20261019_payout_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_payout_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_organizations_code", "organizations", ["code"], unique=True)
    op.create_index("ix_organizations_is_active", "organizations", ["is_active"], unique=False)

    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", "name", name="uq_stores_org_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stores_org_id", "stores", ["org_id"], unique=False)
    op.create_index("ix_stores_code", "stores", ["code"], unique=False)

    op.create_table(
        "organization_payout_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("default_service_commission_bps", sa.Integer(), nullable=True),
        sa.Column("default_product_commission_bps", sa.Integer(), nullable=True),
        sa.Column("tips_affect_commission", sa.Boolean(), nullable=True),
        sa.Column("tip_recipient", sa.String(length=16), nullable=True),
        sa.Column("rounding_mode", sa.String(length=16), nullable=True),
        sa.Column("business_day_cutoff_hour", sa.Integer(), nullable=True),
        sa.Column("split_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("royalty_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("marketing_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("org_id", name="uq_org_payout_settings_org"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_organization_payout_settings_org_id", "organization_payout_settings", ["org_id"], unique=False)

    op.create_table(
        "employee_compensation_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("plan_type", sa.String(length=32), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("service_commission_bps", sa.Integer(), nullable=True),
        sa.Column("product_commission_bps", sa.Integer(), nullable=True),
        sa.Column("hourly_rate_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("base_salary_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chair_rent_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("use_max_of_base_or_commission", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_employee_compensation_plans_org_id", "employee_compensation_plans", ["org_id"], unique=False)
    op.create_index("ix_employee_compensation_plans_employee_id", "employee_compensation_plans", ["employee_id"], unique=False)
    op.create_index("ix_comp_plans_employee_from", "employee_compensation_plans", ["employee_id", "effective_from"], unique=False)

    op.create_table(
        "employee_commission_tiers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=True),
        sa.Column("min_revenue_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_revenue_cents", sa.Integer(), nullable=True),
        sa.Column("percentage_bps", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["plan_id"], ["employee_compensation_plans.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_employee_commission_tiers_plan_id", "employee_commission_tiers", ["plan_id"], unique=False)

    op.create_table(
        "service_commission_overrides",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.String(length=64), nullable=False),
        sa.Column("commission_bps", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["employee_compensation_plans.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "item_id", name="uq_service_overrides_plan_item"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_service_commission_overrides_plan_id", "service_commission_overrides", ["plan_id"], unique=False)

    op.create_table(
        "payout_snapshot_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("org_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("transaction_ref", sa.String(length=64), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=False),
        sa.Column("entry_type", sa.String(length=16), nullable=False),
        sa.Column("line_index", sa.Integer(), nullable=False),
        sa.Column("line_ref", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("item_id", sa.String(length=64), nullable=True),
        sa.Column("item_name", sa.String(length=255), nullable=True),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("gross_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tip_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("employee_tip_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("owner_tip_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commission_cents", sa.Integer(), nullable=False),
        sa.Column("owner_cents", sa.Integer(), nullable=False),
        sa.Column("commission_bps", sa.Integer(), nullable=False),
        sa.Column("rate_source", sa.String(length=16), nullable=False),
        sa.Column("rounding_mode", sa.String(length=16), nullable=False),
        sa.Column("tips_affect_commission", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("plan_id", sa.Integer(), nullable=True),
        sa.Column("plan_type", sa.String(length=32), nullable=True),
        sa.Column("tier_id", sa.Integer(), nullable=True),
        sa.Column("tier_name", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PAID"),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("royalty_bps", sa.Integer(), nullable=True),
        sa.Column("marketing_bps", sa.Integer(), nullable=True),
        sa.Column("split_rounding_mode", sa.String(length=16), nullable=True),
        sa.Column("reverses_entry_id", sa.Integer(), nullable=True),
        sa.Column("refund_kind", sa.String(length=16), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["reverses_entry_id"], ["payout_snapshot_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", "line_index", name="uq_payout_entries_key_line"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payout_snapshot_entries_org_id", "payout_snapshot_entries", ["org_id"], unique=False)
    op.create_index("ix_payout_snapshot_entries_store_id", "payout_snapshot_entries", ["store_id"], unique=False)
    op.create_index("ix_payout_snapshot_entries_transaction_ref", "payout_snapshot_entries", ["transaction_ref"], unique=False)
    op.create_index("ix_payout_snapshot_entries_idempotency_key", "payout_snapshot_entries", ["idempotency_key"], unique=False)
    op.create_index("ix_payout_snapshot_entries_entry_type", "payout_snapshot_entries", ["entry_type"], unique=False)
    op.create_index("ix_payout_snapshot_entries_business_date", "payout_snapshot_entries", ["business_date"], unique=False)
    op.create_index("ix_payout_snapshot_entries_reverses_entry_id", "payout_snapshot_entries", ["reverses_entry_id"], unique=False)
    op.create_index("ix_payout_entries_txn", "payout_snapshot_entries", ["store_id", "transaction_ref"], unique=False)
    op.create_index("ix_payout_entries_employee_date", "payout_snapshot_entries", ["employee_id", "business_date"], unique=False)
    op.create_index(
        "uq_payout_entries_sale_line",
        "payout_snapshot_entries",
        ["store_id", "transaction_ref", "line_ref"],
        unique=True,
        sqlite_where=sa.text("entry_type = 'SALE'"),
        postgresql_where=sa.text("entry_type = 'SALE'"),
    )


def downgrade():
    op.drop_table("payout_snapshot_entries")
    op.drop_table("service_commission_overrides")
    op.drop_table("employee_commission_tiers")
    op.drop_table("employee_compensation_plans")
    op.drop_table("organization_payout_settings")
    op.drop_table("stores")
    op.drop_table("organizations")
