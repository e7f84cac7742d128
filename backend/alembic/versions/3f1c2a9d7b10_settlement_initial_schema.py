"""settlement initial schema: users, workspaces, jobs, deals, contracts,
commissions, salary payments, notifications

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f1c2a9d7b10"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)
MONEY = sa.Numeric(12, 2)
PERCENT = sa.Numeric(6, 3)


def _timestamps(with_updated: bool = True) -> list:
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]
    if with_updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return cols


def _payout_state_columns() -> list:
    return [
        sa.Column("sdr_payout_status", sa.String(length=20), nullable=True),
        sa.Column("sdr_payout_date", sa.Date(), nullable=True),
        sa.Column("sdr_payout_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("sdr_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sdr_stripe_transfer_id", sa.String(length=64), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
    ]


def upgrade() -> None:
    # -----------------------------------------------------
    # 1) users
    # -----------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", UUID, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_platform_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sdr_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_deals_closed_value", MONEY, nullable=False, server_default="0"),
        sa.Column("stripe_connect_account_id", sa.String(length=64), nullable=True),
        sa.Column("stripe_connect_status", sa.String(length=20), nullable=False, server_default="not_connected"),
        sa.Column("stripe_connect_onboarded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # -----------------------------------------------------
    # 2) workspaces + memberships
    # -----------------------------------------------------
    op.create_table(
        "workspaces",
        sa.Column("id", UUID, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("owner_id", UUID, nullable=False),
        sa.Column("subscription_tier", sa.String(length=30), nullable=False, server_default="omega"),
        sa.Column("subscription_status", sa.String(length=30), nullable=True),
        sa.Column("rake_percentage", PERCENT, nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("stripe_customer_id", sa.String(length=64), nullable=True),
        sa.Column("stripe_default_payment_method", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_workspaces"),
        sa.ForeignKeyConstraint(
            ["owner_id"], ["users.id"], name="fk_workspaces_owner_id_users", ondelete="RESTRICT"
        ),
    )
    op.create_index("ix_workspaces_owner_id", "workspaces", ["owner_id"])

    op.create_table(
        "workspace_memberships",
        sa.Column("id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="SDR"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_workspace_memberships"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"],
            name="fk_workspace_memberships_workspace_id_workspaces", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_workspace_memberships_user_id_users", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_memberships_workspace_user"),
    )

    # -----------------------------------------------------
    # 3) jobs, deals, contracts
    # -----------------------------------------------------
    op.create_table(
        "jobs",
        sa.Column("id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("employment_type", sa.String(length=20), nullable=False, server_default="commission"),
        sa.Column("commission_percentage", PERCENT, nullable=False, server_default="0"),
        sa.Column("salary_amount", MONEY, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id", name="pk_jobs"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], name="fk_jobs_workspace_id_workspaces", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_jobs_workspace_id", "jobs", ["workspace_id"])

    op.create_table(
        "deals",
        sa.Column("id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("job_id", UUID, nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("value", MONEY, nullable=False, server_default="0"),
        sa.Column("assigned_to", UUID, nullable=True),
        sa.Column("stage", sa.String(length=30), nullable=False, server_default="open"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_deals"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], name="fk_deals_workspace_id_workspaces", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], name="fk_deals_job_id_jobs", ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["assigned_to"], ["users.id"], name="fk_deals_assigned_to_users", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_deals_workspace_id", "deals", ["workspace_id"])
    op.create_index("ix_deals_assigned_to", "deals", ["assigned_to"])

    op.create_table(
        "contracts",
        sa.Column("id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("deal_id", UUID, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id", name="pk_contracts"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], name="fk_contracts_workspace_id_workspaces", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"], name="fk_contracts_deal_id_deals", ondelete="CASCADE"),
    )
    op.create_index("ix_contracts_workspace_id", "contracts", ["workspace_id"])
    op.create_index("ix_contracts_deal_id", "contracts", ["deal_id"])

    op.create_table(
        "contract_signatures",
        sa.Column("id", UUID, nullable=False),
        sa.Column("contract_id", UUID, nullable=False),
        sa.Column("signer_name", sa.String(length=200), nullable=False),
        sa.Column("signer_email", sa.String(length=320), nullable=False),
        sa.Column("signature_data", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=False, server_default="unknown"),
        sa.Column("user_agent", sa.String(length=500), nullable=False, server_default="unknown"),
        sa.Column("signed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_contract_signatures"),
        sa.ForeignKeyConstraint(
            ["contract_id"], ["contracts.id"],
            name="fk_contract_signatures_contract_id_contracts", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_contract_signatures_contract_id", "contract_signatures", ["contract_id"])

    # -----------------------------------------------------
    # 4) commissions (one per closed-won deal)
    # -----------------------------------------------------
    op.create_table(
        "commissions",
        sa.Column("id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("deal_id", UUID, nullable=False),
        sa.Column("sdr_id", UUID, nullable=True),
        sa.Column("deal_value", MONEY, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("rake_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("agency_rake_percentage", PERCENT, nullable=False),
        sa.Column("agency_rake_amount", MONEY, nullable=False),
        sa.Column("commission_percentage", PERCENT, nullable=False, server_default="0"),
        sa.Column("platform_cut_percentage", PERCENT, nullable=False, server_default="0"),
        sa.Column("platform_cut_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("is_agency_self_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=64), nullable=True),
        *_payout_state_columns(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_commissions"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], name="fk_commissions_workspace_id_workspaces", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"], name="fk_commissions_deal_id_deals", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sdr_id"], ["users.id"], name="fk_commissions_sdr_id_users", ondelete="SET NULL"),
        sa.UniqueConstraint("deal_id", name="uq_commissions_deal_id"),
    )
    op.create_index("ix_commissions_workspace_id", "commissions", ["workspace_id"])
    op.create_index("ix_commissions_sdr_id", "commissions", ["sdr_id"])
    op.create_index("ix_commissions_workspace_status", "commissions", ["workspace_id", "status"])
    op.create_index("ix_commissions_sdr_payout_status", "commissions", ["sdr_payout_status"])
    op.create_index("ix_commissions_sdr_payout_date", "commissions", ["sdr_payout_date"])

    # -----------------------------------------------------
    # 5) salary_payments (one per salaried hire)
    # -----------------------------------------------------
    op.create_table(
        "salary_payments",
        sa.Column("id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=False),
        sa.Column("sdr_id", UUID, nullable=False),
        sa.Column("job_id", UUID, nullable=False),
        sa.Column("salary_amount", MONEY, nullable=False),
        sa.Column("agency_charge_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("agency_charged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=64), nullable=True),
        sa.Column("hired_at", sa.DateTime(timezone=True), nullable=False),
        *_payout_state_columns(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_salary_payments"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"],
            name="fk_salary_payments_workspace_id_workspaces", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["sdr_id"], ["users.id"], name="fk_salary_payments_sdr_id_users", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["job_id"], ["jobs.id"], name="fk_salary_payments_job_id_jobs", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_salary_payments_workspace_id", "salary_payments", ["workspace_id"])
    op.create_index("ix_salary_payments_sdr_id", "salary_payments", ["sdr_id"])
    op.create_index("ix_salary_payments_sdr_payout_status", "salary_payments", ["sdr_payout_status"])
    op.create_index("ix_salary_payments_sdr_payout_date", "salary_payments", ["sdr_payout_date"])

    # -----------------------------------------------------
    # 6) notifications
    # -----------------------------------------------------
    op.create_table(
        "notifications",
        sa.Column("id", UUID, nullable=False),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("workspace_id", UUID, nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_notifications_user_id_users", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], name="fk_notifications_workspace_id_workspaces", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_table("notifications")

    for ix in (
        "ix_salary_payments_sdr_payout_date",
        "ix_salary_payments_sdr_payout_status",
        "ix_salary_payments_sdr_id",
        "ix_salary_payments_workspace_id",
    ):
        op.drop_index(ix, table_name="salary_payments")
    op.drop_table("salary_payments")

    for ix in (
        "ix_commissions_sdr_payout_date",
        "ix_commissions_sdr_payout_status",
        "ix_commissions_workspace_status",
        "ix_commissions_sdr_id",
        "ix_commissions_workspace_id",
    ):
        op.drop_index(ix, table_name="commissions")
    op.drop_table("commissions")

    op.drop_index("ix_contract_signatures_contract_id", table_name="contract_signatures")
    op.drop_table("contract_signatures")
    op.drop_index("ix_contracts_deal_id", table_name="contracts")
    op.drop_index("ix_contracts_workspace_id", table_name="contracts")
    op.drop_table("contracts")

    op.drop_index("ix_deals_assigned_to", table_name="deals")
    op.drop_index("ix_deals_workspace_id", table_name="deals")
    op.drop_table("deals")
    op.drop_index("ix_jobs_workspace_id", table_name="jobs")
    op.drop_table("jobs")

    op.drop_table("workspace_memberships")
    op.drop_index("ix_workspaces_owner_id", table_name="workspaces")
    op.drop_table("workspaces")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
