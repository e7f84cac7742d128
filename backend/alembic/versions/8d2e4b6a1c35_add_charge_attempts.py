"""add charge_attempts to commissions and salary_payments

Revision ID: 8d2e4b6a1c35
Revises: 3f1c2a9d7b10
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8d2e4b6a1c35"
down_revision = "3f1c2a9d7b10"
branch_labels = None
depends_on = None


def upgrade() -> None:
    for table in ("commissions", "salary_payments"):
        op.add_column(
            table,
            sa.Column("charge_attempts", sa.Integer(), nullable=False, server_default="0"),
        )
    op.create_index("ix_commissions_stripe_payment_intent_id", "commissions", ["stripe_payment_intent_id"])
    op.create_index("ix_salary_payments_stripe_payment_intent_id", "salary_payments", ["stripe_payment_intent_id"])


def downgrade() -> None:
    op.drop_index("ix_salary_payments_stripe_payment_intent_id", table_name="salary_payments")
    op.drop_index("ix_commissions_stripe_payment_intent_id", table_name="commissions")
    for table in ("salary_payments", "commissions"):
        op.drop_column(table, "charge_attempts")
