"""create subscriptions table

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("service_name", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="JPY"),
        sa.Column(
            "payment_cycle",
            sa.Enum("MONTHLY", "YEARLY", name="paymentcycle", native_enum=False, length=10),
            nullable=False,
        ),
        sa.Column("payment_day", sa.Integer(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("memo", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_subscriptions_amount_positive"),
        sa.CheckConstraint("payment_day BETWEEN 1 AND 31", name="ck_subscriptions_payment_day"),
    )
    op.create_index("ix_subscriptions_payment_cycle", "subscriptions", ["payment_cycle"])
    op.create_index("ix_subscriptions_expiration_date", "subscriptions", ["expiration_date"])


def downgrade() -> None:
    op.drop_index("ix_subscriptions_expiration_date", table_name="subscriptions")
    op.drop_index("ix_subscriptions_payment_cycle", table_name="subscriptions")
    op.drop_table("subscriptions")
