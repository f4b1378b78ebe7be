"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("bank", sa.String(length=100), nullable=False),
        sa.Column("initial_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("declared_final_balance", sa.Integer()),
        sa.Column(
            "computed_balance", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_name", "accounts", ["user_id", "name"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("expense", "income", "both", name="categorykind"),
            nullable=False,
        ),
        sa.Column(
            "color", sa.String(length=9), nullable=False, server_default="#64748b"
        ),
        sa.Column("icon", sa.String(length=40), nullable=False, server_default="Tag"),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "kind", "name", name="uq_category_user_kind_name"
        ),
    )

    op.create_table(
        "credit_instruments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("bank", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("income", "expense", "transfer", name="movementkind"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("subcategory", sa.String(length=100)),
        sa.Column(
            "expense_nature",
            sa.Enum("fixed", "variable", "occasional", name="expensenature"),
        ),
        sa.Column(
            "payment_method",
            sa.Enum("debit", "credit", "cash", "transfer", name="paymentmethod"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("installments", sa.Integer()),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "reconciliation_state",
            sa.Enum("pending", "reconciled", name="reconciliationstate"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("reconciliation_month", sa.String(length=7), nullable=False),
        sa.Column(
            "origin_account_id", sa.Integer(), sa.ForeignKey("accounts.id")
        ),
        sa.Column(
            "destination_account_id", sa.Integer(), sa.ForeignKey("accounts.id")
        ),
        sa.Column(
            "credit_instrument_id",
            sa.Integer(),
            sa.ForeignKey("credit_instruments.id"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_movements_amount_positive"),
        sa.CheckConstraint(
            "installments IS NULL OR installments >= 1",
            name="ck_movements_installments_positive",
        ),
    )
    op.create_index("ix_movements_user_date", "movements", ["user_id", "date"])
    op.create_index(
        "ix_movements_user_month", "movements", ["user_id", "reconciliation_month"]
    )
    op.create_index("ix_movements_origin", "movements", ["origin_account_id"])
    op.create_index(
        "ix_movements_destination", "movements", ["destination_account_id"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
        sa.UniqueConstraint(
            "user_id", "category_id", "month", name="uq_budget_user_category_month"
        ),
    )
    op.create_index("ix_budget_user_month", "budgets", ["user_id", "month"])


def downgrade():
    op.drop_index("ix_budget_user_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_movements_destination", table_name="movements")
    op.drop_index("ix_movements_origin", table_name="movements")
    op.drop_index("ix_movements_user_month", table_name="movements")
    op.drop_index("ix_movements_user_date", table_name="movements")
    op.drop_table("movements")
    op.drop_table("credit_instruments")
    op.drop_table("categories")
    op.drop_index("ix_accounts_user_name", table_name="accounts")
    op.drop_table("accounts")
