"""initial schema

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
    transaction_type = sa.Enum("income", "expense", name="transactiontype")

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("personal", "business", name="accountkind"),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("color", sa.String(length=7)),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id", "type", "name", name="uq_category_account_type_name"
        ),
    )

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("brand", sa.String(length=40)),
        sa.Column("limit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column(
            "current_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_card_closing_day_range"
        ),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
        sa.CheckConstraint("limit_cents >= 0", name="ck_card_limit_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column(
            "launch_type",
            sa.Enum("normal", "credit", name="launchtype"),
            nullable=False,
            server_default="normal",
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("exception_for_date", sa.Date()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("credit_card_id", sa.Integer(), sa.ForeignKey("credit_cards.id")),
        sa.Column("installments_group_id", sa.String(length=32)),
        sa.Column("current_installment", sa.Integer()),
        sa.Column("installments", sa.Integer()),
        sa.Column("recurrence_group_id", sa.String(length=32)),
        sa.Column("skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "installments_group_id IS NULL OR recurrence_group_id IS NULL",
            name="ck_transactions_single_group_kind",
        ),
        sa.CheckConstraint(
            "exception_for_date IS NULL OR recurrence_group_id IS NOT NULL",
            name="ck_transactions_exception_needs_group",
        ),
        sa.CheckConstraint(
            "current_installment IS NULL OR "
            "(current_installment >= 1 AND current_installment <= installments)",
            name="ck_transactions_installment_range",
        ),
    )
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )
    op.create_index(
        "ix_transactions_card_date", "transactions", ["credit_card_id", "date"]
    )
    op.create_index(
        "ix_transactions_installments_group", "transactions", ["installments_group_id"]
    )
    op.create_index(
        "ix_transactions_recurrence_occurrence",
        "transactions",
        ["recurrence_group_id", "exception_for_date"],
    )

    op.create_table(
        "fixed_cashflows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("due_day", sa.Integer()),
        sa.Column("start_month", sa.Date(), nullable=False),
        sa.Column("end_month", sa.Date()),
        sa.Column(
            "recurrence_group_id", sa.String(length=32), nullable=False, unique=True
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_fixed_amount_positive"),
        sa.CheckConstraint(
            "due_day IS NULL OR due_day BETWEEN 1 AND 31",
            name="ck_fixed_due_day_range",
        ),
        sa.CheckConstraint(
            "end_month IS NULL OR end_month >= start_month",
            name="ck_fixed_month_range",
        ),
    )
    op.create_index("ix_fixed_cashflows_account", "fixed_cashflows", ["account_id"])

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "credit_card_id",
            sa.Integer(),
            sa.ForeignKey("credit_cards.id"),
            nullable=False,
        ),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column(
            "status",
            sa.Enum("paid", "pending", "overdue", name="invoicestatus"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("credit_card_id", "month", name="uq_invoice_payment_month"),
    )

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False),
        sa.Column("interest_rate", sa.Numeric(7, 4)),
        sa.Column(
            "rate_period",
            sa.Enum("monthly", "yearly", name="rateperiod"),
            nullable=False,
        ),
        sa.Column("target_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("debts")
    op.drop_table("invoice_payments")
    op.drop_index("ix_fixed_cashflows_account", table_name="fixed_cashflows")
    op.drop_table("fixed_cashflows")
    op.drop_index("ix_transactions_recurrence_occurrence", table_name="transactions")
    op.drop_index("ix_transactions_installments_group", table_name="transactions")
    op.drop_index("ix_transactions_card_date", table_name="transactions")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("credit_cards")
    op.drop_table("categories")
    op.drop_table("accounts")
