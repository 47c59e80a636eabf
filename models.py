from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class LaunchType(str, Enum):
    normal = "normal"
    credit = "credit"


class AccountKind(str, Enum):
    personal = "personal"
    business = "business"


class RatePeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class InvoiceStatus(str, Enum):
    paid = "paid"
    pending = "pending"
    overdue = "overdue"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[AccountKind] = mapped_column(
        SAEnum(AccountKind), nullable=False, default=AccountKind.personal
    )

    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="account", cascade="all, delete-orphan"
    )
    credit_cards: Mapped[list["CreditCard"]] = relationship(
        "CreditCard", back_populates="account", cascade="all, delete-orphan"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(7))
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account: Mapped["Account"] = relationship("Account", back_populates="categories")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "type", "name", name="uq_category_account_type_name"
        ),
    )


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(40))
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    account: Mapped["Account"] = relationship("Account", back_populates="credit_cards")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="credit_card"
    )
    payments: Mapped[list["InvoicePayment"]] = relationship(
        "InvoicePayment", back_populates="credit_card", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_card_closing_day_range"
        ),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
        CheckConstraint("limit_cents >= 0", name="ck_card_limit_positive"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    launch_type: Mapped[LaunchType] = mapped_column(
        SAEnum(LaunchType), nullable=False, default=LaunchType.normal
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    exception_for_date: Mapped[Optional[date]] = mapped_column(Date)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    credit_card_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("credit_cards.id")
    )
    installments_group_id: Mapped[Optional[str]] = mapped_column(String(32))
    current_installment: Mapped[Optional[int]] = mapped_column(Integer)
    installments: Mapped[Optional[int]] = mapped_column(Integer)
    recurrence_group_id: Mapped[Optional[str]] = mapped_column(String(32))
    skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    credit_card: Mapped[Optional["CreditCard"]] = relationship(
        "CreditCard", back_populates="transactions"
    )

    @property
    def signed_amount_cents(self) -> int:
        if self.launch_type == LaunchType.credit:
            return -self.amount_cents
        return self.amount_cents

    __table_args__ = (
        Index("ix_transactions_account_date", "account_id", "date"),
        Index("ix_transactions_card_date", "credit_card_id", "date"),
        Index("ix_transactions_installments_group", "installments_group_id"),
        Index(
            "ix_transactions_recurrence_occurrence",
            "recurrence_group_id",
            "exception_for_date",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "installments_group_id IS NULL OR recurrence_group_id IS NULL",
            name="ck_transactions_single_group_kind",
        ),
        CheckConstraint(
            "exception_for_date IS NULL OR recurrence_group_id IS NOT NULL",
            name="ck_transactions_exception_needs_group",
        ),
        CheckConstraint(
            "current_installment IS NULL OR "
            "(current_installment >= 1 AND current_installment <= installments)",
            name="ck_transactions_installment_range",
        ),
    )


class FixedCashflow(Base, TimestampMixin):
    __tablename__ = "fixed_cashflows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    start_month: Mapped[date] = mapped_column(Date, nullable=False)
    end_month: Mapped[Optional[date]] = mapped_column(Date)
    recurrence_group_id: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True
    )

    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_fixed_amount_positive"),
        CheckConstraint(
            "due_day IS NULL OR due_day BETWEEN 1 AND 31",
            name="ck_fixed_due_day_range",
        ),
        CheckConstraint(
            "end_month IS NULL OR end_month >= start_month",
            name="ck_fixed_month_range",
        ),
        Index("ix_fixed_cashflows_account", "account_id"),
    )


class InvoicePayment(Base, TimestampMixin):
    __tablename__ = "invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    credit_card_id: Mapped[int] = mapped_column(
        ForeignKey("credit_cards.id"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        SAEnum(InvoiceStatus), nullable=False, default=InvoiceStatus.paid
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    credit_card: Mapped["CreditCard"] = relationship(
        "CreditCard", back_populates="payments"
    )

    __table_args__ = (
        UniqueConstraint("credit_card_id", "month", name="uq_invoice_payment_month"),
    )


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4))
    rate_period: Mapped[RatePeriod] = mapped_column(
        SAEnum(RatePeriod), nullable=False, default=RatePeriod.monthly
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
