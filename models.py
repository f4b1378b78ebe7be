from datetime import date, datetime
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
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class MovementKind(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class PaymentMethod(str, Enum):
    debit = "debit"
    credit = "credit"
    cash = "cash"
    transfer = "transfer"


class ReconciliationState(str, Enum):
    pending = "pending"
    reconciled = "reconciled"


class ExpenseNature(str, Enum):
    fixed = "fixed"
    variable = "variable"
    occasional = "occasional"


class CategoryKind(str, Enum):
    expense = "expense"
    income = "income"
    both = "both"


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
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank: Mapped[str] = mapped_column(String(100), nullable=False)
    initial_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    declared_final_balance: Mapped[Optional[int]] = mapped_column(Integer)
    # Only ever moved through signed increments, see balances.py.
    computed_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_accounts_user_name", "user_id", "name"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[CategoryKind] = mapped_column(SAEnum(CategoryKind), nullable=False)
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#64748b")
    icon: Mapped[str] = mapped_column(String(40), nullable=False, default="Tag")

    movements: Mapped[list["Movement"]] = relationship(
        "Movement", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "kind", "name", name="uq_category_user_kind_name"),
    )


class CreditInstrument(Base, TimestampMixin):
    __tablename__ = "credit_instruments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank: Mapped[str] = mapped_column(String(100), nullable=False)


class Movement(Base, TimestampMixin):
    __tablename__ = "movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    kind: Mapped[MovementKind] = mapped_column(SAEnum(MovementKind), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    subcategory: Mapped[Optional[str]] = mapped_column(String(100))
    expense_nature: Mapped[Optional[ExpenseNature]] = mapped_column(
        SAEnum(ExpenseNature)
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    installments: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    reconciliation_state: Mapped[ReconciliationState] = mapped_column(
        SAEnum(ReconciliationState),
        nullable=False,
        default=ReconciliationState.pending,
    )
    reconciliation_month: Mapped[str] = mapped_column(String(7), nullable=False)
    origin_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    destination_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    credit_instrument_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("credit_instruments.id")
    )

    category: Mapped["Category"] = relationship("Category", back_populates="movements")

    __table_args__ = (
        Index("ix_movements_user_date", "user_id", "date"),
        Index("ix_movements_user_month", "user_id", "reconciliation_month"),
        Index("ix_movements_origin", "origin_account_id"),
        Index("ix_movements_destination", "destination_account_id"),
        CheckConstraint("amount > 0", name="ck_movements_amount_positive"),
        CheckConstraint(
            "installments IS NULL OR installments >= 1",
            name="ck_movements_installments_positive",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
        UniqueConstraint(
            "user_id", "category_id", "month", name="uq_budget_user_category_month"
        ),
        Index("ix_budget_user_month", "user_id", "month"),
    )
