from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
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


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class RecurringFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetPeriod(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class NotificationType(str, Enum):
    info = "info"
    success = "success"
    warning = "warning"
    error = "error"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    theme: Mapped[str] = mapped_column(String(7), nullable=False, default="#000000")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    theme: Mapped[str] = mapped_column(String(7), nullable=False, default="#000000")
    period: Mapped[BudgetPeriod] = mapped_column(
        SAEnum(BudgetPeriod), nullable=False, default=BudgetPeriod.monthly
    )
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="budget"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        Index("ix_budgets_user_active", "user_id", "is_active"),
        CheckConstraint("amount_cents >= 0", name="amount_positive"),
    )


class Pot(Base, TimestampMixin):
    __tablename__ = "pots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    goal_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    target_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[Optional[str]] = mapped_column(String(100))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="pot"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_pot_user_name"),
        Index("ix_pots_user_category", "user_id", "category"),
        CheckConstraint("goal_amount_cents >= 0", name="goal_positive"),
        CheckConstraint("current_amount_cents >= 0", name="current_positive"),
    )

    @property
    def progress(self) -> float:
        if self.goal_amount_cents <= 0:
            return 0.0
        return self.current_amount_cents / self.goal_amount_cents * 100


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[Optional[RecurringFrequency]] = mapped_column(
        SAEnum(RecurringFrequency)
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    budget_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budgets.id", ondelete="SET NULL")
    )
    pot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pots.id", ondelete="SET NULL")
    )
    # Points at the row that was due, never at the oldest ancestor.
    parent_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"), unique=True
    )

    budget: Mapped[Optional["Budget"]] = relationship(
        "Budget", back_populates="transactions"
    )
    pot: Mapped[Optional["Pot"]] = relationship("Pot", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category"),
        Index("ix_transactions_user_deleted", "user_id", "is_deleted"),
        Index("ix_transactions_user_type", "user_id", "type"),
        Index("ix_transactions_budget_type_date", "budget_id", "type", "date"),
        Index("ix_transactions_recurring_date", "recurring", "is_deleted", "date"),
        CheckConstraint("amount_cents >= 0", name="amount_positive"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        SAEnum(NotificationType), nullable=False, default=NotificationType.info
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, default="general"
    )
    related_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_notifications_user_read_created", "user_id", "is_read", "created_at"),
    )
