from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from errors import (
    Conflict,
    InsufficientFunds,
    LimitExceeded,
    NotFound,
    ValidationFailure,
)
from models import (
    Budget,
    BudgetPeriod,
    Category,
    Notification,
    NotificationType,
    Pot,
    RecurringFrequency,
    Transaction,
    TransactionType,
)
from periods import Period, budget_period_window, local_now, resolve_date_range
from schemas import (
    HEX_THEME_PATTERN,
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    Pagination,
    PotIn,
    PotUpdate,
    TransactionIn,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

HEX_THEME_RE = re.compile(HEX_THEME_PATTERN)
DEFAULT_CATEGORY_THEME = "#000000"


def percentage_used(spent_cents: int, amount_cents: int) -> float:
    if amount_cents <= 0:
        return 100.0 if spent_cents > 0 else 0.0
    return spent_cents / amount_cents * 100


def _validate_theme(theme: Optional[str]) -> None:
    if theme and not HEX_THEME_RE.match(theme):
        raise ValidationFailure(
            "Invalid theme format. Must be a valid hex color code"
        )


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class TransactionFilters:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    category: Union[str, list[str], None] = None
    type: Optional[TransactionType] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None
    search: Optional[str] = None
    budget_id: Optional[int] = None
    pot_id: Optional[int] = None
    recurring: Optional[bool] = None


@dataclass
class BudgetFilters:
    category: Union[str, list[str], None] = None
    period: Optional[BudgetPeriod] = None
    is_active: Optional[bool] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None
    search: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class BudgetUtilization:
    budget: Budget
    spent_cents: int
    remaining_cents: int
    period: Period

    @property
    def percentage_used(self) -> float:
        return percentage_used(self.spent_cents, self.budget.amount_cents)


@dataclass
class LimitCheck:
    within_limit: bool
    budget: Budget
    spent_cents: int
    remaining_cents: int


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, active_only: bool = True) -> list[Category]:
        stmt = select(Category).order_by(Category.name)
        if active_only:
            stmt = stmt.where(Category.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    def names(self) -> list[str]:
        stmt = (
            select(Category.name)
            .where(Category.is_active.is_(True))
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def exists(self, name: str, *, active_only: bool = False) -> bool:
        stmt = select(Category.id).where(Category.name == name)
        if active_only:
            stmt = stmt.where(Category.is_active.is_(True))
        return self.session.scalar(stmt.limit(1)) is not None

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        _validate_theme(data.theme)
        name = data.name.strip()
        if self.exists(name):
            raise Conflict(f"Category '{name}' already exists")
        category = Category(
            name=name,
            theme=data.theme,
            description=data.description,
            is_active=data.is_active,
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(f"Category '{name}' already exists") from exc
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        _validate_theme(changes.get("theme"))
        if changes.get("name") is not None:
            name = changes["name"].strip()
            clash = self.session.scalar(
                select(Category.id).where(
                    Category.name == name, Category.id != category.id
                )
            )
            if clash:
                raise Conflict(f"Category '{name}' already exists")
            changes["name"] = name
        for field, value in changes.items():
            if value is None and field in ("name", "theme", "is_active"):
                continue
            setattr(category, field, value)
        self.session.commit()
        self.session.refresh(category)
        return category

    def ensure(self, name: str, *, description: Optional[str] = None) -> None:
        if self.exists(name):
            return
        self.session.add(
            Category(
                name=name,
                theme=DEFAULT_CATEGORY_THEME,
                description=description,
                is_active=True,
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            # Another writer created it between the lookup and the insert.
            self.session.rollback()
            logger.warning(f"category_exists: name={name!r} skipping creation")
            return
        logger.info(f"category_created: name={name!r}")


class NotificationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def notify(
        self,
        message: str,
        type: NotificationType = NotificationType.info,
        *,
        related_id: Optional[int] = None,
        category: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=self.user_id,
            message=message,
            type=type,
            related_id=related_id,
            category=category or "general",
            is_read=False,
        )
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def list(self, limit: int = 20) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def unread_count(self) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == self.user_id, Notification.is_read.is_(False)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def mark_as_read(self, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise NotFound("Notification not found")
        notification.is_read = True
        self.session.commit()
        return notification

    def mark_all_as_read(self) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        self.session.commit()
        return result.rowcount or 0


class BudgetService:
    def __init__(
        self, session: Session, user_id: int, clock: Optional[Clock] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock or local_now

    def _require_category(self, name: str) -> None:
        if not CategoryService(self.session).exists(name, active_only=True):
            raise ValidationFailure(f"Unknown category '{name}'")

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def by_category(self, category: str) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id, Budget.category == category
        )
        return self.session.scalar(stmt)

    def create(self, data: BudgetIn) -> Budget:
        category = data.category.strip()
        self._require_category(category)
        if self.by_category(category):
            raise Conflict(f"Budget for category '{category}' already exists")
        budget = Budget(
            user_id=self.user_id,
            category=category,
            amount_cents=data.amount_cents,
            theme=data.theme,
            period=data.period,
            start_date=data.start_date or self.clock(),
            is_active=data.is_active,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(
                f"Budget for category '{category}' already exists"
            ) from exc
        self.session.refresh(budget)
        return budget

    def list(
        self,
        filters: Optional[BudgetFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> Page:
        filters = filters or BudgetFilters()
        pagination = pagination or Pagination()
        conditions = [Budget.user_id == self.user_id]
        if filters.category:
            if isinstance(filters.category, list):
                conditions.append(Budget.category.in_(filters.category))
            else:
                conditions.append(Budget.category == filters.category)
        if filters.period:
            conditions.append(Budget.period == filters.period)
        if filters.is_active is not None:
            conditions.append(Budget.is_active.is_(filters.is_active))
        if filters.min_amount_cents is not None:
            conditions.append(Budget.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            conditions.append(Budget.amount_cents <= filters.max_amount_cents)
        if filters.start:
            conditions.append(Budget.start_date >= filters.start)
        if filters.end:
            conditions.append(Budget.start_date <= filters.end)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            conditions.append(func.lower(Budget.category).like(like))

        sortable = {
            "created_at": Budget.created_at,
            "amount_cents": Budget.amount_cents,
            "category": Budget.category,
            "start_date": Budget.start_date,
        }
        column = sortable.get(pagination.sort_by or "created_at")
        if column is None:
            raise ValidationFailure(f"Cannot sort budgets by '{pagination.sort_by}'")
        order = column.asc() if pagination.sort_order == 1 else column.desc()

        total = int(
            self.session.execute(
                select(func.count(Budget.id)).where(*conditions)
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Budget)
            .where(*conditions)
            .order_by(order, Budget.id.desc())
            .offset((pagination.page - 1) * pagination.limit)
            .limit(pagination.limit)
        )
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, total=total, page=pagination.page, limit=pagination.limit)

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("category", "amount_cents", "theme", "period", "start_date", "is_active"):
            if field in changes and changes[field] is None:
                raise ValidationFailure(f"{field} cannot be null")

        if "category" in changes:
            category = changes["category"].strip()
            if category != budget.category:
                self._require_category(category)
                clash = self.by_category(category)
                if clash and clash.id != budget.id:
                    raise Conflict(f"Budget for category '{category}' already exists")
            changes["category"] = category

        for field, value in changes.items():
            setattr(budget, field, value)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Budget for this category already exists") from exc
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.budget_id == budget.id)
            .values(budget_id=None)
        )
        self.session.delete(budget)
        self.session.commit()

    def period_for(self, budget: Budget) -> Period:
        return budget_period_window(budget.period, budget.start_date, now=self.clock())

    def utilization(
        self, budget_id: int, *, exclude_transaction_id: Optional[int] = None
    ) -> BudgetUtilization:
        budget = self.get(budget_id)
        window = self.period_for(budget)
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.budget_id == budget.id,
            Transaction.type == TransactionType.expense,
            Transaction.is_deleted.is_(False),
            Transaction.date.between(window.start, window.end),
        )
        if exclude_transaction_id is not None:
            stmt = stmt.where(Transaction.id != exclude_transaction_id)
        spent = int(self.session.execute(stmt).scalar_one() or 0)
        return BudgetUtilization(
            budget=budget,
            spent_cents=spent,
            remaining_cents=max(0, budget.amount_cents - spent),
            period=window,
        )

    def check_limit(
        self,
        budget_id: int,
        proposed_cents: int,
        *,
        exclude_transaction_id: Optional[int] = None,
    ) -> LimitCheck:
        usage = self.utilization(
            budget_id, exclude_transaction_id=exclude_transaction_id
        )
        return LimitCheck(
            within_limit=usage.spent_cents + proposed_cents
            <= usage.budget.amount_cents,
            budget=usage.budget,
            spent_cents=usage.spent_cents,
            remaining_cents=usage.remaining_cents,
        )

    def enforce_limit(
        self,
        budget_id: int,
        proposed_cents: int,
        *,
        exclude_transaction_id: Optional[int] = None,
    ) -> LimitCheck:
        check = self.check_limit(
            budget_id, proposed_cents, exclude_transaction_id=exclude_transaction_id
        )
        if not check.within_limit:
            raise LimitExceeded(
                "Transaction would exceed budget limit",
                budget_id=check.budget.id,
                budget_amount_cents=check.budget.amount_cents,
                spent_cents=check.spent_cents,
                remaining_cents=check.remaining_cents,
                proposed_cents=proposed_cents,
            )
        return check

    def notify_if_near_limit(self, budget_id: int) -> Optional[Notification]:
        # Fires on every qualifying write; repeated writes repeat the warning.
        usage = self.utilization(budget_id)
        percent = usage.percentage_used
        if percent < get_settings().budget_alert_threshold:
            return None
        return NotificationService(self.session, self.user_id).notify(
            f"Budget {usage.budget.category} is at {percent:.1f}% utilization",
            NotificationType.warning,
            related_id=usage.budget.id,
            category="budget",
        )

    def near_limit(self, threshold: Optional[float] = None) -> list[BudgetUtilization]:
        if threshold is None:
            threshold = get_settings().budget_alert_threshold
        stmt = (
            select(Budget.id)
            .where(Budget.user_id == self.user_id, Budget.is_active.is_(True))
            .order_by(Budget.id)
        )
        results = []
        for budget_id in self.session.scalars(stmt).all():
            usage = self.utilization(budget_id)
            if usage.percentage_used >= threshold:
                results.append(usage)
        return results


class TransactionService:
    NON_NULLABLE = ("name", "amount_cents", "type", "category", "date", "recurring")
    LIMIT_FIELDS = ("amount_cents", "type", "budget_id", "date")
    SORTABLE = {
        "date": Transaction.date,
        "amount_cents": Transaction.amount_cents,
        "name": Transaction.name,
        "category": Transaction.category,
        "created_at": Transaction.created_at,
        "updated_at": Transaction.updated_at,
    }

    def __init__(
        self, session: Session, user_id: int, clock: Optional[Clock] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock or local_now
        self.budgets = BudgetService(session, user_id, self.clock)

    def _check_links(self, budget_id: Optional[int], pot_id: Optional[int]) -> None:
        if budget_id is not None:
            self.budgets.get(budget_id)
        if pot_id is not None:
            PotService(self.session, self.user_id).get(pot_id)

    def _resolve_category(self, name: str) -> None:
        CategoryService(self.session).ensure(
            name,
            description=f"Category created from transaction by user {self.user_id}",
        )

    def _dispatch_budget_alert(self, txn: Transaction) -> None:
        if txn.budget_id is None or txn.type != TransactionType.expense:
            return
        try:
            self.budgets.notify_if_near_limit(txn.budget_id)
        except Exception:
            self.session.rollback()
            logger.exception(
                f"budget_alert_failed: budget_id={txn.budget_id} transaction_id={txn.id}"
            )

    def create(self, data: TransactionIn) -> Transaction:
        self._check_links(data.budget_id, data.pot_id)
        if data.budget_id is not None and data.type == TransactionType.expense:
            self.budgets.enforce_limit(data.budget_id, data.amount_cents)
        self._resolve_category(data.category)

        txn = Transaction(
            user_id=self.user_id,
            name=data.name,
            amount_cents=data.amount_cents,
            type=data.type,
            category=data.category,
            description=data.description,
            date=data.date or self.clock(),
            recurring=data.recurring,
            recurring_frequency=data.recurring_frequency,
            budget_id=data.budget_id,
            pot_id=data.pot_id,
            is_deleted=False,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        self._dispatch_budget_alert(txn)
        return txn

    def _get_owned(self, transaction_id: int) -> Optional[Transaction]:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            return None
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self._get_owned(transaction_id)
        if not txn or txn.is_deleted:
            raise NotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for field in self.NON_NULLABLE:
            if field in changes and changes[field] is None:
                raise ValidationFailure(f"{field} cannot be null")

        self._check_links(changes.get("budget_id"), changes.get("pot_id"))
        budget_id = changes.get("budget_id", txn.budget_id)
        txn_type = changes.get("type", txn.type)
        amount = changes.get("amount_cents", txn.amount_cents)
        touches_limit = any(field in changes for field in self.LIMIT_FIELDS)
        if budget_id is not None and txn_type == TransactionType.expense and touches_limit:
            self.budgets.enforce_limit(budget_id, amount, exclude_transaction_id=txn.id)

        if "category" in changes:
            self._resolve_category(changes["category"])
        recurring = changes.get("recurring", txn.recurring)
        frequency = changes.get("recurring_frequency", txn.recurring_frequency)
        if recurring and frequency is None:
            changes["recurring_frequency"] = RecurringFrequency.monthly

        for field, value in changes.items():
            setattr(txn, field, value)
        self.session.commit()
        self.session.refresh(txn)
        self._dispatch_budget_alert(txn)
        return txn

    def _conditions(self, filters: TransactionFilters) -> list:
        conditions = [
            Transaction.user_id == self.user_id,
            Transaction.is_deleted.is_(False),
        ]
        if filters.start:
            conditions.append(Transaction.date >= filters.start)
        if filters.end:
            conditions.append(Transaction.date <= filters.end)
        if filters.category:
            if isinstance(filters.category, list):
                conditions.append(Transaction.category.in_(filters.category))
            else:
                conditions.append(Transaction.category == filters.category)
        if filters.type:
            conditions.append(Transaction.type == filters.type)
        if filters.min_amount_cents is not None:
            conditions.append(Transaction.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            conditions.append(Transaction.amount_cents <= filters.max_amount_cents)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Transaction.name).like(like),
                    func.lower(func.coalesce(Transaction.description, "")).like(like),
                )
            )
        if filters.budget_id is not None:
            conditions.append(Transaction.budget_id == filters.budget_id)
        if filters.pot_id is not None:
            conditions.append(Transaction.pot_id == filters.pot_id)
        if filters.recurring is not None:
            conditions.append(Transaction.recurring.is_(filters.recurring))
        return conditions

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> Page:
        filters = filters or TransactionFilters()
        pagination = pagination or Pagination()
        column = self.SORTABLE.get(pagination.sort_by or "date")
        if column is None:
            raise ValidationFailure(
                f"Cannot sort transactions by '{pagination.sort_by}'"
            )
        order = column.asc() if pagination.sort_order == 1 else column.desc()
        conditions = self._conditions(filters)

        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*conditions)
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(order, Transaction.id.desc())
            .offset((pagination.page - 1) * pagination.limit)
            .limit(pagination.limit)
        )
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, total=total, page=pagination.page, limit=pagination.limit)

    def soft_delete(self, transaction_id: int) -> None:
        txn = self._get_owned(transaction_id)
        if not txn or txn.is_deleted:
            raise NotFound("Transaction not found")
        txn.is_deleted = True
        txn.deleted_at = self.clock()
        self.session.commit()

    def restore(self, transaction_id: int) -> Transaction:
        txn = self._get_owned(transaction_id)
        if not txn or not txn.is_deleted:
            raise NotFound("Transaction not found or already restored")
        txn.is_deleted = False
        txn.deleted_at = None
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def deleted(self, limit: int = 200) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.is_deleted.is_(True)
            )
            .order_by(Transaction.deleted_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def recurring(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.recurring.is_(True),
                Transaction.is_deleted.is_(False),
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def lineage(self, transaction_id: int) -> list[Transaction]:
        """Recurring chain ending at ``transaction_id``, oldest first.

        Parents are looked up by key one hop at a time. The store does not
        forbid cycles, so a revisited id is reported rather than followed.
        """
        txn = self._get_owned(transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        chain = [txn]
        seen = {txn.id}
        parent_id = txn.parent_transaction_id
        while parent_id is not None:
            if parent_id in seen:
                raise ValidationFailure(
                    f"Lineage of transaction {transaction_id} contains a cycle"
                )
            parent = self._get_owned(parent_id)
            if not parent:
                break
            chain.append(parent)
            seen.add(parent.id)
            parent_id = parent.parent_transaction_id
        chain.reverse()
        return chain

    def overview(self, limit: int = 5, *, latest: bool = True) -> list[Transaction]:
        order = Transaction.updated_at.desc() if latest else Transaction.updated_at.asc()
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.is_deleted.is_(False)
            )
            .order_by(order, Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def analytics(self, range_slug: str = "last30days") -> dict[str, object]:
        period = resolve_date_range(range_slug, now=self.clock())
        stmt = (
            select(Transaction)
            .where(*self._conditions(TransactionFilters(start=period.start, end=period.end)))
            .order_by(Transaction.date, Transaction.id)
        )
        rows = self.session.scalars(stmt).all()

        by_day: dict[str, int] = {}
        by_category: dict[str, int] = {}
        total = 0
        for txn in rows:
            day = txn.date.date().isoformat()
            by_day[day] = by_day.get(day, 0) + txn.amount_cents
            by_category[txn.category] = by_category.get(txn.category, 0) + txn.amount_cents
            total += txn.amount_cents

        return {
            "range": period.slug,
            "start": period.start,
            "end": period.end,
            "transaction_trends": [
                {"date": day, "amount_cents": amount} for day, amount in by_day.items()
            ],
            "category_breakdown": [
                {"category": name, "percentage": round(amount / total * 100)}
                for name, amount in by_category.items()
            ]
            if total
            else [],
        }


class PotService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _name_taken(self, name: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Pot.id).where(Pot.user_id == self.user_id, Pot.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Pot.id != exclude_id)
        return self.session.scalar(stmt.limit(1)) is not None

    def get(self, pot_id: int) -> Pot:
        pot = self.session.get(Pot, pot_id)
        if not pot or pot.user_id != self.user_id:
            raise NotFound("Pot not found")
        return pot

    def list(self) -> list[Pot]:
        stmt = (
            select(Pot)
            .where(Pot.user_id == self.user_id)
            .order_by(Pot.created_at.desc(), Pot.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: PotIn) -> Pot:
        name = data.name.strip()
        if self._name_taken(name):
            raise Conflict(f"Pot with name '{name}' already exists")
        pot = Pot(
            user_id=self.user_id,
            name=name,
            goal_amount_cents=data.goal_amount_cents,
            current_amount_cents=0,
            target_date=data.target_date,
            description=data.description,
            category=data.category,
        )
        self.session.add(pot)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(f"Pot with name '{name}' already exists") from exc
        self.session.refresh(pot)
        return pot

    def update(self, pot_id: int, data: PotUpdate) -> Pot:
        pot = self.get(pot_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("name", "goal_amount_cents", "current_amount_cents", "target_date"):
            if field in changes and changes[field] is None:
                raise ValidationFailure(f"{field} cannot be null")
        if "name" in changes:
            changes["name"] = changes["name"].strip()
            if self._name_taken(changes["name"], exclude_id=pot.id):
                raise Conflict(f"Pot with name '{changes['name']}' already exists")

        for field, value in changes.items():
            setattr(pot, field, value)
        pot.current_amount_cents = min(pot.current_amount_cents, pot.goal_amount_cents)
        self.session.commit()
        self.session.refresh(pot)
        return pot

    def delete(self, pot_id: int) -> None:
        pot = self.get(pot_id)
        self.session.execute(
            update(Transaction).where(Transaction.pot_id == pot.id).values(pot_id=None)
        )
        self.session.delete(pot)
        self.session.commit()

    def update_balance(self, pot_id: int, amount_cents: int) -> Pot:
        pot = self.get(pot_id)
        new_amount = pot.current_amount_cents + amount_cents
        if new_amount < 0:
            raise InsufficientFunds("Insufficient funds in pot")
        pot.current_amount_cents = min(new_amount, pot.goal_amount_cents)
        self.session.commit()
        self.session.refresh(pot)
        return pot

    def adjust_balance(self, pot_id: int, amount_cents: int, operation: str) -> Pot:
        if amount_cents <= 0:
            raise ValidationFailure("Amount must be a positive number")
        if operation not in ("add", "withdraw"):
            raise ValidationFailure("Operation must be either 'add' or 'withdraw'")
        delta = -amount_cents if operation == "withdraw" else amount_cents
        return self.update_balance(pot_id, delta)


class AccountService:
    def __init__(
        self, session: Session, user_id: int, clock: Optional[Clock] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock or local_now

    def summary(self) -> dict[str, int]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.is_deleted.is_(False)
            )
            .group_by(Transaction.type)
        )
        totals = {row.type: int(row.total or 0) for row in self.session.execute(stmt)}
        income = totals.get(TransactionType.income, 0)
        expenses = totals.get(TransactionType.expense, 0)
        return {
            "current_balance_cents": income - expenses,
            "income_cents": income,
            "expenses_cents": expenses,
        }

    def savings_overview(self, limit: int = 5) -> dict[str, object]:
        pots = PotService(self.session, self.user_id).list()
        return {
            "total_saved_cents": sum(p.current_amount_cents for p in pots),
            "breakdown": [
                {
                    "name": pot.name,
                    "category": pot.category or "Uncategorized",
                    "current_amount_cents": pot.current_amount_cents,
                    "goal_amount_cents": pot.goal_amount_cents,
                    "progress": pot.progress,
                }
                for pot in pots[:limit]
            ],
        }

    def budget_overview(self) -> dict[str, int]:
        budgets = BudgetService(self.session, self.user_id, self.clock)
        ids = self.session.scalars(
            select(Budget.id).where(
                Budget.user_id == self.user_id, Budget.is_active.is_(True)
            )
        ).all()
        total_budget = 0
        amount_spent = 0
        for budget_id in ids:
            usage = budgets.utilization(budget_id)
            total_budget += usage.budget.amount_cents
            amount_spent += usage.spent_cents
        return {"total_budget_cents": total_budget, "amount_spent_cents": amount_spent}


class RecurringBillService:
    def __init__(
        self, session: Session, user_id: int, clock: Optional[Clock] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.clock = clock or local_now

    def summary(self, due_within_days: int = 7) -> dict[str, object]:
        bills = TransactionService(self.session, self.user_id, self.clock).recurring()
        now = self.clock()
        horizon = now + timedelta(days=due_within_days)
        due_soon = [bill for bill in bills if now <= bill.date <= horizon]
        return {
            "total_paid_bills": sum(1 for bill in bills if bill.date < now),
            "total_upcoming_bills": sum(1 for bill in bills if bill.date >= now),
            "bills_due_soon": [
                {
                    "name": bill.name,
                    "amount_cents": bill.amount_cents,
                    "due_date": bill.date,
                }
                for bill in due_soon
            ],
        }
