from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import Conflict, LimitExceeded, NotFound, ValidationFailure
from models import Budget, Notification, NotificationType, Transaction, TransactionType
from schemas import BudgetIn, BudgetUpdate, CategoryIn, Pagination, TransactionIn, TransactionUpdate
from services import BudgetFilters, BudgetService, CategoryService, TransactionService

NOW = datetime(2025, 3, 15, 12, 0)


def clock() -> datetime:
    return NOW


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _groceries_budget(session: Session, amount_cents: int = 10_000, user_id: int = 1) -> Budget:
    categories = CategoryService(session)
    if not categories.exists("Groceries"):
        categories.create(CategoryIn(name="Groceries", theme="#00aa00"))
    return BudgetService(session, user_id, clock).create(
        BudgetIn(
            category="Groceries",
            amount_cents=amount_cents,
            start_date=datetime(2025, 1, 1),
        )
    )


def _raw_expense(session: Session, budget: Budget, amount_cents: int, when: datetime, **overrides) -> None:
    fields = dict(
        user_id=budget.user_id,
        name="Shop",
        amount_cents=amount_cents,
        type=TransactionType.expense,
        category=budget.category,
        date=when,
        budget_id=budget.id,
    )
    fields.update(overrides)
    session.add(Transaction(**fields))
    session.commit()


def _spend(session: Session, budget: Budget, amount_cents: int) -> Transaction:
    return TransactionService(session, budget.user_id, clock).create(
        TransactionIn(
            name="Supermarket",
            amount_cents=amount_cents,
            type=TransactionType.expense,
            category="Groceries",
            budget_id=budget.id,
        )
    )


def test_create_requires_known_category_and_is_unique_per_owner() -> None:
    with make_session() as session:
        budgets = BudgetService(session, 1, clock)
        with pytest.raises(ValidationFailure):
            budgets.create(BudgetIn(category="Travel", amount_cents=5_000))

        budget = _groceries_budget(session)
        assert budget.period.value == "monthly"
        with pytest.raises(Conflict):
            budgets.create(BudgetIn(category="Groceries", amount_cents=5_000))

        other = _groceries_budget(session, user_id=2)
        assert other.id != budget.id


def test_utilization_sums_only_expenses_inside_the_window() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        window_start = datetime(2025, 3, 1)

        _raw_expense(session, budget, 2_000, window_start)
        _raw_expense(session, budget, 1_000, datetime(2025, 3, 31, 23, 59, 59, 999000))
        _raw_expense(session, budget, 4_000, window_start - timedelta(milliseconds=1))
        _raw_expense(session, budget, 8_000, datetime(2025, 3, 5), type=TransactionType.income)
        _raw_expense(session, budget, 500, datetime(2025, 3, 6), is_deleted=True, deleted_at=NOW)

        usage = BudgetService(session, 1, clock).utilization(budget.id)
        assert usage.spent_cents == 3_000
        assert usage.remaining_cents == 7_000
        assert usage.percentage_used == pytest.approx(30.0)
        assert usage.period.start == window_start


def test_utilization_is_owner_scoped() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        with pytest.raises(NotFound):
            BudgetService(session, 2, clock).utilization(budget.id)


def test_remaining_never_goes_negative() -> None:
    with make_session() as session:
        budget = _groceries_budget(session, amount_cents=1_000)
        _raw_expense(session, budget, 1_500, datetime(2025, 3, 2))

        usage = BudgetService(session, 1, clock).utilization(budget.id)
        assert usage.remaining_cents == 0
        assert usage.percentage_used == pytest.approx(150.0)


def test_zero_amount_budget_reports_percentage() -> None:
    with make_session() as session:
        CategoryService(session).create(CategoryIn(name="Fun"))
        budget = Budget(
            user_id=1,
            category="Fun",
            amount_cents=0,
            start_date=datetime(2025, 1, 1),
        )
        session.add(budget)
        session.commit()

        budgets = BudgetService(session, 1, clock)
        assert budgets.utilization(budget.id).percentage_used == 0.0
        assert budgets.check_limit(budget.id, 0).within_limit

        _raw_expense(session, budget, 100, datetime(2025, 3, 3))
        assert budgets.utilization(budget.id).percentage_used == 100.0
        assert not budgets.check_limit(budget.id, 0).within_limit


def test_check_limit_is_monotonic_in_the_proposed_amount() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        _raw_expense(session, budget, 7_000, datetime(2025, 3, 10))
        budgets = BudgetService(session, 1, clock)

        results = [budgets.check_limit(budget.id, amount).within_limit for amount in (0, 1_000, 3_000, 3_001, 9_000)]
        assert results == [True, True, True, False, False]

        check = budgets.check_limit(budget.id, 3_001)
        assert check.spent_cents == 7_000
        assert check.remaining_cents == 3_000


def test_transaction_reaching_85_percent_sends_one_warning() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        _spend(session, budget, 4_000)
        _spend(session, budget, 3_000)
        assert session.scalars(select(Notification)).all() == []

        _spend(session, budget, 1_500)

        notifications = session.scalars(select(Notification)).all()
        assert len(notifications) == 1
        alert = notifications[0]
        assert alert.message == "Budget Groceries is at 85.0% utilization"
        assert alert.type == NotificationType.warning
        assert alert.category == "budget"
        assert alert.related_id == budget.id
        assert alert.user_id == 1
        assert BudgetService(session, 1, clock).utilization(budget.id).remaining_cents == 1_500


def test_transaction_at_79_percent_sends_nothing() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        _spend(session, budget, 4_000)
        _spend(session, budget, 3_000)
        _spend(session, budget, 900)

        assert session.scalars(select(Notification)).all() == []


def test_every_write_above_threshold_sends_another_warning() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        _spend(session, budget, 8_500)
        _spend(session, budget, 500)

        messages = [n.message for n in session.scalars(select(Notification).order_by(Notification.id))]
        assert messages == [
            "Budget Groceries is at 85.0% utilization",
            "Budget Groceries is at 90.0% utilization",
        ]


def test_failed_alert_does_not_fail_the_write(monkeypatch, caplog) -> None:
    def broken_notify(self, *args, **kwargs):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr("services.NotificationService.notify", broken_notify)

    with make_session() as session:
        budget = _groceries_budget(session)
        txn = _spend(session, budget, 9_000)

        assert txn.id is not None
        assert txn.amount_cents == 9_000
        stored = session.scalars(select(Transaction)).all()
        assert [t.id for t in stored] == [txn.id]
        assert session.scalars(select(Notification)).all() == []
        assert "budget_alert_failed" in caplog.text


def test_exceeding_limit_rejects_the_transaction() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        _spend(session, budget, 7_000)

        with pytest.raises(LimitExceeded) as excinfo:
            _spend(session, budget, 3_001)
        assert excinfo.value.spent_cents == 7_000
        assert excinfo.value.remaining_cents == 3_000
        assert excinfo.value.payload()["kind"] == "limit_exceeded"
        assert len(session.scalars(select(Transaction)).all()) == 1

        _spend(session, budget, 3_000)
        assert BudgetService(session, 1, clock).utilization(budget.id).remaining_cents == 0


def test_update_excludes_the_rows_own_amount_from_the_guard() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        txn = _spend(session, budget, 9_000)
        service = TransactionService(session, 1, clock)

        updated = service.update(txn.id, TransactionUpdate(amount_cents=10_000))
        assert updated.amount_cents == 10_000

        with pytest.raises(LimitExceeded):
            service.update(txn.id, TransactionUpdate(amount_cents=10_001))


def test_income_linked_to_budget_skips_the_guard() -> None:
    with make_session() as session:
        budget = _groceries_budget(session, amount_cents=1_000)
        refund = TransactionService(session, 1, clock).create(
            TransactionIn(
                name="Refund",
                amount_cents=50_000,
                type=TransactionType.income,
                category="Groceries",
                budget_id=budget.id,
            )
        )
        assert refund.id is not None
        assert BudgetService(session, 1, clock).utilization(budget.id).spent_cents == 0


def test_list_filters_and_paginates() -> None:
    with make_session() as session:
        categories = CategoryService(session)
        budgets = BudgetService(session, 1, clock)
        for index, name in enumerate(["Groceries", "Rent", "Travel"], start=1):
            categories.create(CategoryIn(name=name))
            budgets.create(BudgetIn(category=name, amount_cents=index * 10_000))

        page = budgets.list(BudgetFilters(min_amount_cents=20_000), Pagination(sort_by="amount_cents", sort_order=1))
        assert [b.category for b in page.items] == ["Rent", "Travel"]
        assert page.total == 2

        first = budgets.list(pagination=Pagination(page=1, limit=2, sort_by="category", sort_order=1))
        assert first.total_pages == 2
        assert [b.category for b in first.items] == ["Groceries", "Rent"]

        with pytest.raises(ValidationFailure):
            budgets.list(pagination=Pagination(sort_by="password"))


def test_update_and_delete_budget() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        CategoryService(session).create(CategoryIn(name="Dining"))
        budgets = BudgetService(session, 1, clock)
        txn = _spend(session, budget, 1_000)

        renamed = budgets.update(budget.id, BudgetUpdate(category="Dining", amount_cents=20_000))
        assert renamed.category == "Dining"
        assert budgets.by_category("Dining").id == budget.id
        assert budgets.by_category("Groceries") is None

        with pytest.raises(ValidationFailure):
            budgets.update(budget.id, BudgetUpdate(category="Unknown"))

        budgets.delete(budget.id)
        with pytest.raises(NotFound):
            budgets.get(budget.id)
        session.refresh(txn)
        assert txn.budget_id is None


def test_near_limit_lists_budgets_over_threshold() -> None:
    with make_session() as session:
        budget = _groceries_budget(session)
        _raw_expense(session, budget, 8_000, datetime(2025, 3, 2))

        near = BudgetService(session, 1, clock).near_limit()
        assert [u.budget.id for u in near] == [budget.id]
        assert BudgetService(session, 1, clock).near_limit(threshold=90) == []


def test_budget_amount_must_stay_positive() -> None:
    with pytest.raises(PydanticValidationError):
        BudgetUpdate(amount_cents=0)
    with pytest.raises(PydanticValidationError):
        BudgetIn(category="Groceries", amount_cents=0)
    assert BudgetUpdate(amount_cents=1).amount_cents == 1
