from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFound, ValidationFailure
from models import Category, RecurringFrequency, Transaction, TransactionType
from recurrence import RecurringEngine
from schemas import BudgetIn, CategoryIn, Pagination, PotIn, TransactionIn, TransactionUpdate
from services import (
    BudgetService,
    CategoryService,
    PotService,
    TransactionFilters,
    TransactionService,
)

NOW = datetime(2025, 3, 15, 12, 0)


def clock() -> datetime:
    return NOW


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _payload(**overrides) -> TransactionIn:
    fields = dict(
        name="Coffee",
        amount_cents=450,
        type=TransactionType.expense,
        category="Dining",
        date=datetime(2025, 3, 10, 8, 30),
    )
    fields.update(overrides)
    return TransactionIn(**fields)


def test_create_auto_creates_missing_category() -> None:
    with make_session() as session:
        txn = TransactionService(session, 7, clock).create(_payload())

        assert txn.id is not None
        assert txn.user_id == 7
        category = session.scalar(select(Category).where(Category.name == "Dining"))
        assert category is not None
        assert category.theme == "#000000"
        assert category.description == "Category created from transaction by user 7"

        TransactionService(session, 8, clock).create(_payload())
        assert len(session.scalars(select(Category)).all()) == 1


def test_create_defaults_date_and_frequency() -> None:
    with make_session() as session:
        txn = TransactionService(session, 1, clock).create(
            _payload(date=None, recurring=True)
        )
        assert txn.date == NOW
        assert txn.recurring_frequency == RecurringFrequency.monthly


def test_create_rejects_links_owned_by_someone_else() -> None:
    with make_session() as session:
        CategoryService(session).create(CategoryIn(name="Dining"))
        budget = BudgetService(session, 2, clock).create(
            BudgetIn(category="Dining", amount_cents=10_000)
        )
        pot = PotService(session, 2).create(
            PotIn(name="Holiday", goal_amount_cents=100_000, target_date=datetime(2025, 12, 1))
        )
        service = TransactionService(session, 1, clock)

        with pytest.raises(NotFound):
            service.create(_payload(budget_id=budget.id))
        with pytest.raises(NotFound):
            service.create(_payload(pot_id=pot.id))
        assert session.scalars(select(Transaction)).all() == []


def test_get_is_owner_scoped_and_hides_deleted_rows() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        txn = service.create(_payload())

        with pytest.raises(NotFound):
            TransactionService(session, 2, clock).get(txn.id)

        service.soft_delete(txn.id)
        with pytest.raises(NotFound):
            service.get(txn.id)


def test_soft_delete_and_restore_round_trip() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        txn = service.create(_payload())

        with pytest.raises(NotFound):
            service.restore(txn.id)

        service.soft_delete(txn.id)
        assert txn.is_deleted is True
        assert txn.deleted_at == NOW
        assert [t.id for t in service.deleted()] == [txn.id]
        with pytest.raises(NotFound):
            service.soft_delete(txn.id)

        restored = service.restore(txn.id)
        assert restored.is_deleted is False
        assert restored.deleted_at is None
        assert service.deleted() == []


def test_update_is_partial_and_rejects_nulls() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        txn = service.create(_payload())

        updated = service.update(txn.id, TransactionUpdate(category="Cafes", description="flat white"))
        assert updated.category == "Cafes"
        assert updated.description == "flat white"
        assert updated.amount_cents == 450
        assert CategoryService(session).exists("Cafes")

        with pytest.raises(ValidationFailure):
            service.update(txn.id, TransactionUpdate(name=None))

        recurring = service.update(txn.id, TransactionUpdate(recurring=True))
        assert recurring.recurring_frequency == RecurringFrequency.monthly


def test_list_filters_sorts_and_paginates() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        service.create(_payload(name="Coffee", amount_cents=450, date=datetime(2025, 3, 1)))
        service.create(_payload(name="Dinner", amount_cents=6_000, date=datetime(2025, 3, 5)))
        service.create(_payload(name="Salary", amount_cents=300_000, type=TransactionType.income, category="Work", date=datetime(2025, 3, 2)))
        service.create(_payload(name="Lunch", amount_cents=1_200, description="team lunch", date=datetime(2025, 3, 8)))
        TransactionService(session, 2, clock).create(_payload(name="Other user"))

        everything = service.list()
        assert everything.total == 4
        assert [t.name for t in everything.items] == ["Lunch", "Dinner", "Salary", "Coffee"]

        expenses = service.list(TransactionFilters(type=TransactionType.expense, min_amount_cents=1_000))
        assert {t.name for t in expenses.items} == {"Dinner", "Lunch"}

        by_category = service.list(TransactionFilters(category=["Work"]))
        assert [t.name for t in by_category.items] == ["Salary"]

        search = service.list(TransactionFilters(search="TEAM"))
        assert [t.name for t in search.items] == ["Lunch"]

        ranged = service.list(TransactionFilters(start=datetime(2025, 3, 2), end=datetime(2025, 3, 5)))
        assert {t.name for t in ranged.items} == {"Salary", "Dinner"}

        page = service.list(pagination=Pagination(page=2, limit=3, sort_by="amount_cents", sort_order=1))
        assert page.total == 4
        assert page.total_pages == 2
        assert [t.name for t in page.items] == ["Salary"]

        with pytest.raises(ValidationFailure):
            service.list(pagination=Pagination(sort_by="user_id"))


def test_lineage_walks_back_to_the_first_occurrence() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        source = service.create(
            _payload(name="Rent", amount_cents=90_000, date=datetime(2025, 1, 1), recurring=True)
        )
        engine = RecurringEngine(session, clock=clock)
        february = engine.advance(source.id)
        march = engine.advance(february.id)

        chain = service.lineage(march.id)
        assert [t.id for t in chain] == [source.id, february.id, march.id]
        assert [t.date for t in chain] == [
            datetime(2025, 1, 1),
            datetime(2025, 2, 1),
            datetime(2025, 3, 1),
        ]
        assert service.lineage(source.id) == [source]


def test_lineage_reports_a_self_parented_row() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        txn = service.create(_payload(recurring=True))
        txn.parent_transaction_id = txn.id
        session.commit()

        with pytest.raises(ValidationFailure):
            service.lineage(txn.id)


def test_overview_and_recurring_listing() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        for index in range(7):
            service.create(_payload(name=f"Item {index}", recurring=index % 2 == 0))

        assert len(service.overview()) == 5
        assert len(service.overview(limit=3, latest=False)) == 3
        assert len(service.recurring()) == 4


def test_analytics_groups_by_day_and_category() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        service.create(_payload(amount_cents=3_000, category="Dining", date=datetime(2025, 3, 10, 9, 0)))
        service.create(_payload(amount_cents=1_000, category="Dining", date=datetime(2025, 3, 10, 19, 0)))
        service.create(_payload(amount_cents=4_000, category="Transport", date=datetime(2025, 3, 12)))
        service.create(_payload(amount_cents=9_999, category="Old", date=datetime(2025, 1, 1)))

        result = service.analytics("last7days")
        assert result["range"] == "last7days"
        assert result["transaction_trends"] == [
            {"date": "2025-03-10", "amount_cents": 4_000},
            {"date": "2025-03-12", "amount_cents": 4_000},
        ]
        assert result["category_breakdown"] == [
            {"category": "Dining", "percentage": 50},
            {"category": "Transport", "percentage": 50},
        ]

        with pytest.raises(ValidationFailure):
            service.analytics("forever")


def test_update_keeps_a_frequency_on_recurring_rows() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        txn = service.create(
            _payload(name="Rent", date=datetime(2025, 1, 1), recurring=True, recurring_frequency="weekly")
        )

        cleared = service.update(txn.id, TransactionUpdate(recurring_frequency=None))
        assert cleared.recurring is True
        assert cleared.recurring_frequency == RecurringFrequency.monthly

        both = service.update(txn.id, TransactionUpdate(recurring=True, recurring_frequency=None))
        assert both.recurring_frequency == RecurringFrequency.monthly

        assert RecurringEngine(session, clock=clock).post_due() == 1
        successor = session.scalar(
            select(Transaction).where(Transaction.parent_transaction_id == txn.id)
        )
        assert successor.date == datetime(2025, 2, 1)


def test_update_clearing_frequency_on_one_off_row_is_allowed() -> None:
    with make_session() as session:
        service = TransactionService(session, 1, clock)
        txn = service.create(_payload())
        updated = service.update(txn.id, TransactionUpdate(recurring_frequency=None))
        assert updated.recurring is False
        assert updated.recurring_frequency is None
