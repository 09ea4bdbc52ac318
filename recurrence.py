import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import ValidationFailure
from models import RecurringFrequency, Transaction
from periods import local_now, start_of_day

logger = logging.getLogger(__name__)

# Business fields an occurrence inherits from the row that was due.
CLONED_FIELDS = (
    "user_id",
    "name",
    "amount_cents",
    "type",
    "category",
    "description",
    "recurring",
    "recurring_frequency",
    "budget_id",
    "pot_id",
)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def add_interval(
    moment: datetime, frequency: Optional[Union[RecurringFrequency, str]]
) -> datetime:
    if frequency is None:
        raise ValidationFailure("Recurring transaction has no frequency")
    try:
        unit = RecurringFrequency(frequency)
    except ValueError as exc:
        raise ValidationFailure(f"Invalid frequency: {frequency}") from exc

    if unit == RecurringFrequency.daily:
        return moment + timedelta(days=1)
    if unit == RecurringFrequency.weekly:
        return moment + timedelta(weeks=1)
    if unit == RecurringFrequency.monthly:
        return _add_months(moment, 1)
    return _add_months(moment, 12)


class RecurringEngine:
    def __init__(
        self, session: Session, clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self.session = session
        self.clock = clock or local_now

    def _has_successor(self, transaction_id: int) -> bool:
        stmt = (
            select(Transaction.id)
            .where(Transaction.parent_transaction_id == transaction_id)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def advance(self, transaction_id: int) -> Optional[Transaction]:
        """Materialise the occurrence after ``transaction_id`` if it is due.

        Each row gets at most one successor. Soft-deleting a generated
        occurrence ends the series: its parent already has a successor and
        deleted rows are never advanced. Restoring the occurrence resumes it.
        """
        source = self.session.get(Transaction, transaction_id)
        if not source or not source.recurring or source.is_deleted:
            return None
        if source.parent_transaction_id == source.id:
            raise ValidationFailure(
                f"Transaction {source.id} is recorded as its own parent"
            )

        next_date = add_interval(source.date, source.recurring_frequency)
        if next_date > self.clock():
            return None
        # A successor (even a soft-deleted one) means this occurrence is done.
        if self._has_successor(source.id):
            return None

        fields = {name: getattr(source, name) for name in CLONED_FIELDS}
        instance = Transaction(
            **fields,
            date=next_date,
            parent_transaction_id=source.id,
            is_deleted=False,
        )
        self.session.add(instance)
        self.session.commit()
        logger.info(
            f"recurring_instance_created: source_id={source.id} "
            f"instance_id={instance.id} date={next_date.isoformat()}"
        )
        return instance

    def due_ids(self) -> list[int]:
        today = start_of_day(self.clock())
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.recurring.is_(True),
                Transaction.is_deleted.is_(False),
                Transaction.date <= today,
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def post_due(self) -> int:
        created = 0
        for transaction_id in self.due_ids():
            try:
                if self.advance(transaction_id) is not None:
                    created += 1
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"recurring_advance_failed: transaction_id={transaction_id}"
                )
        return created
