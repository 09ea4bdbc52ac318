from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Union
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationFailure
from models import BudgetPeriod

DAY_START = time(0, 0, 0)
DAY_END = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def local_now() -> datetime:
    """Wall-clock time in the configured zone, as a naive datetime."""
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), DAY_START)


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def budget_period_window(
    period: Union[BudgetPeriod, str], anchor: datetime, *, now: datetime
) -> Period:
    """Concrete [start, end] of the budget cycle in effect at ``now``.

    Cycles are calendar aligned. A budget whose anchor lies in the future
    reports its first cycle, so the window always contains the anchor while
    the budget has not started yet.
    """
    try:
        kind = BudgetPeriod(period)
    except ValueError as exc:
        raise ValidationFailure(f"Unknown budget period: {period}") from exc

    # The window follows now, not the anchor: a past anchor outside the
    # current cycle is not contained in the result.
    reference = anchor if anchor > now else now
    if kind == BudgetPeriod.monthly:
        first = date(reference.year, reference.month, 1)
        last = _month_end(reference.year, reference.month)
    elif kind == BudgetPeriod.quarterly:
        first_month = (reference.month - 1) // 3 * 3 + 1
        first = date(reference.year, first_month, 1)
        last = _month_end(reference.year, first_month + 2)
    else:
        first = date(reference.year, 1, 1)
        last = date(reference.year, 12, 31)
    return Period(
        kind.value,
        datetime.combine(first, DAY_START),
        datetime.combine(last, DAY_END),
    )


def resolve_date_range(slug: str, *, now: datetime) -> Period:
    if slug == "last7days":
        return Period(slug, now - timedelta(days=7), now)
    if slug == "last30days":
        return Period(slug, now - timedelta(days=30), now)
    if slug == "thisMonth":
        first = datetime.combine(date(now.year, now.month, 1), DAY_START)
        return Period(slug, first, now)
    raise ValidationFailure(f"Invalid date range: {slug}")
