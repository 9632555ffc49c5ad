"""
Period arithmetic for the daily, monthly and audit pipelines.

Both ends of a stored period are inclusive calendar dates.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Period end {self.end} precedes start {self.start}")

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    def contains(self, other: "Period") -> bool:
        return self.start <= other.start and other.end <= self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def today() -> date:
    return datetime.now(timezone.utc).date()


def resolve_reference(reference: Optional[date]) -> date:
    return reference or today()


def daily_periods(reference: Optional[date] = None) -> tuple[Period, Period]:
    """(yesterday, day before yesterday) as single-day periods."""
    ref = resolve_reference(reference)
    yesterday = ref - timedelta(days=1)
    day_before = ref - timedelta(days=2)
    return Period(yesterday, yesterday), Period(day_before, day_before)


def daily_key(reference: Optional[date] = None) -> Period:
    """Period a daily proofline result is keyed on."""
    yesterday, day_before = daily_periods(reference)
    return Period(day_before.start, yesterday.end)


def previous_month(reference: Optional[date] = None) -> Period:
    """First to last day of the calendar month before ``reference``."""
    ref = resolve_reference(reference)
    last_day = ref.replace(day=1) - timedelta(days=1)
    return Period(last_day.replace(day=1), last_day)


def monthly_matured(reference: Optional[date] = None, data_available: bool = True) -> bool:
    """
    The monthly pipeline may run once the previous month is over and its
    practice-management data has been consolidated.
    """
    ref = resolve_reference(reference)
    return ref > previous_month(ref).end and data_available


def month_period(month: str) -> Period:
    """Calendar month for a ``YYYY-MM`` string."""
    first = datetime.strptime(month, "%Y-%m").date()
    following = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return Period(first, following - timedelta(days=1))
