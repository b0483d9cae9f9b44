from __future__ import annotations

from datetime import date, datetime
from typing import List

from dateutil.rrule import DAILY, rrule

from .errors import InvalidRange
from .models import Person, WorkingDays

DAYS_PER_WEEK = 7.0


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise InvalidRange(start, end)


def working_days_between(pattern: WorkingDays, start: date, end: date) -> List[date]:
    """Dates in ``[start, end]`` (inclusive) whose weekday is in ``pattern``."""
    _check_range(start, end)
    if len(pattern) == 0:
        return []
    rule = rrule(
        DAILY,
        dtstart=datetime(start.year, start.month, start.day),
        until=datetime(end.year, end.month, end.day),
        byweekday=pattern.weekdays(),
    )
    return [moment.date() for moment in rule]


def calendar_days_between(start: date, end: date) -> int:
    _check_range(start, end)
    return (end - start).days + 1


def weeks_between(start: date, end: date) -> float:
    return calendar_days_between(start, end) / DAYS_PER_WEEK


class CapacityCalendar:
    """Raw working hours of a person over a date range, before any deduction."""

    def working_days(self, person: Person, start: date, end: date) -> List[date]:
        return working_days_between(person.working_days, start, end)

    def available_hours(self, person: Person, start: date, end: date) -> float:
        return person.hours_per_working_day * len(self.working_days(person, start, end))
