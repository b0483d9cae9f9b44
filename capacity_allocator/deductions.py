"""Net capacity after absences, public holidays and recurring overhead."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .models import (
    Absence,
    EngineConfig,
    Holiday,
    JobOverheadTask,
    Overhead,
    OverheadAssignment,
    PeriodSnapshot,
    Person,
    PersonJobAssignment,
    PlanningPeriod,
)
from .work_calendar import CapacityCalendar, weeks_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityBreakdown:
    base_hours: float
    working_days: int
    absence_days: int
    absence_hours: float
    holiday_days: int
    holiday_hours: float
    overhead_hours: float
    optional_overhead_hours: float
    weighted_optional_overhead_hours: float
    net_hours: float

    @property
    def total_overhead_hours(self) -> float:
        return self.overhead_hours + self.weighted_optional_overhead_hours

    @classmethod
    def empty(cls) -> "CapacityBreakdown":
        return cls(0.0, 0, 0, 0.0, 0, 0.0, 0.0, 0.0, 0.0, 0.0)


def _covered_days(ranges: Iterable[Tuple[date, date]], days: Sequence[date]) -> Set[date]:
    covered: Set[date] = set()
    spans = [(start, end) for start, end in ranges if start <= end]
    for day in days:
        if any(start <= day <= end for start, end in spans):
            covered.add(day)
    return covered


def _cadence_multiplier(effort_period: str, weeks: float, working_days: int) -> float:
    if effort_period == "weekly":
        return weeks
    if effort_period == "daily":
        return float(working_days)
    return 0.0


class DeductionResolver:
    def __init__(
        self,
        period: PlanningPeriod,
        *,
        absences: Iterable[Absence] = (),
        holidays: Iterable[Holiday] = (),
        overheads: Iterable[Overhead] = (),
        overhead_assignments: Iterable[OverheadAssignment] = (),
        job_tasks: Iterable[JobOverheadTask] = (),
        person_jobs: Iterable[PersonJobAssignment] = (),
        config: EngineConfig = EngineConfig(),
        calendar: CapacityCalendar = CapacityCalendar(),
    ) -> None:
        self.period = period
        self.config = config
        self.calendar = calendar
        self._absences: Dict[int, List[Absence]] = defaultdict(list)
        for absence in absences:
            self._absences[absence.person_id].append(absence)
        self._holidays: Dict[int, List[Holiday]] = defaultdict(list)
        for holiday in holidays:
            self._holidays[holiday.country_id].append(holiday)
        period_overheads = {o.id for o in overheads if o.planning_period_id == period.id}
        self._overhead_assignments: Dict[int, List[OverheadAssignment]] = defaultdict(list)
        for item in overhead_assignments:
            if item.overhead_id in period_overheads:
                self._overhead_assignments[item.person_id].append(item)
        tasks_by_job: Dict[int, List[JobOverheadTask]] = defaultdict(list)
        for task in job_tasks:
            tasks_by_job[task.job_id].append(task)
        self._job_tasks: Dict[int, List[JobOverheadTask]] = defaultdict(list)
        for link in person_jobs:
            if link.planning_period_id == period.id:
                self._job_tasks[link.person_id].extend(tasks_by_job.get(link.job_id, ()))
        self._cache: Dict[Tuple[int, date, date], CapacityBreakdown] = {}

    @classmethod
    def from_snapshot(cls, snapshot: PeriodSnapshot, config: EngineConfig = EngineConfig()) -> "DeductionResolver":
        return cls(
            snapshot.period,
            absences=snapshot.absences,
            holidays=snapshot.holidays,
            overheads=snapshot.overheads,
            overhead_assignments=snapshot.overhead_assignments,
            job_tasks=snapshot.job_tasks,
            person_jobs=snapshot.person_jobs,
            config=config,
        )

    def net_available_hours(self, person: Person, start: date, end: date) -> float:
        return self.breakdown(person, start, end).net_hours

    def period_breakdown(self, person: Person) -> CapacityBreakdown:
        return self.breakdown(person, self.period.start_date, self.period.end_date)

    def breakdown(self, person: Person, start: date, end: date) -> CapacityBreakdown:
        # inverted ranges are treated as zero-length rather than rejected
        if start > end:
            return CapacityBreakdown.empty()
        key = (person.id, start, end)
        cached = self._cache.get(key)
        if cached is None:
            cached = self._compute(person, start, end)
            self._cache[key] = cached
        return cached

    def _compute(self, person: Person, start: date, end: date) -> CapacityBreakdown:
        hours_per_day = person.hours_per_working_day
        days = self.calendar.working_days(person, start, end)
        base_hours = hours_per_day * len(days)

        absence_days = _covered_days(
            ((a.start_date, a.end_date) for a in self._absences.get(person.id, ())), days
        )
        holiday_days: Set[date] = set()
        if person.country_id is not None:
            holiday_days = _covered_days(
                ((h.start_date, h.end_date) for h in self._holidays.get(person.country_id, ())), days
            )
        holiday_days -= absence_days
        absence_hours = hours_per_day * len(absence_days)
        holiday_hours = hours_per_day * len(holiday_days)

        weeks = weeks_between(start, end)
        overhead_hours = 0.0
        optional_hours = 0.0
        weighted_optional = 0.0
        for item in self._overhead_assignments.get(person.id, ()):
            overhead_hours += item.effort_hours * _cadence_multiplier(item.effort_period, weeks, len(days))
        for task in self._job_tasks.get(person.id, ()):
            task_hours = task.effort_hours * _cadence_multiplier(task.effort_period, weeks, len(days))
            if task.is_optional:
                optional_hours += task_hours
                weighted_optional += task_hours * self.config.optional_weight_for(task)
            else:
                overhead_hours += task_hours

        net_hours = max(0.0, base_hours - absence_hours - holiday_hours - overhead_hours - weighted_optional)
        logger.debug(
            "person %s %s..%s: net %.2fh (base %.2f, absence %d days/%.2fh, holiday %d days/%.2fh, "
            "overhead %.2fh, optional %.2fh weighted %.2fh)",
            person.id,
            start,
            end,
            net_hours,
            base_hours,
            len(absence_days),
            absence_hours,
            len(holiday_days),
            holiday_hours,
            overhead_hours,
            optional_hours,
            weighted_optional,
        )
        return CapacityBreakdown(
            base_hours=base_hours,
            working_days=len(days),
            absence_days=len(absence_days),
            absence_hours=absence_hours,
            holiday_days=len(holiday_days),
            holiday_hours=holiday_hours,
            overhead_hours=overhead_hours,
            optional_overhead_hours=optional_hours,
            weighted_optional_overhead_hours=weighted_optional,
            net_hours=net_hours,
        )
