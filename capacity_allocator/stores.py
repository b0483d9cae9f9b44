from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from .errors import CapacityError, EntityNotFound, PeriodNotFound, StorageUnavailable
from .io_utils import (
    INPUT_FILES,
    assignments_frame,
    load_assignments,
    load_calendar,
    load_overheads,
    load_people,
    load_projects,
    load_requirements,
    write_csv_atomic,
)
from .models import (
    Absence,
    Assignment,
    Country,
    Holiday,
    Job,
    JobOverheadTask,
    Overhead,
    OverheadAssignment,
    PeriodSnapshot,
    Person,
    PersonJobAssignment,
    PlanningPeriod,
    Project,
    ProjectRequirement,
)
from .optimizer import AssignmentCalculation

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _index(items: Iterable[T]) -> Dict[int, T]:
    return {item.id: item for item in items}  # type: ignore[attr-defined]


class InMemoryStore:
    """Entity registry shared by the engine; only calculated assignment fields are ever written."""

    def __init__(
        self,
        *,
        periods: Iterable[PlanningPeriod] = (),
        people: Iterable[Person] = (),
        countries: Iterable[Country] = (),
        projects: Iterable[Project] = (),
        requirements: Iterable[ProjectRequirement] = (),
        assignments: Iterable[Assignment] = (),
        absences: Iterable[Absence] = (),
        holidays: Iterable[Holiday] = (),
        overheads: Iterable[Overhead] = (),
        overhead_assignments: Iterable[OverheadAssignment] = (),
        jobs: Iterable[Job] = (),
        job_tasks: Iterable[JobOverheadTask] = (),
        person_jobs: Iterable[PersonJobAssignment] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._period_locks: Dict[int, threading.Lock] = {}
        self._periods = _index(periods)
        self._people = _index(people)
        self._countries = _index(countries)
        self._projects = _index(projects)
        self._requirements = _index(requirements)
        self._assignments = _index(assignments)
        self._absences = _index(absences)
        self._holidays = _index(holidays)
        self._overheads = _index(overheads)
        self._overhead_assignments = _index(overhead_assignments)
        self._jobs = _index(jobs)
        self._job_tasks = _index(job_tasks)
        self._person_jobs = _index(person_jobs)

    def get_period(self, period_id: int) -> PlanningPeriod:
        with self._lock:
            period = self._periods.get(period_id)
        if period is None:
            raise PeriodNotFound(period_id)
        return period

    def list_periods(self) -> List[PlanningPeriod]:
        with self._lock:
            return sorted(self._periods.values(), key=lambda p: p.id)

    def get_person(self, person_id: int) -> Person:
        with self._lock:
            person = self._people.get(person_id)
        if person is None:
            raise EntityNotFound("person", person_id)
        return person

    def list_people(self) -> List[Person]:
        with self._lock:
            return sorted(self._people.values(), key=lambda p: p.id)

    def get_project(self, project_id: int) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
        if project is None:
            raise EntityNotFound("project", project_id)
        return project

    def list_projects(self) -> List[Project]:
        with self._lock:
            return sorted(self._projects.values(), key=lambda p: p.id)

    def list_requirements(self, period_id: int) -> List[ProjectRequirement]:
        with self._lock:
            items = [r for r in self._requirements.values() if r.planning_period_id == period_id]
        return sorted(items, key=lambda r: r.id)

    def get_assignment(self, assignment_id: int) -> Assignment:
        with self._lock:
            assignment = self._assignments.get(assignment_id)
        if assignment is None:
            raise EntityNotFound("assignment", assignment_id)
        return assignment

    def list_assignments(self, period_id: int) -> List[Assignment]:
        with self._lock:
            items = [a for a in self._assignments.values() if a.planning_period_id == period_id]
        return sorted(items, key=lambda a: a.id)

    def list_absences(self, person_id: Optional[int] = None) -> List[Absence]:
        with self._lock:
            items = [a for a in self._absences.values() if person_id is None or a.person_id == person_id]
        return sorted(items, key=lambda a: a.id)

    def list_holidays(self, country_id: Optional[int] = None) -> List[Holiday]:
        with self._lock:
            items = [h for h in self._holidays.values() if country_id is None or h.country_id == country_id]
        return sorted(items, key=lambda h: h.id)

    def list_countries(self) -> List[Country]:
        with self._lock:
            return sorted(self._countries.values(), key=lambda c: c.id)

    def list_jobs(self) -> List[Job]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.id)

    def period_lock(self, period_id: int) -> threading.Lock:
        """Lock serialising optimization runs for one period."""
        with self._lock:
            return self._period_locks.setdefault(period_id, threading.Lock())

    def snapshot(self, period_id: int) -> PeriodSnapshot:
        with self._lock:
            period = self._periods.get(period_id)
            if period is None:
                raise PeriodNotFound(period_id)
            period_overheads = tuple(
                sorted(
                    (o for o in self._overheads.values() if o.planning_period_id == period_id),
                    key=lambda o: o.id,
                )
            )
            overhead_ids = {o.id for o in period_overheads}
            return PeriodSnapshot(
                period=period,
                people=tuple(sorted(self._people.values(), key=lambda p: p.id)),
                projects=tuple(sorted(self._projects.values(), key=lambda p: p.id)),
                requirements=tuple(
                    sorted(
                        (r for r in self._requirements.values() if r.planning_period_id == period_id),
                        key=lambda r: r.id,
                    )
                ),
                assignments=tuple(
                    sorted(
                        (a for a in self._assignments.values() if a.planning_period_id == period_id),
                        key=lambda a: a.id,
                    )
                ),
                absences=tuple(sorted(self._absences.values(), key=lambda a: a.id)),
                holidays=tuple(sorted(self._holidays.values(), key=lambda h: h.id)),
                overheads=period_overheads,
                overhead_assignments=tuple(
                    sorted(
                        (o for o in self._overhead_assignments.values() if o.overhead_id in overhead_ids),
                        key=lambda o: o.id,
                    )
                ),
                job_tasks=tuple(sorted(self._job_tasks.values(), key=lambda t: t.id)),
                person_jobs=tuple(
                    sorted(
                        (j for j in self._person_jobs.values() if j.planning_period_id == period_id),
                        key=lambda j: j.id,
                    )
                ),
            )

    def commit_calculations(
        self,
        period_id: int,
        calculations: Sequence[AssignmentCalculation],
        calculated_at: datetime,
    ) -> None:
        """Write every calculation of one run or none of them."""
        with self._lock:
            updated = dict(self._assignments)
            for calc in calculations:
                assignment = updated.get(calc.assignment_id)
                if assignment is None or assignment.planning_period_id != period_id:
                    raise CapacityError(
                        f"assignment {calc.assignment_id} does not belong to planning period {period_id}"
                    )
                if assignment.is_pinned:
                    raise CapacityError(f"assignment {calc.assignment_id} is pinned and cannot be recalculated")
                updated[calc.assignment_id] = replace(
                    assignment,
                    calculated_allocation_percentage=calc.allocation_percentage,
                    calculated_effective_hours=calc.effective_hours,
                    last_calculated_at=calculated_at,
                )
            self._persist_assignments(updated)
            self._assignments = updated
        logger.debug("Committed %d calculations for planning period %s", len(calculations), period_id)

    def _persist_assignments(self, assignments: Mapping[int, Assignment]) -> None:
        """Hook for durable stores; must raise ``StorageUnavailable`` without side effects on failure."""


class DirectoryStore(InMemoryStore):
    """Store backed by a portfolio directory (``<dir>/input/*``); calculations go back to assignments.csv."""

    def __init__(self, project_dir: str | Path) -> None:
        self.project_dir = Path(project_dir)
        self.input_dir = self.project_dir / "input"
        missing = [name for name in INPUT_FILES if not (self.input_dir / name).is_file()]
        if missing:
            raise StorageUnavailable(f"portfolio {self.project_dir} is missing input files: {', '.join(missing)}")
        try:
            periods, countries, absences, holidays = load_calendar(self.input_dir / "calendar.json")
            overhead_path = self.input_dir / "overheads.json"
            overhead_data: Dict[str, list] = load_overheads(overhead_path) if overhead_path.is_file() else {}
            super().__init__(
                periods=periods,
                people=load_people(self.input_dir / "people.json"),
                countries=countries,
                projects=load_projects(self.input_dir / "projects.csv"),
                requirements=load_requirements(self.input_dir / "requirements.csv"),
                assignments=load_assignments(self.input_dir / "assignments.csv", periods),
                absences=absences,
                holidays=holidays,
                **overhead_data,
            )
        except OSError as exc:
            raise StorageUnavailable(f"cannot read portfolio {self.project_dir}: {exc}") from exc

    @property
    def assignments_path(self) -> Path:
        return self.input_dir / "assignments.csv"

    def _persist_assignments(self, assignments: Mapping[int, Assignment]) -> None:
        try:
            write_csv_atomic(assignments_frame(assignments.values()), self.assignments_path)
        except OSError as exc:
            raise StorageUnavailable(f"cannot write {self.assignments_path}: {exc}") from exc
