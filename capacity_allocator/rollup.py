from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .deductions import CapacityBreakdown, DeductionResolver
from .errors import EntityNotFound
from .models import Assignment, EngineConfig, PeriodSnapshot, Person, Priority, ProjectRequirement
from .optimizer import effective_hours


@dataclass(frozen=True)
class AssignmentSummary:
    assignment_id: int
    project_id: int
    project_name: str
    is_pinned: bool
    allocation_percentage: float
    available_hours: float
    effective_hours: float


@dataclass(frozen=True)
class PersonCapacity:
    person_id: int
    person_name: str
    person_email: str
    total_available_hours: float
    total_allocated_hours: float
    total_effective_hours: float
    utilization_percentage: float
    is_over_committed: bool
    assignments: Tuple[AssignmentSummary, ...]
    base_available_hours: float
    absence_days: int
    absence_hours: float
    holiday_days: int
    holiday_hours: float
    overhead_hours: float
    optional_overhead_hours: float
    net_period_hours: float


@dataclass(frozen=True)
class PersonAssignmentSummary:
    assignment_id: int
    person_id: int
    person_name: str
    is_pinned: bool
    allocation_percentage: float
    productivity_factor: float
    available_hours: float
    effective_hours: float
    absence_days: int
    absence_hours: float
    holiday_days: int
    holiday_hours: float
    overhead_hours: float
    optional_overhead_hours: float


@dataclass(frozen=True)
class ProjectStaffing:
    project_id: int
    project_name: str
    priority: Priority
    required_hours: float
    total_allocated_hours: float
    total_effective_hours: float
    staffing_percentage: float
    is_viable: bool
    shortfall: float
    assigned_people: Tuple[PersonAssignmentSummary, ...]


@dataclass(frozen=True)
class CapacityOverview:
    planning_period_id: int
    total_people: int
    total_projects: int
    over_committed_people: int
    near_capacity_people: int
    under_staffed_projects: int
    people_capacity: Tuple[PersonCapacity, ...]
    project_staffing: Tuple[ProjectStaffing, ...]
    last_calculated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        for item in payload["project_staffing"]:
            item["priority"] = Priority(item["priority"]).label
        if self.last_calculated_at is not None:
            payload["last_calculated_at"] = self.last_calculated_at.isoformat()
        return payload


class CapacityRollup:
    """Per-person and per-project views of the last committed allocation."""

    def __init__(
        self,
        snapshot: PeriodSnapshot,
        resolver: Optional[DeductionResolver] = None,
        config: EngineConfig = EngineConfig(),
    ) -> None:
        self.snapshot = snapshot
        self.config = config
        self.resolver = resolver or DeductionResolver.from_snapshot(snapshot, config)
        self._people = {person.id: person for person in snapshot.people}
        self._project_names = {project.id: project.name for project in snapshot.projects}
        self._assignments = sorted(
            (a for a in snapshot.assignments if a.planning_period_id == snapshot.period.id),
            key=lambda a: a.id,
        )
        self._requirements: Dict[int, ProjectRequirement] = {}
        for requirement in sorted(snapshot.requirements, key=lambda r: r.id):
            if requirement.planning_period_id == snapshot.period.id:
                self._requirements.setdefault(requirement.project_id, requirement)

    def _range_breakdown(self, person: Person, assignment: Assignment) -> CapacityBreakdown:
        start, end = self.snapshot.period.clip(assignment.start_date, assignment.end_date)
        return self.resolver.breakdown(person, start, end)

    @staticmethod
    def _effective(assignment: Assignment, available: float) -> float:
        if assignment.is_pinned:
            return effective_hours(available, assignment.allocation_percentage, assignment.productivity_factor)
        return assignment.calculated_effective_hours or 0.0

    def person_capacity(self, person_id: int) -> PersonCapacity:
        person = self._people.get(person_id)
        if person is None:
            raise EntityNotFound("person", person_id)
        period_breakdown = self.resolver.period_breakdown(person)
        summaries: List[AssignmentSummary] = []
        total_available = 0.0
        total_allocated = 0.0
        total_effective = 0.0
        for assignment in self._assignments:
            if assignment.person_id != person_id:
                continue
            available = self._range_breakdown(person, assignment).net_hours
            allocation = assignment.allocation_percentage
            effective = self._effective(assignment, available)
            total_available += available
            total_allocated += available * allocation
            total_effective += effective
            summaries.append(
                AssignmentSummary(
                    assignment_id=assignment.id,
                    project_id=assignment.project_id,
                    project_name=self._project_names.get(assignment.project_id, f"Project {assignment.project_id}"),
                    is_pinned=assignment.is_pinned,
                    allocation_percentage=allocation,
                    available_hours=available,
                    effective_hours=effective,
                )
            )
        if not summaries:
            total_available = period_breakdown.net_hours
        utilization = total_allocated / total_available * 100 if total_available > 0 else 0.0
        return PersonCapacity(
            person_id=person.id,
            person_name=person.name,
            person_email=person.email,
            total_available_hours=total_available,
            total_allocated_hours=total_allocated,
            total_effective_hours=total_effective,
            utilization_percentage=utilization,
            is_over_committed=utilization > 100.0,
            assignments=tuple(summaries),
            base_available_hours=period_breakdown.base_hours,
            absence_days=period_breakdown.absence_days,
            absence_hours=period_breakdown.absence_hours,
            holiday_days=period_breakdown.holiday_days,
            holiday_hours=period_breakdown.holiday_hours,
            overhead_hours=period_breakdown.overhead_hours,
            optional_overhead_hours=period_breakdown.optional_overhead_hours,
            net_period_hours=period_breakdown.net_hours,
        )

    def project_staffing(self, project_id: int) -> ProjectStaffing:
        requirement = self._requirements.get(project_id)
        if requirement is None:
            raise EntityNotFound("project requirement", project_id)
        summaries: List[PersonAssignmentSummary] = []
        total_allocated = 0.0
        total_effective = 0.0
        for assignment in self._assignments:
            if assignment.project_id != project_id:
                continue
            person = self._people.get(assignment.person_id)
            if person is None:
                continue
            breakdown = self._range_breakdown(person, assignment)
            allocation = assignment.allocation_percentage
            effective = self._effective(assignment, breakdown.net_hours)
            total_allocated += breakdown.net_hours * allocation
            total_effective += effective
            summaries.append(
                PersonAssignmentSummary(
                    assignment_id=assignment.id,
                    person_id=person.id,
                    person_name=person.name,
                    is_pinned=assignment.is_pinned,
                    allocation_percentage=allocation,
                    productivity_factor=assignment.productivity_factor,
                    available_hours=breakdown.net_hours,
                    effective_hours=effective,
                    absence_days=breakdown.absence_days,
                    absence_hours=breakdown.absence_hours,
                    holiday_days=breakdown.holiday_days,
                    holiday_hours=breakdown.holiday_hours,
                    overhead_hours=breakdown.overhead_hours,
                    optional_overhead_hours=breakdown.optional_overhead_hours,
                )
            )
        required = requirement.required_hours
        staffing = total_effective / required * 100 if required > 0 else 100.0
        is_viable = staffing >= self.config.viability_threshold_pct
        return ProjectStaffing(
            project_id=project_id,
            project_name=self._project_names.get(project_id, f"Project {project_id}"),
            priority=requirement.priority,
            required_hours=required,
            total_allocated_hours=total_allocated,
            total_effective_hours=total_effective,
            staffing_percentage=staffing,
            is_viable=is_viable,
            shortfall=0.0 if is_viable else required - total_effective,
            assigned_people=tuple(summaries),
        )

    def overview(self) -> CapacityOverview:
        people = sorted(self._people.values(), key=lambda p: (p.name, p.id))
        people_capacity = tuple(self.person_capacity(person.id) for person in people)
        project_ids = sorted(
            self._requirements, key=lambda pid: (self._project_names.get(pid, ""), pid)
        )
        staffing = tuple(self.project_staffing(project_id) for project_id in project_ids)
        stamps = [a.last_calculated_at for a in self._assignments if a.last_calculated_at is not None]
        return CapacityOverview(
            planning_period_id=self.snapshot.period.id,
            total_people=len(people_capacity),
            total_projects=len(staffing),
            over_committed_people=sum(1 for item in people_capacity if item.is_over_committed),
            near_capacity_people=sum(
                1
                for item in people_capacity
                if item.utilization_percentage >= self.config.near_capacity_threshold_pct
            ),
            under_staffed_projects=sum(1 for item in staffing if not item.is_viable),
            people_capacity=people_capacity,
            project_staffing=staffing,
            last_calculated_at=max(stamps) if stamps else None,
        )


def people_frame(overview: CapacityOverview) -> pd.DataFrame:
    columns = [
        "person_id",
        "person_name",
        "total_available_hours",
        "total_allocated_hours",
        "total_effective_hours",
        "utilization_percentage",
        "is_over_committed",
        "base_available_hours",
        "absence_hours",
        "holiday_hours",
        "overhead_hours",
        "optional_overhead_hours",
    ]
    rows = [{col: getattr(item, col) for col in columns} for item in overview.people_capacity]
    return pd.DataFrame(rows, columns=columns)


def projects_frame(overview: CapacityOverview) -> pd.DataFrame:
    columns = [
        "project_id",
        "project_name",
        "priority",
        "required_hours",
        "total_allocated_hours",
        "total_effective_hours",
        "staffing_percentage",
        "is_viable",
        "shortfall",
    ]
    rows = []
    for item in overview.project_staffing:
        row = {col: getattr(item, col) for col in columns}
        row["priority"] = item.priority.label
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)
