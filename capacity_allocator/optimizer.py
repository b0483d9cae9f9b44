from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .deductions import DeductionResolver
from .errors import InvalidPeriod
from .models import (
    Assignment,
    EngineConfig,
    PeriodSnapshot,
    Person,
    Priority,
    ProjectRequirement,
)

logger = logging.getLogger(__name__)

NO_ASSIGNMENTS_WARNING = "No assignments found for this planning period"


@dataclass(frozen=True)
class AssignmentCalculation:
    assignment_id: int
    allocation_percentage: float
    effective_hours: float
    # fraction of the person's period net hours consumed by this grant
    capacity_share: float = 0.0


@dataclass(frozen=True)
class ProjectShortfall:
    project_id: int
    project_name: str
    priority: Priority
    required_hours: float
    achieved_effective_hours: float
    shortfall: float
    shortfall_percentage: float


@dataclass(frozen=True)
class OptimizationResult:
    success: bool
    calculations: Tuple[AssignmentCalculation, ...] = ()
    infeasible_projects: Tuple[ProjectShortfall, ...] = ()
    warnings: Tuple[str, ...] = ()

    def calculation_for(self, assignment_id: int) -> Optional[AssignmentCalculation]:
        for calc in self.calculations:
            if calc.assignment_id == assignment_id:
                return calc
        return None

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        for item in payload["infeasible_projects"]:
            item["priority"] = Priority(item["priority"]).label
        return payload


@dataclass(frozen=True)
class PersonAllocationLedger:
    """Remaining free fraction of each person's pool, threaded explicitly through a run."""

    free: Mapping[int, float] = field(default_factory=dict)

    @classmethod
    def from_pinned(
        cls,
        assignments: Sequence[Assignment],
        people: Mapping[int, Person],
        epsilon: float,
    ) -> Tuple["PersonAllocationLedger", List[str]]:
        reserved: Dict[int, float] = defaultdict(float)
        for assignment in assignments:
            if assignment.is_pinned:
                reserved[assignment.person_id] += assignment.allocation_percentage
        warnings: List[str] = []
        free: Dict[int, float] = {}
        for person_id in sorted({a.person_id for a in assignments}):
            total = reserved.get(person_id, 0.0)
            if total > 1.0 + epsilon:
                person = people.get(person_id)
                label = person.name if person else f"Person {person_id}"
                message = (
                    f"{label} (person {person_id}) over-committed by pinned assignments: "
                    f"{total * 100:.1f}% reserved"
                )
                logger.warning(message)
                warnings.append(message)
                free[person_id] = 0.0
            else:
                free[person_id] = max(0.0, 1.0 - total)
        return cls(free), warnings

    def free_capacity(self, person_id: int) -> float:
        return self.free.get(person_id, 0.0)

    def consume(self, person_id: int, share: float) -> "PersonAllocationLedger":
        if share <= 0:
            return self
        updated = dict(self.free)
        updated[person_id] = max(0.0, updated.get(person_id, 0.0) - share)
        return replace(self, free=updated)


@dataclass(frozen=True)
class _Envelope:
    net_hours: float
    productivity: float
    # person's net hours over the whole period; the shared pool is measured against it
    pool_hours: float = 0.0

    @property
    def hours(self) -> float:
        return self.net_hours * self.productivity

    def effective(self, allocation: float) -> float:
        return self.hours * allocation


def _requirements_by_priority(requirements: Sequence[ProjectRequirement]) -> List[ProjectRequirement]:
    by_project: Dict[int, ProjectRequirement] = {}
    for requirement in sorted(requirements, key=lambda r: r.id):
        by_project.setdefault(requirement.project_id, requirement)
    return sorted(by_project.values(), key=lambda r: (-int(r.priority), r.project_id))


class AllocationOptimizer:
    def __init__(self, config: EngineConfig = EngineConfig()) -> None:
        self.config = config

    def optimize(
        self,
        snapshot: PeriodSnapshot,
        resolver: Optional[DeductionResolver] = None,
    ) -> OptimizationResult:
        period = snapshot.period
        if not period.is_valid:
            raise InvalidPeriod(period.id, period.start_date, period.end_date)
        eps = self.config.epsilon
        logger.info("Starting optimization for planning period %s", period.id)

        assignments = sorted(
            (a for a in snapshot.assignments if a.planning_period_id == period.id),
            key=lambda a: a.id,
        )
        if not assignments:
            logger.info("No assignments for planning period %s", period.id)
            return OptimizationResult(success=True, warnings=(NO_ASSIGNMENTS_WARNING,))

        resolver = resolver or DeductionResolver.from_snapshot(snapshot, self.config)
        people = {person.id: person for person in snapshot.people}
        project_names = {project.id: project.name for project in snapshot.projects}
        warnings: List[str] = []

        envelopes: Dict[int, _Envelope] = {}
        for assignment in assignments:
            envelopes[assignment.id] = self._envelope(assignment, people, resolver, warnings)

        ledger, pinned_warnings = PersonAllocationLedger.from_pinned(assignments, people, eps)
        warnings.extend(pinned_warnings)

        by_project: Dict[int, List[Assignment]] = defaultdict(list)
        for assignment in assignments:
            by_project[assignment.project_id].append(assignment)

        requirements = _requirements_by_priority(
            [r for r in snapshot.requirements if r.planning_period_id == period.id]
        )
        required_projects = {r.project_id for r in requirements}
        calculations: Dict[int, AssignmentCalculation] = {}

        for project_id in sorted(set(by_project) - required_projects):
            message = f"Project ID {project_id} has assignments but no requirement defined"
            logger.warning(message)
            warnings.append(message)
            for assignment in by_project[project_id]:
                if not assignment.is_pinned:
                    calculations[assignment.id] = AssignmentCalculation(assignment.id, 0.0, 0.0)

        for requirement in requirements:
            ledger = self._allocate_project(
                requirement,
                by_project.get(requirement.project_id, []),
                envelopes,
                ledger,
                calculations,
            )

        infeasible = self._shortfalls(requirements, by_project, envelopes, calculations, project_names)
        result = OptimizationResult(
            success=True,
            calculations=tuple(calculations[key] for key in sorted(calculations)),
            infeasible_projects=tuple(infeasible),
            warnings=tuple(warnings),
        )
        logger.info(
            "Optimization complete: %d calculations, %d infeasible projects, %d warnings",
            len(result.calculations),
            len(result.infeasible_projects),
            len(result.warnings),
        )
        return result

    def _envelope(
        self,
        assignment: Assignment,
        people: Mapping[int, Person],
        resolver: DeductionResolver,
        warnings: List[str],
    ) -> _Envelope:
        person = people.get(assignment.person_id)
        if person is None:
            message = f"Assignment {assignment.id} references unknown person {assignment.person_id}"
            logger.warning(message)
            warnings.append(message)
            return _Envelope(0.0, assignment.clamped_productivity)
        start, end = resolver.period.clip(assignment.start_date, assignment.end_date)
        return _Envelope(
            resolver.net_available_hours(person, start, end),
            assignment.clamped_productivity,
            resolver.period_breakdown(person).net_hours,
        )

    def _allocate_project(
        self,
        requirement: ProjectRequirement,
        project_assignments: Sequence[Assignment],
        envelopes: Mapping[int, _Envelope],
        ledger: PersonAllocationLedger,
        calculations: Dict[int, AssignmentCalculation],
    ) -> PersonAllocationLedger:
        eps = self.config.epsilon
        pinned_hours = sum(
            envelopes[a.id].effective(a.allocation_percentage) for a in project_assignments if a.is_pinned
        )
        remaining = requirement.required_hours - pinned_hours
        unpinned = [a for a in project_assignments if not a.is_pinned]
        logger.debug(
            "Project %s (priority %s): required %.2fh, pinned %.2fh, remaining %.2fh",
            requirement.project_id,
            requirement.priority.label,
            requirement.required_hours,
            pinned_hours,
            remaining,
        )
        if remaining <= eps:
            for assignment in unpinned:
                calculations[assignment.id] = AssignmentCalculation(assignment.id, 0.0, 0.0)
            return ledger

        ordered = sorted(
            unpinned,
            key=lambda a: (-envelopes[a.id].hours * ledger.free_capacity(a.person_id), a.id),
        )
        for assignment in ordered:
            envelope = envelopes[assignment.id]
            free = ledger.free_capacity(assignment.person_id)
            ceiling = envelope.hours * free
            granted = min(ceiling, remaining) if remaining > eps else 0.0
            allocation = granted / envelope.hours if envelope.hours > 0 else 0.0
            share = min(free, granted / envelope.pool_hours) if envelope.pool_hours > 0 else 0.0
            ledger = ledger.consume(assignment.person_id, share)
            remaining -= granted
            calculations[assignment.id] = AssignmentCalculation(
                assignment_id=assignment.id,
                allocation_percentage=allocation,
                effective_hours=envelope.effective(allocation),
                capacity_share=share,
            )
            logger.debug(
                "  assignment %s: ceiling %.2fh, granted %.2fh, allocation %.1f%%, person %s free %.1f%%",
                assignment.id,
                ceiling,
                granted,
                allocation * 100,
                assignment.person_id,
                ledger.free_capacity(assignment.person_id) * 100,
            )
        return ledger

    def _shortfalls(
        self,
        requirements: Sequence[ProjectRequirement],
        by_project: Mapping[int, Sequence[Assignment]],
        envelopes: Mapping[int, _Envelope],
        calculations: Mapping[int, AssignmentCalculation],
        project_names: Mapping[int, str],
    ) -> List[ProjectShortfall]:
        shortfalls: List[ProjectShortfall] = []
        for requirement in requirements:
            required = requirement.required_hours
            if required <= 0:
                continue
            achieved = 0.0
            for assignment in by_project.get(requirement.project_id, ()):
                if assignment.is_pinned:
                    achieved += envelopes[assignment.id].effective(assignment.allocation_percentage)
                else:
                    achieved += calculations[assignment.id].effective_hours
            if achieved / required * 100 >= self.config.viability_threshold_pct:
                continue
            shortfall = required - achieved
            shortfall_pct = shortfall / required * 100
            name = project_names.get(requirement.project_id, f"Project {requirement.project_id}")
            logger.warning(
                "Project %s is under-staffed by %.1fh (%.1f%%)", requirement.project_id, shortfall, shortfall_pct
            )
            shortfalls.append(
                ProjectShortfall(
                    project_id=requirement.project_id,
                    project_name=name,
                    priority=requirement.priority,
                    required_hours=required,
                    achieved_effective_hours=achieved,
                    shortfall=shortfall,
                    shortfall_percentage=shortfall_pct,
                )
            )
        return shortfalls


def effective_hours(available_hours: float, allocation_percentage: float, productivity_factor: float) -> float:
    """Productive output credited to a project for one assignment."""
    return available_hours * allocation_percentage * min(1.0, max(0.0, productivity_factor))
