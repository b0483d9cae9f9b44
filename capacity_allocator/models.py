from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import IntEnum
from typing import Iterable, Optional, Tuple


DAY_CODES: Tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class Priority(IntEnum):
    """Demand urgency of a project requirement; values match the stored codes."""

    LOW = 0
    MEDIUM = 10
    HIGH = 20
    BLOCKER = 30

    @classmethod
    def parse(cls, value: object) -> "Priority":
        if isinstance(value, Priority):
            return value
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.MEDIUM
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            value = key
        try:
            return cls(int(value))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"unsupported priority '{value}'") from exc

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class WorkingDays:
    """Seven-bit weekday mask, bit 0 = Monday (matches ``date.weekday()``)."""

    mask: int = 0b0011111

    def __post_init__(self) -> None:
        if not 0 <= self.mask <= 0b1111111:
            raise ValueError(f"weekday mask out of range: {self.mask}")

    @classmethod
    def from_weekdays(cls, weekdays: Iterable[int]) -> "WorkingDays":
        mask = 0
        for day in weekdays:
            if not 0 <= int(day) <= 6:
                raise ValueError(f"weekday index out of range: {day}")
            mask |= 1 << int(day)
        return cls(mask)

    @classmethod
    def parse(cls, value: object) -> "WorkingDays":
        """Accept the legacy ``"Mon,Tue,Wed"`` encoding or a sequence of codes."""
        if isinstance(value, WorkingDays):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            tokens: Iterable[object] = value.split(",")
        elif isinstance(value, (list, tuple, set, frozenset)):
            tokens = value
        else:
            raise ValueError(f"unsupported working days value: {value!r}")
        weekdays = []
        for token in tokens:
            if isinstance(token, int):
                weekdays.append(token)
                continue
            code = str(token).strip().capitalize()[:3]
            if code in DAY_CODES:
                weekdays.append(DAY_CODES.index(code))
        return cls.from_weekdays(weekdays)

    def __contains__(self, weekday: object) -> bool:
        return isinstance(weekday, int) and bool(self.mask & (1 << weekday))

    def __len__(self) -> int:
        return bin(self.mask).count("1")

    def weekdays(self) -> Tuple[int, ...]:
        return tuple(day for day in range(7) if self.mask & (1 << day))

    def is_working_day(self, value: date) -> bool:
        return value.weekday() in self

    def to_codes(self) -> str:
        return ",".join(DAY_CODES[day] for day in self.weekdays())


@dataclass(frozen=True)
class Person:
    id: int
    name: str
    available_hours_per_week: float
    working_days: WorkingDays = WorkingDays()
    country_id: Optional[int] = None
    email: str = ""

    def __post_init__(self) -> None:
        if len(self.working_days) == 0:
            raise ValueError(f"person {self.id} has an empty working day pattern")

    @property
    def hours_per_working_day(self) -> float:
        return self.available_hours_per_week / len(self.working_days)


@dataclass(frozen=True)
class Country:
    id: int
    iso_code: str
    name: str


@dataclass(frozen=True)
class PlanningPeriod:
    id: int
    start_date: date
    end_date: date
    name: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.start_date <= self.end_date

    def clip(self, start: date, end: date) -> Tuple[date, date]:
        """Intersect ``[start, end]`` with the period; the result may be inverted."""
        return max(start, self.start_date), min(end, self.end_date)


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class ProjectRequirement:
    id: int
    project_id: int
    planning_period_id: int
    required_hours: float
    priority: Priority = Priority.MEDIUM


@dataclass(frozen=True)
class Assignment:
    """Person-to-project link; pinned fields belong to people, calculated ones to the optimizer."""

    id: int
    person_id: int
    project_id: int
    planning_period_id: int
    start_date: date
    end_date: date
    productivity_factor: float = 0.5
    is_pinned: bool = False
    pinned_allocation_percentage: Optional[float] = None
    calculated_allocation_percentage: Optional[float] = None
    calculated_effective_hours: Optional[float] = None
    last_calculated_at: Optional[datetime] = None

    @property
    def clamped_productivity(self) -> float:
        return min(1.0, max(0.0, self.productivity_factor))

    @property
    def allocation_percentage(self) -> float:
        """Authoritative allocation fraction: pinned if pinned, otherwise last calculated."""
        if self.is_pinned:
            return max(0.0, self.pinned_allocation_percentage or 0.0)
        return self.calculated_allocation_percentage or 0.0


@dataclass(frozen=True)
class Absence:
    id: int
    person_id: int
    start_date: date
    end_date: date
    days: int = 0
    reason: Optional[str] = None


@dataclass(frozen=True)
class Holiday:
    id: int
    country_id: int
    start_date: date
    end_date: date
    name: Optional[str] = None


EFFORT_PERIODS = ("daily", "weekly")


@dataclass(frozen=True)
class Overhead:
    id: int
    planning_period_id: int
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class OverheadAssignment:
    id: int
    overhead_id: int
    person_id: int
    effort_hours: float
    effort_period: str


@dataclass(frozen=True)
class Job:
    id: int
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class JobOverheadTask:
    id: int
    job_id: int
    name: str
    effort_hours: float
    effort_period: str
    is_optional: bool = False
    optional_weight: Optional[float] = None


@dataclass(frozen=True)
class PersonJobAssignment:
    id: int
    person_id: int
    job_id: int
    planning_period_id: int


@dataclass(frozen=True)
class EngineConfig:
    default_optional_weight: float = 0.5
    near_capacity_threshold_pct: float = 85.0
    viability_threshold_pct: float = 99.95
    epsilon: float = 1e-6
    logging_level: str = "INFO"

    def optional_weight_for(self, task: JobOverheadTask) -> float:
        weight = self.default_optional_weight if task.optional_weight is None else task.optional_weight
        return min(1.0, max(0.0, weight))


@dataclass(frozen=True)
class PeriodSnapshot:
    """Everything the engine reads for one planning period, captured at a single point in time."""

    period: PlanningPeriod
    people: Tuple[Person, ...]
    projects: Tuple[Project, ...]
    requirements: Tuple[ProjectRequirement, ...]
    assignments: Tuple[Assignment, ...]
    absences: Tuple[Absence, ...] = ()
    holidays: Tuple[Holiday, ...] = ()
    overheads: Tuple[Overhead, ...] = ()
    overhead_assignments: Tuple[OverheadAssignment, ...] = ()
    job_tasks: Tuple[JobOverheadTask, ...] = ()
    person_jobs: Tuple[PersonJobAssignment, ...] = ()
