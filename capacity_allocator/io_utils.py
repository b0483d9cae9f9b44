from __future__ import annotations

import json
import math
import os
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    EFFORT_PERIODS,
    Absence,
    Assignment,
    Country,
    EngineConfig,
    Holiday,
    Job,
    JobOverheadTask,
    Overhead,
    OverheadAssignment,
    Person,
    PersonJobAssignment,
    PlanningPeriod,
    Priority,
    Project,
    ProjectRequirement,
    WorkingDays,
)

INPUT_FILES = ("people.json", "projects.csv", "requirements.csv", "assignments.csv", "calendar.json")
OPTIONAL_INPUT_FILES = ("overheads.json", "config.json")

_ASSIGNMENT_COLUMNS = [
    "id",
    "person_id",
    "project_id",
    "planning_period_id",
    "start_date",
    "end_date",
    "productivity_factor",
    "is_pinned",
    "pinned_allocation_percentage",
    "calculated_allocation_percentage",
    "calculated_effective_hours",
    "last_calculated_at",
]


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_bool(value: object, field_name: str, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if _is_missing(value):
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}' in '{field_name}'")


def _parse_date(value: object, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if _is_missing(value):
        return None
    return _parse_date(value, field_name)


def _parse_optional_timestamp(value: object, field_name: str) -> Optional[datetime]:
    if _is_missing(value):
        return None
    try:
        return dateparser.isoparse(str(value).strip())
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid timestamp in '{field_name}': {value}") from exc


def _parse_float(value: object, field_name: str, *, minimum: Optional[float] = None) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid numeric value in '{field_name}': {value!r}") from exc
    if math.isnan(number):
        raise ValueError(f"missing numeric value in '{field_name}'")
    if minimum is not None and number < minimum:
        raise ValueError(f"'{field_name}' must be >= {minimum}, got {number}")
    return number


def _parse_optional_float(value: object, field_name: str) -> Optional[float]:
    if _is_missing(value):
        return None
    return _parse_float(value, field_name)


def _optional_int(value: object) -> Optional[int]:
    return None if _is_missing(value) else int(value)


def _optional_str(value: object) -> Optional[str]:
    return None if _is_missing(value) else str(value)


def _read_json(path: Path) -> object:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{Path(path).name} is not valid JSON: {exc}") from exc


def _records(data: object, key: str, source: str) -> List[Dict[str, object]]:
    entries = data.get(key, []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"{source}: '{key}' must be an array")
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"{source}: '{key}' entries must be objects")
    return entries


def load_people(path: str | Path) -> List[Person]:
    people: List[Person] = []
    for entry in _records(_read_json(Path(path)), "people", "people.json"):
        name = entry.get("name")
        if not name or not isinstance(name, str):
            raise ValueError("person name is required")
        working_days = WorkingDays.parse(entry.get("working_days"))
        if len(working_days) == 0:
            raise ValueError(f"working_days must name at least one weekday for {name}")
        people.append(
            Person(
                id=int(entry["id"]),
                name=name,
                email=str(entry.get("email", "") or ""),
                available_hours_per_week=_parse_float(
                    entry.get("available_hours_per_week"), "available_hours_per_week", minimum=0.0
                ),
                working_days=working_days,
                country_id=_optional_int(entry.get("country_id")),
            )
        )
    return people


def load_projects(path: str | Path) -> List[Project]:
    df = pd.read_csv(path)
    _require_columns(df, ["id", "name"], "projects.csv")
    return [
        Project(id=int(row.id), name=str(row.name), description=_optional_str(getattr(row, "description", None)))
        for row in df.itertuples(index=False)
    ]


def load_requirements(path: str | Path) -> List[ProjectRequirement]:
    df = pd.read_csv(path)
    _require_columns(df, ["id", "project_id", "planning_period_id", "required_hours"], "requirements.csv")
    requirements = []
    for row in df.itertuples(index=False):
        requirements.append(
            ProjectRequirement(
                id=int(row.id),
                project_id=int(row.project_id),
                planning_period_id=int(row.planning_period_id),
                required_hours=_parse_float(row.required_hours, "required_hours", minimum=0.0),
                priority=Priority.parse(None if _is_missing(getattr(row, "priority", None)) else row.priority),
            )
        )
    return requirements


def load_calendar(
    path: str | Path,
) -> Tuple[List[PlanningPeriod], List[Country], List[Absence], List[Holiday]]:
    data = _read_json(Path(path))
    if not isinstance(data, dict):
        raise ValueError("calendar.json must be an object")
    periods = [
        PlanningPeriod(
            id=int(entry["id"]),
            name=_optional_str(entry.get("name")),
            start_date=_parse_date(entry.get("start_date"), "start_date"),
            end_date=_parse_date(entry.get("end_date"), "end_date"),
        )
        for entry in _records(data, "planning_periods", "calendar.json")
    ]
    countries = [
        Country(id=int(entry["id"]), iso_code=str(entry.get("iso_code", "")), name=str(entry.get("name", "")))
        for entry in _records(data, "countries", "calendar.json")
    ]
    absences = [
        Absence(
            id=int(entry["id"]),
            person_id=int(entry["person_id"]),
            start_date=_parse_date(entry.get("start_date"), "start_date"),
            end_date=_parse_date(entry.get("end_date"), "end_date"),
            days=int(entry.get("days", 0) or 0),
            reason=_optional_str(entry.get("reason")),
        )
        for entry in _records(data, "absences", "calendar.json")
    ]
    holidays = [
        Holiday(
            id=int(entry["id"]),
            country_id=int(entry["country_id"]),
            name=_optional_str(entry.get("name")),
            start_date=_parse_date(entry.get("start_date"), "start_date"),
            end_date=_parse_date(entry.get("end_date"), "end_date"),
        )
        for entry in _records(data, "holidays", "calendar.json")
    ]
    return periods, countries, absences, holidays


def _parse_effort_period(value: object, source: str) -> str:
    period = str(value or "").strip().lower()
    if period not in EFFORT_PERIODS:
        raise ValueError(f"{source}: effort_period must be one of {', '.join(EFFORT_PERIODS)}, got '{value}'")
    return period


def load_overheads(path: str | Path) -> Dict[str, list]:
    data = _read_json(Path(path))
    if not isinstance(data, dict):
        raise ValueError("overheads.json must be an object")
    source = "overheads.json"
    tasks = []
    for entry in _records(data, "job_overhead_tasks", source):
        weight = _parse_optional_float(entry.get("optional_weight"), "optional_weight")
        if weight is not None and not 0 <= weight <= 1:
            raise ValueError(f"{source}: optional_weight must be in [0, 1], got {weight}")
        tasks.append(
            JobOverheadTask(
                id=int(entry["id"]),
                job_id=int(entry["job_id"]),
                name=str(entry.get("name", "")),
                effort_hours=_parse_float(entry.get("effort_hours"), "effort_hours", minimum=0.0),
                effort_period=_parse_effort_period(entry.get("effort_period"), source),
                is_optional=_parse_bool(entry.get("is_optional"), "is_optional"),
                optional_weight=weight,
            )
        )
    return {
        "overheads": [
            Overhead(
                id=int(entry["id"]),
                planning_period_id=int(entry["planning_period_id"]),
                name=str(entry.get("name", "")),
                description=_optional_str(entry.get("description")),
            )
            for entry in _records(data, "overheads", source)
        ],
        "overhead_assignments": [
            OverheadAssignment(
                id=int(entry["id"]),
                overhead_id=int(entry["overhead_id"]),
                person_id=int(entry["person_id"]),
                effort_hours=_parse_float(entry.get("effort_hours"), "effort_hours", minimum=0.0),
                effort_period=_parse_effort_period(entry.get("effort_period"), source),
            )
            for entry in _records(data, "overhead_assignments", source)
        ],
        "jobs": [
            Job(id=int(entry["id"]), name=str(entry.get("name", "")), description=_optional_str(entry.get("description")))
            for entry in _records(data, "jobs", source)
        ],
        "job_tasks": tasks,
        "person_jobs": [
            PersonJobAssignment(
                id=int(entry["id"]),
                person_id=int(entry["person_id"]),
                job_id=int(entry["job_id"]),
                planning_period_id=int(entry["planning_period_id"]),
            )
            for entry in _records(data, "person_job_assignments", source)
        ],
    }


def load_assignments(path: str | Path, periods: Sequence[PlanningPeriod]) -> List[Assignment]:
    df = pd.read_csv(path)
    _require_columns(
        df, ["id", "person_id", "project_id", "planning_period_id", "productivity_factor"], "assignments.csv"
    )
    df = df.astype(object).where(pd.notna(df), None)
    period_map = {period.id: period for period in periods}
    assignments = []
    for record in df.to_dict(orient="records"):
        period_id = int(record["planning_period_id"])
        period = period_map.get(period_id)
        start = _parse_optional_date(record.get("start_date"), "start_date")
        end = _parse_optional_date(record.get("end_date"), "end_date")
        if (start is None or end is None) and period is None:
            raise ValueError(f"assignment {record['id']} has no dates and unknown period {period_id}")
        assignments.append(
            Assignment(
                id=int(record["id"]),
                person_id=int(record["person_id"]),
                project_id=int(record["project_id"]),
                planning_period_id=period_id,
                start_date=start or period.start_date,
                end_date=end or period.end_date,
                productivity_factor=_parse_float(record["productivity_factor"], "productivity_factor"),
                is_pinned=_parse_bool(record.get("is_pinned"), "is_pinned"),
                pinned_allocation_percentage=_parse_optional_float(
                    record.get("pinned_allocation_percentage"), "pinned_allocation_percentage"
                ),
                calculated_allocation_percentage=_parse_optional_float(
                    record.get("calculated_allocation_percentage"), "calculated_allocation_percentage"
                ),
                calculated_effective_hours=_parse_optional_float(
                    record.get("calculated_effective_hours"), "calculated_effective_hours"
                ),
                last_calculated_at=_parse_optional_timestamp(record.get("last_calculated_at"), "last_calculated_at"),
            )
        )
    return assignments


def assignments_frame(assignments: Iterable[Assignment]) -> pd.DataFrame:
    rows = []
    for item in sorted(assignments, key=lambda a: a.id):
        rows.append(
            {
                "id": item.id,
                "person_id": item.person_id,
                "project_id": item.project_id,
                "planning_period_id": item.planning_period_id,
                "start_date": item.start_date.isoformat(),
                "end_date": item.end_date.isoformat(),
                "productivity_factor": item.productivity_factor,
                "is_pinned": item.is_pinned,
                "pinned_allocation_percentage": item.pinned_allocation_percentage,
                "calculated_allocation_percentage": item.calculated_allocation_percentage,
                "calculated_effective_hours": item.calculated_effective_hours,
                "last_calculated_at": item.last_calculated_at.isoformat() if item.last_calculated_at else None,
            }
        )
    return pd.DataFrame(rows, columns=_ASSIGNMENT_COLUMNS)


def write_csv_atomic(df: pd.DataFrame, path: str | Path) -> None:
    """Write ``df`` next to ``path`` and move it into place so readers never see a partial file."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", newline="") as handle:
            df.to_csv(handle, index=False)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_config(path: str | Path) -> EngineConfig:
    config_path = Path(path)
    if not config_path.exists():
        return EngineConfig()
    data = _read_json(config_path)
    if not isinstance(data, dict):
        raise ValueError("config.json must be an object")
    defaults = EngineConfig()

    default_optional_weight = data.get("default_optional_weight", defaults.default_optional_weight)
    if not isinstance(default_optional_weight, (int, float)):
        raise ValueError("default_optional_weight must be a number")
    if not 0 <= default_optional_weight <= 1:
        raise ValueError("default_optional_weight must be in [0, 1]")

    near_capacity = data.get("near_capacity_threshold_pct", defaults.near_capacity_threshold_pct)
    if not isinstance(near_capacity, (int, float)) or near_capacity <= 0:
        raise ValueError("near_capacity_threshold_pct must be a positive number")

    viability = data.get("viability_threshold_pct", defaults.viability_threshold_pct)
    if not isinstance(viability, (int, float)) or not 0 < viability <= 100:
        raise ValueError("viability_threshold_pct must be in (0, 100]")

    epsilon = data.get("epsilon", defaults.epsilon)
    if not isinstance(epsilon, (int, float)) or epsilon < 0:
        raise ValueError("epsilon must be a non-negative number")

    logging_level = data.get("logging_level", defaults.logging_level)
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")

    return EngineConfig(
        default_optional_weight=float(default_optional_weight),
        near_capacity_threshold_pct=float(near_capacity),
        viability_threshold_pct=float(viability),
        epsilon=float(epsilon),
        logging_level=logging_level,
    )


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
