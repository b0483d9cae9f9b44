from __future__ import annotations

import shutil
from datetime import date
from pathlib import Path

import pytest

from capacity_allocator.models import (
    Assignment,
    PeriodSnapshot,
    Person,
    PlanningPeriod,
    Priority,
    Project,
    ProjectRequirement,
    WorkingDays,
)
from capacity_allocator.stores import InMemoryStore

SAMPLE_PORTFOLIO = Path(__file__).resolve().parent.parent / "portfolios" / "sample"


@pytest.fixture
def week() -> PlanningPeriod:
    # Mon 6 Jan 2025 .. Fri 10 Jan 2025
    return PlanningPeriod(id=1, start_date=date(2025, 1, 6), end_date=date(2025, 1, 10), name="Week 2")


@pytest.fixture
def ada() -> Person:
    return Person(id=1, name="Ada", available_hours_per_week=40.0, country_id=1, email="ada@example.com")


@pytest.fixture
def ben() -> Person:
    return Person(
        id=2,
        name="Ben",
        available_hours_per_week=32.0,
        working_days=WorkingDays.parse("Mon,Tue,Wed,Thu"),
        country_id=1,
    )


@pytest.fixture
def make_assignment(week):
    def _make(assignment_id: int, person_id: int, project_id: int, productivity: float = 0.5, **kwargs) -> Assignment:
        kwargs.setdefault("start_date", week.start_date)
        kwargs.setdefault("end_date", week.end_date)
        return Assignment(
            id=assignment_id,
            person_id=person_id,
            project_id=project_id,
            planning_period_id=week.id,
            productivity_factor=productivity,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_requirement(week):
    def _make(requirement_id: int, project_id: int, hours: float, priority: Priority = Priority.MEDIUM):
        return ProjectRequirement(
            id=requirement_id,
            project_id=project_id,
            planning_period_id=week.id,
            required_hours=hours,
            priority=priority,
        )

    return _make


@pytest.fixture
def projects():
    return (
        Project(id=1, name="Project X"),
        Project(id=2, name="Project Y"),
        Project(id=3, name="Project Z"),
    )


@pytest.fixture
def worked_example(week, ada, projects, make_assignment, make_requirement) -> PeriodSnapshot:
    """One 40h person split between a 20h Blocker project and a 30h Low project."""
    return PeriodSnapshot(
        period=week,
        people=(ada,),
        projects=projects[:2],
        requirements=(
            make_requirement(1, 1, 20.0, Priority.BLOCKER),
            make_requirement(2, 2, 30.0, Priority.LOW),
        ),
        assignments=(
            make_assignment(1, ada.id, 1, 0.5),
            make_assignment(2, ada.id, 2, 0.5),
        ),
    )


@pytest.fixture
def store_factory():
    def _build(snapshot: PeriodSnapshot, store_cls=InMemoryStore) -> InMemoryStore:
        return store_cls(
            periods=[snapshot.period],
            people=snapshot.people,
            projects=snapshot.projects,
            requirements=snapshot.requirements,
            assignments=snapshot.assignments,
            absences=snapshot.absences,
            holidays=snapshot.holidays,
            overheads=snapshot.overheads,
            overhead_assignments=snapshot.overhead_assignments,
            job_tasks=snapshot.job_tasks,
            person_jobs=snapshot.person_jobs,
        )

    return _build


@pytest.fixture
def worked_store(worked_example, store_factory) -> InMemoryStore:
    return store_factory(worked_example)


@pytest.fixture
def sample_dir(tmp_path) -> Path:
    target = tmp_path / "sample"
    shutil.copytree(SAMPLE_PORTFOLIO, target)
    return target
