from dataclasses import replace
from datetime import datetime, timezone

import pytest

from capacity_allocator.errors import EntityNotFound
from capacity_allocator.models import EngineConfig, Person, Priority
from capacity_allocator.rollup import CapacityRollup, people_frame, projects_frame

STAMP = datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def calculated(worked_example):
    """Worked example as it looks after a committed run."""
    values = {1: (1.0, 20.0), 2: (0.5, 10.0)}
    assignments = tuple(
        replace(
            a,
            calculated_allocation_percentage=values[a.id][0],
            calculated_effective_hours=values[a.id][1],
            last_calculated_at=STAMP,
        )
        for a in worked_example.assignments
    )
    return replace(worked_example, assignments=assignments)


def test_person_capacity_sums_assignment_ranges(calculated):
    capacity = CapacityRollup(calculated).person_capacity(1)

    assert capacity.person_email == "ada@example.com"
    assert capacity.total_available_hours == pytest.approx(80.0)
    assert capacity.total_allocated_hours == pytest.approx(60.0)
    assert capacity.total_effective_hours == pytest.approx(30.0)
    assert capacity.utilization_percentage == pytest.approx(75.0)
    assert not capacity.is_over_committed
    assert [item.project_name for item in capacity.assignments] == ["Project X", "Project Y"]
    assert capacity.net_period_hours == pytest.approx(40.0)


def test_person_without_assignments_reports_period_capacity(calculated):
    idle = Person(id=5, name="Idle", available_hours_per_week=20.0)
    capacity = CapacityRollup(replace(calculated, people=calculated.people + (idle,))).person_capacity(5)
    assert capacity.total_available_hours == pytest.approx(20.0)
    assert capacity.utilization_percentage == 0.0
    assert capacity.assignments == ()


def test_pinned_above_full_time_is_over_committed(worked_example, make_assignment):
    pinned = make_assignment(1, 1, 1, 0.5, is_pinned=True, pinned_allocation_percentage=1.2)
    capacity = CapacityRollup(replace(worked_example, assignments=(pinned,))).person_capacity(1)
    assert capacity.utilization_percentage == pytest.approx(120.0)
    assert capacity.is_over_committed
    assert capacity.total_effective_hours == pytest.approx(24.0)


def test_unknown_person_raises(calculated):
    with pytest.raises(EntityNotFound):
        CapacityRollup(calculated).person_capacity(42)


def test_project_staffing(calculated):
    rollup = CapacityRollup(calculated)
    x = rollup.project_staffing(1)
    y = rollup.project_staffing(2)

    assert x.staffing_percentage == pytest.approx(100.0)
    assert x.is_viable
    assert x.shortfall == 0.0
    assert y.priority is Priority.LOW
    assert y.staffing_percentage == pytest.approx(100 / 3)
    assert not y.is_viable
    assert y.shortfall == pytest.approx(20.0)
    assert y.assigned_people[0].person_name == "Ada"
    assert y.assigned_people[0].available_hours == pytest.approx(40.0)


def test_zero_requirement_is_fully_staffed(calculated, make_requirement):
    snapshot = replace(calculated, requirements=(make_requirement(1, 1, 0.0), calculated.requirements[1]))
    staffing = CapacityRollup(snapshot).project_staffing(1)
    assert staffing.staffing_percentage == 100.0
    assert staffing.is_viable


def test_project_without_requirement_raises(calculated):
    with pytest.raises(EntityNotFound):
        CapacityRollup(calculated).project_staffing(3)


def test_before_first_run_nothing_is_allocated(worked_example):
    overview = CapacityRollup(worked_example).overview()
    assert overview.last_calculated_at is None
    assert overview.people_capacity[0].total_allocated_hours == 0.0
    assert overview.under_staffed_projects == 2


def test_overview_counts(calculated):
    overview = CapacityRollup(calculated).overview()

    assert overview.total_people == 1
    assert overview.total_projects == 2
    assert overview.over_committed_people == 0
    assert overview.near_capacity_people == 0
    assert overview.under_staffed_projects == 1
    assert overview.last_calculated_at == STAMP


def test_near_capacity_threshold_is_configurable(calculated):
    overview = CapacityRollup(calculated, config=EngineConfig(near_capacity_threshold_pct=70.0)).overview()
    assert overview.near_capacity_people == 1


def test_overview_dict_and_frames(calculated):
    overview = CapacityRollup(calculated).overview()
    payload = overview.to_dict()
    assert payload["project_staffing"][1]["priority"] == "Low"
    assert payload["last_calculated_at"] == STAMP.isoformat()

    people = people_frame(overview)
    projects = projects_frame(overview)
    assert list(people["person_name"]) == ["Ada"]
    assert list(projects["priority"]) == ["Blocker", "Low"]
    assert list(projects["is_viable"]) == [True, False]
