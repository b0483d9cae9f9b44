from datetime import date

import pytest

from capacity_allocator.models import (
    Assignment,
    EngineConfig,
    JobOverheadTask,
    Person,
    PlanningPeriod,
    Priority,
    WorkingDays,
)


def test_working_days_parses_legacy_string():
    pattern = WorkingDays.parse("Mon,Tue,Wed")
    assert pattern.weekdays() == (0, 1, 2)
    assert len(pattern) == 3
    assert pattern.to_codes() == "Mon,Tue,Wed"


def test_working_days_parses_list_of_codes_and_full_names():
    pattern = WorkingDays.parse(["sat", "Sunday"])
    assert pattern.weekdays() == (5, 6)
    assert pattern.is_working_day(date(2025, 1, 11))
    assert not pattern.is_working_day(date(2025, 1, 10))


def test_working_days_default_is_monday_to_friday():
    assert WorkingDays().to_codes() == "Mon,Tue,Wed,Thu,Fri"
    assert WorkingDays.parse(None) == WorkingDays()


def test_working_days_rejects_out_of_range_mask():
    with pytest.raises(ValueError):
        WorkingDays(1 << 7)


def test_person_requires_at_least_one_working_day():
    with pytest.raises(ValueError):
        Person(id=9, name="Nobody", available_hours_per_week=40.0, working_days=WorkingDays(0))


def test_person_hours_per_working_day_follows_pattern():
    person = Person(id=1, name="Part", available_hours_per_week=24.0, working_days=WorkingDays.parse("Mon,Wed,Fri"))
    assert person.hours_per_working_day == pytest.approx(8.0)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("blocker", Priority.BLOCKER),
        ("High", Priority.HIGH),
        (None, Priority.MEDIUM),
        ("", Priority.MEDIUM),
        (0, Priority.LOW),
        ("20", Priority.HIGH),
        (30.0, Priority.BLOCKER),
    ],
)
def test_priority_parse(raw, expected):
    assert Priority.parse(raw) is expected


def test_priority_parse_rejects_unknown():
    with pytest.raises(ValueError):
        Priority.parse("urgent")


def test_priority_orders_and_labels():
    assert Priority.BLOCKER > Priority.HIGH > Priority.MEDIUM > Priority.LOW
    assert Priority.BLOCKER.label == "Blocker"


def _assignment(**kwargs):
    return Assignment(
        id=1,
        person_id=1,
        project_id=1,
        planning_period_id=1,
        start_date=date(2025, 1, 6),
        end_date=date(2025, 1, 10),
        **kwargs,
    )


def test_allocation_percentage_uses_pinned_value_when_pinned():
    assignment = _assignment(is_pinned=True, pinned_allocation_percentage=0.3, calculated_allocation_percentage=0.9)
    assert assignment.allocation_percentage == pytest.approx(0.3)


def test_allocation_percentage_defaults_to_zero_before_first_run():
    assert _assignment().allocation_percentage == 0.0
    assert _assignment(calculated_allocation_percentage=0.4).allocation_percentage == pytest.approx(0.4)


def test_productivity_is_clamped():
    assert _assignment(productivity_factor=1.5).clamped_productivity == 1.0
    assert _assignment(productivity_factor=-0.2).clamped_productivity == 0.0


def test_optional_weight_defaults_and_clamps():
    config = EngineConfig(default_optional_weight=0.5)
    task = JobOverheadTask(id=1, job_id=1, name="Interviews", effort_hours=4, effort_period="weekly", is_optional=True)
    assert config.optional_weight_for(task) == pytest.approx(0.5)
    heavy = JobOverheadTask(
        id=2, job_id=1, name="On call", effort_hours=4, effort_period="weekly", is_optional=True, optional_weight=1.7
    )
    assert config.optional_weight_for(heavy) == 1.0


def test_period_clip_and_validity():
    period = PlanningPeriod(id=1, start_date=date(2025, 1, 6), end_date=date(2025, 1, 10))
    assert period.is_valid
    assert period.clip(date(2025, 1, 1), date(2025, 1, 8)) == (date(2025, 1, 6), date(2025, 1, 8))
    assert not PlanningPeriod(id=2, start_date=date(2025, 2, 1), end_date=date(2025, 1, 1)).is_valid
