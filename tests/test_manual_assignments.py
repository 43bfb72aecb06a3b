import pytest
from datetime import date
from pathlib import Path
import sys
import tempfile
import os
import json

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from roster_scheduler.data_manager import (
    DataManager, ShiftTemplate, TimeRange, Weekday, CoverageStatus, RoleFilter
)
from roster_scheduler.scheduler_logic import ShiftScheduler, ConstraintViolation

MONDAY = date(2025, 1, 6)
ALL_DAY = TimeRange.from_hours(0, 24)


@pytest.fixture
def data_manager():
    """Fixture for a clean DataManager instance for each test."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as temp_file:
        temp_path = temp_file.name
        json.dump({}, temp_file)

    dm = DataManager(temp_path)
    for day in Weekday:
        dm.set_templates(day, [])
    dm.set_templates(Weekday.MON, [ShiftTemplate(9, 17, 2), ShiftTemplate(18, 22, 1)])
    dm.set_templates(Weekday.TUE, [ShiftTemplate(6, 14, 1, RoleFilter.requires("cook"))])
    for name in ["Alice", "Bob", "Charlie"]:
        dm.add_employee(name, availability={day: [ALL_DAY] for day in Weekday})
    yield dm
    os.unlink(temp_path)
    for suffix in ('.bak', '.tmp'):
        Path(temp_path).with_suffix(suffix).unlink(missing_ok=True)


@pytest.fixture
def scheduler(data_manager):
    """Fixture for a ShiftScheduler instance."""
    return ShiftScheduler(data_manager)


def test_generate_schedule_stores_and_persists(scheduler, data_manager):
    result = scheduler.generate_schedule(date(2025, 1, 8))

    assert result.schedule.week_of == MONDAY
    assert [s.id for s in result.schedule.shifts] == ["2025-01-06#0", "2025-01-06#1", "2025-01-07#0"]
    # Nobody holds the cook role, so Tuesday stays open
    assert not result.success
    assert result.statistics["open_slots"] == 1
    assert result.statistics["coverage"] == {"empty": 1, "partial": 0, "full": 2, "over": 0}

    reloaded = DataManager(data_manager.data_file)
    assert reloaded.get_current_schedule() == result.schedule


def test_regeneration_replaces_schedule(scheduler, data_manager):
    first = scheduler.generate_schedule(MONDAY).schedule
    alice = data_manager.get_employee_by_name("Alice")
    shift_id = first.shifts[1].id
    data_manager.remove_assignment(first.shifts[1].assignments[0], shift_id)
    data_manager.add_assignment(alice.id, shift_id)

    second = scheduler.generate_schedule(MONDAY).schedule
    assert second == first


def test_add_assignment_rules(scheduler, data_manager):
    schedule = scheduler.generate_schedule(MONDAY).schedule
    tuesday = schedule.shifts[2]
    alice = data_manager.get_employee_by_name("Alice")
    bob = data_manager.get_employee_by_name("Bob")

    assert data_manager.add_assignment(alice.id, tuesday.id)
    # Duplicate is rejected
    assert not data_manager.add_assignment(alice.id, tuesday.id)
    # Shift is at its required count
    assert not data_manager.add_assignment(bob.id, tuesday.id)
    # Unknown shift and unknown employee
    assert not data_manager.add_assignment(alice.id, "1999-01-01#0")
    assert not data_manager.add_assignment("nobody", tuesday.id)

    reloaded = DataManager(data_manager.data_file)
    shift = reloaded.get_current_schedule().get_shift(tuesday.id)
    assert shift.assignments == [alice.id]
    assert shift.coverage_status == CoverageStatus.FULL


def test_remove_assignment(scheduler, data_manager):
    schedule = scheduler.generate_schedule(MONDAY).schedule
    monday = schedule.shifts[0]
    removed = monday.assignments[0]

    assert data_manager.remove_assignment(removed, monday.id)
    assert not data_manager.remove_assignment(removed, monday.id)

    shift = DataManager(data_manager.data_file).get_current_schedule().get_shift(monday.id)
    assert removed not in shift.assignments
    assert shift.coverage_status == CoverageStatus.PARTIAL


def test_edits_never_duplicate_assignments(scheduler, data_manager):
    schedule = scheduler.generate_schedule(MONDAY).schedule
    shift_id = schedule.shifts[0].id
    ids = [e.id for e in data_manager.get_employees()]

    for emp_id in ids + ids:
        data_manager.add_assignment(emp_id, shift_id)
        data_manager.remove_assignment(ids[0], shift_id)
        data_manager.add_assignment(emp_id, shift_id)
        assignments = data_manager.get_current_schedule().get_shift(shift_id).assignments
        assert len(assignments) == len(set(assignments))
        assert len(assignments) <= 2


def test_validate_manual_assignment(scheduler, data_manager):
    """
    Tests the advisory validation that mirrors the generation rules for an
    assignment a manager is about to make by hand.
    """
    schedule = scheduler.generate_schedule(MONDAY).schedule
    day_shift, evening_shift, cook_shift = schedule.shifts
    on_day_shift = day_shift.assignments[0]
    on_evening_shift = evening_shift.assignments[0]

    # Only one hour of rest after 17:00
    assert ConstraintViolation.MIN_REST in scheduler.validate_manual_assignment(on_day_shift, evening_shift.id)
    # Rest is also checked against the following shift
    data_manager.remove_assignment(on_day_shift, day_shift.id)
    violations = scheduler.validate_manual_assignment(on_evening_shift, day_shift.id)
    assert violations == [ConstraintViolation.MIN_REST]

    assert ConstraintViolation.ROLE in scheduler.validate_manual_assignment(on_day_shift, cook_shift.id)
    assert scheduler.validate_manual_assignment("nobody", cook_shift.id) == [ConstraintViolation.UNKNOWN_EMPLOYEE]
    assert scheduler.validate_manual_assignment(on_day_shift, "missing") == [ConstraintViolation.UNKNOWN_SHIFT]

    data_manager.update_employee(on_day_shift, roles=["cook"])
    assert scheduler.validate_manual_assignment(on_day_shift, cook_shift.id) == []


def test_deleted_employee_keeps_assignment(scheduler, data_manager):
    """Deleting an employee must not cascade into the stored schedule."""
    schedule = scheduler.generate_schedule(MONDAY).schedule
    orphan = schedule.shifts[0].assignments[0]
    data_manager.delete_employee(orphan)
    data_manager.save_data()

    reloaded = DataManager(data_manager.data_file)
    assert orphan in reloaded.get_current_schedule().shifts[0].assignments
    assert reloaded.get_employee_name(orphan) == "Unknown"
    stats = scheduler.get_schedule_statistics(reloaded.get_current_schedule(), reloaded.get_employees())
    assert stats["employees"][orphan]["name"] == "Unknown"
