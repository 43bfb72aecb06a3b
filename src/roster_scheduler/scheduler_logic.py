"""
Scheduler Logic for Roster Scheduling System

Expands weekly shift templates into concrete shifts and fills their staff
slots with a fair-rotation greedy pass under role, availability, weekly hour
cap and minimum rest constraints.
"""

from collections import deque
from datetime import date, datetime, timedelta, timezone
from typing import Deque, Dict, List, Optional, Tuple, Any, Union
from dataclasses import dataclass, field
import logging
import time

from .data_manager import (
    DataManager, Employee, ScheduleSettings, Shift, Schedule, CoverageStatus,
    DataSaveError, Weekday, MINUTES_PER_DAY
)

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)

WeekAnchor = Union[date, datetime]


class SchedulingInvariantError(RuntimeError):
    """An engine input broke an invariant that upstream validation guarantees"""
    pass


class ConstraintViolation:
    """Reasons an employee cannot take a shift"""
    ROLE = "Employee does not hold the role this shift requires"
    AVAILABILITY = "Shift falls outside the employee's availability"
    MAX_HOURS = "Shift would exceed the employee's weekly hour cap"
    MIN_REST = "Not enough rest between this and another assigned shift"
    ALREADY_ASSIGNED = "Employee is already assigned to this shift"
    SHIFT_FULL = "Shift already has its required staff"
    UNKNOWN_EMPLOYEE = "Employee is not on the roster"
    UNKNOWN_SHIFT = "Shift is not part of the current schedule"


@dataclass
class RotationState:
    """Running per-employee counters for one generation pass"""
    hours_assigned: Dict[str, int] = field(default_factory=dict)
    last_shift_end: Dict[str, datetime] = field(default_factory=dict)

    @classmethod
    def for_roster(cls, employees: List[Employee]) -> 'RotationState':
        return cls(hours_assigned={emp.id: 0 for emp in employees})

    def record(self, employee: Employee, shift: Shift):
        self.hours_assigned[employee.id] = self.hours_assigned.get(employee.id, 0) + shift_hours(shift)
        self.last_shift_end[employee.id] = shift.end


@dataclass
class ScheduleResult:
    """Result of schedule generation"""
    success: bool
    schedule: Schedule
    statistics: Dict[str, Any]
    message: str


def _elapsed(start: datetime, end: datetime) -> timedelta:
    """Absolute time between two instants, independent of DST wall-clock jumps"""
    if start.tzinfo is None or end.tzinfo is None:
        return end - start
    return end.astimezone(timezone.utc) - start.astimezone(timezone.utc)


def shift_hours(shift: Shift) -> int:
    """Whole hours worked in a shift; fractional hours are truncated"""
    elapsed = _elapsed(shift.start, shift.end)
    if elapsed <= timedelta(0):
        raise SchedulingInvariantError(f"Shift {shift.id} has non-positive duration {elapsed}")
    return int(elapsed // HOUR)


def minute_span(shift: Shift) -> Tuple[int, int]:
    """Start and end of a shift as minutes since its day's midnight.

    An end at the following midnight is minute 1440. Shifts that run past
    midnight are not supported.
    """
    start = shift.start
    end = shift.end.astimezone(start.tzinfo) if start.tzinfo else shift.end
    start_minute = start.hour * 60 + start.minute
    end_minute = (end.date() - start.date()).days * MINUTES_PER_DAY + end.hour * 60 + end.minute
    if end_minute > MINUTES_PER_DAY:
        raise SchedulingInvariantError(f"Shift {shift.id} crosses midnight, which is unsupported")
    if end_minute <= start_minute:
        raise SchedulingInvariantError(f"Shift {shift.id} ends before it starts")
    return start_minute, end_minute


def normalize_week_start(week_anchor: WeekAnchor, settings: ScheduleSettings) -> date:
    """Most recent day on or before the anchor that falls on ``settings.week_start``"""
    if isinstance(week_anchor, datetime):
        if week_anchor.tzinfo is not None:
            week_anchor = week_anchor.astimezone(settings.tzinfo)
        day = week_anchor.date()
    else:
        day = week_anchor
    offset = (day.weekday() - settings.week_start.index) % 7
    return day - timedelta(days=offset)


def expand_templates(settings: ScheduleSettings, week_anchor: WeekAnchor) -> List[Shift]:
    """Build the week's shifts from the templates, with no assignments.

    Shifts are ordered by day, then by template declaration order within the
    day. Hours are applied to local midnight in ``settings.timezone``.
    """
    tz = settings.tzinfo
    week_start = normalize_week_start(week_anchor, settings)
    shifts = []
    for offset in range(7):
        day = week_start + timedelta(days=offset)
        midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
        for index, template in enumerate(settings.templates_for(Weekday.from_date(day))):
            if template.end_hour <= template.start_hour:
                raise SchedulingInvariantError(
                    f"Template {template.start_hour}-{template.end_hour} on {day} ends before it starts"
                )
            shifts.append(Shift(
                id=f"{day.isoformat()}#{index}",
                start=midnight + timedelta(hours=template.start_hour),
                end=midnight + timedelta(hours=template.end_hour),
                required_staff=template.required_staff,
                role=template.role
            ))
    return shifts


def check_constraints(employee: Employee, shift: Shift, state: RotationState,
                      settings: ScheduleSettings) -> List[str]:
    """List every constraint that stops ``employee`` from taking ``shift`` now"""
    violations = []

    if employee.id in shift.assignments:
        violations.append(ConstraintViolation.ALREADY_ASSIGNED)

    if not shift.role.admits(employee.roles):
        violations.append(ConstraintViolation.ROLE)

    start_minute, end_minute = minute_span(shift)
    ranges = employee.ranges_for(shift.weekday)
    if not any(r.contains(start_minute, end_minute) for r in ranges):
        violations.append(ConstraintViolation.AVAILABILITY)

    projected = state.hours_assigned.get(employee.id, 0) + shift_hours(shift)
    if projected > employee.max_hours_per_week:
        violations.append(ConstraintViolation.MAX_HOURS)

    last_end = state.last_shift_end.get(employee.id)
    if last_end is not None:
        rest_hours = _elapsed(last_end, shift.start) / HOUR
        if rest_hours < settings.min_rest_hours:
            violations.append(ConstraintViolation.MIN_REST)

    return violations


def is_eligible(employee: Employee, shift: Shift, state: RotationState,
                settings: ScheduleSettings) -> bool:
    return not check_constraints(employee, shift, state, settings)


def _fill_shift(shift: Shift, queue: Deque[Employee], state: RotationState,
                settings: ScheduleSettings):
    """Fill one shift from the front of the shared rotation queue.

    Every dequeued employee goes to the back whether or not they were taken.
    The pass stops after ``rotation_attempt_factor * len(queue)`` attempts and
    leaves any remaining slots open.
    """
    needed = shift.required_staff
    budget = settings.rotation_attempt_factor * len(queue)
    attempts = 0
    while needed > 0 and queue and attempts < budget:
        employee = queue.popleft()
        if is_eligible(employee, shift, state, settings):
            shift.assignments.append(employee.id)
            state.record(employee, shift)
            needed -= 1
        queue.append(employee)
        attempts += 1

    if needed > 0:
        logger.debug(f"Shift {shift.id} left with {needed} open slot(s) after {attempts} attempts")


def generate(employees: List[Employee], settings: ScheduleSettings,
             week_anchor: WeekAnchor) -> Schedule:
    """Generate one week of shifts and fill them from the roster.

    Deterministic for identical inputs. Never raises for unfillable slots;
    they show up as ``partial`` or ``empty`` coverage instead.
    """
    week_of = normalize_week_start(week_anchor, settings)
    shifts = expand_templates(settings, week_anchor)
    state = RotationState.for_roster(employees)
    queue: Deque[Employee] = deque(employees)

    for shift in shifts:
        _fill_shift(shift, queue, state, settings)

    counts = {status: 0 for status in CoverageStatus}
    for shift in shifts:
        counts[shift.coverage_status] += 1
    logger.info(
        f"Generated week of {week_of}: {len(shifts)} shifts, "
        + ", ".join(f"{status.value}={count}" for status, count in counts.items())
    )
    return Schedule(week_of=week_of, shifts=shifts)


class ShiftScheduler:
    """Runs generation against a DataManager and keeps its current schedule"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager

    def generate_schedule(self, week_anchor: WeekAnchor) -> ScheduleResult:
        """
        Generate and store the schedule for the week containing ``week_anchor``.

        Replaces the stored current schedule in full and saves it. Save
        failures propagate as ``DataSaveError`` and leave the previous
        schedule in place.
        """
        start_time = time.time()
        logger.info(f"Starting schedule generation for week of {week_anchor}")

        with self.data_manager.lock:
            employees = self.data_manager.get_employees()
            settings = self.data_manager.get_schedule_settings()
            schedule = generate(employees, settings, week_anchor)
            previous = self.data_manager.data.get("currentSchedule")
            self.data_manager.set_current_schedule(schedule)
            try:
                self.data_manager.save_data()
            except DataSaveError:
                # Keep memory in step with the file on disk
                self.data_manager.data["currentSchedule"] = previous
                raise

        statistics = self.get_schedule_statistics(schedule, employees)
        success = statistics["open_slots"] == 0
        if not schedule.shifts:
            message = "No shift templates configured for this week"
        elif success:
            message = f"All {len(schedule.shifts)} shifts fully covered"
        else:
            message = (f"{statistics['open_slots']} slot(s) left open across "
                       f"{len(schedule.shifts)} shifts")

        duration = time.time() - start_time
        logger.info(f"Generation completed in {duration:.2f}s. {message}")

        return ScheduleResult(
            success=success,
            schedule=schedule,
            statistics=statistics,
            message=message
        )

    def get_schedule_statistics(self, schedule: Schedule,
                                employees: Optional[List[Employee]] = None) -> Dict[str, Any]:
        """Coverage totals plus hours and shift counts per employee"""
        if employees is None:
            employees = self.data_manager.get_employees()

        coverage = {status.value: 0 for status in CoverageStatus}
        per_employee = {
            emp.id: {"name": emp.name, "shifts": 0, "hours": 0, "max_hours": emp.max_hours_per_week}
            for emp in employees
        }
        required_slots = 0
        open_slots = 0

        for shift in schedule.shifts:
            coverage[shift.coverage_status.value] += 1
            required_slots += shift.required_staff
            open_slots += max(0, shift.required_staff - len(shift.assignments))
            hours = shift_hours(shift)
            for emp_id in shift.assignments:
                stats = per_employee.setdefault(
                    emp_id, {"name": "Unknown", "shifts": 0, "hours": 0, "max_hours": None}
                )
                stats["shifts"] += 1
                stats["hours"] += hours

        return {
            "week_of": schedule.week_of.isoformat(),
            "total_shifts": len(schedule.shifts),
            "required_slots": required_slots,
            "filled_slots": sum(len(s.assignments) for s in schedule.shifts),
            "open_slots": open_slots,
            "coverage": coverage,
            "employees": per_employee
        }

    def validate_manual_assignment(self, emp_id: str, shift_id: str) -> List[str]:
        """
        Check a prospective manual assignment against the generation rules.

        Other shifts the employee already works this week count toward the hour
        cap, and rest is checked against the nearest shift on either side.
        Advisory only: ``DataManager.add_assignment`` does not consult it.
        """
        schedule = self.data_manager.get_current_schedule()
        target = schedule.get_shift(shift_id) if schedule else None
        if target is None:
            return [ConstraintViolation.UNKNOWN_SHIFT]
        employee = self.data_manager.get_employee_by_id(emp_id)
        if employee is None:
            return [ConstraintViolation.UNKNOWN_EMPLOYEE]

        settings = self.data_manager.get_schedule_settings()
        violations = []
        if emp_id in target.assignments:
            violations.append(ConstraintViolation.ALREADY_ASSIGNED)
        elif len(target.assignments) >= target.required_staff:
            violations.append(ConstraintViolation.SHIFT_FULL)

        state = RotationState.for_roster([employee])
        next_start = None
        for shift in sorted(schedule.shifts, key=lambda s: s.start):
            if shift.id == target.id or emp_id not in shift.assignments:
                continue
            state.hours_assigned[emp_id] += shift_hours(shift)
            if shift.start <= target.start:
                state.last_shift_end[emp_id] = shift.end
            elif next_start is None:
                next_start = shift.start

        candidate = Shift(
            id=target.id, start=target.start, end=target.end,
            required_staff=target.required_staff, role=target.role,
            assignments=[a for a in target.assignments if a != emp_id]
        )
        violations.extend(check_constraints(employee, candidate, state, settings))

        if (next_start is not None and ConstraintViolation.MIN_REST not in violations
                and _elapsed(target.end, next_start) / HOUR < settings.min_rest_hours):
            violations.append(ConstraintViolation.MIN_REST)

        return violations
