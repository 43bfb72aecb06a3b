"""
Data Manager for Roster Scheduling System

Handles all file I/O operations, JSON persistence, and CRUD operations
for employees, schedule settings, shift templates and the current schedule.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, date
from typing import Dict, List, Optional, Any, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"
MINUTES_PER_DAY = 24 * 60
SUPPORTED_CSV_DELIMITERS = (",", ";", "\t")


class DataManagerError(Exception):
    """Base exception for DataManager operations"""
    pass


class DataFileCorruptedError(DataManagerError):
    """Raised when the data file is corrupted"""
    pass


class DataFileNotFoundError(DataManagerError):
    """Raised when the data file is not found"""
    pass


class DataSaveError(DataManagerError):
    """Raised when saving data fails"""
    pass


class DataValidationError(DataManagerError):
    """Raised when data validation fails"""
    pass


class Weekday(Enum):
    """Days of the week, declared in ``date.weekday()`` order"""
    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"

    @classmethod
    def from_date(cls, day: date) -> 'Weekday':
        return list(cls)[day.weekday()]

    @property
    def index(self) -> int:
        return list(Weekday).index(self)

    @property
    def label(self) -> str:
        return self.value.capitalize()


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_minutes(value: Any) -> int:
    """Parse "HH:MM" (or a bare minute count) into minutes since midnight"""
    if isinstance(value, int):
        return value
    hours, _, minutes = str(value).partition(":")
    return int(hours) * 60 + int(minutes or 0)


@dataclass(frozen=True)
class TimeRange:
    """Availability window within a day, in minutes since midnight"""
    start: int
    end: int

    @classmethod
    def from_hours(cls, start_hour: int, end_hour: int) -> 'TimeRange':
        return cls(start_hour * 60, end_hour * 60)

    def validate(self):
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise DataValidationError(
                f"Invalid availability range {format_minutes(self.start)}-{format_minutes(self.end)}"
            )

    def contains(self, start_minute: int, end_minute: int) -> bool:
        return self.start <= start_minute and end_minute <= self.end

    def to_dict(self) -> Dict[str, str]:
        return {"start": format_minutes(self.start), "end": format_minutes(self.end)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimeRange':
        return cls(parse_minutes(data["start"]), parse_minutes(data["end"]))


@dataclass(frozen=True)
class RoleFilter:
    """Role requirement of a shift: either any role, or one required role.

    ``RoleFilter.any()`` is the unrestricted filter; ``RoleFilter.requires(r)``
    needs a non-empty role name, so a blank form field never reads as
    "unrestricted" by accident.
    """
    required_role: Optional[str] = None

    @classmethod
    def any(cls) -> 'RoleFilter':
        return cls()

    @classmethod
    def requires(cls, role: str) -> 'RoleFilter':
        if not role or not role.strip():
            raise DataValidationError("Required role must be a non-empty name")
        return cls(role.strip())

    @property
    def is_any(self) -> bool:
        return self.required_role is None

    def admits(self, roles: Iterable[str]) -> bool:
        return self.is_any or self.required_role in set(roles)

    def __str__(self) -> str:
        return self.required_role or ""

    def to_json(self) -> Optional[str]:
        return self.required_role

    @classmethod
    def from_json(cls, value: Optional[str]) -> 'RoleFilter':
        return cls.any() if value is None else cls.requires(value)


@dataclass
class Employee:
    """Employee data structure with roles and weekly availability"""
    id: str
    name: str
    max_hours_per_week: int = 40
    roles: List[str] = field(default_factory=list)
    availability: Dict[Weekday, List[TimeRange]] = field(default_factory=dict)

    def ranges_for(self, weekday: Weekday) -> List[TimeRange]:
        return self.availability.get(weekday, [])

    def validate(self):
        if not self.name or not self.name.strip():
            raise DataValidationError("Employee name must not be empty")
        if not isinstance(self.max_hours_per_week, int) or self.max_hours_per_week <= 0:
            raise DataValidationError(
                f"maxHoursPerWeek must be a positive integer, got {self.max_hours_per_week!r}"
            )
        for ranges in self.availability.values():
            for time_range in ranges:
                time_range.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "maxHoursPerWeek": self.max_hours_per_week,
            "roles": list(self.roles),
            "availability": {
                day.value: [r.to_dict() for r in self.availability.get(day, [])]
                for day in Weekday
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Employee':
        availability = {
            Weekday(day): [TimeRange.from_dict(r) for r in ranges]
            for day, ranges in data.get("availability", {}).items()
        }
        return cls(
            id=data["id"],
            name=data["name"],
            max_hours_per_week=data.get("maxHoursPerWeek", 40),
            roles=list(data.get("roles", [])),
            availability=availability
        )


@dataclass
class ShiftTemplate:
    """Recurring shift definition for one weekday"""
    start_hour: int
    end_hour: int
    required_staff: int = 1
    role: RoleFilter = field(default_factory=RoleFilter.any)

    def validate(self):
        if not 0 <= self.start_hour <= 23 or not 1 <= self.end_hour <= 24:
            raise DataValidationError(
                f"Template hours out of range: {self.start_hour}-{self.end_hour}"
            )
        if self.end_hour <= self.start_hour:
            raise DataValidationError(
                f"Template end hour {self.end_hour} must be after start hour {self.start_hour}"
            )
        if self.required_staff < 1:
            raise DataValidationError("Template must require at least one staff member")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startHour": self.start_hour,
            "endHour": self.end_hour,
            "requiredStaff": self.required_staff,
            "role": self.role.to_json()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShiftTemplate':
        return cls(
            start_hour=data["startHour"],
            end_hour=data["endHour"],
            required_staff=data.get("requiredStaff", 1),
            role=RoleFilter.from_json(data.get("role"))
        )


@dataclass
class ScheduleSettings:
    """Week convention, rest rule and per-weekday shift templates"""
    week_start: Weekday = Weekday.MON
    min_rest_hours: int = 10
    templates: Dict[Weekday, List[ShiftTemplate]] = field(default_factory=dict)
    # Dequeue budget per shift is rotation_attempt_factor * queue size, i.e. the
    # number of passes over the roster a single shift may make.
    rotation_attempt_factor: int = 2
    timezone: str = "UTC"

    @classmethod
    def with_default_templates(cls) -> 'ScheduleSettings':
        """Settings with one 09:00-17:00 shift needing two staff every day"""
        return cls(templates={
            day: [ShiftTemplate(start_hour=9, end_hour=17, required_staff=2)] for day in Weekday
        })

    def templates_for(self, weekday: Weekday) -> List[ShiftTemplate]:
        return self.templates.get(weekday, [])

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def validate(self):
        if self.min_rest_hours < 0:
            raise DataValidationError("minRestHours must not be negative")
        if self.rotation_attempt_factor < 1:
            raise DataValidationError("rotationAttemptFactor must be at least 1")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise DataValidationError(f"Unknown timezone '{self.timezone}': {e}")
        for templates in self.templates.values():
            for template in templates:
                template.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weekStart": self.week_start.value,
            "minRestHours": self.min_rest_hours,
            "rotationAttemptFactor": self.rotation_attempt_factor,
            "timezone": self.timezone,
            "templates": {
                day.value: [t.to_dict() for t in self.templates.get(day, [])]
                for day in Weekday
            }
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleSettings':
        return cls(
            week_start=Weekday(data.get("weekStart", "mon")),
            min_rest_hours=data.get("minRestHours", 10),
            templates={
                Weekday(day): [ShiftTemplate.from_dict(t) for t in templates]
                for day, templates in data.get("templates", {}).items()
            },
            rotation_attempt_factor=data.get("rotationAttemptFactor", 2),
            timezone=data.get("timezone", "UTC")
        )


class CoverageStatus(Enum):
    EMPTY = "empty"
    PARTIAL = "partial"
    FULL = "full"
    OVER = "over"

    @property
    def label(self) -> str:
        return {
            CoverageStatus.EMPTY: "Uncovered",
            CoverageStatus.PARTIAL: "Understaffed",
            CoverageStatus.FULL: "Covered",
            CoverageStatus.OVER: "Overstaffed",
        }[self]


def coverage_status(assigned: int, required: int) -> CoverageStatus:
    """Derive the coverage label from assigned vs required counts"""
    if assigned == 0:
        return CoverageStatus.EMPTY
    if assigned < required:
        return CoverageStatus.PARTIAL
    if assigned == required:
        return CoverageStatus.FULL
    return CoverageStatus.OVER


@dataclass
class Shift:
    """A concrete shift on one calendar day"""
    id: str
    start: datetime
    end: datetime
    required_staff: int
    role: RoleFilter = field(default_factory=RoleFilter.any)
    assignments: List[str] = field(default_factory=list)

    @property
    def coverage_status(self) -> CoverageStatus:
        return coverage_status(len(self.assignments), self.required_staff)

    @property
    def weekday(self) -> Weekday:
        return Weekday.from_date(self.start.date())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "role": self.role.to_json(),
            "requiredStaff": self.required_staff,
            "assignments": list(self.assignments)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Shift':
        return cls(
            id=data["id"],
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            required_staff=data["requiredStaff"],
            role=RoleFilter.from_json(data.get("role")),
            assignments=list(data.get("assignments", []))
        )


@dataclass
class Schedule:
    """One generated week: normalized week start plus its ordered shifts"""
    week_of: date
    shifts: List[Shift] = field(default_factory=list)

    def get_shift(self, shift_id: str) -> Optional[Shift]:
        for shift in self.shifts:
            if shift.id == shift_id:
                return shift
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weekOf": self.week_of.isoformat(),
            "shifts": [s.to_dict() for s in self.shifts]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Schedule':
        return cls(
            week_of=date.fromisoformat(data["weekOf"]),
            shifts=[Shift.from_dict(s) for s in data.get("shifts", [])]
        )


class DataManager:
    """Manages all data persistence and CRUD operations.

    ``lock`` serializes writers: schedule generation and manual edits both hold
    it while they mutate the current schedule.
    """

    def __init__(self, data_file: Optional[str] = None):
        if data_file is None:
            # Use path relative to the package directory
            data_file = Path(__file__).parent.parent / "data" / "schedule_data.json"
        self.data_file = Path(data_file)
        self.lock = threading.RLock()
        self.data = self._load_or_create_data()

    def _read_json(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except UnicodeDecodeError as e:
            raise DataFileCorruptedError(f"{path} is not valid UTF-8: {e}")
        if not isinstance(data, dict):
            raise DataFileCorruptedError(f"{path} does not contain a JSON object")
        return data

    def _load_or_create_data(self) -> Dict[str, Any]:
        """Load existing data, recovering from the backup file when needed"""
        backup_file = self.data_file.with_suffix('.bak')
        if self.data_file.exists():
            try:
                return self._validate_and_migrate_data(self._read_json(self.data_file))
            except (json.JSONDecodeError, DataFileCorruptedError, IOError) as e:
                logger.error(f"Error loading main data file {self.data_file}: {e}")
                if not backup_file.exists():
                    raise DataFileCorruptedError(f"Main data file corrupted and no backup available: {e}")
                error = e
        elif backup_file.exists():
            logger.info(f"Main data file missing, attempting recovery from backup {backup_file}")
            error = None
        else:
            logger.info("No data file found, creating default data")
            return self._create_default_data()

        try:
            data = self._validate_and_migrate_data(self._read_json(backup_file))
        except (json.JSONDecodeError, DataFileCorruptedError, IOError) as backup_e:
            logger.error(f"Backup file also corrupted: {backup_e}")
            raise DataFileCorruptedError(
                f"Data file and backup are both unreadable: {error or 'main file missing'}; {backup_e}"
            )
        backup_file.replace(self.data_file)
        logger.error(f"Recovered data from backup {backup_file}")
        return data

    def _validate_and_migrate_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Fill in missing sections and check every record parses"""
        default_data = self._create_default_data()
        for key in default_data:
            if key not in data:
                data[key] = default_data[key]

        try:
            for key, value in default_data["settings"].items():
                data["settings"].setdefault(key, value)
            employees = [Employee.from_dict(e) for e in data["employees"]]
            for emp in employees:
                emp.validate()
            ScheduleSettings.from_dict(data["scheduleSettings"]).validate()
            if data["currentSchedule"] is not None:
                Schedule.from_dict(data["currentSchedule"])
        except DataValidationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DataValidationError(f"Malformed data in {self.data_file}: {e!r}")

        ids = [e["id"] for e in data["employees"]]
        if len(ids) != len(set(ids)):
            raise DataValidationError(f"Duplicate employee ids in {self.data_file}")
        return data

    def _create_default_data(self) -> Dict[str, Any]:
        return {
            "settings": {
                "appVersion": APP_VERSION,
                "csvDelimiter": ","
            },
            "employees": [],
            "scheduleSettings": ScheduleSettings.with_default_templates().to_dict(),
            "currentSchedule": None
        }

    def _validate_saved_data(self) -> bool:
        """Validate that the saved data file matches current data"""
        try:
            if not self.data_file.exists():
                raise DataFileNotFoundError(f"Saved data file {self.data_file} does not exist")

            saved_data = self._read_json(self.data_file)
            for key in ["settings", "employees", "scheduleSettings", "currentSchedule"]:
                if key not in saved_data:
                    raise DataValidationError(f"Required section '{key}' missing from saved data")

            if saved_data["settings"].get("appVersion") != self.data["settings"].get("appVersion"):
                raise DataValidationError("App version mismatch in saved data")

            return True

        except (json.JSONDecodeError, DataFileCorruptedError, IOError) as e:
            raise DataValidationError(f"Failed to validate saved data: {e}")

    def save_data(self) -> bool:
        """Save current data to file atomically with validation"""
        temp_file = self.data_file.with_suffix('.tmp')
        backup_file = self.data_file.with_suffix('.bak')

        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)

            if self.data_file.exists():
                self.data_file.replace(backup_file)
            temp_file.replace(self.data_file)

            self._validate_saved_data()
            return True

        except DataManagerError as e:
            logger.error(f"Data validation failed after save: {e}", exc_info=True)
            if backup_file.exists():
                try:
                    backup_file.replace(self.data_file)
                except OSError as restore_e:
                    logger.error(f"Failed to restore from backup: {restore_e}", exc_info=True)
            raise DataSaveError(f"Save operation failed validation: {e}")

        except (IOError, OSError, TypeError) as e:
            logger.error(f"I/O error during save operation: {e}", exc_info=True)
            raise DataSaveError(f"Failed to save data to {self.data_file}: {e}")

        finally:
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError as cleanup_e:
                    logger.error(f"Failed to clean up temporary file {temp_file}: {cleanup_e}", exc_info=True)

    # Employee Management
    def get_employees(self) -> List[Employee]:
        """Get the roster in insertion order"""
        return [Employee.from_dict(emp_data) for emp_data in self.data.get("employees", [])]

    def _find_employee_data(self, emp_id: str) -> Optional[Dict[str, Any]]:
        for emp_data in self.data.get("employees", []):
            if emp_data["id"] == emp_id:
                return emp_data
        return None

    def get_employee_by_id(self, emp_id: str) -> Optional[Employee]:
        emp_data = self._find_employee_data(emp_id)
        return Employee.from_dict(emp_data) if emp_data else None

    def get_employee_by_name(self, name: str) -> Optional[Employee]:
        for emp_data in self.data.get("employees", []):
            if emp_data["name"] == name:
                return Employee.from_dict(emp_data)
        return None

    def get_employee_name(self, emp_id: str) -> str:
        """Display name for an assignment id; orphaned ids read as "Unknown" """
        emp_data = self._find_employee_data(emp_id)
        return emp_data["name"] if emp_data else "Unknown"

    def add_employee(self, name: str, max_hours_per_week: int = 40,
                     roles: Optional[List[str]] = None,
                     availability: Optional[Dict[Weekday, List[TimeRange]]] = None) -> Employee:
        """Add new employee"""
        employee = Employee(
            id=uuid.uuid4().hex,
            name=name,
            max_hours_per_week=max_hours_per_week,
            roles=list(roles or []),
            availability=dict(availability or {})
        )
        employee.validate()
        self.data.setdefault("employees", []).append(employee.to_dict())
        logger.info(f"Added employee {name} ({employee.id})")
        return employee

    def update_employee(self, emp_id: str, name: str = None, max_hours_per_week: int = None,
                        roles: List[str] = None) -> bool:
        """Update employee information"""
        emp_data = self._find_employee_data(emp_id)
        if emp_data is None:
            return False

        employee = Employee.from_dict(emp_data)
        if name is not None:
            employee.name = name
        if max_hours_per_week is not None:
            employee.max_hours_per_week = max_hours_per_week
        if roles is not None:
            employee.roles = list(roles)
        employee.validate()
        emp_data.update(employee.to_dict())
        return True

    def set_availability(self, emp_id: str, weekday: Weekday, ranges: List[TimeRange]) -> bool:
        """Replace an employee's availability ranges for one weekday"""
        emp_data = self._find_employee_data(emp_id)
        if emp_data is None:
            return False
        for time_range in ranges:
            time_range.validate()
        emp_data.setdefault("availability", {})[weekday.value] = [r.to_dict() for r in ranges]
        return True

    def add_availability(self, emp_id: str, weekday: Weekday, time_range: TimeRange) -> bool:
        employee = self.get_employee_by_id(emp_id)
        if employee is None:
            return False
        return self.set_availability(emp_id, weekday, employee.ranges_for(weekday) + [time_range])

    def delete_employee(self, emp_id: str) -> bool:
        """Delete employee (hard delete). Shift assignments are left in place."""
        employees = self.data.get("employees", [])
        emp_data = self._find_employee_data(emp_id)
        if emp_data is None:
            return False
        employees.remove(emp_data)
        return True

    # Schedule Settings Management
    def get_schedule_settings(self) -> ScheduleSettings:
        return ScheduleSettings.from_dict(self.data["scheduleSettings"])

    def _store_schedule_settings(self, settings: ScheduleSettings):
        settings.validate()
        self.data["scheduleSettings"] = settings.to_dict()

    def set_week_start(self, weekday: Weekday):
        settings = self.get_schedule_settings()
        settings.week_start = weekday
        self._store_schedule_settings(settings)

    def set_min_rest_hours(self, hours: int):
        settings = self.get_schedule_settings()
        settings.min_rest_hours = hours
        self._store_schedule_settings(settings)

    def set_rotation_attempt_factor(self, factor: int):
        settings = self.get_schedule_settings()
        settings.rotation_attempt_factor = factor
        self._store_schedule_settings(settings)

    def set_timezone(self, timezone: str):
        settings = self.get_schedule_settings()
        settings.timezone = timezone
        self._store_schedule_settings(settings)

    def add_template(self, weekday: Weekday, template: ShiftTemplate):
        """Append a template to a weekday; invalid templates are rejected here"""
        template.validate()
        settings = self.get_schedule_settings()
        settings.templates.setdefault(weekday, []).append(template)
        self._store_schedule_settings(settings)

    def set_templates(self, weekday: Weekday, templates: List[ShiftTemplate]):
        settings = self.get_schedule_settings()
        settings.templates[weekday] = list(templates)
        self._store_schedule_settings(settings)

    def remove_template(self, weekday: Weekday, index: int) -> bool:
        settings = self.get_schedule_settings()
        templates = settings.templates.get(weekday, [])
        if not 0 <= index < len(templates):
            return False
        del templates[index]
        self._store_schedule_settings(settings)
        return True

    # Schedule Management
    def get_current_schedule(self) -> Optional[Schedule]:
        raw = self.data.get("currentSchedule")
        return Schedule.from_dict(raw) if raw else None

    def set_current_schedule(self, schedule: Optional[Schedule]):
        """Replace the current schedule in full"""
        self.data["currentSchedule"] = schedule.to_dict() if schedule else None

    def _find_shift_data(self, shift_id: str) -> Optional[Dict[str, Any]]:
        raw = self.data.get("currentSchedule")
        if not raw:
            return None
        for shift_data in raw.get("shifts", []):
            if shift_data["id"] == shift_id:
                return shift_data
        return None

    def add_assignment(self, emp_id: str, shift_id: str) -> bool:
        """Manually assign an employee to a shift of the current schedule.

        Rejected (returns False) for unknown employees or shifts, when the
        employee is already on the shift, or when the shift is already at its
        required staff count.
        """
        with self.lock:
            shift_data = self._find_shift_data(shift_id)
            if shift_data is None:
                logger.warning(f"Cannot assign {emp_id}: no shift {shift_id} in current schedule")
                return False
            if self._find_employee_data(emp_id) is None:
                logger.warning(f"Cannot assign unknown employee {emp_id} to {shift_id}")
                return False
            assignments = shift_data.setdefault("assignments", [])
            if emp_id in assignments or len(assignments) >= shift_data["requiredStaff"]:
                return False
            assignments.append(emp_id)
            self.save_data()
            return True

    def remove_assignment(self, emp_id: str, shift_id: str) -> bool:
        """Remove an employee from a shift; a no-op when not assigned"""
        with self.lock:
            shift_data = self._find_shift_data(shift_id)
            if shift_data is None or emp_id not in shift_data.get("assignments", []):
                return False
            shift_data["assignments"] = [a for a in shift_data["assignments"] if a != emp_id]
            self.save_data()
            return True

    # Settings Management
    def get_setting(self, key: str, default=None):
        """Get application setting"""
        return self.data.get("settings", {}).get(key, default)

    def set_setting(self, key: str, value):
        """Set application setting"""
        if key == "csvDelimiter" and value not in SUPPORTED_CSV_DELIMITERS:
            raise DataValidationError(f"Unsupported CSV delimiter {value!r}")
        self.data.setdefault("settings", {})[key] = value
