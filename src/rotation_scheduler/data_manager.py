"""
Data Manager for Rotation Scheduling System

Handles JSON persistence and CRUD operations for shift types, rotation
templates, turn exceptions and application settings. Registries are kept as
immutable snapshots so concurrent schedule generation always reads a
consistent view.
"""

import json
import logging
import re
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)

HEX_COLOR_PATTERN = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")
MAX_SHIFT_NAME_LENGTH = 50
MIN_SHIFT_MINUTES = 30
MAX_SHIFT_MINUTES = 24 * 60
SHORT_SHIFT_WARNING_MINUTES = 60
LONG_SHIFT_WARNING_MINUTES = 12 * 60
LONG_CYCLE_WARNING_DAYS = 365


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


class ErrorType(Enum):
    """Failure categories returned to callers as part of a result"""
    INVALID_RANGE = "invalid_range"
    INVALID_TEMPLATE = "invalid_template"
    UNSUPPORTED_TEMPLATE = "unsupported_template"
    SHIFT_TYPE_NOT_FOUND = "shift_type_not_found"
    NAME_CONFLICT = "name_conflict"
    IMMUTABLE_RESOURCE = "immutable_resource"
    VALIDATION_FAILED = "validation_failed"
    GENERATION_FAILED = "generation_failed"
    NOT_FOUND = "not_found"
    EXCEPTION_CONFLICT = "exception_conflict"
    RESOURCE_IN_USE = "resource_in_use"
    CANCELLED = "cancelled"


@dataclass
class OperationResult:
    """Outcome of a registry or query operation"""
    success: bool
    data: Any = None
    message: str = ""
    error: Optional[ErrorType] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, message: str = "", warnings: Optional[List[str]] = None) -> 'OperationResult':
        return cls(success=True, data=data, message=message, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: ErrorType, message: str, errors: Optional[List[str]] = None,
                warnings: Optional[List[str]] = None) -> 'OperationResult':
        return cls(success=False, message=message, error=error,
                   errors=list(errors or []), warnings=list(warnings or []))


@dataclass
class ValidationResult:
    """Business-rule errors and warnings collected for an entity"""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _format_time(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def _parse_time(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    return time.fromisoformat(value)


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class ShiftType:
    """Named shift descriptor: time bounds, break window and rest flag"""
    name: str
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    color_hex: str = "#9E9E9E"
    description: str = ""
    is_rest_period: bool = False
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    is_user_defined: bool = True
    is_active: bool = True
    id: Optional[int] = None

    @property
    def has_break(self) -> bool:
        return self.break_start is not None or self.break_end is not None

    @property
    def crosses_midnight(self) -> bool:
        if self.is_rest_period or self.start_time is None or self.end_time is None:
            return False
        return self.end_time < self.start_time

    @property
    def duration_minutes(self) -> int:
        """Gross duration, wrapping through midnight for night shifts"""
        if self.is_rest_period or self.start_time is None or self.end_time is None:
            return 0
        duration = _minutes(self.end_time) - _minutes(self.start_time)
        if duration < 0:
            duration += 24 * 60
        elif duration == 0:
            # identical bounds means a full day
            duration = 24 * 60
        return duration

    @property
    def work_duration_minutes(self) -> int:
        total = self.duration_minutes
        if self.break_start is not None and self.break_end is not None:
            total -= max(0, _minutes(self.break_end) - _minutes(self.break_start))
        return max(0, total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "startTime": _format_time(self.start_time),
            "endTime": _format_time(self.end_time),
            "breakStart": _format_time(self.break_start),
            "breakEnd": _format_time(self.break_end),
            "colorHex": self.color_hex,
            "isRestPeriod": self.is_rest_period,
            "isUserDefined": self.is_user_defined,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShiftType':
        return cls(
            id=data.get("id"),
            name=data["name"],
            description=data.get("description", ""),
            start_time=_parse_time(data.get("startTime")),
            end_time=_parse_time(data.get("endTime")),
            break_start=_parse_time(data.get("breakStart")),
            break_end=_parse_time(data.get("breakEnd")),
            color_hex=data.get("colorHex", "#9E9E9E"),
            is_rest_period=data.get("isRestPeriod", False),
            is_user_defined=data.get("isUserDefined", True),
            is_active=data.get("isActive", True),
        )


class TemplateType(Enum):
    FIXED = "fixed"
    CUSTOM = "custom"


@dataclass(frozen=True)
class TeamShiftAssignment:
    """One team's slot on one cycle day; shift_type None means rest"""
    team: str
    shift_type: Optional[str] = None

    @property
    def is_rest(self) -> bool:
        return self.shift_type is None

    def to_dict(self) -> Dict[str, Any]:
        return {"team": self.team, "shiftType": self.shift_type}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TeamShiftAssignment':
        return cls(team=data["team"], shift_type=data.get("shiftType"))


@dataclass(frozen=True)
class DayPattern:
    """Assignments stored for one offset of a custom cycle"""
    offset: int
    assignments: Tuple[TeamShiftAssignment, ...] = ()

    def teams(self) -> List[str]:
        return [assignment.team for assignment in self.assignments]

    def duplicate_teams(self) -> List[str]:
        seen = set()
        duplicates = []
        for team in self.teams():
            if team in seen and team not in duplicates:
                duplicates.append(team)
            seen.add(team)
        return duplicates

    def to_dict(self) -> Dict[str, Any]:
        return {"offset": self.offset, "assignments": [a.to_dict() for a in self.assignments]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DayPattern':
        return cls(
            offset=data["offset"],
            assignments=tuple(TeamShiftAssignment.from_dict(a) for a in data.get("assignments", [])),
        )


@dataclass(frozen=True)
class WorkScheduleTemplate:
    """
    Rotation template.

    CUSTOM templates store one DayPattern per cycle day. FIXED templates store
    the rotation parameters instead: every team follows the same personal
    pattern (work_days of each shift in shift_sequence, each block followed by
    rest_days) shifted by its phase.
    """
    name: str
    template_type: TemplateType
    cycle_days: int
    reference_date: date = date(2018, 11, 7)
    description: str = ""
    teams: Tuple[str, ...] = ()
    patterns: Tuple[DayPattern, ...] = ()
    phase_step: int = 0
    work_days: int = 0
    rest_days: int = 0
    shift_sequence: Tuple[str, ...] = ()
    team_phases: Tuple[int, ...] = ()
    continuous: bool = True
    is_user_defined: bool = True
    is_active: bool = True
    id: Optional[int] = None

    def rotation_pattern(self) -> List[Optional[str]]:
        """Personal cycle of a FIXED rotation, one shift name (or None) per position"""
        pattern: List[Optional[str]] = []
        for shift_name in self.shift_sequence:
            pattern.extend([shift_name] * self.work_days)
            pattern.extend([None] * self.rest_days)
        return pattern

    def phase_for(self, team_index: int) -> int:
        if self.team_phases:
            return self.team_phases[team_index] % self.cycle_days
        return (team_index * self.phase_step) % self.cycle_days

    def phases(self) -> List[int]:
        return [self.phase_for(index) for index in range(len(self.teams))]

    def roster(self) -> List[str]:
        """Every team known to the template, sorted"""
        teams = set(self.teams)
        for pattern in self.patterns:
            teams.update(pattern.teams())
        return sorted(teams)

    def referenced_shift_names(self) -> List[str]:
        names: List[str] = []
        candidates: Iterable[Optional[str]]
        if self.template_type == TemplateType.FIXED:
            candidates = self.shift_sequence
        else:
            candidates = (a.shift_type for p in self.patterns for a in p.assignments)
        for name in candidates:
            if name is not None and name not in names:
                names.append(name)
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.template_type.value,
            "cycleDays": self.cycle_days,
            "referenceDate": self.reference_date.isoformat(),
            "description": self.description,
            "teams": list(self.teams),
            "patterns": [p.to_dict() for p in self.patterns],
            "phaseStep": self.phase_step,
            "workDays": self.work_days,
            "restDays": self.rest_days,
            "shiftSequence": list(self.shift_sequence),
            "teamPhases": list(self.team_phases),
            "continuous": self.continuous,
            "isUserDefined": self.is_user_defined,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkScheduleTemplate':
        return cls(
            id=data.get("id"),
            name=data["name"],
            template_type=TemplateType(data["type"]),
            cycle_days=data["cycleDays"],
            reference_date=date.fromisoformat(data.get("referenceDate", "2018-11-07")),
            description=data.get("description", ""),
            teams=tuple(data.get("teams", [])),
            patterns=tuple(DayPattern.from_dict(p) for p in data.get("patterns", [])),
            phase_step=data.get("phaseStep", 0),
            work_days=data.get("workDays", 0),
            rest_days=data.get("restDays", 0),
            shift_sequence=tuple(data.get("shiftSequence", [])),
            team_phases=tuple(data.get("teamPhases", [])),
            continuous=data.get("continuous", True),
            is_user_defined=data.get("isUserDefined", True),
            is_active=data.get("isActive", True),
        )


class ExceptionType(Enum):
    VACATION = "VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    OVERTIME = "OVERTIME"
    PERMIT = "PERMIT"
    PERMIT_104 = "PERMIT_104"
    PERMIT_SYNDICATE = "PERMIT_SYNDICATE"
    TRAINING = "TRAINING"
    PERSONAL_LEAVE = "PERSONAL_LEAVE"
    COMPENSATION = "COMPENSATION"
    SHIFT_SWAP = "SHIFT_SWAP"
    EMERGENCY = "EMERGENCY"
    OTHER = "OTHER"

    @property
    def display_name(self) -> str:
        return EXCEPTION_DISPLAY_NAMES[self]

    @property
    def category(self) -> 'ExceptionCategory':
        return EXCEPTION_CATEGORIES[self]


class ExceptionCategory(Enum):
    ABSENCE = "absence"
    ADDITIONAL_WORK = "additional_work"
    ADJUSTMENT = "adjustment"
    TRAINING = "training"
    OTHER = "other"


class ExceptionStatus(Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


EXCEPTION_CATEGORIES: Dict[ExceptionType, ExceptionCategory] = {
    ExceptionType.VACATION: ExceptionCategory.ABSENCE,
    ExceptionType.SICK_LEAVE: ExceptionCategory.ABSENCE,
    ExceptionType.PERSONAL_LEAVE: ExceptionCategory.ABSENCE,
    ExceptionType.PERMIT: ExceptionCategory.ABSENCE,
    ExceptionType.PERMIT_104: ExceptionCategory.ABSENCE,
    ExceptionType.PERMIT_SYNDICATE: ExceptionCategory.ABSENCE,
    ExceptionType.OVERTIME: ExceptionCategory.ADDITIONAL_WORK,
    ExceptionType.EMERGENCY: ExceptionCategory.ADDITIONAL_WORK,
    ExceptionType.SHIFT_SWAP: ExceptionCategory.ADJUSTMENT,
    ExceptionType.COMPENSATION: ExceptionCategory.ADJUSTMENT,
    ExceptionType.TRAINING: ExceptionCategory.TRAINING,
    ExceptionType.OTHER: ExceptionCategory.OTHER,
}

EXCEPTION_DISPLAY_NAMES: Dict[ExceptionType, str] = {
    ExceptionType.VACATION: "Ferie",
    ExceptionType.SICK_LEAVE: "Malattia",
    ExceptionType.OVERTIME: "Straordinario",
    ExceptionType.PERMIT: "Permesso",
    ExceptionType.PERMIT_104: "Permesso 104",
    ExceptionType.PERMIT_SYNDICATE: "Permesso sindacale",
    ExceptionType.TRAINING: "Formazione",
    ExceptionType.PERSONAL_LEAVE: "Permesso personale",
    ExceptionType.COMPENSATION: "Recupero",
    ExceptionType.SHIFT_SWAP: "Cambio turno",
    ExceptionType.EMERGENCY: "Emergenza",
    ExceptionType.OTHER: "Altro",
}


@dataclass(frozen=True)
class TurnException:
    """A user-and-date specific override of the base pattern"""
    user_id: int
    date: date
    exception_type: ExceptionType
    original_shift_type: str = ""
    replacement_shift_type: Optional[str] = None
    status: ExceptionStatus = ExceptionStatus.ACTIVE
    notes: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    modified_at: Optional[datetime] = None

    def is_reversible(self) -> bool:
        return bool(self.original_shift_type and self.original_shift_type.strip())

    def is_active(self) -> bool:
        return self.status == ExceptionStatus.ACTIVE

    def affects_work_schedule(self) -> bool:
        return EXCEPTION_CATEGORIES[self.exception_type] == ExceptionCategory.ABSENCE

    def effective_shift_type(self) -> Optional[str]:
        if self.affects_work_schedule():
            return None
        return self.replacement_shift_type or self.original_shift_type or None

    def with_changes(self, **changes) -> 'TurnException':
        """Replacement copy with modified_at bumped"""
        changes.setdefault("modified_at", datetime.now())
        return replace(self, **changes)

    def cancelled(self) -> 'TurnException':
        return self.with_changes(status=ExceptionStatus.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "date": self.date.isoformat(),
            "exceptionType": self.exception_type.value,
            "originalShiftType": self.original_shift_type,
            "replacementShiftType": self.replacement_shift_type,
            "status": self.status.value,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat(),
            "modifiedAt": self.modified_at.isoformat() if self.modified_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TurnException':
        modified_at = data.get("modifiedAt")
        return cls(
            id=data["id"],
            user_id=data["userId"],
            date=date.fromisoformat(data["date"]),
            exception_type=ExceptionType(data["exceptionType"]),
            original_shift_type=data.get("originalShiftType") or "",
            replacement_shift_type=data.get("replacementShiftType"),
            status=ExceptionStatus(data.get("status", "ACTIVE")),
            notes=data.get("notes", ""),
            created_at=datetime.fromisoformat(data["createdAt"]),
            modified_at=datetime.fromisoformat(modified_at) if modified_at else None,
        )


PREDEFINED_SHIFT_TYPES: Tuple[ShiftType, ...] = (
    ShiftType(id=1, name="Mattino", description="Turno mattutino 05:00-13:00",
              start_time=time(5, 0), end_time=time(13, 0), color_hex="#2196F3",
              is_user_defined=False),
    ShiftType(id=2, name="Pomeriggio", description="Turno pomeridiano 13:00-21:00",
              start_time=time(13, 0), end_time=time(21, 0), color_hex="#FF9800",
              is_user_defined=False),
    ShiftType(id=3, name="Notte", description="Turno notturno 21:00-05:00",
              start_time=time(21, 0), end_time=time(5, 0), color_hex="#9C27B0",
              is_user_defined=False),
    ShiftType(id=4, name="Riposo", description="Giorno di riposo",
              color_hex="#9E9E9E", is_rest_period=True, is_user_defined=False),
    ShiftType(id=5, name="Giornaliero", description="Turno giornaliero 08:00-17:00 con pausa pranzo",
              start_time=time(8, 0), end_time=time(17, 0), break_start=time(12, 0),
              break_end=time(13, 0), color_hex="#4CAF50", is_user_defined=False),
)

# Rotation order A,B,G,F,E,I,D,C,H with a two-day step reproduces the classic
# 18-day "quattro-due" table: two teams per shift, three resting.
PREDEFINED_TEMPLATES: Tuple[WorkScheduleTemplate, ...] = (
    WorkScheduleTemplate(
        id=1,
        name="4-2 Continuo",
        template_type=TemplateType.FIXED,
        cycle_days=18,
        reference_date=date(2018, 11, 7),
        description="Schema continuo 4 giorni lavoro + 2 giorni riposo",
        teams=("A", "B", "G", "F", "E", "I", "D", "C", "H"),
        phase_step=2,
        work_days=4,
        rest_days=2,
        shift_sequence=("Mattino", "Notte", "Pomeriggio"),
        is_user_defined=False,
    ),
)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "appVersion": "1.0.0",
    "overlayStatuses": [ExceptionStatus.ACTIVE.value, ExceptionStatus.APPROVED.value],
    "maxWorkers": 4,
    "defaultTemplateType": TemplateType.FIXED.value,
}


def validate_shift_type(shift_type: ShiftType) -> ValidationResult:
    """Check a shift type against the registry business rules"""
    result = ValidationResult()

    if not shift_type.name or not shift_type.name.strip():
        result.errors.append("Shift type name is required")
    elif len(shift_type.name) > MAX_SHIFT_NAME_LENGTH:
        result.errors.append(f"Shift type name cannot exceed {MAX_SHIFT_NAME_LENGTH} characters")

    if not shift_type.color_hex or not HEX_COLOR_PATTERN.match(shift_type.color_hex):
        result.errors.append("Valid hex color code is required (e.g., #FF5733)")

    if not shift_type.is_rest_period:
        if shift_type.start_time is None:
            result.errors.append("Start time is required for work shifts")
        if shift_type.end_time is None:
            result.errors.append("End time is required for work shifts")

        if shift_type.start_time is not None and shift_type.end_time is not None:
            duration = shift_type.duration_minutes
            if duration < MIN_SHIFT_MINUTES:
                result.errors.append(f"Shift duration must be at least {MIN_SHIFT_MINUTES} minutes")
            elif duration < SHORT_SHIFT_WARNING_MINUTES:
                result.warnings.append("Shift duration is less than 1 hour")
            if duration > MAX_SHIFT_MINUTES:
                result.errors.append("Shift duration cannot exceed 24 hours")
            elif duration > LONG_SHIFT_WARNING_MINUTES:
                result.warnings.append("Shift duration exceeds 12 hours")

    if shift_type.has_break:
        if shift_type.break_start is None:
            result.errors.append("Break start time is required when a break is set")
        if shift_type.break_end is None:
            result.errors.append("Break end time is required when a break is set")
        if (shift_type.break_start is not None and shift_type.break_end is not None
                and not shift_type.break_start < shift_type.break_end):
            result.errors.append("Break start time must be before break end time")

    return result


def rotation_coverage(pattern: Sequence[Optional[str]], phases: Sequence[int]) -> Dict[Tuple[int, str], int]:
    """Teams on each (cycle offset, shift) for a fixed rotation"""
    cycle = len(pattern)
    coverage: Dict[Tuple[int, str], int] = {}
    shifts = [name for name in dict.fromkeys(pattern) if name is not None]
    for offset in range(cycle):
        for shift_name in shifts:
            coverage[(offset, shift_name)] = 0
        for phase in phases:
            shift_name = pattern[(offset + phase) % cycle]
            if shift_name is not None:
                coverage[(offset, shift_name)] += 1
    return coverage


def _validate_fixed_template(template: WorkScheduleTemplate, result: ValidationResult):
    errors_before = len(result.errors)
    if not template.teams:
        result.errors.append("A fixed rotation needs at least one team")
    elif len(set(template.teams)) != len(template.teams):
        result.errors.append("Each team can appear only once in a fixed rotation")

    if template.work_days <= 0:
        result.errors.append("Work block length must be positive")
    if template.rest_days < 0:
        result.errors.append("Rest block length cannot be negative")
    if not template.shift_sequence:
        result.errors.append("A fixed rotation needs at least one shift in its sequence")
    if len(result.errors) > errors_before:
        return

    expected_cycle = len(template.shift_sequence) * (template.work_days + template.rest_days)
    if template.cycle_days != expected_cycle:
        result.errors.append(
            f"Cycle length {template.cycle_days} does not match the rotation blocks ({expected_cycle} days)"
        )
        return

    if template.team_phases:
        if len(template.team_phases) != len(template.teams):
            result.errors.append("Explicit phases must list exactly one phase per team")
            return
        if any(phase < 0 or phase >= template.cycle_days for phase in template.team_phases):
            result.errors.append("Explicit phases must lie within the cycle")
            return
    elif template.phase_step <= 0:
        result.errors.append("Phase step must be positive")
        return

    if template.continuous:
        coverage = rotation_coverage(template.rotation_pattern(), template.phases())
        gaps = sorted((offset, name) for (offset, name), count in coverage.items() if count == 0)
        if gaps:
            offset, name = gaps[0]
            result.errors.append(
                f"Rotation leaves '{name}' uncovered on cycle day {offset + 1} "
                f"({len(gaps)} uncovered slots in total)"
            )


def _validate_custom_template(template: WorkScheduleTemplate, result: ValidationResult):
    if len(template.patterns) != template.cycle_days:
        result.errors.append(
            f"Custom template needs one pattern per cycle day ({len(template.patterns)}/{template.cycle_days})"
        )
    for index, pattern in enumerate(template.patterns):
        if pattern.offset != index:
            result.errors.append(f"Pattern at position {index} declares offset {pattern.offset}")
        duplicates = pattern.duplicate_teams()
        if duplicates:
            result.errors.append(
                f"Teams assigned twice on cycle day {index + 1}: {', '.join(duplicates)}"
            )


def validate_template(template: WorkScheduleTemplate) -> ValidationResult:
    """Check a rotation template against the business rules"""
    result = ValidationResult()

    if not template.name or not template.name.strip():
        result.errors.append("Template name is required")
    if not isinstance(template.template_type, TemplateType):
        result.errors.append("Template type is required")
        return result

    if template.cycle_days <= 0:
        result.errors.append("Cycle days must be greater than 0")
        return result
    if template.cycle_days > LONG_CYCLE_WARNING_DAYS:
        result.warnings.append(f"Cycle of {template.cycle_days} days is longer than one year")

    if template.template_type == TemplateType.FIXED:
        _validate_fixed_template(template, result)
    else:
        _validate_custom_template(template, result)
    return result


class ShiftTypeLookup(ABC):
    """Read access to the shift type registry"""

    @abstractmethod
    def get_shift_type_by_name(self, name: str) -> Optional[ShiftType]:
        pass

    @abstractmethod
    def get_shift_type_by_id(self, shift_type_id: int) -> Optional[ShiftType]:
        pass

    @abstractmethod
    def get_active_shift_types(self) -> List[ShiftType]:
        pass


class TurnExceptionStore(ABC):
    """Read access to stored turn exceptions"""

    @abstractmethod
    def get_exceptions_for_user_and_range(self, user_id: int, start: date, end: date) -> List[TurnException]:
        pass


class TemplateStore(ABC):
    """Read access to the rotation template registry"""

    @abstractmethod
    def get_predefined_templates(self) -> List[WorkScheduleTemplate]:
        pass

    @abstractmethod
    def get_template_by_id(self, template_id: int) -> Optional[WorkScheduleTemplate]:
        pass

    @abstractmethod
    def get_template_by_type(self, template_type: TemplateType) -> Optional[WorkScheduleTemplate]:
        pass


class DataManager(ShiftTypeLookup, TurnExceptionStore, TemplateStore):
    """Manages data persistence and CRUD operations for the rotation registries"""

    def __init__(self, data_file: str = "data/rotation_data.json"):
        if data_file == "data/rotation_data.json":
            # Use path relative to the package directory
            data_file = Path(__file__).parent.parent / "data" / "rotation_data.json"
        self.data_file = Path(data_file)
        # Single writer; readers take the current tuple reference without locking
        self._write_lock = threading.RLock()
        self._shift_types: Tuple[ShiftType, ...] = ()
        self._templates: Tuple[WorkScheduleTemplate, ...] = ()
        self._exceptions: Tuple[TurnException, ...] = ()
        self.settings: Dict[str, Any] = {}
        self._apply_data(self._load_or_create_data())

    # Loading and saving
    def _load_or_create_data(self) -> Dict[str, Any]:
        """Load existing data or create default structure with recovery from backup"""
        backup_file = self.data_file.with_suffix('.bak')
        if self.data_file.exists():
            try:
                with open(self.data_file, 'r', encoding='utf-8') as f:
                    return self._validate_and_migrate_data(json.load(f))
            except (json.JSONDecodeError, IOError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Error loading main data file {self.data_file}: {e}")
                if not backup_file.exists():
                    raise DataFileCorruptedError(f"Main data file corrupted and no backup available: {e}")
                return self._recover_from_backup(backup_file)
        if backup_file.exists():
            logger.info(f"Main data file missing, attempting recovery from backup {backup_file}")
            return self._recover_from_backup(backup_file)
        logger.info("No data file found, creating default data")
        return self._create_default_data()

    def _recover_from_backup(self, backup_file: Path) -> Dict[str, Any]:
        try:
            with open(backup_file, 'r', encoding='utf-8') as f:
                data = self._validate_and_migrate_data(json.load(f))
            backup_file.replace(self.data_file)
            logger.info("Successfully recovered data from backup")
            return data
        except (json.JSONDecodeError, IOError, KeyError, TypeError, ValueError) as backup_e:
            logger.error(f"Backup file also corrupted: {backup_e}")
            logger.info("Creating default data due to corrupted files")
            return self._create_default_data()

    def _create_default_data(self) -> Dict[str, Any]:
        """Create default structure; predefined data is seeded from code"""
        settings = dict(DEFAULT_SETTINGS)
        settings["dataFile"] = str(self.data_file)
        return {
            "settings": settings,
            "shift_types": [],
            "templates": [],
            "turn_exceptions": [],
        }

    def _validate_and_migrate_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Ensure all sections exist and entries parse"""
        default_data = self._create_default_data()
        for key in default_data:
            if key not in data:
                data[key] = default_data[key]
        for key, value in default_data["settings"].items():
            data["settings"].setdefault(key, value)

        # Predefined entries always come from code
        data["shift_types"] = [s for s in data["shift_types"] if s.get("isUserDefined", True)]
        data["templates"] = [t for t in data["templates"] if t.get("isUserDefined", True)]

        # Parse eagerly so a malformed file is detected at load time
        for entry in data["shift_types"]:
            ShiftType.from_dict(entry)
        for entry in data["templates"]:
            WorkScheduleTemplate.from_dict(entry)

        # A bad exception record only loses itself, not the whole file
        valid_exceptions = []
        for entry in data["turn_exceptions"]:
            try:
                TurnException.from_dict(entry)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                entry_id = entry.get("id") if isinstance(entry, dict) else entry
                logger.warning(f"Dropping malformed turn exception {entry_id!r}: {e}")
                continue
            valid_exceptions.append(entry)
        data["turn_exceptions"] = valid_exceptions
        return data

    def _apply_data(self, data: Dict[str, Any]):
        self.settings = data["settings"]
        self._shift_types = PREDEFINED_SHIFT_TYPES + tuple(
            replace(ShiftType.from_dict(s), is_user_defined=True) for s in data["shift_types"]
        )
        self._templates = PREDEFINED_TEMPLATES + tuple(
            replace(WorkScheduleTemplate.from_dict(t), is_user_defined=True) for t in data["templates"]
        )
        self._exceptions = tuple(TurnException.from_dict(e) for e in data["turn_exceptions"])

    def _prepare_data_for_json(self) -> Dict[str, Any]:
        """Prepare data for JSON serialization; predefined entries are not written"""
        return {
            "settings": dict(self.settings),
            "shift_types": [s.to_dict() for s in self._shift_types if s.is_user_defined],
            "templates": [t.to_dict() for t in self._templates if t.is_user_defined],
            "turn_exceptions": [e.to_dict() for e in self._exceptions],
        }

    def _validate_saved_data(self) -> bool:
        """Validate that the saved data file matches current data"""
        try:
            if not self.data_file.exists():
                raise DataFileNotFoundError(f"Saved data file {self.data_file} does not exist")

            with open(self.data_file, 'r', encoding='utf-8') as f:
                saved_data = json.load(f)

            for key in ["settings", "shift_types", "templates", "turn_exceptions"]:
                if key not in saved_data:
                    raise DataValidationError(f"Required section '{key}' missing from saved data")

            if saved_data["settings"].get("appVersion") != self.settings.get("appVersion"):
                raise DataValidationError("App version mismatch in saved data")

            return True

        except (json.JSONDecodeError, IOError) as e:
            raise DataValidationError(f"Failed to validate saved data: {e}")

    def save_data(self) -> bool:
        """Save current data to file atomically with validation"""
        temp_file = None
        backup_file = self.data_file.with_suffix('.bak')

        with self._write_lock:
            try:
                self.data_file.parent.mkdir(parents=True, exist_ok=True)
                if self.data_file.exists():
                    self.data_file.replace(backup_file)

                temp_file = self.data_file.with_suffix('.tmp')
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(self._prepare_data_for_json(), f, indent=2, ensure_ascii=False)

                temp_file.replace(self.data_file)
                self._validate_saved_data()
                return True

            except DataValidationError as e:
                logger.error(f"Data validation failed after save: {e}", exc_info=True)
                if backup_file.exists():
                    try:
                        backup_file.replace(self.data_file)
                    except OSError as restore_e:
                        logger.error(f"Failed to restore from backup: {restore_e}", exc_info=True)
                raise DataSaveError(f"Save operation failed validation: {e}")

            except (IOError, OSError) as e:
                logger.error(f"I/O error during save operation: {e}", exc_info=True)
                raise DataSaveError(f"Failed to save data due to I/O error: {e}")

            finally:
                if temp_file and temp_file.exists():
                    try:
                        temp_file.unlink()
                    except OSError as cleanup_e:
                        logger.error(f"Failed to clean up temporary file {temp_file}: {cleanup_e}", exc_info=True)

    # Settings Management
    def get_setting(self, key: str, default=None):
        """Get application setting"""
        return self.settings.get(key, default)

    def set_setting(self, key: str, value):
        """Set application setting"""
        with self._write_lock:
            self.settings = {**self.settings, key: value}

    # Shift Type Registry
    def get_shift_types(self, active_only: bool = True) -> List[ShiftType]:
        return [s for s in self._shift_types if s.is_active or not active_only]

    def get_active_shift_types(self) -> List[ShiftType]:
        return self.get_shift_types(active_only=True)

    def get_shift_type_by_name(self, name: str) -> Optional[ShiftType]:
        for shift_type in self._shift_types:
            if shift_type.name == name:
                return shift_type
        return None

    def get_shift_type_by_id(self, shift_type_id: int) -> Optional[ShiftType]:
        for shift_type in self._shift_types:
            if shift_type.id == shift_type_id:
                return shift_type
        return None

    def is_shift_type_name_available(self, name: str, exclude_id: Optional[int] = None) -> bool:
        """Case-sensitive check against active and inactive shift types"""
        return not any(s.name == name.strip() and s.id != exclude_id for s in self._shift_types)

    def create_shift_type(self, shift_type: ShiftType) -> OperationResult:
        """Add a user-defined shift type"""
        validation = validate_shift_type(shift_type)
        if not validation.is_valid:
            logger.warning(f"Shift type '{shift_type.name}' failed validation: {validation.errors}")
            return OperationResult.failure(ErrorType.VALIDATION_FAILED, "Shift type validation failed",
                                           validation.errors, validation.warnings)

        with self._write_lock:
            if not self.is_shift_type_name_available(shift_type.name):
                logger.warning(f"Shift type name already exists: {shift_type.name}")
                return OperationResult.failure(ErrorType.NAME_CONFLICT,
                                               f"Shift type name '{shift_type.name}' already exists")

            next_id = max((s.id or 0 for s in self._shift_types), default=0) + 1
            created = replace(shift_type, id=next_id, name=shift_type.name.strip(), is_user_defined=True)
            self._shift_types = self._shift_types + (created,)

        logger.info(f"Created shift type {created.name} (id={created.id})")
        return OperationResult.ok(created, "Shift type created", validation.warnings)

    def update_shift_type(self, shift_type: ShiftType) -> OperationResult:
        """Replace a user-defined shift type with the same id"""
        with self._write_lock:
            existing = self.get_shift_type_by_id(shift_type.id) if shift_type.id is not None else None
            if existing is None:
                return OperationResult.failure(ErrorType.SHIFT_TYPE_NOT_FOUND,
                                               f"Shift type {shift_type.id} not found")
            if not existing.is_user_defined:
                return OperationResult.failure(ErrorType.IMMUTABLE_RESOURCE,
                                               f"Predefined shift type '{existing.name}' cannot be modified")

            validation = validate_shift_type(shift_type)
            if not validation.is_valid:
                return OperationResult.failure(ErrorType.VALIDATION_FAILED, "Shift type validation failed",
                                               validation.errors, validation.warnings)
            if not self.is_shift_type_name_available(shift_type.name, exclude_id=existing.id):
                return OperationResult.failure(ErrorType.NAME_CONFLICT,
                                               f"Shift type name '{shift_type.name}' already exists")
            if shift_type.name.strip() != existing.name and self._templates_referencing(existing.name):
                return OperationResult.failure(ErrorType.RESOURCE_IN_USE,
                                               f"Shift type '{existing.name}' is referenced by a template")

            updated = replace(shift_type, name=shift_type.name.strip(), is_user_defined=True)
            self._shift_types = tuple(updated if s.id == existing.id else s for s in self._shift_types)

        return OperationResult.ok(updated, "Shift type updated", validation.warnings)

    def deactivate_shift_type(self, shift_type_id: int) -> OperationResult:
        """Soft delete a user-defined shift type"""
        with self._write_lock:
            existing = self.get_shift_type_by_id(shift_type_id)
            if existing is None:
                return OperationResult.failure(ErrorType.SHIFT_TYPE_NOT_FOUND,
                                               f"Shift type {shift_type_id} not found")
            if not existing.is_user_defined:
                return OperationResult.failure(ErrorType.IMMUTABLE_RESOURCE,
                                               f"Predefined shift type '{existing.name}' cannot be deactivated")
            deactivated = replace(existing, is_active=False)
            self._shift_types = tuple(deactivated if s.id == shift_type_id else s for s in self._shift_types)
        return OperationResult.ok(deactivated, "Shift type deactivated")

    def delete_shift_type(self, shift_type_id: int) -> OperationResult:
        """Hard delete, refused while any template references the shift type"""
        with self._write_lock:
            existing = self.get_shift_type_by_id(shift_type_id)
            if existing is None:
                return OperationResult.failure(ErrorType.SHIFT_TYPE_NOT_FOUND,
                                               f"Shift type {shift_type_id} not found")
            if not existing.is_user_defined:
                return OperationResult.failure(ErrorType.IMMUTABLE_RESOURCE,
                                               f"Predefined shift type '{existing.name}' cannot be deleted")
            referencing = self._templates_referencing(existing.name)
            if referencing:
                return OperationResult.failure(
                    ErrorType.RESOURCE_IN_USE,
                    f"Shift type '{existing.name}' is used by: {', '.join(t.name for t in referencing)}"
                )
            self._shift_types = tuple(s for s in self._shift_types if s.id != shift_type_id)
        return OperationResult.ok(existing, "Shift type deleted")

    def _templates_referencing(self, shift_name: str) -> List[WorkScheduleTemplate]:
        return [t for t in self._templates if shift_name in t.referenced_shift_names()]

    def get_shift_type_statistics(self) -> Dict[str, int]:
        shift_types = self._shift_types
        active = [s for s in shift_types if s.is_active]
        return {
            "total_active": len(active),
            "predefined": sum(1 for s in active if not s.is_user_defined),
            "user_defined": sum(1 for s in active if s.is_user_defined),
            "rest_periods": sum(1 for s in active if s.is_rest_period),
            "work_shifts": sum(1 for s in active if not s.is_rest_period),
            "deactivated": len(shift_types) - len(active),
        }

    # Template Registry
    def get_predefined_templates(self) -> List[WorkScheduleTemplate]:
        return [t for t in self._templates if not t.is_user_defined]

    def get_custom_templates(self, active_only: bool = True) -> List[WorkScheduleTemplate]:
        return [t for t in self._templates if t.is_user_defined and (t.is_active or not active_only)]

    def get_available_templates(self) -> List[WorkScheduleTemplate]:
        return [t for t in self._templates if t.is_active]

    def get_template_by_id(self, template_id: int) -> Optional[WorkScheduleTemplate]:
        for template in self._templates:
            if template.id == template_id:
                return template
        return None

    def get_template_by_type(self, template_type: TemplateType) -> Optional[WorkScheduleTemplate]:
        """Predefined template of the type first, then the first active custom one"""
        candidates = [t for t in self._templates if t.template_type == template_type and t.is_active]
        candidates.sort(key=lambda t: (t.is_user_defined, t.id or 0))
        return candidates[0] if candidates else None

    def create_custom_template(self, template: WorkScheduleTemplate) -> OperationResult:
        validation = validate_template(template)
        if not validation.is_valid:
            logger.warning(f"Template '{template.name}' failed validation: {validation.errors}")
            return OperationResult.failure(ErrorType.VALIDATION_FAILED, "Template validation failed",
                                           validation.errors, validation.warnings)

        with self._write_lock:
            if any(t.name == template.name for t in self._templates):
                return OperationResult.failure(ErrorType.NAME_CONFLICT,
                                               f"Template name '{template.name}' already exists")
            missing = [n for n in template.referenced_shift_names() if self.get_shift_type_by_name(n) is None]
            if missing:
                return OperationResult.failure(ErrorType.SHIFT_TYPE_NOT_FOUND,
                                               f"Unknown shift types: {', '.join(missing)}")

            next_id = max((t.id or 0 for t in self._templates), default=0) + 1
            created = replace(template, id=next_id, is_user_defined=True)
            self._templates = self._templates + (created,)

        logger.info(f"Created template {created.name} (id={created.id}, type={created.template_type.value})")
        return OperationResult.ok(created, "Template created", validation.warnings)

    def update_custom_template(self, template: WorkScheduleTemplate) -> OperationResult:
        with self._write_lock:
            existing = self.get_template_by_id(template.id) if template.id is not None else None
            if existing is None:
                return OperationResult.failure(ErrorType.NOT_FOUND, f"Template {template.id} not found")
            if not existing.is_user_defined:
                return OperationResult.failure(ErrorType.IMMUTABLE_RESOURCE,
                                               f"Predefined template '{existing.name}' cannot be modified")

            validation = validate_template(template)
            if not validation.is_valid:
                return OperationResult.failure(ErrorType.VALIDATION_FAILED, "Template validation failed",
                                               validation.errors, validation.warnings)
            if any(t.name == template.name and t.id != existing.id for t in self._templates):
                return OperationResult.failure(ErrorType.NAME_CONFLICT,
                                               f"Template name '{template.name}' already exists")
            missing = [n for n in template.referenced_shift_names() if self.get_shift_type_by_name(n) is None]
            if missing:
                return OperationResult.failure(ErrorType.SHIFT_TYPE_NOT_FOUND,
                                               f"Unknown shift types: {', '.join(missing)}")

            updated = replace(template, is_user_defined=True)
            self._templates = tuple(updated if t.id == existing.id else t for t in self._templates)
        return OperationResult.ok(updated, "Template updated", validation.warnings)

    def deactivate_custom_template(self, template_id: int) -> OperationResult:
        with self._write_lock:
            existing = self.get_template_by_id(template_id)
            if existing is None:
                return OperationResult.failure(ErrorType.NOT_FOUND, f"Template {template_id} not found")
            if not existing.is_user_defined:
                return OperationResult.failure(ErrorType.IMMUTABLE_RESOURCE,
                                               f"Predefined template '{existing.name}' cannot be deactivated")
            deactivated = replace(existing, is_active=False)
            self._templates = tuple(deactivated if t.id == template_id else t for t in self._templates)
        return OperationResult.ok(deactivated, "Template deactivated")

    # Turn Exception Store
    def get_turn_exception(self, exception_id: str) -> Optional[TurnException]:
        for exception in self._exceptions:
            if exception.id == exception_id:
                return exception
        return None

    def get_exceptions_for_user_and_range(self, user_id: int, start: date, end: date) -> List[TurnException]:
        """All of a user's exceptions dated within [start, end], any status"""
        found = [e for e in self._exceptions if e.user_id == user_id and start <= e.date <= end]
        return sorted(found, key=lambda e: (e.date, e.created_at))

    def get_exceptions_for_date(self, day: date) -> List[TurnException]:
        return [e for e in self._exceptions if e.date == day]

    def add_turn_exception(self, exception: TurnException) -> OperationResult:
        """Store an exception; one per (user, date) unless the existing one is cancelled"""
        if not isinstance(exception.exception_type, ExceptionType):
            return OperationResult.failure(ErrorType.VALIDATION_FAILED,
                                           f"Unknown exception type: {exception.exception_type!r}")
        with self._write_lock:
            existing = [e for e in self._exceptions
                        if e.user_id == exception.user_id and e.date == exception.date]
            if any(e.status != ExceptionStatus.CANCELLED for e in existing):
                logger.warning(f"User {exception.user_id} already has an exception on {exception.date}")
                return OperationResult.failure(
                    ErrorType.EXCEPTION_CONFLICT,
                    f"User {exception.user_id} already has an exception on {exception.date.isoformat()}"
                )
            self._exceptions = tuple(e for e in self._exceptions if e not in existing) + (exception,)

        logger.info(f"Added {exception.exception_type.value} exception for user {exception.user_id} "
                    f"on {exception.date.isoformat()}")
        return OperationResult.ok(exception, "Exception added")

    def update_turn_exception(self, exception: TurnException) -> OperationResult:
        """Replace the stored record with the same id and bump modified_at"""
        with self._write_lock:
            existing = self.get_turn_exception(exception.id)
            if existing is None:
                return OperationResult.failure(ErrorType.NOT_FOUND, f"Exception {exception.id} not found")
            clash = [e for e in self._exceptions
                     if e.id != exception.id and e.user_id == exception.user_id
                     and e.date == exception.date and e.status != ExceptionStatus.CANCELLED]
            if clash:
                return OperationResult.failure(
                    ErrorType.EXCEPTION_CONFLICT,
                    f"User {exception.user_id} already has an exception on {exception.date.isoformat()}"
                )
            updated = exception.with_changes()
            self._exceptions = tuple(updated if e.id == exception.id else e for e in self._exceptions)
        return OperationResult.ok(updated, "Exception updated")

    def set_exception_status(self, exception_id: str, status: ExceptionStatus) -> OperationResult:
        with self._write_lock:
            existing = self.get_turn_exception(exception_id)
            if existing is None:
                return OperationResult.failure(ErrorType.NOT_FOUND, f"Exception {exception_id} not found")
            updated = existing.with_changes(status=status)
            self._exceptions = tuple(updated if e.id == exception_id else e for e in self._exceptions)
        logger.info(f"Exception {exception_id} moved to {status.value}")
        return OperationResult.ok(updated, f"Exception {status.value.lower()}")

    def cancel_turn_exception(self, exception_id: str) -> OperationResult:
        """Logical delete; the base pattern shows again on the next generation"""
        return self.set_exception_status(exception_id, ExceptionStatus.CANCELLED)

    def remove_turn_exception(self, exception_id: str) -> OperationResult:
        with self._write_lock:
            existing = self.get_turn_exception(exception_id)
            if existing is None:
                return OperationResult.failure(ErrorType.NOT_FOUND, f"Exception {exception_id} not found")
            self._exceptions = tuple(e for e in self._exceptions if e.id != exception_id)
        return OperationResult.ok(existing, "Exception removed")
