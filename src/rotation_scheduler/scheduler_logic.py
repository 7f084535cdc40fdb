"""
Scheduler Logic for Rotation Scheduling System

Expands rotation templates into dated work schedule events and overlays
user-specific turn exceptions on top of the base pattern.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import date, timedelta, time as dt_time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from abc import ABC, abstractmethod
import calendar
import logging
import threading
import time

from .data_manager import (
    DataManager,
    ErrorType,
    ExceptionStatus,
    ExceptionType,
    OperationResult,
    ShiftType,
    ShiftTypeLookup,
    TeamShiftAssignment,
    TemplateStore,
    TemplateType,
    TurnException,
    TurnExceptionStore,
    WorkScheduleTemplate,
    validate_template,
)

logger = logging.getLogger(__name__)

DEFAULT_OVERLAY_STATUSES = (ExceptionStatus.ACTIVE, ExceptionStatus.APPROVED)
DEFAULT_NEXT_SHIFT_HORIZON_DAYS = 30


class EventSource(Enum):
    BASE_PATTERN = "base_pattern"
    EXCEPTION_OVERRIDE = "exception_override"


@dataclass(frozen=True)
class WorkScheduleEvent:
    """A single generated day slot, already merged with any exception"""
    date: date
    shift_type: Optional[str]
    assigned_teams: Tuple[str, ...]
    is_rest_period: bool
    duration_minutes: int = 0
    start_time: Optional[dt_time] = None
    end_time: Optional[dt_time] = None
    source: EventSource = EventSource.BASE_PATTERN
    cycle_day: int = 0
    template_id: Optional[int] = None
    provider_name: str = ""
    user_id: Optional[int] = None
    exception_type: Optional[ExceptionType] = None
    exception_id: Optional[str] = None

    @property
    def is_override(self) -> bool:
        return self.source == EventSource.EXCEPTION_OVERRIDE

    def involves_team(self, team: str) -> bool:
        return team in self.assigned_teams

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "shiftType": self.shift_type,
            "assignedTeams": list(self.assigned_teams),
            "isRestPeriod": self.is_rest_period,
            "durationMinutes": self.duration_minutes,
            "startTime": self.start_time.strftime("%H:%M") if self.start_time else None,
            "endTime": self.end_time.strftime("%H:%M") if self.end_time else None,
            "source": self.source.value,
            "cycleDay": self.cycle_day,
            "templateId": self.template_id,
            "providerName": self.provider_name,
            "userId": self.user_id,
            "exceptionType": self.exception_type.value if self.exception_type else None,
            "exceptionId": self.exception_id,
        }


@dataclass
class ScheduleResult:
    """Result of schedule generation"""
    success: bool
    events: List[WorkScheduleEvent]
    message: str
    error: Optional[ErrorType] = None
    errors: List[str] = field(default_factory=list)

    def events_for_team(self, team: str) -> List[WorkScheduleEvent]:
        return [event for event in self.events if event.involves_team(team)]


@dataclass
class ScheduleStatistics:
    """Aggregate figures for a generated range"""
    total_events: int
    work_events: int
    rest_events: int
    events_by_team: Dict[str, int]
    events_by_shift_type: Dict[str, int]
    total_work_hours: float
    average_work_hours_per_day: float
    days_in_range: int


class ScheduleGenerationError(Exception):
    """Base exception for provider and generator failures"""
    error_type = ErrorType.GENERATION_FAILED

    def __init__(self, message: str, errors: Optional[List[str]] = None,
                 error_type: Optional[ErrorType] = None):
        super().__init__(message)
        self.errors = list(errors or [])
        if error_type is not None:
            self.error_type = error_type


class InvalidRangeError(ScheduleGenerationError):
    """Raised when a date range is missing a bound or is inverted"""
    error_type = ErrorType.INVALID_RANGE


class InvalidTemplateError(ScheduleGenerationError):
    """Raised when a template fails validation"""
    error_type = ErrorType.INVALID_TEMPLATE


class UnsupportedTemplateError(ScheduleGenerationError):
    """Raised when no provider handles the template type"""
    error_type = ErrorType.UNSUPPORTED_TEMPLATE


class ShiftTypeNotFoundError(ScheduleGenerationError):
    """Raised when a template references a shift name missing from the registry"""
    error_type = ErrorType.SHIFT_TYPE_NOT_FOUND


class GenerationCancelledError(ScheduleGenerationError):
    """Raised when the caller cancels a running generation"""
    error_type = ErrorType.CANCELLED


class CancellationToken:
    """Cooperative cancellation flag checked between generated days"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise GenerationCancelledError("Schedule generation was cancelled")


def cycle_offset(template: WorkScheduleTemplate, day: date) -> int:
    """Position of a date inside the template cycle, non-negative before the reference date"""
    return (day - template.reference_date).days % template.cycle_days


def check_range(start: Optional[date], end: Optional[date]):
    if start is None or end is None:
        raise InvalidRangeError("Both start and end dates are required")
    if start > end:
        raise InvalidRangeError(f"Start date {start.isoformat()} is after end date {end.isoformat()}")


def iter_days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def month_bounds(any_date: date) -> Tuple[date, date]:
    days_in_month = calendar.monthrange(any_date.year, any_date.month)[1]
    return any_date.replace(day=1), any_date.replace(day=days_in_month)


def calculate_statistics(events: Sequence[WorkScheduleEvent], start: date, end: date) -> ScheduleStatistics:
    """Aggregate counts and hours; teams are counted once per event they appear in"""
    events_by_team: Dict[str, int] = {}
    events_by_shift_type: Dict[str, int] = {}
    work_events = 0
    work_minutes = 0

    for event in events:
        for team in event.assigned_teams:
            events_by_team[team] = events_by_team.get(team, 0) + 1
        if event.shift_type is not None:
            events_by_shift_type[event.shift_type] = events_by_shift_type.get(event.shift_type, 0) + 1
        if not event.is_rest_period:
            work_events += 1
            work_minutes += event.duration_minutes

    days_in_range = (end - start).days + 1
    total_work_hours = work_minutes / 60
    return ScheduleStatistics(
        total_events=len(events),
        work_events=work_events,
        rest_events=len(events) - work_events,
        events_by_team=dict(sorted(events_by_team.items())),
        events_by_shift_type=dict(sorted(events_by_shift_type.items())),
        total_work_hours=total_work_hours,
        average_work_hours_per_day=total_work_hours / days_in_range if days_in_range > 0 else 0.0,
        days_in_range=days_in_range,
    )


class ScheduleProvider(ABC):
    """Turns a template plus a date range into base pattern events"""

    name = "provider"
    template_type: TemplateType

    def __init__(self, shift_types: ShiftTypeLookup):
        self.shift_types = shift_types

    def supports(self, template: WorkScheduleTemplate) -> bool:
        return template.template_type == self.template_type

    def validate_template(self, template: WorkScheduleTemplate) -> bool:
        return self.supports(template) and validate_template(template).is_valid

    @abstractmethod
    def roster(self, template: WorkScheduleTemplate) -> List[str]:
        """Every team the template schedules"""

    @abstractmethod
    def assignments_for_offset(self, template: WorkScheduleTemplate, offset: int) -> List[TeamShiftAssignment]:
        """One assignment per team for the given cycle offset"""

    def generate_schedule(self, start: date, end: date, template: WorkScheduleTemplate,
                          team: Optional[str] = None,
                          cancel_token: Optional[CancellationToken] = None) -> List[WorkScheduleEvent]:
        """
        Generate base pattern events for every day in [start, end].

        Each day yields one event per shift slot plus one shared rest event,
        so every team appears exactly once per day. With a team filter only
        the event holding that team is kept.

        Raises:
            ScheduleGenerationError subclass describing the failure
        """
        check_range(start, end)
        if not self.supports(template):
            raise UnsupportedTemplateError(
                f"{self.name} cannot handle {template.template_type.value} template '{template.name}'"
            )
        validation = validate_template(template)
        if not validation.is_valid:
            raise InvalidTemplateError(f"Template '{template.name}' is invalid", validation.errors)

        roster = self.roster(template)
        if team is not None and team not in roster:
            raise ScheduleGenerationError(f"Team '{team}' is not part of template '{template.name}'",
                                          error_type=ErrorType.NOT_FOUND)

        # One registry snapshot per call
        shift_map = self._resolve_shift_types(template)
        shift_order = template.referenced_shift_names()

        events = []
        for day in iter_days(start, end):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            offset = cycle_offset(template, day)
            day_events = self._events_for_day(day, offset, template, shift_map, shift_order)
            if team is not None:
                day_events = [event for event in day_events if event.involves_team(team)]
            events.extend(day_events)
        return events

    def _resolve_shift_types(self, template: WorkScheduleTemplate) -> Dict[str, ShiftType]:
        shift_map = {}
        missing = []
        for name in template.referenced_shift_names():
            shift_type = self.shift_types.get_shift_type_by_name(name)
            if shift_type is None:
                missing.append(name)
            else:
                shift_map[name] = shift_type
        if missing:
            raise ShiftTypeNotFoundError(f"Unknown shift types in template '{template.name}': {', '.join(missing)}",
                                         missing)
        return shift_map

    def _events_for_day(self, day: date, offset: int, template: WorkScheduleTemplate,
                        shift_map: Dict[str, ShiftType], shift_order: List[str]) -> List[WorkScheduleEvent]:
        teams_by_shift: Dict[str, List[str]] = {}
        resting: List[str] = []
        for assignment in self.assignments_for_offset(template, offset):
            if assignment.is_rest:
                resting.append(assignment.team)
            else:
                teams_by_shift.setdefault(assignment.shift_type, []).append(assignment.team)

        events = [
            self._build_event(day, offset, template, shift_map[name], teams_by_shift[name])
            for name in shift_order if name in teams_by_shift
        ]
        if resting:
            events.append(self._build_event(day, offset, template, None, resting))
        return events

    def _build_event(self, day: date, offset: int, template: WorkScheduleTemplate,
                     shift_type: Optional[ShiftType], teams: List[str]) -> WorkScheduleEvent:
        return WorkScheduleEvent(
            date=day,
            shift_type=shift_type.name if shift_type else None,
            assigned_teams=tuple(sorted(teams)),
            is_rest_period=shift_type is None or shift_type.is_rest_period,
            duration_minutes=shift_type.duration_minutes if shift_type else 0,
            start_time=shift_type.start_time if shift_type else None,
            end_time=shift_type.end_time if shift_type else None,
            source=EventSource.BASE_PATTERN,
            cycle_day=offset,
            template_id=template.id,
            provider_name=self.name,
        )


class FixedScheduleProvider(ScheduleProvider):
    """Derives each team's shift from its phase in a shared personal rotation"""

    name = "FixedScheduleProvider"
    template_type = TemplateType.FIXED

    def roster(self, template: WorkScheduleTemplate) -> List[str]:
        return list(template.teams)

    def assignments_for_offset(self, template: WorkScheduleTemplate, offset: int) -> List[TeamShiftAssignment]:
        pattern = template.rotation_pattern()
        cycle = len(pattern)
        return [
            TeamShiftAssignment(team=team, shift_type=pattern[(offset + template.phase_for(index)) % cycle])
            for index, team in enumerate(template.teams)
        ]


class CustomScheduleProvider(ScheduleProvider):
    """Reads stored day patterns; roster teams absent from a day are resting"""

    name = "CustomScheduleProvider"
    template_type = TemplateType.CUSTOM

    def roster(self, template: WorkScheduleTemplate) -> List[str]:
        return template.roster()

    def assignments_for_offset(self, template: WorkScheduleTemplate, offset: int) -> List[TeamShiftAssignment]:
        assignments = list(template.patterns[offset].assignments)
        present = {assignment.team for assignment in assignments}
        assignments.extend(TeamShiftAssignment(team=team) for team in template.roster() if team not in present)
        return assignments


class ExceptionOverlay:
    """Merges a user's turn exceptions into that user's base schedule"""

    def __init__(self, exception_store: TurnExceptionStore, shift_types: ShiftTypeLookup,
                 applicable_statuses: Iterable[ExceptionStatus] = DEFAULT_OVERLAY_STATUSES):
        self.exception_store = exception_store
        self.shift_types = shift_types
        self.applicable_statuses = frozenset(applicable_statuses)

    def apply(self, user_id: int, base_events: Sequence[WorkScheduleEvent],
              start: date, end: date) -> List[WorkScheduleEvent]:
        """
        Overlay exceptions on a single team's base schedule.

        Args:
            user_id: Owner of the exceptions
            base_events: One event per day, as produced with a team filter
            start: First day of the range
            end: Last day of the range

        Returns:
            Events in base order, overridden where an applicable exception exists
        """
        exceptions = self.exception_store.get_exceptions_for_user_and_range(user_id, start, end)
        by_date = self._index_exceptions(user_id, exceptions)
        if not by_date:
            return list(base_events)

        merged = []
        overridden = 0
        for event in base_events:
            exception = by_date.get(event.date)
            override = self._override_event(event, exception) if exception is not None else None
            if override is not None:
                overridden += 1
                merged.append(override)
            else:
                merged.append(event)

        logger.info(f"Applied {overridden} exceptions for user {user_id} between {start} and {end}")
        return merged

    def _index_exceptions(self, user_id: int, exceptions: Iterable[TurnException]) -> Dict[date, TurnException]:
        by_date: Dict[date, TurnException] = {}
        for exception in exceptions:
            if exception.status not in self.applicable_statuses:
                continue
            if exception.user_id != user_id:
                logger.warning(f"Skipping exception {exception.id}: belongs to user {exception.user_id}, "
                               f"not {user_id}")
                continue
            if not isinstance(exception.exception_type, ExceptionType):
                logger.warning(f"Skipping exception {exception.id}: unknown type {exception.exception_type!r}")
                continue
            if exception.date in by_date:
                logger.warning(f"Duplicate exception {exception.id} for user {user_id} on {exception.date}; "
                               f"keeping {by_date[exception.date].id}")
                continue
            by_date[exception.date] = exception
        return by_date

    def _override_event(self, event: WorkScheduleEvent, exception: TurnException) -> Optional[WorkScheduleEvent]:
        tags = dict(
            source=EventSource.EXCEPTION_OVERRIDE,
            user_id=exception.user_id,
            exception_type=exception.exception_type,
            exception_id=exception.id,
        )
        if exception.affects_work_schedule():
            return replace(event, shift_type=None, is_rest_period=True, duration_minutes=0,
                           start_time=None, end_time=None, **tags)

        shift_name = exception.effective_shift_type()
        if not shift_name:
            logger.warning(f"Skipping exception {exception.id}: no replacement or original shift")
            return None
        shift_type = self.shift_types.get_shift_type_by_name(shift_name)
        if shift_type is None:
            logger.warning(f"Skipping exception {exception.id}: shift type '{shift_name}' not found")
            return None
        return replace(
            event,
            shift_type=shift_type.name,
            is_rest_period=shift_type.is_rest_period,
            duration_minutes=shift_type.duration_minutes,
            start_time=shift_type.start_time,
            end_time=shift_type.end_time,
            **tags,
        )


TemplateTypeLike = Union[TemplateType, str]


class ScheduleGenerator:
    """Caller-facing schedule operations; every method returns a typed result"""

    def __init__(self, shift_types: ShiftTypeLookup, templates: TemplateStore,
                 exceptions: TurnExceptionStore,
                 overlay_statuses: Iterable[ExceptionStatus] = DEFAULT_OVERLAY_STATUSES,
                 max_workers: int = 4):
        self.shift_types = shift_types
        self.templates = templates
        self.overlay = ExceptionOverlay(exceptions, shift_types, overlay_statuses)
        self.max_workers = max_workers
        self._providers: Dict[TemplateType, ScheduleProvider] = {
            TemplateType.FIXED: FixedScheduleProvider(shift_types),
            TemplateType.CUSTOM: CustomScheduleProvider(shift_types),
        }
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_data_manager(cls, data_manager: DataManager) -> 'ScheduleGenerator':
        """Build a generator wired to a DataManager and its settings"""
        configured = data_manager.get_setting("overlayStatuses", [])
        try:
            statuses = [ExceptionStatus(value) for value in configured]
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring overlayStatuses setting {configured!r}: {e}; using defaults")
            statuses = []
        return cls(
            shift_types=data_manager,
            templates=data_manager,
            exceptions=data_manager,
            overlay_statuses=statuses or DEFAULT_OVERLAY_STATUSES,
            max_workers=data_manager.get_setting("maxWorkers", 4),
        )

    # Provider registry
    def register_provider(self, template_type: TemplateType, provider: ScheduleProvider):
        if not isinstance(provider, ScheduleProvider):
            raise TypeError(f"Expected a ScheduleProvider, got {type(provider).__name__}")
        with self._lock:
            self._providers = {**self._providers, template_type: provider}
        logger.info(f"Registered {provider.name} for {template_type.value} templates")

    def is_template_type_supported(self, template_type: TemplateTypeLike) -> bool:
        try:
            return self._coerce_template_type(template_type) in self._providers
        except UnsupportedTemplateError:
            return False

    def _coerce_template_type(self, template_type: TemplateTypeLike) -> TemplateType:
        if isinstance(template_type, TemplateType):
            return template_type
        try:
            return TemplateType(str(template_type).lower())
        except ValueError:
            raise UnsupportedTemplateError(f"Unsupported template type: {template_type}")

    def _provider_for(self, template: WorkScheduleTemplate) -> ScheduleProvider:
        provider = self._providers.get(template.template_type)
        if provider is None:
            raise UnsupportedTemplateError(f"No provider registered for {template.template_type.value} templates")
        return provider

    def _resolve_template(self, template_type: TemplateTypeLike) -> WorkScheduleTemplate:
        resolved_type = self._coerce_template_type(template_type)
        if resolved_type not in self._providers:
            raise UnsupportedTemplateError(f"No provider registered for {resolved_type.value} templates")
        template = self.templates.get_template_by_type(resolved_type)
        if template is None:
            raise InvalidTemplateError(f"No active {resolved_type.value} template available")
        if template.cycle_days <= 0:
            raise InvalidTemplateError(f"Template '{template.name}' has no valid cycle length")
        return template

    # Result boundaries
    def _run_generation(self, label: str, build: Callable[[], List[WorkScheduleEvent]]) -> ScheduleResult:
        start_time = time.time()
        logger.info(f"Starting {label}")
        try:
            events = build()
        except ScheduleGenerationError as e:
            logger.warning(f"{label} failed ({e.error_type.value}): {e}")
            return ScheduleResult(success=False, events=[], message=str(e), error=e.error_type, errors=e.errors)
        except Exception as e:
            logger.error(f"Unexpected error during {label}: {e}", exc_info=True)
            return ScheduleResult(success=False, events=[], message=f"Schedule generation failed: {e}",
                                  error=ErrorType.GENERATION_FAILED)

        duration = time.time() - start_time
        logger.info(f"{label} completed in {duration:.2f}s with {len(events)} events")
        return ScheduleResult(success=True, events=events, message=f"Generated {len(events)} events")

    def _run_query(self, label: str, query: Callable[[], Any]) -> OperationResult:
        try:
            return OperationResult.ok(query())
        except ScheduleGenerationError as e:
            logger.warning(f"{label} failed ({e.error_type.value}): {e}")
            return OperationResult.failure(e.error_type, str(e), e.errors)
        except Exception as e:
            logger.error(f"Unexpected error during {label}: {e}", exc_info=True)
            return OperationResult.failure(ErrorType.GENERATION_FAILED, f"{label} failed: {e}")

    # Generation
    def generate_schedule(self, start: date, end: date, template_type: TemplateTypeLike,
                          team: Optional[str] = None,
                          cancel_token: Optional[CancellationToken] = None) -> ScheduleResult:
        """Generate the base schedule for the active template of the given type"""
        def build():
            template = self._resolve_template(template_type)
            return self._provider_for(template).generate_schedule(start, end, template, team, cancel_token)

        label = getattr(template_type, "value", template_type)
        return self._run_generation(f"{label} schedule generation for {start} to {end}", build)

    def generate_schedule_with_template(self, start: date, end: date, template: WorkScheduleTemplate,
                                        team: Optional[str] = None,
                                        cancel_token: Optional[CancellationToken] = None) -> ScheduleResult:
        """Generate the base schedule for an explicit template"""
        def build():
            return self._provider_for(template).generate_schedule(start, end, template, team, cancel_token)

        return self._run_generation(f"schedule generation with '{template.name}' for {start} to {end}", build)

    def generate_monthly_schedule(self, any_date: date, template_type: TemplateTypeLike,
                                  team: Optional[str] = None) -> ScheduleResult:
        first, last = month_bounds(any_date)
        return self.generate_schedule(first, last, template_type, team)

    def generate_daily_schedule(self, day: date, template_type: TemplateTypeLike,
                                team: Optional[str] = None) -> ScheduleResult:
        return self.generate_schedule(day, day, template_type, team)

    def generate_user_schedule(self, user_id: int, start: date, end: date, template_type: TemplateTypeLike,
                               team: str, cancel_token: Optional[CancellationToken] = None) -> ScheduleResult:
        """Base schedule for the user's team with the user's exceptions overlaid"""
        def build():
            if not team:
                raise ScheduleGenerationError("A team is required for a user schedule",
                                              error_type=ErrorType.VALIDATION_FAILED)
            template = self._resolve_template(template_type)
            provider = self._provider_for(template)
            base_events = provider.generate_schedule(start, end, template, team, cancel_token)
            return self.overlay.apply(user_id, base_events, start, end)

        return self._run_generation(f"user {user_id} schedule generation for {start} to {end}", build)

    # Asynchronous variants
    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                    thread_name_prefix="schedule-worker")
            return self._executor

    def generate_schedule_async(self, start: date, end: date, template_type: TemplateTypeLike,
                                team: Optional[str] = None,
                                cancel_token: Optional[CancellationToken] = None) -> 'Future[ScheduleResult]':
        return self._get_executor().submit(self.generate_schedule, start, end, template_type, team, cancel_token)

    def generate_user_schedule_async(self, user_id: int, start: date, end: date,
                                     template_type: TemplateTypeLike, team: str,
                                     cancel_token: Optional[CancellationToken] = None) -> 'Future[ScheduleResult]':
        return self._get_executor().submit(self.generate_user_schedule, user_id, start, end,
                                           template_type, team, cancel_token)

    def shutdown(self, wait: bool = True):
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __enter__(self) -> 'ScheduleGenerator':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # Queries
    def _day_events(self, day: date, template_type: TemplateTypeLike) -> Tuple[WorkScheduleTemplate, List[WorkScheduleEvent]]:
        template = self._resolve_template(template_type)
        events = self._provider_for(template).generate_schedule(day, day, template)
        return template, events

    def get_working_teams(self, day: date, template_type: TemplateTypeLike) -> OperationResult:
        """Sorted teams on a non-rest shift that day"""
        def query():
            _, events = self._day_events(day, template_type)
            return sorted({team for event in events if not event.is_rest_period for team in event.assigned_teams})

        return self._run_query(f"Working teams lookup for {day}", query)

    def get_teams_off_work(self, day: date, template_type: TemplateTypeLike) -> OperationResult:
        """Sorted complement of the working teams against the template roster"""
        def query():
            template, events = self._day_events(day, template_type)
            working = {team for event in events if not event.is_rest_period for team in event.assigned_teams}
            roster = self._provider_for(template).roster(template)
            return sorted(team for team in roster if team not in working)

        return self._run_query(f"Teams off work lookup for {day}", query)

    def get_next_scheduled_shift(self, team: str, from_date: date, template_type: TemplateTypeLike,
                                 horizon_days: int = DEFAULT_NEXT_SHIFT_HORIZON_DAYS) -> OperationResult:
        """First work event for the team in the horizon_days days starting at from_date, or None"""
        def query():
            template = self._resolve_template(template_type)
            events = self._provider_for(template).generate_schedule(
                from_date, from_date + timedelta(days=horizon_days - 1), template, team
            )
            return next((event for event in events if not event.is_rest_period), None)

        return self._run_query(f"Next shift lookup for team {team}", query)

    def get_schedule_statistics(self, start: date, end: date, template_type: TemplateTypeLike) -> OperationResult:
        def query():
            template = self._resolve_template(template_type)
            events = self._provider_for(template).generate_schedule(start, end, template)
            return calculate_statistics(events, start, end)

        return self._run_query(f"Schedule statistics for {start} to {end}", query)
