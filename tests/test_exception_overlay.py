"""
Test Suite for the Exception Overlay

Covers absence overrides, shift replacements, status filtering, reversal,
and handling of duplicate or malformed exception records.
"""

import pytest
from dataclasses import replace
from datetime import date
import logging
import sys
from pathlib import Path
import tempfile
import os
import json

# Setup import path for src
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rotation_scheduler.data_manager import (
    DataManager, ExceptionStatus, ExceptionType, TemplateType, TurnException,
    TurnExceptionStore,
)
from rotation_scheduler.scheduler_logic import (
    DEFAULT_OVERLAY_STATUSES, EventSource, ExceptionOverlay, ScheduleGenerator,
)

VACATION_DAY = date(2024, 3, 10)
RANGE_START = date(2024, 3, 8)
RANGE_END = date(2024, 3, 12)


@pytest.fixture
def data_manager():
    """Clean DataManager for each test - isolated temp file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as temp:
        temp_path = temp.name
        json.dump({}, temp)
    dm = DataManager(temp_path)
    yield dm
    os.unlink(temp_path)


@pytest.fixture
def generator(data_manager):
    gen = ScheduleGenerator.from_data_manager(data_manager)
    yield gen
    gen.shutdown()


class ListExceptionStore(TurnExceptionStore):
    """Store returning a fixed list, used to feed records the DataManager would refuse."""

    def __init__(self, exceptions):
        self.exceptions = list(exceptions)
        self.calls = 0

    def get_exceptions_for_user_and_range(self, user_id, start, end):
        self.calls += 1
        return list(self.exceptions)


def _user_schedule(generator, user_id=42, team="C"):
    result = generator.generate_user_schedule(user_id, RANGE_START, RANGE_END, TemplateType.FIXED, team)
    assert result.success, result.message
    return {event.date: event for event in result.events}


def _base_events(generator, team="C"):
    return generator.generate_schedule(RANGE_START, RANGE_END, TemplateType.FIXED, team).events


def test_team_c_base_shift_on_vacation_day(generator):
    """Sanity check for the scenario below: team C works mornings on 2024-03-10."""
    assert _user_schedule(generator)[VACATION_DAY].shift_type == "Mattino"


def test_vacation_turns_day_into_rest_and_cancel_restores_it(generator, data_manager):
    """
    Why this is important: A vacation must remove the user from the shift for
    that day only, and cancelling it must bring the original shift back
    without any manual repair of stored data.
    """
    added = data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
        original_shift_type="Mattino",
    ))
    assert added.success

    overlaid = _user_schedule(generator)
    event = overlaid[VACATION_DAY]
    assert event.shift_type is None
    assert event.is_rest_period
    assert event.duration_minutes == 0
    assert event.source == EventSource.EXCEPTION_OVERRIDE
    assert event.exception_type == ExceptionType.VACATION
    assert event.user_id == 42
    assert event.exception_id == added.data.id

    # Neighbouring days are untouched
    assert overlaid[date(2024, 3, 9)].source == EventSource.BASE_PATTERN

    assert data_manager.cancel_turn_exception(added.data.id).success
    restored = _user_schedule(generator)
    assert restored[VACATION_DAY].shift_type == "Mattino"
    assert restored[VACATION_DAY].source == EventSource.BASE_PATTERN


def test_removing_exception_returns_exact_base_schedule(generator, data_manager):
    """Reversibility round-trip: add then remove gives the base events back."""
    base = _base_events(generator)
    added = data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=ExceptionType.SICK_LEAVE,
        original_shift_type="Mattino",
    ))
    data_manager.remove_turn_exception(added.data.id)

    result = generator.generate_user_schedule(42, RANGE_START, RANGE_END, TemplateType.FIXED, "C")
    assert result.events == base


def test_overtime_uses_replacement_shift(generator, data_manager):
    data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=ExceptionType.OVERTIME,
        original_shift_type="Mattino", replacement_shift_type="Pomeriggio",
    ))

    event = _user_schedule(generator)[VACATION_DAY]
    assert event.shift_type == "Pomeriggio"
    assert not event.is_rest_period
    assert event.duration_minutes == 480
    assert event.source == EventSource.EXCEPTION_OVERRIDE


def test_swap_without_replacement_keeps_original_shift(generator, data_manager):
    data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=ExceptionType.SHIFT_SWAP,
        original_shift_type="Notte",
    ))

    event = _user_schedule(generator)[VACATION_DAY]
    assert event.shift_type == "Notte"
    assert event.exception_type == ExceptionType.SHIFT_SWAP


@pytest.mark.parametrize("exception_type", [
    ExceptionType.VACATION, ExceptionType.SICK_LEAVE, ExceptionType.PERSONAL_LEAVE,
    ExceptionType.PERMIT, ExceptionType.PERMIT_104, ExceptionType.PERMIT_SYNDICATE,
])
def test_absence_wins_over_replacement_shift(generator, data_manager, exception_type):
    """
    Why this is important: An absent user cannot be put on a shift, even if the
    record accidentally carries a replacement shift.
    """
    data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=exception_type,
        original_shift_type="Mattino", replacement_shift_type="Notte",
    ))

    event = _user_schedule(generator)[VACATION_DAY]
    assert event.shift_type is None
    assert event.is_rest_period


def test_pending_exception_is_not_applied_by_default(generator, data_manager):
    data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
        original_shift_type="Mattino", status=ExceptionStatus.PENDING,
    ))
    assert _user_schedule(generator)[VACATION_DAY].shift_type == "Mattino"


def test_configured_statuses_control_overlay(data_manager):
    """The overlayStatuses setting decides which records apply."""
    data_manager.set_setting("overlayStatuses", ["PENDING"])
    data_manager.add_turn_exception(TurnException(
        user_id=42, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
        original_shift_type="Mattino", status=ExceptionStatus.PENDING,
    ))

    with ScheduleGenerator.from_data_manager(data_manager) as generator:
        assert _user_schedule(generator)[VACATION_DAY].shift_type is None


def test_other_users_exceptions_do_not_apply(generator, data_manager):
    data_manager.add_turn_exception(TurnException(
        user_id=7, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
        original_shift_type="Mattino",
    ))
    assert _user_schedule(generator)[VACATION_DAY].shift_type == "Mattino"


def test_user_schedule_requires_team(generator):
    result = generator.generate_user_schedule(42, RANGE_START, RANGE_END, TemplateType.FIXED, "")
    assert not result.success


def test_duplicate_records_keep_first_and_warn(generator, data_manager, caplog):
    """
    Why this is important: Imported data can contain two records for the same
    user and day. The overlay must stay deterministic and tell someone.
    """
    first = TurnException(user_id=42, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
                          original_shift_type="Mattino")
    second = TurnException(user_id=42, date=VACATION_DAY, exception_type=ExceptionType.OVERTIME,
                           original_shift_type="Mattino", replacement_shift_type="Notte")
    store = ListExceptionStore([first, second])
    overlay = ExceptionOverlay(store, data_manager)

    with caplog.at_level(logging.WARNING):
        merged = overlay.apply(42, _base_events(generator), RANGE_START, RANGE_END)

    event = next(e for e in merged if e.date == VACATION_DAY)
    assert event.exception_id == first.id
    assert event.shift_type is None
    assert any("Duplicate exception" in record.message for record in caplog.records)
    assert store.calls == 1


def test_unknown_replacement_shift_keeps_base_day(generator, data_manager, caplog):
    bad = TurnException(user_id=42, date=VACATION_DAY, exception_type=ExceptionType.OVERTIME,
                        original_shift_type="Mattino", replacement_shift_type="Sera")
    overlay = ExceptionOverlay(ListExceptionStore([bad]), data_manager)

    with caplog.at_level(logging.WARNING):
        merged = overlay.apply(42, _base_events(generator), RANGE_START, RANGE_END)

    event = next(e for e in merged if e.date == VACATION_DAY)
    assert event.shift_type == "Mattino"
    assert event.source == EventSource.BASE_PATTERN
    assert any("not found" in record.message for record in caplog.records)


def test_record_without_any_shift_keeps_base_day(generator, data_manager):
    bare = TurnException(user_id=42, date=VACATION_DAY, exception_type=ExceptionType.TRAINING)
    overlay = ExceptionOverlay(ListExceptionStore([bare]), data_manager)

    merged = overlay.apply(42, _base_events(generator), RANGE_START, RANGE_END)
    assert next(e for e in merged if e.date == VACATION_DAY).source == EventSource.BASE_PATTERN


def test_foreign_record_from_store_is_skipped(generator, data_manager, caplog):
    foreign = TurnException(user_id=99, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
                            original_shift_type="Mattino")
    overlay = ExceptionOverlay(ListExceptionStore([foreign]), data_manager)

    with caplog.at_level(logging.WARNING):
        merged = overlay.apply(42, _base_events(generator), RANGE_START, RANGE_END)

    assert all(e.source == EventSource.BASE_PATTERN for e in merged)
    assert any("belongs to user 99" in record.message for record in caplog.records)


def test_record_with_unknown_type_keeps_base_day(generator, data_manager, caplog):
    """
    Why this is important: A record whose type this build does not know must
    not take the user off work. The base day stays and the skip is logged.
    """
    vacation = TurnException(user_id=42, date=VACATION_DAY, exception_type=ExceptionType.VACATION,
                             original_shift_type="Mattino")
    unknown = replace(vacation, exception_type="HOLIDAY")
    overlay = ExceptionOverlay(ListExceptionStore([unknown]), data_manager)

    with caplog.at_level(logging.WARNING):
        merged = overlay.apply(42, _base_events(generator), RANGE_START, RANGE_END)

    event = next(e for e in merged if e.date == VACATION_DAY)
    assert event.shift_type == "Mattino"
    assert event.source == EventSource.BASE_PATTERN
    assert event.exception_id is None
    assert any("unknown type 'HOLIDAY'" in record.message for record in caplog.records)


@pytest.mark.parametrize("configured", [["active"], ["ACTIVE", "HOLIDAY"], 5])
def test_invalid_overlay_statuses_setting_falls_back_to_defaults(data_manager, caplog, configured):
    data_manager.set_setting("overlayStatuses", configured)

    with caplog.at_level(logging.WARNING):
        generator = ScheduleGenerator.from_data_manager(data_manager)

    with generator:
        assert generator.overlay.applicable_statuses == frozenset(DEFAULT_OVERLAY_STATUSES)
    assert any("overlayStatuses" in record.message for record in caplog.records)
