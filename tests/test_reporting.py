"""
Test Suite for Schedule Reporting and the Command Line Entry Point
"""

import pytest
from datetime import date
import sys
from pathlib import Path
import tempfile
import os
import json

# Setup import path for src
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rotation_scheduler.data_manager import DataManager, ExceptionType, TemplateType, TurnException
from rotation_scheduler.main import main
from rotation_scheduler.reporting import REST_MARKER, ScheduleReport
from rotation_scheduler.scheduler_logic import ScheduleGenerator


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


@pytest.fixture
def cycle_events(generator):
    """One full cycle of the seeded rotation."""
    result = generator.generate_schedule(date(2018, 11, 7), date(2018, 11, 24), TemplateType.FIXED)
    assert result.success
    return result.events


def test_dataframe_has_one_row_per_team_and_day(cycle_events):
    df = ScheduleReport(cycle_events).to_dataframe()

    assert len(df) == 18 * 9
    first_day = df[df['Date'] == "2018-11-07"].set_index('Team')
    assert first_day.loc['A', 'Shift'] == "Mattino"
    assert first_day.loc['G', 'Is_Rest']
    assert first_day.loc['A', 'Hours'] == 8


def test_team_grid(cycle_events):
    """
    Why this is important: The grid is what planners print and pin on the
    wall. Each cell must show the shift or a clear rest marker.
    """
    grid = ScheduleReport(cycle_events).team_grid()

    assert grid.shape == (18, 9)
    assert list(grid.columns) == list("ABCDEFGHI")
    assert grid.loc["2018-11-07", "A"] == "Mattino"
    assert grid.loc["2018-11-07", "E"] == "Notte"
    assert grid.loc["2018-11-07", "G"] == REST_MARKER


def test_hours_by_team(cycle_events):
    """Every team works twelve eight-hour days per cycle."""
    hours = ScheduleReport(cycle_events).hours_by_team()

    assert list(hours['Team']) == list("ABCDEFGHI")
    assert (hours['Work_Days'] == 12).all()
    assert (hours['Hours'] == 96).all()


def test_statistics_dataframe(generator):
    stats = generator.get_schedule_statistics(date(2018, 11, 7), date(2018, 11, 24), TemplateType.FIXED).data
    df = ScheduleReport.statistics_dataframe(stats).set_index('Metric')

    assert df.loc['Total Events', 'Value'] == 72
    assert df.loc['Average Work Hours Per Day', 'Value'] == 24.0
    assert df.loc['Events: Notte', 'Value'] == 18


def test_empty_report():
    report = ScheduleReport([])
    assert report.to_dataframe().empty
    assert report.team_grid().empty
    assert report.hours_by_team().empty


def test_override_rows(generator, data_manager):
    data_manager.add_turn_exception(TurnException(
        user_id=42, date=date(2024, 3, 10), exception_type=ExceptionType.VACATION,
        original_shift_type="Mattino",
    ))
    result = generator.generate_user_schedule(42, date(2024, 3, 1), date(2024, 3, 31), TemplateType.FIXED, "C")

    rows = ScheduleReport(result.events).override_rows()
    assert len(rows) == 1
    assert rows[0]["date"] == "2024-03-10"
    assert rows[0]["exceptionType"] == "VACATION"


def test_cli_prints_month_grid_and_statistics(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    exit_code = main(["--data-file", str(tmp_path / "data.json"), "--month", "2018-11", "--stats"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Mattino" in out
    assert "Total Events" in out
    assert (tmp_path / "logs").is_dir()


def test_cli_reports_failure_for_missing_template(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["--data-file", str(tmp_path / "data.json"), "--template-type", "custom"]) == 1


def test_cli_user_requires_team(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit):
        main(["--data-file", str(tmp_path / "data.json"), "--user", "42"])
