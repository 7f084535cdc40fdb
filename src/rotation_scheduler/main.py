"""
Main Entry Point for Rotation Scheduling System

Command line access to the schedule generator: prints a month's rotation
grid and statistics for a template, optionally overlaid for a single user.
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from rotation_scheduler.data_manager import DataManager, DataManagerError
from rotation_scheduler.reporting import ScheduleReport
from rotation_scheduler.scheduler_logic import ScheduleGenerator, month_bounds


def setup_logging(level: int = logging.INFO):
    """Setup application logging"""
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    log_file = log_dir / f"rotation_scheduler_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def parse_month(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM, got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rotation schedule generator")
    parser.add_argument("--data-file", default="data/rotation_data.json",
                        help="JSON data file holding shift types, templates and exceptions")
    parser.add_argument("--template-type", choices=["fixed", "custom"],
                        help="Template type to generate (defaults to the configured one)")
    parser.add_argument("--month", type=parse_month, default=None,
                        help="Month to generate as YYYY-MM (defaults to the current month)")
    parser.add_argument("--team", help="Restrict output to one team")
    parser.add_argument("--user", type=int, help="Overlay this user's exceptions (requires --team)")
    parser.add_argument("--stats", action="store_true", help="Print schedule statistics")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.user is not None and not args.team:
        parser.error("--user requires --team")

    logger = setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        data_manager = DataManager(args.data_file)
    except DataManagerError as e:
        logger.error(f"Failed to load data file {args.data_file}: {e}")
        return 1

    template_type = args.template_type or data_manager.get_setting("defaultTemplateType", "fixed")
    start, end = month_bounds(args.month or date.today())

    with ScheduleGenerator.from_data_manager(data_manager) as generator:
        if args.user is not None:
            result = generator.generate_user_schedule(args.user, start, end, template_type, args.team)
        else:
            result = generator.generate_schedule(start, end, template_type, args.team)

        if not result.success:
            logger.error(f"{result.message} ({result.error.value if result.error else 'unknown'})")
            for error in result.errors:
                logger.error(f"  {error}")
            return 1

        report = ScheduleReport(result.events)
        print(report.team_grid().to_string())

        for row in report.override_rows():
            print(f"{row['date']}: {row['exceptionType']} -> {row['shiftType'] or 'rest'}")

        if args.stats:
            stats_result = generator.get_schedule_statistics(start, end, template_type)
            if not stats_result.success:
                logger.error(stats_result.message)
                return 1
            print()
            print(ScheduleReport.statistics_dataframe(stats_result.data).to_string(index=False))
            print()
            print(report.hours_by_team().to_string(index=False))

    return 0


if __name__ == "__main__":
    sys.exit(main())
