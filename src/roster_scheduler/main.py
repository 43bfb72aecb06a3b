"""
Main Entry Point for Roster Scheduling System

Sets up logging and provides a command line interface for generating a week's
schedule from the stored roster and exporting it.
"""

import argparse
import sys
import logging
from pathlib import Path
from datetime import datetime, date
from typing import List, Optional

from roster_scheduler.data_manager import DataManager, DataManagerError
from roster_scheduler.scheduler_logic import ShiftScheduler
from roster_scheduler.reporting import ExportManager, ExportError


def setup_logging(log_dir: str = "logs", level: int = logging.INFO):
    """Setup application logging"""
    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True)

    log_file = log_path / f"roster_scheduler_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def handle_exception(exc_type, exc_value, exc_traceback):
    """Global exception handler"""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logging.getLogger(__name__).error(
        "Uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback)
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roster-scheduler",
        description="Generate and export weekly shift schedules"
    )
    parser.add_argument("--data-file", help="Path of the JSON data file")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate the schedule for a week")
    generate.add_argument("--week", type=date.fromisoformat, default=None,
                          help="Any date within the target week (YYYY-MM-DD, default: today "
                               "in the schedule timezone)")
    _add_export_arguments(generate, required=False)

    export = subparsers.add_parser("export", help="Export the current schedule")
    _add_export_arguments(export, required=True)

    return parser


def _add_export_arguments(parser: argparse.ArgumentParser, required: bool):
    parser.add_argument("--export", "--format", dest="format", required=required,
                        choices=ExportManager.FORMATS, help="Export format")
    parser.add_argument("--output", help="Export file path")
    parser.add_argument("--delimiter", help="CSV field delimiter (default from settings)")


def run_export(export_manager: ExportManager, args, logger) -> bool:
    output = args.output
    if output is None:
        schedule = export_manager.data_manager.get_current_schedule()
        if schedule is None:
            raise ExportError("No schedule has been generated yet")
        output = export_manager.get_default_filename(schedule.week_of, args.format)
    delimiter = args.delimiter.replace("\\t", "\t") if args.delimiter else None
    export_manager.export_schedule(args.format, output, delimiter=delimiter)
    logger.info(f"Exported {args.format} schedule to {output}")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    sys.excepthook = handle_exception

    args = build_parser().parse_args(argv)
    logger = setup_logging(args.log_dir, logging.DEBUG if args.verbose else logging.INFO)
    logger.info("Starting Roster Scheduler")

    try:
        data_manager = DataManager(args.data_file)
        export_manager = ExportManager(data_manager)

        if args.command == "generate":
            week = args.week
            if week is None:
                week = datetime.now(data_manager.get_schedule_settings().tzinfo).date()
            result = ShiftScheduler(data_manager).generate_schedule(week)
            logger.info(result.message)
            if args.format:
                run_export(export_manager, args, logger)
            return 0 if result.success else 2

        run_export(export_manager, args, logger)
        return 0

    except (DataManagerError, ExportError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
