#!/usr/bin/env python3
"""
Course Weight Maintenance CLI

Usage:
    python -m coursegrade.cli <command> [options]

Commands:
    db          Database operations (init)
    weights     Weight operations (recalc, verify, show)

Environment:
    DATABASE_URL                    SQLAlchemy async URL (default: sqlite+aiosqlite:///./coursegrade.db)
    WEIGHT_ROUNDING_PRECISION       Decimal places kept on weights (default: 6)
    WEIGHT_TOPIC_SHARE_POLICY       basis|equal
    LOG_LEVEL                       DEBUG|INFO|WARNING|ERROR
"""
import os
import sys
import argparse
import logging
from typing import Optional

from coursegrade.cli.db_commands import DbCommand
from coursegrade.cli.weights_commands import WeightsCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="coursegrade",
        description="Course weight allocation maintenance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s db init
  %(prog)s weights recalc --course-id 7
  %(prog)s --dry-run weights recalc --course-id 7
  %(prog)s weights verify --course-id 7
  %(prog)s weights show --course-id 7
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute but roll back instead of committing"
    )

    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Database commands
    db_parser = subparsers.add_parser("db", help="Database operations")
    db_subparsers = db_parser.add_subparsers(dest="db_action")

    # db init
    db_subparsers.add_parser("init", help="Create missing tables")

    # Weight commands
    weights_parser = subparsers.add_parser("weights", help="Weight operations")
    weights_subparsers = weights_parser.add_subparsers(dest="weights_action")

    # weights recalc
    recalc_parser = weights_subparsers.add_parser("recalc", help="Recalculate every weight in a course")
    recalc_parser.add_argument("--course-id", "-c", type=int, required=True, help="Course ID")

    # weights verify
    verify_parser = weights_subparsers.add_parser("verify", help="Check topic weights add up")
    verify_parser.add_argument("--course-id", "-c", type=int, required=True, help="Course ID")

    # weights show
    show_parser = weights_subparsers.add_parser("show", help="Print the weight tree as JSON")
    show_parser.add_argument("--course-id", "-c", type=int, required=True, help="Course ID")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    # Setup logging
    setup_logging(parsed.log_level)

    # Route to appropriate command handler
    command_map = {
        "db": DbCommand,
        "weights": WeightsCommand,
    }

    if parsed.command in command_map:
        handler = command_map[parsed.command](
            dry_run=parsed.dry_run,
            database_url=parsed.database_url,
        )
        return handler.execute(parsed)

    parser.print_help()
    return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
