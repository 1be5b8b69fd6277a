"""
Property Migration - Main Entry Point

This is the command-line interface for the migration run.

Usage:
    python -m property_migration.orchestrator.main [OPTIONS]

Options:
    --source TEXT         Source adapter: appwrite or mock (default: from config)
    --config PATH         Path to migration.yml
    --batch-size INTEGER  Records per upsert statement
    --page-size INTEGER   Documents per source request
    --max-workers INTEGER Concurrent windows / media workers
    --limit INTEGER       Maximum number of source records to migrate
    --phases LIST         Comma-separated subset of resolve,migrate,media,validate
    --dry-run             Read and transform everything without writing
    --report-path PATH    Write the run report as JSON
    --verbose             Enable debug logging
    --help                Show this message and exit

Examples:
    # Full migration from Appwrite:
    python -m property_migration.orchestrator.main

    # Re-link media only (properties already migrated):
    python -m property_migration.orchestrator.main --phases media,validate

    # Dry run against the first 100 documents with verbose logging:
    python -m property_migration.orchestrator.main --dry-run --limit 100 --verbose

Exit Codes:
    0: Success
    1: Some records failed, or validation is below the success threshold
    2: Fatal error (configuration, database or source unreachable)
    130: Interrupted
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Optional

from dotenv import load_dotenv

from ..common.config_loader import VALID_PHASES, MigrationConfig, load_migration_config
from ..common.db_operations import DatabaseError, PostgresStore
from ..common.report import MigrationReport
from ..source_extractor.adapters import AppwriteAdapter, MockAdapter
from ..source_extractor.base import SourceAdapter
from .run import MigrationRun

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

# Connections beyond the worker count (resolver pre-scan, validation)
POOL_HEADROOM = 2


def parse_phases(value: str) -> list[str]:
    """Parse a comma-separated phase list, keeping the canonical order."""
    requested = {part.strip() for part in value.split(',') if part.strip()}
    unknown = requested - set(VALID_PHASES)
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown phase(s): {', '.join(sorted(unknown))} (valid: {', '.join(VALID_PHASES)})"
        )
    return [phase for phase in VALID_PHASES if phase in requested]


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Migrate property documents from Appwrite into PostgreSQL',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--source',
        type=str,
        choices=['appwrite', 'mock'],
        help='Source adapter (default: source.adapter from config)',
        default=None
    )

    parser.add_argument(
        '--config',
        type=str,
        help='Path to migration.yml (default: MIGRATION_CONFIG_PATH or config/migration.yml)',
        default=None
    )

    parser.add_argument(
        '--batch-size',
        type=int,
        help='Records per upsert statement',
        default=None,
        dest='batch_size'
    )

    parser.add_argument(
        '--page-size',
        type=int,
        help='Documents per source request',
        default=None,
        dest='page_size'
    )

    parser.add_argument(
        '--max-workers',
        type=int,
        help='Maximum concurrent workers',
        default=None,
        dest='max_workers'
    )

    parser.add_argument(
        '--limit',
        type=int,
        help='Maximum number of source records to migrate',
        default=None
    )

    parser.add_argument(
        '--phases',
        type=parse_phases,
        help=f'Comma-separated phases to run (default: {",".join(VALID_PHASES)})',
        default=list(VALID_PHASES)
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Read and transform everything without writing to the database',
        dest='dry_run'
    )

    parser.add_argument(
        '--report-path',
        type=str,
        help='Write the run report as JSON to this path',
        default=None,
        dest='report_path'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def apply_overrides(config: MigrationConfig, args: argparse.Namespace) -> MigrationConfig:
    """Apply command-line overrides and re-validate."""
    if args.source:
        config.source.adapter = args.source
    if args.batch_size is not None:
        config.migration.batch_size = args.batch_size
    if args.page_size is not None:
        config.source.page_size = args.page_size
    if args.max_workers is not None:
        config.migration.max_workers = args.max_workers
    config.validate()
    return config


def build_adapter(config: MigrationConfig, limit: Optional[int] = None) -> SourceAdapter:
    """Create the configured source adapter."""
    if config.source.adapter == 'appwrite':
        return AppwriteAdapter()
    if config.source.adapter == 'mock':
        return MockAdapter(num_documents=limit or 100)
    raise ValueError(f"Unknown source adapter: {config.source.adapter}")


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into a cooperative cancellation request."""

    def handler(signum, frame):
        if cancel_event.is_set():
            # Second signal: stop waiting for in-flight work
            raise KeyboardInterrupt
        logger.warning("Received signal %s, finishing in-flight work", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def exit_code_for(report: MigrationReport) -> int:
    """
    Map a run report to a process exit code.

    Returns:
        0 success, 1 partial failure or below threshold, 2 fatal, 130 cancelled
    """
    if report.fatal_error:
        return 2
    if report.cancelled:
        return 130
    validation_status = (report.validation or {}).get('status')
    if report.has_errors or validation_status not in (None, 'success'):
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the migration.

    Returns:
        Exit code (0 = success, 1 = partial failure, 2 = fatal error, 130 = interrupted)
    """
    args = parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    try:
        config = apply_overrides(load_migration_config(args.config), args)
        adapter = build_adapter(config, args.limit)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    # Get database connection string from environment
    database_url = os.getenv('DATABASE_URL')
    if not database_url:
        logger.error("DATABASE_URL environment variable must be set")
        return 2  # Fatal error - cannot proceed without database

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    try:
        logger.info("Connecting to database")
        with PostgresStore(
            database_url,
            max_connections=config.migration.max_workers + POOL_HEADROOM,
        ) as store:
            run = MigrationRun(
                store,
                adapter,
                config,
                phases=args.phases,
                dry_run=args.dry_run,
                limit=args.limit,
                cancel_event=cancel_event,
            )
            report = run.execute()

        if args.report_path:
            report.write_json(args.report_path)

        code = exit_code_for(report)
        if code == 0:
            logger.info("Migration completed successfully")
        else:
            logger.warning(
                f"Migration finished with exit code {code}",
                extra={
                    'error_count': report.error_count,
                    'fatal_error': report.fatal_error,
                    'cancelled': report.cancelled,
                },
            )
        return code

    except DatabaseError as e:
        logger.error(f"Database error: {e}")
        return 2  # Fatal error

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130  # Standard Unix exit code for SIGINT

    except Exception as e:
        logger.error(
            "Unexpected fatal error",
            extra={
                'error': str(e),
                'error_type': type(e).__name__,
            },
            exc_info=True
        )
        return 2  # Fatal error


if __name__ == '__main__':
    sys.exit(main())
