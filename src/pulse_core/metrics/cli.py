"""Command-line entry point for metrics collection.

Usage:
    # Collect today's data
    PYTHONPATH=. python -m src.pulse_core.metrics.cli

    # Collect specific date
    PYTHONPATH=. python -m src.pulse_core.metrics.cli --date 2024-12-30

    # Backfill date range (omitted start resolves to earliest activity)
    PYTHONPATH=. python -m src.pulse_core.metrics.cli --start-date 2024-12-01 --end-date 2024-12-07

    # Cron mode: sweep stale runs, catch up missed days, collect today
    PYTHONPATH=. python -m src.pulse_core.metrics.cli --scheduled

Exit codes: 0 success, 1 collection or validation failure, 2 usage error
(argparse), 3 configuration error.
"""
import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import Optional, Sequence

from ..schemas.metrics import BackfillResult, CollectionResult
from .config import MetricsConfig, redact_text
from .exceptions import ConfigurationError, DateRangeError
from .service import MetricsCollectorService, sweep_stale_collection_runs


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
# argparse exits 2 on usage errors
EXIT_CONFIG_ERROR = 3

TROUBLESHOOTING_TIPS = (
    "Troubleshooting tips:",
    "   1. Verify the source backend settings (METRICS_SOURCE_BACKEND and its credentials)",
    "   2. Check that the users/posts/comments tables exist and have a created_at column",
    "   3. Ensure the service role key has read access to the source tables",
    "   4. Review metric_collection_log for the recorded error messages",
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid date '{value}' (expected YYYY-MM-DD)"
        ) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pulse daily metrics collection")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--date",
        type=_parse_date,
        help="Specific date to collect (YYYY-MM-DD). Defaults to today.",
    )
    mode.add_argument(
        "--scheduled",
        action="store_true",
        help="Sweep stale runs, catch up missed days, then collect today",
    )
    mode.add_argument(
        "--sweep-stale",
        action="store_true",
        help="Only mark abandoned 'running' runs as failed",
    )
    parser.add_argument(
        "--start-date",
        type=_parse_date,
        help="Start date for backfill range (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--end-date",
        type=_parse_date,
        help="End date for backfill range (YYYY-MM-DD). Defaults to today.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def print_collection_summary(result: CollectionResult) -> None:
    print("Summary:")
    print(f"   Date: {result.target_date.isoformat()}")
    print(f"   Metrics Written: {result.metrics_written}")
    print(f"   Execution Time: {result.elapsed_ms}ms")
    print(f"   Status: {result.status.value}")


def print_backfill_summary(result: BackfillResult) -> None:
    print("Summary:")
    print(f"   Range: {result.start_date.isoformat()} .. {result.end_date.isoformat()}")
    print(f"   Dates Processed: {result.dates_processed}")
    print(f"   Dates Failed: {result.dates_failed}")
    print(f"   Total Metrics: {result.total_metrics}")
    print(f"   Execution Time: {result.elapsed_ms}ms")
    print(f"   Status: {result.status.value}")
    if result.failed_dates:
        failed = ", ".join(d.isoformat() for d in result.failed_dates)
        print(f"   Failed Dates: {failed}")


def print_troubleshooting() -> None:
    for line in TROUBLESHOOTING_TIPS:
        print(line, file=sys.stderr)


async def run(args: argparse.Namespace, config: MetricsConfig) -> int:
    """Execute the selected mode and return the exit code."""
    if args.sweep_stale:
        swept = sweep_stale_collection_runs(config)
        print(f"Marked {swept} stale runs as failed")
        return EXIT_OK

    try:
        service = MetricsCollectorService(config)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR

    try:
        if args.scheduled:
            result = await service.run_scheduled()
        elif args.start_date or args.end_date:
            result = await service.run_backfill(args.start_date, args.end_date)
        else:
            single = await service.run_once(args.date)
            print_collection_summary(single)
            return EXIT_OK

    except DateRangeError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    except Exception as exc:
        logger.error(
            "Metric collection failed: %s", redact_text(str(exc), config.secrets)
        )
        print_troubleshooting()
        return EXIT_FAILURE

    print_backfill_summary(result)

    if not result.is_success:
        logger.warning("Backfill completed with errors; see metric_collection_log")
        print_troubleshooting()
        return EXIT_FAILURE

    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if (args.start_date or args.end_date) and (
        args.date or args.scheduled or args.sweep_stale
    ):
        parser.error("--start-date/--end-date cannot be combined with other modes")

    setup_logging(args.verbose)

    try:
        config = MetricsConfig.from_env()
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR

    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
