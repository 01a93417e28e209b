"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the reconciliation engine.

- Provides argparse-based sub-commands
- Loads configuration from environment, then CLI flags
- Prints a final summary for every fix command

============================================================
USAGE
============================================================
python -m orchestrator.cli status
python -m orchestrator.cli check-date 2025-03-21
python -m orchestrator.cli fix-date 2025-03-21
python -m orchestrator.cli fix-all 20
python -m orchestrator.cli fix-range 2025-03-01 2025-03-31

============================================================
EXIT CODES
============================================================
0  command completed (batch runs: even with per-date failures)
1  invalid input or unrecoverable error

============================================================
"""

import argparse
import logging
import signal
import sys
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterator, List, Optional

from core.clock import SystemClock, parse_settlement_date
from core.config import ReconcilerConfig
from core.exceptions import ConfigurationError, InvalidDateError, describe_failure
from core.reference_data import ReferenceData
from reconciliation.deduplicator import Deduplicator
from reconciliation.difficulty import StoredDifficultySource
from reconciliation.gap_finder import GapFinder
from storage.database import Database
from storage.repositories.exceptions import RepositoryException

from .core import BatchOrchestrator, setup_logging
from .models import BatchRunResult, KeyFailure


logger = logging.getLogger("orchestrator.cli")

EXIT_OK = 0
EXIT_ERROR = 1


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="settlement-reconcile",
        description="Reconcile derived calculations with settlement facts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  status       - Overall completion and per-variant breakdown
  check-date   - Per-date detail including missing combinations
  find         - List incomplete dates, worst first
  fix-date     - Deduplicate and recompute one date
  fix-all      - Reconcile every incomplete date
  fix-range    - Reconcile the incomplete dates of a range
  dedup        - Preview or run deduplication for one date

Examples:
  %(prog)s status
  %(prog)s check-date 2025-03-21
  %(prog)s fix-all 20 --batch-size 5
  %(prog)s fix-range 2025-03-01 2025-03-31
        """
    )

    # --------------------------------------------------------
    # Storage Options
    # --------------------------------------------------------
    storage_group = parser.add_argument_group("Storage Options")

    storage_group.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="SQLAlchemy database URL (default: $DATABASE_URL)",
    )

    storage_group.add_argument(
        "--checkpoint-dir",
        type=str,
        metavar="PATH",
        help="Checkpoint directory (default: $CHECKPOINT_DIR or ./logs/checkpoints)",
    )

    # --------------------------------------------------------
    # Batch Options
    # --------------------------------------------------------
    batch_group = parser.add_argument_group("Batch Options")

    batch_group.add_argument(
        "--batch-size",
        type=int,
        metavar="N",
        help="Dates per batch (default: 5)",
    )

    batch_group.add_argument(
        "--batch-delay",
        type=float,
        metavar="SECONDS",
        help="Pause between batches (default: 2.0)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    status = commands.add_parser("status", help="Overall completion")
    status.add_argument("--start", metavar="YYYY-MM-DD", help="Range start")
    status.add_argument("--end", metavar="YYYY-MM-DD", help="Range end")

    check = commands.add_parser("check-date", help="Per-date detail")
    check.add_argument("date", metavar="YYYY-MM-DD")

    find = commands.add_parser("find", help="List incomplete dates")
    find.add_argument("limit", nargs="?", type=int, help="Maximum dates to list")

    fix_date = commands.add_parser("fix-date", help="Fix one date")
    fix_date.add_argument("date", metavar="YYYY-MM-DD")

    fix_all = commands.add_parser("fix-all", help="Fix every incomplete date")
    fix_all.add_argument("limit", nargs="?", type=int, help="Maximum dates to process")

    fix_range = commands.add_parser("fix-range", help="Fix the incomplete dates of a range")
    fix_range.add_argument("start", metavar="START")
    fix_range.add_argument("end", metavar="END")

    dedup = commands.add_parser("dedup", help="Deduplicate one date")
    dedup.add_argument("date", metavar="YYYY-MM-DD")
    dedup.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without deleting",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def _check_date(value: Optional[str], label: str, errors: List[str]) -> None:
    if value is None:
        return
    try:
        parse_settlement_date(value)
    except InvalidDateError:
        errors.append(f"{label}: invalid date '{value}' (expected YYYY-MM-DD)")


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors: List[str] = []

    for name in ("date", "start", "end"):
        _check_date(getattr(args, name, None), name, errors)

    start = getattr(args, "start", None)
    end = getattr(args, "end", None)
    if args.command == "status" and (start is None) != (end is None):
        errors.append("--start and --end must be given together")
    if not errors and start and end and parse_settlement_date(start) > parse_settlement_date(end):
        errors.append(f"start date {start} is after end date {end}")

    limit = getattr(args, "limit", None)
    if limit is not None and limit < 1:
        errors.append("limit must be at least 1")

    if args.batch_size is not None and args.batch_size < 1:
        errors.append("--batch-size must be at least 1")

    if args.batch_delay is not None and args.batch_delay < 0:
        errors.append("--batch-delay must not be negative")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> ReconcilerConfig:
    """
    Build configuration: environment first, CLI flags on top.
    """
    config = ReconcilerConfig.from_env()

    if args.database_url:
        config = replace(config, database=replace(config.database, url=args.database_url))
    if args.checkpoint_dir:
        config = replace(config, checkpoint=replace(config.checkpoint, directory=args.checkpoint_dir))
    if args.log_level:
        config = replace(config, log_level=args.log_level)
    if args.log_format:
        config = replace(config, log_format=args.log_format)

    return config.with_overrides(
        batch_size=args.batch_size,
        batch_delay_seconds=args.batch_delay,
    )


@dataclass
class Application:
    """Components wired for one CLI invocation."""

    config: ReconcilerConfig
    database: Database
    reference: ReferenceData
    orchestrator: BatchOrchestrator

    @property
    def gap_finder(self) -> GapFinder:
        return self.orchestrator.gap_finder

    @property
    def deduplicator(self) -> Deduplicator:
        return self.orchestrator.deduplicator


def build_application(config: ReconcilerConfig) -> Application:
    database = Database(config.database)
    database.create_all()
    reference = ReferenceData.build(
        network=config.network,
        difficulty_source=StoredDifficultySource(database),
    )
    orchestrator = BatchOrchestrator(database, reference, config, clock=SystemClock())
    return Application(config, database, reference, orchestrator)


# ============================================================
# OUTPUT
# ============================================================

def print_banner(args: argparse.Namespace, config: ReconcilerConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  SETTLEMENT RECONCILIATION")
    print("=" * 60)
    print(f"  Command:    {args.command}")
    print(f"  Database:   {config.database.url.split('@')[-1]}")
    print(f"  Batch Size: {config.batch.batch_size}")
    print("=" * 60)
    print()


def print_summary(
    processed: int,
    succeeded: int,
    failures: List[KeyFailure],
    display_limit: int,
) -> None:
    """Final summary, failures truncated after display_limit lines."""
    print()
    print("-" * 60)
    print(f"  Processed: {processed} | Succeeded: {succeeded} | Failed: {len(failures)}")
    for failure in failures[:display_limit]:
        print(f"    {failure.key}: {failure.reason}")
    if len(failures) > display_limit:
        print(f"    ... and {len(failures) - display_limit} more")
    print("-" * 60)


def print_run_result(result: BatchRunResult, display_limit: int) -> None:
    initial = result.initial_status.completion_percent if result.initial_status else 0.0
    final = result.final_status.completion_percent if result.final_status else 0.0
    print(f"Operation:   {result.operation} ({'resumed' if result.resumed else 'new'})")
    print(f"Dates:       {result.keys_total} incomplete, {result.keys_skipped} already processed")
    print(f"Completion:  {initial}% -> {final}%")
    if result.stopped_early:
        print("Stopped early; rerun the same command to resume")
    print_summary(result.attempted, result.succeeded, result.failures, display_limit)


# ============================================================
# COMMANDS
# ============================================================

def cmd_status(args: argparse.Namespace, app: Application) -> int:
    date_range = (args.start, args.end) if args.start else None
    status = app.gap_finder.overall_status(date_range)

    print("Reconciliation status")
    if status.start_date:
        print(f"  Range:        {status.start_date} .. {status.end_date}")
    print(f"  Facts:        {status.total_facts}")
    print(f"  Unique keys:  {status.unique_combos}")
    print(f"  Expected:     {status.expected_total}")
    print(f"  Actual:       {status.actual_total}")
    print(f"  Missing:      {status.missing}")
    print(f"  Completion:   {status.completion_percent}%")
    print("  By model variant:")
    for variant, count in status.by_model_variant.items():
        print(f"    {variant:<12s} {count} / {status.unique_combos}")
    return EXIT_OK


def cmd_check_date(args: argparse.Namespace, app: Application) -> int:
    details = app.gap_finder.details_for_date(args.date)
    limit = app.config.batch.failure_display_limit

    print(f"Date {details.settlement_date}")
    print(f"  Facts:        {details.fact_count} ({details.duplicate_rows} duplicate rows)")
    print(f"  Unique keys:  {details.unique_combos}")
    print(f"  Completion:   {details.completion_percent}% "
          f"({details.actual_total} / {details.expected_total})")
    for variant, item in details.by_model_variant.items():
        orphaned = f", {item.orphaned} orphaned" if item.orphaned else ""
        print(f"    {variant:<12s} {item.count} / {item.expected} ({item.percent}%{orphaned})")
    for variant, keys in details.missing_combos.items():
        print(f"  Missing for {variant}: {len(keys)}")
        for key in keys[:limit]:
            print(f"    period {key.settlement_period:>2d}  {key.entity_id}")
        if len(keys) > limit:
            print(f"    ... and {len(keys) - limit} more")
    return EXIT_OK


def cmd_find(args: argparse.Namespace, app: Application) -> int:
    gaps = app.gap_finder.find_incomplete(limit=args.limit)
    if not gaps:
        print("All dates complete")
        return EXIT_OK
    print(f"{len(gaps)} incomplete dates (worst first)")
    for gap in gaps:
        print(f"  {gap.settlement_date}  {gap.actual_count:>6d} / {gap.expected_count:<6d} "
              f"{gap.completion_percent:6.2f}%")
    return EXIT_OK


def cmd_fix_date(args: argparse.Namespace, app: Application) -> int:
    limit = app.config.batch.failure_display_limit
    try:
        result = app.orchestrator.fix_date(args.date)
    except (ConfigurationError, RepositoryException) as e:
        logger.error(f"fix-date {args.date} failed: {e}")
        print_summary(1, 0, [KeyFailure(args.date, describe_failure(e))], limit)
        return EXIT_ERROR
    except Exception as e:
        logger.error(f"fix-date {args.date} failed", exc_info=True)
        print_summary(1, 0, [KeyFailure(args.date, describe_failure(e))], limit)
        return EXIT_ERROR

    print(f"Date {result.settlement_date}: {result.before_percent}% -> {result.after_percent}%")
    print(f"  Duplicates removed: {result.records_removed}")
    for variant, recalculation in result.recalculations.items():
        print(f"  {variant:<12s} {recalculation.records_processed} rows "
              f"({recalculation.records_skipped} skipped)")
    print_summary(1, 1, [], limit)
    return EXIT_OK


@contextmanager
def _stop_on_signal(orchestrator: BatchOrchestrator) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cooperative stop at the next batch boundary."""
    def handler(signum, frame):
        orchestrator.request_stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handler)
        except ValueError:
            pass  # not in main thread
    try:
        yield
    finally:
        for sig, original in previous.items():
            signal.signal(sig, original)


def _run_batch(app: Application, run: Callable[[], BatchRunResult]) -> int:
    limit = app.config.batch.failure_display_limit
    try:
        with _stop_on_signal(app.orchestrator):
            result = run()
    except (ConfigurationError, RepositoryException) as e:
        logger.error(f"Run aborted: {e}")
        print(f"Run aborted: {describe_failure(e)}")
        print_summary(0, 0, [], limit)
        return EXIT_ERROR
    except Exception as e:
        logger.critical("Run aborted", exc_info=True)
        print(f"Run aborted: {describe_failure(e)}")
        print_summary(0, 0, [], limit)
        return EXIT_ERROR

    print_run_result(result, limit)
    return EXIT_OK


def cmd_fix_all(args: argparse.Namespace, app: Application) -> int:
    return _run_batch(app, lambda: app.orchestrator.fix_all(limit=args.limit))


def cmd_fix_range(args: argparse.Namespace, app: Application) -> int:
    return _run_batch(app, lambda: app.orchestrator.fix_range(args.start, args.end))


def cmd_dedup(args: argparse.Namespace, app: Application) -> int:
    if args.dry_run:
        preview = app.deduplicator.preview(args.date)
        print(f"Date {preview.settlement_date}: {len(preview.groups)} duplicate groups")
        print(f"  Rows to remove:     {preview.records_to_remove}")
        print(f"  Quantity:           {preview.before_quantity} -> {preview.after_quantity} MWh")
        print(f"  Payment:            {preview.before_payment} -> {preview.after_payment}")
        for group in preview.groups[:app.config.batch.failure_display_limit]:
            print(f"    period {group.settlement_period:>2d}  {group.entity_id}  "
                  f"ids={list(group.member_ids)}")
        return EXIT_OK

    result = app.deduplicator.deduplicate(args.date)
    print(f"Date {result.settlement_date}: {result.groups_resolved} groups resolved")
    print(f"  Rows removed:       {result.records_removed}")
    print(f"  Quantity removed:   {result.quantity_delta} MWh")
    print(f"  Payment removed:    {result.payment_delta}")
    return EXIT_OK


COMMANDS: Dict[str, Callable[[argparse.Namespace, Application], int]] = {
    "status": cmd_status,
    "check-date": cmd_check_date,
    "find": cmd_find,
    "fix-date": cmd_fix_date,
    "fix-all": cmd_fix_all,
    "fix-range": cmd_fix_range,
    "dedup": cmd_dedup,
}


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate arguments
    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_ERROR

    config = build_config(args)
    config_errors = config.validate()
    if config_errors:
        for error in config_errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(config.log_level, config.log_format, run_id=uuid.uuid4().hex[:12])
    print_banner(args, config)

    try:
        app = build_application(config)
    except (ConfigurationError, RepositoryException) as e:
        print(f"Error: {describe_failure(e)}", file=sys.stderr)
        return EXIT_ERROR

    try:
        return COMMANDS[args.command](args, app)
    except (ConfigurationError, RepositoryException) as e:
        print(f"Error: {describe_failure(e)}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        app.database.dispose()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
