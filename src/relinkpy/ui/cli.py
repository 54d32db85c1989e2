# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from relinkpy.app import BACKENDS, list_history, run_migration
from relinkpy.config import ConfigurationError, configure_logging, get_engine_settings
from relinkpy.domain.reconciliation import BUILTIN_MIGRATIONS, InvalidTransitionError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from relinkpy.app import MigrationRunResult
    from relinkpy.config import EngineSettings
    from relinkpy.domain.reconciliation import HistoryEntry, ReconciliationEngine

log = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_PAUSED = 130


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected an integer, got {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"Expected a value of at least 1, got {parsed}")
    return parsed


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run batch reconciliation migrations")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List the built-in migrations")

    run = subparsers.add_parser("run", help="Run a migration to completion")
    run.add_argument("migration", choices=sorted(BUILTIN_MIGRATIONS), help="Migration to run")
    run.add_argument(
        "--backend",
        choices=BACKENDS,
        default="sqlalchemy",
        help="Document store to migrate (default: %(default)s)",
    )
    run.add_argument(
        "--page-size",
        type=_positive_int,
        help="Records read per scan page (defaults to config)",
    )
    run.add_argument(
        "--unit-size",
        type=_positive_int,
        help="Individual records per unit of work (defaults to config)",
    )
    run.add_argument(
        "--max-pages",
        type=_positive_int,
        help="Safety ceiling on scanned pages (defaults to config)",
    )
    run.add_argument(
        "--no-delay",
        action="store_true",
        help="Disable the throttling delays between pages and units",
    )
    run.add_argument(
        "--record-history",
        action="store_true",
        help="Write a run summary to the migration_history collection",
    )

    history = subparsers.add_parser("history", help="Show recent migration runs")
    history.add_argument(
        "--backend",
        choices=BACKENDS,
        default="sqlalchemy",
        help="Document store holding the history (default: %(default)s)",
    )
    history.add_argument(
        "--limit",
        type=_positive_int,
        default=20,
        help="Number of runs to show (default: %(default)s)",
    )
    history.add_argument(
        "--migration",
        choices=sorted(BUILTIN_MIGRATIONS),
        help="Only show runs of this migration",
    )

    return parser.parse_args(list(argv))


def _engine_settings(args: argparse.Namespace) -> EngineSettings:
    settings = get_engine_settings()
    overrides: dict[str, int] = {}
    if args.page_size is not None:
        overrides["page_size"] = args.page_size
    if args.unit_size is not None:
        overrides["unit_size"] = args.unit_size
    if args.max_pages is not None:
        overrides["max_scan_pages"] = args.max_pages
    if overrides:
        settings = replace(settings, **overrides)
    if args.no_delay:
        settings = settings.without_delays()
    return settings


class _PauseOnInterrupt:
    """SIGINT handler asking the running engine to pause at its next checkpoint.

    A second Ctrl+C, or one before the engine exists, exits immediately.
    """

    def __init__(self) -> None:
        self.engine: ReconciliationEngine | None = None
        self.requested = False

    def attach(self, engine: ReconciliationEngine) -> None:
        self.engine = engine

    def __call__(self, _signal_received: int, _frame: FrameType | None) -> None:
        if self.engine is None or self.requested:
            log.info("Closed by user (Ctrl+C)")
            sys.exit(EXIT_PAUSED)
        self.requested = True
        try:
            self.engine.pause()
        except InvalidTransitionError:
            log.info("Closed by user (Ctrl+C)")
            sys.exit(EXIT_PAUSED)
        log.info("Pause requested, finishing the current unit (Ctrl+C again to abort)")


def _print_migrations() -> None:
    for name, definition in sorted(BUILTIN_MIGRATIONS.items()):
        print(f"{name:<22} {definition.collection:<20} {definition.description}")


def _print_summary(result: MigrationRunResult) -> None:
    progress = result.progress
    print(f"Migration:        {result.migration}")
    print(f"Phase:            {progress.phase.value}")
    print(f"Scanned:          {progress.scanned_records} ({progress.scan_pages} pages)")
    print(f"Needing work:     {progress.total_records}")
    units = f"{progress.completed_units}/{progress.total_batches} units"
    print(
        f"Processed:        {progress.processed_records} "
        f"({progress.progress_percentage}%, {units})"
    )
    print(f"Successful:       {progress.successful}")
    print(f"Skipped:          {progress.skipped} ({progress.no_target_found} without target)")
    print(f"Errors:           {progress.errors}")
    print(f"Targets created:  {progress.targets_created}")
    if progress.scan_truncated:
        print("Warning:          scan stopped at the page limit, rerun to continue")
    if progress.error_message:
        print(f"Error:            {progress.error_message}")


def _print_history(entries: Sequence[HistoryEntry]) -> None:
    if not entries:
        print("No migration runs recorded")
        return
    for entry in entries:
        started = (
            entry.started_at.isoformat(timespec="seconds") if entry.started_at else "-"
        )
        duration = (
            f"{entry.duration_seconds:.1f}s" if entry.duration_seconds is not None else "-"
        )
        print(
            f"{started}  {entry.migration:<22} {entry.status:<10} "
            f"ok={entry.successful} skipped={entry.skipped} errors={entry.errors} "
            f"created={entry.targets_created} ({duration})"
        )


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        settings = _engine_settings(parsed_args) if parsed_args.command == "run" else None
    except (ConfigurationError, ValueError):
        log.exception("CLI validation error")
        sys.exit(EXIT_USAGE)

    try:
        if parsed_args.command == "list":
            _print_migrations()
        elif parsed_args.command == "run":
            interrupt = _PauseOnInterrupt()
            signal(SIGINT, interrupt)
            result = run_migration(
                parsed_args.migration,
                backend=parsed_args.backend,
                settings=settings,
                record_history=parsed_args.record_history,
                on_engine=interrupt.attach,
            )
            _print_summary(result)
            if result.paused:
                sys.exit(EXIT_PAUSED)
            if result.failed:
                sys.exit(EXIT_FAILED)
        elif parsed_args.command == "history":
            entries = list_history(
                backend=parsed_args.backend,
                limit=parsed_args.limit,
                migration=parsed_args.migration,
            )
            _print_history(entries)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error during migration")
        sys.exit(EXIT_FAILED)


def run() -> None:
    """Console script entry point: load ``.env`` before parsing arguments."""
    load_dotenv()
    main()


if __name__ == "__main__":
    run()
