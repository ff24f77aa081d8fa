#!/usr/bin/env python3
"""
Run the recurring-transaction scheduler.

Each tick calls RecurringService.process_due() for everything whose next
run date has arrived.  Database URL and tick interval come from the active
config (get_active_config) unless overridden on the command line.

Usage:
    python3 scripts/run_scheduler.py [--once] [options]

Examples:
    # One pass over everything due now, then exit (cron-friendly)
    python3 scripts/run_scheduler.py --once

    # Long-running loop, ticking every 10 minutes
    python3 scripts/run_scheduler.py --interval 600

    # Against a specific database, creating tables first
    python3 scripts/run_scheduler.py --once --db-url sqlite:///ledger.db --create-tables
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate due recurring invoices, bills and expenses.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit (exit code 1 if any occurrence raised).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Ledger config YAML (default: LEDGER_CONFIG_PATH or packaged defaults).",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: database.url from config).",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between ticks in loop mode (default: scheduler.tick_interval_seconds).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before the first tick.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    if args.interval is not None and args.interval <= 0:
        print("ERROR: --interval must be positive", file=sys.stderr)
        return 1

    # Lazy imports so we fail fast on args first
    from ledger_batch.services import RecurringScheduler, RecurringService
    from ledger_config import get_active_config
    from ledger_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
    from ledger_kernel.db.immutability import register_immutability_listeners
    from ledger_kernel.logging_config import configure_logging

    try:
        config = get_active_config(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level)
    db = config.database
    init_engine_from_url(
        args.db_url or db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        busy_timeout=db.busy_timeout,
    )
    register_immutability_listeners()
    if args.create_tables:
        create_tables()

    scheduler = RecurringScheduler(
        get_session_factory(),
        lambda session: RecurringService(session, config),
        tick_interval_seconds=args.interval or config.scheduler.tick_interval_seconds,
    )

    if args.once:
        result = scheduler.tick()
        print(
            f"as_of={result.as_of.isoformat()} generated={result.generated} "
            f"retried={result.retried} paused={result.paused} errors={result.errors}"
        )
        for occurrence in result.occurrences:
            detail = occurrence.error_code or occurrence.document_id
            print(f"  {occurrence.recurring_id} {occurrence.occurrence_date} {occurrence.outcome.value} {detail}")
        return 1 if result.errors else 0

    scheduler.start()
    print("Scheduler running; Ctrl-C to stop.")
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("Stopping scheduler...")
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
