#!/usr/bin/env python3
"""
Reconcile cached balances against the journal.

For each tenant: replays every account from committed journal lines and
repairs drifted current_balance values, checks the trial balance, then
compares each retainer's balance to its journal history.

Usage:
    python3 scripts/reconcile_balances.py [--tenant-id <uuid> ...] [options]

Examples:
    # Every tenant found in the accounts table, repairing drift
    python3 scripts/reconcile_balances.py

    # One tenant, report only
    python3 scripts/reconcile_balances.py --tenant-id 5b1f... --no-repair

Exit code is 0 when every tenant is clean (or was repaired) and 1 when the
trial balance is out of balance or drift was found with --no-repair.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare and repair account and retainer balances against the journal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--tenant-id",
        action="append",
        type=UUID,
        default=None,
        help="Tenant to reconcile (repeatable; default: every tenant with accounts).",
    )
    parser.add_argument(
        "--no-repair",
        action="store_true",
        help="Report drift without writing corrected balances.",
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
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    repair = not args.no_repair

    # Lazy imports so we fail fast on args first
    from sqlalchemy import select

    from ledger_config import get_active_config
    from ledger_kernel.db.engine import get_session, init_engine_from_url
    from ledger_kernel.logging_config import configure_logging
    from ledger_kernel.models.account import Account
    from ledger_kernel.services.reconciliation_service import ReconciliationService
    from ledger_modules.retainers import RetainerLedger

    try:
        config = get_active_config(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level)
    init_engine_from_url(args.db_url or config.database.url, busy_timeout=config.database.busy_timeout)

    session = get_session()
    exit_code = 0
    try:
        tenant_ids = args.tenant_id or session.scalars(
            select(Account.tenant_id).distinct().order_by(Account.tenant_id)
        ).all()
        if not tenant_ids:
            print("No tenants found.")
            return 0

        for tenant_id in tenant_ids:
            report = ReconciliationService(session).reconcile_balances(tenant_id, repair=repair)
            session.commit()
            retainer_drifts = RetainerLedger(session, config).verify_balances(tenant_id, repair=repair)

            status = "clean" if report.is_clean and not retainer_drifts else "drift"
            print(
                f"{tenant_id}: {status} accounts={report.accounts_checked} "
                f"account_drifts={len(report.drifts)} retainer_drifts={len(retainer_drifts)} "
                f"trial_balance_ok={report.trial_balance_ok}"
            )
            for drift in report.drifts:
                print(f"  account {drift.account_code}: cached={drift.cached_balance} replayed={drift.replayed_balance}")
            for drift in retainer_drifts:
                print(f"  retainer {drift.retainer_id}: cached={drift.cached_balance} replayed={drift.replayed_balance}")

            if not report.trial_balance_ok:
                exit_code = 1
            elif not repair and (report.drifts or retainer_drifts):
                exit_code = 1
    except Exception as e:
        session.rollback()
        print(f"ERROR: Reconciliation failed: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
