"""
ReconciliationService -- balance-cache repair.

Responsibility:
    Recomputes every account's balance from committed journal lines and
    repairs the cached current_balance where it has drifted.  Also checks
    that the tenant's journal is in balance overall.

Architecture position:
    Kernel > Services -- flush-only.  Run periodically by
    scripts/reconcile_balances.py; safe to run alongside live posting.

Invariants enforced:
    - Each account row is locked while its replayed balance is computed and
      written, so a concurrent posting either lands before the replay (and
      is counted) or after the repair (and increments the repaired value).

Audit relevance:
    Every repaired account is logged at WARNING with cached and replayed
    values; an unbalanced trial balance is logged at CRITICAL.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class BalanceDrift:
    account_id: UUID
    account_code: str
    cached_balance: int
    replayed_balance: int

    @property
    def difference(self) -> int:
        return self.cached_balance - self.replayed_balance


@dataclass(frozen=True)
class ReconciliationReport:
    tenant_id: UUID
    accounts_checked: int
    drifts: tuple[BalanceDrift, ...]
    repaired: bool
    trial_balance_ok: bool

    @property
    def is_clean(self) -> bool:
        return not self.drifts and self.trial_balance_ok


class ReconciliationService(BaseService[Account]):
    """Compare and repair the balance cache against the journal."""

    def reconcile_balances(self, tenant_id: UUID, repair: bool = True) -> ReconciliationReport:
        ledger = LedgerSelector(self.session)
        account_ids = self.session.scalars(
            select(Account.id).where(Account.tenant_id == tenant_id).order_by(Account.code)
        ).all()

        drifts = []
        for account_id in account_ids:
            code, cached = self.session.execute(
                select(Account.code, Account.current_balance)
                .where(Account.id == account_id)
                .with_for_update()
            ).one()
            replayed = ledger.account_balance(account_id)
            if cached == replayed:
                continue

            drifts.append(BalanceDrift(account_id, code, cached, replayed))
            logger.warning(
                "balance_drift_detected",
                extra={
                    "account_id": str(account_id),
                    "account_code": code,
                    "cached_balance": cached,
                    "replayed_balance": replayed,
                    "repair": repair,
                },
            )
            if repair:
                self.session.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(current_balance=replayed)
                    .execution_options(synchronize_session=False)
                )
                cached_obj = self.session.get(Account, account_id)
                if cached_obj is not None:
                    self.session.expire(cached_obj, ["current_balance"])

        self.session.flush()

        trial_balance = ledger.trial_balance(tenant_id)
        if not trial_balance.is_balanced:
            logger.critical(
                "trial_balance_out_of_balance",
                extra={
                    "tenant_id": str(tenant_id),
                    "total_debits": trial_balance.total_debits,
                    "total_credits": trial_balance.total_credits,
                },
            )

        report = ReconciliationReport(
            tenant_id=tenant_id,
            accounts_checked=len(account_ids),
            drifts=tuple(drifts),
            repaired=repair and bool(drifts),
            trial_balance_ok=trial_balance.is_balanced,
        )
        logger.info(
            "balances_reconciled",
            extra={
                "tenant_id": str(tenant_id),
                "accounts_checked": report.accounts_checked,
                "drift_count": len(drifts),
            },
        )
        return report
