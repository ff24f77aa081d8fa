"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Balances replayed from committed journal lines: as-of
    account balances, full-tenant replay, and the trial balance.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Replay consistency: for every account, the cached current_balance
      equals the replayed balance of all committed lines.  "Committed"
      means entry status POSTED or VOID; a VOID entry is netted to zero by
      its posted reversal.
    - Trial balance: total debits equal total credits per tenant.

Audit relevance:
    This is the read path the reconciliation job uses to detect and repair
    balance-cache drift.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.models.account import Account, signed_delta
from ledger_kernel.models.journal import COMMITTED_STATUSES, JournalEntry, JournalLine
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TrialBalanceRow:
    """A single row in a trial balance."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit_total: int
    credit_total: int
    balance: int


@dataclass(frozen=True)
class TrialBalance:
    as_of: date | None
    rows: tuple[TrialBalanceRow, ...]

    @property
    def total_debits(self) -> int:
        return sum(r.debit_total for r in self.rows)

    @property
    def total_credits(self) -> int:
        return sum(r.credit_total for r in self.rows)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class LedgerSelector(BaseSelector[JournalLine]):
    """
    Replays balances from journal lines.

    Guarantees:
        - Every balance is in the natural sign of its account.
        - Nothing here reads Account.current_balance.
    """

    def _line_totals(self, tenant_id: UUID, as_of: date | None = None, account_id: UUID | None = None):
        stmt = (
            select(
                JournalLine.account_id,
                func.coalesce(func.sum(JournalLine.debit), 0),
                func.coalesce(func.sum(JournalLine.credit), 0),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.status.in_(COMMITTED_STATUSES),
            )
            .group_by(JournalLine.account_id)
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.entry_date <= as_of)
        if account_id is not None:
            stmt = stmt.where(JournalLine.account_id == account_id)
        return {row[0]: (int(row[1]), int(row[2])) for row in self.session.execute(stmt)}

    def account_balance(self, account_id: UUID, as_of: date | None = None) -> int:
        """Natural-sign balance of one account from committed lines dated <= as_of."""
        account = self.session.execute(
            select(Account.tenant_id, Account.normal_balance).where(Account.id == account_id)
        ).one_or_none()
        if account is None:
            return 0
        tenant_id, normal_balance = account
        debit, credit = self._line_totals(tenant_id, as_of, account_id).get(account_id, (0, 0))
        return signed_delta(normal_balance, debit, credit)

    def replay_balances(self, tenant_id: UUID, as_of: date | None = None) -> dict[UUID, int]:
        """Natural-sign balance of every account of the tenant, zero if unused."""
        totals = self._line_totals(tenant_id, as_of)
        accounts = self.session.execute(
            select(Account.id, Account.normal_balance).where(Account.tenant_id == tenant_id)
        ).all()
        return {
            acc_id: signed_delta(normal, *totals.get(acc_id, (0, 0)))
            for acc_id, normal in accounts
        }

    def trial_balance(self, tenant_id: UUID, as_of: date | None = None) -> TrialBalance:
        totals = self._line_totals(tenant_id, as_of)
        accounts = self.session.scalars(
            select(Account).where(Account.tenant_id == tenant_id).order_by(Account.code)
        ).all()
        rows = []
        for acc in accounts:
            debit, credit = totals.get(acc.id, (0, 0))
            if debit == 0 and credit == 0:
                continue
            rows.append(
                TrialBalanceRow(
                    account_id=acc.id,
                    account_code=acc.code,
                    account_name=acc.name,
                    account_type=str(getattr(acc.account_type, "value", acc.account_type)),
                    debit_total=debit,
                    credit_total=credit,
                    balance=signed_delta(acc.normal_balance, debit, credit),
                )
            )
        return TrialBalance(as_of=as_of, rows=tuple(rows))
