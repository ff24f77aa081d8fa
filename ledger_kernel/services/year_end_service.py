"""
YearEndService -- fiscal year-end close.

Responsibility:
    Zeroes every income and expense account into the retained-earnings
    equity account with ordinary postings, then closes the final period
    of the fiscal year.

Architecture position:
    Kernel > Services -- flush-only.  Composes PeriodService, JournalService
    and LedgerSelector.

Invariants enforced:
    - One closing entry per income/expense account with a non-zero balance
      as of the last day of the fiscal year, dated that day.
    - Idempotent: an account already at zero gets no entry, so a re-run
      after a partial failure posts only what is missing.
    - Re-runnable after a reopen: closing entries are keyed
      "{fiscal_year}:{account_id}:{run}", where run counts the earlier
      closing entries for that account and year, so a residual posted
      after an earlier close gets an entry of its own.
    - Income and expense accounts deactivated during the year are still
      closed.
    - Balances are reset only through the journal; the audit trail stays
      append-only.

Failure modes:
    - PeriodNotFoundError: the tenant has no periods for the fiscal year.
    - OutOfOrderCloseError: a period before the final one is still open.
    - RoleNotBoundError: no active retained-earnings equity account.
    - AccountTypeMismatchError: the configured retained-earnings code is not
      an equity account.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    DraftJournalEntry,
    DraftLine,
    FiscalPeriodInfo,
    PostedJournalEntry,
)
from ledger_kernel.domain.fiscal_calendar import format_period_code
from ledger_kernel.exceptions import (
    AccountTypeMismatchError,
    AlreadyPostedError,
    OutOfOrderCloseError,
    PeriodNotFoundError,
    RoleNotBoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    Account,
    AccountSubtype,
    AccountType,
    NormalBalance,
)
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.period_service import PeriodService

logger = get_logger("services.year_end")

YEAR_END_SOURCE_TYPE = "year_end_close"
RETAINED_EARNINGS_ROLE = "retained_earnings"


@dataclass(frozen=True)
class YearEndResult:
    fiscal_year: int
    closing_entries: tuple[PostedJournalEntry, ...]
    final_period: FiscalPeriodInfo


class YearEndService(BaseService[FiscalPeriod]):
    """
    Year-end close for one tenant and fiscal year.

    ``retained_earnings_code`` is the ``retained_earnings`` role binding from
    the ledger config.  Without it the tenant's active equity account with
    the retained-earnings subtype is used.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        journal_service: JournalService | None = None,
        period_service: PeriodService | None = None,
        retained_earnings_code: str | None = None,
    ):
        super().__init__(session, clock)
        self._periods = period_service or PeriodService(session, self._clock)
        self._journal = journal_service or JournalService(
            session, self._clock, period_service=self._periods
        )
        self._ledger = LedgerSelector(session)
        self._journal_selector = JournalSelector(session)
        self._retained_earnings_code = retained_earnings_code

    def _retained_earnings_account(self, tenant_id: UUID) -> Account:
        stmt = select(Account).where(Account.tenant_id == tenant_id, Account.is_active.is_(True))
        if self._retained_earnings_code is not None:
            stmt = stmt.where(Account.code == self._retained_earnings_code)
        else:
            stmt = stmt.where(
                Account.account_type == AccountType.EQUITY.value,
                Account.subtype == AccountSubtype.RETAINED_EARNINGS.value,
            ).order_by(Account.code)
        account = self.session.scalars(stmt).first()
        if account is None:
            raise RoleNotBoundError(RETAINED_EARNINGS_ROLE, str(tenant_id))
        if account.account_type != AccountType.EQUITY.value:
            logger.critical(
                "account_role_type_mismatch",
                extra={
                    "role": RETAINED_EARNINGS_ROLE,
                    "account_code": account.code,
                    "expected_type": AccountType.EQUITY.value,
                    "actual_type": account.account_type,
                },
            )
            raise AccountTypeMismatchError(
                RETAINED_EARNINGS_ROLE, account.code, AccountType.EQUITY.value, account.account_type
            )
        return account

    def _closing_run(self, tenant_id: UUID, fiscal_year: int, account_id: UUID) -> int:
        """Number of closing entries (live or void) already keyed to this account and year."""
        return self.session.scalar(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.source_type == YEAR_END_SOURCE_TYPE,
                JournalEntry.source_id.like(f"{fiscal_year}:{account_id}:%"),
            )
        ) or 0

    @staticmethod
    def _closing_lines(account: Account, balance: int, retained_earnings_id: UUID) -> tuple[DraftLine, ...]:
        amount = abs(balance)
        # Move the balance off its normal side; flip when the balance is negative.
        zero_with_credit = (NormalBalance(account.normal_balance) == NormalBalance.DEBIT) == (balance > 0)
        if zero_with_credit:
            return (
                DraftLine.credit_line(account.id, amount, memo="Year-end close"),
                DraftLine.debit_line(retained_earnings_id, amount, memo=f"Close {account.code}"),
            )
        return (
            DraftLine.debit_line(account.id, amount, memo="Year-end close"),
            DraftLine.credit_line(retained_earnings_id, amount, memo=f"Close {account.code}"),
        )

    def year_end_close(self, tenant_id: UUID, fiscal_year: int, actor_id: UUID) -> YearEndResult:
        """
        Post closing entries for the year, then close its final period.

        Postconditions:
            - Every income and expense account, active or not, has a zero
              balance as of the last day of the fiscal year.
            - The final period of the year is CLOSED (left as is if it was
              already closed or locked by an earlier run).
        """
        periods = self._periods.list_periods(tenant_id, fiscal_year)
        if not periods:
            raise PeriodNotFoundError(format_period_code(fiscal_year, 12))
        final = periods[-1]

        earlier_open = self.session.scalars(
            select(FiscalPeriod.period_code)
            .where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date < final.start_date,
                FiscalPeriod.status == PeriodStatus.OPEN.value,
            )
            .order_by(FiscalPeriod.start_date)
        ).first()
        if earlier_open is not None:
            raise OutOfOrderCloseError(final.period_code, earlier_open)

        retained = self._retained_earnings_account(tenant_id)
        balances = self._ledger.replay_balances(tenant_id, as_of=final.end_date)
        nominal_accounts = self.session.scalars(
            select(Account)
            .where(
                Account.tenant_id == tenant_id,
                Account.account_type.in_((AccountType.INCOME.value, AccountType.EXPENSE.value)),
            )
            .order_by(Account.code)
        ).all()

        entries: list[PostedJournalEntry] = []
        for account in nominal_accounts:
            balance = balances.get(account.id, 0)
            if balance == 0:
                continue
            run = self._closing_run(tenant_id, fiscal_year, account.id) + 1
            draft = DraftJournalEntry(
                tenant_id=tenant_id,
                entry_date=final.end_date,
                source_type=YEAR_END_SOURCE_TYPE,
                source_id=f"{fiscal_year}:{account.id}:{run}",
                lines=self._closing_lines(account, balance, retained.id),
                created_by_id=actor_id,
                description=f"FY{fiscal_year} close of {account.code} {account.name}",
            )
            try:
                entries.append(self._journal.post(draft, allow_inactive_accounts=True))
            except AlreadyPostedError as exc:
                # A concurrent run posted the same residual first.
                existing = self._journal_selector.get_entry(UUID(exc.journal_entry_id))
                entries.append(existing)

        if final.status == PeriodStatus.OPEN:
            final = self._periods.close_period(final.id, actor_id)

        logger.info(
            "year_end_closed",
            extra={
                "tenant_id": str(tenant_id),
                "fiscal_year": fiscal_year,
                "closing_entry_count": len(entries),
                "retained_earnings_account": retained.code,
            },
        )
        return YearEndResult(fiscal_year=fiscal_year, closing_entries=tuple(entries), final_period=final)
