"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow into and out of the
    kernel services: DraftLine / DraftJournalEntry (posting input),
    PostedLine / PostedJournalEntry (posting output), VoidResult,
    AccountInfo, FiscalPeriodInfo, and PostingWindow.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    the service and selector layers.

Invariants enforced:
    - All amounts are ints counting minor units.
    - DraftLine is constructed single-sided through debit_line/credit_line;
      the journal engine still validates every line it receives.

Data flow:
    DraftJournalEntry -> JournalService.post() -> PostedJournalEntry
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.models.account import AccountType, NormalBalance
from ledger_kernel.models.fiscal_period import PeriodStatus
from ledger_kernel.models.journal import JournalEntryStatus

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.fiscal_period import FiscalPeriod as FiscalPeriodModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel


@dataclass(frozen=True)
class DraftLine:
    """One proposed debit or credit against an account."""

    account_id: UUID
    debit: int = 0
    credit: int = 0
    memo: str | None = None

    @classmethod
    def debit_line(cls, account_id: UUID, amount: int, memo: str | None = None) -> DraftLine:
        return cls(account_id=account_id, debit=amount, credit=0, memo=memo)

    @classmethod
    def credit_line(cls, account_id: UUID, amount: int, memo: str | None = None) -> DraftLine:
        return cls(account_id=account_id, debit=0, credit=amount, memo=memo)


@dataclass(frozen=True)
class DraftJournalEntry:
    """
    A journal entry proposed for posting.

    Contract:
        (tenant_id, source_type, source_id) is the idempotence key.  Posting
        the same key twice yields ALREADY_POSTED for the second call.

    Non-goals:
        - Does NOT validate itself; JournalService.post() does.
    """

    tenant_id: UUID
    entry_date: date
    source_type: str
    source_id: str
    lines: tuple[DraftLine, ...]
    created_by_id: UUID
    description: str | None = None
    reference_id: str | None = None

    @property
    def total_debits(self) -> int:
        return sum(line.debit for line in self.lines)

    @property
    def total_credits(self) -> int:
        return sum(line.credit for line in self.lines)


@dataclass(frozen=True)
class PostedLine:
    account_id: UUID
    debit: int
    credit: int
    line_seq: int
    memo: str | None = None


@dataclass(frozen=True)
class PostedJournalEntry:
    """
    Read-side snapshot of a persisted journal entry.

    Guarantees:
        - Immutable (frozen dataclass).
        - lines are ordered by line_seq.
    """

    id: UUID
    tenant_id: UUID
    entry_date: date
    status: JournalEntryStatus
    source_type: str
    source_id: str
    lines: tuple[PostedLine, ...]
    created_by_id: UUID
    posted_at: datetime | None = None
    reference_id: str | None = None
    reversal_of_id: UUID | None = None
    description: str | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None

    @property
    def total_debits(self) -> int:
        return sum(line.debit for line in self.lines)

    @property
    def total_credits(self) -> int:
        return sum(line.credit for line in self.lines)

    @property
    def is_void(self) -> bool:
        return self.status == JournalEntryStatus.VOID

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> PostedJournalEntry:
        lines = tuple(
            PostedLine(
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                line_seq=line.line_seq,
                memo=line.memo,
            )
            for line in sorted(model.lines, key=lambda x: x.line_seq)
        )
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            entry_date=model.entry_date,
            status=JournalEntryStatus(model.status),
            source_type=model.source_type,
            source_id=model.source_id,
            lines=lines,
            created_by_id=model.created_by_id,
            posted_at=model.posted_at,
            reference_id=model.reference_id,
            reversal_of_id=model.reversal_of_id,
            description=model.description,
            voided_at=model.voided_at,
            void_reason=model.void_reason,
        )


@dataclass(frozen=True)
class VoidResult:
    """Outcome of voiding an entry: the voided original and its reversal."""

    original: PostedJournalEntry
    reversal: PostedJournalEntry


@dataclass(frozen=True)
class AccountInfo:
    """Immutable snapshot of an account, including its cached balance."""

    id: UUID
    tenant_id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_active: bool
    current_balance: int
    subtype: str | None = None
    parent_id: UUID | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            code=model.code,
            name=model.name,
            account_type=AccountType(model.account_type),
            normal_balance=NormalBalance(model.normal_balance),
            is_active=model.is_active,
            current_balance=model.current_balance,
            subtype=model.subtype,
            parent_id=model.parent_id,
        )


@dataclass(frozen=True)
class FiscalPeriodInfo:
    """Immutable snapshot of fiscal period state."""

    id: UUID
    tenant_id: UUID
    fiscal_year: int
    sequence: int
    period_code: str
    start_date: date
    end_date: date
    status: PeriodStatus
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    locked_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: FiscalPeriodModel) -> FiscalPeriodInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            fiscal_year=model.fiscal_year,
            sequence=model.sequence,
            period_code=model.period_code,
            start_date=model.start_date,
            end_date=model.end_date,
            status=PeriodStatus(model.status),
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
            locked_at=model.locked_at,
        )


@dataclass(frozen=True)
class PostingWindow:
    """
    Answer to "may an entry dated D post for this tenant?".

    reason_code is None when allowed, otherwise PERIOD_CLOSED or
    PERIOD_LOCKED.
    """

    allowed: bool
    period: FiscalPeriodInfo | None = None
    reason_code: str | None = None
