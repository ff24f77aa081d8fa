"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines -- the
    append-only record from which every balance is derived.
Architecture position: Kernel > Models.  May import from db/base.py and
    sibling models (account).

Invariants enforced:
    - (tenant_id, source_type, source_id) is unique among non-void entries
      (partial unique index uq_journal_live_source).  This is the
      idempotence key of the journal engine.
    - Posted entries and their lines are never updated or deleted, apart
      from the single POSTED -> VOID transition (db/immutability.py).
    - Each line carries exactly one positive amount: debit or credit.

Failure modes:
    - IntegrityError on a second live entry for the same source; the
      journal engine converts this into AlreadyPostedError.

Audit relevance:
    reversal_of_id links a reversal to the entry it cancels.  A voided
    entry stays in the table with voided_at / void_reason / voided_by_id.
"""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedBase, TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntryStatus(str, Enum):
    """Journal entry lifecycle states."""

    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


# Statuses whose lines count toward balances.  A void entry is netted to zero
# by its reversal, which is itself posted.
COMMITTED_STATUSES = (JournalEntryStatus.POSTED.value, JournalEntryStatus.VOID.value)

REVERSAL_SOURCE_TYPE = "reversal"


class JournalEntry(TenantScopedBase):
    """
    A balanced, dated set of journal lines for one tenant.

    Contract:
        Once POSTED, the entry is immutable except for voiding, which sets
        status to VOID and records who voided it, when, and why.

    Guarantees:
        - At most one non-void entry exists per (tenant, source_type,
          source_id).
        - reversal_of_id is set only on entries with source_type "reversal".
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        Index(
            "uq_journal_live_source",
            "tenant_id",
            "source_type",
            "source_id",
            unique=True,
            postgresql_where=text("status <> 'void'"),
            sqlite_where=text("status <> 'void'"),
        ),
        Index("idx_journal_tenant_date", "tenant_id", "entry_date"),
        Index("idx_journal_reference", "tenant_id", "reference_id"),
        Index("idx_journal_status", "status"),
    )


    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(20),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    # What business event produced this entry, e.g. ("invoice", "<uuid>")
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)

    source_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Secondary grouping key, e.g. the retainer an entry moved funds on
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_seq",
        lazy="selectin",
    )

    reversal_of: Mapped["JournalEntry | None"] = relationship(
        remote_side="JournalEntry.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.id} {self.source_type}:{self.source_id} ({self.status})>"

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def total_debits(self) -> int:
        return sum(line.debit for line in self.lines)

    @property
    def total_credits(self) -> int:
        return sum(line.credit for line in self.lines)


class JournalLine(TrackedBase):
    """
    One debit or one credit of a journal entry.

    Guarantees:
        - Exactly one of debit / credit is positive, the other is zero
          (ck_line_single_sided).
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        CheckConstraint(
            "(debit > 0 AND credit = 0) OR (credit > 0 AND debit = 0)",
            name="ck_line_single_sided",
        ),
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    credit: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="journal_lines")

    def __repr__(self) -> str:
        return f"<JournalLine {self.line_seq} dr={self.debit} cr={self.credit}>"
