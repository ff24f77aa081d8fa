"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only journal queries -- by id, by source, by date
    range, by account, and by reference.
Architecture position: Kernel > Selectors.

Usage:
    After a timeout on post() the outcome is unknown.  Callers re-check with
    find_by_source() before retrying; the retry itself is safe either way
    because posting is idempotent on (tenant, source_type, source_id).
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import PostedJournalEntry
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector[JournalEntry]):
    """Journal entry queries returning PostedJournalEntry DTOs."""

    def get_entry(self, entry_id: UUID) -> PostedJournalEntry | None:
        entry = self.session.get(JournalEntry, entry_id)
        return PostedJournalEntry.from_model(entry) if entry else None

    def find_by_source(
        self,
        tenant_id: UUID,
        source_type: str,
        source_id: str,
    ) -> PostedJournalEntry | None:
        """The live (non-void) entry for a source, if any."""
        entry = self.session.scalars(
            select(JournalEntry).where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.source_type == source_type,
                JournalEntry.source_id == str(source_id),
                JournalEntry.status != JournalEntryStatus.VOID.value,
            )
        ).first()
        return PostedJournalEntry.from_model(entry) if entry else None

    def list_by_source(
        self,
        tenant_id: UUID,
        source_type: str,
        source_id: str | None = None,
        include_void: bool = True,
    ) -> list[PostedJournalEntry]:
        """All entries for a source type (optionally one source), oldest first."""
        stmt = select(JournalEntry).where(
            JournalEntry.tenant_id == tenant_id,
            JournalEntry.source_type == source_type,
        )
        if source_id is not None:
            stmt = stmt.where(JournalEntry.source_id == str(source_id))
        if not include_void:
            stmt = stmt.where(JournalEntry.status != JournalEntryStatus.VOID.value)
        stmt = stmt.order_by(JournalEntry.entry_date, JournalEntry.created_at)
        return [PostedJournalEntry.from_model(e) for e in self.session.scalars(stmt)]

    def list_by_date_range(
        self,
        tenant_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[PostedJournalEntry]:
        stmt = (
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.entry_date >= start_date,
                JournalEntry.entry_date <= end_date,
            )
            .order_by(JournalEntry.entry_date, JournalEntry.created_at)
        )
        return [PostedJournalEntry.from_model(e) for e in self.session.scalars(stmt)]

    def list_by_account(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[PostedJournalEntry]:
        stmt = (
            select(JournalEntry)
            .join(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalLine.account_id == account_id)
            .distinct()
        )
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        stmt = stmt.order_by(JournalEntry.entry_date, JournalEntry.created_at)
        return [PostedJournalEntry.from_model(e) for e in self.session.scalars(stmt)]

    def list_by_reference(
        self,
        tenant_id: UUID,
        reference_id: str,
    ) -> list[PostedJournalEntry]:
        stmt = (
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.reference_id == str(reference_id),
            )
            .order_by(JournalEntry.entry_date, JournalEntry.created_at)
        )
        return [PostedJournalEntry.from_model(e) for e in self.session.scalars(stmt)]
