"""
ORM model for recurring transactions.

Contract:
    RecurringTransactionModel persists the template, cadence, lifecycle
    status and generation history of one recurring invoice, bill, or
    expense.  ``to_dto()`` returns the frozen RecurringTransaction.

Architecture: ledger_batch/models.  Imports from ledger_kernel.db.base only.

Invariants enforced:
    - next_run_date only moves forward, and only after a generated
      occurrence committed.
    - failure_count counts consecutive failed attempts; it resets on the
      next success.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TenantScopedBase

if TYPE_CHECKING:
    from ledger_batch.domain.types import RecurringTransaction


class RecurringTransactionModel(TenantScopedBase):
    """Persistent recurring transaction."""

    __tablename__ = "recurring_transactions"

    __table_args__ = (
        Index("ix_recurring_due", "status", "next_run_date"),
        Index("ix_recurring_tenant", "tenant_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    anchor_day: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(nullable=False)
    next_run_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date | None] = mapped_column(nullable=True)
    max_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    auto_post: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    template_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    generated_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_generated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_occurrence_date: Mapped[date | None] = mapped_column(nullable=True)
    last_error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_failed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> RecurringTransaction:
        from ledger_batch.domain.types import (
            Frequency,
            RecurringStatus,
            RecurringTransaction,
        )

        return RecurringTransaction(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            frequency=Frequency(self.frequency),
            anchor_day=self.anchor_day,
            start_date=self.start_date,
            next_run_date=self.next_run_date,
            status=RecurringStatus(self.status),
            auto_post=self.auto_post,
            template_payload=dict(self.template_payload or {}),
            end_date=self.end_date,
            max_occurrences=self.max_occurrences,
            generated_count=self.generated_count,
            failure_count=self.failure_count,
            last_generated_at=self.last_generated_at,
            last_occurrence_date=self.last_occurrence_date,
            last_error_code=self.last_error_code,
            last_error_message=self.last_error_message,
            last_failed_at=self.last_failed_at,
        )

    def __repr__(self) -> str:
        return f"<RecurringTransactionModel {self.name}: {self.frequency} next={self.next_run_date}>"
