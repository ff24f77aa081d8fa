"""
Module: ledger_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal periods -- the date windows that
    gate which journal entries may post.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, fiscal_year, sequence) is unique; the twelve periods of a
      tenant's fiscal year partition its date range.
    - status follows the lifecycle table in domain/period_lifecycle.py;
      LOCKED is terminal.  Only PeriodService mutates status.

Failure modes:
    - IntegrityError on a duplicate (tenant_id, fiscal_year, sequence).

Audit relevance:
    closed_at / closed_by_id / locked_at record who froze the period and
    when.  Posting decisions are made against the status row read under
    lock inside the posting transaction.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TenantScopedBase, UUIDString


class PeriodStatus(str, Enum):
    """Fiscal period lifecycle states."""

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class FiscalPeriod(TenantScopedBase):
    """
    One monthly fiscal period of a tenant.

    Contract:
        A journal entry may post to a date only while the period containing
        that date is OPEN.

    Guarantees:
        - start_date <= end_date (both inclusive).
        - period_code is "FY{fiscal_year}-{sequence:02d}".
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "fiscal_year", "sequence", name="uq_period_tenant_year_seq"
        ),
        Index("idx_period_tenant_dates", "tenant_id", "start_date", "end_date"),
        Index("idx_period_tenant_status", "tenant_id", "status"),
    )


    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # 1..12 within the fiscal year
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    period_code: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.period_code} ({self.status})>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_locked(self) -> bool:
        return self.status == PeriodStatus.LOCKED

    def contains_date(self, check_date: date) -> bool:
        """Check if a date falls within this period (inclusive)."""
        return self.start_date <= check_date <= self.end_date
