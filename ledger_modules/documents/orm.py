"""
Source Document ORM Models (``ledger_modules.documents.orm``).

Responsibility
--------------
SQLAlchemy persistence for source documents (invoices, bills, expenses).
Maps to the ``SourceDocument`` frozen dataclass in ``models.py``.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``ledger_kernel``.

Invariants enforced
-------------------
* ``status`` only changes through ``DocumentPostingService`` after the
  matching journal posting succeeded in the same transaction.
* One document per (tenant, recurring transaction, occurrence date)
  (uq_source_document_occurrence), which makes recurring generation
  idempotent.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TenantScopedBase, UUIDString


class SourceDocumentModel(TenantScopedBase):
    """
    ORM model for an invoice, bill, or expense.

    Guarantees:
        - amount and amount_paid are BIGINT minor units.
        - amount_paid never exceeds amount.
    """

    __tablename__ = "source_documents"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "recurring_transaction_id",
            "occurrence_date",
            name="uq_source_document_occurrence",
        ),
        Index("idx_source_document_tenant_type", "tenant_id", "document_type"),
        Index("idx_source_document_status", "tenant_id", "status"),
    )

    document_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    counterparty_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    document_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Set when generated by the recurring scheduler
    recurring_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    occurrence_date: Mapped[date | None] = mapped_column(nullable=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from ledger_modules.documents.models import (
            DocumentStatus,
            DocumentType,
            SourceDocument,
        )

        return SourceDocument(
            id=self.id,
            tenant_id=self.tenant_id,
            document_type=DocumentType(self.document_type),
            status=DocumentStatus(self.status),
            amount=self.amount,
            document_date=self.document_date,
            amount_paid=self.amount_paid,
            number=self.number,
            counterparty_id=self.counterparty_id,
            category=self.category,
            due_date=self.due_date,
            description=self.description,
            recurring_transaction_id=self.recurring_transaction_id,
            occurrence_date=self.occurrence_date,
            posted_at=self.posted_at,
            payload=dict(self.payload or {}),
        )

    def __repr__(self) -> str:
        return f"<SourceDocumentModel {self.document_type} {self.number or self.id}: {self.status}>"
