"""
Source-Document Domain Models (``ledger_modules.documents.models``).

Responsibility
--------------
Frozen value objects for the source-document adapters: the closed set of
business-event variants that may post to the ledger, and the read-side
snapshot of a stored source document.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``mapping.py`` (event -> draft entry) and ``DocumentPostingService``.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All amounts are ints counting minor units -- NEVER ``float``.
* Every event variant exposes ``source_type``, ``source_id`` and
  ``entry_date``; (tenant_id, source_type, source_id) is the idempotence
  key the journal engine enforces.

Failure modes
-------------
* Construction with invalid enum values raises ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID


class SourceType(str, Enum):
    """Journal source types produced by the adapters."""

    INVOICE = "invoice"
    PAYMENT = "payment"
    EXPENSE = "expense"
    BILL = "bill"
    BILL_PAYMENT = "bill_payment"
    RETAINER_DEPOSIT = "retainer_deposit"
    RETAINER_CONSUMPTION = "retainer_consumption"
    RETAINER_REFUND = "retainer_refund"


class DocumentType(str, Enum):
    INVOICE = "invoice"
    BILL = "bill"
    EXPENSE = "expense"


class DocumentStatus(str, Enum):
    """Source document lifecycle states (see workflows.py)."""

    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentSource(str, Enum):
    """Credit side of an approved expense."""

    BANK = "bank"
    ACCOUNTS_PAYABLE = "accounts_payable"


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceSent:
    """An invoice was sent to the client: DR receivable / CR revenue."""

    source_type: ClassVar[SourceType] = SourceType.INVOICE

    tenant_id: UUID
    invoice_id: UUID
    amount: int
    entry_date: date
    actor_id: UUID
    invoice_number: str | None = None

    @property
    def source_id(self) -> str:
        return str(self.invoice_id)


@dataclass(frozen=True)
class PaymentReceived:
    """A client paid against an invoice: DR bank / CR receivable."""

    source_type: ClassVar[SourceType] = SourceType.PAYMENT

    tenant_id: UUID
    payment_id: str
    invoice_id: UUID
    amount: int
    entry_date: date
    actor_id: UUID

    @property
    def source_id(self) -> str:
        return str(self.payment_id)


@dataclass(frozen=True)
class ExpenseApproved:
    """An expense was approved: DR category expense / CR bank or payable."""

    source_type: ClassVar[SourceType] = SourceType.EXPENSE

    tenant_id: UUID
    expense_id: UUID
    category: str
    amount: int
    entry_date: date
    actor_id: UUID
    paid_from: PaymentSource = PaymentSource.BANK

    @property
    def source_id(self) -> str:
        return str(self.expense_id)


@dataclass(frozen=True)
class BillApproved:
    """A vendor bill was approved: DR category expense / CR payable."""

    source_type: ClassVar[SourceType] = SourceType.BILL

    tenant_id: UUID
    bill_id: UUID
    category: str
    amount: int
    entry_date: date
    actor_id: UUID

    @property
    def source_id(self) -> str:
        return str(self.bill_id)


@dataclass(frozen=True)
class BillPaid:
    """A vendor bill was paid: DR payable / CR bank."""

    source_type: ClassVar[SourceType] = SourceType.BILL_PAYMENT

    tenant_id: UUID
    payment_id: str
    bill_id: UUID
    amount: int
    entry_date: date
    actor_id: UUID

    @property
    def source_id(self) -> str:
        return str(self.payment_id)


@dataclass(frozen=True)
class RetainerDeposit:
    """Client funds received into a retainer: DR bank / CR unearned revenue."""

    source_type: ClassVar[SourceType] = SourceType.RETAINER_DEPOSIT

    tenant_id: UUID
    deposit_id: str
    retainer_id: UUID
    amount: int
    entry_date: date
    actor_id: UUID

    @property
    def source_id(self) -> str:
        return str(self.deposit_id)


@dataclass(frozen=True)
class RetainerConsumption:
    """Retainer funds earned: DR unearned revenue / CR revenue."""

    source_type: ClassVar[SourceType] = SourceType.RETAINER_CONSUMPTION

    tenant_id: UUID
    consumption_id: str
    retainer_id: UUID
    amount: int
    entry_date: date
    actor_id: UUID
    case_ref: str | None = None

    @property
    def source_id(self) -> str:
        return str(self.consumption_id)


@dataclass(frozen=True)
class RetainerRefund:
    """Remaining retainer funds returned to the client: DR unearned revenue / CR bank."""

    source_type: ClassVar[SourceType] = SourceType.RETAINER_REFUND

    tenant_id: UUID
    retainer_id: UUID
    amount: int
    entry_date: date
    actor_id: UUID
    reason: str

    @property
    def source_id(self) -> str:
        # A retainer is refunded at most once
        return str(self.retainer_id)


SourceEvent = (
    InvoiceSent
    | PaymentReceived
    | ExpenseApproved
    | BillApproved
    | BillPaid
    | RetainerDeposit
    | RetainerConsumption
    | RetainerRefund
)


# ---------------------------------------------------------------------------
# Source documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceDocument:
    """Read-side snapshot of an invoice, bill, or expense."""

    id: UUID
    tenant_id: UUID
    document_type: DocumentType
    status: DocumentStatus
    amount: int
    document_date: date
    amount_paid: int = 0
    number: str | None = None
    counterparty_id: UUID | None = None
    category: str | None = None
    due_date: date | None = None
    description: str | None = None
    recurring_transaction_id: UUID | None = None
    occurrence_date: date | None = None
    posted_at: datetime | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def outstanding(self) -> int:
        return self.amount - self.amount_paid
