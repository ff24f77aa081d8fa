"""
Event -> journal entry mapping table.

One row per business-event variant.  Each row names the journal source
type and the debit and credit side; a side is either an ``AccountRole``,
the event's expense category, or (for expenses only) the event's payment
source.  Adding a business event means adding a variant in ``models.py``
and a row here.

``draft_for`` is the only function that turns an event into lines.  It
emits exactly one debit and one credit of ``event.amount``; anything else
reaching the journal engine is a mapping defect.
"""

from dataclasses import dataclass
from uuid import UUID

from ledger_kernel.domain.dtos import DraftJournalEntry, DraftLine
from ledger_modules.documents.models import (
    BillApproved,
    BillPaid,
    ExpenseApproved,
    InvoiceSent,
    PaymentReceived,
    PaymentSource,
    RetainerConsumption,
    RetainerDeposit,
    RetainerRefund,
    SourceType,
)
from ledger_modules.documents.roles import AccountRole, RoleResolver

# Pseudo-roles resolved from fields of the event
CATEGORY_EXPENSE = "category_expense"
PAID_FROM = "paid_from"


@dataclass(frozen=True)
class MappingRow:
    event_type: type
    source_type: SourceType
    debit: str
    credit: str
    description: str


MAPPING_TABLE: tuple[MappingRow, ...] = (
    MappingRow(InvoiceSent, SourceType.INVOICE,
               AccountRole.ACCOUNTS_RECEIVABLE.value, AccountRole.SERVICE_REVENUE.value,
               "Invoice sent"),
    MappingRow(PaymentReceived, SourceType.PAYMENT,
               AccountRole.BANK.value, AccountRole.ACCOUNTS_RECEIVABLE.value,
               "Payment received"),
    MappingRow(ExpenseApproved, SourceType.EXPENSE,
               CATEGORY_EXPENSE, PAID_FROM,
               "Expense approved"),
    MappingRow(BillApproved, SourceType.BILL,
               CATEGORY_EXPENSE, AccountRole.ACCOUNTS_PAYABLE.value,
               "Bill approved"),
    MappingRow(BillPaid, SourceType.BILL_PAYMENT,
               AccountRole.ACCOUNTS_PAYABLE.value, AccountRole.BANK.value,
               "Bill paid"),
    MappingRow(RetainerDeposit, SourceType.RETAINER_DEPOSIT,
               AccountRole.BANK.value, AccountRole.UNEARNED_REVENUE.value,
               "Retainer deposit"),
    MappingRow(RetainerConsumption, SourceType.RETAINER_CONSUMPTION,
               AccountRole.UNEARNED_REVENUE.value, AccountRole.SERVICE_REVENUE.value,
               "Retainer consumption"),
    MappingRow(RetainerRefund, SourceType.RETAINER_REFUND,
               AccountRole.UNEARNED_REVENUE.value, AccountRole.BANK.value,
               "Retainer refund"),
)

_ROWS: dict[type, MappingRow] = {row.event_type: row for row in MAPPING_TABLE}

_PAID_FROM_ROLES = {
    PaymentSource.BANK: AccountRole.BANK,
    PaymentSource.ACCOUNTS_PAYABLE: AccountRole.ACCOUNTS_PAYABLE,
}


def mapping_for(event) -> MappingRow:
    """The table row for an event variant.  KeyError for unknown types."""
    return _ROWS[type(event)]


def _resolve_side(side: str, event, resolver: RoleResolver) -> UUID:
    if side == CATEGORY_EXPENSE:
        return resolver.resolve_expense_category(event.tenant_id, event.category)
    if side == PAID_FROM:
        return resolver.resolve(event.tenant_id, _PAID_FROM_ROLES[PaymentSource(event.paid_from)])
    return resolver.resolve(event.tenant_id, side)


_REFERENCE_FIELDS = {
    InvoiceSent: "invoice_id",
    PaymentReceived: "invoice_id",
    ExpenseApproved: "expense_id",
    BillApproved: "bill_id",
    BillPaid: "bill_id",
    RetainerDeposit: "retainer_id",
    RetainerConsumption: "retainer_id",
    RetainerRefund: "retainer_id",
}


def _reference_for(event) -> str | None:
    # Groups every entry of one invoice, bill, expense or retainer
    field = _REFERENCE_FIELDS.get(type(event))
    return str(getattr(event, field)) if field else None


def draft_for(event, resolver: RoleResolver) -> DraftJournalEntry:
    """Build the draft journal entry for a business event."""
    row = mapping_for(event)
    debit_account = _resolve_side(row.debit, event, resolver)
    credit_account = _resolve_side(row.credit, event, resolver)

    memo = (
        getattr(event, "case_ref", None)
        or getattr(event, "invoice_number", None)
        or getattr(event, "reason", None)
    )
    return DraftJournalEntry(
        tenant_id=event.tenant_id,
        entry_date=event.entry_date,
        source_type=row.source_type.value,
        source_id=event.source_id,
        lines=(
            DraftLine.debit_line(debit_account, event.amount, memo=memo),
            DraftLine.credit_line(credit_account, event.amount, memo=memo),
        ),
        created_by_id=event.actor_id,
        description=row.description,
        reference_id=_reference_for(event),
    )
