"""
Source-Document Adapters.

Turns business events (invoice sent, payment received, expense approved,
bill approved, bill paid, retainer deposit, consumption and refund) into
balanced journal entries through a fixed mapping table, and keeps the
status of the triggering source document in step with the ledger.
"""

from ledger_modules.documents.mapping import MAPPING_TABLE, MappingRow, draft_for
from ledger_modules.documents.models import (
    BillApproved,
    BillPaid,
    DocumentStatus,
    DocumentType,
    ExpenseApproved,
    InvoiceSent,
    PaymentReceived,
    PaymentSource,
    RetainerConsumption,
    RetainerDeposit,
    RetainerRefund,
    SourceDocument,
    SourceType,
)
from ledger_modules.documents.roles import AccountRole, RoleResolver
from ledger_modules.documents.service import DocumentPostingResult, DocumentPostingService

__all__ = [
    "AccountRole",
    "BillApproved",
    "BillPaid",
    "DocumentPostingResult",
    "DocumentPostingService",
    "DocumentStatus",
    "DocumentType",
    "ExpenseApproved",
    "InvoiceSent",
    "MAPPING_TABLE",
    "MappingRow",
    "PaymentReceived",
    "PaymentSource",
    "RetainerConsumption",
    "RetainerDeposit",
    "RetainerRefund",
    "RoleResolver",
    "SourceDocument",
    "SourceType",
    "draft_for",
]
