"""
Source Document Workflows.

State machines for invoices, bills and expenses.  Every status change of
a source document is looked up here; ``DocumentPostingService`` applies it
only after the matching journal posting succeeded.
"""

from dataclasses import dataclass

from ledger_modules.documents.models import DocumentStatus, DocumentType


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: DocumentStatus
    to_state: DocumentStatus
    action: str
    posts_entry: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    initial_state: DocumentStatus
    transitions: tuple[Transition, ...]

    def next_state(self, current: DocumentStatus | str, action: str) -> DocumentStatus | None:
        current = DocumentStatus(current)
        for transition in self.transitions:
            if transition.from_state == current and transition.action == action:
                return transition.to_state
        return None


SEND = "send"
APPROVE = "approve"
PAY = "pay"
PAY_IN_FULL = "pay_in_full"


INVOICE_WORKFLOW = Workflow(
    name="invoice",
    initial_state=DocumentStatus.DRAFT,
    transitions=(
        Transition(DocumentStatus.DRAFT, DocumentStatus.SENT, SEND, posts_entry=True),
        Transition(DocumentStatus.SENT, DocumentStatus.PARTIALLY_PAID, PAY, posts_entry=True),
        Transition(DocumentStatus.SENT, DocumentStatus.PAID, PAY_IN_FULL, posts_entry=True),
        Transition(DocumentStatus.PARTIALLY_PAID, DocumentStatus.PARTIALLY_PAID, PAY, posts_entry=True),
        Transition(DocumentStatus.PARTIALLY_PAID, DocumentStatus.PAID, PAY_IN_FULL, posts_entry=True),
    ),
)

BILL_WORKFLOW = Workflow(
    name="bill",
    initial_state=DocumentStatus.DRAFT,
    transitions=(
        Transition(DocumentStatus.DRAFT, DocumentStatus.APPROVED, APPROVE, posts_entry=True),
        Transition(DocumentStatus.APPROVED, DocumentStatus.PARTIALLY_PAID, PAY, posts_entry=True),
        Transition(DocumentStatus.APPROVED, DocumentStatus.PAID, PAY_IN_FULL, posts_entry=True),
        Transition(DocumentStatus.PARTIALLY_PAID, DocumentStatus.PARTIALLY_PAID, PAY, posts_entry=True),
        Transition(DocumentStatus.PARTIALLY_PAID, DocumentStatus.PAID, PAY_IN_FULL, posts_entry=True),
    ),
)

EXPENSE_WORKFLOW = Workflow(
    name="expense",
    initial_state=DocumentStatus.DRAFT,
    transitions=(
        Transition(DocumentStatus.DRAFT, DocumentStatus.APPROVED, APPROVE, posts_entry=True),
    ),
)

WORKFLOWS: dict[DocumentType, Workflow] = {
    DocumentType.INVOICE: INVOICE_WORKFLOW,
    DocumentType.BILL: BILL_WORKFLOW,
    DocumentType.EXPENSE: EXPENSE_WORKFLOW,
}


def payment_action(amount_due: int, payment: int) -> str:
    """PAY_IN_FULL when ``payment`` settles ``amount_due``, else PAY."""
    return PAY_IN_FULL if payment >= amount_due else PAY
