"""
Source-Document Posting Service - business events into the journal.

Thin glue layer that:
1. Loads (and row-locks) the source document the event belongs to
2. Checks the document workflow allows the event
3. Maps the event to a draft entry through the fixed mapping table
4. Calls JournalService.post()
5. Moves the document to its new status only after the posting succeeded

This service owns the transaction boundary: it commits on success and
rolls back on failure.  Pass ``auto_commit=False`` to compose it into a
larger unit of work (RetainerLedger, RecurringService); the caller then
owns commit and rollback.

Error translation:
    ALREADY_POSTED        -> success with ``already_posted=True``; the
                             document is left as the first call left it.
    PERIOD_CLOSED/LOCKED  -> TransactionBlockedError ("Cannot record
                             transaction - accounting period closed");
                             document untouched, retryable after reopen.
    UNBALANCED_ENTRY      -> MappingDefectError, logged at CRITICAL.

Usage:
    service = DocumentPostingService(session, config, clock)
    invoice = service.create_document(
        tenant_id=tenant_id, document_type=DocumentType.INVOICE,
        amount=50_000, document_date=date(2024, 1, 15), actor_id=actor_id,
    )
    result = service.post_invoice_sent(invoice.id, actor_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.db.types import is_minor_units
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    AlreadyGeneratedError,
    AlreadyPostedError,
    ClosedPeriodError,
    DocumentNotFoundError,
    DocumentStatusError,
    InvalidAmountError,
    InvalidEntryError,
    MappingDefectError,
    TransactionBlockedError,
    UnbalancedEntryError,
    UnknownExpenseCategoryError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.journal_service import JournalService
from ledger_modules.documents.mapping import draft_for
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
)
from ledger_modules.documents.orm import SourceDocumentModel
from ledger_modules.documents.roles import RoleResolver
from ledger_modules.documents.workflows import (
    APPROVE,
    SEND,
    WORKFLOWS,
    payment_action,
)

logger = get_logger("modules.documents.service")


def require_positive_amount(amount: object, field_name: str = "amount") -> int:
    """Return ``amount`` if it is a positive int, otherwise raise InvalidAmountError."""
    if not is_minor_units(amount) or amount <= 0:
        raise InvalidAmountError(amount, field_name)
    return amount


@dataclass(frozen=True)
class DocumentPostingResult:
    """Outcome of one adapter call.  Errors are raised, never returned."""

    source_type: str
    source_id: str
    journal_entry_id: UUID
    already_posted: bool = False
    document: SourceDocument | None = None


class DocumentPostingService:
    """
    One entry point per business event.

    Every entry point is safe to retry: the journal engine's
    (source_type, source_id) uniqueness makes the second call a no-op that
    reports ``already_posted=True``.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        journal_service: JournalService | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._journal = journal_service or JournalService(session, self._clock)
        self._journal_selector = JournalSelector(session)
        self._roles = RoleResolver(session, config)
        self._auto_commit = auto_commit

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    # =========================================================================
    # Documents
    # =========================================================================

    def create_document(
        self,
        tenant_id: UUID,
        document_type: DocumentType | str,
        amount: int,
        document_date: date,
        actor_id: UUID,
        number: str | None = None,
        counterparty_id: UUID | None = None,
        category: str | None = None,
        due_date: date | None = None,
        description: str | None = None,
        payload: dict[str, Any] | None = None,
        recurring_transaction_id: UUID | None = None,
        occurrence_date: date | None = None,
    ) -> SourceDocument:
        """
        Store a new DRAFT document.  Nothing is posted.

        Raises:
            InvalidAmountError: amount is not a positive int.
            InvalidEntryError: bill or expense without a category.
            UnknownExpenseCategoryError: category not in the category map.
            AlreadyGeneratedError: the recurring occurrence already exists.
        """
        try:
            document_type = DocumentType(document_type)
            require_positive_amount(amount)
            if document_type in (DocumentType.BILL, DocumentType.EXPENSE):
                if not category:
                    raise InvalidEntryError(f"{document_type.value} requires an expense category")
                if self._config.account_code_for_category(category) is None:
                    raise UnknownExpenseCategoryError(category)

            model = SourceDocumentModel(
                tenant_id=tenant_id,
                document_type=document_type.value,
                status=WORKFLOWS[document_type].initial_state.value,
                number=number,
                counterparty_id=counterparty_id,
                category=category,
                description=description,
                amount=amount,
                amount_paid=0,
                document_date=document_date,
                due_date=due_date,
                recurring_transaction_id=recurring_transaction_id,
                occurrence_date=occurrence_date,
                payload=payload or {},
                created_by_id=actor_id,
            )
            try:
                with self._session.begin_nested():
                    self._session.add(model)
                    self._session.flush()
            except IntegrityError:
                existing = self._find_occurrence(tenant_id, recurring_transaction_id, occurrence_date)
                if existing is None:
                    raise
                raise AlreadyGeneratedError(
                    str(recurring_transaction_id), occurrence_date.isoformat(), str(existing.id)
                ) from None

            logger.info("source_document_created", extra={
                "tenant_id": str(tenant_id),
                "document_id": str(model.id),
                "document_type": document_type.value,
                "amount": amount,
            })
            dto = model.to_dto()
            self._commit()
            return dto
        except Exception:
            self._rollback()
            raise

    def _find_occurrence(
        self,
        tenant_id: UUID,
        recurring_transaction_id: UUID | None,
        occurrence_date: date | None,
    ) -> SourceDocumentModel | None:
        if recurring_transaction_id is None or occurrence_date is None:
            return None
        return self._session.scalars(
            select(SourceDocumentModel).where(
                SourceDocumentModel.tenant_id == tenant_id,
                SourceDocumentModel.recurring_transaction_id == recurring_transaction_id,
                SourceDocumentModel.occurrence_date == occurrence_date,
            )
        ).first()

    def find_occurrence(
        self,
        tenant_id: UUID,
        recurring_transaction_id: UUID,
        occurrence_date: date,
    ) -> SourceDocument | None:
        """The document generated for one recurring occurrence, if any."""
        model = self._find_occurrence(tenant_id, recurring_transaction_id, occurrence_date)
        return model.to_dto() if model else None

    def get_document(self, document_id: UUID) -> SourceDocument:
        model = self._session.get(SourceDocumentModel, document_id, populate_existing=True)
        if model is None:
            raise DocumentNotFoundError(str(document_id))
        return model.to_dto()

    def list_documents(
        self,
        tenant_id: UUID,
        document_type: DocumentType | str | None = None,
        status: DocumentStatus | str | None = None,
    ) -> list[SourceDocument]:
        stmt = (
            select(SourceDocumentModel)
            .where(SourceDocumentModel.tenant_id == tenant_id)
            .order_by(SourceDocumentModel.document_date, SourceDocumentModel.created_at)
        )
        if document_type is not None:
            stmt = stmt.where(SourceDocumentModel.document_type == DocumentType(document_type).value)
        if status is not None:
            stmt = stmt.where(SourceDocumentModel.status == DocumentStatus(status).value)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def _load_for_update(self, document_id: UUID, document_type: DocumentType) -> SourceDocumentModel:
        model = self._session.scalars(
            select(SourceDocumentModel)
            .where(SourceDocumentModel.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if model is None or model.document_type != document_type.value:
            raise DocumentNotFoundError(str(document_id))
        return model

    # =========================================================================
    # Posting core
    # =========================================================================

    def _post_event(self, event) -> tuple[UUID, bool]:
        """Map and post one event.  Returns (journal_entry_id, already_posted)."""
        draft = draft_for(event, self._roles)
        try:
            entry = self._journal.post(draft)
            return entry.id, False
        except AlreadyPostedError as exc:
            return UUID(exc.journal_entry_id), True
        except UnbalancedEntryError as exc:
            logger.critical("adapter_mapping_defect", extra={
                "source_type": draft.source_type,
                "source_id": draft.source_id,
                "debits": exc.debits,
                "credits": exc.credits,
            })
            raise MappingDefectError(draft.source_type, draft.source_id, str(exc)) from exc
        except ClosedPeriodError as exc:
            logger.warning("transaction_blocked", extra={
                "source_type": draft.source_type,
                "source_id": draft.source_id,
                "reason_code": exc.code,
                "period_code": exc.period_code,
            })
            raise TransactionBlockedError(
                exc.code, event.entry_date.isoformat(), exc.period_code
            ) from exc

    def _record(
        self,
        event,
        document: SourceDocumentModel | None = None,
        action: str | None = None,
        payment: int = 0,
    ) -> DocumentPostingResult:
        """
        Post ``event`` and, on a fresh posting, apply ``action`` to
        ``document``.
        """
        source_type = event.source_type.value
        with LogContext.bind(
            tenant_id=event.tenant_id,
            actor_id=event.actor_id,
            source_type=source_type,
            source_id=event.source_id,
        ):
            existing = self._journal_selector.find_by_source(
                event.tenant_id, source_type, event.source_id
            )
            if existing is not None:
                logger.info("source_event_already_posted", extra={"entry_id": str(existing.id)})
                return DocumentPostingResult(
                    source_type=source_type,
                    source_id=event.source_id,
                    journal_entry_id=existing.id,
                    already_posted=True,
                    document=document.to_dto() if document is not None else None,
                )

            target = None
            if document is not None:
                outstanding = document.amount - document.amount_paid
                if payment:
                    action = payment_action(outstanding, payment)
                workflow = WORKFLOWS[DocumentType(document.document_type)]
                target = workflow.next_state(document.status, action)
                if target is None:
                    raise DocumentStatusError(str(document.id), document.status, action)
                if payment > outstanding:
                    raise InvalidAmountError(payment, "payment amount")

            entry_id, already_posted = self._post_event(event)

            if document is not None and not already_posted:
                document.status = target.value
                document.amount_paid = document.amount_paid + payment
                if document.posted_at is None:
                    document.posted_at = self._clock.now()
                document.updated_by_id = event.actor_id
                self._session.flush()

            logger.info("source_event_posted", extra={
                "entry_id": str(entry_id),
                "amount": event.amount,
                "already_posted": already_posted,
                "document_status": target.value if target and not already_posted else None,
            })
            return DocumentPostingResult(
                source_type=source_type,
                source_id=event.source_id,
                journal_entry_id=entry_id,
                already_posted=already_posted,
                document=document.to_dto() if document is not None else None,
            )

    def _run(self, fn):
        try:
            result = fn()
            self._commit()
            return result
        except Exception:
            self._rollback()
            raise

    # =========================================================================
    # Entry points
    # =========================================================================

    def post_invoice_sent(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        sent_date: date | None = None,
    ) -> DocumentPostingResult:
        """Send a DRAFT invoice.  DR Accounts Receivable / CR Service Revenue."""
        def work():
            doc = self._load_for_update(invoice_id, DocumentType.INVOICE)
            event = InvoiceSent(
                tenant_id=doc.tenant_id,
                invoice_id=doc.id,
                amount=doc.amount,
                entry_date=sent_date or doc.document_date,
                actor_id=actor_id,
                invoice_number=doc.number,
            )
            return self._record(event, doc, SEND)
        return self._run(work)

    def post_payment_received(
        self,
        invoice_id: UUID,
        payment_id: str,
        amount: int,
        received_date: date,
        actor_id: UUID,
    ) -> DocumentPostingResult:
        """
        Apply a client payment to a sent invoice.  DR Bank / CR Accounts
        Receivable.  ``payment_id`` is the idempotence key.

        Raises:
            InvalidAmountError: amount not positive, or above the balance due.
            DocumentStatusError: the invoice has not been sent, or is paid.
        """
        def work():
            require_positive_amount(amount)
            doc = self._load_for_update(invoice_id, DocumentType.INVOICE)
            event = PaymentReceived(
                tenant_id=doc.tenant_id,
                payment_id=str(payment_id),
                invoice_id=doc.id,
                amount=amount,
                entry_date=received_date,
                actor_id=actor_id,
            )
            return self._record(event, doc, payment=amount)
        return self._run(work)

    def post_expense_approved(
        self,
        expense_id: UUID,
        actor_id: UUID,
        approved_date: date | None = None,
        paid_from: PaymentSource | str = PaymentSource.BANK,
    ) -> DocumentPostingResult:
        """Approve a DRAFT expense.  DR category expense / CR Bank or Accounts Payable."""
        def work():
            doc = self._load_for_update(expense_id, DocumentType.EXPENSE)
            event = ExpenseApproved(
                tenant_id=doc.tenant_id,
                expense_id=doc.id,
                category=doc.category,
                amount=doc.amount,
                entry_date=approved_date or doc.document_date,
                actor_id=actor_id,
                paid_from=PaymentSource(paid_from),
            )
            return self._record(event, doc, APPROVE)
        return self._run(work)

    def post_bill_approved(
        self,
        bill_id: UUID,
        actor_id: UUID,
        approved_date: date | None = None,
    ) -> DocumentPostingResult:
        """Approve a DRAFT vendor bill.  DR category expense / CR Accounts Payable."""
        def work():
            doc = self._load_for_update(bill_id, DocumentType.BILL)
            event = BillApproved(
                tenant_id=doc.tenant_id,
                bill_id=doc.id,
                category=doc.category,
                amount=doc.amount,
                entry_date=approved_date or doc.document_date,
                actor_id=actor_id,
            )
            return self._record(event, doc, APPROVE)
        return self._run(work)

    def post_bill_paid(
        self,
        bill_id: UUID,
        payment_id: str,
        amount: int,
        paid_date: date,
        actor_id: UUID,
    ) -> DocumentPostingResult:
        """Pay an approved bill.  DR Accounts Payable / CR Bank."""
        def work():
            require_positive_amount(amount)
            doc = self._load_for_update(bill_id, DocumentType.BILL)
            event = BillPaid(
                tenant_id=doc.tenant_id,
                payment_id=str(payment_id),
                bill_id=doc.id,
                amount=amount,
                entry_date=paid_date,
                actor_id=actor_id,
            )
            return self._record(event, doc, payment=amount)
        return self._run(work)

    def post_retainer_deposit(self, event: RetainerDeposit) -> DocumentPostingResult:
        """
        DR Bank / CR Unearned Revenue.

        Journal side only; RetainerLedger.deposit() calls this and moves
        the retainer balance in the same transaction.
        """
        def work():
            require_positive_amount(event.amount)
            return self._record(event)
        return self._run(work)

    def post_retainer_consumption(self, event: RetainerConsumption) -> DocumentPostingResult:
        """
        DR Unearned Revenue / CR Service Revenue.

        Journal side only; RetainerLedger.consume() calls this after the
        guarded balance decrement, in the same transaction.
        """
        def work():
            require_positive_amount(event.amount)
            return self._record(event)
        return self._run(work)

    def post_retainer_refund(self, event: RetainerRefund) -> DocumentPostingResult:
        """
        DR Unearned Revenue / CR Bank.

        Journal side only; RetainerLedger.refund() calls this and zeroes the
        retainer balance in the same transaction.
        """
        def work():
            require_positive_amount(event.amount)
            return self._record(event)
        return self._run(work)
