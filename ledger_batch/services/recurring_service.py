"""
RecurringService -- recurring invoices, bills and expenses.

Contract:
    ``process_due(now)`` generates every occurrence whose next_run_date is
    on or before ``now.date()`` for ACTIVE recurring transactions: build
    the source document from ``template_payload`` with the current date
    substituted, run it through the source-document adapters (create, then
    send/approve when ``auto_post``), and advance next_run_date one cadence
    step.  ``generate(id, now)`` runs one occurrence out of cadence under
    the same advance-on-success rule.

Architecture: ledger_batch/services.  Uses ledger_batch.domain.cadence for
    pure date arithmetic and ledger_modules.documents for the adapters.

Invariants enforced:
    - Each occurrence is one transaction: document, posting and the
      next_run_date advance commit together or not at all.
    - The recurring row is locked (SELECT ... FOR UPDATE) while an
      occurrence is generated, so two schedulers never double-generate.
    - (recurring id, occurrence date) is unique on source_documents.

Failure handling:
    - State conflicts (period closed, document status) leave next_run_date
      unchanged and record failure_count / last_error_*; the next tick
      retries, indefinitely, until it succeeds or an operator pauses or
      cancels the transaction.
    - Validation and integrity errors are not retried: the transaction is
      PAUSED with the error recorded.
    - Catch-up is bounded: at most ``max_catch_up`` occurrences per
      transaction per call.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.db.types import is_minor_units
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    AlreadyGeneratedError,
    InvalidTemplateError,
    LedgerError,
    LedgerIntegrityError,
    LedgerValidationError,
    RecurringStatusError,
    RecurringTransactionNotFoundError,
    StateConflictError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_modules.documents.models import (
    DocumentType,
    PaymentSource,
    SourceDocument,
)
from ledger_modules.documents.service import DocumentPostingResult, DocumentPostingService

from ledger_batch.domain.cadence import is_due, is_finished, next_run_date, schedule
from ledger_batch.domain.types import (
    TERMINAL_STATUSES,
    Frequency,
    OccurrenceOutcome,
    OccurrenceResult,
    ProcessDueResult,
    RecurringAction,
    RecurringStatus,
    RecurringTransaction,
    UpcomingOccurrence,
    next_recurring_status,
)
from ledger_batch.models.recurring import RecurringTransactionModel

logger = get_logger("batch.recurring")

_TEMPLATE_FIELDS = frozenset({
    "document_type",
    "amount",
    "category",
    "counterparty_id",
    "description",
    "number",
    "paid_from",
    "payment_terms_days",
})


def substitute_date(text: str | None, current: date) -> str | None:
    """Replace {date} and {period} placeholders with the generation date."""
    if text is None:
        return None
    return text.replace("{date}", current.isoformat()).replace("{period}", current.strftime("%Y-%m"))


class RecurringService:
    """
    Recurring transaction lifecycle and generation.

    Transaction boundary: this service commits on success and rolls back
    on failure.  process_due() commits once per occurrence.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        max_catch_up: int | None = None,
        batch_size: int | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._poster = DocumentPostingService(
            session, config, clock=self._clock, auto_commit=False,
        )
        self._max_catch_up = max_catch_up or config.scheduler.max_catch_up
        self._batch_size = batch_size or config.scheduler.batch_size

    # =========================================================================
    # Template validation
    # =========================================================================

    def _validate_template(self, payload: dict[str, Any], recurring_id: UUID | None = None) -> dict[str, Any]:
        def invalid(reason: str):
            return InvalidTemplateError(str(recurring_id) if recurring_id else None, reason)

        if not isinstance(payload, dict):
            raise invalid("template_payload must be a mapping")
        unknown = set(payload) - _TEMPLATE_FIELDS
        if unknown:
            raise invalid(f"unknown template fields: {', '.join(sorted(unknown))}")

        try:
            document_type = DocumentType(payload.get("document_type"))
        except ValueError:
            raise invalid(f"document_type must be one of invoice, bill, expense; got {payload.get('document_type')!r}") from None

        amount = payload.get("amount")
        if not is_minor_units(amount) or amount <= 0:
            raise invalid(f"amount must be a positive integer of minor units, got {amount!r}")

        if document_type in (DocumentType.BILL, DocumentType.EXPENSE):
            category = payload.get("category")
            if not category or self._config.account_code_for_category(category) is None:
                raise invalid(f"unknown expense category {category!r}")

        if "paid_from" in payload:
            try:
                PaymentSource(payload["paid_from"])
            except ValueError:
                raise invalid(f"paid_from must be bank or accounts_payable, got {payload['paid_from']!r}") from None

        terms = payload.get("payment_terms_days")
        if terms is not None and (not is_minor_units(terms) or terms < 0):
            raise invalid(f"payment_terms_days must be a non-negative int, got {terms!r}")

        payload = dict(payload)
        if payload.get("counterparty_id") is not None:
            try:
                payload["counterparty_id"] = str(UUID(str(payload["counterparty_id"])))
            except ValueError:
                raise invalid("counterparty_id must be a UUID") from None

        return payload

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _load(self, recurring_id: UUID, lock: bool = False) -> RecurringTransactionModel:
        stmt = (
            select(RecurringTransactionModel)
            .where(RecurringTransactionModel.id == recurring_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        model = self._session.scalars(stmt).first()
        if model is None:
            raise RecurringTransactionNotFoundError(str(recurring_id))
        return model

    def get_recurring(self, recurring_id: UUID) -> RecurringTransaction:
        return self._load(recurring_id).to_dto()

    def list_recurring(
        self,
        tenant_id: UUID,
        status: RecurringStatus | str | None = None,
    ) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransactionModel)
            .where(RecurringTransactionModel.tenant_id == tenant_id)
            .order_by(RecurringTransactionModel.next_run_date, RecurringTransactionModel.name)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(RecurringTransactionModel.status == RecurringStatus(status).value)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def create_recurring(
        self,
        tenant_id: UUID,
        name: str,
        frequency: Frequency | str,
        start_date: date,
        template_payload: dict[str, Any],
        actor_id: UUID,
        auto_post: bool = True,
        end_date: date | None = None,
        max_occurrences: int | None = None,
        anchor_day: int | None = None,
    ) -> RecurringTransaction:
        """
        Create an ACTIVE recurring transaction whose first occurrence is
        ``start_date``.

        Raises:
            InvalidTemplateError: bad template, end_date before start_date,
                or max_occurrences < 1.
        """
        try:
            frequency = Frequency(frequency)
            payload = self._validate_template(template_payload)
            if end_date is not None and end_date < start_date:
                raise InvalidTemplateError(None, "end_date is before start_date")
            if max_occurrences is not None and max_occurrences < 1:
                raise InvalidTemplateError(None, "max_occurrences must be at least 1")
            anchor = anchor_day or start_date.day
            if not 1 <= anchor <= 31:
                raise InvalidTemplateError(None, f"anchor_day must be in 1..31, got {anchor}")

            model = RecurringTransactionModel(
                tenant_id=tenant_id,
                name=name,
                frequency=frequency.value,
                anchor_day=anchor,
                start_date=start_date,
                next_run_date=start_date,
                end_date=end_date,
                max_occurrences=max_occurrences,
                status=RecurringStatus.ACTIVE.value,
                auto_post=auto_post,
                template_payload=payload,
                generated_count=0,
                failure_count=0,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            logger.info("recurring_created", extra={
                "tenant_id": str(tenant_id),
                "recurring_id": str(model.id),
                "frequency": frequency.value,
                "next_run_date": start_date.isoformat(),
            })
            dto = model.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    def update_recurring(
        self,
        recurring_id: UUID,
        actor_id: UUID,
        *,
        name: str | None = None,
        template_payload: dict[str, Any] | None = None,
        frequency: Frequency | str | None = None,
        end_date: date | None = None,
        max_occurrences: int | None = None,
        auto_post: bool | None = None,
    ) -> RecurringTransaction:
        """
        Change an ACTIVE or PAUSED recurring transaction.  Already generated
        documents are not touched.

        Raises:
            RecurringStatusError: the transaction is cancelled or completed.
            InvalidTemplateError: bad template or limits.
        """
        try:
            model = self._load(recurring_id, lock=True)
            if RecurringStatus(model.status) in TERMINAL_STATUSES:
                raise RecurringStatusError(str(recurring_id), model.status, "update")

            if template_payload is not None:
                model.template_payload = self._validate_template(template_payload, recurring_id)
            if name is not None:
                model.name = name
            if frequency is not None:
                model.frequency = Frequency(frequency).value
            if end_date is not None:
                if end_date < model.start_date:
                    raise InvalidTemplateError(str(recurring_id), "end_date is before start_date")
                model.end_date = end_date
            if max_occurrences is not None:
                if max_occurrences < 1:
                    raise InvalidTemplateError(str(recurring_id), "max_occurrences must be at least 1")
                model.max_occurrences = max_occurrences
            if auto_post is not None:
                model.auto_post = auto_post
            model.updated_by_id = actor_id
            self._session.flush()

            logger.info("recurring_updated", extra={"recurring_id": str(recurring_id)})
            dto = model.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    def _apply_action(self, recurring_id: UUID, action: RecurringAction, actor_id: UUID) -> RecurringTransaction:
        try:
            model = self._load(recurring_id, lock=True)
            target = next_recurring_status(model.status, action)
            if target is None:
                raise RecurringStatusError(str(recurring_id), model.status, action.value)
            model.status = target.value
            model.updated_by_id = actor_id
            self._session.flush()
            logger.info(f"recurring_{target.value}", extra={
                "recurring_id": str(recurring_id),
                "actor_id": str(actor_id),
            })
            dto = model.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    def pause(self, recurring_id: UUID, actor_id: UUID) -> RecurringTransaction:
        return self._apply_action(recurring_id, RecurringAction.PAUSE, actor_id)

    def resume(self, recurring_id: UUID, actor_id: UUID) -> RecurringTransaction:
        """
        Resume a PAUSED transaction.  Occurrences missed while paused are
        generated by the next process_due() (bounded by max_catch_up).
        """
        return self._apply_action(recurring_id, RecurringAction.RESUME, actor_id)

    def cancel(self, recurring_id: UUID, actor_id: UUID) -> RecurringTransaction:
        return self._apply_action(recurring_id, RecurringAction.CANCEL, actor_id)

    # =========================================================================
    # Previews
    # =========================================================================

    def preview_schedule(self, recurring_id: UUID, count: int = 12) -> list[date]:
        """The next ``count`` occurrence dates, honouring end conditions."""
        model = self._load(recurring_id)
        if RecurringStatus(model.status) in TERMINAL_STATUSES:
            return []
        remaining = None
        if model.max_occurrences is not None:
            remaining = max(model.max_occurrences - model.generated_count, 0)
        return schedule(
            model.next_run_date,
            model.frequency,
            count,
            anchor_day=model.anchor_day,
            end_date=model.end_date,
            remaining=remaining,
        )

    def list_upcoming(self, tenant_id: UUID, now: datetime, within_days: int = 30) -> list[UpcomingOccurrence]:
        """Occurrences of ACTIVE transactions due on or before now + within_days."""
        horizon = now.date() + timedelta(days=within_days)
        upcoming = []
        for recurring in self.list_recurring(tenant_id, RecurringStatus.ACTIVE):
            for occurrence in self.preview_schedule(recurring.id, count=within_days + 1):
                if occurrence > horizon:
                    break
                upcoming.append(
                    UpcomingOccurrence(
                        recurring_id=recurring.id,
                        name=recurring.name,
                        occurrence_date=occurrence,
                        document_type=recurring.template_payload["document_type"],
                        amount=recurring.template_payload["amount"],
                    )
                )
        upcoming.sort(key=lambda o: (o.occurrence_date, o.name))
        return upcoming

    # =========================================================================
    # Generation
    # =========================================================================

    def _build_document(
        self,
        model: RecurringTransactionModel,
        occurrence_date: date,
        current: date,
        actor_id: UUID,
    ) -> SourceDocument:
        existing = self._poster.find_occurrence(model.tenant_id, model.id, occurrence_date)
        if existing is not None:
            return existing

        template = model.template_payload
        terms = template.get("payment_terms_days")
        counterparty = template.get("counterparty_id")
        try:
            return self._poster.create_document(
                tenant_id=model.tenant_id,
                document_type=template["document_type"],
                amount=template["amount"],
                document_date=current,
                actor_id=actor_id,
                number=substitute_date(template.get("number"), current),
                counterparty_id=UUID(str(counterparty)) if counterparty else None,
                category=template.get("category"),
                due_date=current + timedelta(days=terms) if terms is not None else None,
                description=substitute_date(template.get("description"), current),
                payload={"recurring_name": model.name, **template},
                recurring_transaction_id=model.id,
                occurrence_date=occurrence_date,
            )
        except AlreadyGeneratedError:
            return self._poster.find_occurrence(model.tenant_id, model.id, occurrence_date)

    def _post_document(
        self,
        model: RecurringTransactionModel,
        document: SourceDocument,
        actor_id: UUID,
    ) -> DocumentPostingResult:
        if document.document_type == DocumentType.INVOICE:
            return self._poster.post_invoice_sent(document.id, actor_id)
        if document.document_type == DocumentType.BILL:
            return self._poster.post_bill_approved(document.id, actor_id)
        return self._poster.post_expense_approved(
            document.id,
            actor_id,
            paid_from=model.template_payload.get("paid_from", PaymentSource.BANK.value),
        )

    def _generate_locked(
        self,
        model: RecurringTransactionModel,
        occurrence_date: date,
        now: datetime,
        actor_id: UUID,
    ) -> OccurrenceResult:
        """Generate one occurrence inside the caller's transaction.  Raises on failure."""
        document = self._build_document(model, occurrence_date, now.date(), actor_id)
        entry_id = None
        if model.auto_post:
            entry_id = self._post_document(model, document, actor_id).journal_entry_id

        model.next_run_date = next_run_date(occurrence_date, model.frequency, model.anchor_day)
        model.generated_count = model.generated_count + 1
        model.last_generated_at = now
        model.last_occurrence_date = occurrence_date
        model.failure_count = 0
        model.last_error_code = None
        model.last_error_message = None
        if is_finished(model.next_run_date, model.generated_count, model.end_date, model.max_occurrences):
            model.status = next_recurring_status(model.status, RecurringAction.COMPLETE).value
        self._session.flush()

        return OccurrenceResult(
            recurring_id=model.id,
            occurrence_date=occurrence_date,
            outcome=OccurrenceOutcome.GENERATED,
            document_id=document.id,
            journal_entry_id=entry_id,
            next_run_date=model.next_run_date,
            status=RecurringStatus(model.status),
        )

    def _record_failure(
        self,
        recurring_id: UUID,
        occurrence_date: date,
        now: datetime,
        exc: LedgerError,
        pause: bool,
    ) -> OccurrenceResult:
        model = self._load(recurring_id, lock=True)
        model.failure_count = model.failure_count + 1
        model.last_error_code = exc.code
        model.last_error_message = str(exc)[:4000]
        model.last_failed_at = now
        if pause:
            model.status = next_recurring_status(model.status, RecurringAction.PAUSE).value
        failure_count = model.failure_count
        self._session.flush()
        result = OccurrenceResult(
            recurring_id=recurring_id,
            occurrence_date=occurrence_date,
            outcome=OccurrenceOutcome.PAUSED if pause else OccurrenceOutcome.RETRY_SCHEDULED,
            error_code=exc.code,
            next_run_date=model.next_run_date,
            status=RecurringStatus(model.status),
        )
        self._session.commit()

        extra = {
            "recurring_id": str(recurring_id),
            "occurrence_date": occurrence_date.isoformat(),
            "code": exc.code,
            "failure_count": failure_count,
        }
        if pause:
            logger.error("recurring_paused_on_error", extra=extra)
        else:
            logger.warning("recurring_generation_deferred", extra=extra)
        return result

    def _attempt(
        self,
        recurring_id: UUID,
        now: datetime,
        actor_id: UUID | None,
        manual: bool = False,
    ) -> OccurrenceResult | None:
        """
        Generate the current occurrence of one transaction.

        Returns None when nothing is due (or the transaction is no longer
        ACTIVE during a scheduled run).
        """
        model = self._load(recurring_id, lock=True)
        if model.status != RecurringStatus.ACTIVE.value:
            self._session.rollback()
            if manual:
                raise RecurringStatusError(str(recurring_id), model.status, "generate")
            return None
        if not manual and not is_due(model.next_run_date, now):
            self._session.rollback()
            return None

        occurrence_date = model.next_run_date
        actor = actor_id or model.created_by_id
        with LogContext.bind(tenant_id=model.tenant_id, actor_id=actor):
            try:
                with self._session.begin_nested():
                    result = self._generate_locked(model, occurrence_date, now, actor)
            except StateConflictError as exc:
                self._session.rollback()
                failure = self._record_failure(recurring_id, occurrence_date, now, exc, pause=False)
                if manual:
                    raise
                return failure
            except (LedgerValidationError, LedgerIntegrityError) as exc:
                self._session.rollback()
                failure = self._record_failure(recurring_id, occurrence_date, now, exc, pause=True)
                if manual:
                    raise
                return failure

            self._session.commit()
            logger.info("recurring_generated", extra={
                "recurring_id": str(recurring_id),
                "occurrence_date": occurrence_date.isoformat(),
                "document_id": str(result.document_id),
                "entry_id": str(result.journal_entry_id) if result.journal_entry_id else None,
                "next_run_date": result.next_run_date.isoformat(),
                "status": result.status.value,
            })
            return result

    def generate(self, recurring_id: UUID, now: datetime, actor_id: UUID | None = None) -> OccurrenceResult:
        """
        Generate the current occurrence now, out of cadence.

        next_run_date advances exactly as it would on a scheduled run.  The
        failure is recorded (and the transaction paused for validation or
        integrity errors) before the error is re-raised.

        Raises:
            RecurringStatusError: the transaction is not ACTIVE.
        """
        try:
            return self._attempt(recurring_id, now, actor_id, manual=True)
        except Exception:
            self._session.rollback()
            raise

    def process_due(self, now: datetime, actor_id: UUID | None = None) -> ProcessDueResult:
        """
        Generate every due occurrence as of ``now``.

        Calling it twice with the same ``now`` generates nothing the second
        time.  Unexpected (non-ledger) errors are logged and counted; the
        affected transaction is retried on the next call.
        """
        due_ids = self._session.scalars(
            select(RecurringTransactionModel.id)
            .where(
                RecurringTransactionModel.status == RecurringStatus.ACTIVE.value,
                RecurringTransactionModel.next_run_date <= now.date(),
            )
            .order_by(RecurringTransactionModel.next_run_date, RecurringTransactionModel.id)
            .limit(self._batch_size)
        ).all()
        self._session.rollback()

        occurrences: list[OccurrenceResult] = []
        errors = 0
        for recurring_id in due_ids:
            for _ in range(self._max_catch_up):
                try:
                    result = self._attempt(recurring_id, now, actor_id)
                except Exception:
                    self._session.rollback()
                    errors += 1
                    logger.exception("recurring_occurrence_failed", extra={
                        "recurring_id": str(recurring_id),
                    })
                    break
                if result is None:
                    break
                occurrences.append(result)
                if result.outcome != OccurrenceOutcome.GENERATED:
                    break

        summary = ProcessDueResult(as_of=now, occurrences=tuple(occurrences), errors=errors)
        logger.info("recurring_process_due_completed", extra={
            "as_of": now.isoformat(),
            "due": len(due_ids),
            "generated": summary.generated,
            "retried": summary.retried,
            "paused": summary.paused,
            "errors": errors,
        })
        return summary
