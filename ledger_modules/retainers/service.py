"""
Retainer Ledger Service - client retainers via the document adapters + kernel.

Thin, invariant-enforcing wrapper around the retainer_deposit,
retainer_consumption and retainer_refund adapters:

1. deposit(): post DR Bank / CR Unearned Revenue, then increment balance.
2. consume(): guarded decrement
       UPDATE retainers SET balance = balance - :amount
       WHERE id = :id AND status = 'active' AND balance >= :amount
   before any posting; no matched row means INSUFFICIENT_BALANCE.  The
   decrement and the DR Unearned Revenue / CR Service Revenue posting
   share one SAVEPOINT, so a refused posting also undoes the decrement.
3. refund(): post DR Unearned Revenue / CR Bank for the whole balance, zero
   it and move the retainer to REFUNDED, all in one transaction.
4. void_movement(): the only way to void a deposit or consumption.  The
   balance update (guarded like consume() when it decrements) and the
   journal reversal share one SAVEPOINT.  JournalService.void refuses
   these entries on its own.

The guarded UPDATE is the only check; there is no read-then-write window
in which two consumptions could both see enough balance.

This service owns the transaction boundary (commit on success, rollback
on failure).  The adapter runs with ``auto_commit=False``.

Usage:
    ledger = RetainerLedger(session, config, clock)
    retainer = ledger.open_retainer(tenant_id, client_id, actor_id)
    ledger.deposit(retainer.id, 100_000, actor_id, deposit_id="dep-1")
    ledger.consume(retainer.id, 40_000, "CASE-7", actor_id, consumption_id="use-1")
"""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.db.types import is_minor_units
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    EntryNotFoundError,
    EntryNotPostedError,
    EntryNotVoidableError,
    InsufficientBalanceError,
    RetainerClosedError,
    RetainerNotEmptyError,
    RetainerNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.journal_service import JournalService
from ledger_modules.documents.models import (
    RetainerConsumption,
    RetainerDeposit,
    RetainerRefund,
    SourceType,
)
from ledger_modules.documents.roles import AccountRole, RoleResolver
from ledger_modules.documents.service import (
    DocumentPostingService,
    require_positive_amount,
)
from ledger_modules.retainers.models import (
    Retainer,
    RetainerAction,
    RetainerDrift,
    RetainerMovement,
    RetainerPostingResult,
    RetainerStatus,
    next_retainer_status,
)
from ledger_modules.retainers.orm import RetainerModel

logger = get_logger("modules.retainers.service")

# Balance change when a movement of this source type is voided
_VOID_SIGNS = {
    SourceType.RETAINER_DEPOSIT.value: -1,
    SourceType.RETAINER_CONSUMPTION.value: 1,
}


class RetainerLedger:
    """
    Deposits into and consumptions from client retainers.

    Guarantees:
        - balance >= 0 after every operation.
        - A refused consumption leaves the balance unchanged and posts
          nothing.
        - deposit_id / consumption_id are idempotence keys: a retried call
          moves neither the journal nor the balance a second time.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        journal_service: JournalService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._journal = journal_service or JournalService(session, self._clock)
        self._poster = DocumentPostingService(
            session,
            config,
            clock=self._clock,
            journal_service=self._journal,
            auto_commit=False,
        )
        self._roles = RoleResolver(session, config)
        self._journal_selector = JournalSelector(session)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _load(self, retainer_id: UUID) -> RetainerModel:
        model = self._session.get(RetainerModel, retainer_id, populate_existing=True)
        if model is None:
            raise RetainerNotFoundError(str(retainer_id))
        return model

    def _load_for_update(self, retainer_id: UUID) -> RetainerModel:
        model = self._session.scalars(
            select(RetainerModel)
            .where(RetainerModel.id == retainer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if model is None:
            raise RetainerNotFoundError(str(retainer_id))
        return model

    def get_retainer(self, retainer_id: UUID) -> Retainer:
        return self._load(retainer_id).to_dto()

    def list_retainers(self, tenant_id: UUID, client_id: UUID | None = None) -> list[Retainer]:
        stmt = select(RetainerModel).where(RetainerModel.tenant_id == tenant_id)
        if client_id is not None:
            stmt = stmt.where(RetainerModel.client_id == client_id)
        stmt = stmt.order_by(RetainerModel.created_at).execution_options(populate_existing=True)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def list_low_balance(self, tenant_id: UUID) -> list[Retainer]:
        """
        ACTIVE retainers at or below their minimum balance or replenish
        threshold, lowest balance first.  Same rule as ``Retainer.is_low``.
        """
        stmt = (
            select(RetainerModel)
            .where(
                RetainerModel.tenant_id == tenant_id,
                RetainerModel.status == RetainerStatus.ACTIVE.value,
                or_(
                    RetainerModel.balance <= RetainerModel.minimum_balance,
                    RetainerModel.balance <= RetainerModel.replenish_threshold,
                ),
            )
            .order_by(RetainerModel.balance, RetainerModel.created_at)
            .execution_options(populate_existing=True)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def open_retainer(
        self,
        tenant_id: UUID,
        client_id: UUID,
        actor_id: UUID,
        minimum_balance: int = 0,
        replenish_threshold: int | None = None,
        name: str | None = None,
    ) -> Retainer:
        """Open an ACTIVE retainer with a zero balance."""
        try:
            if not is_minor_units(minimum_balance) or minimum_balance < 0:
                raise ValueError(f"minimum_balance must be a non-negative int, got {minimum_balance!r}")
            if replenish_threshold is not None:
                require_positive_amount(replenish_threshold, "replenish_threshold")

            model = RetainerModel(
                tenant_id=tenant_id,
                client_id=client_id,
                name=name,
                balance=0,
                status=RetainerStatus.ACTIVE.value,
                minimum_balance=minimum_balance,
                replenish_threshold=replenish_threshold,
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()
            logger.info("retainer_opened", extra={
                "tenant_id": str(tenant_id),
                "retainer_id": str(model.id),
                "client_id": str(client_id),
            })
            dto = model.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    def close_retainer(self, retainer_id: UUID, actor_id: UUID) -> Retainer:
        """
        Close a retainer.  Only a zero balance can be closed.

        Raises:
            RetainerClosedError: already closed.
            RetainerNotEmptyError: balance is not zero.
        """
        try:
            model = self._load_for_update(retainer_id)
            target = next_retainer_status(model.status, RetainerAction.CLOSE)
            if target is None:
                raise RetainerClosedError(str(retainer_id))
            if model.balance != 0:
                raise RetainerNotEmptyError(str(retainer_id), model.balance)

            model.status = target.value
            model.closed_at = self._clock.now()
            model.updated_by_id = actor_id
            self._session.flush()
            logger.info("retainer_closed", extra={"retainer_id": str(retainer_id)})
            dto = model.to_dto()
            self._session.commit()
            return dto
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Deposits, consumptions, refunds and voids
    # =========================================================================

    def _already_posted(self, retainer: RetainerModel, source_type: SourceType, source_id: str):
        existing = self._journal_selector.find_by_source(
            retainer.tenant_id, source_type.value, source_id
        )
        if existing is None:
            return None
        logger.info("retainer_movement_already_posted", extra={
            "retainer_id": str(retainer.id),
            "source_type": source_type.value,
            "entry_id": str(existing.id),
        })
        dto = retainer.to_dto()
        return RetainerPostingResult(
            retainer=dto,
            journal_entry_id=existing.id,
            already_posted=True,
            low_balance=dto.is_low,
        )

    def deposit(
        self,
        retainer_id: UUID,
        amount: int,
        actor_id: UUID,
        deposit_id: str | None = None,
        deposit_date: date | None = None,
    ) -> RetainerPostingResult:
        """
        Receive client funds into the retainer.

        ``deposit_id`` is the idempotence key; pass the same value when
        retrying.  A fresh key is generated when omitted.

        Raises:
            InvalidAmountError, RetainerNotFoundError, RetainerClosedError,
            TransactionBlockedError (period not open).
        """
        deposit_id = str(deposit_id or uuid4())
        try:
            require_positive_amount(amount)
            retainer = self._load(retainer_id)
            with LogContext.bind(tenant_id=retainer.tenant_id, actor_id=actor_id):
                existing = self._already_posted(retainer, SourceType.RETAINER_DEPOSIT, deposit_id)
                if existing is not None:
                    self._session.commit()
                    return existing
                if retainer.status != RetainerStatus.ACTIVE.value:
                    raise RetainerClosedError(str(retainer_id))

                event = RetainerDeposit(
                    tenant_id=retainer.tenant_id,
                    deposit_id=deposit_id,
                    retainer_id=retainer.id,
                    amount=amount,
                    entry_date=deposit_date or self._clock.today(),
                    actor_id=actor_id,
                )
                try:
                    with self._session.begin_nested():
                        posting = self._poster.post_retainer_deposit(event)
                        if posting.already_posted:
                            raise AlreadyPostedError(
                                posting.source_type, posting.source_id, str(posting.journal_entry_id)
                            )
                        self._session.execute(
                            update(RetainerModel)
                            .where(RetainerModel.id == retainer_id)
                            .values(balance=RetainerModel.balance + amount)
                            .execution_options(synchronize_session=False)
                        )
                except AlreadyPostedError:
                    # Lost a race with the same deposit_id
                    result = self._already_posted(self._load(retainer_id), SourceType.RETAINER_DEPOSIT, deposit_id)
                    self._session.commit()
                    return result

                dto = self._load(retainer_id).to_dto()
                logger.info("retainer_deposited", extra={
                    "retainer_id": str(retainer_id),
                    "amount": amount,
                    "balance": dto.balance,
                    "entry_id": str(posting.journal_entry_id),
                })
                self._session.commit()
                return RetainerPostingResult(
                    retainer=dto,
                    journal_entry_id=posting.journal_entry_id,
                    low_balance=dto.is_low,
                )
        except Exception:
            self._session.rollback()
            raise

    def consume(
        self,
        retainer_id: UUID,
        amount: int,
        case_ref: str,
        actor_id: UUID,
        consumption_id: str | None = None,
        consumption_date: date | None = None,
    ) -> RetainerPostingResult:
        """
        Draw down the retainer for services on ``case_ref``.

        ``consumption_id`` is the idempotence key; pass the same value when
        retrying.  A fresh key is generated when omitted.

        Raises:
            InsufficientBalanceError: balance < amount.  Nothing changed.
            RetainerClosedError: retainer is closed.
            TransactionBlockedError: the period is not open.  Nothing changed.
        """
        consumption_id = str(consumption_id or uuid4())
        try:
            require_positive_amount(amount)
            retainer = self._load(retainer_id)
            with LogContext.bind(tenant_id=retainer.tenant_id, actor_id=actor_id):
                existing = self._already_posted(retainer, SourceType.RETAINER_CONSUMPTION, consumption_id)
                if existing is not None:
                    self._session.commit()
                    return existing
                if retainer.status != RetainerStatus.ACTIVE.value:
                    raise RetainerClosedError(str(retainer_id))

                event = RetainerConsumption(
                    tenant_id=retainer.tenant_id,
                    consumption_id=consumption_id,
                    retainer_id=retainer.id,
                    amount=amount,
                    entry_date=consumption_date or self._clock.today(),
                    actor_id=actor_id,
                    case_ref=case_ref,
                )
                try:
                    with self._session.begin_nested():
                        decremented = self._session.execute(
                            update(RetainerModel)
                            .where(
                                RetainerModel.id == retainer_id,
                                RetainerModel.status == RetainerStatus.ACTIVE.value,
                                RetainerModel.balance >= amount,
                            )
                            .values(balance=RetainerModel.balance - amount)
                            .execution_options(synchronize_session=False)
                        )
                        if decremented.rowcount == 0:
                            current = self._load(retainer_id)
                            if current.status != RetainerStatus.ACTIVE.value:
                                raise RetainerClosedError(str(retainer_id))
                            logger.warning("retainer_overdraw_refused", extra={
                                "retainer_id": str(retainer_id),
                                "requested": amount,
                                "available": current.balance,
                            })
                            raise InsufficientBalanceError(str(retainer_id), amount, current.balance)

                        posting = self._poster.post_retainer_consumption(event)
                        if posting.already_posted:
                            raise AlreadyPostedError(
                                posting.source_type, posting.source_id, str(posting.journal_entry_id)
                            )
                except AlreadyPostedError:
                    result = self._already_posted(
                        self._load(retainer_id), SourceType.RETAINER_CONSUMPTION, consumption_id
                    )
                    self._session.commit()
                    return result

                dto = self._load(retainer_id).to_dto()
                logger.info("retainer_consumed", extra={
                    "retainer_id": str(retainer_id),
                    "amount": amount,
                    "balance": dto.balance,
                    "case_ref": case_ref,
                    "entry_id": str(posting.journal_entry_id),
                })
                if dto.is_low:
                    logger.warning("retainer_low_balance", extra={
                        "retainer_id": str(retainer_id),
                        "balance": dto.balance,
                        "minimum_balance": dto.minimum_balance,
                        "replenish_threshold": dto.replenish_threshold,
                    })
                self._session.commit()
                return RetainerPostingResult(
                    retainer=dto,
                    journal_entry_id=posting.journal_entry_id,
                    low_balance=dto.is_low,
                )
        except Exception:
            self._session.rollback()
            raise

    def refund(
        self,
        retainer_id: UUID,
        reason: str,
        actor_id: UUID,
        refund_date: date | None = None,
    ) -> RetainerPostingResult:
        """
        Return the whole remaining balance to the client and end the retainer.

        Posts DR Unearned Revenue / CR Bank for the balance, sets the balance
        to zero and the status to REFUNDED in one transaction.  The reason
        is kept on the retainer and carried as the line memo.  An empty
        retainer has nothing to refund; close it instead.

        Raises:
            ValueError: empty reason.
            InvalidAmountError: the balance is zero.
            RetainerClosedError: closed or already refunded.
            TransactionBlockedError: the period is not open.  Nothing changed.
        """
        try:
            if not reason or not reason.strip():
                raise ValueError("a refund reason is required")
            retainer = self._load_for_update(retainer_id)
            with LogContext.bind(tenant_id=retainer.tenant_id, actor_id=actor_id):
                target = next_retainer_status(retainer.status, RetainerAction.REFUND)
                if target is None:
                    raise RetainerClosedError(str(retainer_id))
                amount = require_positive_amount(retainer.balance, "balance")

                event = RetainerRefund(
                    tenant_id=retainer.tenant_id,
                    retainer_id=retainer.id,
                    amount=amount,
                    entry_date=refund_date or self._clock.today(),
                    actor_id=actor_id,
                    reason=reason,
                )
                with self._session.begin_nested():
                    posting = self._poster.post_retainer_refund(event)
                    if posting.already_posted:
                        raise AlreadyPostedError(
                            posting.source_type, posting.source_id, str(posting.journal_entry_id)
                        )
                    retainer.balance = 0
                    retainer.status = target.value
                    retainer.closed_at = self._clock.now()
                    retainer.refund_reason = reason
                    retainer.updated_by_id = actor_id
                    self._session.flush()

                dto = retainer.to_dto()
                logger.info("retainer_refunded", extra={
                    "retainer_id": str(retainer_id),
                    "amount": amount,
                    "reason": reason,
                    "entry_id": str(posting.journal_entry_id),
                })
                self._session.commit()
                return RetainerPostingResult(retainer=dto, journal_entry_id=posting.journal_entry_id)
        except Exception:
            self._session.rollback()
            raise

    def void_movement(self, entry_id: UUID, reason: str, actor_id: UUID) -> RetainerPostingResult:
        """
        Void a deposit or consumption and undo its effect on the balance.

        Voiding a deposit takes its amount back out with the same guarded
        decrement consume() uses, so a deposit that has partly been spent
        cannot be voided.  Voiding a consumption puts its amount back.  The
        reversal and the balance change commit together.

        Raises:
            EntryNotFoundError: unknown entry.
            EntryNotPostedError: the entry is already void.
            EntryNotVoidableError: not a retainer deposit or consumption.
            RetainerClosedError: the retainer is closed or refunded.
            InsufficientBalanceError: the balance is below the deposit
                being voided.  Nothing changed.
            ClosedPeriodError / PeriodLockedError: the entry's period is
                not open.  Nothing changed.
        """
        try:
            entry = self._session.get(JournalEntry, entry_id, populate_existing=True)
            if entry is None:
                raise EntryNotFoundError(str(entry_id))
            if entry.source_type not in _VOID_SIGNS or entry.reference_id is None:
                raise EntryNotVoidableError(str(entry_id), f"{entry.source_type} entries do not move a retainer")
            if entry.status != JournalEntryStatus.POSTED.value:
                raise EntryNotPostedError(str(entry_id), str(entry.status))

            retainer_id = UUID(entry.reference_id)
            retainer = self._load_for_update(retainer_id)
            with LogContext.bind(tenant_id=retainer.tenant_id, actor_id=actor_id):
                if retainer.status != RetainerStatus.ACTIVE.value:
                    raise RetainerClosedError(str(retainer_id))
                amount = sum(line.debit for line in entry.lines)
                delta = _VOID_SIGNS[entry.source_type] * amount

                with self._session.begin_nested():
                    changed = self._session.execute(
                        update(RetainerModel)
                        .where(
                            RetainerModel.id == retainer_id,
                            RetainerModel.balance + delta >= 0,
                        )
                        .values(balance=RetainerModel.balance + delta)
                        .execution_options(synchronize_session=False)
                    )
                    if changed.rowcount == 0:
                        logger.warning("retainer_void_refused", extra={
                            "retainer_id": str(retainer_id),
                            "entry_id": str(entry_id),
                            "requested": amount,
                            "available": retainer.balance,
                        })
                        raise InsufficientBalanceError(str(retainer_id), amount, retainer.balance)
                    voided = self._journal.void(entry_id, reason, actor_id, via_subledger=True)

                dto = self._load(retainer_id).to_dto()
                logger.info("retainer_movement_voided", extra={
                    "retainer_id": str(retainer_id),
                    "entry_id": str(entry_id),
                    "reversal_entry_id": str(voided.reversal.id),
                    "balance": dto.balance,
                })
                self._session.commit()
                return RetainerPostingResult(
                    retainer=dto,
                    journal_entry_id=voided.reversal.id,
                    low_balance=dto.is_low,
                )
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # History and reconciliation
    # =========================================================================

    def retainer_history(self, retainer_id: UUID) -> list[RetainerMovement]:
        """
        Journal entries that moved the retainer, oldest first.

        Includes voided entries and their reversals; the signed amounts
        sum to the replayed balance.
        """
        retainer = self._load(retainer_id)
        unearned_id = self._roles.resolve(retainer.tenant_id, AccountRole.UNEARNED_REVENUE)
        entries = self._session.scalars(
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == retainer.tenant_id,
                JournalEntry.reference_id == str(retainer_id),
            )
            .order_by(JournalEntry.entry_date, JournalEntry.created_at)
        ).all()

        movements = []
        for entry in entries:
            amount = sum(
                line.credit - line.debit for line in entry.lines if line.account_id == unearned_id
            )
            memo = next((line.memo for line in entry.lines if line.memo), None)
            movements.append(
                RetainerMovement(
                    journal_entry_id=entry.id,
                    entry_date=entry.entry_date,
                    source_type=entry.source_type,
                    source_id=entry.source_id,
                    amount=amount,
                    is_void=entry.status == JournalEntryStatus.VOID.value,
                    memo=memo,
                )
            )
        return movements

    def verify_balances(self, tenant_id: UUID, repair: bool = False) -> list[RetainerDrift]:
        """
        Compare each retainer balance to its replayed history.

        Movements made through this service keep the two in step; this
        finds and, with ``repair``, fixes drift left by writes that went
        around it (direct SQL, restored backups).
        A replayed balance below zero is reported but never written.
        """
        try:
            drifts = []
            for retainer in self.list_retainers(tenant_id):
                replayed = sum(m.amount for m in self.retainer_history(retainer.id))
                if replayed == retainer.balance:
                    continue
                drifts.append(RetainerDrift(retainer.id, retainer.balance, replayed))
                logger.warning("retainer_balance_drift", extra={
                    "retainer_id": str(retainer.id),
                    "cached_balance": retainer.balance,
                    "replayed_balance": replayed,
                    "repair": repair,
                })
                if repair and replayed >= 0:
                    self._session.execute(
                        update(RetainerModel)
                        .where(RetainerModel.id == retainer.id)
                        .values(balance=replayed)
                        .execution_options(synchronize_session=False)
                    )
            if repair:
                self._session.commit()
            return drifts
        except Exception:
            self._session.rollback()
            raise
