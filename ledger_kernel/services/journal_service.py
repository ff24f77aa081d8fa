"""
JournalService -- the Journal Engine.

Responsibility:
    The only writer of journal entries.  Validates a DraftJournalEntry,
    checks the posting window and the idempotence key, persists the entry
    as POSTED, and applies every line to the account balance cache.  Also
    voids posted entries by reversal.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Consumes
    AccountService (balance cache) and PeriodService (posting window).

Posting pipeline:
    1. Structural validation -- at least two lines, each line a single
       positive integer amount, every account present, active, and owned
       by the entry's tenant.
    2. Balance validation -- integer sum of debits == sum of credits.
    3. Period check -- the covering period is read under a shared row lock
       inside the posting SAVEPOINT and must be OPEN.
    4. Idempotence check -- no live entry for (tenant, source_type,
       source_id); otherwise ALREADY_POSTED with the existing entry id.
    5. Persist + apply balances inside the same SAVEPOINT.

    Steps 1-2 never touch the database state.  Steps 3-5 run as one atomic
    unit; a concurrent insert that wins the unique index is reported as
    ALREADY_POSTED rather than as a database error.

Invariants enforced:
    - Every POSTED entry balances.
    - At most one live entry per idempotence key.
    - Posted entries are never edited; void appends a reversal.

Failure modes:
    - InvalidEntryError, InvalidLineError, AccountNotFoundError,
      AccountInactiveError, TenantMismatchError, UnbalancedEntryError
      (validation; nothing persisted).
    - ClosedPeriodError / PeriodLockedError (state conflict).
    - AlreadyPostedError (idempotence; carries journal_entry_id).
    - EntryNotFoundError, EntryNotPostedError, EntryNotVoidableError (void).

Audit relevance:
    journal_posted / journal_voided are logged with entry id, source key,
    totals and duration.  Rejections are logged at WARNING with the code.
"""

import time
from dataclasses import replace
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import is_minor_units
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    DraftJournalEntry,
    DraftLine,
    PostedJournalEntry,
    VoidResult,
)
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AlreadyPostedError,
    EntryNotFoundError,
    EntryNotPostedError,
    EntryNotVoidableError,
    InvalidEntryError,
    InvalidLineError,
    LedgerError,
    TenantMismatchError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import (
    REVERSAL_SOURCE_TYPE,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
)
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_service import PeriodService

logger = get_logger("services.journal")

# Source types whose entries also moved a cached subledger balance.  Their
# voids must go through the owning subledger so both change together.
SUBLEDGER_SOURCE_TYPES = frozenset({"retainer_deposit", "retainer_consumption", "retainer_refund"})

MIN_LINES = 2


class JournalService(BaseService[JournalEntry]):
    """
    Posts and voids journal entries.

    Contract:
        post() returns a PostedJournalEntry or raises a typed LedgerError.
        Nothing is left behind on failure: all writes happen inside a
        SAVEPOINT that is rolled back on any exception.

    Non-goals:
        - Does NOT commit.  The caller owns the outer transaction.
        - Does NOT resolve account roles; drafts carry account ids.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        account_service: AccountService | None = None,
        period_service: PeriodService | None = None,
    ):
        super().__init__(session, clock)
        self._accounts = account_service or AccountService(session, self._clock)
        self._periods = period_service or PeriodService(session, self._clock)

    # ------------------------------------------------------------------
    # Validation (no database mutation)
    # ------------------------------------------------------------------

    def _validate_structure(self, draft: DraftJournalEntry) -> None:
        if not draft.source_type or not str(draft.source_id):
            raise InvalidEntryError("source_type and source_id are required")
        if len(draft.lines) < MIN_LINES:
            raise InvalidEntryError(f"at least {MIN_LINES} lines required, got {len(draft.lines)}")

        for seq, line in enumerate(draft.lines, start=1):
            if not is_minor_units(line.debit) or not is_minor_units(line.credit):
                raise InvalidLineError(seq, "amounts must be integer minor units")
            if line.debit < 0 or line.credit < 0:
                raise InvalidLineError(seq, "amounts must not be negative")
            if (line.debit > 0) == (line.credit > 0):
                raise InvalidLineError(seq, "exactly one of debit or credit must be positive")

    def _validate_accounts(self, draft: DraftJournalEntry, allow_inactive: bool = False) -> dict[UUID, Account]:
        account_ids = {line.account_id for line in draft.lines}
        accounts = {
            acc.id: acc
            for acc in self.session.scalars(select(Account).where(Account.id.in_(account_ids)))
        }
        for line in draft.lines:
            account = accounts.get(line.account_id)
            if account is None:
                raise AccountNotFoundError(str(line.account_id))
            if account.tenant_id != draft.tenant_id:
                raise TenantMismatchError("Account", str(account.id), str(draft.tenant_id))
            if not account.is_active and not allow_inactive:
                raise AccountInactiveError(str(account.id), account.code)
        return accounts

    @staticmethod
    def _validate_balance(draft: DraftJournalEntry) -> None:
        debits = draft.total_debits
        credits = draft.total_credits
        if debits != credits:
            raise UnbalancedEntryError(debits, credits)

    def validate(self, draft: DraftJournalEntry) -> None:
        """Run steps 1-2 of the pipeline without posting."""
        self._validate_structure(draft)
        self._validate_accounts(draft)
        self._validate_balance(draft)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _find_live_entry(self, tenant_id: UUID, source_type: str, source_id: str, lock: bool = False):
        stmt = select(JournalEntry).where(
            JournalEntry.tenant_id == tenant_id,
            JournalEntry.source_type == source_type,
            JournalEntry.source_id == source_id,
            JournalEntry.status != JournalEntryStatus.VOID.value,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).first()

    def _persist(self, draft: DraftJournalEntry, reversal_of_id: UUID | None = None) -> JournalEntry:
        entry = JournalEntry(
            tenant_id=draft.tenant_id,
            entry_date=draft.entry_date,
            status=JournalEntryStatus.POSTED.value,
            source_type=draft.source_type,
            source_id=str(draft.source_id),
            reference_id=draft.reference_id,
            description=draft.description,
            posted_at=self._clock.now(),
            reversal_of_id=reversal_of_id,
            created_by_id=draft.created_by_id,
        )
        entry.lines = [
            JournalLine(
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                line_seq=seq,
                memo=line.memo,
                created_by_id=draft.created_by_id,
            )
            for seq, line in enumerate(draft.lines, start=1)
        ]
        self.session.add(entry)
        self.session.flush()

        for line in draft.lines:
            self._accounts.apply_posting(line.account_id, line.debit, line.credit)
        return entry

    # ------------------------------------------------------------------
    # Post
    # ------------------------------------------------------------------

    def post(self, draft: DraftJournalEntry, *, allow_inactive_accounts: bool = False) -> PostedJournalEntry:
        """
        Post a draft entry.

        Postconditions:
            - On success the entry is POSTED and every account balance cache
              reflects its lines, all within the caller's transaction.
            - On failure nothing has been written.

        ``allow_inactive_accounts`` is for closing entries only: year-end
        close must zero income and expense accounts deactivated during the
        year.

        Raises:
            AlreadyPostedError: a live entry exists for the source key.  The
                caller should treat this as success.
        """
        source_id = str(draft.source_id)
        if source_id != draft.source_id:
            draft = replace(draft, source_id=source_id)

        t0 = time.monotonic()
        with LogContext.bind(
            tenant_id=draft.tenant_id,
            source_type=draft.source_type,
            source_id=source_id,
        ):
            try:
                self._validate_structure(draft)
                self._validate_accounts(draft, allow_inactive=allow_inactive_accounts)
                self._validate_balance(draft)
            except LedgerError as exc:
                logger.warning(
                    "journal_post_rejected",
                    extra={"code": exc.code, "category": exc.category},
                )
                raise

            try:
                with self.session.begin_nested():
                    self._periods.require_open_for_posting(draft.tenant_id, draft.entry_date)

                    existing = self._find_live_entry(
                        draft.tenant_id, draft.source_type, source_id, lock=True
                    )
                    if existing is not None:
                        raise AlreadyPostedError(draft.source_type, source_id, str(existing.id))

                    entry = self._persist(draft)
            except IntegrityError:
                existing = self._find_live_entry(draft.tenant_id, draft.source_type, source_id)
                if existing is None:
                    raise
                logger.info("journal_post_idempotent", extra={"entry_id": str(existing.id)})
                raise AlreadyPostedError(draft.source_type, source_id, str(existing.id)) from None
            except AlreadyPostedError as exc:
                logger.info("journal_post_idempotent", extra={"entry_id": exc.journal_entry_id})
                raise
            except LedgerError as exc:
                logger.warning(
                    "journal_post_rejected",
                    extra={"code": exc.code, "category": exc.category},
                )
                raise

            logger.info(
                "journal_posted",
                extra={
                    "entry_id": str(entry.id),
                    "entry_date": draft.entry_date.isoformat(),
                    "line_count": len(draft.lines),
                    "total": draft.total_debits,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return PostedJournalEntry.from_model(entry)

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    def void(
        self, entry_id: UUID, reason: str, actor_id: UUID, *, via_subledger: bool = False
    ) -> VoidResult:
        """
        Void a posted entry by appending an equal-and-opposite reversal.

        The reversal carries source_type "reversal", source_id = the
        original id, and the original's entry date, so it lands in the same
        period.  The original is then marked VOID.

        Raises:
            EntryNotFoundError: unknown entry.
            EntryNotPostedError: entry is not POSTED (e.g. already void).
            EntryNotVoidableError: entry is itself a reversal, or moved a
                subledger balance and ``via_subledger`` is not set.  The
                owning subledger sets it once its balance update is in the
                same transaction.
            PeriodLockedError: the original's period is LOCKED.
            ClosedPeriodError: the original's period is CLOSED.
        """
        if not reason or not reason.strip():
            raise InvalidEntryError("a void reason is required")

        with LogContext.bind(entry_id=entry_id, actor_id=actor_id):
            try:
                with self.session.begin_nested():
                    original = self.session.scalars(
                        select(JournalEntry)
                        .where(JournalEntry.id == entry_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    ).first()
                    if original is None:
                        raise EntryNotFoundError(str(entry_id))
                    if original.status != JournalEntryStatus.POSTED.value:
                        raise EntryNotPostedError(str(entry_id), str(original.status))
                    if original.reversal_of_id is not None:
                        raise EntryNotVoidableError(str(entry_id), "reversal entries cannot be voided")
                    if original.source_type in SUBLEDGER_SOURCE_TYPES and not via_subledger:
                        raise EntryNotVoidableError(
                            str(entry_id),
                            f"{original.source_type} entries are voided through their subledger",
                        )

                    self._periods.require_open_for_posting(original.tenant_id, original.entry_date)

                    reversal_draft = DraftJournalEntry(
                        tenant_id=original.tenant_id,
                        entry_date=original.entry_date,
                        source_type=REVERSAL_SOURCE_TYPE,
                        source_id=str(original.id),
                        lines=tuple(
                            DraftLine(
                                account_id=line.account_id,
                                debit=line.credit,
                                credit=line.debit,
                                memo=line.memo,
                            )
                            for line in original.lines
                        ),
                        created_by_id=actor_id,
                        description=f"Void of {original.source_type}:{original.source_id}: {reason}",
                        reference_id=original.reference_id,
                    )

                    original.status = JournalEntryStatus.VOID.value
                    original.voided_at = self._clock.now()
                    original.voided_by_id = actor_id
                    original.void_reason = reason
                    self.session.flush()

                    reversal = self._persist(reversal_draft, reversal_of_id=original.id)
            except LedgerError as exc:
                logger.warning(
                    "journal_void_rejected",
                    extra={"code": exc.code, "category": exc.category},
                )
                raise

            logger.info(
                "journal_voided",
                extra={
                    "reversal_entry_id": str(reversal.id),
                    "source_type": original.source_type,
                    "reason": reason,
                },
            )
            return VoidResult(
                original=PostedJournalEntry.from_model(original),
                reversal=PostedJournalEntry.from_model(reversal),
            )
