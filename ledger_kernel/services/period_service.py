"""
PeriodService -- the Fiscal Calendar.

Responsibility:
    Creates fiscal years, drives the period lifecycle (OPEN -> CLOSED ->
    LOCKED, with CLOSED -> OPEN reopen), and answers whether a date may
    receive postings.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.
    Called by JournalService inside the posting SAVEPOINT, and by
    YearEndService and operator scripts to drive the lifecycle.

Invariants enforced:
    - The twelve periods of a fiscal year partition its date range and do
      not overlap any other period of the tenant (YEAR_EXISTS).
    - Every status change goes through ``_transition``, which consults the
      table in ``domain/period_lifecycle.py``.  LOCKED is terminal.
    - A period closes only when every earlier period of the tenant is
      CLOSED or LOCKED (OUT_OF_ORDER_CLOSE).
    - Posting checks read the period row under a shared lock inside the
      posting transaction, so a concurrent close either waits for the post
      to commit or the post sees the closed status.

Failure modes:
    - PeriodNotFoundError, FiscalYearExistsError, OutOfOrderCloseError,
      InvalidPeriodTransitionError, PeriodLockedError, ClosedPeriodError.

Audit relevance:
    Close, reopen, and lock are logged with period_code, actor_id and
    timestamps from the injected clock.  Refused postings log at WARNING.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import FiscalPeriodInfo, PostingWindow
from ledger_kernel.domain.fiscal_calendar import fiscal_year_windows
from ledger_kernel.domain.period_lifecycle import (
    PeriodAction,
    TERMINAL_STATUSES,
    accepts_postings,
    next_status,
)
from ledger_kernel.exceptions import (
    ClosedPeriodError,
    FiscalYearExistsError,
    InvalidPeriodTransitionError,
    OutOfOrderCloseError,
    PeriodLockedError,
    PeriodNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period")


class PeriodService(BaseService[FiscalPeriod]):
    """
    Fiscal period lifecycle and posting-window checks.

    Contract:
        Returns frozen FiscalPeriodInfo DTOs.  Lifecycle methods flush within
        the caller's transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Fiscal year
    # ------------------------------------------------------------------

    def create_fiscal_year(
        self,
        tenant_id: UUID,
        fiscal_year: int,
        start_month: int,
        actor_id: UUID,
    ) -> list[FiscalPeriodInfo]:
        """
        Create twelve contiguous monthly OPEN periods.

        The year starts on the 1st of ``start_month`` in calendar year
        ``fiscal_year``; periods are coded FY{year}-01 .. FY{year}-12.

        Raises:
            FiscalYearExistsError: any existing period overlaps the range.
            ValueError: start_month outside 1..12.
        """
        windows = fiscal_year_windows(fiscal_year, start_month)
        first_day, last_day = windows[0].start_date, windows[-1].end_date

        overlap = self.session.scalars(
            select(FiscalPeriod.id).where(
                FiscalPeriod.tenant_id == tenant_id,
                (FiscalPeriod.fiscal_year == fiscal_year)
                | (
                    (FiscalPeriod.start_date <= last_day)
                    & (FiscalPeriod.end_date >= first_day)
                ),
            )
        ).first()
        if overlap is not None:
            logger.warning(
                "fiscal_year_exists",
                extra={"tenant_id": str(tenant_id), "fiscal_year": fiscal_year},
            )
            raise FiscalYearExistsError(str(tenant_id), fiscal_year)

        periods = [
            FiscalPeriod(
                tenant_id=tenant_id,
                fiscal_year=w.fiscal_year,
                sequence=w.sequence,
                period_code=w.period_code,
                start_date=w.start_date,
                end_date=w.end_date,
                status=PeriodStatus.OPEN.value,
                created_by_id=actor_id,
            )
            for w in windows
        ]
        self.session.add_all(periods)
        self.session.flush()

        logger.info(
            "fiscal_year_created",
            extra={
                "tenant_id": str(tenant_id),
                "fiscal_year": fiscal_year,
                "start_date": first_day.isoformat(),
                "end_date": last_day.isoformat(),
            },
        )
        return [FiscalPeriodInfo.from_model(p) for p in periods]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_period_for_update(self, period_id: UUID) -> FiscalPeriod:
        period = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def _period_for_date(self, tenant_id: UUID, entry_date: date, lock: bool = False):
        stmt = select(FiscalPeriod).where(
            FiscalPeriod.tenant_id == tenant_id,
            FiscalPeriod.start_date <= entry_date,
            FiscalPeriod.end_date >= entry_date,
        ).execution_options(populate_existing=True)
        if lock:
            stmt = stmt.with_for_update(read=True)
        return self.session.execute(stmt).scalars().first()

    def get_period(self, period_id: UUID) -> FiscalPeriodInfo:
        period = self.session.get(FiscalPeriod, period_id, populate_existing=True)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return FiscalPeriodInfo.from_model(period)

    def get_period_for_date(self, tenant_id: UUID, entry_date: date) -> FiscalPeriodInfo | None:
        period = self._period_for_date(tenant_id, entry_date)
        return FiscalPeriodInfo.from_model(period) if period else None

    def list_periods(self, tenant_id: UUID, fiscal_year: int | None = None) -> list[FiscalPeriodInfo]:
        stmt = (
            select(FiscalPeriod)
            .where(FiscalPeriod.tenant_id == tenant_id)
            .order_by(FiscalPeriod.start_date)
            .execution_options(populate_existing=True)
        )
        if fiscal_year is not None:
            stmt = stmt.where(FiscalPeriod.fiscal_year == fiscal_year)
        return [FiscalPeriodInfo.from_model(p) for p in self.session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Posting window
    # ------------------------------------------------------------------

    def can_post(self, tenant_id: UUID, entry_date: date) -> PostingWindow:
        """Whether an entry dated ``entry_date`` may post right now (no lock)."""
        period = self._period_for_date(tenant_id, entry_date)
        if period is None:
            return PostingWindow(allowed=False, period=None, reason_code=ClosedPeriodError.code)
        info = FiscalPeriodInfo.from_model(period)
        if accepts_postings(period.status):
            return PostingWindow(allowed=True, period=info)
        if period.is_locked:
            return PostingWindow(allowed=False, period=info, reason_code=PeriodLockedError.code)
        return PostingWindow(allowed=False, period=info, reason_code=ClosedPeriodError.code)

    def require_open_for_posting(self, tenant_id: UUID, entry_date: date) -> FiscalPeriodInfo:
        """
        Read the covering period under a shared row lock and require OPEN.

        Must be called inside the posting transaction; the lock holds until
        that transaction ends.

        Raises:
            PeriodLockedError: the covering period is LOCKED.
            ClosedPeriodError: no period covers the date, or it is CLOSED.
        """
        period = self._period_for_date(tenant_id, entry_date, lock=True)
        if period is None:
            logger.warning(
                "posting_refused_no_period",
                extra={"tenant_id": str(tenant_id), "entry_date": entry_date.isoformat()},
            )
            raise ClosedPeriodError(entry_date.isoformat())
        if period.is_locked:
            logger.warning(
                "posting_refused_period_locked",
                extra={"period_code": period.period_code, "entry_date": entry_date.isoformat()},
            )
            raise PeriodLockedError(entry_date.isoformat(), period.period_code)
        if not accepts_postings(period.status):
            logger.warning(
                "posting_refused_period_closed",
                extra={"period_code": period.period_code, "entry_date": entry_date.isoformat()},
            )
            raise ClosedPeriodError(entry_date.isoformat(), period.period_code)
        return FiscalPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, period: FiscalPeriod, action: PeriodAction, actor_id: UUID) -> None:
        """The single mutation point for period status."""
        target = next_status(period.status, action)
        if target is None:
            if PeriodStatus(period.status) in TERMINAL_STATUSES:
                raise PeriodLockedError(None, period.period_code)
            raise InvalidPeriodTransitionError(
                period.period_code, PeriodStatus(period.status).value, action.value
            )

        now = self._clock.now()
        period.status = target.value
        period.updated_by_id = actor_id
        if target == PeriodStatus.CLOSED:
            period.closed_at = now
            period.closed_by_id = actor_id
        elif target == PeriodStatus.OPEN:
            period.closed_at = None
            period.closed_by_id = None
        elif target == PeriodStatus.LOCKED:
            period.locked_at = now
        self.session.flush()

    def close_period(self, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        """
        Close an OPEN period.

        Raises:
            OutOfOrderCloseError: an earlier period of the tenant is still OPEN.
            InvalidPeriodTransitionError / PeriodLockedError: not OPEN.
        """
        period = self._get_period_for_update(period_id)

        if PeriodStatus(period.status) == PeriodStatus.OPEN:
            earlier_open = self.session.scalars(
                select(FiscalPeriod.period_code)
                .where(
                    FiscalPeriod.tenant_id == period.tenant_id,
                    FiscalPeriod.start_date < period.start_date,
                    FiscalPeriod.status == PeriodStatus.OPEN.value,
                )
                .order_by(FiscalPeriod.start_date)
            ).first()
            if earlier_open is not None:
                logger.warning(
                    "period_close_out_of_order",
                    extra={"period_code": period.period_code, "open_period_code": earlier_open},
                )
                raise OutOfOrderCloseError(period.period_code, earlier_open)

        self._transition(period, PeriodAction.CLOSE, actor_id)
        logger.info(
            "period_closed",
            extra={"period_code": period.period_code, "actor_id": str(actor_id)},
        )
        return FiscalPeriodInfo.from_model(period)

    def reopen_period(self, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        """
        Reopen a CLOSED period.

        Raises:
            PeriodLockedError: the period is LOCKED.
            InvalidPeriodTransitionError: the period is already OPEN.
        """
        period = self._get_period_for_update(period_id)
        self._transition(period, PeriodAction.REOPEN, actor_id)
        logger.info(
            "period_reopened",
            extra={"period_code": period.period_code, "actor_id": str(actor_id)},
        )
        return FiscalPeriodInfo.from_model(period)

    def lock_period(self, period_id: UUID, actor_id: UUID) -> FiscalPeriodInfo:
        """
        Lock a CLOSED period permanently.

        Raises:
            InvalidPeriodTransitionError: the period is OPEN (close it first).
            PeriodLockedError: already LOCKED.
        """
        period = self._get_period_for_update(period_id)
        self._transition(period, PeriodAction.LOCK, actor_id)
        logger.info(
            "period_locked",
            extra={"period_code": period.period_code, "actor_id": str(actor_id)},
        )
        return FiscalPeriodInfo.from_model(period)
