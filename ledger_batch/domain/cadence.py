"""
Pure cadence functions for recurring transactions.

Contract:
    Every function here is PURE -- no I/O, no clock reads.  process_due()
    is therefore a function of ``now`` plus persisted state.

Month-based steps clamp to the anchor day: a monthly transaction
anchored on the 31st runs on Jan 31, Feb 29 (leap year), Mar 31, ...
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from ledger_kernel.domain.fiscal_calendar import add_months

from ledger_batch.domain.types import Frequency

_DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.SEMI_ANNUAL: 6,
    Frequency.ANNUAL: 12,
}


def next_run_date(current: date, frequency: Frequency | str, anchor_day: int | None = None) -> date:
    """The occurrence after ``current``."""
    frequency = Frequency(frequency)
    if frequency in _DAY_STEPS:
        return current + timedelta(days=_DAY_STEPS[frequency])
    return add_months(current, _MONTH_STEPS[frequency], anchor_day or current.day)


def is_due(next_run: date, now: datetime) -> bool:
    return next_run <= now.date()


def is_finished(
    next_run: date,
    generated_count: int,
    end_date: date | None = None,
    max_occurrences: int | None = None,
) -> bool:
    """True when no further occurrence may be generated."""
    if max_occurrences is not None and generated_count >= max_occurrences:
        return True
    if end_date is not None and next_run > end_date:
        return True
    return False


def schedule(
    start: date,
    frequency: Frequency | str,
    count: int,
    anchor_day: int | None = None,
    end_date: date | None = None,
    remaining: int | None = None,
) -> list[date]:
    """Up to ``count`` occurrence dates starting at ``start``."""
    dates: list[date] = []
    current = start
    limit = count if remaining is None else min(count, remaining)
    while len(dates) < limit:
        if end_date is not None and current > end_date:
            break
        dates.append(current)
        current = next_run_date(current, frequency, anchor_day)
    return dates
