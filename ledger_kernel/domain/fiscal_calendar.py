"""
Fiscal calendar arithmetic -- pure functions, no I/O.

Month stepping clamps to the last day of shorter months, so an anchor day
of 31 lands on Feb 28/29, Apr 30, and so on, and returns to 31 when the
month allows it.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

PERIODS_PER_YEAR = 12


@dataclass(frozen=True)
class PeriodWindow:
    """Date range of one fiscal period before it is persisted."""

    fiscal_year: int
    sequence: int
    start_date: date
    end_date: date

    @property
    def period_code(self) -> str:
        return format_period_code(self.fiscal_year, self.sequence)


def format_period_code(fiscal_year: int, sequence: int) -> str:
    return f"FY{fiscal_year}-{sequence:02d}"


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(start: date, months: int, anchor_day: int | None = None) -> date:
    """Step ``months`` calendar months from ``start``.

    The day of month is ``anchor_day`` (or ``start.day``) clamped to the
    length of the target month.
    """
    month_index = start.year * 12 + (start.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = anchor_day if anchor_day is not None else start.day
    return date(year, month, min(day, last_day_of_month(year, month)))


def fiscal_year_windows(fiscal_year: int, start_month: int) -> list[PeriodWindow]:
    """Twelve contiguous monthly windows starting on the 1st of ``start_month``.

    The fiscal year is labelled by the calendar year in which it starts.

    Raises:
        ValueError: if start_month is outside 1..12.
    """
    if not 1 <= start_month <= 12:
        raise ValueError(f"start_month must be in 1..12, got {start_month}")

    first = date(fiscal_year, start_month, 1)
    windows = []
    for seq in range(1, PERIODS_PER_YEAR + 1):
        start = add_months(first, seq - 1, anchor_day=1)
        end = add_months(first, seq, anchor_day=1) - timedelta(days=1)
        windows.append(PeriodWindow(fiscal_year, seq, start, end))
    return windows
