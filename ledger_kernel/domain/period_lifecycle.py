"""
Fiscal period lifecycle -- the single transition table.

    OPEN   --close-->  CLOSED
    CLOSED --reopen--> OPEN
    CLOSED --lock-->   LOCKED   (terminal)

Every status change goes through ``next_status``; PeriodService applies the
result at one mutation point.  Anything not in the table is illegal.
"""

from enum import Enum

from ledger_kernel.models.fiscal_period import PeriodStatus


class PeriodAction(str, Enum):
    CLOSE = "close"
    REOPEN = "reopen"
    LOCK = "lock"


PERIOD_TRANSITIONS: dict[tuple[PeriodStatus, PeriodAction], PeriodStatus] = {
    (PeriodStatus.OPEN, PeriodAction.CLOSE): PeriodStatus.CLOSED,
    (PeriodStatus.CLOSED, PeriodAction.REOPEN): PeriodStatus.OPEN,
    (PeriodStatus.CLOSED, PeriodAction.LOCK): PeriodStatus.LOCKED,
}

TERMINAL_STATUSES = frozenset({PeriodStatus.LOCKED})


def next_status(current: PeriodStatus | str, action: PeriodAction | str) -> PeriodStatus | None:
    """Target status for (current, action), or None if the transition is illegal."""
    return PERIOD_TRANSITIONS.get((PeriodStatus(current), PeriodAction(action)))


def accepts_postings(status: PeriodStatus | str) -> bool:
    return PeriodStatus(status) == PeriodStatus.OPEN
