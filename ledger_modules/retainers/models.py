"""
Retainer Domain Models (``ledger_modules.retainers.models``).

Frozen value objects returned by ``RetainerLedger``.  ZERO I/O.  All
amounts are ints counting minor units.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class RetainerStatus(str, Enum):
    """Retainer lifecycle states.  CLOSED and REFUNDED are terminal."""
    ACTIVE = "active"
    CLOSED = "closed"
    REFUNDED = "refunded"


class RetainerAction(str, Enum):
    CLOSE = "close"
    REFUND = "refund"


RETAINER_TRANSITIONS: dict[tuple[RetainerStatus, RetainerAction], RetainerStatus] = {
    (RetainerStatus.ACTIVE, RetainerAction.CLOSE): RetainerStatus.CLOSED,
    (RetainerStatus.ACTIVE, RetainerAction.REFUND): RetainerStatus.REFUNDED,
}


def next_retainer_status(current: RetainerStatus | str, action: RetainerAction) -> RetainerStatus | None:
    return RETAINER_TRANSITIONS.get((RetainerStatus(current), action))


@dataclass(frozen=True)
class Retainer:
    """
    A client's retainer balance.

    closed_at is set when the retainer leaves ACTIVE, by close or refund.
    """
    id: UUID
    tenant_id: UUID
    client_id: UUID
    balance: int
    status: RetainerStatus
    minimum_balance: int = 0
    replenish_threshold: int | None = None
    name: str | None = None
    closed_at: datetime | None = None
    refund_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == RetainerStatus.ACTIVE

    @property
    def is_low(self) -> bool:
        """At or below the minimum balance or the replenish threshold."""
        limits = [self.minimum_balance]
        if self.replenish_threshold is not None:
            limits.append(self.replenish_threshold)
        return self.balance <= max(limits)


@dataclass(frozen=True)
class RetainerMovement:
    """
    One journal entry that moved a retainer.

    amount is signed from the retainer's point of view: deposits are
    positive, consumptions negative, reversals the opposite of what they
    reverse.
    """
    journal_entry_id: UUID
    entry_date: date
    source_type: str
    source_id: str
    amount: int
    is_void: bool = False
    memo: str | None = None


@dataclass(frozen=True)
class RetainerPostingResult:
    """Outcome of a deposit, consumption, refund or void."""
    retainer: Retainer
    journal_entry_id: UUID
    already_posted: bool = False
    low_balance: bool = False


@dataclass(frozen=True)
class RetainerDrift:
    retainer_id: UUID
    cached_balance: int
    replayed_balance: int
