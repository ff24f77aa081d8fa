"""
ledger_batch.domain.types -- Pure frozen dataclasses for recurring
transactions.  ZERO I/O.

Invariants enforced:
    - All DTOs are frozen dataclasses.
    - Status changes go through RECURRING_TRANSITIONS; CANCELLED and
      COMPLETED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class Frequency(str, Enum):
    """Cadence of a recurring transaction."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"


class RecurringStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"  # Terminal, by an operator
    COMPLETED = "completed"  # Terminal, end_date or max_occurrences reached


class RecurringAction(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    COMPLETE = "complete"


class OccurrenceOutcome(str, Enum):
    GENERATED = "generated"
    RETRY_SCHEDULED = "retry_scheduled"  # State conflict; next tick retries
    PAUSED = "paused"  # Validation or integrity failure; needs a human


RECURRING_TRANSITIONS: dict[tuple[RecurringStatus, RecurringAction], RecurringStatus] = {
    (RecurringStatus.ACTIVE, RecurringAction.PAUSE): RecurringStatus.PAUSED,
    (RecurringStatus.ACTIVE, RecurringAction.CANCEL): RecurringStatus.CANCELLED,
    (RecurringStatus.ACTIVE, RecurringAction.COMPLETE): RecurringStatus.COMPLETED,
    (RecurringStatus.PAUSED, RecurringAction.RESUME): RecurringStatus.ACTIVE,
    (RecurringStatus.PAUSED, RecurringAction.CANCEL): RecurringStatus.CANCELLED,
}

TERMINAL_STATUSES = frozenset({RecurringStatus.CANCELLED, RecurringStatus.COMPLETED})


def next_recurring_status(
    current: RecurringStatus | str,
    action: RecurringAction,
) -> RecurringStatus | None:
    """Target status, or None when the transition is not allowed."""
    return RECURRING_TRANSITIONS.get((RecurringStatus(current), action))


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class RecurringTransaction:
    """Read-side snapshot of a recurring transaction."""

    id: UUID
    tenant_id: UUID
    name: str
    frequency: Frequency
    anchor_day: int
    start_date: date
    next_run_date: date
    status: RecurringStatus
    auto_post: bool
    template_payload: dict[str, Any] = field(default_factory=dict)
    end_date: date | None = None
    max_occurrences: int | None = None
    generated_count: int = 0
    failure_count: int = 0
    last_generated_at: datetime | None = None
    last_occurrence_date: date | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None
    last_failed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == RecurringStatus.ACTIVE


@dataclass(frozen=True)
class OccurrenceResult:
    """Outcome of generating (or failing to generate) one occurrence."""

    recurring_id: UUID
    occurrence_date: date
    outcome: OccurrenceOutcome
    document_id: UUID | None = None
    journal_entry_id: UUID | None = None
    error_code: str | None = None
    next_run_date: date | None = None
    status: RecurringStatus | None = None


@dataclass(frozen=True)
class ProcessDueResult:
    """Summary of one process_due() call."""

    as_of: datetime
    occurrences: tuple[OccurrenceResult, ...] = ()
    errors: int = 0

    @property
    def generated(self) -> int:
        return sum(1 for o in self.occurrences if o.outcome == OccurrenceOutcome.GENERATED)

    @property
    def retried(self) -> int:
        return sum(1 for o in self.occurrences if o.outcome == OccurrenceOutcome.RETRY_SCHEDULED)

    @property
    def paused(self) -> int:
        return sum(1 for o in self.occurrences if o.outcome == OccurrenceOutcome.PAUSED)


@dataclass(frozen=True)
class UpcomingOccurrence:
    recurring_id: UUID
    name: str
    occurrence_date: date
    document_type: str
    amount: int
