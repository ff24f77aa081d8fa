"""Recurring transaction services and the in-process scheduler."""

from ledger_batch.services.recurring_service import RecurringService
from ledger_batch.services.scheduler import RecurringScheduler

__all__ = ["RecurringScheduler", "RecurringService"]
