"""
ledger_batch.models -- ORM models for recurring transactions.

Architecture: ledger_batch/models.  Imports from ledger_kernel.db.base only.
"""

from ledger_batch.models.recurring import RecurringTransactionModel

__all__ = [
    "RecurringTransactionModel",
]
