"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import (
    Account,
    AccountSubtype,
    AccountType,
    NormalBalance,
)
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
)

__all__ = [
    "Account",
    "AccountSubtype",
    "AccountType",
    "NormalBalance",
    "FiscalPeriod",
    "PeriodStatus",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalLine",
]
