"""
Retainer Ledger.

Client trust-fund balances that are drawn down against services.  The
balance never goes negative: consumption decrements it with a guarded
UPDATE in the same transaction as the journal posting.
"""

from ledger_modules.retainers.models import (
    Retainer,
    RetainerMovement,
    RetainerPostingResult,
    RetainerStatus,
)
from ledger_modules.retainers.service import RetainerLedger

__all__ = [
    "Retainer",
    "RetainerLedger",
    "RetainerMovement",
    "RetainerPostingResult",
    "RetainerStatus",
]
