"""
Ledger Kernel - multi-tenant double-entry core

A tenant-scoped accounting kernel with:
- Chart of accounts with a reconciled balance cache
- Fiscal calendar with an explicit period state machine
- Idempotent, balanced, append-only journal posting
- Void-by-reversal with period gating
- Integer minor-unit money throughout
"""

__version__ = "0.1.0"
