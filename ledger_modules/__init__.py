"""
Ledger modules -- business-event adapters on top of the ledger kernel.

    documents/   source documents (invoices, bills, expenses) and the
                 fixed event -> journal mapping table
    retainers/   client retainer balances

Modules import from ``ledger_kernel`` and ``ledger_config``.  The kernel
never imports from here.
"""
