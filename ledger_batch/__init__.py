"""
ledger_batch -- recurring transactions and the in-process scheduler.

Generates source documents from recurring templates on a cadence and
pushes them through the source-document adapters.

Architecture:
    ledger_batch/ is a top-level package.  Nothing in ledger_kernel/ or
    ledger_modules/ imports from it (the ORM registry excepted, which only
    imports the models to register tables).

Invariants:
    - Cadence evaluation is pure (domain/cadence.py); every timestamp
      comes from the caller or an injected Clock.
    - next_run_date advances only after an occurrence was generated and
      committed.
    - One document per (recurring transaction, occurrence date).
"""
