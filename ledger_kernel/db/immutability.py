"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                  | Allowed changes
----------------|---------------------------------|-----------------------------------
JournalEntry    | status POSTED                   | POSTED -> VOID with void metadata
JournalEntry    | status VOID                     | none
JournalLine     | parent entry POSTED or VOID     | none
Account         | has journal lines               | name, subtype, is_active, parent
FiscalPeriod    | status LOCKED                   | none
Account delete  | has journal lines               | blocked in before_flush

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError, which aborts the flush.  Account deletion is
checked in Session.before_flush because the flush plan is fixed by the time
mapper-level delete events fire.

Bulk ``update()`` statements bypass these listeners.  The kernel issues
exactly two such statements (balance cache increments and retainer balance
changes) and neither touches a protected column.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    unregister_immutability_listeners()  # tests only
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_VOID_FIELDS = frozenset({"status", "voided_at", "voided_by_id", "void_reason"})
_ACCOUNT_STRUCTURAL_FIELDS = ("account_type", "normal_balance", "tenant_id", "code")


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _prior_status(target) -> str:
    """Status as it was in the database before this flush."""
    history = get_history(target, "status")
    if history.deleted:
        return str(getattr(history.deleted[0], "value", history.deleted[0]))
    return str(getattr(target.status, "value", target.status))


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Posted entries may only move to VOID (recording the void metadata).
    Void entries may not change at all.
    """
    prior = _prior_status(target)
    if prior == "draft":
        return

    changed = _changed_fields(target)
    if not changed:
        return

    if prior == "posted":
        new_status = str(getattr(target.status, "value", target.status))
        if new_status == "void" and set(changed) <= _VOID_FIELDS:
            return
        illegal = next(f for f in changed if f not in _VOID_FIELDS or new_status != "void")
        raise _blocked(
            "JournalEntry", target.id, "UPDATE",
            f"Cannot modify field '{illegal}' on posted journal entry",
            field=illegal,
        )

    raise _blocked(
        "JournalEntry", target.id, "UPDATE",
        "Void journal entries cannot be modified",
        field=changed[0],
    )


def _check_journal_entry_delete(mapper, connection, target):
    if _prior_status(target) in ("posted", "void"):
        raise _blocked(
            "JournalEntry", target.id, "DELETE",
            "Posted journal entries cannot be deleted",
        )


def _check_journal_line_immutability(mapper, connection, target):
    entry = target.entry
    if entry is not None and _prior_status(entry) in ("posted", "void"):
        raise _blocked(
            "JournalLine", target.id, "UPDATE",
            "Journal lines cannot be modified after the entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    entry = target.entry
    if entry is not None and _prior_status(entry) in ("posted", "void"):
        raise _blocked(
            "JournalLine", target.id, "DELETE",
            "Journal lines cannot be deleted after the entry is posted",
        )


def _account_has_lines(connection, account_id) -> bool:
    from ledger_kernel.models.journal import JournalLine

    count = connection.execute(
        select(func.count(JournalLine.id)).where(JournalLine.account_id == account_id)
    ).scalar_one()
    return count > 0


def _check_account_structural_immutability(mapper, connection, target):
    """Structural fields are frozen once the account has been posted to."""
    for field in _ACCOUNT_STRUCTURAL_FIELDS:
        if get_history(target, field).has_changes():
            if _account_has_lines(connection, target.id):
                raise _blocked(
                    "Account", target.id, "UPDATE",
                    f"Cannot change '{field}' on an account with postings",
                    field=field,
                )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """Accounts referenced by journal lines cannot be deleted."""
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalLine

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue
        with session.no_autoflush:
            count = session.execute(
                select(func.count(JournalLine.id)).where(JournalLine.account_id == obj.id)
            ).scalar_one()
        if count:
            raise _blocked(
                "Account", obj.id, "DELETE",
                "Accounts with postings cannot be deleted; deactivate instead",
            )


def _check_fiscal_period_immutability(mapper, connection, target):
    history = get_history(target, "status")
    prior = history.deleted[0] if history.deleted else target.status
    if str(getattr(prior, "value", prior)) == "locked" and _changed_fields(target):
        raise _blocked(
            "FiscalPeriod", target.id, "UPDATE",
            "Locked fiscal periods cannot be modified",
        )


def _check_fiscal_period_delete(mapper, connection, target):
    if str(getattr(target.status, "value", target.status)) != "open":
        raise _blocked(
            "FiscalPeriod", target.id, "DELETE",
            "Closed or locked fiscal periods cannot be deleted",
        )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Repeated calls are harmless.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.fiscal_period import FiscalPeriod
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    for target, name, fn in _listeners(Account, FiscalPeriod, JournalEntry, JournalLine):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.fiscal_period import FiscalPeriod
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    for target, name, fn in _listeners(Account, FiscalPeriod, JournalEntry, JournalLine):
        if event.contains(target, name, fn):
            event.remove(target, name, fn)


def _listeners(account, fiscal_period, journal_entry, journal_line):
    return (
        (Session, "before_flush", _check_account_deletion_before_flush),
        (journal_entry, "before_update", _check_journal_entry_immutability),
        (journal_entry, "before_delete", _check_journal_entry_delete),
        (journal_line, "before_update", _check_journal_line_immutability),
        (journal_line, "before_delete", _check_journal_line_delete),
        (account, "before_update", _check_account_structural_immutability),
        (fiscal_period, "before_update", _check_fiscal_period_immutability),
        (fiscal_period, "before_delete", _check_fiscal_period_delete),
    )
