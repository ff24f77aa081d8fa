"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LedgerError.  Every class carries a
machine-readable ``code`` and a ``category``; callers branch on the type or
the code, never on the message text.

    LedgerError (base)
    |
    +-- LedgerValidationError                      category = "validation"
    |   +-- InvalidEntryError
    |   +-- InvalidLineError
    |   +-- UnbalancedEntryError
    |   +-- InvalidAmountError
    |   +-- AccountNotFoundError
    |   +-- AccountInactiveError
    |   +-- TenantMismatchError
    |   +-- DuplicateAccountCodeError
    |   +-- AccountTypeImmutableError
    |   +-- EntryNotFoundError
    |   +-- PeriodNotFoundError
    |   +-- RetainerNotFoundError
    |   +-- DocumentNotFoundError
    |   +-- RecurringTransactionNotFoundError
    |   +-- InvalidTemplateError
    |   +-- UnknownExpenseCategoryError
    |
    +-- StateConflictError                         category = "state_conflict"
    |   +-- ClosedPeriodError
    |   |   +-- PeriodLockedError
    |   +-- InvalidPeriodTransitionError
    |   +-- OutOfOrderCloseError
    |   +-- FiscalYearExistsError
    |   +-- AccountInUseError
    |   +-- EntryNotPostedError
    |   +-- EntryNotVoidableError
    |   +-- InsufficientBalanceError
    |   +-- RetainerClosedError
    |   +-- RetainerNotEmptyError
    |   +-- DocumentStatusError
    |   +-- RecurringStatusError
    |   +-- TransactionBlockedError
    |
    +-- AlreadyPostedError                         category = "idempotence"
    +-- AlreadyGeneratedError                      category = "idempotence"
    |
    +-- LedgerIntegrityError                       category = "integrity"
        +-- AccountTypeMismatchError
        +-- MappingDefectError
        +-- RoleNotBoundError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_ENTRY               | Fewer than two lines, bad header
                | INVALID_LINE                | Line not single-sided positive integer
                | UNBALANCED_ENTRY            | Sum of debits != sum of credits
                | INVALID_AMOUNT              | Non-positive or non-integer amount
                | ACCOUNT_NOT_FOUND           | Account ID doesn't exist for tenant
                | ACCOUNT_INACTIVE            | Posting to a deactivated account
                | TENANT_MISMATCH             | Row belongs to another tenant
                | DUPLICATE_CODE              | Account code already used by tenant
                | ACCOUNT_TYPE_IMMUTABLE      | Type change after first posting
                | ENTRY_NOT_FOUND             | Journal entry ID doesn't exist
                | PERIOD_NOT_FOUND            | Period ID doesn't exist
                | RETAINER_NOT_FOUND          | Retainer ID doesn't exist
                | DOCUMENT_NOT_FOUND          | Source document ID doesn't exist
                | RECURRING_NOT_FOUND         | Recurring transaction ID doesn't exist
                | INVALID_TEMPLATE            | Recurring template cannot build a document
                | EXPENSE_CATEGORY_UNKNOWN    | Expense category has no mapped account
----------------|-----------------------------|-----------------------------------------
State conflict  | PERIOD_CLOSED               | Entry date not inside an open period
                | PERIOD_LOCKED               | Period is locked (terminal)
                | INVALID_PERIOD_TRANSITION   | Transition not in the lifecycle table
                | OUT_OF_ORDER_CLOSE          | Earlier period still open
                | YEAR_EXISTS                 | Fiscal year overlaps existing periods
                | ACCOUNT_IN_USE              | Deactivation with open-period postings
                | ENTRY_NOT_POSTED            | Void of a non-posted entry
                | ENTRY_NOT_VOIDABLE          | Void of a reversal entry
                | INSUFFICIENT_BALANCE        | Retainer consumption exceeds balance
                | RETAINER_CLOSED             | Movement on a closed retainer
                | RETAINER_NOT_EMPTY          | Closing a retainer with funds left
                | DOCUMENT_STATUS_CONFLICT    | Document not in the required status
                | RECURRING_STATUS_CONFLICT   | Recurring transaction in wrong status
                | TRANSACTION_BLOCKED         | Business-facing closed-period refusal
----------------|-----------------------------|-----------------------------------------
Idempotence     | ALREADY_POSTED              | Source already has a live entry (OK)
                | ALREADY_GENERATED           | Occurrence already generated (OK)
----------------|-----------------------------|-----------------------------------------
Integrity       | ACCOUNT_TYPE_MISMATCH       | Role bound to account of wrong type
                | MAPPING_DEFECT              | Adapter produced an unbalanced draft
                | ROLE_NOT_BOUND              | No account configured for a role
                | IMMUTABILITY_VIOLATION      | Modifying a posted record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENCY HANDLING (AlreadyPostedError is success):

    try:
        entry = journal.post(draft)
    except AlreadyPostedError as e:
        entry = selector.get_entry(e.journal_entry_id)

2. RETRY ONLY STATE CONFLICTS:

    except LedgerError as e:
        if e.category == StateConflictError.category:
            schedule_retry()
        else:
            pause_and_alert(e.code)

3. INTEGRITY ERRORS are defects in configuration or code; they are logged
   at CRITICAL and never retried.

===============================================================================
"""


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    Every subclass has a ``code`` class attribute for machine-readable error
    identification and a ``category`` from the four-way taxonomy.
    """

    code: str = "LEDGER_ERROR"
    category: str = "integrity"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class LedgerValidationError(LedgerError):
    """Input is malformed or references something that does not exist."""

    code: str = "VALIDATION_ERROR"
    category: str = "validation"


class InvalidEntryError(LedgerValidationError):
    """Draft entry is structurally invalid (e.g. fewer than two lines)."""

    code: str = "INVALID_ENTRY"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid journal entry: {reason}")


class InvalidLineError(LedgerValidationError):
    """A line is not exactly one positive integer amount on one side."""

    code: str = "INVALID_LINE"

    def __init__(self, line_seq: int, reason: str):
        self.line_seq = line_seq
        self.reason = reason
        super().__init__(f"Invalid journal line {line_seq}: {reason}")


class UnbalancedEntryError(LedgerValidationError):
    """Sum of debits does not equal sum of credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: int, credits: int):
        self.debits = debits
        self.credits = credits
        super().__init__(f"Entry is unbalanced: debits={debits}, credits={credits}")


class InvalidAmountError(LedgerValidationError):
    """Amount must be a positive integer number of minor units."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, field_name: str = "amount"):
        self.amount = amount
        self.field_name = field_name
        super().__init__(
            f"{field_name} must be a positive integer of minor units, got {amount!r}"
        )


class AccountNotFoundError(LedgerValidationError):
    """Account with given ID was not found for the tenant."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountInactiveError(LedgerValidationError):
    """Account is deactivated and cannot receive postings."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, account_code: str | None = None):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account is inactive: {account_code or account_id}")


class TenantMismatchError(LedgerValidationError):
    """A referenced row belongs to a different tenant."""

    code: str = "TENANT_MISMATCH"

    def __init__(self, entity_type: str, entity_id: str, tenant_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.tenant_id = tenant_id
        super().__init__(
            f"{entity_type} {entity_id} does not belong to tenant {tenant_id}"
        )


class DuplicateAccountCodeError(LedgerValidationError):
    """Account code is already used within the tenant."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, tenant_id: str, account_code: str):
        self.tenant_id = tenant_id
        self.account_code = account_code
        super().__init__(f"Account code already exists for tenant: {account_code}")


class AccountTypeImmutableError(LedgerValidationError):
    """Account type cannot change once the account has postings."""

    code: str = "ACCOUNT_TYPE_IMMUTABLE"

    def __init__(self, account_id: str, current_type: str, requested_type: str):
        self.account_id = account_id
        self.current_type = current_type
        self.requested_type = requested_type
        super().__init__(
            f"Account {account_id} has postings; type cannot change "
            f"from {current_type} to {requested_type}"
        )


class EntryNotFoundError(LedgerValidationError):
    """Journal entry with given ID was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class PeriodNotFoundError(LedgerValidationError):
    """Fiscal period with given ID was not found."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Fiscal period not found: {period_id}")


class RetainerNotFoundError(LedgerValidationError):
    """Retainer with given ID was not found."""

    code: str = "RETAINER_NOT_FOUND"

    def __init__(self, retainer_id: str):
        self.retainer_id = retainer_id
        super().__init__(f"Retainer not found: {retainer_id}")


class DocumentNotFoundError(LedgerValidationError):
    """Source document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Source document not found: {document_id}")


class RecurringTransactionNotFoundError(LedgerValidationError):
    """Recurring transaction with given ID was not found."""

    code: str = "RECURRING_NOT_FOUND"

    def __init__(self, recurring_id: str):
        self.recurring_id = recurring_id
        super().__init__(f"Recurring transaction not found: {recurring_id}")


class InvalidTemplateError(LedgerValidationError):
    """A recurring template payload cannot produce a source document."""

    code: str = "INVALID_TEMPLATE"

    def __init__(self, recurring_id: str | None, reason: str):
        self.recurring_id = recurring_id
        self.reason = reason
        super().__init__(f"Invalid recurring template: {reason}")


class UnknownExpenseCategoryError(LedgerValidationError):
    """Expense category is not in the category-to-account map."""

    code: str = "EXPENSE_CATEGORY_UNKNOWN"

    def __init__(self, category_name: str):
        self.category_name = category_name
        super().__init__(f"No expense account mapped for category: {category_name}")


# ---------------------------------------------------------------------------
# State conflict
# ---------------------------------------------------------------------------


class StateConflictError(LedgerError):
    """Operation is valid in shape but not allowed in the current state."""

    code: str = "STATE_CONFLICT"
    category: str = "state_conflict"


class ClosedPeriodError(StateConflictError):
    """Entry date does not fall inside an open fiscal period."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, entry_date: str, period_code: str | None = None):
        self.entry_date = entry_date
        self.period_code = period_code
        if period_code is None:
            msg = f"No open fiscal period covers {entry_date}"
        else:
            msg = f"Fiscal period {period_code} is not open for {entry_date}"
        super().__init__(msg)


class PeriodLockedError(ClosedPeriodError):
    """Period is locked; nothing may post to it or change its state."""

    code: str = "PERIOD_LOCKED"

    def __init__(self, entry_date: str | None, period_code: str):
        self.entry_date = entry_date
        self.period_code = period_code
        StateConflictError.__init__(self, f"Fiscal period {period_code} is locked")


class InvalidPeriodTransitionError(StateConflictError):
    """Requested period transition is not in the lifecycle table."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, from_status: str, action: str):
        self.period_code = period_code
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} period {period_code} from status {from_status}"
        )


class OutOfOrderCloseError(StateConflictError):
    """An earlier period of the tenant is still open."""

    code: str = "OUT_OF_ORDER_CLOSE"

    def __init__(self, period_code: str, open_period_code: str):
        self.period_code = period_code
        self.open_period_code = open_period_code
        super().__init__(
            f"Cannot close {period_code}: earlier period {open_period_code} is still open"
        )


class FiscalYearExistsError(StateConflictError):
    """Fiscal year overlaps periods that already exist for the tenant."""

    code: str = "YEAR_EXISTS"

    def __init__(self, tenant_id: str, fiscal_year: int):
        self.tenant_id = tenant_id
        self.fiscal_year = fiscal_year
        super().__init__(f"Fiscal year {fiscal_year} overlaps existing periods")


class AccountInUseError(StateConflictError):
    """Account has postings dated inside an open period."""

    code: str = "ACCOUNT_IN_USE"

    def __init__(self, account_id: str, period_code: str):
        self.account_id = account_id
        self.period_code = period_code
        super().__init__(
            f"Account {account_id} has postings in open period {period_code}"
        )


class EntryNotPostedError(StateConflictError):
    """Only posted entries can be voided."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(f"Entry {entry_id} is {status}, not posted")


class EntryNotVoidableError(StateConflictError):
    """Entry is a reversal, or moved a subledger balance and must be voided through it."""

    code: str = "ENTRY_NOT_VOIDABLE"

    def __init__(self, entry_id: str, reason: str):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Entry {entry_id} cannot be voided: {reason}")


class InsufficientBalanceError(StateConflictError):
    """Retainer balance is lower than the requested consumption."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, retainer_id: str, requested: int, available: int | None = None):
        self.retainer_id = retainer_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Retainer {retainer_id} cannot cover {requested} (available: {available})"
        )


class RetainerClosedError(StateConflictError):
    """Retainer is closed or refunded."""

    code: str = "RETAINER_CLOSED"

    def __init__(self, retainer_id: str):
        self.retainer_id = retainer_id
        super().__init__(f"Retainer {retainer_id} is closed")


class RetainerNotEmptyError(StateConflictError):
    """Retainer still holds funds and cannot be closed."""

    code: str = "RETAINER_NOT_EMPTY"

    def __init__(self, retainer_id: str, balance: int):
        self.retainer_id = retainer_id
        self.balance = balance
        super().__init__(f"Retainer {retainer_id} still holds {balance}")


class DocumentStatusError(StateConflictError):
    """Source document is not in a status that allows the requested event."""

    code: str = "DOCUMENT_STATUS_CONFLICT"

    def __init__(self, document_id: str, status: str, event: str):
        self.document_id = document_id
        self.status = status
        self.event = event
        super().__init__(f"Document {document_id} in status {status} cannot take {event}")


class RecurringStatusError(StateConflictError):
    """Recurring transaction is not in a status that allows the operation."""

    code: str = "RECURRING_STATUS_CONFLICT"

    def __init__(self, recurring_id: str, status: str, action: str):
        self.recurring_id = recurring_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} recurring transaction {recurring_id} in status {status}")


class TransactionBlockedError(StateConflictError):
    """
    Business-facing refusal raised by the source-document adapters when the
    journal engine rejects a posting because its period is not open.
    """

    code: str = "TRANSACTION_BLOCKED"
    user_message: str = "Cannot record transaction - accounting period closed"

    def __init__(self, reason_code: str, entry_date: str, period_code: str | None = None):
        self.reason_code = reason_code
        self.entry_date = entry_date
        self.period_code = period_code
        super().__init__(self.user_message)


# ---------------------------------------------------------------------------
# Idempotence signals
# ---------------------------------------------------------------------------


class AlreadyPostedError(LedgerError):
    """
    Source already has a live journal entry.

    This is a success signal for retried calls; the existing entry id is
    carried on the exception.
    """

    code: str = "ALREADY_POSTED"
    category: str = "idempotence"

    def __init__(self, source_type: str, source_id: str, journal_entry_id: str):
        self.source_type = source_type
        self.source_id = source_id
        self.journal_entry_id = journal_entry_id
        super().__init__(
            f"{source_type}:{source_id} already posted as entry {journal_entry_id}"
        )


class AlreadyGeneratedError(LedgerError):
    """Recurring occurrence was already generated."""

    code: str = "ALREADY_GENERATED"
    category: str = "idempotence"

    def __init__(self, recurring_id: str, occurrence_date: str, document_id: str):
        self.recurring_id = recurring_id
        self.occurrence_date = occurrence_date
        self.document_id = document_id
        super().__init__(
            f"Recurring {recurring_id} already generated {occurrence_date} as {document_id}"
        )


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


class LedgerIntegrityError(LedgerError):
    """A defect in configuration or code.  Never retried; alert an operator."""

    code: str = "INTEGRITY_ERROR"
    category: str = "integrity"


class AccountTypeMismatchError(LedgerIntegrityError):
    """A role resolved to an account whose type does not match the role."""

    code: str = "ACCOUNT_TYPE_MISMATCH"

    def __init__(self, role: str, account_code: str, expected_type: str, actual_type: str):
        self.role = role
        self.account_code = account_code
        self.expected_type = expected_type
        self.actual_type = actual_type
        super().__init__(
            f"Role {role} resolved to {account_code} of type {actual_type}, "
            f"expected {expected_type}"
        )


class MappingDefectError(LedgerIntegrityError):
    """A source-document mapping produced a draft the journal rejected."""

    code: str = "MAPPING_DEFECT"

    def __init__(self, source_type: str, source_id: str, reason: str):
        self.source_type = source_type
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Mapping defect for {source_type}:{source_id}: {reason}")


class RoleNotBoundError(LedgerIntegrityError):
    """No account code is configured for an account role."""

    code: str = "ROLE_NOT_BOUND"

    def __init__(self, role: str, tenant_id: str | None = None):
        self.role = role
        self.tenant_id = tenant_id
        super().__init__(f"No account bound to role {role}")


class ImmutabilityViolationError(LedgerIntegrityError):
    """Attempt to modify or delete a posted record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
