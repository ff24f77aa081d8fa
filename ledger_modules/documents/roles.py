"""
Account role resolution for the source-document adapters.

Adapters never name account codes.  They name a role ("bank",
"accounts_receivable", ...) or an expense category, and ``RoleResolver``
turns it into the tenant's account id using the role bindings and the
category map from ``LedgerConfig``.

A role bound to an account of the wrong type is a configuration defect,
not a user error: it raises ``AccountTypeMismatchError`` and is logged at
CRITICAL.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig
from ledger_kernel.exceptions import (
    AccountTypeMismatchError,
    RoleNotBoundError,
    UnknownExpenseCategoryError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType

logger = get_logger("modules.documents.roles")


class AccountRole(str, Enum):
    BANK = "bank"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    ACCOUNTS_PAYABLE = "accounts_payable"
    UNEARNED_REVENUE = "unearned_revenue"
    SERVICE_REVENUE = "service_revenue"


EXPECTED_ACCOUNT_TYPES: dict[AccountRole, AccountType] = {
    AccountRole.BANK: AccountType.ASSET,
    AccountRole.ACCOUNTS_RECEIVABLE: AccountType.ASSET,
    AccountRole.ACCOUNTS_PAYABLE: AccountType.LIABILITY,
    AccountRole.UNEARNED_REVENUE: AccountType.LIABILITY,
    AccountRole.SERVICE_REVENUE: AccountType.INCOME,
}

# Role name used in error reports for category lookups
EXPENSE_CATEGORY_ROLE = "expense_category"


class RoleResolver:
    """
    Resolves account roles and expense categories to tenant accounts.

    Contract:
        resolve() and resolve_expense_category() return an account id whose
        account type matches the role, or raise.
    """

    def __init__(self, session: Session, config: LedgerConfig):
        self._session = session
        self._config = config

    def _account_by_code(self, tenant_id: UUID, code: str) -> Account | None:
        return self._session.scalars(
            select(Account).where(Account.tenant_id == tenant_id, Account.code == code)
        ).first()

    def _check_type(self, role: str, account: Account, expected: AccountType) -> None:
        actual = AccountType(account.account_type)
        if actual != expected:
            logger.critical(
                "account_role_type_mismatch",
                extra={
                    "role": role,
                    "account_code": account.code,
                    "expected_type": expected.value,
                    "actual_type": actual.value,
                },
            )
            raise AccountTypeMismatchError(role, account.code, expected.value, actual.value)

    def resolve(self, tenant_id: UUID, role: AccountRole | str) -> UUID:
        """
        Account id bound to ``role`` for the tenant.

        Raises:
            RoleNotBoundError: no binding, or the bound code is not in the
                tenant's chart.
            AccountTypeMismatchError: the bound account has the wrong type.
        """
        role = AccountRole(role)
        code = self._config.account_code_for_role(role.value)
        if code is None:
            raise RoleNotBoundError(role.value, str(tenant_id))
        account = self._account_by_code(tenant_id, code)
        if account is None:
            raise RoleNotBoundError(role.value, str(tenant_id))
        self._check_type(role.value, account, EXPECTED_ACCOUNT_TYPES[role])
        return account.id

    def resolve_expense_category(self, tenant_id: UUID, category: str) -> UUID:
        """
        Expense account for a category from the fixed category map.

        Raises:
            UnknownExpenseCategoryError: the category is not in the map.
            RoleNotBoundError: the mapped code is not in the tenant's chart.
            AccountTypeMismatchError: the mapped account is not an expense.
        """
        code = self._config.account_code_for_category(category)
        if code is None:
            raise UnknownExpenseCategoryError(category)
        account = self._account_by_code(tenant_id, code)
        if account is None:
            raise RoleNotBoundError(f"{EXPENSE_CATEGORY_ROLE}:{category}", str(tenant_id))
        self._check_type(f"{EXPENSE_CATEGORY_ROLE}:{category}", account, AccountType.EXPENSE)
        return account.id
