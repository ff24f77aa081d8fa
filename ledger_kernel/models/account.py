"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the per-tenant Chart of Accounts -- the
    target of every journal line -- and the cached running balance.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique per tenant (uq_account_tenant_code).
    - normal_balance is derived from account_type and never set directly.
    - account_type is immutable once the account has journal lines
      (enforced by AccountService and db/immutability.py).
    - current_balance is a projection of posted lines; it is changed only
      by an atomic SQL increment issued by the journal engine and can be
      rebuilt by ReconciliationService.

Failure modes:
    - IntegrityError on duplicate (tenant_id, code); AccountService turns
      this into DuplicateAccountCodeError.

Audit relevance:
    Accounts with postings are never physically deleted; they are
    deactivated instead.
"""

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.journal import JournalLine


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


class AccountSubtype(str, Enum):
    """Subtypes the ledger itself relies on.  Other subtypes are free text."""

    BANK = "bank"
    RECEIVABLE = "accounts_receivable"
    PAYABLE = "accounts_payable"
    UNEARNED_REVENUE = "unearned_revenue"
    RETAINED_EARNINGS = "retained_earnings"
    SERVICE_REVENUE = "service_revenue"
    OPERATING_EXPENSE = "operating_expense"


_DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET, AccountType.EXPENSE})


def normal_balance_for(account_type: AccountType | str) -> NormalBalance:
    """Asset and expense accounts are debit-normal; the rest credit-normal."""
    if AccountType(account_type) in _DEBIT_NORMAL_TYPES:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


def signed_delta(normal_balance: NormalBalance | str, debit: int, credit: int) -> int:
    """Change in the natural-sign balance for one line."""
    if NormalBalance(normal_balance) == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


class Account(TenantScopedBase):
    """
    Chart of Accounts entry for one tenant.

    Contract:
        (tenant_id, code) is unique.  Once an account is referenced by a
        journal line, its account_type and normal_balance MUST NOT change.

    Guarantees:
        - normal_balance is consistent with account_type.
        - current_balance starts at 0 and is expressed in the natural sign
          of the account (positive = balance on the normal side).
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_type", "tenant_id", "account_type"),
        Index("idx_account_tenant_active", "tenant_id", "is_active"),
    )


    # Human-readable code, e.g. "1100"
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    subtype: Mapped[str | None] = mapped_column(String(50), nullable=True)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Parent account for hierarchical chart of accounts
    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    current_balance: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )

    journal_lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT
