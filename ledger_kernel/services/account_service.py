"""
AccountService -- the per-tenant Account Registry.

Responsibility:
    Creates and maintains chart-of-accounts rows, answers balance queries,
    and applies posted lines to the cached running balance.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Account code is unique per tenant (DUPLICATE_CODE).
    - normal_balance is derived from account_type: asset and expense are
      debit-normal, liability, equity and income are credit-normal.
    - account_type is immutable after the first posting
      (ACCOUNT_TYPE_IMMUTABLE).
    - current_balance is only changed by apply_posting(), which issues a
      single atomic ``UPDATE ... SET current_balance = current_balance + :d``
      so concurrent postings never lose an update.
    - Deactivation is refused while the account has committed lines dated
      inside an OPEN period (ACCOUNT_IN_USE).

Failure modes:
    - AccountNotFoundError, TenantMismatchError, DuplicateAccountCodeError,
      AccountTypeImmutableError, AccountInUseError.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.exceptions import (
    AccountInUseError,
    AccountNotFoundError,
    AccountTypeImmutableError,
    DuplicateAccountCodeError,
    TenantMismatchError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    Account,
    AccountType,
    normal_balance_for,
    signed_delta,
)
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import COMMITTED_STATUSES, JournalEntry, JournalLine
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account")


class AccountService(BaseService[Account]):
    """
    Chart of accounts for every tenant.

    Contract:
        Returns AccountInfo DTOs.  Balances are ints in the natural sign of
        the account.

    Non-goals:
        - Does NOT post journal entries; JournalService calls
          apply_posting() inside its own SAVEPOINT.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._ledger = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _load(self, account_id: UUID, tenant_id: UUID | None = None) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if tenant_id is not None and account.tenant_id != tenant_id:
            raise TenantMismatchError("Account", str(account_id), str(tenant_id))
        return account

    def get_account(self, account_id: UUID, tenant_id: UUID | None = None) -> AccountInfo:
        account = self._load(account_id, tenant_id)
        self.session.refresh(account, ["current_balance"])
        return AccountInfo.from_model(account)

    def get_account_by_code(self, tenant_id: UUID, code: str) -> AccountInfo | None:
        account = self.session.scalars(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.code == code)
            .execution_options(populate_existing=True)
        ).first()
        return AccountInfo.from_model(account) if account else None

    def list_accounts(
        self,
        tenant_id: UUID,
        include_inactive: bool = False,
        account_type: AccountType | None = None,
    ) -> list[AccountInfo]:
        stmt = (
            select(Account)
            .where(Account.tenant_id == tenant_id)
            .order_by(Account.code)
            .execution_options(populate_existing=True)
        )
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        if account_type is not None:
            stmt = stmt.where(Account.account_type == AccountType(account_type).value)
        return [AccountInfo.from_model(a) for a in self.session.scalars(stmt)]

    def has_postings(self, account_id: UUID) -> bool:
        count = self.session.execute(
            select(func.count(JournalLine.id)).where(JournalLine.account_id == account_id)
        ).scalar_one()
        return count > 0

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    def create_account(
        self,
        tenant_id: UUID,
        code: str,
        name: str,
        account_type: AccountType | str,
        actor_id: UUID,
        subtype: str | None = None,
        parent_id: UUID | None = None,
    ) -> AccountInfo:
        """
        Create an account with a zero balance.

        Raises:
            DuplicateAccountCodeError: code already used by the tenant.
            AccountNotFoundError / TenantMismatchError: bad parent_id.
        """
        account_type = AccountType(account_type)

        existing = self.session.scalars(
            select(Account.id).where(Account.tenant_id == tenant_id, Account.code == code)
        ).first()
        if existing is not None:
            raise DuplicateAccountCodeError(str(tenant_id), code)

        if parent_id is not None:
            self._load(parent_id, tenant_id)

        account = Account(
            tenant_id=tenant_id,
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=normal_balance_for(account_type).value,
            subtype=subtype,
            parent_id=parent_id,
            is_active=True,
            current_balance=0,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(account)
                self.session.flush()
        except IntegrityError:
            # A concurrent create won the unique constraint.
            raise DuplicateAccountCodeError(str(tenant_id), code) from None

        logger.info(
            "account_created",
            extra={
                "tenant_id": str(tenant_id),
                "account_id": str(account.id),
                "account_code": code,
                "account_type": account_type.value,
            },
        )
        return AccountInfo.from_model(account)

    def update_account(
        self,
        account_id: UUID,
        actor_id: UUID,
        *,
        name: str | None = None,
        subtype: str | None = None,
        account_type: AccountType | str | None = None,
    ) -> AccountInfo:
        """
        Rename, re-subtype, or (before any posting) retype an account.

        Raises:
            AccountTypeImmutableError: type change on an account with postings.
        """
        account = self._load(account_id)

        if account_type is not None:
            new_type = AccountType(account_type)
            if new_type.value != AccountType(account.account_type).value:
                if self.has_postings(account_id):
                    raise AccountTypeImmutableError(
                        str(account_id), AccountType(account.account_type).value, new_type.value
                    )
                account.account_type = new_type.value
                account.normal_balance = normal_balance_for(new_type).value

        if name is not None:
            account.name = name
        if subtype is not None:
            account.subtype = subtype
        account.updated_by_id = actor_id
        self.session.flush()
        return AccountInfo.from_model(account)

    def deactivate_account(self, account_id: UUID, actor_id: UUID) -> AccountInfo:
        """
        Stop an account from receiving new postings.

        Raises:
            AccountInUseError: committed lines exist in an OPEN period.
        """
        account = self._load(account_id)

        open_period_code = self.session.scalars(
            select(FiscalPeriod.period_code)
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .join(
                FiscalPeriod,
                (FiscalPeriod.tenant_id == JournalEntry.tenant_id)
                & (FiscalPeriod.start_date <= JournalEntry.entry_date)
                & (FiscalPeriod.end_date >= JournalEntry.entry_date),
            )
            .where(
                JournalLine.account_id == account_id,
                JournalEntry.status.in_(COMMITTED_STATUSES),
                FiscalPeriod.status == PeriodStatus.OPEN.value,
            )
            .order_by(FiscalPeriod.start_date)
        ).first()
        if open_period_code is not None:
            logger.warning(
                "account_deactivation_refused",
                extra={"account_id": str(account_id), "period_code": open_period_code},
            )
            raise AccountInUseError(str(account_id), open_period_code)

        account.is_active = False
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info("account_deactivated", extra={"account_id": str(account_id)})
        return AccountInfo.from_model(account)

    def reactivate_account(self, account_id: UUID, actor_id: UUID) -> AccountInfo:
        account = self._load(account_id)
        account.is_active = True
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info("account_reactivated", extra={"account_id": str(account_id)})
        return AccountInfo.from_model(account)

    def seed_chart_of_accounts(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        chart,
    ) -> list[AccountInfo]:
        """
        Create a default chart for a tenant.

        ``chart`` is an iterable of definitions with code, name,
        account_type and subtype (see ledger_config.ChartAccountDef).
        Codes the tenant already has are skipped, so seeding is repeatable.
        """
        created = []
        for definition in chart:
            if self.get_account_by_code(tenant_id, definition.code) is not None:
                continue
            created.append(
                self.create_account(
                    tenant_id=tenant_id,
                    code=definition.code,
                    name=definition.name,
                    account_type=definition.account_type,
                    actor_id=actor_id,
                    subtype=definition.subtype,
                )
            )
        logger.info(
            "chart_of_accounts_seeded",
            extra={"tenant_id": str(tenant_id), "created_count": len(created)},
        )
        return created

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance(self, account_id: UUID, as_of: date | None = None) -> int:
        """
        Natural-sign balance of an account.

        Without ``as_of`` this is the cached running balance.  With ``as_of``
        it is replayed from committed lines dated on or before ``as_of`` and
        the cache is not touched.
        """
        if as_of is not None:
            self._load(account_id)
            return self._ledger.account_balance(account_id, as_of)

        balance = self.session.execute(
            select(Account.current_balance).where(Account.id == account_id)
        ).scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError(str(account_id))
        return balance

    def apply_posting(self, account_id: UUID, debit: int, credit: int) -> int:
        """
        Apply one posted line to the cached balance.  Internal to the
        journal engine.

        Returns:
            The signed delta that was applied.
        """
        normal_balance = self.session.execute(
            select(Account.normal_balance).where(Account.id == account_id)
        ).scalar_one()
        delta = signed_delta(normal_balance, debit, credit)
        if delta:
            self.session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(current_balance=Account.current_balance + delta)
                .execution_options(synchronize_session=False)
            )
            cached = self.session.get(Account, account_id)
            if cached is not None:
                self.session.expire(cached, ["current_balance"])
        return delta
