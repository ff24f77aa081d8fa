"""
Account Registry tests.

Covers creation and per-tenant code uniqueness, type immutability once an
account has postings, deactivation rules, chart seeding, and balances in
the natural sign of the account.
"""

import logging
from datetime import date
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountInUseError,
    AccountTypeImmutableError,
    DuplicateAccountCodeError,
    ImmutabilityViolationError,
    TenantMismatchError,
)
from ledger_kernel.models.account import (
    Account,
    AccountType,
    NormalBalance,
    normal_balance_for,
    signed_delta,
)


class TestNormalBalance:
    @pytest.mark.parametrize(
        "account_type,expected",
        [
            (AccountType.ASSET, NormalBalance.DEBIT),
            (AccountType.EXPENSE, NormalBalance.DEBIT),
            (AccountType.LIABILITY, NormalBalance.CREDIT),
            (AccountType.EQUITY, NormalBalance.CREDIT),
            (AccountType.INCOME, NormalBalance.CREDIT),
        ],
    )
    def test_normal_balance_follows_type(self, account_type, expected):
        assert normal_balance_for(account_type) == expected

    def test_signed_delta_is_natural_sign(self):
        assert signed_delta(NormalBalance.DEBIT, 500, 0) == 500
        assert signed_delta(NormalBalance.DEBIT, 0, 500) == -500
        assert signed_delta(NormalBalance.CREDIT, 0, 500) == 500
        assert signed_delta("credit", 500, 0) == -500


class TestCreateAccount:
    def test_create_account_starts_at_zero(self, account_service, tenant_id, test_actor_id):
        account = account_service.create_account(
            tenant_id, "1000", "Bank", AccountType.ASSET, test_actor_id, subtype="bank"
        )

        assert account.code == "1000"
        assert account.current_balance == 0
        assert account.normal_balance == NormalBalance.DEBIT
        assert account.is_active

    def test_duplicate_code_rejected_within_tenant(self, account_service, tenant_id, test_actor_id):
        account_service.create_account(tenant_id, "1000", "Bank", "asset", test_actor_id)

        with pytest.raises(DuplicateAccountCodeError) as exc_info:
            account_service.create_account(tenant_id, "1000", "Other bank", "asset", test_actor_id)
        assert exc_info.value.code == "DUPLICATE_CODE"

    def test_same_code_allowed_for_other_tenant(self, account_service, tenant_id, test_actor_id):
        account_service.create_account(tenant_id, "1000", "Bank", "asset", test_actor_id)
        other = account_service.create_account(uuid4(), "1000", "Bank", "asset", test_actor_id)

        assert other.code == "1000"

    def test_parent_must_belong_to_tenant(self, account_service, tenant_id, test_actor_id):
        foreign_parent = account_service.create_account(uuid4(), "1000", "Bank", "asset", test_actor_id)

        with pytest.raises(TenantMismatchError):
            account_service.create_account(
                tenant_id, "1010", "Sub-account", "asset", test_actor_id, parent_id=foreign_parent.id
            )

    def test_unknown_type_rejected(self, account_service, tenant_id, test_actor_id):
        with pytest.raises(ValueError):
            account_service.create_account(tenant_id, "9000", "Mystery", "revenue", test_actor_id)


class TestSeedChart:
    def test_seed_creates_default_chart(self, account_service, config, tenant_id, test_actor_id):
        created = account_service.seed_chart_of_accounts(tenant_id, test_actor_id, config.chart_of_accounts)

        codes = {a.code for a in created}
        assert {"1000", "1100", "2000", "2300", "3900", "4000", "5100"} <= codes
        assert len(created) == len(config.chart_of_accounts)

    def test_seed_is_repeatable(self, account_service, config, tenant_id, test_actor_id):
        account_service.seed_chart_of_accounts(tenant_id, test_actor_id, config.chart_of_accounts)
        again = account_service.seed_chart_of_accounts(tenant_id, test_actor_id, config.chart_of_accounts)

        assert again == []
        assert len(account_service.list_accounts(tenant_id)) == len(config.chart_of_accounts)

    def test_seed_logs_created_count_at_info(
        self, account_service, config, tenant_id, test_actor_id, captured_logs
    ):
        logging.getLogger("ledger_kernel").setLevel(logging.INFO)
        try:
            account_service.seed_chart_of_accounts(tenant_id, test_actor_id, config.chart_of_accounts)
        finally:
            logging.getLogger("ledger_kernel").setLevel(logging.DEBUG)

        seeded = [r for r in captured_logs() if r["message"] == "chart_of_accounts_seeded"]
        assert len(seeded) == 1
        assert seeded[0]["level"] == "INFO"
        assert seeded[0]["created_count"] == len(config.chart_of_accounts)
        assert seeded[0]["tenant_id"] == str(tenant_id)

    def test_list_filters_by_type(self, chart, account_service, tenant_id):
        liabilities = account_service.list_accounts(tenant_id, account_type=AccountType.LIABILITY)

        assert {a.code for a in liabilities} == {"2000", "2300"}


class TestAccountType:
    def test_retype_allowed_before_postings(self, account_service, tenant_id, test_actor_id):
        account = account_service.create_account(tenant_id, "6000", "Misc", "expense", test_actor_id)

        updated = account_service.update_account(account.id, test_actor_id, account_type="asset")

        assert updated.account_type == AccountType.ASSET
        assert updated.normal_balance == NormalBalance.DEBIT

    def test_retype_refused_after_posting(self, books, account_service, journal_service, make_draft, test_actor_id):
        journal_service.post(make_draft(books["1000"].id, books["4000"].id, 10_000))

        with pytest.raises(AccountTypeImmutableError):
            account_service.update_account(books["4000"].id, test_actor_id, account_type="liability")

    def test_orm_retype_blocked_after_posting(self, session, books, journal_service, make_draft):
        journal_service.post(make_draft(books["1000"].id, books["4000"].id, 10_000))

        account = session.get(Account, books["4000"].id)
        account.account_type = AccountType.EXPENSE.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_rename_always_allowed(self, books, account_service, journal_service, make_draft, test_actor_id):
        journal_service.post(make_draft(books["1000"].id, books["4000"].id, 10_000))

        renamed = account_service.update_account(books["4000"].id, test_actor_id, name="Legal Fees")

        assert renamed.name == "Legal Fees"


class TestDeactivation:
    def test_deactivate_unused_account(self, books, account_service, tenant_id, test_actor_id):
        deactivated = account_service.deactivate_account(books["5200"].id, test_actor_id)

        assert not deactivated.is_active
        assert "5200" not in {a.code for a in account_service.list_accounts(tenant_id)}
        assert "5200" in {a.code for a in account_service.list_accounts(tenant_id, include_inactive=True)}

    def test_deactivate_refused_with_lines_in_open_period(
        self, books, account_service, journal_service, make_draft, test_actor_id
    ):
        journal_service.post(make_draft(books["5200"].id, books["1000"].id, 2_500))

        with pytest.raises(AccountInUseError) as exc_info:
            account_service.deactivate_account(books["5200"].id, test_actor_id)
        assert exc_info.value.period_code == "FY2024-01"

    def test_deactivate_allowed_once_period_closed(
        self, books, account_service, journal_service, period_service, period_for, make_draft, test_actor_id
    ):
        journal_service.post(make_draft(books["5200"].id, books["1000"].id, 2_500))
        period_service.close_period(period_for(date(2024, 1, 15)).id, test_actor_id)

        assert not account_service.deactivate_account(books["5200"].id, test_actor_id).is_active

    def test_inactive_account_rejects_postings(
        self, books, account_service, journal_service, make_draft, test_actor_id
    ):
        account_service.deactivate_account(books["5200"].id, test_actor_id)

        with pytest.raises(AccountInactiveError):
            journal_service.post(make_draft(books["5200"].id, books["1000"].id, 2_500))

    def test_reactivate(self, books, account_service, test_actor_id):
        account_service.deactivate_account(books["5200"].id, test_actor_id)

        assert account_service.reactivate_account(books["5200"].id, test_actor_id).is_active


class TestBalances:
    def test_balances_in_natural_sign(self, books, account_service, journal_service, make_draft):
        journal_service.post(make_draft(books["1100"].id, books["4000"].id, 50_000))
        journal_service.post(make_draft(books["1000"].id, books["1100"].id, 20_000))

        assert account_service.get_balance(books["1100"].id) == 30_000
        assert account_service.get_balance(books["4000"].id) == 50_000
        assert account_service.get_balance(books["1000"].id) == 20_000

    def test_as_of_balance_replays_history(self, books, account_service, journal_service, make_draft):
        journal_service.post(make_draft(books["1000"].id, books["4000"].id, 10_000, entry_date=date(2024, 1, 10)))
        journal_service.post(make_draft(books["1000"].id, books["4000"].id, 5_000, entry_date=date(2024, 2, 10)))

        assert account_service.get_balance(books["1000"].id, as_of=date(2024, 1, 31)) == 10_000
        assert account_service.get_balance(books["1000"].id, as_of=date(2023, 12, 31)) == 0
        assert account_service.get_balance(books["1000"].id) == 15_000
