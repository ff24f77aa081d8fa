"""
Retainer Ledger tests: guarded consumption, retry-safe deposits and
consumptions, low-balance alerts and listing, lifecycle, refunds, voids
that keep the balance in step, history and drift repair.
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import update

from ledger_kernel.exceptions import (
    ClosedPeriodError,
    EntryNotPostedError,
    EntryNotVoidableError,
    InsufficientBalanceError,
    InvalidAmountError,
    RetainerClosedError,
    RetainerNotEmptyError,
    RetainerNotFoundError,
    TransactionBlockedError,
)
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_modules.retainers import RetainerStatus
from ledger_modules.retainers.orm import RetainerModel


@pytest.fixture
def retainer(books, retainer_ledger, tenant_id, test_actor_id):
    return retainer_ledger.open_retainer(tenant_id, uuid4(), test_actor_id, name="Smith matter")


class TestLifecycle:
    def test_open_starts_empty(self, retainer):
        assert retainer.balance == 0
        assert retainer.status == RetainerStatus.ACTIVE
        assert retainer.is_active

    def test_negative_minimum_rejected(self, books, retainer_ledger, tenant_id, test_actor_id):
        with pytest.raises(ValueError):
            retainer_ledger.open_retainer(tenant_id, uuid4(), test_actor_id, minimum_balance=-1)

    def test_close_requires_zero_balance(self, retainer, retainer_ledger, test_actor_id):
        retainer_ledger.deposit(retainer.id, 5_000, test_actor_id)

        with pytest.raises(RetainerNotEmptyError) as exc_info:
            retainer_ledger.close_retainer(retainer.id, test_actor_id)
        assert exc_info.value.balance == 5_000

    def test_closed_retainer_rejects_movements(self, retainer, retainer_ledger, test_actor_id):
        closed = retainer_ledger.close_retainer(retainer.id, test_actor_id)
        assert closed.status == RetainerStatus.CLOSED
        assert closed.closed_at is not None

        with pytest.raises(RetainerClosedError):
            retainer_ledger.deposit(retainer.id, 100, test_actor_id)
        with pytest.raises(RetainerClosedError):
            retainer_ledger.consume(retainer.id, 100, "CASE-1", test_actor_id)
        with pytest.raises(RetainerClosedError):
            retainer_ledger.close_retainer(retainer.id, test_actor_id)

    def test_unknown_retainer(self, books, retainer_ledger, test_actor_id):
        with pytest.raises(RetainerNotFoundError):
            retainer_ledger.deposit(uuid4(), 100, test_actor_id)

    def test_list_by_client(self, books, retainer_ledger, tenant_id, test_actor_id):
        client = uuid4()
        retainer_ledger.open_retainer(tenant_id, client, test_actor_id)
        retainer_ledger.open_retainer(tenant_id, uuid4(), test_actor_id)

        assert len(retainer_ledger.list_retainers(tenant_id)) == 2
        assert [r.client_id for r in retainer_ledger.list_retainers(tenant_id, client)] == [client]


class TestDepositAndConsume:
    def test_overdraw_refused_without_side_effects(
        self, retainer, retainer_ledger, account_service, books, session, tenant_id, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_id="dep-1")
        retainer_ledger.consume(retainer.id, 40_000, "CASE-7", test_actor_id, consumption_id="use-1")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            retainer_ledger.consume(retainer.id, 70_000, "CASE-7", test_actor_id, consumption_id="use-2")

        error = exc_info.value
        assert error.code == "INSUFFICIENT_BALANCE"
        assert error.requested == 70_000
        assert error.available == 60_000
        assert retainer_ledger.get_retainer(retainer.id).balance == 60_000
        assert JournalSelector(session).find_by_source(tenant_id, "retainer_consumption", "use-2") is None
        assert account_service.get_balance(books["2300"].id) == 60_000
        assert account_service.get_balance(books["4000"].id) == 40_000

    def test_deposit_posts_and_credits(self, retainer, retainer_ledger, account_service, books, test_actor_id):
        result = retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_id="dep-1")

        assert not result.already_posted
        assert result.retainer.balance == 100_000
        assert account_service.get_balance(books["1000"].id) == 100_000
        assert account_service.get_balance(books["2300"].id) == 100_000

    def test_deposit_retry_moves_nothing(self, retainer, retainer_ledger, account_service, books, test_actor_id):
        first = retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_id="dep-1")
        second = retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_id="dep-1")

        assert second.already_posted
        assert second.journal_entry_id == first.journal_entry_id
        assert second.retainer.balance == 100_000
        assert account_service.get_balance(books["2300"].id) == 100_000

    def test_consume_retry_moves_nothing(self, retainer, retainer_ledger, test_actor_id):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id)
        retainer_ledger.consume(retainer.id, 30_000, "CASE-1", test_actor_id, consumption_id="use-1")

        retry = retainer_ledger.consume(retainer.id, 30_000, "CASE-1", test_actor_id, consumption_id="use-1")

        assert retry.already_posted
        assert retainer_ledger.get_retainer(retainer.id).balance == 70_000

    @pytest.mark.parametrize("amount", [0, -1, 2.5])
    def test_amount_must_be_positive_int(self, retainer, retainer_ledger, test_actor_id, amount):
        with pytest.raises(InvalidAmountError):
            retainer_ledger.deposit(retainer.id, amount, test_actor_id)
        with pytest.raises(InvalidAmountError):
            retainer_ledger.consume(retainer.id, amount, "CASE-1", test_actor_id)

    def test_consume_to_exactly_zero(self, retainer, retainer_ledger, test_actor_id):
        retainer_ledger.deposit(retainer.id, 10_000, test_actor_id)

        result = retainer_ledger.consume(retainer.id, 10_000, "CASE-1", test_actor_id)

        assert result.retainer.balance == 0

    def test_closed_period_leaves_balance(
        self, retainer, retainer_ledger, period_service, period_for, session, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 50_000, test_actor_id, deposit_date=date(2024, 1, 10))
        period_service.close_period(period_for(date(2024, 1, 10)).id, test_actor_id)
        session.commit()

        with pytest.raises(TransactionBlockedError) as exc_info:
            retainer_ledger.consume(
                retainer.id, 20_000, "CASE-1", test_actor_id, consumption_date=date(2024, 1, 31)
            )

        assert exc_info.value.reason_code == "PERIOD_CLOSED"
        assert retainer_ledger.get_retainer(retainer.id).balance == 50_000


class TestLowBalance:
    def test_threshold_crossing_flagged_and_logged(
        self, books, retainer_ledger, tenant_id, test_actor_id, captured_logs
    ):
        retainer = retainer_ledger.open_retainer(
            tenant_id, uuid4(), test_actor_id, minimum_balance=5_000, replenish_threshold=20_000
        )
        retainer_ledger.deposit(retainer.id, 50_000, test_actor_id)

        above = retainer_ledger.consume(retainer.id, 25_000, "CASE-1", test_actor_id)
        below = retainer_ledger.consume(retainer.id, 10_000, "CASE-1", test_actor_id)

        assert not above.low_balance
        assert below.low_balance
        assert below.retainer.balance == 15_000
        alerts = [r for r in captured_logs() if r["message"] == "retainer_low_balance"]
        assert len(alerts) == 1
        assert alerts[0]["balance"] == 15_000


class TestHistoryAndDrift:
    def test_history_sums_to_balance(self, retainer, retainer_ledger, test_actor_id):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_date=date(2024, 1, 10))
        retainer_ledger.consume(retainer.id, 40_000, "CASE-7", test_actor_id, consumption_date=date(2024, 1, 12))

        history = retainer_ledger.retainer_history(retainer.id)

        assert [m.amount for m in history] == [100_000, -40_000]
        assert [m.source_type for m in history] == ["retainer_deposit", "retainer_consumption"]
        assert history[1].memo == "CASE-7"
        assert sum(m.amount for m in history) == retainer_ledger.get_retainer(retainer.id).balance

    def test_out_of_band_write_creates_drift_that_repair_fixes(
        self, retainer, retainer_ledger, session, tenant_id, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id)
        retainer_ledger.consume(retainer.id, 40_000, "CASE-7", test_actor_id)
        session.execute(
            update(RetainerModel).where(RetainerModel.id == retainer.id).values(balance=55_000)
        )
        session.commit()

        report_only = retainer_ledger.verify_balances(tenant_id)
        assert [(d.cached_balance, d.replayed_balance) for d in report_only] == [(55_000, 60_000)]
        assert retainer_ledger.get_retainer(retainer.id).balance == 55_000

        retainer_ledger.verify_balances(tenant_id, repair=True)

        assert retainer_ledger.get_retainer(retainer.id).balance == 60_000
        assert retainer_ledger.verify_balances(tenant_id) == []


class TestVoidMovement:
    def test_voiding_consumption_restores_balance(
        self, retainer, retainer_ledger, account_service, books, tenant_id, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id)
        consumed = retainer_ledger.consume(retainer.id, 40_000, "CASE-7", test_actor_id)

        result = retainer_ledger.void_movement(consumed.journal_entry_id, "billed to wrong matter", test_actor_id)

        assert result.retainer.balance == 100_000
        assert account_service.get_balance(books["2300"].id) == 100_000
        assert retainer_ledger.verify_balances(tenant_id) == []
        history = retainer_ledger.retainer_history(retainer.id)
        assert len(history) == 3
        assert [m.amount for m in history if m.is_void] == [-40_000]
        assert sum(m.amount for m in history) == 100_000

    def test_voiding_unspent_deposit_removes_funds(
        self, retainer, retainer_ledger, account_service, books, tenant_id, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_id="dep-1")
        second = retainer_ledger.deposit(retainer.id, 30_000, test_actor_id, deposit_id="dep-2")

        result = retainer_ledger.void_movement(second.journal_entry_id, "cheque bounced", test_actor_id)

        assert result.retainer.balance == 100_000
        assert account_service.get_balance(books["1000"].id) == 100_000
        assert retainer_ledger.verify_balances(tenant_id) == []

    def test_spent_deposit_cannot_be_voided(
        self, retainer, retainer_ledger, account_service, books, session, tenant_id, test_actor_id
    ):
        deposited = retainer_ledger.deposit(retainer.id, 100_000, test_actor_id, deposit_id="dep-1")
        retainer_ledger.consume(retainer.id, 80_000, "CASE-7", test_actor_id)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            retainer_ledger.void_movement(deposited.journal_entry_id, "entered twice", test_actor_id)

        assert exc_info.value.requested == 100_000
        assert exc_info.value.available == 20_000
        assert retainer_ledger.get_retainer(retainer.id).balance == 20_000
        assert JournalSelector(session).find_by_source(tenant_id, "retainer_deposit", "dep-1") is not None
        assert account_service.get_balance(books["2300"].id) == 20_000
        assert retainer_ledger.verify_balances(tenant_id) == []

    def test_journal_void_of_retainer_entry_refused(
        self, retainer, retainer_ledger, journal_service, tenant_id, test_actor_id
    ):
        deposited = retainer_ledger.deposit(retainer.id, 100_000, test_actor_id)
        consumed = retainer_ledger.consume(retainer.id, 80_000, "CASE-7", test_actor_id)

        for entry_id in (deposited.journal_entry_id, consumed.journal_entry_id):
            with pytest.raises(EntryNotVoidableError):
                journal_service.void(entry_id, "entered twice", test_actor_id)

        assert retainer_ledger.get_retainer(retainer.id).balance == 20_000
        assert retainer_ledger.verify_balances(tenant_id) == []

    def test_second_void_refused(self, retainer, retainer_ledger, test_actor_id):
        deposited = retainer_ledger.deposit(retainer.id, 100_000, test_actor_id)
        retainer_ledger.void_movement(deposited.journal_entry_id, "entered twice", test_actor_id)

        with pytest.raises(EntryNotPostedError):
            retainer_ledger.void_movement(deposited.journal_entry_id, "again", test_actor_id)
        assert retainer_ledger.get_retainer(retainer.id).balance == 0

    def test_other_entries_refused(self, books, retainer_ledger, journal_service, make_draft, session, test_actor_id):
        entry = journal_service.post(make_draft(books["1000"].id, books["4000"].id, 10_000))
        session.commit()

        with pytest.raises(EntryNotVoidableError):
            retainer_ledger.void_movement(entry.id, "not a retainer entry", test_actor_id)

    def test_void_in_closed_period_changes_nothing(
        self, retainer, retainer_ledger, period_service, period_for, session, test_actor_id
    ):
        consumed_on = date(2024, 1, 12)
        retainer_ledger.deposit(retainer.id, 50_000, test_actor_id, deposit_date=date(2024, 1, 10))
        consumed = retainer_ledger.consume(
            retainer.id, 20_000, "CASE-1", test_actor_id, consumption_date=consumed_on
        )
        period_service.close_period(period_for(consumed_on).id, test_actor_id)
        session.commit()

        with pytest.raises(ClosedPeriodError):
            retainer_ledger.void_movement(consumed.journal_entry_id, "late correction", test_actor_id)
        assert retainer_ledger.get_retainer(retainer.id).balance == 30_000


class TestRefund:
    def test_refund_returns_balance_and_ends_retainer(
        self, retainer, retainer_ledger, account_service, books, session, tenant_id, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 100_000, test_actor_id)
        retainer_ledger.consume(retainer.id, 30_000, "CASE-7", test_actor_id)

        result = retainer_ledger.refund(retainer.id, "Matter concluded", test_actor_id)

        assert result.retainer.balance == 0
        assert result.retainer.status == RetainerStatus.REFUNDED
        assert result.retainer.refund_reason == "Matter concluded"
        assert result.retainer.closed_at is not None
        refund_entry = JournalSelector(session).find_by_source(tenant_id, "retainer_refund", str(retainer.id))
        assert refund_entry.id == result.journal_entry_id
        assert account_service.get_balance(books["2300"].id) == 0
        assert account_service.get_balance(books["1000"].id) == 30_000
        assert account_service.get_balance(books["4000"].id) == 30_000
        history = retainer_ledger.retainer_history(retainer.id)
        assert history[-1].amount == -70_000
        assert history[-1].memo == "Matter concluded"
        assert retainer_ledger.verify_balances(tenant_id) == []

    def test_refunded_retainer_rejects_everything(self, retainer, retainer_ledger, journal_service, test_actor_id):
        deposited = retainer_ledger.deposit(retainer.id, 10_000, test_actor_id)
        refunded = retainer_ledger.refund(retainer.id, "Client left", test_actor_id)

        with pytest.raises(RetainerClosedError):
            retainer_ledger.deposit(retainer.id, 100, test_actor_id)
        with pytest.raises(RetainerClosedError):
            retainer_ledger.consume(retainer.id, 100, "CASE-1", test_actor_id)
        with pytest.raises(RetainerClosedError):
            retainer_ledger.refund(retainer.id, "Again", test_actor_id)
        with pytest.raises(RetainerClosedError):
            retainer_ledger.close_retainer(retainer.id, test_actor_id)
        with pytest.raises(RetainerClosedError):
            retainer_ledger.void_movement(deposited.journal_entry_id, "undo", test_actor_id)
        with pytest.raises(EntryNotVoidableError):
            journal_service.void(refunded.journal_entry_id, "undo", test_actor_id)

    def test_empty_retainer_refund_refused(self, retainer, retainer_ledger, test_actor_id):
        with pytest.raises(InvalidAmountError):
            retainer_ledger.refund(retainer.id, "Nothing held", test_actor_id)
        assert retainer_ledger.get_retainer(retainer.id).status == RetainerStatus.ACTIVE

    def test_reason_required(self, retainer, retainer_ledger, test_actor_id):
        retainer_ledger.deposit(retainer.id, 10_000, test_actor_id)

        with pytest.raises(ValueError):
            retainer_ledger.refund(retainer.id, "  ", test_actor_id)
        assert retainer_ledger.get_retainer(retainer.id).balance == 10_000

    def test_closed_period_changes_nothing(
        self, retainer, retainer_ledger, period_service, period_for, session, test_actor_id
    ):
        retainer_ledger.deposit(retainer.id, 50_000, test_actor_id, deposit_date=date(2024, 1, 10))
        period_service.close_period(period_for(date(2024, 1, 10)).id, test_actor_id)
        session.commit()

        with pytest.raises(TransactionBlockedError):
            retainer_ledger.refund(retainer.id, "Year ended", test_actor_id, refund_date=date(2024, 1, 31))

        unchanged = retainer_ledger.get_retainer(retainer.id)
        assert unchanged.balance == 50_000
        assert unchanged.status == RetainerStatus.ACTIVE
        assert unchanged.refund_reason is None


class TestLowBalanceListing:
    def test_lists_active_low_retainers_lowest_first(self, books, retainer_ledger, tenant_id, test_actor_id):
        below_threshold = retainer_ledger.open_retainer(
            tenant_id, uuid4(), test_actor_id, minimum_balance=5_000, replenish_threshold=20_000
        )
        below_minimum = retainer_ledger.open_retainer(tenant_id, uuid4(), test_actor_id, minimum_balance=5_000)
        healthy = retainer_ledger.open_retainer(
            tenant_id, uuid4(), test_actor_id, minimum_balance=5_000, replenish_threshold=20_000
        )
        refunded = retainer_ledger.open_retainer(tenant_id, uuid4(), test_actor_id, minimum_balance=5_000)
        retainer_ledger.deposit(below_threshold.id, 15_000, test_actor_id)
        retainer_ledger.deposit(below_minimum.id, 4_000, test_actor_id)
        retainer_ledger.deposit(healthy.id, 50_000, test_actor_id)
        retainer_ledger.deposit(refunded.id, 1_000, test_actor_id)
        retainer_ledger.refund(refunded.id, "Client left", test_actor_id)

        low = retainer_ledger.list_low_balance(tenant_id)

        assert [r.id for r in low] == [below_minimum.id, below_threshold.id]
        assert all(r.is_low for r in low)
        assert retainer_ledger.list_low_balance(uuid4()) == []
