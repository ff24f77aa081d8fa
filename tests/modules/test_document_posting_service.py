"""
Source-Document Adapter tests.

Each entry point against a real database: the journal lines it produces,
the document status it moves to, retry safety, and the translation of
period refusals into TRANSACTION_BLOCKED.
"""

from dataclasses import replace
from datetime import date
from uuid import uuid4

import pytest

from ledger_config import RoleBinding
from ledger_kernel.domain.dtos import DraftJournalEntry, DraftLine
from ledger_kernel.exceptions import (
    AccountTypeMismatchError,
    DocumentNotFoundError,
    DocumentStatusError,
    InvalidAmountError,
    InvalidEntryError,
    MappingDefectError,
    RoleNotBoundError,
    TransactionBlockedError,
    UnknownExpenseCategoryError,
)
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_modules.documents import (
    DocumentPostingService,
    DocumentStatus,
    DocumentType,
    PaymentSource,
    RetainerDeposit,
)


@pytest.fixture
def new_invoice(document_service, tenant_id, test_actor_id):
    def _create(amount=50_000, document_date=date(2024, 1, 15), number="INV-001"):
        return document_service.create_document(
            tenant_id=tenant_id,
            document_type=DocumentType.INVOICE,
            amount=amount,
            document_date=document_date,
            actor_id=test_actor_id,
            number=number,
        )
    return _create


@pytest.fixture
def new_bill(document_service, tenant_id, test_actor_id):
    def _create(amount=120_000, category="rent", document_date=date(2024, 1, 1)):
        return document_service.create_document(
            tenant_id=tenant_id,
            document_type=DocumentType.BILL,
            amount=amount,
            document_date=document_date,
            actor_id=test_actor_id,
            category=category,
        )
    return _create


def _lines_by_code(entry, chart):
    codes = {account.id: code for code, account in chart.items()}
    return {codes[line.account_id]: (line.debit, line.credit) for line in entry.lines}


class TestCreateDocument:
    def test_new_document_is_draft(self, books, new_invoice):
        invoice = new_invoice()

        assert invoice.status == DocumentStatus.DRAFT
        assert invoice.amount_paid == 0
        assert invoice.outstanding == 50_000
        assert invoice.posted_at is None

    @pytest.mark.parametrize("amount", [0, -5, 10.5, True])
    def test_amount_must_be_positive_int(self, books, new_invoice, amount):
        with pytest.raises(InvalidAmountError):
            new_invoice(amount=amount)

    def test_bill_requires_category(self, books, new_bill):
        with pytest.raises(InvalidEntryError):
            new_bill(category=None)

    def test_unknown_category_rejected(self, books, new_bill):
        with pytest.raises(UnknownExpenseCategoryError) as exc_info:
            new_bill(category="yacht")
        assert exc_info.value.code == "EXPENSE_CATEGORY_UNKNOWN"

    def test_list_documents_filters(self, books, document_service, new_invoice, new_bill, tenant_id):
        new_invoice()
        new_bill()

        assert len(document_service.list_documents(tenant_id)) == 2
        assert [d.document_type for d in document_service.list_documents(tenant_id, document_type="bill")] == [
            DocumentType.BILL
        ]
        assert document_service.list_documents(tenant_id, status=DocumentStatus.PAID) == []


class TestInvoiceSent:
    def test_posts_receivable_and_revenue(self, books, document_service, account_service, new_invoice, test_actor_id, session):
        invoice = new_invoice()

        result = document_service.post_invoice_sent(invoice.id, test_actor_id)

        assert not result.already_posted
        assert result.source_type == "invoice"
        assert result.source_id == str(invoice.id)
        assert result.document.status == DocumentStatus.SENT
        assert result.document.posted_at is not None
        entry = JournalSelector(session).get_entry(result.journal_entry_id)
        assert _lines_by_code(entry, books) == {"1100": (50_000, 0), "4000": (0, 50_000)}
        assert entry.reference_id == str(invoice.id)
        assert entry.entry_date == date(2024, 1, 15)
        assert account_service.get_balance(books["1100"].id) == 50_000

    def test_retry_is_already_posted(self, books, document_service, account_service, new_invoice, test_actor_id):
        invoice = new_invoice()
        first = document_service.post_invoice_sent(invoice.id, test_actor_id)

        second = document_service.post_invoice_sent(invoice.id, test_actor_id)

        assert second.already_posted
        assert second.journal_entry_id == first.journal_entry_id
        assert second.document.status == DocumentStatus.SENT
        assert account_service.get_balance(books["1100"].id) == 50_000

    def test_sent_date_overrides_document_date(self, books, document_service, session, new_invoice, test_actor_id):
        invoice = new_invoice()

        result = document_service.post_invoice_sent(invoice.id, test_actor_id, sent_date=date(2024, 2, 1))

        assert JournalSelector(session).get_entry(result.journal_entry_id).entry_date == date(2024, 2, 1)

    def test_wrong_document_type(self, books, document_service, new_bill, test_actor_id):
        bill = new_bill()

        with pytest.raises(DocumentNotFoundError):
            document_service.post_invoice_sent(bill.id, test_actor_id)

    def test_unknown_document(self, books, document_service, test_actor_id):
        with pytest.raises(DocumentNotFoundError):
            document_service.post_invoice_sent(uuid4(), test_actor_id)


class TestPaymentReceived:
    def test_partial_then_full(self, books, document_service, account_service, new_invoice, test_actor_id):
        invoice = new_invoice()
        document_service.post_invoice_sent(invoice.id, test_actor_id)

        partial = document_service.post_payment_received(invoice.id, "pay-1", 20_000, date(2024, 1, 20), test_actor_id)
        assert partial.document.status == DocumentStatus.PARTIALLY_PAID
        assert partial.document.outstanding == 30_000

        full = document_service.post_payment_received(invoice.id, "pay-2", 30_000, date(2024, 1, 25), test_actor_id)
        assert full.document.status == DocumentStatus.PAID
        assert account_service.get_balance(books["1100"].id) == 0
        assert account_service.get_balance(books["1000"].id) == 50_000

    def test_payment_retry_counts_once(self, books, document_service, new_invoice, test_actor_id):
        invoice = new_invoice()
        document_service.post_invoice_sent(invoice.id, test_actor_id)
        document_service.post_payment_received(invoice.id, "pay-1", 20_000, date(2024, 1, 20), test_actor_id)

        retry = document_service.post_payment_received(invoice.id, "pay-1", 20_000, date(2024, 1, 20), test_actor_id)

        assert retry.already_posted
        assert retry.document.amount_paid == 20_000

    def test_overpayment_rejected(self, books, document_service, new_invoice, test_actor_id):
        invoice = new_invoice()
        document_service.post_invoice_sent(invoice.id, test_actor_id)

        with pytest.raises(InvalidAmountError):
            document_service.post_payment_received(invoice.id, "pay-x", 50_001, date(2024, 1, 20), test_actor_id)

    def test_payment_on_draft_invoice_rejected(self, books, document_service, new_invoice, test_actor_id):
        invoice = new_invoice()

        with pytest.raises(DocumentStatusError) as exc_info:
            document_service.post_payment_received(invoice.id, "pay-1", 100, date(2024, 1, 20), test_actor_id)
        assert exc_info.value.status == "draft"

    def test_payment_on_paid_invoice_rejected(self, books, document_service, new_invoice, test_actor_id):
        invoice = new_invoice(amount=1_000)
        document_service.post_invoice_sent(invoice.id, test_actor_id)
        document_service.post_payment_received(invoice.id, "pay-1", 1_000, date(2024, 1, 20), test_actor_id)

        with pytest.raises(DocumentStatusError):
            document_service.post_payment_received(invoice.id, "pay-2", 1, date(2024, 1, 21), test_actor_id)

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_payment_rejected(self, books, document_service, new_invoice, test_actor_id, amount):
        invoice = new_invoice()
        document_service.post_invoice_sent(invoice.id, test_actor_id)

        with pytest.raises(InvalidAmountError):
            document_service.post_payment_received(invoice.id, "pay-1", amount, date(2024, 1, 20), test_actor_id)


class TestExpenses:
    def _expense(self, document_service, tenant_id, actor_id, category="travel"):
        return document_service.create_document(
            tenant_id=tenant_id,
            document_type="expense",
            amount=4_500,
            document_date=date(2024, 1, 9),
            actor_id=actor_id,
            category=category,
        )

    def test_paid_from_bank(self, books, document_service, account_service, tenant_id, test_actor_id):
        expense = self._expense(document_service, tenant_id, test_actor_id)

        result = document_service.post_expense_approved(expense.id, test_actor_id)

        assert result.document.status == DocumentStatus.APPROVED
        assert account_service.get_balance(books["5200"].id) == 4_500
        assert account_service.get_balance(books["1000"].id) == -4_500

    def test_paid_from_payables(self, books, document_service, account_service, tenant_id, test_actor_id):
        expense = self._expense(document_service, tenant_id, test_actor_id, category="office_supplies")

        document_service.post_expense_approved(expense.id, test_actor_id, paid_from=PaymentSource.ACCOUNTS_PAYABLE)

        assert account_service.get_balance(books["5100"].id) == 4_500
        assert account_service.get_balance(books["2000"].id) == 4_500

    def test_approve_twice_is_already_posted(self, books, document_service, tenant_id, test_actor_id):
        expense = self._expense(document_service, tenant_id, test_actor_id)
        document_service.post_expense_approved(expense.id, test_actor_id)

        assert document_service.post_expense_approved(expense.id, test_actor_id).already_posted


class TestBills:
    def test_approve_then_pay(self, books, document_service, account_service, new_bill, test_actor_id):
        bill = new_bill()

        approved = document_service.post_bill_approved(bill.id, test_actor_id)
        assert approved.document.status == DocumentStatus.APPROVED
        assert account_service.get_balance(books["5500"].id) == 120_000
        assert account_service.get_balance(books["2000"].id) == 120_000

        paid = document_service.post_bill_paid(bill.id, "bp-1", 120_000, date(2024, 1, 5), test_actor_id)
        assert paid.document.status == DocumentStatus.PAID
        assert account_service.get_balance(books["2000"].id) == 0
        assert account_service.get_balance(books["1000"].id) == -120_000

    def test_pay_before_approval_rejected(self, books, document_service, account_service, new_bill, test_actor_id):
        bill = new_bill()

        with pytest.raises(DocumentStatusError):
            document_service.post_bill_paid(bill.id, "bp-1", 120_000, date(2024, 1, 5), test_actor_id)
        assert account_service.get_balance(books["1000"].id) == 0


class TestRetainerAdapters:
    def test_deposit_posts_unearned_revenue(self, books, document_service, account_service, tenant_id, test_actor_id):
        event = RetainerDeposit(tenant_id, "dep-1", uuid4(), 100_000, date(2024, 1, 2), test_actor_id)

        first = document_service.post_retainer_deposit(event)
        second = document_service.post_retainer_deposit(event)

        assert not first.already_posted
        assert second.already_posted
        assert first.document is None
        assert account_service.get_balance(books["2300"].id) == 100_000

    def test_deposit_amount_validated(self, books, document_service, tenant_id, test_actor_id):
        with pytest.raises(InvalidAmountError):
            document_service.post_retainer_deposit(
                RetainerDeposit(tenant_id, "dep-0", uuid4(), 0, date(2024, 1, 2), test_actor_id)
            )


class TestTransactionBlocked:
    def test_closed_period_blocks_and_leaves_document(
        self, books, document_service, period_service, period_for, account_service, new_invoice, test_actor_id, captured_logs
    ):
        invoice = new_invoice()
        period_service.close_period(period_for(date(2024, 1, 15)).id, test_actor_id)
        period_service.session.commit()

        with pytest.raises(TransactionBlockedError) as exc_info:
            document_service.post_invoice_sent(invoice.id, test_actor_id)

        error = exc_info.value
        assert error.code == "TRANSACTION_BLOCKED"
        assert error.reason_code == "PERIOD_CLOSED"
        assert error.period_code == "FY2024-01"
        assert str(error) == "Cannot record transaction - accounting period closed"
        assert document_service.get_document(invoice.id).status == DocumentStatus.DRAFT
        assert account_service.get_balance(books["1100"].id) == 0
        assert any(r["message"] == "transaction_blocked" for r in captured_logs())

    def test_locked_period_reason(self, books, document_service, period_service, period_for, new_invoice, test_actor_id):
        invoice = new_invoice()
        january = period_for(date(2024, 1, 15))
        period_service.close_period(january.id, test_actor_id)
        period_service.lock_period(january.id, test_actor_id)
        period_service.session.commit()

        with pytest.raises(TransactionBlockedError) as exc_info:
            document_service.post_invoice_sent(invoice.id, test_actor_id)
        assert exc_info.value.reason_code == "PERIOD_LOCKED"


class TestConfigurationDefects:
    def test_role_bound_to_wrong_type(self, books, session, config, deterministic_clock, new_invoice, test_actor_id, captured_logs):
        bindings = tuple(
            RoleBinding("accounts_receivable", "2000") if b.role == "accounts_receivable" else b
            for b in config.role_bindings
        )
        broken = DocumentPostingService(session, replace(config, role_bindings=bindings), deterministic_clock)
        invoice = new_invoice()

        with pytest.raises(AccountTypeMismatchError) as exc_info:
            broken.post_invoice_sent(invoice.id, test_actor_id)

        assert exc_info.value.category == "integrity"
        assert broken.get_document(invoice.id).status == DocumentStatus.DRAFT
        critical = [r for r in captured_logs() if r["level"] == "CRITICAL"]
        assert critical and critical[0]["message"] == "account_role_type_mismatch"

    def test_tenant_without_chart(self, fiscal_year, document_service, tenant_id, test_actor_id):
        invoice = document_service.create_document(
            tenant_id=tenant_id,
            document_type=DocumentType.INVOICE,
            amount=100,
            document_date=date(2024, 1, 15),
            actor_id=test_actor_id,
        )

        with pytest.raises(RoleNotBoundError):
            document_service.post_invoice_sent(invoice.id, test_actor_id)

    def test_unbalanced_mapping_is_defect(
        self, books, document_service, new_invoice, test_actor_id, monkeypatch, captured_logs
    ):
        def lopsided(event, resolver):
            return DraftJournalEntry(
                tenant_id=event.tenant_id,
                entry_date=event.entry_date,
                source_type=event.source_type.value,
                source_id=event.source_id,
                lines=(
                    DraftLine.debit_line(books["1100"].id, event.amount),
                    DraftLine.credit_line(books["4000"].id, event.amount - 1),
                ),
                created_by_id=event.actor_id,
            )

        monkeypatch.setattr("ledger_modules.documents.service.draft_for", lopsided)
        invoice = new_invoice()

        with pytest.raises(MappingDefectError):
            document_service.post_invoice_sent(invoice.id, test_actor_id)
        assert any(
            r["message"] == "adapter_mapping_defect" and r["level"] == "CRITICAL" for r in captured_logs()
        )
