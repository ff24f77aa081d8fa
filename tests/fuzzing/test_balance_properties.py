"""
Property-based tests for the ledger invariants.

Boundaries fuzzed here:
- Posting: random balanced multi-line entries keep the trial balance at
  zero and the cached balances equal to a full replay
- Rejection: unbalanced drafts change nothing
- Voids: voiding any subset of entries leaves the books balanced
- Cadence: month stepping clamps to the anchor day and never skips a month
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from ledger_batch.domain.cadence import next_run_date, schedule
from ledger_batch.domain.types import Frequency
from ledger_kernel.domain.dtos import DraftJournalEntry, DraftLine
from ledger_kernel.domain.fiscal_calendar import add_months, last_day_of_month
from ledger_kernel.exceptions import UnbalancedEntryError
from ledger_kernel.selectors.ledger_selector import LedgerSelector

DB_SETTINGS = settings(
    max_examples=30,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)

ACCOUNT_CODES = ["1000", "1100", "2000", "2300", "3000", "4000", "5100", "5200", "5500"]


@composite
def balanced_line_specs(draw):
    """(code, debit, credit) triples whose debits equal their credits."""
    debits = draw(st.lists(st.integers(min_value=1, max_value=10_000_000), min_size=1, max_size=4))
    total = sum(debits)
    credit_count = draw(st.integers(min_value=1, max_value=min(3, total)))
    cuts = sorted(draw(st.lists(
        st.integers(min_value=1, max_value=max(total - 1, 1)),
        min_size=credit_count - 1,
        max_size=credit_count - 1,
        unique=True,
    )))
    bounds = [0, *cuts, total]
    credits = [b - a for a, b in zip(bounds, bounds[1:])]

    specs = [(draw(st.sampled_from(ACCOUNT_CODES)), amount, 0) for amount in debits]
    specs += [(draw(st.sampled_from(ACCOUNT_CODES)), 0, amount) for amount in credits]
    return specs


@composite
def entry_dates(draw):
    return date(2024, 1, 1) + timedelta(days=draw(st.integers(min_value=0, max_value=365)))


def _draft(chart, tenant_id, actor_id, specs, entry_date):
    return DraftJournalEntry(
        tenant_id=tenant_id,
        entry_date=entry_date,
        source_type="fuzz",
        source_id=str(uuid4()),
        lines=tuple(DraftLine(chart[code].id, debit, credit) for code, debit, credit in specs),
        created_by_id=actor_id,
    )


def _cache_matches_replay(session, account_service, chart, tenant_id):
    replayed = LedgerSelector(session).replay_balances(tenant_id)
    return all(account_service.get_balance(a.id) == replayed.get(a.id, 0) for a in chart.values())


class TestPostingProperties:
    @given(entries=st.lists(st.tuples(balanced_line_specs(), entry_dates()), min_size=1, max_size=5))
    @DB_SETTINGS
    def test_balanced_postings_keep_books_balanced(
        self, entries, books, session, journal_service, account_service, tenant_id, test_actor_id
    ):
        for specs, entry_date in entries:
            journal_service.post(_draft(books, tenant_id, test_actor_id, specs, entry_date))

        assert LedgerSelector(session).trial_balance(tenant_id).is_balanced
        assert _cache_matches_replay(session, account_service, books, tenant_id)

    @given(specs=balanced_line_specs(), skew=st.integers(min_value=1, max_value=1_000))
    @DB_SETTINGS
    def test_unbalanced_drafts_change_nothing(
        self, specs, skew, books, session, journal_service, account_service, tenant_id, test_actor_id
    ):
        before = {code: account_service.get_balance(a.id) for code, a in books.items()}
        code, debit, credit = specs[0]
        lopsided = [(code, debit + skew, credit), *specs[1:]]

        with pytest.raises(UnbalancedEntryError):
            journal_service.post(_draft(books, tenant_id, test_actor_id, lopsided, date(2024, 3, 1)))

        assert {code: account_service.get_balance(a.id) for code, a in books.items()} == before

    @given(
        entries=st.lists(balanced_line_specs(), min_size=1, max_size=4),
        void_mask=st.lists(st.booleans(), min_size=4, max_size=4),
    )
    @DB_SETTINGS
    def test_voids_keep_books_balanced(
        self, entries, void_mask, books, session, journal_service, account_service, tenant_id, test_actor_id
    ):
        posted = [
            journal_service.post(_draft(books, tenant_id, test_actor_id, specs, date(2024, 5, 10)))
            for specs in entries
        ]
        for entry, void in zip(posted, void_mask):
            if void:
                journal_service.void(entry.id, "fuzzed void", test_actor_id)

        assert LedgerSelector(session).trial_balance(tenant_id).is_balanced
        assert _cache_matches_replay(session, account_service, books, tenant_id)


class TestCadenceProperties:
    @given(
        start=st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31)),
        months=st.integers(min_value=-24, max_value=24),
        anchor=st.integers(min_value=1, max_value=31),
    )
    def test_add_months_clamps_to_anchor(self, start, months, anchor):
        result = add_months(start, months, anchor)

        assert (result.year * 12 + result.month) - (start.year * 12 + start.month) == months
        assert result.day == min(anchor, last_day_of_month(result.year, result.month))

    @given(
        start=st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31)),
        frequency=st.sampled_from(list(Frequency)),
        count=st.integers(min_value=1, max_value=24),
    )
    def test_schedule_strictly_increasing(self, start, frequency, count):
        dates = schedule(start, frequency, count, anchor_day=start.day)

        assert len(dates) == count
        assert dates[0] == start
        assert all(a < b for a, b in zip(dates, dates[1:]))

    @given(start=st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31)))
    def test_monthly_step_never_skips_a_month(self, start):
        step = next_run_date(start, Frequency.MONTHLY, anchor_day=start.day)

        assert 28 <= (step - start).days <= 31
        assert (step.year * 12 + step.month) - (start.year * 12 + start.month) == 1
