import datetime
from decimal import Decimal
from unittest import mock

import pytest
from django.core.exceptions import ValidationError
from django.test import TestCase, override_settings

from ledger_core.exceptions import (ClosedPeriodError, InvalidTransitionError,
                                    LockedPeriodError, NotFoundError,
                                    PostingFailedError)
from ledger_core.models import Account, AccountingPeriod, JournalEntry
from ledger_core.services import periods, posting, reversal
from ledger_core.services.ledger import balance_as_of
from ledger_core.services.periods import (PeriodClass, classify,
                                          close_period, create_period,
                                          delete_period, lock_period,
                                          period_for_date, reopen_period,
                                          transition_period)

from .helpers import make_chart, make_company, post

JAN_START = datetime.date(2025, 1, 1)
JAN_END = datetime.date(2025, 1, 31)


def make_january(company):
    return create_period(company, name="2025-01", start_date=JAN_START, end_date=JAN_END)


""" Period calendar """


class PeriodCalendarTests(TestCase):

    def setUp(self):
        self.company = make_company("Calendar Co")
        self.january = make_january(self.company)

    def test_fiscal_year_defaults_to_end_year(self):
        self.assertEqual(self.january.fiscal_year, 2025)
        self.assertEqual(self.january.status, "open")

    def test_overlap_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_period(
                self.company,
                name="mid-jan",
                start_date=datetime.date(2025, 1, 15),
                end_date=datetime.date(2025, 2, 15),
            )

    def test_shared_boundary_day_overlaps(self):
        with self.assertRaises(ValidationError):
            create_period(
                self.company,
                name="2025-01b",
                start_date=JAN_END,
                end_date=datetime.date(2025, 2, 28),
            )

    def test_adjacent_period_is_fine(self):
        feb = create_period(
            self.company,
            name="2025-02",
            start_date=datetime.date(2025, 2, 1),
            end_date=datetime.date(2025, 2, 28),
        )
        self.assertEqual(AccountingPeriod.objects.for_company(self.company).count(), 2)
        self.assertEqual(period_for_date(self.company, datetime.date(2025, 2, 28)), feb)

    def test_inverted_range_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_period(
                self.company,
                name="backwards",
                start_date=datetime.date(2025, 3, 31),
                end_date=datetime.date(2025, 3, 1),
            )

    def test_other_company_may_reuse_dates(self):
        other = make_company("Other Calendar Co")
        make_january(other)
        self.assertEqual(AccountingPeriod.objects.count(), 2)

    def test_classify(self):
        self.assertEqual(classify(self.company, datetime.date(2024, 12, 31)), PeriodClass.NO_PERIOD)
        self.assertEqual(classify(self.company, JAN_START), PeriodClass.OPEN)
        self.assertEqual(classify(self.company, JAN_END), PeriodClass.OPEN)

        close_period(self.company, self.january.pk)
        self.assertEqual(classify(self.company, datetime.date(2025, 1, 10)), PeriodClass.CLOSED)

        lock_period(self.company, self.january.pk)
        self.assertEqual(classify(self.company, datetime.date(2025, 1, 10)), PeriodClass.LOCKED)


""" Posting gate """


class PostingGateTests(TestCase):

    def setUp(self):
        self.company = make_company("Gate Co")
        self.chart = make_chart(self.company)
        self.cash = self.chart["1000"]
        self.revenue = self.chart["4000"]
        self.january = make_january(self.company)
        close_period(self.company, self.january.pk)

    def _post(self, **kwargs):
        return post(self.company, None, "2025-01-15",
                    (self.cash, 10, 0), (self.revenue, 0, 10), **kwargs)

    def test_closed_period_posts_with_warning_by_default(self):
        result = self._post()
        self.assertEqual(result.status, "posted")
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("closed period 2025-01", result.warnings[0])

    @override_settings(LEDGER_ALLOW_CLOSED_PERIOD_POSTING=False)
    def test_settings_can_forbid_closed_period_posting(self):
        with self.assertRaises(ClosedPeriodError) as cm:
            self._post()
        self.assertIn("2025-01", str(cm.exception))
        self.assertFalse(JournalEntry.objects.for_company(self.company).exists())

    def test_company_flag_beats_settings(self):
        self.company.allow_closed_period_posting = False
        self.company.save()
        with self.assertRaises(ClosedPeriodError):
            self._post()

    def test_per_call_override_beats_company_flag(self):
        self.company.allow_closed_period_posting = False
        self.company.save()
        result = self._post(allow_closed_period=True)
        self.assertEqual(result.status, "posted")
        self.assertTrue(result.warnings)

        with self.assertRaises(ClosedPeriodError):
            # company allows it, the call does not
            self.company.allow_closed_period_posting = True
            self.company.save()
            self._post(allow_closed_period=False)

    def test_locked_period_is_never_postable(self):
        lock_period(self.company, self.january.pk)
        for override in (None, True):
            with self.subTest(allow_closed_period=override):
                with self.assertRaises(LockedPeriodError):
                    self._post(allow_closed_period=override)

    def test_dates_outside_any_period_are_unguarded(self):
        result = post(self.company, None, "2025-02-10",
                      (self.cash, 10, 0), (self.revenue, 0, 10))
        self.assertEqual(result.warnings, ())

    def test_draft_skips_gate_until_posted(self):
        lock_period(self.company, self.january.pk)
        result = self._post(as_draft=True)
        self.assertEqual(result.status, "draft")

        from ledger_core.services.posting import post_draft_entry
        with self.assertRaises(LockedPeriodError):
            post_draft_entry(self.company, None, result.entry_id)


""" Close / reopen / lock """


class PeriodCloseTests(TestCase):

    def setUp(self):
        self.company = make_company("Close Co")
        self.chart = make_chart(self.company)
        self.cash = self.chart["1000"]
        self.revenue = self.chart["4000"]
        self.rent = self.chart["6000"]
        self.january = make_january(self.company)

        post(self.company, None, "2025-01-10", (self.cash, 1000, 0), (self.revenue, 0, 1000))
        post(self.company, None, "2025-01-20", (self.rent, 250, 0), (self.cash, 0, 250))

    def test_close_moves_net_income_to_retained_earnings(self):
        self.assertFalse(
            Account.objects.for_company(self.company).filter(code="3200").exists()
        )

        result = close_period(self.company, self.january.pk)

        self.assertEqual(result["status"], "closed")
        self.assertEqual(result["total_revenue"], Decimal("1000.00"))
        self.assertEqual(result["total_expenses"], Decimal("250.00"))
        self.assertEqual(result["net_income"], Decimal("750.00"))

        retained = Account.objects.for_company(self.company).get(code="3200")
        self.assertEqual(retained.ac_type, "equity")
        self.assertEqual(balance_as_of(retained, JAN_END), Decimal("750.00"))
        self.assertEqual(balance_as_of(self.revenue, JAN_END), Decimal("0.00"))
        self.assertEqual(balance_as_of(self.rent, JAN_END), Decimal("0.00"))
        # balance sheet accounts are untouched
        self.assertEqual(balance_as_of(self.cash, JAN_END), Decimal("750.00"))

        entry = JournalEntry.objects.get(pk=result["closing_entry_id"])
        self.assertTrue(entry.is_closing)
        self.assertEqual(entry.entry_date, JAN_END)
        self.assertEqual(entry.source_type, "closing")
        self.assertTrue(entry.is_balanced())

        self.january.refresh_from_db()
        self.assertEqual(self.january.status, "closed")
        self.assertIsNotNone(self.january.closed_at)
        self.assertEqual(list(self.january.closing_entries.all()), [entry])

    def test_close_with_no_activity_posts_nothing(self):
        feb = create_period(
            self.company,
            name="2025-02",
            start_date=datetime.date(2025, 2, 1),
            end_date=datetime.date(2025, 2, 28),
        )
        close_period(self.company, self.january.pk)

        result = close_period(self.company, feb.pk)

        self.assertIsNone(result["closing_entry_id"])
        self.assertEqual(result["net_income"], Decimal("0.00"))
        self.assertEqual(result["status"], "closed")

    def test_net_loss_debits_retained_earnings(self):
        post(self.company, None, "2025-01-25", (self.rent, 2000, 0), (self.cash, 0, 2000))

        result = close_period(self.company, self.january.pk)

        self.assertEqual(result["net_income"], Decimal("-1250.00"))
        retained = Account.objects.for_company(self.company).get(code="3200")
        self.assertEqual(balance_as_of(retained), Decimal("-1250.00"))

    def test_reopen_voids_closing_entry(self):
        closed = close_period(self.company, self.january.pk)

        result = reopen_period(self.company, self.january.pk)

        self.assertEqual(result["status"], "open")
        self.assertEqual(len(result["reversal_numbers"]), 1)

        closing = JournalEntry.objects.get(pk=closed["closing_entry_id"])
        self.assertEqual(closing.status, "void")
        reversal = closing.reversals.get()
        self.assertEqual(reversal.entry_date, JAN_END)
        self.assertTrue(reversal.is_closing)

        self.assertEqual(balance_as_of(self.revenue), Decimal("1000.00"))
        self.assertEqual(balance_as_of(self.rent), Decimal("250.00"))

        self.january.refresh_from_db()
        self.assertEqual(self.january.status, "open")
        self.assertIsNone(self.january.closed_at)

        # a second close books the same net income again
        again = close_period(self.company, self.january.pk)
        self.assertEqual(again["net_income"], Decimal("750.00"))
        retained = Account.objects.for_company(self.company).get(code="3200")
        self.assertEqual(balance_as_of(retained), Decimal("750.00"))

    def test_illegal_transitions(self):
        with self.assertRaises(InvalidTransitionError):
            reopen_period(self.company, self.january.pk)
        with self.assertRaises(InvalidTransitionError):
            lock_period(self.company, self.january.pk)

        close_period(self.company, self.january.pk)
        with self.assertRaises(InvalidTransitionError):
            close_period(self.company, self.january.pk)

        lock_period(self.company, self.january.pk)
        for action in (close_period, reopen_period, lock_period):
            with self.subTest(action=action.__name__):
                with self.assertRaises(InvalidTransitionError):
                    action(self.company, self.january.pk)

    def test_only_open_periods_can_be_deleted(self):
        close_period(self.company, self.january.pk)
        with self.assertRaises(InvalidTransitionError):
            delete_period(self.company, self.january.pk)

        reopen_period(self.company, self.january.pk)
        result = delete_period(self.company, self.january.pk)
        self.assertEqual(result["status"], "deleted")
        self.assertFalse(AccountingPeriod.objects.filter(pk=self.january.pk).exists())

    def test_transition_dispatch(self):
        result = transition_period(self.company, None, self.january.pk, "close")
        self.assertEqual(result["status"], "closed")
        result = transition_period(self.company, None, self.january.pk, "lock")
        self.assertEqual(result["status"], "locked")

        with self.assertRaises(InvalidTransitionError):
            transition_period(self.company, None, self.january.pk, "archive")
        with self.assertRaises(NotFoundError):
            transition_period(self.company, None, 999999, "close")



""" Writes racing a period transition """


class InterleavedWriteTests(TestCase):

    def setUp(self):
        self.company = make_company("Race Co")
        self.chart = make_chart(self.company)
        self.cash = self.chart["1000"]
        self.revenue = self.chart["4000"]
        self.january = make_january(self.company)

    def _locking_first(self, func):
        """Lock January (as a concurrent lock_period would) and then run func."""
        def side_effect(*args, **kwargs):
            AccountingPeriod.objects.filter(pk=self.january.pk).update(status="locked")
            return func(*args, **kwargs)
        return side_effect

    def test_lock_between_gate_and_write_blocks_posting(self):
        with mock.patch("ledger_core.services.posting.write_entry",
                        side_effect=self._locking_first(posting.write_entry)):
            with self.assertRaises(LockedPeriodError):
                post(self.company, None, "2025-01-10", (self.cash, 50, 0), (self.revenue, 0, 50))

        self.assertFalse(JournalEntry.objects.for_company(self.company).exists())
        self.assertEqual(balance_as_of(self.cash), Decimal("0.00"))

    def test_lock_between_gate_and_write_blocks_draft_posting(self):
        draft = post(self.company, None, "2025-01-10",
                     (self.cash, 50, 0), (self.revenue, 0, 50), as_draft=True)

        with mock.patch("ledger_core.services.posting.validate_request",
                        side_effect=self._locking_first(posting.validate_request)):
            with self.assertRaises(LockedPeriodError):
                posting.post_draft_entry(self.company, None, draft.entry_id)

        self.assertEqual(JournalEntry.objects.get(pk=draft.entry_id).status, "draft")

    def test_lock_between_gate_and_write_blocks_void(self):
        result = post(self.company, None, "2025-01-10", (self.cash, 50, 0), (self.revenue, 0, 50))

        with mock.patch("ledger_core.services.reversal.write_entry",
                        side_effect=self._locking_first(reversal.write_entry)):
            with self.assertRaises(LockedPeriodError):
                reversal.void_journal_entry(
                    self.company, None, result.entry_id, reversal_date=JAN_END
                )

        self.assertEqual(JournalEntry.objects.get(pk=result.entry_id).status, "posted")
        self.assertEqual(balance_as_of(self.cash), Decimal("50.00"))

    def test_close_locks_accounts_before_reading_balances(self):
        post(self.company, None, "2025-01-10", (self.cash, 100, 0), (self.revenue, 0, 100))
        calls = mock.Mock()

        with mock.patch("ledger_core.services.periods.lock_accounts",
                        wraps=periods.lock_accounts) as lock, \
                mock.patch("ledger_core.services.periods.build_closing_request",
                           wraps=periods.build_closing_request) as build:
            calls.attach_mock(lock, "lock_accounts")
            calls.attach_mock(build, "build_closing_request")
            close_period(self.company, self.january.pk)

        self.assertEqual(
            [name for name, _args, _kwargs in calls.mock_calls],
            ["lock_accounts", "build_closing_request"],
        )
        locked_ids = set(lock.call_args.args[1])
        profit_and_loss = {
            a.pk for a in self.chart.values() if a.ac_type in ("revenue", "expense")
        }
        retained = Account.objects.for_company(self.company).get(code="3200")
        self.assertTrue(profit_and_loss <= locked_ids)
        self.assertIn(retained.pk, locked_ids)

    def test_posting_after_balances_are_read_fails_the_close(self):
        post(self.company, None, "2025-01-10", (self.cash, 100, 0), (self.revenue, 0, 100))

        original_build_closing_request = periods.build_closing_request

        def late_posting(*args, **kwargs):
            result = original_build_closing_request(*args, **kwargs)
            post(self.company, None, "2025-01-20", (self.cash, 50, 0), (self.revenue, 0, 50))
            return result

        with mock.patch("ledger_core.services.periods.build_closing_request",
                        side_effect=late_posting):
            with self.assertRaises(PostingFailedError) as cm:
                close_period(self.company, self.january.pk)
        self.assertIn("4000", str(cm.exception))

        # the whole close rolled back, the late posting with it
        self.january.refresh_from_db()
        self.assertEqual(self.january.status, "open")
        self.assertFalse(JournalEntry.objects.filter(is_closing=True).exists())
        self.assertEqual(balance_as_of(self.revenue, JAN_END), Decimal("100.00"))

        result = close_period(self.company, self.january.pk)
        self.assertEqual(result["net_income"], Decimal("100.00"))
        self.assertEqual(balance_as_of(self.revenue, JAN_END), Decimal("0.00"))


@pytest.mark.django_db
def test_period_of_other_company_is_not_found(company):
    other = make_company("Stranger Co")
    period = make_january(other)
    with pytest.raises(NotFoundError):
        close_period(company, period.pk)
