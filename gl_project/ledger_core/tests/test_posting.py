import datetime
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import TestCase

from ledger_core.exceptions import (InsufficientLinesError, InvalidLineError,
                                    InvalidPostingRequestError,
                                    InvalidTransitionError, PostingFailedError,
                                    UnbalancedEntryError, UnknownAccountError)
from ledger_core.models import Account, JournalEntry, JournalLine, LedgerRow
from ledger_core.services.accounts import create_account
from ledger_core.services.posting import post_draft_entry, post_journal_entry
from ledger_core.signals import journal_entry_posted

from .helpers import make_chart, make_company, post, request

""" Success tests """


class PostingSuccessTests(TestCase):

    def setUp(self):
        self.user = get_user_model().objects.create_user(username="poster", password="pw")
        self.company = make_company("Test Co")
        self.chart = make_chart(self.company)
        self.cash = self.chart["1000"]
        self.revenue = self.chart["4000"]

    def test_balanced_entry_posts_rows_and_balances(self):
        result = post(
            self.company, self.user, "2025-03-01",
            (self.cash, "100.00", 0), (self.revenue, 0, "100.00"),
            reference="R-1", description="Cash sale",
        )

        self.assertEqual(result.status, "posted")
        self.assertEqual(result.entry_number, "JE-2025-0001")
        self.assertEqual(result.warnings, ())

        entry = JournalEntry.objects.get(pk=result.entry_id)
        self.assertEqual(entry.status, "posted")
        self.assertIsNotNone(entry.posted_at)
        self.assertEqual(entry.created_by, self.user)
        self.assertTrue(entry.is_balanced())
        self.assertEqual(entry.lines.count(), 2)
        self.assertEqual(LedgerRow.objects.filter(journal=entry).count(), 2)

        # cached balances follow the normal side of each account
        self.cash.refresh_from_db()
        self.revenue.refresh_from_db()
        self.assertEqual(self.cash.balance, Decimal("100.00"))
        self.assertEqual(self.revenue.balance, Decimal("100.00"))

    def test_line_order_is_kept(self):
        result = post(
            self.company, self.user, "2025-03-01",
            (self.revenue, 0, 40), (self.cash, 40, 0),
        )
        accounts = list(
            JournalLine.objects.filter(journal_id=result.entry_id).values_list("account_id", flat=True)
        )
        self.assertEqual(accounts, [self.revenue.pk, self.cash.pk])

    def test_entry_numbers_are_sequential_per_year(self):
        numbers = [
            post(self.company, self.user, day, (self.cash, 10, 0), (self.revenue, 0, 10)).entry_number
            for day in ("2025-01-05", "2025-06-30", "2025-12-31", "2026-01-01")
        ]
        self.assertEqual(
            numbers,
            ["JE-2025-0001", "JE-2025-0002", "JE-2025-0003", "JE-2026-0001"],
        )

    def test_company_prefix_is_used(self):
        other = make_company("Prefix Co", entry_number_prefix="GJ")
        chart = make_chart(other)
        result = post(other, self.user, "2025-02-01", (chart["1000"], 5, 0), (chart["4000"], 0, 5))
        self.assertEqual(result.entry_number, "GJ-2025-0001")

    def test_rounding_difference_below_a_cent_is_accepted(self):
        result = post_journal_entry(
            self.company,
            self.user,
            {
                "entry_date": "2025-03-01",
                "lines": [
                    {"account_id": self.cash.pk, "debit": "33.333"},
                    {"account_id": self.revenue.pk, "credit": "33.33"},
                ],
            },
        )
        self.assertEqual(result.status, "posted")

    def test_payload_dict_is_accepted(self):
        result = post_journal_entry(
            self.company,
            self.user,
            {
                "entry_date": "2025-04-02",
                "reference": "INV-77",
                "lines": [
                    {"account_id": self.cash.pk, "debit": "12.50", "credit": 0},
                    {"account_id": self.revenue.pk, "debit": 0, "credit": "12.50",
                     "description": "fees"},
                ],
                "source_document": {"type": "invoice", "id": 77},
            },
        )
        entry = JournalEntry.objects.get(pk=result.entry_id)
        self.assertEqual(entry.entry_date, datetime.date(2025, 4, 2))
        self.assertEqual((entry.source_type, entry.source_id), ("invoice", 77))

    def test_string_account_ids_are_converted(self):
        result = post_journal_entry(
            self.company,
            self.user,
            {
                "entry_date": "2025-04-03",
                "lines": [
                    {"account_id": str(self.cash.pk), "debit": "40"},
                    {"account_id": f" {self.revenue.pk} ", "credit": "40"},
                ],
            },
        )
        self.assertEqual(result.status, "posted")
        lines = JournalEntry.objects.get(pk=result.entry_id).lines.order_by("line_no")
        self.assertEqual(
            [line.account_id for line in lines], [self.cash.pk, self.revenue.pk]
        )
        self.cash.refresh_from_db()
        self.assertEqual(self.cash.balance, Decimal("40.00"))

    def test_draft_has_no_ledger_effect_until_posted(self):
        result = post(
            self.company, self.user, "2025-03-01",
            (self.cash, 75, 0), (self.revenue, 0, 75), as_draft=True,
        )
        self.assertEqual(result.status, "draft")
        self.assertFalse(LedgerRow.objects.filter(journal_id=result.entry_id).exists())
        self.cash.refresh_from_db()
        self.assertEqual(self.cash.balance, Decimal("0.00"))

        posted = post_draft_entry(self.company, self.user, result.entry_id)

        self.assertEqual(posted.status, "posted")
        self.assertEqual(posted.entry_number, result.entry_number)
        self.assertEqual(LedgerRow.objects.filter(journal_id=result.entry_id).count(), 2)
        self.cash.refresh_from_db()
        self.assertEqual(self.cash.balance, Decimal("75.00"))

        with self.assertRaises(InvalidTransitionError):
            post_draft_entry(self.company, self.user, result.entry_id)

    def test_posted_signal_fires_after_commit(self):
        received = []

        def receiver(sender, entry_id, company_id, **kwargs):
            received.append((entry_id, company_id))

        journal_entry_posted.connect(receiver)
        self.addCleanup(journal_entry_posted.disconnect, receiver)

        with mock.patch("ledger_core.tasks.dispatch_entry_notifications.delay") as delay:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                result = post(self.company, self.user, "2025-03-01",
                              (self.cash, 1, 0), (self.revenue, 0, 1))
                # nothing downstream runs inside the transaction
                self.assertEqual(received, [])

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(received, [(result.entry_id, self.company.pk)])
        delay.assert_called_once_with(result.entry_id)

    def test_posted_entry_is_immutable(self):
        result = post(self.company, self.user, "2025-03-01",
                      (self.cash, 1, 0), (self.revenue, 0, 1))
        entry = JournalEntry.objects.get(pk=result.entry_id)

        entry.description = "rewritten"
        with self.assertRaises(ValidationError):
            entry.save()

        with self.assertRaises(ValidationError):
            entry.delete()

        line = entry.lines.first()
        line.debit = Decimal("2.00")
        with self.assertRaises(ValidationError):
            line.save()


""" Failure tests """


class PostingFailureTests(TestCase):

    def setUp(self):
        self.company = make_company("Test Co")
        self.chart = make_chart(self.company)
        self.cash = self.chart["1000"]
        self.revenue = self.chart["4000"]

    def assertNothingWritten(self):
        self.assertEqual(JournalEntry.objects.count(), 0)
        self.assertEqual(LedgerRow.objects.count(), 0)
        self.cash.refresh_from_db()
        self.assertEqual(self.cash.balance, Decimal("0.00"))

    def test_unbalanced_entry_is_rejected(self):
        with self.assertRaises(UnbalancedEntryError) as cm:
            post(self.company, None, "2025-03-01", (self.cash, 100, 0), (self.revenue, 0, 99))

        self.assertIn("Journal not balanced", str(cm.exception))
        self.assertEqual(cm.exception.total_debit, Decimal("100.00"))
        self.assertEqual(cm.exception.total_credit, Decimal("99.00"))
        self.assertNothingWritten()

    def test_single_line_is_rejected(self):
        with self.assertRaises(InsufficientLinesError):
            post(self.company, None, "2025-03-01", (self.cash, 0, 0))
        self.assertNothingWritten()

    def test_line_with_both_sides_is_rejected(self):
        with self.assertRaises(InvalidLineError):
            post(self.company, None, "2025-03-01",
                 (self.cash, 100, 100), (self.revenue, 0, 0))

    def test_zero_line_is_rejected(self):
        with self.assertRaises(InvalidLineError):
            post(self.company, None, "2025-03-01",
                 (self.cash, 100, 0), (self.revenue, 0, 100), (self.revenue, 0, 0))

    def test_negative_amount_is_rejected(self):
        with self.assertRaises(InvalidLineError):
            post(self.company, None, "2025-03-01",
                 (self.cash, "-5", 0), (self.revenue, "-5", 0))

    def test_inactive_account_is_rejected(self):
        dormant = create_account(self.company, code="1999", name="Dormant", ac_type="asset")
        dormant.is_active = False
        dormant.save()

        with self.assertRaises(UnknownAccountError) as cm:
            post(self.company, None, "2025-03-01", (dormant, 10, 0), (self.revenue, 0, 10))
        self.assertIn("inactive", str(cm.exception))
        self.assertNothingWritten()

    def test_missing_account_is_rejected(self):
        ghost = Account(pk=987654, company=self.company)
        with self.assertRaises(UnknownAccountError):
            post(self.company, None, "2025-03-01", (ghost, 10, 0), (self.revenue, 0, 10))

    def test_malformed_payload_is_rejected(self):
        for payload in (
            "not a dict",
            {"entry_date": "2025-03-01"},
            {"entry_date": "yesterday", "lines": []},
            {"entry_date": "2025-03-01", "lines": [{"debit": 1}]},
            {"entry_date": "2025-03-01", "lines": [{"account_id": 1, "debit": "abc"}]},
            {"entry_date": "2025-03-01", "lines": [{"account_id": "cash", "debit": 1}]},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(InvalidPostingRequestError):
                    post_journal_entry(self.company, None, payload)

    def test_storage_failure_rolls_everything_back(self):
        with mock.patch(
            "ledger_core.services.posting.append_rows",
            side_effect=DatabaseError("disk full"),
        ):
            with self.assertRaises(PostingFailedError) as cm:
                post(self.company, None, "2025-03-01", (self.cash, 10, 0), (self.revenue, 0, 10))

        self.assertIsInstance(cm.exception.__cause__, DatabaseError)
        self.assertNothingWritten()
        self.assertEqual(JournalLine.objects.count(), 0)

    def test_request_helper_builds_posting_lines(self):
        req = request("2025-03-01", (self.cash, 10, 0), (self.revenue, 0, 10))
        self.assertEqual(req.total_debit, req.total_credit)
        self.assertEqual(req.account_ids, {self.cash.pk, self.revenue.pk})
