import datetime
from decimal import Decimal

import pytest
from django.test import TestCase

from ledger_core.exceptions import NotFoundError, UnknownAccountError
from ledger_core.models import Account, JournalEntry, LedgerRow
from ledger_core.services.ledger import account_ledger
from ledger_core.services.posting import post_draft_entry
from ledger_core.services.reports import trial_balance
from ledger_core.services.reversal import void_journal_entry

from .helpers import make_chart, make_company, post


class TenantIsolationManagerTests(TestCase):
    def setUp(self):
        self.company_a = make_company("Company A")
        self.company_b = make_company("Company B")
        self.chart_a = make_chart(self.company_a)
        self.chart_b = make_chart(self.company_b)

        # one entry per company
        self.entry_a = post(self.company_a, None, "2025-01-10",
                            (self.chart_a["1000"], 200, 0), (self.chart_a["4000"], 0, 200))
        self.entry_b = post(self.company_b, None, "2025-01-10",
                            (self.chart_b["1000"], 100, 0), (self.chart_b["4000"], 0, 100))

    def test_for_company_returns_only_that_company_objects(self):
        """Compare journal entry primary keys"""
        self.assertListEqual(
            list(
                JournalEntry.objects.for_company(self.company_a)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.entry_a.entry_id],
        )
        self.assertListEqual(
            list(
                JournalEntry.objects.for_company(self.company_b)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.entry_b.entry_id],
        )

    def test_get_other_company_object_raises_does_not_exist(self):
        # `for_company` shouldn't return the other company's record
        with self.assertRaises(JournalEntry.DoesNotExist):
            JournalEntry.objects.for_company(self.company_a).get(pk=self.entry_b.entry_id)

    def test_entry_numbers_are_per_company(self):
        self.assertEqual(self.entry_a.entry_number, "JE-2025-0001")
        self.assertEqual(self.entry_b.entry_number, "JE-2025-0001")

    def test_account_codes_repeat_across_companies(self):
        self.assertEqual(Account.objects.filter(code="1000").count(), 2)

    def test_posting_against_other_company_account_is_rejected(self):
        with self.assertRaises(UnknownAccountError):
            post(self.company_a, None, "2025-01-11",
                 (self.chart_b["1000"], 10, 0), (self.chart_a["4000"], 0, 10))
        self.assertEqual(LedgerRow.objects.for_company(self.company_a).count(), 2)

    def test_operations_cannot_reach_other_company(self):
        with self.assertRaises(NotFoundError):
            void_journal_entry(self.company_a, None, self.entry_b.entry_id)
        with self.assertRaises(NotFoundError):
            post_draft_entry(self.company_a, None, self.entry_b.entry_id)
        with self.assertRaises(NotFoundError):
            account_ledger(self.company_a, self.chart_b["1000"].pk)

    def test_reports_only_see_own_rows(self):
        tb = trial_balance(self.company_a, datetime.date(2025, 12, 31))
        self.assertEqual(tb["totals"]["total_debit"], Decimal("200.00"))
        self.assertEqual(
            {line["account_id"] for line in tb["accounts"]},
            {self.chart_a["1000"].pk, self.chart_a["4000"].pk},
        )


@pytest.mark.django_db
def test_ledger_rows_carry_company_of_entry(company, chart):
    result = post(company, None, "2025-03-03", (chart["1000"], 5, 0), (chart["4000"], 0, 5))
    companies = set(
        LedgerRow.objects.filter(journal_id=result.entry_id).values_list("company_id", flat=True)
    )
    assert companies == {company.pk}
