import datetime
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.test import TestCase

from ledger_core.exceptions import NotFoundError
from ledger_core.models import LedgerRow
from ledger_core.services.ledger import (account_balance, account_ledger,
                                         balance_as_of, general_ledger,
                                         rows_for_account,
                                         rows_for_journal_entry)

from .helpers import make_chart, make_company, post


class LedgerProjectionTests(TestCase):

    def setUp(self):
        self.company = make_company("Ledger Co")
        self.chart = make_chart(self.company)
        self.cash = self.chart["1000"]
        self.revenue = self.chart["4000"]
        self.rent = self.chart["6000"]

        self.sale = post(self.company, None, "2025-01-10",
                         (self.cash, 1000, 0), (self.revenue, 0, 1000))
        self.rent_paid = post(self.company, None, "2025-01-20",
                              (self.rent, 250, 0), (self.cash, 0, 250))

    """ Running balances follow the account's normal side """

    def test_running_balances(self):
        rows = rows_for_account(self.company, self.cash)
        self.assertEqual(
            [r.running_balance for r in rows],
            [Decimal("1000.00"), Decimal("750.00")],
        )
        # credit-normal revenue grows with credits
        rev_rows = rows_for_account(self.company, self.revenue)
        self.assertEqual([r.running_balance for r in rev_rows], [Decimal("1000.00")])

    def test_last_running_balance_matches_cached_balance(self):
        for account in (self.cash, self.revenue, self.rent):
            account.refresh_from_db()
            last = LedgerRow.objects.latest_for(account)
            self.assertEqual(last.running_balance, account.balance)

    def test_one_row_per_line(self):
        rows = rows_for_journal_entry(self.company, self.sale.entry_id)
        self.assertEqual(rows.count(), 2)
        self.assertEqual({r.line.journal_id for r in rows}, {self.sale.entry_id})

    def test_draft_has_no_rows(self):
        draft = post(self.company, None, "2025-01-25",
                     (self.cash, 5, 0), (self.revenue, 0, 5), as_draft=True)
        self.assertFalse(rows_for_journal_entry(self.company, draft.entry_id).exists())

    def test_balance_as_of(self):
        self.assertEqual(balance_as_of(self.cash, datetime.date(2025, 1, 9)), Decimal("0.00"))
        self.assertEqual(balance_as_of(self.cash, datetime.date(2025, 1, 15)), Decimal("1000.00"))
        self.assertEqual(balance_as_of(self.cash), Decimal("750.00"))

    def test_account_ledger_summary(self):
        result = account_ledger(self.company, self.cash.pk)

        self.assertEqual(result["account"]["code"], "1000")
        self.assertEqual(len(result["rows"]), 2)
        self.assertEqual(result["rows"][0]["entry_number"], self.sale.entry_number)
        self.assertEqual(result["summary"]["total_debit"], Decimal("1000.00"))
        self.assertEqual(result["summary"]["total_credit"], Decimal("250.00"))
        self.assertEqual(result["summary"]["closing_balance"], Decimal("750.00"))
        self.assertEqual(result["summary"]["row_count"], 2)

    def test_account_ledger_date_filter(self):
        result = account_ledger(
            self.company, self.cash.pk,
            date_from=datetime.date(2025, 1, 15),
            date_to=datetime.date(2025, 1, 31),
        )
        self.assertEqual(result["summary"]["row_count"], 1)
        self.assertEqual(result["summary"]["closing_balance"], Decimal("750.00"))

    def test_account_without_rows(self):
        result = account_ledger(self.company, self.chart["1500"].pk)
        self.assertEqual(result["rows"], [])
        self.assertEqual(result["summary"]["closing_balance"], Decimal("0.00"))

        balance = account_balance(self.company, self.chart["1500"].pk)
        self.assertEqual(balance["balance"], Decimal("0.00"))

    def test_account_balance(self):
        result = account_balance(self.company, self.cash.pk, datetime.date(2025, 1, 31))
        self.assertEqual(result["balance"], Decimal("750.00"))

    def test_unknown_account_is_not_found(self):
        with self.assertRaises(NotFoundError):
            account_ledger(self.company, 999999)
        with self.assertRaises(NotFoundError):
            account_balance(self.company, 999999)

    def test_general_ledger_lists_active_accounts(self):
        result = general_ledger(self.company)
        self.assertEqual([a["account"]["code"] for a in result], ["1000", "4000", "6000"])

    def test_rows_are_append_only(self):
        row = LedgerRow.objects.for_company(self.company).first()

        row.description = "edited"
        with self.assertRaises(ValidationError):
            row.save()
        with self.assertRaises(ValidationError):
            row.delete()
        with self.assertRaises(ValidationError):
            LedgerRow.objects.filter(pk=row.pk).delete()


# rows of different dates interleave by entry_date, not by posting order
@pytest.mark.django_db
def test_back_dated_entry_is_ordered_by_date(company, chart):
    cash, revenue = chart["1000"], chart["4000"]
    post(company, None, "2025-02-01", (cash, 100, 0), (revenue, 0, 100))
    post(company, None, "2025-01-01", (cash, 40, 0), (revenue, 0, 40))

    dates = [r.entry_date for r in rows_for_account(company, cash)]
    assert dates == [datetime.date(2025, 1, 1), datetime.date(2025, 2, 1)]
    assert balance_as_of(cash, datetime.date(2025, 1, 31)) == Decimal("40.00")
