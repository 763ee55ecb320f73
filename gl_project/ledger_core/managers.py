from decimal import Decimal

from django.db import models


# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):
        return self.filter(company=company)

    def active(self, company):
        return self.filter(
            company=company,  # enforce tenant scoping
            is_active=True,   # only fetch active records
        )


class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    # Invoice.objects.for_company(company).get(pk=...)
    # raises DoesNotExist for another tenant's row
    pass


# Ledger rows are read far more than written:
# these helpers keep ordering and date filters in one place
class LedgerRowQuerySet(TenantQuerySet):
    def for_account(self, account):
        return self.filter(account=account)

    def chronological(self):
        # entry date first, then insertion order
        return self.order_by("entry_date", "id")

    def between(self, date_from=None, date_to=None):
        qs = self
        if date_from is not None:
            qs = qs.filter(entry_date__gte=date_from)
        if date_to is not None:
            qs = qs.filter(entry_date__lte=date_to)
        return qs

    def latest_for(self, account):
        return self.for_account(account).order_by("-entry_date", "-id").first()

    def totals(self):
        """Return (debit, credit) sums, zero when empty."""
        aggs = self.aggregate(
            total_debit=models.Sum("debit"),
            total_credit=models.Sum("credit"),
        )
        return (
            aggs["total_debit"] or Decimal("0.00"),
            aggs["total_credit"] or Decimal("0.00"),
        )


class LedgerRowManager(models.Manager.from_queryset(LedgerRowQuerySet)):
    pass
