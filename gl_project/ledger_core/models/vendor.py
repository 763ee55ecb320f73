from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company


class Vendor(models.Model):  # Mirrors Customer but for Accounts Payable (AP)

    # Multi-tenant
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    name = models.CharField(max_length=200)
    contact_email = models.EmailField(null=True, blank=True)
    payment_terms_days = models.IntegerField(default=30)

    # FK to the Accounts Payable account in Chart of Accounts
    default_ap_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="vendors_default_ap",
        help_text="Default AP account used for this vendor",
    )

    # What we owe the vendor
    current_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "name"], name="vendor_company_name"),
            models.Index(fields=["company", "default_ap_account"], name="vendor_company_ap"),
        ]

        # Vendor names must be unique per company
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_vendor_name"
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        dap = self.default_ap_account
        if dap is None:
            return super().clean()
        if dap.company_id != self.company_id:
            raise ValidationError(
                "Default AP account and vendor must belong to same company"
            )
        # payables are control liabilities
        if dap.ac_type != "liability" or not dap.is_control_account:
            raise ValidationError(
                "Default AP account must be a liability control account"
            )
        return super().clean()

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def outstanding_total(self):
        """Unpaid amount of approved bills; current_balance must match it."""
        total = self.bill_set.filter(status="posted").aggregate(
            s=models.Sum("outstanding_amount")
        )["s"]
        return total or Decimal("0.00")
