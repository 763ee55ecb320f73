from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company


# ---------- Customer ----------
# Represents client who receives invoices (AR side)
class Customer(models.Model):
    # Multi-tenant: every customer belongs to a single company.
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # The customer's legal or trade name
    name = models.CharField(max_length=200)

    # Optional contact for billing/communication
    contact_email = models.EmailField(null=True, blank=True)

    # Standard credit terms
    payment_terms_days = models.IntegerField(default=30)

    # FK to the Accounts Receivable account in Chart of Accounts
    """ If set: issuing an invoice for this customer
        debits this account instead of an explicit one.
    """
    default_ar_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="customers_default_ar",
        help_text="Default AR account used for this customer",
    )

    # What the customer owes us. Moved only by the document services,
    # in the same transaction as the journal entry that justifies it.
    current_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "name"], name="cust_company_name"),
            models.Index(fields=["company", "default_ar_account"], name="cust_company_ar"),
        ]

        # Enforce uniqueness per tenant
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_customer_name"
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        ar = self.default_ar_account
        if ar is None:
            return super().clean()
        if ar.company_id != self.company_id:
            raise ValidationError(
                "Default AR account & customer must belong to the same company"
            )
        # receivables are control assets
        if ar.ac_type != "asset" or not ar.is_control_account:
            raise ValidationError(
                "Default AR account must be an asset control account"
            )
        return super().clean()

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def outstanding_total(self):
        """Unpaid amount of issued invoices; current_balance must match it."""
        total = self.invoice_set.filter(status="open").aggregate(
            s=models.Sum("outstanding_amount")
        )["s"]
        return total or Decimal("0.00")
