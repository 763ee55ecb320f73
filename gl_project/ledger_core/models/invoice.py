from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company
from .customer import Customer
from .item import Item
from .journal import JournalEntry

INV_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("open", "Open"),
    ("paid", "Paid"),
    ("void", "Void"),
]

""" Workflow:
    draft = not yet finalized, no ledger impact.
    open = issued, journal entry posted, awaiting payment.
    paid = fully settled (back to open when a payment is voided).
    void = canceled, journal entry reversed. """
INV_TRANSITIONS = {
    "draft": ["open"],
    "open": ["paid", "void"],
    "paid": ["open"],
    "void": [],
}


class Invoice(models.Model):  # Represents a customer invoice

    # Invoice belongs to one company (multi-tenant)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # prevent deleting customer who has an invoice
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT)

    # "INV-2025-0001", allocated when the invoice is issued
    invoice_number = models.CharField(max_length=64, null=True, blank=True)
    date = models.DateField()  # issue date
    due_date = models.DateField(null=True, blank=True)

    status = models.CharField(
        max_length=10, choices=INV_STATUS_CHOICES, default="draft"
    )

    # Falls back to customer.default_ar_account when blank
    receivable_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )

    # Sum of all line totals
    total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Unpaid amount after payments are applied
    outstanding_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    description = models.TextField(blank=True, default="")

    # Set by issue_invoice; the ledger never points back here
    journal_entry = models.ForeignKey(
        JournalEntry,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "invoice_number"], name="inv_company_number"),
            models.Index(fields=["company", "customer"], name="inv_company_customer"),
            models.Index(fields=["company", "status"], name="inv_company_status"),
        ]

        constraints = [
            # Within one company, each invoice number must be unique
            models.UniqueConstraint(
                fields=["company", "invoice_number"],
                name="uq_invoice_company_number",
            )
        ]

    def __str__(self):
        # If no invoice number, fall back to database ID
        return f"Inv {self.invoice_number or self.pk}"

    def recalc_total(self):
        """Sum line totals into self.total (lines are the source of truth)."""
        if not self.pk:
            self.total = Decimal("0.00")
            return self.total
        self.total = sum(
            (line.line_total for line in self.lines.all()), Decimal("0.00")
        )
        return self.total

    @property
    def ar_account(self):
        return self.receivable_account or self.customer.default_ar_account

    def clean(self):
        if self.customer_id and self.customer.company_id != self.company_id:
            raise ValidationError("Customer must belong to the same company.")
        if self.outstanding_amount < 0:
            # otherwise an overpayment could push receivables negative
            raise ValidationError("Outstanding amount cannot be negative")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        # Void an issued invoice instead of deleting it outright
        if self.status != "draft":
            raise ValidationError("Only draft invoices can be deleted.")
        return super().delete(*args, **kwargs)

    def can_transition_to(self, new_status):
        return new_status in INV_TRANSITIONS.get(self.status, [])


class InvoiceLine(models.Model):  # One product/service sold on the invoice

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="lines"
    )

    # Optionally linked to a predefined Item; free text otherwise
    item = models.ForeignKey(Item, null=True, blank=True, on_delete=models.PROTECT)
    description = models.CharField(max_length=400, blank=True, default="")

    # quantity × unit_price = line_total
    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1")
    )
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00")
    )
    line_total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Revenue account credited for this line; falls back to item.sales_account
    account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        help_text="Sales / revenue account for this line",
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "invoice"], name="invl_company_invoice"),
            models.Index(fields=["company", "account"], name="invl_company_account"),
        ]

        # Ensure quantity & unit_price are never negative
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0) & models.Q(unit_price__gte=0),
                name="invl_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"Invoice: {self.invoice_id} - {self.description} - Total: {self.line_total}"

    @property
    def revenue_account(self):
        if self.account_id:
            return self.account
        return self.item.sales_account if self.item_id else None

    def clean(self):
        if self.quantity is not None and self.quantity < 0:
            raise ValidationError("Quantity must be >= 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValidationError("Unit price must be >= 0")

        # Tenant safety
        if self.invoice_id and self.invoice.company_id != self.company_id:
            raise ValidationError("InvoiceLine.company must match Invoice.company")
        if self.item_id and self.item.company_id != self.company_id:
            raise ValidationError("InvoiceLine.company must match Item.company")
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("InvoiceLine.company must match Account.company")

    def save(self, *args, **kwargs):
        # copy company_id from the parent invoice
        if not self.company_id and self.invoice_id:
            self.company_id = self.invoice.company_id
        # compute line_total always, rounded to cents
        self.line_total = (
            (self.quantity or Decimal("0")) * (self.unit_price or Decimal("0"))
        ).quantize(Decimal("0.01"))
        self.full_clean()
        return super().save(*args, **kwargs)
