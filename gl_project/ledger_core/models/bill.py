from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company
from .item import Item
from .journal import JournalEntry
from .vendor import Vendor

BILL_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("posted", "Posted"),
    ("paid", "Paid"),
    ("void", "Void"),
]

BILL_TRANSITIONS = {
    "draft": ["posted"],
    "posted": ["paid", "void"],
    "paid": ["posted"],
    "void": [],
}


# ---------- Bills / BillLines ----------
# Header represents vendor bill (Accounts Payable document)
class Bill(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # prevent deleting vendor who has a bill
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)

    # Vendor's own reference is kept in description;
    # this is our "BILL-2025-0001"
    bill_number = models.CharField(max_length=64, null=True, blank=True)
    date = models.DateField()  # bill date
    due_date = models.DateField(null=True, blank=True)

    status = models.CharField(
        max_length=20, choices=BILL_STATUS_CHOICES, default="draft"
    )

    # Falls back to vendor.default_ap_account when blank
    payable_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )

    total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    outstanding_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    description = models.TextField(blank=True, default="")

    # Set by approve_bill
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
            models.Index(fields=["company", "bill_number"], name="bill_company_number"),
            models.Index(fields=["company", "vendor"], name="bill_company_vendor"),
            models.Index(fields=["company", "status"], name="bill_company_status"),
        ]

        constraints = [
            models.UniqueConstraint(
                fields=["company", "bill_number"], name="uq_bill_company_number"
            )
        ]

    def __str__(self):
        return f"Bill: {self.bill_number or self.pk}"

    def recalc_total(self):
        if not self.pk:
            self.total = Decimal("0.00")
            return self.total
        self.total = sum(
            (line.line_total for line in self.lines.all()), Decimal("0.00")
        )
        return self.total

    @property
    def ap_account(self):
        return self.payable_account or self.vendor.default_ap_account

    def clean(self):
        if self.vendor_id and self.vendor.company_id != self.company_id:
            raise ValidationError("Vendor must belong to the same company.")
        if self.outstanding_amount < 0:
            raise ValidationError("Outstanding amount cannot be negative")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.status != "draft":
            raise ValidationError("Only draft bills can be deleted.")
        return super().delete(*args, **kwargs)

    def can_transition_to(self, new_status):
        return new_status in BILL_TRANSITIONS.get(self.status, [])


class BillLine(models.Model):  # Each line describes a purchased item/service
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    bill = models.ForeignKey(Bill, on_delete=models.CASCADE, related_name="lines")

    # Lines with an item move its on-hand quantity
    item = models.ForeignKey(Item, null=True, blank=True, on_delete=models.PROTECT)
    description = models.CharField(max_length=400, blank=True, default="")

    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1")
    )
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00")
    )
    line_total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Expense / inventory account debited; falls back to item.purchase_account
    account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        help_text="Expense / inventory account for this line",
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "bill"], name="bl_company_bill"),
            models.Index(fields=["company", "account"], name="bl_company_account"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0) & models.Q(unit_price__gte=0),
                name="bl_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"Bill: {self.bill_id} - {self.description} - Total: {self.line_total}"

    @property
    def expense_account(self):
        if self.account_id:
            return self.account
        return self.item.purchase_account if self.item_id else None

    def clean(self):
        if self.quantity is not None and self.quantity < 0:
            raise ValidationError("Quantity must be >= 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValidationError("Unit price must be >= 0")

        if self.bill_id and self.bill.company_id != self.company_id:
            raise ValidationError("BillLine.company must match Bill.company")
        if self.item_id and self.item.company_id != self.company_id:
            raise ValidationError("BillLine.company must match Item.company")
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("BillLine.company must match Account.company")

    def save(self, *args, **kwargs):
        if not self.company_id and self.bill_id:
            self.company_id = self.bill.company_id
        self.line_total = (
            (self.quantity or Decimal("0")) * (self.unit_price or Decimal("0"))
        ).quantize(Decimal("0.01"))
        self.full_clean()
        return super().save(*args, **kwargs)
