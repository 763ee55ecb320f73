from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .bill import Bill
from .company import Company
from .invoice import Invoice
from .journal import JournalEntry

PAYMENT_METHODS = [
    # Keeps payment method standardized across records
    ("cash", "Cash"),
    ("cheque", "Cheque"),
    ("bank_transfer", "Bank Transfer"),
    ("card", "Card"),
    ("other", "Other"),
]

PAYMENT_TYPES = [
    ("receipt", "Customer receipt"),      # DR cash, CR receivable
    ("disbursement", "Vendor payment"),   # DR payable, CR cash
]

PAYMENT_STATUS = [
    ("posted", "Posted"),
    ("void", "Void"),
]


# ---------- Payment ----------
class Payment(models.Model):
    """
    Money received against an invoice or paid against a bill.
    Exactly one of invoice / bill is set, matching payment_type.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    payment_number = models.CharField(max_length=64)  # "PAY-2025-0001"
    payment_type = models.CharField(max_length=20, choices=PAYMENT_TYPES)
    payment_date = models.DateField()
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    payment_method = models.CharField(
        max_length=20, choices=PAYMENT_METHODS, default="bank_transfer"
    )
    reference = models.CharField(max_length=200, blank=True, default="")

    # Cash / bank account on the other side of the entry
    cash_account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="+"
    )

    invoice = models.ForeignKey(
        Invoice,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    bill = models.ForeignKey(
        Bill,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payments",
    )

    status = models.CharField(max_length=10, choices=PAYMENT_STATUS, default="posted")
    journal_entry = models.ForeignKey(
        JournalEntry,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "payment_date"], name="pay_company_date"),
            models.Index(fields=["company", "invoice"], name="pay_company_invoice"),
            models.Index(fields=["company", "bill"], name="pay_company_bill"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "payment_number"],
                name="uq_payment_company_number",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_positive_amount",
            ),
        ]

    def __str__(self):
        return f"{self.payment_number} {self.amount} [{self.status}]"

    def clean(self):
        if self.amount is not None and self.amount <= Decimal("0"):
            raise ValidationError("Payment amount must be positive")

        # exactly one document, matching the payment direction
        if self.payment_type == "receipt" and (not self.invoice_id or self.bill_id):
            raise ValidationError("A customer receipt must reference one invoice")
        if self.payment_type == "disbursement" and (not self.bill_id or self.invoice_id):
            raise ValidationError("A vendor payment must reference one bill")

        # Prevent cross-company contamination
        for related in (self.invoice, self.bill, self.cash_account):
            if related is not None and related.company_id != self.company_id:
                raise ValidationError(
                    f"{related.__class__.__name__} must belong to the same company."
                )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
