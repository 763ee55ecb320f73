from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .company import Company

# Choice Lists
AC_TYPES = [
    # Used in Account model to classify general ledger accounts
    ("asset", "Asset"),
    ("liability", "Liability"),
    ("equity", "Equity"),
    ("revenue", "Revenue"),
    ("expense", "Expense"),
]

# Define whether the account normally increases
# on the debit side or credit side
NORMAL_BALANCE = [
    ("debit", "Debit"),
    ("credit", "Credit"),
]

# Which section of the cash flow statement a balance-sheet account feeds
CASH_FLOW_CATEGORIES = [
    ("", "Inferred"),
    ("cash", "Cash"),
    ("operating", "Operating"),
    ("investing", "Investing"),
    ("financing", "Financing"),
]

BALANCE_SHEET_TYPES = ("asset", "liability", "equity")
PROFIT_AND_LOSS_TYPES = ("revenue", "expense")


def default_normal_balance(ac_type):
    # Assets/Expenses → Debit, Liabilities/Equity/Revenue → Credit.
    return "debit" if ac_type in ("asset", "expense") else "credit"


class Account(models.Model):
    """
    Ledger account in the Chart of Accounts.
    - code is unique per company
    - ac_type: determines reporting -BS vs P&L
    - normal_balance: sign used for every balance of this account
      (contra accounts carry the opposite side of their type)
    - balance: cached running total, the ledger rows are the source of truth
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    code = models.CharField(max_length=32)
    name = models.CharField(max_length=200)

    ac_type = models.CharField(max_length=10, choices=AC_TYPES)

    # Left blank → filled from ac_type in save()
    normal_balance = models.CharField(
        max_length=6,
        choices=NORMAL_BALANCE,
        blank=True,
    )

    # Reporting tag, e.g. "Current Assets", "Fixed Assets",
    # "Long-term Liabilities", "Operating Revenue", "Cost of Sales"
    sub_type = models.CharField(max_length=60, blank=True, default="")

    # Blank → inferred from ac_type/sub_type by the cash flow report
    cash_flow_category = models.CharField(
        max_length=10,
        choices=CASH_FLOW_CATEGORIES,
        blank=True,
        default="",
    )

    # Optional hierarchy (1000 Cash, 1001 Petty Cash, 1002 Bank Account)
    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )

    # "soft deactivate" accounts: stop new postings without deleting history
    is_active = models.BooleanField(default=True)

    # marker for accounts that must reconcile with subledgers (AR/AP)
    is_control_account = models.BooleanField(default=False)

    # Denormalized balance, signed on the normal side.
    # Written only by the posting engine and the reconciliation engine.
    balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            # Trial Balance, P&L, Balance Sheet group by type
            models.Index(fields=["company", "ac_type"], name="acct_company_type"),
            models.Index(fields=["company", "code"], name="acct_company_code"),
            models.Index(fields=["company", "parent"], name="acct_company_parent"),
        ]

        # Codes repeat across companies but must be unique within one
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_account_code"
            )
        ]

        ordering = ("company", "code")

    def __str__(self):
        return f"{self.company.slug}:{self.code} – {self.name}"

    @property
    def is_debit_normal(self):
        return self.normal_balance == "debit"

    def clean(self):
        """Enforce company consistency (multi-tenancy)"""
        if self.parent and self.parent.company_id != self.company_id:
            raise ValidationError(
                "Parent & child accounts must belong to the same company"
            )

    def save(self, *args, **kwargs):
        if not self.normal_balance:
            self.normal_balance = default_normal_balance(self.ac_type)

        if not self.pk:
            return super().save(*args, **kwargs)

        # Can't disable accounts that already carry ledger history
        old = Account.objects.filter(pk=self.pk).first()
        if old and old.is_active and not self.is_active:
            from .ledger import LedgerRow

            if LedgerRow.objects.filter(account=self).exists():
                raise ValidationError(
                    "Cannot disable an account that has ledger history."
                )
        return super().save(*args, **kwargs)
