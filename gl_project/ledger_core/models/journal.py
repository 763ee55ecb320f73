from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company

JOURNAL_STATUS = [
    ("draft", "Draft"),    # still editable, no ledger rows
    ("posted", "Posted"),  # finalized, ledger rows written
    ("void", "Void"),      # reversed by a mirrored entry
]

# Allowed status changes; "void" is terminal
JOURNAL_TRANSITIONS = {
    "draft": ["posted"],
    "posted": ["void"],
    "void": [],
}

SOURCE_TYPES = [
    ("manual", "Manual"),
    ("invoice", "Invoice"),
    ("bill", "Bill"),
    ("payment", "Payment"),
    ("closing", "Period closing"),
    ("reversal", "Reversal"),
]

# Fields that may still change once an entry is posted
POSTED_MUTABLE_FIELDS = {"status", "voided_at", "voided_by", "updated_at"}


# ---------- Journal (Header) & JournalLine ----------
class JournalEntry(models.Model):  # One balanced accounting transaction
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # "JE-2025-0001", allocated inside the posting transaction
    entry_number = models.CharField(max_length=40)
    entry_date = models.DateField()
    reference = models.CharField(max_length=200, blank=True, default="")
    description = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=10,
        choices=JOURNAL_STATUS,
        default="draft",
    )

    # Optional link back to the document that produced this entry.
    # The ledger never reads the document itself.
    source_type = models.CharField(
        max_length=20, choices=SOURCE_TYPES, default="manual"
    )
    source_id = models.BigIntegerField(null=True, blank=True)

    # Set on reversal entries, points at the entry being voided
    reverses = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversals",
    )
    # Period-closing entries (and their reversals) are left out of P&L reports
    is_closing = models.BooleanField(default=False)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    posted_at = models.DateTimeField(null=True, blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "entry_date"], name="je_company_date"),
            models.Index(fields=["company", "status"], name="je_company_status"),
            models.Index(fields=["company", "source_type", "source_id"], name="je_company_source"),
        ]

        constraints = [
            # Duplicate entry numbers are a correctness failure
            models.UniqueConstraint(
                fields=["company", "entry_number"], name="uq_je_company_number"
            )
        ]

    def __str__(self):
        return f"{self.entry_number} {self.entry_date} [{self.status}]"

    # Aggregate all debit and credit amounts across entry's lines
    def compute_totals(self):
        """Return debits, credits sums for lines"""
        aggs = self.lines.aggregate(
            total_debit=models.Sum("debit"),
            total_credit=models.Sum("credit"),
        )
        return (
            aggs["total_debit"] or Decimal("0.00"),
            aggs["total_credit"] or Decimal("0.00"),
        )

    # True if double-entry rule holds: total debits = total credits
    def is_balanced(self):
        debit, credit = self.compute_totals()
        return abs(debit - credit) < settings.LEDGER_BALANCE_TOLERANCE

    def can_transition_to(self, new_status):
        return new_status in JOURNAL_TRANSITIONS.get(self.status, [])

    def save(self, *args, **kwargs):
        if self.pk:
            orig = JournalEntry.objects.filter(pk=self.pk).first()
            if orig and orig.status != "draft":
                if orig.status == "posted" and self.status == "draft":
                    raise ValidationError("Cannot unpost a posted journal")
                if orig.status == "void" and self.status != "void":
                    raise ValidationError("A void journal entry is final")
                # Posted entries are immutable except for the void flag
                update_fields = kwargs.get("update_fields")
                if update_fields is None or not set(update_fields) <= POSTED_MUTABLE_FIELDS:
                    for field in ("entry_date", "entry_number", "description",
                                  "reference", "company_id"):
                        if getattr(orig, field) != getattr(self, field):
                            raise ValidationError(
                                "Cannot modify a posted JournalEntry. It is immutable."
                            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.status != "draft":
            raise ValidationError(
                "Posted or void journal entries cannot be deleted; void them instead."
            )
        return super().delete(*args, **kwargs)


class JournalLine(models.Model):  # Stores Lines ( credits / debits )
    """
    Each line belongs to a journal entry and to a GL account.
    Exactly one of debit/credit is positive.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    journal = models.ForeignKey(
        JournalEntry,
        on_delete=models.CASCADE,
        related_name="lines",
    )

    # can't delete account if lines exist → PROTECT
    account = models.ForeignKey(Account, on_delete=models.PROTECT)

    # keeps the caller's ordering
    line_no = models.PositiveIntegerField(default=0)

    description = models.CharField(max_length=400, blank=True, default="")

    debit = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    credit = models.DecimalField(max_digits=18, decimal_places=2, default=0)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "account"], name="jl_company_account"),
            models.Index(fields=["company", "journal"], name="jl_company_journal"),
        ]
        ordering = ("journal", "line_no", "id")

        constraints = [
            models.CheckConstraint(
                condition=(models.Q(debit__gte=0) & models.Q(credit__gte=0)),
                name="jl_non_negative_amounts",
            ),
            models.CheckConstraint(
                condition=~(models.Q(debit=0) & models.Q(credit=0)),
                name="jl_debit_or_credit_nonzero",
            ),
        ]

    def __str__(self):
        return f"{self.journal_id} | {self.account.code} | D:{self.debit} C:{self.credit}"

    def clean(self):
        if self.debit < 0 or self.credit < 0:
            raise ValidationError("Debit and credit must be >= 0")
        if self.debit == 0 and self.credit == 0:
            raise ValidationError(
                "JournalLine requires a non-0 amount on either debit or credit"
            )
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("JournalLine.account must belong to the same company.")

    def save(self, *args, **kwargs):
        # Lines of a posted/void journal are frozen
        if self.journal_id and JournalEntry.objects.filter(
            pk=self.journal_id
        ).exclude(status="draft").exists():
            raise ValidationError(
                "Cannot add or modify JournalLine: parent journal is not a draft."
            )
        if not self.company_id and self.journal_id:
            self.company_id = self.journal.company_id
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if JournalEntry.objects.filter(
            pk=self.journal_id
        ).exclude(status="draft").exists():
            raise ValidationError(
                "Cannot delete JournalLine: parent JournalEntry is not a draft."
            )
        return super().delete(*args, **kwargs)


class EntrySequence(models.Model):
    """
    Per company+year counter behind entry / document numbers.
    Locked with select_for_update inside the posting transaction.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # "JE", "INV", "BILL", "PAY"
    prefix = models.CharField(max_length=10)
    year = models.PositiveIntegerField()
    last_value = models.PositiveIntegerField(default=0)

    objects = TenantManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "prefix", "year"], name="uq_entry_sequence"
            )
        ]

    def __str__(self):
        return f"{self.company_id} {self.prefix}-{self.year}: {self.last_value}"
