from django.core.exceptions import ValidationError
from django.db import models
from ..managers import LedgerRowManager
from .account import Account
from .company import Company
from .journal import JournalEntry, JournalLine


# ---------- Ledger projection ----------
class LedgerRow(models.Model):
    """
    One row per posted journal line, in posting order.
    running_balance = previous row's running_balance + signed delta,
    signed on the account's normal side.
    Rows are append-only: voids add rows, they never edit or remove them.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # history must outlive any attempt to delete its parents → PROTECT
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="ledger_rows"
    )
    journal = models.ForeignKey(
        JournalEntry, on_delete=models.PROTECT, related_name="ledger_rows"
    )
    line = models.OneToOneField(
        JournalLine, on_delete=models.PROTECT, related_name="ledger_row"
    )

    # copied from the journal entry, reports filter on it
    entry_date = models.DateField()

    debit = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    credit = models.DecimalField(max_digits=18, decimal_places=2, default=0)
    running_balance = models.DecimalField(max_digits=18, decimal_places=2)

    description = models.CharField(max_length=400, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = LedgerRowManager()

    class Meta:
        indexes = [
            # latest row per account + range scans
            models.Index(fields=["account", "entry_date", "id"], name="lr_account_date_id"),
            models.Index(fields=["company", "entry_date"], name="lr_company_date"),
            models.Index(fields=["company", "journal"], name="lr_company_journal"),
        ]
        ordering = ("entry_date", "id")

    def __str__(self):
        return (
            f"{self.entry_date} {self.account.code} "
            f"D:{self.debit} C:{self.credit} = {self.running_balance}"
        )

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("Ledger rows are append-only.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Ledger rows are append-only.")
