from django.core.exceptions import ValidationError
from django.db.models.signals import post_delete, post_save, pre_delete
from django.dispatch import Signal, receiver

from .models import (Account, AccountingPeriod, Bill, BillLine, Invoice,
                     InvoiceLine, JournalEntry, LedgerRow)

# Fired after commit, never inside the posting transaction.
# kwargs: entry_id, company_id
journal_entry_posted = Signal()
# kwargs: entry_id, reversal_id, company_id
journal_entry_voided = Signal()


"""Block deletion if account has ever been posted to."""


@receiver(pre_delete, sender=Account)
def prevent_delete_account_with_ledger_rows(sender, instance, **kwargs):
    if LedgerRow.objects.filter(account=instance).exists():
        raise ValidationError("Cannot delete an account with ledger history.")


"""Posted and void entries stay forever; only drafts may go."""


@receiver(pre_delete, sender=JournalEntry)
def prevent_delete_posted_journal(sender, instance, **kwargs):
    if instance.status != "draft":
        raise ValidationError("Cannot delete a posted or void journal entry.")


# queryset.delete() bypasses LedgerRow.delete(), this does not
@receiver(pre_delete, sender=LedgerRow)
def prevent_delete_ledger_row(sender, instance, **kwargs):
    raise ValidationError("Ledger rows are append-only.")


@receiver(pre_delete, sender=AccountingPeriod)
def prevent_delete_non_open_period(sender, instance, **kwargs):
    if instance.status != "open":
        raise ValidationError("Only open periods can be deleted.")


"""
    Recalculate document totals when a line is added/updated/removed.
    Only drafts carry editable lines.
"""


@receiver((post_save, post_delete), sender=InvoiceLine)
def invoice_line_changed(sender, instance, **kwargs):
    inv = Invoice.objects.filter(pk=instance.invoice_id).first()
    if inv is None or inv.status != "draft":
        return
    inv.recalc_total()
    inv.outstanding_amount = inv.total
    inv.save(update_fields=["total", "outstanding_amount"])


@receiver((post_save, post_delete), sender=BillLine)
def bill_line_changed(sender, instance, **kwargs):
    bill = Bill.objects.filter(pk=instance.bill_id).first()
    if bill is None or bill.status != "draft":
        return
    bill.recalc_total()
    bill.outstanding_amount = bill.total
    bill.save(update_fields=["total", "outstanding_amount"])
