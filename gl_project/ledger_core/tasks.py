import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def dispatch_entry_notifications(entry_id):
    """
    Post-commit fan-out for a posted entry (document e-mails, PDFs,
    webhooks live in receivers of journal_entry_posted).
    Failures are logged here and never reach the ledger.
    """
    # import models lazily to avoid circular imports at module import time
    from .models import JournalEntry

    try:
        entry = JournalEntry.objects.select_related("company").get(pk=entry_id)
    except JournalEntry.DoesNotExist:
        logger.warning("Notification skipped, entry %s is gone", entry_id)
        return None

    try:
        logger.info(
            "Journal entry %s committed",
            entry.entry_number,
            extra={
                "company_id": entry.company_id,
                "entry_id": entry.pk,
                "source_type": entry.source_type,
                "source_id": entry.source_id,
            },
        )
        return {"entry_id": entry.pk, "entry_number": entry.entry_number}
    except Exception:
        logger.exception("Notification dispatch failed", extra={"entry_id": entry_id})
        return None


@shared_task
def reconcile_company(company_id):
    from .models import Company
    from .services.reconciliation import reconcile_all, reconcile_subsidiaries

    company = Company.objects.get(pk=company_id)
    summary = reconcile_all(company)
    subsidiaries = reconcile_subsidiaries(company)
    # per-account details stay in the logs, the result backend gets the counts
    result = {k: v for k, v in summary.items() if k != "results"}
    result["subsidiaries_corrected"] = subsidiaries["corrected_count"]
    return result


@shared_task
def replay_company_running_balances(company_id):
    from .models import Company
    from .services.reconciliation import replay_running_balances

    company = Company.objects.get(pk=company_id)
    return replay_running_balances(company)
