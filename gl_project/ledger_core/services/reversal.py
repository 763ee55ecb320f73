import logging
from dataclasses import dataclass

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from ..exceptions import InvalidTransitionError, NotFoundError, PostingFailedError
from ..models import JournalEntry
from .audit_helper import log_action
from .posting import request_from_entry, validate_request, write_entry
from .requests import PostingRequest, SourceDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoidResult:
    original_id: int
    reversal_id: int
    reversal_number: str
    warnings: tuple = ()


def build_reversal_request(entry, reversal_date):
    """Line-wise inverse of a posted entry."""
    original = request_from_entry(entry)
    return PostingRequest(
        entry_date=reversal_date,
        lines=tuple(line.inverted() for line in original.lines),
        reference=f"REV-{entry.entry_number}",
        description=f"Reversal of {entry.entry_number}"
        + (f": {entry.description}" if entry.description else ""),
        source=SourceDocument(type="reversal", id=entry.pk),
        # reversing a closing entry is itself part of the close bookkeeping
        is_closing=entry.is_closing,
        reverses_id=entry.pk,
    )


def void_journal_entry(company, user, entry_id, *, reversal_date=None,
                       allow_closed_period=None):
    """
    Posted → Void.
    Posts the mirrored entry and flags the original, in one atomic block.
    The original's lines and ledger rows are never touched.
    Document services call this inside their own atomic block so the
    subsidiary balance moves together with the void.
    """
    reversal_date = reversal_date or timezone.localdate()

    try:
        with transaction.atomic():
            try:
                entry = (
                    JournalEntry.objects.for_company(company)
                    .select_for_update()
                    .get(pk=entry_id)
                )
            except JournalEntry.DoesNotExist:
                raise NotFoundError(f"Journal entry {entry_id} not found")

            if not entry.can_transition_to("void"):
                raise InvalidTransitionError(
                    f"Cannot void journal entry {entry.entry_number}: it is {entry.status}"
                )

            request = build_reversal_request(entry, reversal_date)
            warnings = validate_request(
                company, request, allow_closed_period=allow_closed_period
            )
            reversal = write_entry(
                company, user, request, allow_closed_period=allow_closed_period
            )

            entry.status = "void"
            entry.voided_at = timezone.now()
            entry.voided_by = user
            entry.save(update_fields=["status", "voided_at", "voided_by", "updated_at"])

            log_action(
                action="void",
                instance=entry,
                user=user,
                company=company,
                changes={"reversal": reversal.entry_number},
            )
            transaction.on_commit(
                lambda: after_commit_voided(entry.pk, reversal.pk, company.pk),
                robust=True,
            )
    except (DatabaseError, ValidationError) as exc:
        logger.exception("Void failed", extra={"entry_id": entry_id})
        raise PostingFailedError("Void failed, nothing was written") from exc

    logger.info(
        "Journal entry %s voided by %s",
        entry.entry_number,
        reversal.entry_number,
        extra={"company_id": company.pk, "entry_id": entry.pk},
    )
    return VoidResult(
        original_id=entry.pk,
        reversal_id=reversal.pk,
        reversal_number=reversal.entry_number,
        warnings=tuple(warnings),
    )


def after_commit_voided(entry_id, reversal_id, company_id):
    from ..signals import journal_entry_voided

    journal_entry_voided.send_robust(
        sender=JournalEntry,
        entry_id=entry_id,
        reversal_id=reversal_id,
        company_id=company_id,
    )
