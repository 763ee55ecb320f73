"""
Posting engine.

Validation runs first and writes nothing. The write phase runs in one
transaction.atomic() block: lock the period row and re-check it, lock
accounts, allocate the entry number, create entry + lines, append
ledger rows, move cached balances.
Anything the database rejects in there surfaces as PostingFailedError
and leaves no trace. Notifications run only after commit.
"""
import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from ..exceptions import (InsufficientLinesError, InvalidLineError,
                          InvalidTransitionError, NotFoundError,
                          PostingFailedError, UnbalancedEntryError,
                          UnknownAccountError)
from ..models import JournalEntry, JournalLine
from .accounts import lock_accounts, resolve_account
from .audit_helper import log_action
from .ledger import append_rows
from .numbering import allocate_entry_number
from .periods import check_posting_allowed
from .requests import PostingLine, PostingRequest, SourceDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostingResult:
    entry_id: int
    entry_number: str
    status: str
    warnings: tuple = field(default_factory=tuple)


# ----------------------------
# Validation (no writes)
# ----------------------------
def validate_lines(request: PostingRequest):
    if len(request.lines) < 2:
        raise InsufficientLinesError("A journal entry needs at least two lines")

    for i, line in enumerate(request.lines, start=1):
        if line.debit < 0 or line.credit < 0:
            raise InvalidLineError(f"Line {i}: amounts cannot be negative")
        # exactly one side carries the amount
        if (line.debit > 0) == (line.credit > 0):
            raise InvalidLineError(
                f"Line {i}: enter either a debit or a credit amount"
            )

    total_debit = request.total_debit
    total_credit = request.total_credit
    if abs(total_debit - total_credit) >= settings.LEDGER_BALANCE_TOLERANCE:
        raise UnbalancedEntryError(total_debit, total_credit)


def validate_accounts(company, request: PostingRequest):
    for account_id in request.account_ids:
        resolve_account(company, account_id, require_active=True)


def validate_request(company, request: PostingRequest, *, check_period=True,
                     allow_closed_period=None):
    """Run every check the posting engine makes. Returns period warnings."""
    validate_lines(request)
    validate_accounts(company, request)
    if not check_period:
        return []
    return check_posting_allowed(
        company, request.entry_date, allow_closed_period=allow_closed_period
    )


def request_from_entry(entry):
    """Rebuild a PostingRequest from a stored (draft) entry."""
    source = None
    if entry.source_id is not None and entry.source_type != "manual":
        source = SourceDocument(type=entry.source_type, id=entry.source_id)
    return PostingRequest(
        entry_date=entry.entry_date,
        lines=tuple(
            PostingLine(
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
            )
            for line in entry.lines.order_by("line_no", "id")
        ),
        reference=entry.reference,
        description=entry.description,
        source=source,
        is_closing=entry.is_closing,
        reverses_id=entry.reverses_id,
    )


# ----------------------------
# Write phase (inside transaction.atomic)
# ----------------------------
def _lock_and_check(company, request):
    """Lock touched accounts in pk order, re-check them under the lock."""
    accounts = lock_accounts(company, request.account_ids)
    for account_id in request.account_ids:
        account = accounts.get(account_id)
        if account is None:
            raise UnknownAccountError(account_id)
        if not account.is_active:
            raise UnknownAccountError(account_id, reason="is inactive")
    return accounts


def _mark_posted(company, user, entry, accounts):
    entry.status = "posted"
    entry.posted_at = timezone.now()
    entry.save(update_fields=["status", "posted_at", "updated_at"])

    # rows and cached balances move with the status flip
    append_rows(entry, accounts)

    debit, _credit = entry.compute_totals()
    log_action(
        action="post",
        instance=entry,
        user=user,
        company=company,
        changes={"entry_number": entry.entry_number, "total": str(debit)},
    )
    transaction.on_commit(
        lambda: after_commit_posted(entry.pk, company.pk), robust=True
    )


def _lock_period(company, day, allow_closed_period):
    """Period gate again, this time holding the period row until commit."""
    return check_posting_allowed(
        company, day, allow_closed_period=allow_closed_period, for_update=True
    )


def write_entry(company, user, request: PostingRequest, *, post=True,
                allow_closed_period=None):
    """
    Persist a validated request. Caller owns the atomic block.
    Lines can only be attached while the entry is a draft,
    so the entry is born Draft and flipped to Posted afterwards.
    Lock order: period row first, then accounts in pk order.
    """
    if post:
        _lock_period(company, request.entry_date, allow_closed_period)
    accounts = _lock_and_check(company, request)

    entry = JournalEntry.objects.create(
        company=company,
        entry_number=allocate_entry_number(company, request.entry_date),
        entry_date=request.entry_date,
        reference=request.reference,
        description=request.description,
        status="draft",
        source_type=request.source.type if request.source else "manual",
        source_id=request.source.id if request.source else None,
        reverses_id=request.reverses_id,
        is_closing=request.is_closing,
        created_by=user,
    )
    JournalLine.objects.bulk_create(
        [
            JournalLine(
                company=company,
                journal=entry,
                account_id=line.account_id,
                line_no=i,
                description=line.description,
                debit=line.debit,
                credit=line.credit,
            )
            for i, line in enumerate(request.lines, start=1)
        ]
    )

    if post:
        _mark_posted(company, user, entry, accounts)
    return entry


def post_journal_entry(company, user, request, *, as_draft=False,
                       allow_closed_period=None):
    """
    Validate and post (or save as draft) one journal entry.

    `request` is a PostingRequest or an inbound dict.
    Drafts skip the period gate, it runs when the draft is posted.
    """
    if isinstance(request, dict):
        request = PostingRequest.from_payload(request)

    warnings = validate_request(
        company,
        request,
        check_period=not as_draft,
        allow_closed_period=allow_closed_period,
    )

    try:
        with transaction.atomic():
            entry = write_entry(
                company, user, request, post=not as_draft,
                allow_closed_period=allow_closed_period,
            )
    except (DatabaseError, ValidationError) as exc:
        logger.exception(
            "Journal entry write failed",
            extra={"company_id": company.pk, "entry_date": str(request.entry_date)},
        )
        raise PostingFailedError("Posting failed, nothing was written") from exc

    logger.info(
        "Journal entry %s %s",
        entry.entry_number,
        entry.status,
        extra={"company_id": company.pk, "entry_id": entry.pk},
    )
    for warning in warnings:
        logger.warning("%s", warning, extra={"company_id": company.pk, "entry_id": entry.pk})

    return PostingResult(
        entry_id=entry.pk,
        entry_number=entry.entry_number,
        status=entry.status,
        warnings=tuple(warnings),
    )


def post_draft_entry(company, user, entry_id, *, allow_closed_period=None):
    """Draft → Posted with the same checks as a direct post."""
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

            if not entry.can_transition_to("posted"):
                raise InvalidTransitionError(
                    f"Cannot post journal entry {entry.entry_number}: it is {entry.status}"
                )

            request = request_from_entry(entry)
            validate_request(company, request, check_period=False)
            warnings = _lock_period(company, request.entry_date, allow_closed_period)
            accounts = _lock_and_check(company, request)
            _mark_posted(company, user, entry, accounts)
    except (DatabaseError, ValidationError) as exc:
        logger.exception("Draft posting failed", extra={"entry_id": entry_id})
        raise PostingFailedError("Posting failed, nothing was written") from exc

    logger.info(
        "Draft journal entry %s posted",
        entry.entry_number,
        extra={"company_id": company.pk, "entry_id": entry.pk},
    )
    for warning in warnings:
        logger.warning("%s", warning, extra={"company_id": company.pk, "entry_id": entry.pk})
    return PostingResult(
        entry_id=entry.pk,
        entry_number=entry.entry_number,
        status=entry.status,
        warnings=tuple(warnings),
    )


# ----------------------------
# Post-commit fan-out
# ----------------------------
def after_commit_posted(entry_id, company_id):
    # import lazily to avoid circular imports at module import time
    from ..signals import journal_entry_posted
    from ..tasks import dispatch_entry_notifications

    journal_entry_posted.send_robust(
        sender=JournalEntry, entry_id=entry_id, company_id=company_id
    )
    dispatch_entry_notifications.delay(entry_id)
