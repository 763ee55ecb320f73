import logging
from enum import Enum

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, models, transaction
from django.utils import timezone

from ..exceptions import (ClosedPeriodError, InvalidTransitionError,
                          LockedPeriodError, NotFoundError, PostingFailedError)
from ..models import Account, AccountingPeriod, LedgerRow
from ..models.account import PROFIT_AND_LOSS_TYPES
from .accounts import ZERO, lock_accounts, money
from .audit_helper import log_action

logger = logging.getLogger(__name__)


class PeriodClass(str, Enum):
    NO_PERIOD = "no_period"
    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


# ----------------------------
# Gate used by posting and reversal
# ----------------------------
def period_for_date(company, day, for_update=False):
    # periods never overlap, so at most one matches
    qs = AccountingPeriod.objects.for_company(company).filter(
        start_date__lte=day, end_date__gte=day
    )
    if for_update:
        qs = qs.select_for_update()
    return qs.first()


def classify(company, day):
    period = period_for_date(company, day)
    if period is None:
        return PeriodClass.NO_PERIOD
    return PeriodClass(period.status)


def closed_posting_allowed(company, allow_closed_period=None):
    """per-call flag → company flag → settings default"""
    if allow_closed_period is not None:
        return allow_closed_period
    return company.closed_period_posting_allowed


def check_posting_allowed(company, day, allow_closed_period=None, for_update=False):
    """
    Raise for Locked periods (always) and for Closed periods when the
    effective policy forbids it. Returns the list of warnings otherwise.

    Inside the write transaction pass for_update=True: the period row
    stays locked until commit, so a close or lock waits for the posting.
    """
    period = period_for_date(company, day, for_update=for_update)
    if period is None or period.status == "open":
        return []
    if period.status == "locked":
        raise LockedPeriodError(period)
    if not closed_posting_allowed(company, allow_closed_period):
        raise ClosedPeriodError(period)
    return [
        f"Posting into closed period {period.name} "
        f"({period.start_date} to {period.end_date})"
    ]


# ----------------------------
# Period lifecycle
# ----------------------------
def create_period(company, *, name, start_date, end_date, period_type="monthly",
                  fiscal_year=None, notes=""):
    """Overlaps and inverted ranges are refused by AccountingPeriod.clean()."""
    period = AccountingPeriod.objects.create(
        company=company,
        name=name,
        start_date=start_date,
        end_date=end_date,
        period_type=period_type,
        fiscal_year=fiscal_year or end_date.year,
        notes=notes,
    )
    logger.info(
        "Accounting period %s created", name,
        extra={"company_id": company.pk, "period_id": period.pk},
    )
    return period


def _get_locked_period(company, period_id):
    try:
        return (
            AccountingPeriod.objects.for_company(company)
            .select_for_update()
            .get(pk=period_id)
        )
    except AccountingPeriod.DoesNotExist:
        raise NotFoundError(f"Accounting period {period_id} not found")


def _require_transition(period, new_status, verb):
    if not period.can_transition_to(new_status):
        raise InvalidTransitionError(
            f"Cannot {verb} period {period.name}: current status is {period.status}"
        )


def retained_earnings_account(company):
    """Equity account receiving net income at close; created on first use."""
    code = settings.LEDGER_RETAINED_EARNINGS_CODE
    account = Account.objects.for_company(company).filter(code=code).first()
    if account is None:
        account = Account.objects.create(
            company=company,
            code=code,
            name="Retained Earnings",
            ac_type="equity",
            normal_balance="credit",
            sub_type="Retained Earnings",
            cash_flow_category="financing",
        )
        logger.info(
            "Created Retained Earnings account",
            extra={"company_id": company.pk, "account_id": account.pk},
        )
    return account


def _closable_accounts(company):
    return (
        Account.objects.active(company)
        .filter(ac_type__in=PROFIT_AND_LOSS_TYPES)
        .order_by("code")
    )


def unclosed_accounts(company, as_of):
    """Codes of active revenue/expense accounts still carrying a balance as of a date."""
    sums = (
        LedgerRow.objects.for_company(company)
        .filter(account__ac_type__in=PROFIT_AND_LOSS_TYPES, account__is_active=True)
        .between(date_to=as_of)
        .order_by()
        .values("account__code")
        .annotate(debit=models.Sum("debit"), credit=models.Sum("credit"))
    )
    return [
        s["account__code"]
        for s in sums
        if abs((s["debit"] or ZERO) - (s["credit"] or ZERO)) >= settings.LEDGER_BALANCE_TOLERANCE
    ]


def build_closing_request(company, period):
    """
    One entry zeroing every revenue/expense balance as of period end
    into Retained Earnings. Returns (request or None, summary totals).
    """
    from .ledger import balance_as_of
    from .requests import PostingLine, PostingRequest, SourceDocument

    lines = []
    total_revenue = ZERO
    total_expenses = ZERO
    for account in _closable_accounts(company):
        balance = balance_as_of(account, period.end_date)
        if not balance:
            continue

        # natural-side amount: credit − debit for revenue, debit − credit for expense
        natural = balance if account.is_debit_normal == (account.ac_type == "expense") else -balance
        if account.ac_type == "revenue":
            total_revenue += natural
        else:
            total_expenses += natural

        # post the opposite of the balance on the account's own normal side
        if (balance > 0) == account.is_debit_normal:
            debit, credit = ZERO, abs(balance)
        else:
            debit, credit = abs(balance), ZERO
        lines.append(
            PostingLine(
                account_id=account.pk,
                debit=debit,
                credit=credit,
                description=f"Close {account.name} to Retained Earnings",
            )
        )

    net_income = money(total_revenue - total_expenses)
    summary = {
        "total_revenue": money(total_revenue),
        "total_expenses": money(total_expenses),
        "net_income": net_income,
    }
    if not lines:
        return None, summary

    retained = retained_earnings_account(company)
    lines.append(
        PostingLine(
            account_id=retained.pk,
            debit=-net_income if net_income < 0 else ZERO,
            credit=net_income if net_income > 0 else ZERO,
            description=f"Net {'income' if net_income >= 0 else 'loss'} for {period.name}",
        )
    )
    # revenue exactly cancelling expenses leaves a zero Retained Earnings line
    lines = [line for line in lines if line.debit or line.credit]

    request = PostingRequest(
        entry_date=period.end_date,
        lines=tuple(lines),
        reference=f"CLOSE-{period.name}",
        description=f"Closing entry for {period.name}",
        source=SourceDocument(type="closing", id=period.pk),
        is_closing=True,
    )
    return request, summary


def close_period(company, period_id, user=None):
    """Open → Closed, posting the closing entry in the same transaction."""
    from .posting import validate_request, write_entry

    try:
        with transaction.atomic():
            period = _get_locked_period(company, period_id)
            _require_transition(period, "closed", "close")

            # balances are read and zeroed under the same account locks
            retained = retained_earnings_account(company)
            lock_accounts(
                company,
                [a.pk for a in _closable_accounts(company)] + [retained.pk],
            )

            request, summary = build_closing_request(company, period)
            entry = None
            if request is not None:
                # a closing entry skips the closed-period policy, never the lock
                validate_request(company, request, allow_closed_period=True)
                entry = write_entry(company, user, request, allow_closed_period=True)
                period.closing_entries.add(entry)

            leftover = unclosed_accounts(company, period.end_date)
            if leftover:
                logger.error(
                    "Closing %s left balances on %s", period.name, ", ".join(leftover),
                    extra={"company_id": company.pk, "period_id": period.pk},
                )
                raise PostingFailedError(
                    f"Period close failed: accounts {', '.join(leftover)} still carry a balance"
                )

            period.status = "closed"
            period.closed_at = timezone.now()
            period.closed_by = user
            period.save()

            log_action(
                action="close",
                instance=period,
                user=user,
                company=company,
                changes={
                    "net_income": str(summary["net_income"]),
                    "closing_entry": entry.entry_number if entry else None,
                },
            )
    except (DatabaseError, ValidationError) as exc:
        logger.exception("Period close failed", extra={"period_id": period_id})
        raise PostingFailedError("Period close failed, nothing was written") from exc

    logger.info(
        "Period %s closed", period.name,
        extra={"company_id": company.pk, "net_income": str(summary["net_income"])},
    )
    return {
        "period_id": period.pk,
        "status": period.status,
        "closing_entry_id": entry.pk if entry else None,
        "closing_entry_number": entry.entry_number if entry else None,
        **summary,
    }


def reopen_period(company, period_id, user=None):
    """Closed → Open, voiding the closing entries (reversals dated on the closing date)."""
    from .reversal import void_journal_entry

    try:
        with transaction.atomic():
            period = _get_locked_period(company, period_id)
            _require_transition(period, "open", "reopen")

            voided = []
            for entry in period.closing_entries.filter(status="posted").order_by("id"):
                result = void_journal_entry(
                    company,
                    user,
                    entry.pk,
                    reversal_date=entry.entry_date,
                    allow_closed_period=True,
                )
                voided.append(result.reversal_number)

            period.status = "open"
            period.closed_at = None
            period.closed_by = None
            period.save()

            log_action(
                action="reopen",
                instance=period,
                user=user,
                company=company,
                changes={"reversals": voided},
            )
    except (DatabaseError, ValidationError) as exc:
        logger.exception("Period reopen failed", extra={"period_id": period_id})
        raise PostingFailedError("Period reopen failed, nothing was written") from exc

    logger.info("Period %s reopened", period.name, extra={"company_id": company.pk})
    return {"period_id": period.pk, "status": period.status, "reversal_numbers": voided}


def lock_period(company, period_id, user=None):
    """Closed → Locked. There is no unlock."""
    with transaction.atomic():
        period = _get_locked_period(company, period_id)
        _require_transition(period, "locked", "lock")
        period.status = "locked"
        period.save()
        log_action(action="lock", instance=period, user=user, company=company)

    logger.info("Period %s locked", period.name, extra={"company_id": company.pk})
    return {"period_id": period.pk, "status": period.status}


def delete_period(company, period_id, user=None):
    with transaction.atomic():
        period = _get_locked_period(company, period_id)
        if period.status != "open":
            raise InvalidTransitionError(
                f"Cannot delete period {period.name}: only open periods can be deleted"
            )
        log_action(
            action="delete",
            instance=period,
            user=user,
            company=company,
            changes={"name": period.name},
        )
        period.delete()

    logger.info("Period deleted", extra={"company_id": company.pk, "period_id": period_id})
    return {"period_id": period_id, "status": "deleted"}


PERIOD_ACTIONS = {
    "close": close_period,
    "reopen": reopen_period,
    "lock": lock_period,
    "delete": delete_period,
}


def transition_period(company, user, period_id, action):
    """Inbound period transition request: close | reopen | lock | delete."""
    handler = PERIOD_ACTIONS.get(action)
    if handler is None:
        raise InvalidTransitionError(f"Unknown period action {action!r}")
    return handler(company, period_id, user)
