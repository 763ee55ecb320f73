import logging
from decimal import Decimal

from ..models import Account, LedgerRow
from .accounts import ZERO, apply_delta, get_account, signed_amount

logger = logging.getLogger(__name__)


# ----------------------------
# Write side
# ----------------------------
def append_rows(entry, accounts):
    """
    Project a posted entry into ledger rows.

    `accounts` maps account pk → Account already locked with
    select_for_update by the caller, so reading the latest row and
    inserting the next one cannot interleave with another posting.
    Returns the created rows.
    """
    rows = []
    for line in entry.lines.order_by("line_no", "id"):
        account = accounts[line.account_id]
        delta = signed_amount(account.normal_balance, line.debit, line.credit)

        latest = LedgerRow.objects.latest_for(account)
        previous = latest.running_balance if latest else ZERO

        rows.append(
            LedgerRow.objects.create(
                company_id=entry.company_id,
                account=account,
                journal=entry,
                line=line,
                entry_date=entry.entry_date,
                debit=line.debit,
                credit=line.credit,
                running_balance=previous + delta,
                description=line.description or entry.description[:400],
            )
        )
        # cached balance moves in the same transaction as the row
        apply_delta(account, delta)
    return rows


# ----------------------------
# Read side
# ----------------------------
def rows_for_account(company, account, date_from=None, date_to=None):
    """Oldest first."""
    return (
        LedgerRow.objects.for_company(company)
        .for_account(account)
        .between(date_from, date_to)
        .chronological()
    )


def rows_for_journal_entry(company, entry):
    # drafts have no rows, the queryset is simply empty
    return LedgerRow.objects.for_company(company).filter(journal=entry).order_by("id")


def balance_as_of(account, as_of=None) -> Decimal:
    """Signed sum of the account's rows dated on or before as_of (0.00 without rows)."""
    debit, credit = (
        LedgerRow.objects.for_account(account).between(date_to=as_of).totals()
    )
    return signed_amount(account.normal_balance, debit, credit)


def _account_header(account):
    return {
        "id": account.pk,
        "code": account.code,
        "name": account.name,
        "ac_type": account.ac_type,
        "normal_balance": account.normal_balance,
    }


def _row_dict(row):
    return {
        "id": row.pk,
        "entry_date": row.entry_date,
        "journal_id": row.journal_id,
        "entry_number": row.journal.entry_number,
        "description": row.description,
        "debit": row.debit,
        "credit": row.credit,
        "running_balance": row.running_balance,
    }


def account_ledger(company, account_id, date_from=None, date_to=None):
    """Account header, its rows in the range and a summary."""
    account = get_account(company, account_id)
    rows = list(
        rows_for_account(company, account, date_from, date_to).select_related("journal")
    )
    total_debit = sum((r.debit for r in rows), ZERO)
    total_credit = sum((r.credit for r in rows), ZERO)

    return {
        "account": _account_header(account),
        "rows": [_row_dict(r) for r in rows],
        "summary": {
            "total_debit": total_debit,
            "total_credit": total_credit,
            "closing_balance": rows[-1].running_balance if rows else ZERO,
            "row_count": len(rows),
        },
    }


def account_balance(company, account_id, as_of=None):
    account = get_account(company, account_id)
    return {
        "account": _account_header(account),
        "as_of": as_of,
        "balance": balance_as_of(account, as_of),
    }


def general_ledger(company, date_from=None, date_to=None):
    """Every account with activity in the range, each with its rows."""
    account_ids = (
        LedgerRow.objects.for_company(company)
        .between(date_from, date_to)
        .order_by()
        .values_list("account_id", flat=True)
        .distinct()
    )
    accounts = Account.objects.for_company(company).filter(pk__in=account_ids).order_by("code")
    return [account_ledger(company, acc.pk, date_from, date_to) for acc in accounts]
