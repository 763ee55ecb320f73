import logging
from decimal import Decimal

from django.db.models import F

from ..exceptions import NotFoundError, UnknownAccountError
from ..models import Account
from ..models.account import default_normal_balance

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Coerce to Decimal with 2 decimal places (None → 0.00)."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def normal_balance_for(ac_type):
    return default_normal_balance(ac_type)


def signed_amount(normal_balance, debit, credit) -> Decimal:
    """
    The one sign rule of the ledger.
    Debit-normal accounts grow with debits, credit-normal with credits.
    """
    debit = money(debit)
    credit = money(credit)
    if normal_balance == "debit":
        return debit - credit
    return credit - debit


def resolve_account(company, account_id, *, for_update=False, require_active=False):
    """
    Fetch an account of this company.
    Raises UnknownAccountError for ids owned by another company too.
    """
    qs = Account.objects.for_company(company)
    if for_update:
        qs = qs.select_for_update()
    try:
        account = qs.get(pk=account_id)
    except (Account.DoesNotExist, ValueError, TypeError):
        raise UnknownAccountError(account_id)
    if require_active and not account.is_active:
        raise UnknownAccountError(account_id, reason="is inactive")
    return account


def get_account(company, account_id):
    """Query-surface lookup: NotFoundError instead of UnknownAccountError."""
    try:
        return resolve_account(company, account_id)
    except UnknownAccountError:
        raise NotFoundError(f"Account {account_id} not found")


def lock_accounts(company, account_ids):
    """
    select_for_update every account in ascending pk order.
    A fixed order keeps two postings touching the same
    accounts from deadlocking each other.
    """
    ids = sorted(set(account_ids))
    locked = {
        acc.pk: acc
        for acc in Account.objects.for_company(company)
        .select_for_update()
        .filter(pk__in=ids)
        .order_by("pk")
    }
    return locked


def apply_delta(account, delta):
    """Add a signed amount to the cached balance. Caller holds the row lock."""
    if not delta:
        return
    Account.objects.filter(pk=account.pk).update(balance=F("balance") + delta)


def create_account(company, *, code, name, ac_type, normal_balance="",
                   sub_type="", cash_flow_category="", parent=None,
                   is_control_account=False):
    account = Account(
        company=company,
        code=code,
        name=name,
        ac_type=ac_type,
        normal_balance=normal_balance or normal_balance_for(ac_type),
        sub_type=sub_type,
        cash_flow_category=cash_flow_category,
        parent=parent,
        is_control_account=is_control_account,
    )
    account.full_clean()
    account.save()
    logger.info(
        "Account created",
        extra={"company_id": company.pk, "code": code, "ac_type": ac_type},
    )
    return account
