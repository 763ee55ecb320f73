"""
Financial statements.

Every figure is derived from LedgerRow + Account only; documents are
never read. Amounts are Decimals at 2 places.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import models

from ..exceptions import InvalidPostingRequestError
from ..models import Account, LedgerRow
from ..models.account import BALANCE_SHEET_TYPES, PROFIT_AND_LOSS_TYPES
from .accounts import ZERO, signed_amount

logger = logging.getLogger(__name__)


def _is_balanced(difference):
    return abs(difference) < settings.LEDGER_BALANCE_TOLERANCE


def _check_range(date_from, date_to):
    if date_from and date_to and date_from > date_to:
        raise InvalidPostingRequestError("date_from must not be after date_to")


def activity(company, *, date_from=None, date_to=None, exclude_closing=False):
    """
    {account_id: (debit_sum, credit_sum)} for rows in the range.
    Period-closing entries can be left out for P&L style reports.
    """
    qs = LedgerRow.objects.for_company(company).between(date_from, date_to)
    if exclude_closing:
        qs = qs.filter(journal__is_closing=False)
    sums = (
        qs.order_by()
        .values("account_id")
        .annotate(debit=models.Sum("debit"), credit=models.Sum("credit"))
    )
    return {
        s["account_id"]: (s["debit"] or ZERO, s["credit"] or ZERO) for s in sums
    }


def _accounts(company, ids):
    return Account.objects.for_company(company).filter(pk__in=ids).order_by("code")


def _line(account, amount, **extra):
    return {
        "account_id": account.pk,
        "code": account.code,
        "name": account.name,
        "sub_type": account.sub_type,
        "amount": amount,
        **extra,
    }


def _group(lines):
    return {"accounts": lines, "total": sum((l["amount"] for l in lines), ZERO)}


def _has(sub_type, *needles):
    sub = (sub_type or "").lower()
    return any(n in sub for n in needles)


# ----------------------------
# Trial balance
# ----------------------------
def trial_balance(company, as_of):
    """
    Every account with activity on or before as_of, its balance shown
    on its natural side; a negative balance moves to the other column.
    """
    sums = activity(company, date_to=as_of)
    lines = []
    total_debit = ZERO
    total_credit = ZERO

    for account in _accounts(company, sums.keys()):
        debit, credit = sums[account.pk]
        balance = signed_amount(account.normal_balance, debit, credit)
        on_debit_side = (balance >= 0) == account.is_debit_normal
        debit_col = abs(balance) if on_debit_side else ZERO
        credit_col = ZERO if on_debit_side else abs(balance)
        total_debit += debit_col
        total_credit += credit_col
        lines.append(
            {
                "account_id": account.pk,
                "code": account.code,
                "name": account.name,
                "ac_type": account.ac_type,
                "normal_balance": account.normal_balance,
                "debit": debit_col,
                "credit": credit_col,
            }
        )

    difference = total_debit - total_credit
    return {
        "as_of": as_of,
        "accounts": lines,
        "totals": {
            "total_debit": total_debit,
            "total_credit": total_credit,
            "difference": difference,
        },
        "balanced": _is_balanced(difference),
    }


# ----------------------------
# Balance sheet
# ----------------------------
def balance_sheet(company, as_of):
    """
    Assets = Liabilities + Equity as of a date.
    Revenue/expense not yet closed shows up as current earnings
    inside equity, so the equation holds before and after a close.
    """
    sums = activity(company, date_to=as_of)
    assets = {"current": [], "fixed": [], "other": []}
    liabilities = {"current": [], "long_term": [], "other": []}
    equity = []
    current_earnings = ZERO

    for account in _accounts(company, sums.keys()):
        debit, credit = sums[account.pk]
        if account.ac_type == "asset":
            # contra assets (accumulated depreciation) come out negative
            amount = debit - credit
            if _has(account.sub_type, "fixed", "non-current"):
                key = "fixed"
            elif _has(account.sub_type, "current", "cash", "bank", "receivable", "inventory"):
                key = "current"
            else:
                key = "other"
            assets[key].append(_line(account, amount))
        elif account.ac_type == "liability":
            amount = credit - debit
            if _has(account.sub_type, "long-term", "long term", "non-current"):
                key = "long_term"
            elif _has(account.sub_type, "current"):
                key = "current"
            else:
                key = "other"
            liabilities[key].append(_line(account, amount))
        elif account.ac_type == "equity":
            equity.append(_line(account, credit - debit))
        else:
            # revenue adds, expense subtracts
            current_earnings += credit - debit

    asset_groups = {k: _group(v) for k, v in assets.items()}
    liability_groups = {k: _group(v) for k, v in liabilities.items()}
    total_assets = sum((g["total"] for g in asset_groups.values()), ZERO)
    total_liabilities = sum((g["total"] for g in liability_groups.values()), ZERO)
    equity_group = _group(equity)
    total_equity = equity_group["total"] + current_earnings
    difference = total_assets - (total_liabilities + total_equity)

    return {
        "as_of": as_of,
        "assets": {**asset_groups, "total": total_assets},
        "liabilities": {**liability_groups, "total": total_liabilities},
        "equity": {
            "accounts": equity_group["accounts"],
            "current_earnings": current_earnings,
            "total": total_equity,
        },
        "equation": {
            "assets": total_assets,
            "liabilities_and_equity": total_liabilities + total_equity,
            "difference": difference,
        },
        "balanced": _is_balanced(difference),
    }


# ----------------------------
# Income statement
# ----------------------------
def _revenue_group(account):
    if not account.is_debit_normal and not _has(account.sub_type, "contra"):
        if _has(account.sub_type, "other", "interest", "non-operating"):
            return "other"
        return "operating"
    return "contra"


def _expense_group(account):
    # "Non-Operating" contains "Operating", test it first
    if _has(account.sub_type, "non-operating", "other", "interest", "tax expense"):
        return "non_operating"
    if _has(account.sub_type, "cost of sales", "cost of goods", "cogs"):
        return "cost_of_sales"
    return "operating"


def income_statement(company, date_from, date_to):
    """Revenue and expense activity within the range; closing entries left out."""
    _check_range(date_from, date_to)
    sums = activity(company, date_from=date_from, date_to=date_to, exclude_closing=True)
    revenue = {"operating": [], "contra": [], "other": []}
    expenses = {"cost_of_sales": [], "operating": [], "non_operating": []}

    for account in _accounts(company, sums.keys()).filter(
        ac_type__in=PROFIT_AND_LOSS_TYPES
    ):
        debit, credit = sums[account.pk]
        if account.ac_type == "revenue":
            # contra revenue (returns, discounts) reduces the total
            revenue[_revenue_group(account)].append(_line(account, credit - debit))
        else:
            expenses[_expense_group(account)].append(_line(account, debit - credit))

    revenue_groups = {k: _group(v) for k, v in revenue.items()}
    expense_groups = {k: _group(v) for k, v in expenses.items()}
    total_revenue = sum((g["total"] for g in revenue_groups.values()), ZERO)
    total_expenses = sum((g["total"] for g in expense_groups.values()), ZERO)

    net_sales = revenue_groups["operating"]["total"] + revenue_groups["contra"]["total"]
    gross_profit = net_sales - expense_groups["cost_of_sales"]["total"]
    operating_income = gross_profit - expense_groups["operating"]["total"]

    return {
        "date_from": date_from,
        "date_to": date_to,
        "revenue": {**revenue_groups, "total": total_revenue},
        "expenses": {**expense_groups, "total": total_expenses},
        "summary": {
            "total_revenue": total_revenue,
            "total_expenses": total_expenses,
            "gross_profit": gross_profit,
            "operating_income": operating_income,
            "net_income": total_revenue - total_expenses,
        },
    }


# ----------------------------
# Cash flow statement (indirect method)
# ----------------------------
def cash_flow_category(account):
    """
    cash | operating | investing | financing | None (P&L accounts).
    An explicit Account.cash_flow_category always wins.
    """
    if account.ac_type in PROFIT_AND_LOSS_TYPES:
        return None
    if account.cash_flow_category:
        return account.cash_flow_category
    if account.ac_type == "asset":
        if _has(account.sub_type, "cash", "bank"):
            return "cash"
        # accumulated depreciation is a non-cash add-back, not investing
        if _has(account.sub_type, "fixed") and account.is_debit_normal:
            return "investing"
        return "operating"
    if account.ac_type == "liability":
        if _has(account.sub_type, "long-term", "long term", "non-current"):
            return "financing"
        return "operating"
    return "financing"


def _cash_balance(company, cash_accounts, as_of):
    if not cash_accounts:
        return ZERO
    debit, credit = (
        LedgerRow.objects.for_company(company)
        .filter(account__in=cash_accounts)
        .between(date_to=as_of)
        .totals()
    )
    return debit - credit


def cash_flow_statement(company, date_from, date_to):
    """
    Operating starts from net income and adds the cash effect
    (credits − debits in the range) of every operating balance-sheet
    account. Investing/financing list their accounts' cash effect.
    calculated_ending_cash must match the ledger's ending cash.
    """
    _check_range(date_from, date_to)
    net_income = income_statement(company, date_from, date_to)["summary"]["net_income"]
    sums = activity(company, date_from=date_from, date_to=date_to, exclude_closing=True)

    cash_accounts = []
    sections = {"operating": [], "investing": [], "financing": []}
    accounts = Account.objects.for_company(company).filter(ac_type__in=BALANCE_SHEET_TYPES)
    for account in accounts.order_by("code"):
        category = cash_flow_category(account)
        if category == "cash":
            cash_accounts.append(account)
            continue
        if account.pk not in sums:
            continue
        debit, credit = sums[account.pk]
        effect = credit - debit
        if effect:
            sections[category].append(_line(account, effect))

    operating = _group(sections["operating"])
    operating_total = net_income + operating["total"]
    investing = _group(sections["investing"])
    financing = _group(sections["financing"])
    net_cash_flow = operating_total + investing["total"] + financing["total"]

    beginning_cash = _cash_balance(company, cash_accounts, date_from - timedelta(days=1))
    ending_cash = _cash_balance(company, cash_accounts, date_to)
    calculated_ending_cash = beginning_cash + net_cash_flow
    reconciled = _is_balanced(calculated_ending_cash - ending_cash)
    if not reconciled:
        logger.warning(
            "Cash flow does not reconcile: calculated %s, ledger %s",
            calculated_ending_cash,
            ending_cash,
            extra={"company_id": company.pk},
        )

    return {
        "date_from": date_from,
        "date_to": date_to,
        "operating": {
            "net_income": net_income,
            "adjustments": operating["accounts"],
            "total": operating_total,
        },
        "investing": {"accounts": investing["accounts"], "total": investing["total"]},
        "financing": {"accounts": financing["accounts"], "total": financing["total"]},
        "summary": {
            "net_cash_flow": net_cash_flow,
            "beginning_cash": beginning_cash,
            "ending_cash": ending_cash,
            "calculated_ending_cash": calculated_ending_cash,
            "reconciled": reconciled,
        },
    }
