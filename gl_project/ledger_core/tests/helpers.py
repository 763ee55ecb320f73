import datetime
from decimal import Decimal

from ledger_core.models import Company
from ledger_core.services.accounts import create_account
from ledger_core.services.posting import post_journal_entry
from ledger_core.services.requests import PostingLine, PostingRequest

# code, name, ac_type, sub_type, normal_balance, control
CHART = [
    ("1000", "Cash", "asset", "Cash", "", False),
    ("1200", "Accounts Receivable", "asset", "Current Assets", "", True),
    ("1300", "Inventory", "asset", "Current Assets", "", False),
    ("1500", "Equipment", "asset", "Fixed Assets", "", False),
    ("1590", "Accumulated Depreciation", "asset", "Fixed Assets", "credit", False),
    ("2000", "Accounts Payable", "liability", "Current Liabilities", "", True),
    ("2500", "Bank Loan", "liability", "Long-term Liabilities", "", False),
    ("3000", "Owner's Capital", "equity", "Capital", "", False),
    ("4000", "Sales Revenue", "revenue", "Operating Revenue", "", False),
    ("4500", "Sales Returns", "revenue", "Contra Revenue", "debit", False),
    ("5000", "Cost of Goods Sold", "expense", "Cost of Sales", "", False),
    ("6000", "Rent Expense", "expense", "Operating Expense", "", False),
    ("6500", "Depreciation Expense", "expense", "Operating Expense", "", False),
]


def make_company(name, **kwargs):
    return Company.objects.create(name=name, **kwargs)


def make_chart(company):
    return {
        code: create_account(
            company,
            code=code,
            name=name,
            ac_type=ac_type,
            sub_type=sub_type,
            normal_balance=normal,
            is_control_account=control,
        )
        for code, name, ac_type, sub_type, normal, control in CHART
    }


def d(value):
    return Decimal(value)


def request(entry_date, *legs, reference="", description=""):
    """legs: (account, debit, credit) tuples."""
    if isinstance(entry_date, str):
        entry_date = datetime.date.fromisoformat(entry_date)
    return PostingRequest(
        entry_date=entry_date,
        lines=tuple(
            PostingLine(account_id=acc.pk, debit=d(str(dr)), credit=d(str(cr)))
            for acc, dr, cr in legs
        ),
        reference=reference,
        description=description,
    )


def post(company, user, entry_date, *legs, **kwargs):
    """Post a balanced entry built from (account, debit, credit) legs."""
    options = {k: kwargs.pop(k) for k in ("as_draft", "allow_closed_period") if k in kwargs}
    return post_journal_entry(
        company, user, request(entry_date, *legs, **kwargs), **options
    )
