from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils.text import slugify

from ledger_core.models import Account, Company

# code, name, ac_type, sub_type, normal_balance ("" → from type), control
DEFAULT_CHART = [
    ("1000", "Cash", "asset", "Cash", "", False),
    ("1010", "Bank Account", "asset", "Bank", "", False),
    ("1200", "Accounts Receivable", "asset", "Current Assets", "", True),
    ("1300", "Inventory", "asset", "Current Assets", "", False),
    ("1500", "Equipment", "asset", "Fixed Assets", "", False),
    ("1590", "Accumulated Depreciation", "asset", "Fixed Assets", "credit", False),
    ("2000", "Accounts Payable", "liability", "Current Liabilities", "", True),
    ("2500", "Bank Loan", "liability", "Long-term Liabilities", "", False),
    ("3000", "Owner's Capital", "equity", "Capital", "", False),
    ("3200", "Retained Earnings", "equity", "Retained Earnings", "", False),
    ("4000", "Sales Revenue", "revenue", "Operating Revenue", "", False),
    ("4100", "Service Revenue", "revenue", "Operating Revenue", "", False),
    ("4500", "Sales Returns", "revenue", "Contra Revenue", "debit", False),
    ("4900", "Interest Income", "revenue", "Other Revenue", "", False),
    ("5000", "Cost of Goods Sold", "expense", "Cost of Sales", "", False),
    ("6000", "Rent Expense", "expense", "Operating Expense", "", False),
    ("6100", "Salaries Expense", "expense", "Operating Expense", "", False),
    ("6500", "Depreciation Expense", "expense", "Operating Expense", "", False),
    ("7000", "Interest Expense", "expense", "Non-Operating Expense", "", False),
]


class Command(BaseCommand):
    help = "Create a company (if needed) and load the default chart of accounts."

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            default="Demo Company",
            help="Name of the company to seed (created when missing).",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        name = options["company"]
        slug = slugify(name)
        if not slug:
            raise CommandError("Company name must contain letters or digits")

        company, created = Company.objects.get_or_create(
            slug=slug, defaults={"name": name}
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f"Created company: {company}"))

        added = 0
        for code, acc_name, ac_type, sub_type, normal, control in DEFAULT_CHART:
            _, was_created = Account.objects.get_or_create(
                company=company,
                code=code,
                defaults={
                    "name": acc_name,
                    "ac_type": ac_type,
                    "sub_type": sub_type,
                    "normal_balance": normal,
                    "is_control_account": control,
                },
            )
            added += int(was_created)

        self.stdout.write(
            self.style.SUCCESS(
                f"{added} accounts added, {len(DEFAULT_CHART) - added} already present"
            )
        )
