from decimal import Decimal

import django.core.serializers.json
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(max_length=80, unique=True)),
                ("currency_code", models.CharField(default="USD", max_length=10)),
                ("entry_number_prefix", models.CharField(blank=True, default="JE", max_length=10)),
                ("allow_closed_period_posting", models.BooleanField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("owner", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name_plural": "companies",
            },
        ),
        migrations.CreateModel(
            name="Account",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=32)),
                ("name", models.CharField(max_length=200)),
                ("ac_type", models.CharField(choices=[("asset", "Asset"), ("liability", "Liability"), ("equity", "Equity"), ("revenue", "Revenue"), ("expense", "Expense")], max_length=10)),
                ("normal_balance", models.CharField(blank=True, choices=[("debit", "Debit"), ("credit", "Credit")], max_length=6)),
                ("sub_type", models.CharField(blank=True, default="", max_length=60)),
                ("cash_flow_category", models.CharField(blank=True, choices=[("", "Inferred"), ("cash", "Cash"), ("operating", "Operating"), ("investing", "Investing"), ("financing", "Financing")], default="", max_length=10)),
                ("is_active", models.BooleanField(default=True)),
                ("is_control_account", models.BooleanField(default=False)),
                ("balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("parent", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, to="ledger_core.account")),
            ],
            options={
                "ordering": ("company", "code"),
                "indexes": [
                    models.Index(fields=["company", "ac_type"], name="acct_company_type"),
                    models.Index(fields=["company", "code"], name="acct_company_code"),
                    models.Index(fields=["company", "parent"], name="acct_company_parent"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "code"), name="uq_company_account_code"),
                ],
            },
        ),
        migrations.CreateModel(
            name="JournalEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("entry_number", models.CharField(max_length=40)),
                ("entry_date", models.DateField()),
                ("reference", models.CharField(blank=True, default="", max_length=200)),
                ("description", models.TextField(blank=True, default="")),
                ("status", models.CharField(choices=[("draft", "Draft"), ("posted", "Posted"), ("void", "Void")], default="draft", max_length=10)),
                ("source_type", models.CharField(choices=[("manual", "Manual"), ("invoice", "Invoice"), ("bill", "Bill"), ("payment", "Payment"), ("closing", "Period closing"), ("reversal", "Reversal")], default="manual", max_length=20)),
                ("source_id", models.BigIntegerField(blank=True, null=True)),
                ("is_closing", models.BooleanField(default=False)),
                ("posted_at", models.DateTimeField(blank=True, null=True)),
                ("voided_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("reverses", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="reversals", to="ledger_core.journalentry")),
                ("voided_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "entry_date"], name="je_company_date"),
                    models.Index(fields=["company", "status"], name="je_company_status"),
                    models.Index(fields=["company", "source_type", "source_id"], name="je_company_source"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "entry_number"), name="uq_je_company_number"),
                ],
            },
        ),
        migrations.CreateModel(
            name="JournalLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("line_no", models.PositiveIntegerField(default=0)),
                ("description", models.CharField(blank=True, default="", max_length=400)),
                ("debit", models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ("credit", models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="ledger_core.account")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("journal", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="lines", to="ledger_core.journalentry")),
            ],
            options={
                "ordering": ("journal", "line_no", "id"),
                "indexes": [
                    models.Index(fields=["company", "account"], name="jl_company_account"),
                    models.Index(fields=["company", "journal"], name="jl_company_journal"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("debit__gte", 0), ("credit__gte", 0)), name="jl_non_negative_amounts"),
                    models.CheckConstraint(condition=models.Q(models.Q(("debit", 0), ("credit", 0)), _negated=True), name="jl_debit_or_credit_nonzero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="EntrySequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("prefix", models.CharField(max_length=10)),
                ("year", models.PositiveIntegerField()),
                ("last_value", models.PositiveIntegerField(default=0)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("company", "prefix", "year"), name="uq_entry_sequence"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerRow",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("entry_date", models.DateField()),
                ("debit", models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ("credit", models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ("running_balance", models.DecimalField(decimal_places=2, max_digits=18)),
                ("description", models.CharField(blank=True, default="", max_length=400)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="ledger_rows", to="ledger_core.account")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("journal", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="ledger_rows", to="ledger_core.journalentry")),
                ("line", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="ledger_row", to="ledger_core.journalline")),
            ],
            options={
                "ordering": ("entry_date", "id"),
                "indexes": [
                    models.Index(fields=["account", "entry_date", "id"], name="lr_account_date_id"),
                    models.Index(fields=["company", "entry_date"], name="lr_company_date"),
                    models.Index(fields=["company", "journal"], name="lr_company_journal"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AccountingPeriod",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=50)),
                ("period_type", models.CharField(choices=[("monthly", "Monthly"), ("quarterly", "Quarterly"), ("annual", "Annual")], default="monthly", max_length=10)),
                ("fiscal_year", models.PositiveIntegerField()),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                ("status", models.CharField(choices=[("open", "Open"), ("closed", "Closed"), ("locked", "Locked")], default="open", max_length=10)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("closed_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("closing_entries", models.ManyToManyField(blank=True, related_name="closed_periods", to="ledger_core.journalentry")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
            ],
            options={
                "ordering": ("company", "start_date"),
                "indexes": [
                    models.Index(fields=["company", "start_date", "end_date"], name="period_company_range"),
                    models.Index(fields=["company", "status"], name="period_company_status"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "name"), name="uq_company_period_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("contact_email", models.EmailField(blank=True, max_length=254, null=True)),
                ("payment_terms_days", models.IntegerField(default=30)),
                ("current_balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("default_ar_account", models.ForeignKey(blank=True, help_text="Default AR account used for this customer", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="customers_default_ar", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "name"], name="cust_company_name"),
                    models.Index(fields=["company", "default_ar_account"], name="cust_company_ar"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "name"), name="uq_company_customer_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Vendor",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=200)),
                ("contact_email", models.EmailField(blank=True, max_length=254, null=True)),
                ("payment_terms_days", models.IntegerField(default=30)),
                ("current_balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("default_ap_account", models.ForeignKey(blank=True, help_text="Default AP account used for this vendor", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="vendors_default_ap", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "name"], name="vendor_company_name"),
                    models.Index(fields=["company", "default_ap_account"], name="vendor_company_ap"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "name"), name="uq_company_vendor_name"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Item",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sku", models.CharField(blank=True, max_length=80, null=True)),
                ("name", models.CharField(max_length=200)),
                ("on_hand_quantity", models.DecimalField(decimal_places=4, default=0, max_digits=14)),
                ("default_unit_price", models.DecimalField(decimal_places=4, default=Decimal("0.00"), max_digits=18)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("purchase_account", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="items_purchase_account", to="ledger_core.account")),
                ("sales_account", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="items_sales_account", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "name"], name="item_company_name"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "sku"), name="uq_company_item_sku"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("invoice_number", models.CharField(blank=True, max_length=64, null=True)),
                ("date", models.DateField()),
                ("due_date", models.DateField(blank=True, null=True)),
                ("status", models.CharField(choices=[("draft", "Draft"), ("open", "Open"), ("paid", "Paid"), ("void", "Void")], default="draft", max_length=10)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("outstanding_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("description", models.TextField(blank=True, default="")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("customer", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="ledger_core.customer")),
                ("journal_entry", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="ledger_core.journalentry")),
                ("receivable_account", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "invoice_number"], name="inv_company_number"),
                    models.Index(fields=["company", "customer"], name="inv_company_customer"),
                    models.Index(fields=["company", "status"], name="inv_company_status"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "invoice_number"), name="uq_invoice_company_number"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("description", models.CharField(blank=True, default="", max_length=400)),
                ("quantity", models.DecimalField(decimal_places=4, default=Decimal("1"), max_digits=14)),
                ("unit_price", models.DecimalField(decimal_places=4, default=Decimal("0.00"), max_digits=18)),
                ("line_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("account", models.ForeignKey(blank=True, help_text="Sales / revenue account for this line", null=True, on_delete=django.db.models.deletion.PROTECT, to="ledger_core.account")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("invoice", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="lines", to="ledger_core.invoice")),
                ("item", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, to="ledger_core.item")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "invoice"], name="invl_company_invoice"),
                    models.Index(fields=["company", "account"], name="invl_company_account"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gte", 0), ("unit_price__gte", 0)), name="invl_non_negative_amounts"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Bill",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("bill_number", models.CharField(blank=True, max_length=64, null=True)),
                ("date", models.DateField()),
                ("due_date", models.DateField(blank=True, null=True)),
                ("status", models.CharField(choices=[("draft", "Draft"), ("posted", "Posted"), ("paid", "Paid"), ("void", "Void")], default="draft", max_length=20)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("outstanding_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("description", models.TextField(blank=True, default="")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("journal_entry", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="ledger_core.journalentry")),
                ("payable_account", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="ledger_core.account")),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="ledger_core.vendor")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "bill_number"], name="bill_company_number"),
                    models.Index(fields=["company", "vendor"], name="bill_company_vendor"),
                    models.Index(fields=["company", "status"], name="bill_company_status"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "bill_number"), name="uq_bill_company_number"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("description", models.CharField(blank=True, default="", max_length=400)),
                ("quantity", models.DecimalField(decimal_places=4, default=Decimal("1"), max_digits=14)),
                ("unit_price", models.DecimalField(decimal_places=4, default=Decimal("0.00"), max_digits=18)),
                ("line_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("account", models.ForeignKey(blank=True, help_text="Expense / inventory account for this line", null=True, on_delete=django.db.models.deletion.PROTECT, to="ledger_core.account")),
                ("bill", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="lines", to="ledger_core.bill")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("item", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, to="ledger_core.item")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "bill"], name="bl_company_bill"),
                    models.Index(fields=["company", "account"], name="bl_company_account"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gte", 0), ("unit_price__gte", 0)), name="bl_non_negative_amounts"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("payment_number", models.CharField(max_length=64)),
                ("payment_type", models.CharField(choices=[("receipt", "Customer receipt"), ("disbursement", "Vendor payment")], max_length=20)),
                ("payment_date", models.DateField()),
                ("amount", models.DecimalField(decimal_places=2, max_digits=18)),
                ("payment_method", models.CharField(choices=[("cash", "Cash"), ("cheque", "Cheque"), ("bank_transfer", "Bank Transfer"), ("card", "Card"), ("other", "Other")], default="bank_transfer", max_length=20)),
                ("reference", models.CharField(blank=True, default="", max_length=200)),
                ("status", models.CharField(choices=[("posted", "Posted"), ("void", "Void")], default="posted", max_length=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("bill", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="ledger_core.bill")),
                ("cash_account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to="ledger_core.account")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")),
                ("invoice", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="ledger_core.invoice")),
                ("journal_entry", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="ledger_core.journalentry")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "payment_date"], name="pay_company_date"),
                    models.Index(fields=["company", "invoice"], name="pay_company_invoice"),
                    models.Index(fields=["company", "bill"], name="pay_company_bill"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "payment_number"), name="uq_payment_company_number"),
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="payment_positive_amount"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("action", models.CharField(max_length=50)),
                ("object_type", models.CharField(max_length=100)),
                ("object_id", models.CharField(max_length=100)),
                ("changes", models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to="ledger_core.company")),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "user"], name="audit_company_user"),
                    models.Index(fields=["company", "created_at"], name="audit_company_created"),
                    models.Index(fields=["company", "object_type", "object_id"], name="audit_company_object"),
                ],
            },
        ),
    ]
