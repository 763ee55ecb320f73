from django.core.management.base import BaseCommand, CommandError

from ledger_core.models import Company
from ledger_core.services.reconciliation import reconcile_all, reconcile_subsidiaries


class Command(BaseCommand):
    help = "Recompute cached account balances from the ledger and fix any drift."

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            help="Slug of one company; every company when omitted.",
        )
        parser.add_argument(
            "--async",
            action="store_true",
            dest="run_async",
            help="Queue a Celery task per company instead of running inline.",
        )

    def handle(self, *args, **options):
        companies = Company.objects.order_by("pk")
        if options["company"]:
            companies = companies.filter(slug=options["company"])
            if not companies.exists():
                raise CommandError(f"No company with slug {options['company']!r}")

        for company in companies:
            if options["run_async"]:
                from ledger_core.tasks import reconcile_company

                reconcile_company.delay(company.pk)
                self.stdout.write(f"{company.slug}: queued")
                continue

            summary = reconcile_all(company)
            subsidiaries = reconcile_subsidiaries(company)
            corrected = summary["reconciled_count"] + subsidiaries["corrected_count"]
            style = self.style.WARNING if corrected else self.style.SUCCESS
            self.stdout.write(
                style(
                    f"{company.slug}: {summary['total_accounts']} accounts, "
                    f"{summary['in_sync_count']} in sync, "
                    f"{summary['reconciled_count']} corrected, "
                    f"{subsidiaries['corrected_count']} customer/vendor balances corrected"
                )
            )
