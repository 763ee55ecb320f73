from django.core.management.base import BaseCommand, CommandError

from ledger_core.models import Company
from ledger_core.services.reconciliation import replay_running_balances


class Command(BaseCommand):
    help = (
        "Replay every ledger row in (entry_date, id) order and rewrite "
        "running balances that are out of line."
    )

    def add_arguments(self, parser):
        parser.add_argument("--company", help="Slug of one company; all when omitted.")
        parser.add_argument("--account", type=int, help="Limit to one account id.")
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only count the rows that would change.",
        )

    def handle(self, *args, **options):
        companies = Company.objects.order_by("pk")
        if options["company"]:
            companies = companies.filter(slug=options["company"])
            if not companies.exists():
                raise CommandError(f"No company with slug {options['company']!r}")
        elif options["account"]:
            raise CommandError("--account needs --company")

        for company in companies:
            result = replay_running_balances(
                company, options["account"], dry_run=options["dry_run"]
            )
            verb = "would fix" if options["dry_run"] else "fixed"
            self.stdout.write(
                self.style.SUCCESS(
                    f"{company.slug}: checked {result['rows_checked']} rows, "
                    f"{verb} {result['rows_fixed']}"
                )
            )
