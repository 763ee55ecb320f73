"""
Reconciliation: the ledger rows are the source of truth, the cached
Account.balance is a read optimisation. Drift is corrected and logged,
never raised.
"""
import logging
from dataclasses import asdict, dataclass
from decimal import Decimal

from django.conf import settings
from django.db import models, transaction

from ..models import Account, Customer, JournalEntry, LedgerRow, Vendor
from .accounts import ZERO, resolve_account, signed_amount
from .audit_helper import log_action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    account_id: int
    in_sync: bool
    stored_balance: Decimal
    ledger_balance: Decimal
    corrected: bool

    def as_dict(self):
        return asdict(self)


def ledger_balance(account) -> Decimal:
    """Signed sum over every row of the account."""
    debit, credit = LedgerRow.objects.for_account(account).totals()
    return signed_amount(account.normal_balance, debit, credit)


def reconcile_account(company, account_id, user=None):
    with transaction.atomic():
        # lock first so no posting moves the balance mid-comparison
        account = resolve_account(company, account_id, for_update=True)
        stored = account.balance
        computed = ledger_balance(account)
        drift = computed - stored

        if abs(drift) < settings.LEDGER_BALANCE_TOLERANCE:
            return ReconciliationResult(
                account_id=account.pk,
                in_sync=True,
                stored_balance=stored,
                ledger_balance=computed,
                corrected=False,
            )

        Account.objects.filter(pk=account.pk).update(balance=computed)
        log_action(
            action="reconcile",
            instance=account,
            user=user,
            company=company,
            changes={
                "stored_balance": str(stored),
                "ledger_balance": str(computed),
                "drift": str(drift),
            },
        )

    logger.warning(
        "Account %s balance corrected from %s to %s",
        account.code,
        stored,
        computed,
        extra={"company_id": company.pk, "account_id": account.pk, "drift": str(drift)},
    )
    return ReconciliationResult(
        account_id=account.pk,
        in_sync=False,
        stored_balance=stored,
        ledger_balance=computed,
        corrected=True,
    )


def reconcile_all(company, user=None):
    """reconcile_account for every account; one transaction per account."""
    results = [
        reconcile_account(company, account_id, user=user)
        for account_id in Account.objects.for_company(company)
        .order_by("pk")
        .values_list("pk", flat=True)
    ]
    summary = {
        "total_accounts": len(results),
        "reconciled_count": sum(1 for r in results if r.corrected),
        "in_sync_count": sum(1 for r in results if r.in_sync),
        "results": [r.as_dict() for r in results],
    }
    logger.info(
        "Reconciled %s accounts, %s corrected",
        summary["total_accounts"],
        summary["reconciled_count"],
        extra={"company_id": company.pk},
    )
    return summary


def reconcile_subsidiaries(company, user=None):
    """
    Customer / vendor current_balance against the open documents behind it.
    Same policy as accounts: drift is corrected, audited and logged.
    """
    corrected = []
    with transaction.atomic():
        for model in (Customer, Vendor):
            for party in model.objects.for_company(company).select_for_update().order_by("pk"):
                expected = party.outstanding_total()
                if abs(expected - party.current_balance) < settings.LEDGER_BALANCE_TOLERANCE:
                    continue
                model.objects.filter(pk=party.pk).update(current_balance=expected)
                log_action(
                    action="reconcile",
                    instance=party,
                    user=user,
                    company=company,
                    changes={
                        "stored_balance": str(party.current_balance),
                        "expected_balance": str(expected),
                    },
                )
                logger.warning(
                    "%s %s balance corrected from %s to %s",
                    model.__name__,
                    party.name,
                    party.current_balance,
                    expected,
                    extra={"company_id": company.pk},
                )
                corrected.append({"type": model.__name__.lower(), "id": party.pk})

    return {"corrected_count": len(corrected), "corrected": corrected}


def replay_running_balances(company, account_id=None, *, dry_run=False):
    """
    Full historical replay: walk each account's rows in (entry_date, id)
    order and rewrite running_balance where it differs by 0.01 or more.
    Backdated postings leave later rows behind, this brings them in line.
    """
    accounts = Account.objects.for_company(company).order_by("pk")
    if account_id is not None:
        accounts = accounts.filter(pk=resolve_account(company, account_id).pk)

    checked = 0
    fixed = 0
    for account in accounts:
        with transaction.atomic():
            # block postings to this account while its history is rewritten
            Account.objects.select_for_update().filter(pk=account.pk).first()
            running = ZERO
            for row in (
                LedgerRow.objects.for_account(account)
                .chronological()
                .only("id", "debit", "credit", "running_balance")
            ):
                checked += 1
                running += signed_amount(account.normal_balance, row.debit, row.credit)
                if abs(row.running_balance - running) < settings.LEDGER_BALANCE_TOLERANCE:
                    continue
                fixed += 1
                if dry_run:
                    continue
                # queryset update: rows refuse save() once written
                LedgerRow.objects.filter(pk=row.pk).update(running_balance=running)
                logger.warning(
                    "Running balance fixed on %s row %s: %s -> %s",
                    account.code,
                    row.pk,
                    row.running_balance,
                    running,
                    extra={"company_id": company.pk, "account_id": account.pk},
                )

    logger.info(
        "Replayed %s ledger rows, %s %s",
        checked,
        fixed,
        "out of line" if dry_run else "fixed",
        extra={"company_id": company.pk},
    )
    return {"rows_checked": checked, "rows_fixed": fixed, "dry_run": dry_run}


def audit_ledger(company):
    """
    Read-only integrity check. Returns lists of problems:
    unbalanced posted entries, posted entries without ledger rows,
    accounts whose cached balance or running balances drifted.
    """
    tolerance = settings.LEDGER_BALANCE_TOLERANCE
    # reversed entries keep their rows, so void ones count too
    booked = JournalEntry.objects.for_company(company).filter(
        status__in=("posted", "void")
    )

    unbalanced = [
        entry.entry_number
        for entry in booked.annotate(
            d=models.Sum("lines__debit"), c=models.Sum("lines__credit")
        )
        if abs((entry.d or ZERO) - (entry.c or ZERO)) >= tolerance
    ]

    missing_rows = list(
        booked.annotate(
            n_lines=models.Count("lines", distinct=True),
            n_rows=models.Count("ledger_rows", distinct=True),
        )
        .exclude(n_rows=models.F("n_lines"))
        .values_list("entry_number", flat=True)
    )

    balance_drift = []
    for account in Account.objects.for_company(company).order_by("code"):
        computed = ledger_balance(account)
        if abs(computed - account.balance) >= tolerance:
            balance_drift.append(
                {"code": account.code, "stored": account.balance, "ledger": computed}
            )

    running = replay_running_balances(company, dry_run=True)

    return {
        "unbalanced_entries": unbalanced,
        "entries_missing_rows": missing_rows,
        "balance_drift": balance_drift,
        "running_balance_rows_out_of_line": running["rows_fixed"],
        "ok": not (unbalanced or missing_rows or balance_drift or running["rows_fixed"]),
    }
