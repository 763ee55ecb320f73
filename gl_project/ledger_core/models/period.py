from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .company import Company

PERIOD_TYPES = [
    ("monthly", "Monthly"),
    ("quarterly", "Quarterly"),
    ("annual", "Annual"),
]

PERIOD_STATUS = [
    ("open", "Open"),      # normal posting
    ("closed", "Closed"),  # closing entry posted, posting is a policy decision
    ("locked", "Locked"),  # final, no posting ever
]

# Allowed status changes; "locked" is terminal
PERIOD_TRANSITIONS = {
    "open": ["closed"],
    "closed": ["open", "locked"],
    "locked": [],
}


# ---------- AccountingPeriod ----------
class AccountingPeriod(models.Model):
    """
    Date range with a status gating postings.
    Periods of one company never overlap; dates outside every
    period are simply unguarded.
    """

    # Every company has its own independent calendar of periods
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    name = models.CharField(max_length=50)  # Example: "2025-Q3" or "FY2025-01"
    period_type = models.CharField(
        max_length=10, choices=PERIOD_TYPES, default="monthly"
    )
    fiscal_year = models.PositiveIntegerField()

    start_date = models.DateField()
    end_date = models.DateField()

    status = models.CharField(max_length=10, choices=PERIOD_STATUS, default="open")

    closed_at = models.DateTimeField(null=True, blank=True)
    closed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    # Entries posted by close_period, voided again by reopen_period
    closing_entries = models.ManyToManyField(
        "ledger_core.JournalEntry", blank=True, related_name="closed_periods"
    )
    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "start_date", "end_date"], name="period_company_range"),
            models.Index(fields=["company", "status"], name="period_company_status"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_period_name"
            ),
        ]
        ordering = ("company", "start_date")

    def __str__(self):
        return f"{self.company.slug} {self.name} [{self.status}]"

    def can_transition_to(self, new_status):
        return new_status in PERIOD_TRANSITIONS.get(self.status, [])

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date must not be after end_date")

        # inclusive ranges overlap when each starts before the other ends
        overlapping = AccountingPeriod.objects.for_company(self.company_id).filter(
            start_date__lte=self.end_date,
            end_date__gte=self.start_date,
        )
        if self.pk:
            overlapping = overlapping.exclude(pk=self.pk)
        clash = overlapping.first()
        if clash:
            raise ValidationError(
                f"Period overlaps with existing period {clash.name} "
                f"({clash.start_date} to {clash.end_date})"
            )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
