from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from ..managers import TenantManager
from .company import Company


# ---------- Audit / Event log ----------
class AuditLog(models.Model):  # Traceability for every ledger mutation
    # Nullable because some actions are system-wide
    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Nullable for automated actions (Celery task, management command)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )
    # post, void, close, reopen, lock, reconcile, issue, approve, pay ...
    action = models.CharField(max_length=50)
    # "JournalEntry", "AccountingPeriod", "Account", "Invoice" ...
    object_type = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    # what changed, as JSON; Decimals and dates are stored as strings
    changes = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "user"], name="audit_company_user"),
            models.Index(fields=["company", "created_at"], name="audit_company_created"),
            models.Index(fields=["company", "object_type", "object_id"], name="audit_company_object"),
        ]

    def __str__(self):
        return (
            f"[{self.created_at:%Y-%m-%d %H:%M}] {self.user} "
            f"{self.action} {self.object_type}({self.object_id})"
        )
