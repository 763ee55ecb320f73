from typing import Optional

from ..models import AuditLog, Company

# Everything the ledger and its document services record
LEDGER_ACTIONS = {
    "post", "void", "close", "reopen", "lock", "delete",
    "reconcile", "issue", "approve", "pay",
}


def log_action(
    *,
    action: str,
    instance,
    user=None,
    company: Optional[Company] = None,
    changes: dict | None = None,
):
    """
    Central audit logger.
    Runs inside the caller's transaction, so a rolled back
    posting leaves no audit row behind.
    """
    if action not in LEDGER_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")

    if not company:
        company = getattr(instance, "company", None)

    return AuditLog.objects.create(
        company=company,
        user=user,
        action=action,
        object_type=instance.__class__.__name__,
        object_id=str(instance.pk),
        changes=changes,
    )


def history_for(company, instance):
    """Audit rows of one object, oldest first."""
    return AuditLog.objects.for_company(company).filter(
        object_type=instance.__class__.__name__,
        object_id=str(instance.pk),
    ).order_by("created_at", "id")
