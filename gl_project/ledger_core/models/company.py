from django.conf import settings
from django.db import models


# ---------- Tenant / Company ----------
class Company(models.Model):

    """Tenant / Organization"""
    name = models.CharField(max_length=200)

    slug = models.SlugField(  # A URL-friendly identifier
        max_length=80, unique=True
    )

    # Functional currency, every amount in the ledger is in this currency
    currency_code = models.CharField(max_length=10, default="USD")

    # Journal entry numbers look like "JE-2025-0001"
    entry_number_prefix = models.CharField(max_length=10, blank=True, default="JE")

    # None → use settings.LEDGER_ALLOW_CLOSED_PERIOD_POSTING
    allow_closed_period_posting = models.BooleanField(null=True, blank=True)

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        # company record stays if the user is deleted
        on_delete=models.SET_NULL,
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "companies"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            from django.utils.text import slugify

            self.slug = slugify(self.name)[:80]
        return super().save(*args, **kwargs)

    @property
    def closed_period_posting_allowed(self):
        if self.allow_closed_period_posting is None:
            return settings.LEDGER_ALLOW_CLOSED_PERIOD_POSTING
        return self.allow_closed_period_posting
