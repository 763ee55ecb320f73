from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company


# ---------- Items (optional product/service) ----------
class Item(models.Model):  # Something a company sells & purchases

    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # Stock Keeping Unit, optional for service-only businesses
    sku = models.CharField(max_length=80, null=True, blank=True)
    name = models.CharField(max_length=200)

    # Default revenue account when the item is invoiced
    sales_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="items_sales_account",
    )

    # Default expense / inventory account when the item is billed
    purchase_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="items_purchase_account",
    )

    # Bumped by approved bills, given back when a bill is voided
    on_hand_quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=0
    )

    default_unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00")
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "name"], name="item_company_name")]

        # Ensure each SKU is unique within a company
        constraints = [
            models.UniqueConstraint(
                fields=["company", "sku"], name="uq_company_item_sku"
            )
        ]

    def __str__(self):
        return self.name

    def clean(self):
        sac = self.sales_account
        if sac:
            if sac.company_id != self.company_id:
                raise ValidationError(
                    "Sales account must belong to the same company as the item."
                )
            if sac.ac_type != "revenue":
                raise ValidationError("Sales account must be a revenue account.")
        pac = self.purchase_account
        if pac:
            if pac.company_id != self.company_id:
                raise ValidationError(
                    "Purchase account must belong to the same company as the item."
                )
            # expensed directly, or capitalised into inventory
            if pac.ac_type not in ("expense", "asset"):
                raise ValidationError(
                    "Purchase account must be an expense or asset account."
                )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
