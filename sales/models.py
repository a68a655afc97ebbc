import uuid

from django.db import models
from django.utils import timezone

from core.models import User
from inventory.models import AppendOnlyModel, StockRecord


class SaleRecord(AppendOnlyModel):
    class SaleType(models.TextChoices):
        STANDARD = "standard", "Standard"
        CUSTOM_PRICE = "custom_price", "Custom Price"

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item_code = models.CharField(max_length=64)
    brand = models.CharField(max_length=128, blank=True, default="")
    model_name = models.CharField(max_length=128, blank=True, default="")
    storage = models.CharField(max_length=64, blank=True, default="")
    color = models.CharField(max_length=64, blank=True, default="")
    stock = models.ForeignKey(StockRecord, on_delete=models.PROTECT, related_name="sales")
    quantity = models.PositiveIntegerField()
    original_price = models.DecimalField(max_digits=12, decimal_places=2)
    final_sale_price = models.DecimalField(max_digits=12, decimal_places=2)
    custom_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    location = models.CharField(max_length=64)
    sold_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="sales")
    sold_by_name = models.CharField(max_length=255, blank=True, default="")
    sold_at = models.DateTimeField(default=timezone.now)
    sale_type = models.CharField(max_length=16, choices=SaleType.choices, default=SaleType.STANDARD)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.COMPLETED)

    class Meta:
        indexes = [
            models.Index(fields=["location", "sold_at"], name="sales_location_sold_idx"),
            models.Index(fields=["item_code", "location"], name="sales_item_location_idx"),
            models.Index(fields=["sold_by", "sold_at"], name="sales_seller_sold_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="sale_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.item_code}@{self.location} x{self.quantity}"
