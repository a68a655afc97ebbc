import uuid

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Q
from django.utils import timezone

from common.exceptions import InvalidInput
from core.models import User


class AppendOnlyModel(models.Model):
    """Rows are written once; updates and deletes are refused."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise InvalidInput(f"{self.__class__.__name__} records are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise InvalidInput(f"{self.__class__.__name__} records cannot be deleted.")


class StockRecord(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item_code = models.CharField(max_length=64)
    location = models.CharField(max_length=64)
    brand = models.CharField(max_length=128)
    model_name = models.CharField(max_length=128)
    storage = models.CharField(max_length=64, blank=True, default="")
    color = models.CharField(max_length=64, blank=True, default="")
    quantity = models.PositiveIntegerField(default=0)
    order_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    sale_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    last_transfer = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    last_restock = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    last_sold_at = models.DateTimeField(null=True, blank=True)
    transferred_from = models.CharField(max_length=64, blank=True, default="")
    original_stock = models.ForeignKey("self", on_delete=models.PROTECT, null=True, blank=True, related_name="transfer_copies")
    added_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="stock_intakes")
    added_by_name = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["location", "item_code"], name="inv_stock_location_idx"),
            models.Index(fields=["updated_at"], name="inv_stock_updated_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["item_code", "location"], name="uniq_stock_item_location"),
            models.CheckConstraint(condition=Q(quantity__gte=0), name="stock_quantity_non_negative"),
            models.CheckConstraint(
                condition=Q(discount_percentage__gte=0) & Q(discount_percentage__lte=100),
                name="stock_discount_percentage_range",
            ),
        ]

    def __str__(self):
        return f"{self.item_code}@{self.location} ({self.quantity})"


class TransferRequest(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"
        FAILED = "failed", "Failed"

    TERMINAL_STATUSES = (Status.APPROVED, Status.REJECTED, Status.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item_code = models.CharField(max_length=64)
    quantity = models.PositiveIntegerField()
    from_location = models.CharField(max_length=64)
    to_location = models.CharField(max_length=64)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    requested_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name="transfer_requests")
    requested_by_name = models.CharField(max_length=255, blank=True, default="")
    requested_at = models.DateTimeField(default=timezone.now)
    approved_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name="approved_transfer_requests")
    approved_by_name = models.CharField(max_length=255, blank=True, default="")
    approved_at = models.DateTimeField(null=True, blank=True)
    source_stock = models.ForeignKey(StockRecord, on_delete=models.PROTECT, null=True, blank=True, related_name="outgoing_transfer_requests")
    rejected_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name="rejected_transfer_requests")
    rejected_by_name = models.CharField(max_length=255, blank=True, default="")
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default="")
    failed_at = models.DateTimeField(null=True, blank=True)
    error = models.TextField(blank=True, default="")
    processed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "requested_at"], name="inv_transfer_status_idx"),
            models.Index(fields=["item_code", "from_location"], name="inv_transfer_item_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="transfer_quantity_positive"),
        ]

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class LedgerEntry(AppendOnlyModel):
    class EntryType(models.TextChoices):
        APPROVED_TRANSFER = "approved_transfer", "Approved Transfer"
        REJECTED_TRANSFER = "rejected_transfer", "Rejected Transfer"
        SALE = "sale", "Sale"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    entry_type = models.CharField(max_length=32, choices=EntryType.choices)
    item_code = models.CharField(max_length=64)
    brand = models.CharField(max_length=128, blank=True, default="")
    model_name = models.CharField(max_length=128, blank=True, default="")
    quantity = models.PositiveIntegerField()
    from_location = models.CharField(max_length=64)
    to_location = models.CharField(max_length=64, blank=True, default="")
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="ledger_entries")
    actor_name = models.CharField(max_length=255, blank=True, default="")
    occurred_at = models.DateTimeField(default=timezone.now)
    rejection_reason = models.TextField(blank=True, default="")
    transfer = models.ForeignKey(TransferRequest, on_delete=models.PROTECT, null=True, blank=True, related_name="ledger_entries")
    sale_id = models.UUIDField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["occurred_at"], name="inv_ledger_occurred_idx"),
            models.Index(fields=["entry_type", "occurred_at"], name="inv_ledger_type_idx"),
            models.Index(fields=["from_location", "occurred_at"], name="inv_ledger_from_idx"),
            models.Index(fields=["to_location", "occurred_at"], name="inv_ledger_to_idx"),
        ]


class ApprovalPolicy(models.Model):
    id = models.BigAutoField(primary_key=True)
    key = models.CharField(max_length=32, unique=True, default="default")
    require_approval = models.BooleanField(default=True)
    auto_approve_below = models.PositiveIntegerField(default=10)
    allowed_locations = models.JSONField(default=list, blank=True)
    version = models.PositiveIntegerField(default=1)
    updated_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    updated_by_name = models.CharField(max_length=255, blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(auto_approve_below__gte=1), name="policy_threshold_positive"),
        ]
