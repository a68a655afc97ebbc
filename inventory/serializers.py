from rest_framework import serializers

from inventory.models import LedgerEntry, StockRecord, TransferRequest
from inventory.transfers import DECISIONS


class StockRecordSerializer(serializers.ModelSerializer):
    model = serializers.CharField(source="model_name", read_only=True)

    class Meta:
        model = StockRecord
        fields = [
            "id",
            "item_code",
            "location",
            "brand",
            "model",
            "storage",
            "color",
            "quantity",
            "order_price",
            "sale_price",
            "discount_percentage",
            "last_transfer",
            "last_restock",
            "last_sold_at",
            "transferred_from",
            "original_stock",
            "added_by",
            "added_by_name",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class StockIntakeSerializer(serializers.Serializer):
    item_code = serializers.CharField(max_length=64)
    location = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1)
    brand = serializers.CharField(max_length=128, required=False, allow_blank=True)
    model = serializers.CharField(source="model_name", max_length=128, required=False, allow_blank=True)
    storage = serializers.CharField(max_length=64, required=False, allow_blank=True)
    color = serializers.CharField(max_length=64, required=False, allow_blank=True)
    order_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    sale_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    discount_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False)


class StockDetailsSerializer(serializers.Serializer):
    brand = serializers.CharField(max_length=128, required=False)
    model = serializers.CharField(source="model_name", max_length=128, required=False)
    storage = serializers.CharField(max_length=64, required=False, allow_blank=True)
    color = serializers.CharField(max_length=64, required=False, allow_blank=True)
    order_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    sale_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    discount_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False)

    def validate(self, attrs):
        if "quantity" in self.initial_data:
            raise serializers.ValidationError({"quantity": "Quantity changes must go through intake, sales or transfers."})
        if not attrs:
            raise serializers.ValidationError("Provide at least one field to update.")
        return attrs


class TransferRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = TransferRequest
        fields = [
            "id",
            "item_code",
            "quantity",
            "from_location",
            "to_location",
            "status",
            "requested_by",
            "requested_by_name",
            "requested_at",
            "approved_by",
            "approved_by_name",
            "approved_at",
            "source_stock",
            "rejected_by",
            "rejected_by_name",
            "rejected_at",
            "rejection_reason",
            "failed_at",
            "error",
            "processed_at",
            "updated_at",
        ]
        read_only_fields = fields


class TransferRequestCreateSerializer(serializers.Serializer):
    item_code = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1)
    from_location = serializers.CharField(max_length=64)
    to_location = serializers.CharField(max_length=64)

    def validate(self, attrs):
        if attrs["from_location"] == attrs["to_location"]:
            raise serializers.ValidationError({"to_location": "Source and destination locations must differ."})
        return attrs


class TransferRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class BulkResolveSerializer(serializers.Serializer):
    request_ids = serializers.ListField(child=serializers.UUIDField(), min_length=1, max_length=500)
    decision = serializers.ChoiceField(choices=DECISIONS)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class LedgerEntrySerializer(serializers.ModelSerializer):
    model = serializers.CharField(source="model_name", read_only=True)

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "entry_type",
            "item_code",
            "brand",
            "model",
            "quantity",
            "from_location",
            "to_location",
            "actor",
            "actor_name",
            "occurred_at",
            "rejection_reason",
            "transfer",
            "sale_id",
        ]
        read_only_fields = fields


class LedgerQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
    location = serializers.CharField(required=False, max_length=64)
    entry_type = serializers.ChoiceField(choices=LedgerEntry.EntryType.choices, required=False)

    def validate(self, attrs):
        start = attrs.get("start")
        end = attrs.get("end")
        if start and end and start > end:
            raise serializers.ValidationError({"end": "End must not be before start."})
        return attrs


class ApprovalPolicySerializer(serializers.Serializer):
    require_approval = serializers.BooleanField()
    auto_approve_below = serializers.IntegerField(min_value=1)
    allowed_locations = serializers.ListField(child=serializers.CharField(max_length=64), allow_empty=False)
    version = serializers.IntegerField(min_value=1)
