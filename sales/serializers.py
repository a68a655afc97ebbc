from rest_framework import serializers

from sales.models import SaleRecord


class SaleRecordSerializer(serializers.ModelSerializer):
    model = serializers.CharField(source="model_name", read_only=True)

    class Meta:
        model = SaleRecord
        fields = [
            "id",
            "item_code",
            "brand",
            "model",
            "storage",
            "color",
            "stock",
            "quantity",
            "original_price",
            "final_sale_price",
            "custom_price",
            "discount_percentage",
            "location",
            "sold_by",
            "sold_by_name",
            "sold_at",
            "sale_type",
            "status",
        ]
        read_only_fields = fields


class SaleCreateSerializer(serializers.Serializer):
    item_code = serializers.CharField(max_length=64)
    location = serializers.CharField(max_length=64, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1)
    # Validated by the sale processor so a bad price surfaces as invalid_price.
    custom_price = serializers.CharField(required=False, allow_null=True, allow_blank=True)

    def validate_custom_price(self, value):
        if value is None or str(value).strip() == "":
            return None
        return value
