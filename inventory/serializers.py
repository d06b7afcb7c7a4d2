from decimal import Decimal

from rest_framework import serializers

from inventory import ledger
from inventory.models import InventoryItem, StockMovement
from inventory.services import create_inventory_item


class InventoryItemSerializer(serializers.ModelSerializer):
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), required=False)
    status = serializers.CharField(read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            "id",
            "garage",
            "sku",
            "name",
            "description",
            "category",
            "unit",
            "quantity",
            "reorder_level",
            "status",
            "cost",
            "price",
            "supplier",
            "location",
            "last_restocked_at",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "garage", "last_restocked_at", "is_active", "created_at", "updated_at"]

    def validate_reorder_level(self, value):
        if value < 0:
            raise serializers.ValidationError("Reorder level must be zero or greater.")
        return value

    def validate_sku(self, value):
        value = value.strip()
        garage_id = self.context.get("garage_id") or getattr(self.instance, "garage_id", None)
        duplicates = InventoryItem.objects.filter(garage_id=garage_id, sku__iexact=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError("An item with this SKU already exists in your garage.")
        return value

    def validate(self, attrs):
        if self.instance is not None and "quantity" in attrs:
            raise serializers.ValidationError({"quantity": "Quantity can only be changed through stock movements."})
        return attrs

    def create(self, validated_data):
        request = self.context.get("request")
        return create_inventory_item(
            performed_by=request.user if request else None,
            **validated_data,
        )


class StockMovementSerializer(serializers.ModelSerializer):
    item_name = serializers.CharField(source="item.name", read_only=True)
    item_sku = serializers.CharField(source="item.sku", read_only=True)
    performed_by_name = serializers.CharField(source="performed_by.display_name", read_only=True, default=None)

    class Meta:
        model = StockMovement
        fields = [
            "id",
            "item",
            "item_name",
            "item_sku",
            "type",
            "quantity",
            "previous_quantity",
            "resulting_quantity",
            "shortfall",
            "reference_type",
            "reference",
            "job_sheet_id",
            "booking_id",
            "service_code",
            "reason",
            "notes",
            "performed_by",
            "performed_by_name",
            "created_at",
        ]
        read_only_fields = fields


class StockAdjustmentSerializer(serializers.Serializer):
    item = serializers.UUIDField()
    type = serializers.ChoiceField(choices=StockMovement.Type.choices)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"))
    reason = serializers.CharField(max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reference = serializers.CharField(required=False, allow_blank=True, max_length=128, default="")
    job_sheet_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    booking_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    service_code = serializers.CharField(required=False, allow_blank=True, max_length=64, default="")

    def validate_reason(self, value):
        if not value.strip():
            raise serializers.ValidationError("A reason is required for every stock movement.")
        return value.strip()

    def validate(self, attrs):
        if attrs["type"] != ledger.SET and attrs["quantity"] == 0:
            raise serializers.ValidationError({"quantity": "Quantity must be greater than zero."})
        return attrs


class StockAlertItemSerializer(serializers.ModelSerializer):
    status = serializers.CharField(source="stock_status", read_only=True)

    class Meta:
        model = InventoryItem
        fields = ["id", "sku", "name", "category", "unit", "quantity", "reorder_level", "status", "supplier", "location"]
        read_only_fields = fields
