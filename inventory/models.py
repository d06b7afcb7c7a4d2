import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from core.models import Garage
from inventory import ledger


class InventoryItem(models.Model):
    class Unit(models.TextChoices):
        PIECE = "pc", "Piece"
        PAIR = "pair", "Pair"
        SET = "set", "Set"
        BOTTLE = "bottle", "Bottle"
        LITRE = "litre", "Litre"
        KG = "kg", "Kilogram"
        BOX = "box", "Box"

    class StockStatus(models.TextChoices):
        IN_STOCK = ledger.IN_STOCK, "In stock"
        LOW = ledger.LOW, "Low stock"
        OUT = ledger.OUT, "Out of stock"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="inventory_items")
    sku = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=128, blank=True, default="")
    unit = models.CharField(max_length=16, choices=Unit.choices, default=Unit.PIECE)
    quantity = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    reorder_level = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    supplier = models.CharField(max_length=255, blank=True, default="")
    location = models.CharField(max_length=128, blank=True, default="")
    last_restocked_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["garage", "sku"], name="uniq_inventory_item_sku"),
            models.CheckConstraint(condition=Q(quantity__gte=0), name="inventory_item_quantity_gte_0"),
        ]
        indexes = [
            models.Index(fields=["garage", "is_active"], name="item_garage_active_idx"),
            models.Index(fields=["garage", "category"], name="item_garage_category_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    @property
    def status(self):
        return ledger.derive_stock_status(self.quantity, self.reorder_level)


class LedgerImmutableError(RuntimeError):
    pass


class StockMovementQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise LedgerImmutableError("Stock movements cannot be updated.")

    def delete(self):
        raise LedgerImmutableError("Stock movements cannot be deleted.")


class StockMovement(models.Model):
    class Type(models.TextChoices):
        INCREASE = ledger.INCREASE, "Increase"
        DECREASE = ledger.DECREASE, "Decrease"
        SET = ledger.SET, "Set"

    class ReferenceType(models.TextChoices):
        JOB_SHEET = "JOB_SHEET", "Job sheet"
        BOOKING = "BOOKING", "Booking"
        MANUAL = "MANUAL", "Manual"
        SYSTEM = "SYSTEM", "System"

    # Integer ids give movements a total creation order for replay.
    id = models.BigAutoField(primary_key=True)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="stock_movements")
    item = models.ForeignKey(InventoryItem, on_delete=models.PROTECT, related_name="movements")
    type = models.CharField(max_length=16, choices=Type.choices)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    previous_quantity = models.DecimalField(max_digits=12, decimal_places=2)
    resulting_quantity = models.DecimalField(max_digits=12, decimal_places=2)
    shortfall = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    reference_type = models.CharField(max_length=16, choices=ReferenceType.choices)
    reference = models.CharField(max_length=128, blank=True, default="")
    job_sheet_id = models.UUIDField(null=True, blank=True)
    booking_id = models.UUIDField(null=True, blank=True)
    service_code = models.CharField(max_length=64, blank=True, default="")
    reason = models.CharField(max_length=255)
    notes = models.TextField(blank=True, default="")
    performed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = StockMovementQuerySet.as_manager()

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gte=0), name="stock_movement_quantity_gte_0"),
            models.CheckConstraint(condition=Q(resulting_quantity__gte=0), name="stock_movement_result_gte_0"),
        ]
        indexes = [
            models.Index(fields=["item", "id"], name="movement_item_idx"),
            models.Index(fields=["garage", "created_at"], name="movement_garage_created_idx"),
            models.Index(fields=["job_sheet_id"], name="movement_job_sheet_idx"),
            models.Index(fields=["booking_id"], name="movement_booking_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise LedgerImmutableError("Stock movements are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise LedgerImmutableError("Stock movements cannot be deleted.")
