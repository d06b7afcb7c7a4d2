import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models
from django.db.models import Q


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="InventoryItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sku", models.CharField(max_length=64)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("category", models.CharField(blank=True, default="", max_length=128)),
                (
                    "unit",
                    models.CharField(
                        choices=[
                            ("pc", "Piece"),
                            ("pair", "Pair"),
                            ("set", "Set"),
                            ("bottle", "Bottle"),
                            ("litre", "Litre"),
                            ("kg", "Kilogram"),
                            ("box", "Box"),
                        ],
                        default="pc",
                        max_length=16,
                    ),
                ),
                ("quantity", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("reorder_level", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("cost", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("supplier", models.CharField(blank=True, default="", max_length=255)),
                ("location", models.CharField(blank=True, default="", max_length=128)),
                ("last_restocked_at", models.DateTimeField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "garage",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_items",
                        to="core.garage",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=["garage", "sku"], name="uniq_inventory_item_sku"),
                    models.CheckConstraint(condition=Q(quantity__gte=0), name="inventory_item_quantity_gte_0"),
                ],
                "indexes": [
                    models.Index(fields=["garage", "is_active"], name="item_garage_active_idx"),
                    models.Index(fields=["garage", "category"], name="item_garage_category_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "type",
                    models.CharField(
                        choices=[("INCREASE", "Increase"), ("DECREASE", "Decrease"), ("SET", "Set")],
                        max_length=16,
                    ),
                ),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("previous_quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("resulting_quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("shortfall", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                (
                    "reference_type",
                    models.CharField(
                        choices=[
                            ("JOB_SHEET", "Job sheet"),
                            ("BOOKING", "Booking"),
                            ("MANUAL", "Manual"),
                            ("SYSTEM", "System"),
                        ],
                        max_length=16,
                    ),
                ),
                ("reference", models.CharField(blank=True, default="", max_length=128)),
                ("job_sheet_id", models.UUIDField(blank=True, null=True)),
                ("booking_id", models.UUIDField(blank=True, null=True)),
                ("service_code", models.CharField(blank=True, default="", max_length=64)),
                ("reason", models.CharField(max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "garage",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_movements",
                        to="core.garage",
                    ),
                ),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="inventory.inventoryitem",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["id"],
                "constraints": [
                    models.CheckConstraint(condition=Q(quantity__gte=0), name="stock_movement_quantity_gte_0"),
                    models.CheckConstraint(condition=Q(resulting_quantity__gte=0), name="stock_movement_result_gte_0"),
                ],
                "indexes": [
                    models.Index(fields=["item", "id"], name="movement_item_idx"),
                    models.Index(fields=["garage", "created_at"], name="movement_garage_created_idx"),
                    models.Index(fields=["job_sheet_id"], name="movement_job_sheet_idx"),
                    models.Index(fields=["booking_id"], name="movement_booking_idx"),
                ],
            },
        ),
    ]
