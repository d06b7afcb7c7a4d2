import uuid

from django.conf import settings
from django.db import models

from core.models import Garage


class Service(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="services")
    code = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=128, blank=True, default="")
    duration_minutes = models.PositiveIntegerField(default=60)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["garage", "code"], name="uniq_service_code"),
        ]
        indexes = [
            models.Index(fields=["garage", "is_active"], name="service_garage_active_idx"),
        ]

    def __str__(self):
        return self.name


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="bookings")
    customer_name = models.CharField(max_length=255)
    customer_phone = models.CharField(max_length=64, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    vehicle_make = models.CharField(max_length=64, blank=True, default="")
    vehicle_model = models.CharField(max_length=64, blank=True, default="")
    vehicle_year = models.PositiveSmallIntegerField(null=True, blank=True)
    vehicle_license = models.CharField(max_length=32, blank=True, default="")
    vehicle_vin = models.CharField(max_length=32, blank=True, default="")
    date = models.DateField()
    start_time = models.TimeField()
    end_time = models.TimeField()
    bay = models.CharField(max_length=32)
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_bookings",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    requires_diagnosis = models.BooleanField(default=False)
    diagnosis_notes = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["garage", "date"], name="booking_garage_date_idx"),
            models.Index(fields=["garage", "status"], name="booking_garage_status_idx"),
        ]

    def __str__(self):
        return f"{self.customer_name} {self.date} {self.start_time}"

    @property
    def vehicle_info(self):
        parts = [str(self.vehicle_year) if self.vehicle_year else "", self.vehicle_make, self.vehicle_model]
        description = " ".join(part for part in parts if part)
        if self.vehicle_license:
            return f"{description} ({self.vehicle_license})" if description else self.vehicle_license
        return description

    def customer_snapshot(self):
        return {"name": self.customer_name, "phone": self.customer_phone, "email": self.customer_email}

    def vehicle_snapshot(self):
        return {
            "make": self.vehicle_make,
            "model": self.vehicle_model,
            "year": self.vehicle_year,
            "license": self.vehicle_license,
            "vin": self.vehicle_vin,
        }


class BookingService(models.Model):
    class Source(models.TextChoices):
        BOOKED = "booked", "Booked"
        DIAGNOSED = "diagnosed", "Diagnosed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="services")
    service = models.ForeignKey(Service, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    service_code = models.CharField(max_length=64, blank=True, default="")
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    duration_minutes = models.PositiveIntegerField(default=0)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    source = models.CharField(max_length=16, choices=Source.choices, default=Source.BOOKED)
    position = models.PositiveIntegerField(default=0)
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["position", "added_at"]
        indexes = [
            models.Index(fields=["booking", "position"], name="booking_service_pos_idx"),
        ]
