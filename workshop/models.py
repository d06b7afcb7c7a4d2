import uuid

from django.conf import settings
from django.db import models

from bookings.models import Booking
from core.models import Garage
from workshop import transitions


class JobSheet(models.Model):
    class Status(models.TextChoices):
        PENDING = transitions.PENDING, "Pending"
        IN_PROGRESS = transitions.IN_PROGRESS, "In progress"
        PAUSED = transitions.PAUSED, "Paused"
        HALTED = transitions.HALTED, "Halted"
        COMPLETED = transitions.COMPLETED, "Completed"
        CANCELLED = transitions.CANCELLED, "Cancelled"

    class ApprovalStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="job_sheets")
    number = models.CharField(max_length=32)
    booking = models.OneToOneField(Booking, on_delete=models.PROTECT, related_name="job_sheet")
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="job_sheets",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    approval_status = models.CharField(max_length=16, choices=ApprovalStatus.choices, null=True, blank=True)
    requires_diagnosis = models.BooleanField(default=False)
    diagnosis_notes = models.TextField(blank=True, default="")
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default="")
    started_at = models.DateTimeField(null=True, blank=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    halt_reason = models.TextField(blank=True, default="")
    halted_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    cancellation_reason = models.TextField(blank=True, default="")
    total_work_duration = models.PositiveIntegerField(default=0)
    inventory_deducted = models.BooleanField(default=False)
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["garage", "number"], name="uniq_job_sheet_number"),
        ]
        indexes = [
            models.Index(fields=["garage", "status"], name="jobsheet_garage_status_idx"),
            models.Index(fields=["garage", "approval_status"], name="jobsheet_garage_appr_idx"),
            models.Index(fields=["technician", "status"], name="jobsheet_tech_status_idx"),
        ]

    def __str__(self):
        return self.number

    @property
    def is_terminal(self):
        return transitions.is_terminal(self.status)


class DiagnosedService(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_sheet = models.ForeignKey(JobSheet, on_delete=models.CASCADE, related_name="diagnosed_services")
    service_code = models.CharField(max_length=64, blank=True, default="")
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    duration_minutes = models.PositiveIntegerField(default=0)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    position = models.PositiveIntegerField(default=0)
    added_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["position", "added_at"]


class TimeLog(models.Model):
    class Action(models.TextChoices):
        START = transitions.START, "Start"
        PAUSE = transitions.PAUSE, "Pause"
        RESUME = transitions.RESUME, "Resume"
        HALT = transitions.HALT, "Halt"
        COMPLETE = transitions.COMPLETE, "Complete"

    id = models.BigAutoField(primary_key=True)
    job_sheet = models.ForeignKey(JobSheet, on_delete=models.CASCADE, related_name="time_logs")
    action = models.CharField(max_length=16, choices=Action.choices)
    timestamp = models.DateTimeField()
    performed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [
            models.Index(fields=["job_sheet", "timestamp"], name="timelog_job_ts_idx"),
        ]


class Approval(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="approvals")
    job_sheet = models.ForeignKey(JobSheet, on_delete=models.CASCADE, related_name="approvals")
    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name="approvals")
    customer_name = models.CharField(max_length=255)
    vehicle_info = models.CharField(max_length=255, blank=True, default="")
    services = models.JSONField(default=list)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    service_charge = models.DecimalField(max_digits=12, decimal_places=2)
    vat = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    submitted_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    submitted_at = models.DateTimeField()
    reviewed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    reviewed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    rejection_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-submitted_at"]
        indexes = [
            models.Index(fields=["garage", "status"], name="approval_garage_status_idx"),
            models.Index(fields=["garage", "submitted_at"], name="approval_garage_sub_idx"),
        ]
