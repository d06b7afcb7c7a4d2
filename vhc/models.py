import uuid

from django.conf import settings
from django.db import models

from bookings.models import Booking
from core.models import Garage


class VHCTemplate(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, null=True, blank=True, related_name="vhc_templates")
    version = models.PositiveIntegerField(default=1)
    title = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    sections = models.JSONField(default=list)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["is_active", "version"], name="vhc_template_active_idx"),
        ]

    def __str__(self):
        return f"{self.title} v{self.version}"


class VHCResponse(models.Model):
    class Powertrain(models.TextChoices):
        ICE = "ice", "Internal combustion"
        EV = "ev", "Electric"
        HYBRID = "hybrid", "Hybrid"

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        IN_PROGRESS = "in_progress", "In progress"
        SUBMITTED = "submitted", "Submitted"
        APPROVED = "approved", "Approved"
        VOID = "void", "Void"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    garage = models.ForeignKey(Garage, on_delete=models.PROTECT, related_name="vhc_responses")
    template = models.ForeignKey(VHCTemplate, on_delete=models.PROTECT, related_name="responses")
    template_version = models.PositiveIntegerField()
    powertrain = models.CharField(max_length=16, choices=Powertrain.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.IN_PROGRESS)
    vehicle_id = models.CharField(max_length=64)
    booking = models.ForeignKey(Booking, on_delete=models.SET_NULL, null=True, blank=True, related_name="health_checks")
    service_codes = models.JSONField(default=list, blank=True)
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_health_checks",
    )
    assigned_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    due_at = models.DateTimeField(null=True, blank=True)
    answers = models.JSONField(default=list, blank=True)
    section_scores = models.JSONField(default=dict, blank=True)
    total_score = models.FloatField(default=0)
    answered_count = models.PositiveIntegerField(default=0)
    item_count = models.PositiveIntegerField(default=0)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["garage", "status"], name="vhc_resp_garage_status_idx"),
            models.Index(fields=["garage", "created_at"], name="vhc_resp_garage_created_idx"),
            models.Index(fields=["assigned_to", "status"], name="vhc_resp_assignee_idx"),
        ]

    @property
    def progress(self):
        return {"answered": self.answered_count, "total": self.item_count}
