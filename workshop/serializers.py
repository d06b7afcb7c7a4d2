from rest_framework import serializers

from workshop import transitions
from workshop.duration import calculate_work_duration
from workshop.models import Approval, DiagnosedService, JobSheet, TimeLog


class DiagnosedServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = DiagnosedService
        fields = ["id", "service_code", "name", "description", "duration_minutes", "price", "position", "added_by", "added_at"]
        read_only_fields = fields


class TimeLogSerializer(serializers.ModelSerializer):
    performed_by_name = serializers.CharField(source="performed_by.display_name", read_only=True, default=None)

    class Meta:
        model = TimeLog
        fields = ["id", "action", "timestamp", "performed_by", "performed_by_name", "reason"]
        read_only_fields = fields


class JobSheetSerializer(serializers.ModelSerializer):
    booking_status = serializers.CharField(source="booking.status", read_only=True)
    customer_name = serializers.CharField(source="booking.customer_name", read_only=True)
    vehicle_info = serializers.CharField(source="booking.vehicle_info", read_only=True)
    bay = serializers.CharField(source="booking.bay", read_only=True)
    technician_name = serializers.CharField(source="technician.display_name", read_only=True, default=None)
    diagnosed_services = DiagnosedServiceSerializer(many=True, read_only=True)
    time_logs = TimeLogSerializer(many=True, read_only=True)
    allowed_actions = serializers.SerializerMethodField()
    invoice_id = serializers.SerializerMethodField()

    class Meta:
        model = JobSheet
        fields = [
            "id",
            "garage",
            "number",
            "booking",
            "booking_status",
            "customer_name",
            "vehicle_info",
            "bay",
            "technician",
            "technician_name",
            "status",
            "allowed_actions",
            "approval_status",
            "requires_diagnosis",
            "diagnosis_notes",
            "diagnosed_services",
            "approved_by",
            "approved_at",
            "rejection_reason",
            "started_at",
            "paused_at",
            "completed_at",
            "cancelled_at",
            "halt_reason",
            "halted_by",
            "cancellation_reason",
            "total_work_duration",
            "inventory_deducted",
            "time_logs",
            "invoice_id",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_allowed_actions(self, obj):
        return transitions.allowed_actions(obj.status)

    def get_invoice_id(self, obj):
        invoice = getattr(obj, "invoice", None)
        return str(invoice.id) if invoice else None


class JobSheetDurationSerializer(serializers.Serializer):
    def to_representation(self, instance):
        logs = list(instance.time_logs.all())
        return {
            "id": str(instance.id),
            "status": instance.status,
            "total_work_duration": calculate_work_duration(logs),
            "live_work_duration": calculate_work_duration(logs, live=True),
        }


class WorkActionSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class CompleteJobSerializer(WorkActionSerializer):
    completed_services = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class DiagnosisLineSerializer(serializers.Serializer):
    service_code = serializers.CharField(required=False, allow_blank=True, default="")
    name = serializers.CharField(required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")
    duration_minutes = serializers.IntegerField(required=False, min_value=0, default=0)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)


class DiagnosisSubmitSerializer(serializers.Serializer):
    services = DiagnosisLineSerializer(many=True, required=False, default=list)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DiagnosisDecisionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ApprovalSerializer(serializers.ModelSerializer):
    job_sheet_number = serializers.CharField(source="job_sheet.number", read_only=True)
    submitted_by_name = serializers.CharField(source="submitted_by.display_name", read_only=True, default=None)
    reviewed_by_name = serializers.CharField(source="reviewed_by.display_name", read_only=True, default=None)

    class Meta:
        model = Approval
        fields = [
            "id",
            "job_sheet",
            "job_sheet_number",
            "booking",
            "customer_name",
            "vehicle_info",
            "services",
            "subtotal",
            "service_charge",
            "vat",
            "total_amount",
            "status",
            "submitted_by",
            "submitted_by_name",
            "submitted_at",
            "reviewed_by",
            "reviewed_by_name",
            "reviewed_at",
            "notes",
            "rejection_reason",
        ]
        read_only_fields = fields
