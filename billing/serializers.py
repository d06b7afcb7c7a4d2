from rest_framework import serializers

from billing.models import Invoice
from billing.services import is_overdue


class InvoiceSerializer(serializers.ModelSerializer):
    job_sheet_number = serializers.CharField(source="job_sheet.number", read_only=True)
    is_overdue = serializers.SerializerMethodField()

    class Meta:
        model = Invoice
        fields = [
            "id",
            "garage",
            "invoice_number",
            "job_sheet",
            "job_sheet_number",
            "booking",
            "customer_name",
            "customer",
            "vehicle",
            "services",
            "subtotal",
            "service_charge",
            "vat",
            "total_amount",
            "status",
            "is_overdue",
            "issued_date",
            "due_date",
            "paid_date",
            "payment_method",
            "notes",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_is_overdue(self, obj):
        return is_overdue(obj)


class MarkPaidSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=Invoice.PaymentMethod.choices)
    paid_date = serializers.DateField(required=False, allow_null=True, default=None)


class InvoiceNoteSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
