from django.db.models import Q
from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.models import Invoice
from billing.serializers import InvoiceNoteSerializer, InvoiceSerializer, MarkPaidSerializer
from billing.services import build_invoice_summary, change_invoice_status, mark_as_paid, revenue_by_period
from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from common.utils import apply_sorting, parse_day_param
from core.views import scoped_queryset_for_user

INVOICE_SORT_FIELDS = {
    "invoiceNumber": "invoice_number",
    "issuedDate": "issued_date",
    "dueDate": "due_date",
    "totalAmount": "total_amount",
    "customerName": "customer_name",
    "status": "status",
}


def filter_invoices(queryset, params):
    status = params.get("status")
    if status and status.upper() != "ALL":
        queryset = queryset.filter(status=status.upper())
    if params.get("customerName"):
        queryset = queryset.filter(customer_name__icontains=params["customerName"])
    date_from = parse_day_param(params, "dateFrom")
    date_to = parse_day_param(params, "dateTo")
    if date_from:
        queryset = queryset.filter(issued_date__gte=date_from)
    if date_to:
        queryset = queryset.filter(issued_date__lte=date_to)
    search = params.get("search") or params.get("q")
    if search:
        queryset = queryset.filter(
            Q(invoice_number__icontains=search)
            | Q(customer_name__icontains=search)
            | Q(booking__vehicle_make__icontains=search)
            | Q(booking__vehicle_model__icontains=search)
            | Q(booking__vehicle_license__icontains=search)
        )
    return apply_sorting(queryset, params, INVOICE_SORT_FIELDS, default=["-issued_date", "-created_at"])


class InvoiceViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Invoice.objects.select_related("job_sheet", "booking")
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "billing.view",
        "retrieve": "billing.view",
        "summary": "billing.view",
        "send": "billing.manage",
        "mark_paid": "billing.manage",
        "cancel": "billing.manage",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action == "list":
            return filter_invoices(qs, self.request.query_params)
        return qs

    def _transition(self, request, action_name, change):
        invoice = self.get_object()
        before_snapshot = InvoiceSerializer(invoice).data
        invoice = change(invoice)
        after_snapshot = InvoiceSerializer(invoice).data
        create_audit_log_from_request(
            request,
            action=f"invoice.{action_name}",
            entity="invoice",
            entity_id=invoice.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            garage=invoice.garage,
        )
        return Response(after_snapshot)

    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        return self._transition(request, "send", lambda invoice: change_invoice_status(invoice, Invoice.Status.SENT))

    @action(detail=True, methods=["post"], url_path="mark-paid")
    def mark_paid(self, request, pk=None):
        serializer = MarkPaidSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return self._transition(
            request,
            "paid",
            lambda invoice: mark_as_paid(invoice, payment_method=data["payment_method"], paid_date=data["paid_date"]),
        )

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        serializer = InvoiceNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        notes = serializer.validated_data["notes"]
        return self._transition(
            request,
            "cancel",
            lambda invoice: change_invoice_status(invoice, Invoice.Status.CANCELLED, notes=notes),
        )

    @action(detail=False, methods=["get"], url_path="summary")
    def summary(self, request):
        qs = scoped_queryset_for_user(Invoice.objects.all(), request.user)
        payload = build_invoice_summary(qs)

        start_date = parse_day_param(request.query_params, "startDate")
        end_date = parse_day_param(request.query_params, "endDate")
        if start_date or end_date:
            if not (start_date and end_date):
                raise ValidationError({"endDate": "Provide both startDate and endDate for revenue."})
            payload["revenue"] = str(revenue_by_period(qs, start_date, end_date))
        return Response(payload)
