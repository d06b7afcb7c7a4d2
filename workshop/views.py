import csv

from django.db.models import Count, Q, Sum
from django.http import HttpResponse
from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.exceptions import raise_for_result
from common.permissions import RoleCapabilityPermission
from common.utils import parse_date_param, parse_uuid, to_money
from core.views import scoped_queryset_for_user
from workshop import services
from workshop.models import Approval, JobSheet
from workshop.serializers import (
    ApprovalSerializer,
    CompleteJobSerializer,
    DiagnosisDecisionSerializer,
    DiagnosisSubmitSerializer,
    JobSheetDurationSerializer,
    JobSheetSerializer,
    WorkActionSerializer,
)


def result_response(request, result, *, action_name):
    """Turn a service result into a response, raising for failures."""
    raise_for_result(result)

    job_sheet = JobSheet.objects.select_related("booking", "technician").get(pk=result.job_sheet.pk)
    payload = {"job_sheet": JobSheetSerializer(job_sheet).data, "warnings": result.warnings}
    if result.invoice is not None:
        payload["invoice"] = {
            "id": str(result.invoice.id),
            "invoice_number": result.invoice.invoice_number,
            "total_amount": str(result.invoice.total_amount),
        }
    approval = getattr(result, "approval", None)
    if approval is not None:
        payload["approval"] = ApprovalSerializer(approval).data

    create_audit_log_from_request(
        request,
        action=f"jobsheet.{action_name}",
        entity="job_sheet",
        entity_id=job_sheet.id,
        after_snapshot={"status": job_sheet.status, "approval_status": job_sheet.approval_status, "warnings": result.warnings},
        garage=job_sheet.garage,
    )
    return Response(payload)


class JobSheetViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = JobSheet.objects.select_related("booking", "technician", "garage").prefetch_related("diagnosed_services", "time_logs")
    serializer_class = JobSheetSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "jobsheet.view",
        "retrieve": "jobsheet.view",
        "duration": "jobsheet.view",
        "start": "jobsheet.work",
        "pause": "jobsheet.work",
        "resume": "jobsheet.work",
        "halt": "jobsheet.work",
        "complete": "jobsheet.work",
        "cancel": "jobsheet.cancel",
        "diagnosis": "jobsheet.diagnose",
        "approve": "approval.decide",
        "reject": "approval.decide",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action != "list":
            return qs

        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"].upper())
        if params.get("bookingId"):
            qs = qs.filter(booking_id=parse_uuid(params["bookingId"]))
        if params.get("technicianId"):
            qs = qs.filter(technician_id=parse_uuid(params["technicianId"]))
        if params.get("approvalStatus"):
            qs = qs.filter(approval_status=params["approvalStatus"].lower())
        return qs.order_by("-created_at")

    def _work_payload(self, serializer_class=WorkActionSerializer):
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    @action(detail=True, methods=["post"], url_path="start")
    def start(self, request, pk=None):
        data = self._work_payload()
        result = services.start_job(self.get_object(), performed_by=request.user, note=data["note"])
        return result_response(request, result, action_name="start")

    @action(detail=True, methods=["post"], url_path="pause")
    def pause(self, request, pk=None):
        data = self._work_payload()
        result = services.pause_job(self.get_object(), performed_by=request.user, reason=data["reason"])
        return result_response(request, result, action_name="pause")

    @action(detail=True, methods=["post"], url_path="resume")
    def resume(self, request, pk=None):
        data = self._work_payload()
        result = services.resume_job(self.get_object(), performed_by=request.user, note=data["note"])
        return result_response(request, result, action_name="resume")

    @action(detail=True, methods=["post"], url_path="halt")
    def halt(self, request, pk=None):
        data = self._work_payload()
        result = services.halt_job(self.get_object(), performed_by=request.user, reason=data["reason"])
        return result_response(request, result, action_name="halt")

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        data = self._work_payload(CompleteJobSerializer)
        result = services.complete_job(
            self.get_object(),
            performed_by=request.user,
            note=data["note"],
            completed_services=data["completed_services"],
        )
        return result_response(request, result, action_name="complete")

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        data = self._work_payload()
        result = services.cancel_job(self.get_object(), performed_by=request.user, reason=data["reason"])
        return result_response(request, result, action_name="cancel")

    @action(detail=True, methods=["post"], url_path="diagnosis")
    def diagnosis(self, request, pk=None):
        serializer = DiagnosisSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.submit_diagnosis(
            self.get_object(),
            [dict(line) for line in serializer.validated_data["services"]],
            serializer.validated_data["notes"],
            submitted_by=request.user,
        )
        return result_response(request, result, action_name="diagnosis")

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        data = self._work_payload(DiagnosisDecisionSerializer)
        result = services.approve_diagnosis(self.get_object(), reviewer=request.user, notes=data["notes"])
        return result_response(request, result, action_name="approve")

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        data = self._work_payload(DiagnosisDecisionSerializer)
        result = services.reject_diagnosis(self.get_object(), reviewer=request.user, reason=data["reason"])
        return result_response(request, result, action_name="reject")

    @action(detail=True, methods=["get"], url_path="duration")
    def duration(self, request, pk=None):
        return Response(JobSheetDurationSerializer(self.get_object()).data)


def filter_approvals(queryset, params):
    status = params.get("status")
    if status and status.upper() != "ALL":
        queryset = queryset.filter(status=status.lower())
    if params.get("customerName"):
        queryset = queryset.filter(customer_name__icontains=params["customerName"])
    date_from = parse_date_param(params.get("dateFrom"))
    date_to = parse_date_param(params.get("dateTo"), end_of_day=True)
    if date_from:
        queryset = queryset.filter(submitted_at__gte=date_from)
    if date_to:
        queryset = queryset.filter(submitted_at__lte=date_to)
    return queryset


class ApprovalViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Approval.objects.select_related("job_sheet", "submitted_by", "reviewed_by")
    serializer_class = ApprovalSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "approval.view",
        "retrieve": "approval.view",
        "stats": "approval.view",
        "export": "approval.view",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action in {"list", "export", "stats"}:
            qs = filter_approvals(qs, self.request.query_params)
        return qs.order_by("-submitted_at")

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        totals = self.get_queryset().aggregate(
            total=Count("id"),
            pending=Count("id", filter=Q(status=Approval.Status.PENDING)),
            approved=Count("id", filter=Q(status=Approval.Status.APPROVED)),
            rejected=Count("id", filter=Q(status=Approval.Status.REJECTED)),
            total_value=Sum("total_amount"),
            approved_value=Sum("total_amount", filter=Q(status=Approval.Status.APPROVED)),
        )
        return Response(
            {
                "total": totals["total"],
                "pending": totals["pending"],
                "approved": totals["approved"],
                "rejected": totals["rejected"],
                "total_value": str(to_money(totals["total_value"] or 0)),
                "approved_value": str(to_money(totals["approved_value"] or 0)),
            }
        )

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        qs = self.get_queryset()
        if request.query_params.get("format_type") == "json":
            return Response(ApprovalSerializer(qs, many=True).data)

        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="approvals.csv"'
        writer = csv.writer(response)
        writer.writerow(
            ["ID", "Job Sheet ID", "Customer Name", "Vehicle Info", "Total Amount", "Status", "Submitted At", "Reviewed At", "Notes"]
        )
        for approval in qs:
            writer.writerow(
                [
                    approval.id,
                    approval.job_sheet_id,
                    approval.customer_name,
                    approval.vehicle_info,
                    approval.total_amount,
                    approval.status,
                    approval.submitted_at.isoformat(),
                    approval.reviewed_at.isoformat() if approval.reviewed_at else "",
                    approval.notes,
                ]
            )
        return response
