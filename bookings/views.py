from django.contrib.auth import get_user_model
from django.db.models import Q
from django.http import Http404
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking, Service
from bookings.serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    BookingStatusSerializer,
    ServiceSerializer,
)
from bookings.services import create_booking, set_booking_status
from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.exceptions import error_response
from common.pagination import StandardResultsSetPagination
from common.permissions import RoleCapabilityPermission
from common.utils import apply_sorting, parse_day_param, parse_uuid
from core.models import Garage
from core.views import scoped_queryset_for_user
from workshop.serializers import JobSheetSerializer
from workshop.services import create_job_sheet

User = get_user_model()

BOOKING_SORT_FIELDS = {
    "date": "date",
    "startTime": "start_time",
    "customerName": "customer_name",
    "status": "status",
    "bay": "bay",
    "createdAt": "created_at",
}


def filter_bookings(queryset, params):
    if params.get("status"):
        queryset = queryset.filter(status=params["status"])
    day = parse_day_param(params, "date")
    date_from = parse_day_param(params, "dateFrom")
    date_to = parse_day_param(params, "dateTo")
    if day:
        queryset = queryset.filter(date=day)
    if date_from:
        queryset = queryset.filter(date__gte=date_from)
    if date_to:
        queryset = queryset.filter(date__lte=date_to)
    if params.get("bay"):
        queryset = queryset.filter(bay=params["bay"])
    if params.get("technicianId"):
        queryset = queryset.filter(technician_id=parse_uuid(params["technicianId"]))
    search = params.get("search") or params.get("q")
    if search:
        queryset = queryset.filter(
            Q(customer_name__icontains=search)
            | Q(customer_email__icontains=search)
            | Q(vehicle_license__icontains=search)
        )
    return apply_sorting(queryset, params, BOOKING_SORT_FIELDS, default=["-date", "-start_time"])


class GarageBookingsView(APIView):
    """List and create bookings for one garage."""

    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "bookings.view", "post": "bookings.manage"}

    def get_garage(self, request, garage_id):
        garage = Garage.objects.filter(id=parse_uuid(garage_id)).first()
        if garage is None:
            raise Http404
        if not request.user.is_superuser and request.user.garage_id != garage.id:
            raise Http404
        return garage

    def get(self, request, garage_id):
        garage = self.get_garage(request, garage_id)
        qs = filter_bookings(
            Booking.objects.filter(garage=garage).select_related("technician", "job_sheet").prefetch_related("services"),
            request.query_params,
        )
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(qs, request, view=self)
        return paginator.get_paginated_response(BookingSerializer(page, many=True).data)

    def post(self, request, garage_id):
        garage = self.get_garage(request, garage_id)
        for field in BookingCreateSerializer.REQUIRED_FIELDS:
            if request.data.get(field) in (None, "", {}):
                return error_response(
                    code="validation_error",
                    message=f"Missing required field: {field}",
                    errors={field: ["This field is required."]},
                )

        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        technician = None
        if data.get("technicianId"):
            technician = User.objects.filter(id=data["technicianId"], garage=garage).first()
            if technician is None:
                raise ValidationError({"technicianId": "Technician not found in this garage."})

        booking = create_booking(
            garage=garage,
            service_ref=data["serviceId"],
            service_name=data["serviceName"],
            customer=data["customer"],
            car=data["car"],
            date=data["date"],
            start_time=data["startTime"],
            end_time=data["endTime"],
            bay=data["bay"],
            technician=technician,
            requires_diagnosis=data["requiresDiagnosis"],
            notes=data["notes"],
            created_by=request.user,
        )
        payload = BookingSerializer(booking).data
        create_audit_log_from_request(
            request,
            action="booking.create",
            entity="booking",
            entity_id=booking.id,
            after_snapshot=payload,
            garage=garage,
        )
        return Response(payload, status=status.HTTP_201_CREATED)


class BookingViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Booking.objects.select_related("technician", "job_sheet").prefetch_related("services")
    serializer_class = BookingSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "bookings.view",
        "retrieve": "bookings.view",
        "change_status": "bookings.manage",
        "job_sheet": "jobsheet.create",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action == "list":
            return filter_bookings(qs, self.request.query_params)
        return qs

    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):
        booking = self.get_object()
        serializer = BookingStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before_snapshot = BookingSerializer(booking).data
        set_booking_status(booking, serializer.validated_data["status"], strict=True)
        after_snapshot = BookingSerializer(booking).data
        create_audit_log_from_request(
            request,
            action="booking.status",
            entity="booking",
            entity_id=booking.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            garage=booking.garage,
        )
        return Response(after_snapshot)

    @action(detail=True, methods=["post"], url_path="job-sheet")
    def job_sheet(self, request, pk=None):
        booking = self.get_object()
        technician = booking.technician
        technician_id = request.data.get("technicianId")
        if technician_id:
            technician = User.objects.filter(id=parse_uuid(technician_id), garage_id=booking.garage_id).first()
            if technician is None:
                raise ValidationError({"technicianId": "Technician not found in this garage."})

        job_sheet = create_job_sheet(booking=booking, technician=technician, performed_by=request.user)
        payload = JobSheetSerializer(job_sheet).data
        create_audit_log_from_request(
            request,
            action="jobsheet.create",
            entity="job_sheet",
            entity_id=job_sheet.id,
            after_snapshot=payload,
            garage=booking.garage,
        )
        return Response(payload, status=status.HTTP_201_CREATED)


class ServiceViewSet(
    AuditedMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Service.objects.all()
    serializer_class = ServiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    permission_action_map = {
        "list": "bookings.view",
        "retrieve": "bookings.view",
        "create": "catalog.manage",
        "partial_update": "catalog.manage",
    }
    audit_entity = "service"

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["garage_id"] = getattr(self.request.user, "garage_id", None)
        return context

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user).order_by("code")
        if self.action == "list" and self.request.query_params.get("includeInactive", "").lower() not in {"1", "true", "yes"}:
            qs = qs.filter(is_active=True)
        return qs
