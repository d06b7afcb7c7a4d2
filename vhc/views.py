from django.contrib.auth import get_user_model
from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.models import Booking
from common.audit import create_audit_log_from_request
from common.pagination import StandardResultsSetPagination
from common.permissions import RoleCapabilityPermission
from common.utils import apply_sorting, parse_date_param, parse_uuid
from core.views import scoped_queryset_for_user
from vhc import services
from vhc.models import VHCResponse, VHCTemplate
from vhc.serializers import (
    VHCAnswersSerializer,
    VHCResponseCreateSerializer,
    VHCResponseSerializer,
    VHCTemplateSerializer,
)

User = get_user_model()

RESPONSE_SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "vehicleId": "vehicle_id",
    "status": "status",
    "powertrain": "powertrain",
    "score": "total_score",
}


class HealthCheckPagination(StandardResultsSetPagination):
    page_size = 10


def templates_for_user(user):
    qs = VHCTemplate.objects.all()
    if user.is_superuser:
        return qs
    return qs.filter(Q(garage__isnull=True) | Q(garage_id=user.garage_id))


class VHCTemplateViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = VHCTemplateSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"retrieve": "vhc.view", "active": "vhc.view"}

    def get_queryset(self):
        return templates_for_user(self.request.user)

    @action(detail=False, methods=["get"], url_path="active")
    def active(self, request):
        template = self.get_queryset().filter(is_active=True).order_by("-version", "-created_at").first()
        if template is None:
            raise NotFound("No active health check template.")
        return Response(VHCTemplateSerializer(template).data)


class VHCResponseViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = VHCResponse.objects.select_related("template", "assigned_to", "created_by")
    serializer_class = VHCResponseSerializer
    pagination_class = HealthCheckPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "vhc.view",
        "retrieve": "vhc.view",
        "create": "vhc.perform",
        "answers": "vhc.perform",
        "submit": "vhc.perform",
        "approve": "vhc.approve",
        "void": "vhc.approve",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action != "list":
            return qs

        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("assignedTo"):
            qs = qs.filter(assigned_to_id=parse_uuid(params["assignedTo"]))
        if params.get("vehicleId"):
            qs = qs.filter(vehicle_id__icontains=params["vehicleId"])
        if params.get("powertrain"):
            qs = qs.filter(powertrain=params["powertrain"])
        if params.get("createdBy"):
            qs = qs.filter(created_by__username__icontains=params["createdBy"])
        start = parse_date_param(params.get("startDate"))
        end = parse_date_param(params.get("endDate"), end_of_day=True)
        if start:
            qs = qs.filter(created_at__gte=start)
        if end:
            qs = qs.filter(created_at__lte=end)
        return apply_sorting(qs, params, RESPONSE_SORT_FIELDS, default=["-created_at"])

    def create(self, request):
        serializer = VHCResponseCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        garage = request.user.garage
        if garage is None:
            raise ValidationError("Authenticated user must belong to a garage to create records.")
        template = templates_for_user(request.user).filter(id=data["template_id"]).first()
        if template is None:
            raise ValidationError({"template_id": "Template not found."})

        booking = None
        if data["booking_id"]:
            booking = Booking.objects.filter(id=data["booking_id"], garage=garage).first()
            if booking is None:
                raise ValidationError({"booking_id": "Booking not found in this garage."})
        assignee = None
        if data["assigned_to"]:
            assignee = User.objects.filter(id=data["assigned_to"], garage=garage).first()
            if assignee is None:
                raise ValidationError({"assigned_to": "User not found in this garage."})

        response = services.create_response(
            garage=garage,
            template=template,
            powertrain=data["powertrain"],
            vehicle_id=data["vehicle_id"],
            booking=booking,
            service_codes=data["service_codes"],
            assigned_to=assignee,
            due_at=data["due_at"],
            created_by=request.user,
        )
        payload = VHCResponseSerializer(response).data
        create_audit_log_from_request(
            request,
            action="vhc.create",
            entity="vhc_response",
            entity_id=response.id,
            after_snapshot=payload,
            garage=garage,
        )
        return Response(payload, status=status.HTTP_201_CREATED)

    def _respond(self, request, response, action_name):
        payload = VHCResponseSerializer(response).data
        create_audit_log_from_request(
            request,
            action=f"vhc.{action_name}",
            entity="vhc_response",
            entity_id=response.id,
            after_snapshot={"status": response.status, "total_score": response.total_score},
            garage=response.garage,
        )
        return Response(payload)

    @action(detail=True, methods=["patch", "post"], url_path="answers")
    def answers(self, request, pk=None):
        serializer = VHCAnswersSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        response = services.update_answers(self.get_object(), [dict(answer) for answer in serializer.validated_data["answers"]])
        return self._respond(request, response, "answers")

    @action(detail=True, methods=["post"], url_path="submit")
    def submit(self, request, pk=None):
        return self._respond(request, services.submit_response(self.get_object()), "submit")

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        return self._respond(request, services.approve_response(self.get_object(), approved_by=request.user), "approve")

    @action(detail=True, methods=["post"], url_path="void")
    def void(self, request, pk=None):
        return self._respond(request, services.void_response(self.get_object()), "void")
