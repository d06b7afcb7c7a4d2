import csv
import logging

from django.contrib.auth import get_user_model
from django.db import DatabaseError, connections
from django.http import HttpResponse
from django.middleware.csrf import get_token
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from common.audit import create_audit_log_from_request
from common.authentication import clear_access_cookie, set_access_cookie
from common.permissions import RoleCapabilityPermission
from common.utils import parse_date_param, parse_uuid
from core.models import AuditLog, Garage
from core.serializers import (
    AuditLogSerializer,
    CurrentUserSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    GarageSerializer,
    StaffSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


def scoped_queryset_for_user(queryset, user, *, field="garage_id"):
    """Restrict `queryset` to the user's garage; superusers see every garage."""
    if not user.is_authenticated:
        return queryset.none()
    if user.is_superuser:
        return queryset
    garage_id = getattr(user, "garage_id", None)
    if not garage_id:
        return queryset.none()
    return queryset.filter(**{field: garage_id})


class AccessCookieMixin:
    """Mirror a freshly issued access token into the HttpOnly auth cookie.

    The CSRF cookie is issued alongside it for cookie-authenticated writes.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def post(self, request, *args, **kwargs):
        response = super().post(request, *args, **kwargs)
        access = response.data.get("access") if response.status_code == status.HTTP_200_OK else None
        if access:
            set_access_cookie(response, access)
            get_token(request)
        return response


class EmailOrUsernameTokenObtainPairView(AccessCookieMixin, TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer


class CookieTokenRefreshView(AccessCookieMixin, TokenRefreshView):
    pass


class LogoutView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        return clear_access_cookie(Response({"detail": "Logged out."}))


class CurrentUserView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)


class GarageViewSet(viewsets.ModelViewSet):
    queryset = Garage.objects.order_by("name")
    serializer_class = GarageSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    permission_action_map = {
        "list": "garage.view",
        "retrieve": "garage.view",
        "staff": "garage.view",
        "create": "admin.records.manage",
        "partial_update": "admin.records.manage",
    }

    def get_queryset(self):
        return scoped_queryset_for_user(super().get_queryset(), self.request.user, field="id")

    def _audit(self, garage, action_name, before=None):
        create_audit_log_from_request(
            self.request,
            action=f"garage.{action_name}",
            entity="garage",
            entity_id=garage.id,
            before_snapshot=before,
            after_snapshot=self.get_serializer(garage).data,
            garage=garage,
        )

    def perform_create(self, serializer):
        self._audit(serializer.save(), "create")

    def perform_update(self, serializer):
        before = self.get_serializer(serializer.instance).data
        self._audit(serializer.save(), "update", before=before)

    @action(detail=True, methods=["get"], url_path="staff")
    def staff(self, request, pk=None):
        members = User.objects.filter(garage=self.get_object(), is_active=True)
        if request.query_params.get("role"):
            members = members.filter(role=request.query_params["role"])
        return Response(StaffSerializer(members.order_by("username"), many=True).data)


def filter_audit_logs(queryset, params):
    created_from = parse_date_param(params.get("start_date"))
    created_to = parse_date_param(params.get("end_date"), end_of_day=True)
    if created_from:
        queryset = queryset.filter(created_at__gte=created_from)
    if created_to:
        queryset = queryset.filter(created_at__lte=created_to)
    if params.get("actor_id"):
        queryset = queryset.filter(actor_id=parse_uuid(params["actor_id"]))
    for field in ("action", "entity", "entity_id"):
        if params.get(field):
            queryset = queryset.filter(**{field: params[field]})
    return queryset


AUDIT_EXPORT_COLUMNS = ["id", "created_at", "actor", "garage", "action", "entity", "entity_id", "request_id"]


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "garage")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "audit.view", "retrieve": "audit.view", "export": "audit.view"}

    def get_queryset(self):
        queryset = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        return filter_audit_logs(queryset, self.request.query_params).order_by("-created_at")

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'
        writer = csv.writer(response)
        writer.writerow(AUDIT_EXPORT_COLUMNS)
        for entry in self.get_queryset():
            writer.writerow(
                [
                    entry.id,
                    entry.created_at.isoformat(),
                    entry.actor.username if entry.actor else "",
                    entry.garage.name if entry.garage else "",
                    entry.action,
                    entry.entity,
                    entry.entity_id,
                    entry.request_id,
                ]
            )
        return response


def _probe(request, state, **extra):
    return {"status": state, "request_id": getattr(request, "request_id", None), **extra}


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response(_probe(request, "ok"))


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
    except DatabaseError as exc:
        logger.exception("readiness_check_failed")
        return Response(_probe(request, "error", detail=str(exc)), status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(_probe(request, "ready"))
