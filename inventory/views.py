from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from common.utils import apply_sorting, parse_date_param, parse_uuid
from core.views import scoped_queryset_for_user
from inventory.models import InventoryItem, StockMovement
from inventory.requirements import get_inventory_requirements_for_services
from inventory.serializers import (
    InventoryItemSerializer,
    StockAdjustmentSerializer,
    StockAlertItemSerializer,
    StockMovementSerializer,
)
from inventory.services import (
    adjust_stock,
    annotate_stock_status,
    build_filter_options,
    build_stock_alerts,
    check_inventory_availability,
)

ITEM_SORT_FIELDS = {
    "name": "name",
    "sku": "sku",
    "category": "category",
    "quantity": "quantity",
    "reorderLevel": "reorder_level",
    "status": "stock_status",
    "price": "price",
    "cost": "cost",
    "supplier": "supplier",
    "location": "location",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def filter_movements(queryset, params):
    movement_type = params.get("type")
    reference_type = params.get("referenceType")
    text = params.get("q")
    date_from = parse_date_param(params.get("from"))
    date_to = parse_date_param(params.get("to"), end_of_day=True)

    if params.get("item"):
        queryset = queryset.filter(item_id=parse_uuid(params["item"]))
    if movement_type:
        queryset = queryset.filter(type=movement_type)
    if reference_type:
        queryset = queryset.filter(reference_type=reference_type)
    if params.get("jobSheetId"):
        queryset = queryset.filter(job_sheet_id=parse_uuid(params["jobSheetId"]))
    if params.get("bookingId"):
        queryset = queryset.filter(booking_id=parse_uuid(params["bookingId"]))
    if text:
        queryset = queryset.filter(Q(reason__icontains=text) | Q(notes__icontains=text) | Q(reference__icontains=text))
    if date_from:
        queryset = queryset.filter(created_at__gte=date_from)
    if date_to:
        queryset = queryset.filter(created_at__lte=date_to)
    return queryset.order_by("-id")


class InventoryItemViewSet(
    AuditedMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = InventoryItem.objects.all()
    serializer_class = InventoryItemSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "movements": "inventory.view",
        "alerts": "inventory.view",
        "filter_options": "inventory.view",
        "requirements": "inventory.view",
        "create": "inventory.manage",
        "partial_update": "inventory.manage",
        "deactivate": "inventory.manage",
        "reactivate": "inventory.manage",
    }
    audit_entity = "inventory_item"

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context["garage_id"] = getattr(self.request.user, "garage_id", None)
        return context

    def get_queryset(self):
        qs = annotate_stock_status(scoped_queryset_for_user(super().get_queryset(), self.request.user))
        if self.action != "list":
            return qs

        params = self.request.query_params
        search = params.get("search") or params.get("q")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(sku__icontains=search) | Q(description__icontains=search))
        if params.get("category"):
            qs = qs.filter(category=params["category"])
        if params.get("status"):
            qs = qs.filter(stock_status=params["status"].upper())
        if params.get("supplier"):
            qs = qs.filter(supplier=params["supplier"])
        if params.get("location"):
            qs = qs.filter(location=params["location"])
        if params.get("includeInactive", "").lower() not in {"1", "true", "yes"}:
            qs = qs.filter(is_active=True)
        return apply_sorting(qs, params, ITEM_SORT_FIELDS, default=["name", "sku"])

    @action(detail=True, methods=["post"], url_path="deactivate")
    def deactivate(self, request, pk=None):
        return self._set_active(False)

    @action(detail=True, methods=["post"], url_path="reactivate")
    def reactivate(self, request, pk=None):
        return self._set_active(True)

    def _set_active(self, is_active):
        item = self.get_object()
        before_snapshot = self.get_serializer(item).data
        item.is_active = is_active
        item.save(update_fields=["is_active", "updated_at"])
        self._audit(
            action=f"{self.audit_entity}.{'reactivate' if is_active else 'deactivate'}",
            instance=item,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(item).data,
        )
        return Response(self.get_serializer(item).data)

    @action(detail=True, methods=["get"], url_path="movements")
    def movements(self, request, pk=None):
        item = self.get_object()
        qs = filter_movements(item.movements.select_related("item", "performed_by"), request.query_params)
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(StockMovementSerializer(page, many=True).data)
        return Response(StockMovementSerializer(qs, many=True).data)

    @action(detail=False, methods=["get"], url_path="alerts")
    def alerts(self, request):
        alerts = build_stock_alerts(scoped_queryset_for_user(InventoryItem.objects.all(), request.user))
        return Response(
            {
                "low_count": alerts["low_count"],
                "out_count": alerts["out_count"],
                "items": StockAlertItemSerializer(alerts["items"], many=True).data,
            }
        )

    @action(detail=False, methods=["get"], url_path="filter-options")
    def filter_options(self, request):
        return Response(build_filter_options(scoped_queryset_for_user(InventoryItem.objects.filter(is_active=True), request.user)))

    @action(detail=False, methods=["get"], url_path="requirements")
    def requirements(self, request):
        raw = request.query_params.get("services", "")
        service_codes = [code.strip() for code in raw.split(",") if code.strip()]
        if not service_codes:
            raise ValidationError({"services": "Provide one or more comma separated service codes."})

        requirements = get_inventory_requirements_for_services(service_codes)
        report = check_inventory_availability(request.user.garage_id, requirements)
        return Response(
            {
                "services": service_codes,
                "requirements": [requirement.as_dict() for requirement in requirements],
                "available": report.available,
                "shortages": report.shortages,
            }
        )


class StockMovementViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = StockMovement.objects.select_related("item", "performed_by")
    serializer_class = StockMovementSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "create": "stock.adjust",
    }

    def get_queryset(self):
        qs = scoped_queryset_for_user(super().get_queryset(), self.request.user)
        if self.action == "list":
            return filter_movements(qs, self.request.query_params)
        return qs

    def create(self, request):
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        item = scoped_queryset_for_user(InventoryItem.objects.all(), request.user).filter(id=data["item"]).first()
        if item is None:
            raise NotFound("Inventory item not found.")
        if not item.is_active:
            raise ValidationError({"item": "Inactive items cannot be adjusted."})

        result = adjust_stock(
            item=item,
            mode=data["type"],
            quantity=data["quantity"],
            reason=data["reason"],
            performed_by=request.user,
            reference=data["reference"],
            job_sheet_id=data["job_sheet_id"],
            booking_id=data["booking_id"],
            service_code=data["service_code"],
            notes=data["notes"],
        )
        movement_data = StockMovementSerializer(result.movement).data
        create_audit_log_from_request(
            request,
            action="stock.adjust",
            entity="stock_movement",
            entity_id=result.movement.id,
            after_snapshot=movement_data,
            garage=item.garage,
        )
        return Response(
            {
                "movement": movement_data,
                "item": InventoryItemSerializer(result.item).data,
                "shortfall": str(result.shortfall),
            },
            status=status.HTTP_201_CREATED,
        )
