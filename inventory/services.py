import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction
from django.db.models import Case, CharField, F, Value, When
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.utils import to_quantity
from inventory import ledger
from inventory.models import InventoryItem, StockMovement
from inventory.requirements import get_inventory_requirements_for_services, get_service_requirements

logger = logging.getLogger(__name__)

derive_stock_status = ledger.derive_stock_status


@dataclass
class AdjustmentResult:
    item: InventoryItem
    movement: StockMovement
    shortfall: Decimal = Decimal("0")

    @property
    def clamped(self):
        return self.shortfall > 0


@dataclass
class AvailabilityReport:
    available: bool
    shortages: list = field(default_factory=list)


def resolve_reference_type(*, job_sheet_id=None, booking_id=None, automated=False):
    if job_sheet_id:
        return StockMovement.ReferenceType.JOB_SHEET
    if booking_id:
        return StockMovement.ReferenceType.BOOKING
    if automated:
        return StockMovement.ReferenceType.SYSTEM
    return StockMovement.ReferenceType.MANUAL


def adjust_stock(
    *,
    item,
    mode,
    quantity,
    reason,
    performed_by=None,
    reference="",
    job_sheet_id=None,
    booking_id=None,
    service_code="",
    notes="",
    automated=False,
):
    """Apply one stock adjustment and append its ledger entry.

    This is the only code path that writes `InventoryItem.quantity`.
    """
    if mode not in ledger.MOVEMENT_TYPES:
        raise ValidationError({"type": f"Movement type must be one of: {', '.join(ledger.MOVEMENT_TYPES)}."})
    quantity = to_quantity(quantity)
    if quantity < 0:
        raise ValidationError({"quantity": "Quantity must be zero or greater."})
    if not reason or not str(reason).strip():
        raise ValidationError({"reason": "A reason is required for every stock movement."})

    with transaction.atomic():
        locked = InventoryItem.objects.select_for_update().get(pk=item.pk)
        previous = locked.quantity
        outcome = ledger.apply_movement(previous, mode, quantity)

        locked.quantity = outcome.quantity
        update_fields = ["quantity", "updated_at"]
        if mode == ledger.INCREASE and quantity > 0:
            locked.last_restocked_at = timezone.now()
            update_fields.append("last_restocked_at")
        locked.save(update_fields=update_fields)

        movement = StockMovement.objects.create(
            garage_id=locked.garage_id,
            item=locked,
            type=mode,
            quantity=quantity,
            previous_quantity=previous,
            resulting_quantity=outcome.quantity,
            shortfall=outcome.shortfall,
            reference_type=resolve_reference_type(job_sheet_id=job_sheet_id, booking_id=booking_id, automated=automated),
            reference=reference or "",
            job_sheet_id=job_sheet_id,
            booking_id=booking_id,
            service_code=service_code or "",
            reason=str(reason).strip(),
            notes=notes or "",
            performed_by=performed_by,
        )

    item.quantity = locked.quantity
    item.last_restocked_at = locked.last_restocked_at

    logger.info(
        "stock_adjusted item=%s sku=%s type=%s quantity=%s previous=%s resulting=%s reference_type=%s movement=%s",
        locked.id,
        locked.sku,
        mode,
        quantity,
        previous,
        outcome.quantity,
        movement.reference_type,
        movement.id,
    )
    if outcome.shortfall > 0:
        logger.warning(
            "stock_shortfall item=%s sku=%s requested=%s available=%s shortfall=%s reference=%s",
            locked.id,
            locked.sku,
            quantity,
            previous,
            outcome.shortfall,
            movement.reference,
        )

    return AdjustmentResult(item=locked, movement=movement, shortfall=outcome.shortfall)


def create_inventory_item(*, garage_id, performed_by=None, quantity=Decimal("0"), **fields):
    """Create an item and record its opening balance as a SYSTEM movement."""
    with transaction.atomic():
        item = InventoryItem.objects.create(garage_id=garage_id, quantity=Decimal("0"), **fields)
        adjust_stock(
            item=item,
            mode=ledger.SET,
            quantity=quantity,
            reason="Opening balance",
            performed_by=performed_by,
            automated=True,
        )
    return item


def replay_item_ledger(item):
    return ledger.replay_movements(item.movements.order_by("id"))


def annotate_stock_status(queryset):
    return queryset.annotate(
        stock_status=Case(
            When(quantity__lte=0, then=Value(ledger.OUT)),
            When(quantity__lte=F("reorder_level"), then=Value(ledger.LOW)),
            default=Value(ledger.IN_STOCK),
            output_field=CharField(),
        )
    )


def check_inventory_availability(garage_id, requirements):
    """Compare consolidated requirements against current stock.

    An item is short when it is missing from the garage's active stock or its
    quantity is below what the services need.
    """
    skus = [requirement.sku for requirement in requirements]
    items = {
        item.sku: item
        for item in InventoryItem.objects.filter(garage_id=garage_id, sku__in=skus, is_active=True)
    }

    shortages = []
    for requirement in requirements:
        item = items.get(requirement.sku)
        available = item.quantity if item else Decimal("0")
        if item is None or available < requirement.quantity:
            shortages.append(
                {
                    "sku": requirement.sku,
                    "item_id": str(item.id) if item else None,
                    "name": item.name if item else None,
                    "required": str(requirement.quantity),
                    "available": str(available),
                    "unit": requirement.unit,
                    "missing": item is None,
                    "service_codes": list(requirement.service_codes),
                }
            )
    return AvailabilityReport(available=not shortages, shortages=shortages)


def availability_for_services(garage_id, service_codes):
    return check_inventory_availability(garage_id, get_inventory_requirements_for_services(service_codes))


def deduct_inventory_for_services(*, garage_id, service_codes, performed_by=None, reference="", job_sheet_id=None, booking_id=None):
    """Draw each service's consumables from stock, one movement per service line.

    Required items the garage does not stock are skipped and logged.
    """
    results = []
    with transaction.atomic():
        for code in service_codes:
            for requirement in get_service_requirements(code):
                item = InventoryItem.objects.filter(garage_id=garage_id, sku=requirement.sku, is_active=True).first()
                if item is None:
                    logger.warning(
                        "stock_item_missing sku=%s service=%s reference=%s",
                        requirement.sku,
                        code,
                        reference,
                    )
                    continue
                results.append(
                    adjust_stock(
                        item=item,
                        mode=ledger.DECREASE,
                        quantity=requirement.quantity,
                        reason=f"Job {reference} - {item.name}" if reference else f"Service {code} - {item.name}",
                        performed_by=performed_by,
                        reference=reference,
                        job_sheet_id=job_sheet_id,
                        booking_id=booking_id,
                        service_code=code,
                    )
                )
    return results


def build_stock_alerts(queryset):
    queryset = annotate_stock_status(queryset.filter(is_active=True))
    flagged = list(queryset.filter(stock_status__in=[ledger.LOW, ledger.OUT]).order_by("quantity", "name"))
    return {
        "low_count": sum(1 for item in flagged if item.stock_status == ledger.LOW),
        "out_count": sum(1 for item in flagged if item.stock_status == ledger.OUT),
        "items": flagged,
    }


def build_filter_options(queryset):
    def _distinct(field_name):
        values = queryset.exclude(**{field_name: ""}).order_by(field_name).values_list(field_name, flat=True).distinct()
        return list(values)

    return {
        "categories": _distinct("category"),
        "suppliers": _distinct("supplier"),
        "locations": _distinct("location"),
        "units": [value for value, _ in InventoryItem.Unit.choices],
        "statuses": [value for value, _ in InventoryItem.StockStatus.choices],
    }
