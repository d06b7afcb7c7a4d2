import logging

from django.db import transaction
from rest_framework.exceptions import ValidationError

from bookings.models import Booking, BookingService, Service
from common.exceptions import InvalidTransition
from common.utils import parse_uuid

logger = logging.getLogger(__name__)

BOOKING_TRANSITIONS = {
    Booking.Status.PENDING: {Booking.Status.CONFIRMED, Booking.Status.IN_PROGRESS, Booking.Status.CANCELLED},
    Booking.Status.CONFIRMED: {Booking.Status.IN_PROGRESS, Booking.Status.CANCELLED},
    Booking.Status.IN_PROGRESS: {Booking.Status.COMPLETED, Booking.Status.CANCELLED},
    Booking.Status.COMPLETED: set(),
    Booking.Status.CANCELLED: set(),
}


def can_transition_booking(current, target):
    return target in BOOKING_TRANSITIONS.get(current, set())


def set_booking_status(booking, target, *, strict=False):
    """Move a booking to `target` if the table allows it.

    Returns True when the status changed. With `strict` an illegal move raises
    `InvalidTransition`, otherwise it is logged and ignored.
    """
    if booking.status == target:
        return False
    if not can_transition_booking(booking.status, target):
        if strict:
            raise InvalidTransition(f"Booking cannot move from {booking.status} to {target}.")
        logger.info("booking_status_skipped booking=%s from=%s to=%s", booking.id, booking.status, target)
        return False

    previous = booking.status
    booking.status = target
    booking.save(update_fields=["status", "updated_at"])
    logger.info("booking_status_changed booking=%s from=%s to=%s", booking.id, previous, target)
    return True


def resolve_service(garage_id, service_ref):
    """Find a catalog entry by its code, falling back to its UUID."""
    if not service_ref:
        return None
    service = Service.objects.filter(garage_id=garage_id, code=str(service_ref)).first()
    if service is None:
        service_uuid = parse_uuid(service_ref)
        if service_uuid is not None:
            service = Service.objects.filter(garage_id=garage_id, id=service_uuid).first()
    return service


def add_booking_line(booking, *, name, service=None, service_code="", description="", duration_minutes=0, price=0, source=BookingService.Source.BOOKED):
    position = booking.services.count()
    return BookingService.objects.create(
        booking=booking,
        service=service,
        service_code=service_code or (service.code if service else ""),
        name=name,
        description=description,
        duration_minutes=duration_minutes,
        price=price,
        source=source,
        position=position,
    )


def create_booking(*, garage, service_ref, service_name, customer, car, date, start_time, end_time, bay, technician=None, requires_diagnosis=False, notes="", created_by=None):
    if end_time <= start_time:
        raise ValidationError({"endTime": "End time must be after start time."})

    service = resolve_service(garage.id, service_ref)
    with transaction.atomic():
        booking = Booking.objects.create(
            garage=garage,
            customer_name=customer["name"],
            customer_phone=customer.get("phone", ""),
            customer_email=customer.get("email", ""),
            vehicle_make=car.get("make", ""),
            vehicle_model=car.get("model", ""),
            vehicle_year=car.get("year"),
            vehicle_license=car.get("license", ""),
            vehicle_vin=car.get("vin", ""),
            date=date,
            start_time=start_time,
            end_time=end_time,
            bay=bay,
            technician=technician,
            requires_diagnosis=requires_diagnosis,
            notes=notes or "",
            created_by=created_by,
        )
        add_booking_line(
            booking,
            name=service_name,
            service=service,
            service_code=service.code if service else str(service_ref),
            description=service.description if service else "",
            duration_minutes=service.duration_minutes if service else 0,
            price=service.price if service else 0,
        )

    logger.info(
        "booking_created booking=%s garage=%s service=%s date=%s bay=%s",
        booking.id,
        garage.id,
        service_ref,
        date,
        bay,
    )
    return booking
