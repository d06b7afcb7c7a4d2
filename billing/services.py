import logging
import random
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from billing.models import Invoice
from billing.pricing import calculate_pricing
from common.exceptions import InvalidTransition, ServiceUnavailable
from common.utils import to_json_compatible, to_money

logger = logging.getLogger(__name__)

INVOICE_TRANSITIONS = {
    Invoice.Status.DRAFT: {Invoice.Status.SENT, Invoice.Status.PAID, Invoice.Status.CANCELLED},
    Invoice.Status.SENT: {Invoice.Status.PAID, Invoice.Status.OVERDUE, Invoice.Status.CANCELLED},
    Invoice.Status.OVERDUE: {Invoice.Status.PAID, Invoice.Status.CANCELLED},
    Invoice.Status.PAID: set(),
    Invoice.Status.CANCELLED: set(),
}
SETTLED_STATUSES = (Invoice.Status.PAID, Invoice.Status.CANCELLED)


class InvoiceNumberUnavailable(ServiceUnavailable):
    default_detail = "Could not allocate a unique invoice number."
    default_code = "invoice_number_unavailable"


def generate_invoice_number(issued_date=None):
    issued_date = issued_date or timezone.localdate()
    return f"INV-{issued_date:%y%m%d}-{random.randint(0, 9999):04d}"


def is_overdue(invoice, today=None):
    today = today or timezone.localdate()
    return invoice.status not in SETTLED_STATUSES and today > invoice.due_date


def overdue_filter(today=None):
    today = today or timezone.localdate()
    return Q(due_date__lt=today) & ~Q(status__in=SETTLED_STATUSES)


def _service_snapshot(service):
    return to_json_compatible(
        {
            "id": service.get("id"),
            "service_code": service.get("service_code", ""),
            "name": service["name"],
            "description": service.get("description", ""),
            "duration_minutes": service.get("duration_minutes", 0),
            "price": Decimal(str(service.get("price", 0))),
        }
    )


def create_invoice_for_job_sheet(job_sheet, services, created_by=None, issued_date=None):
    """Issue the invoice for a completed job sheet.

    Calling this again for the same job sheet returns the invoice already on
    file. Invoice numbers are retried on collision up to
    `INVOICE_NUMBER_MAX_ATTEMPTS` times.
    """
    existing = Invoice.objects.filter(job_sheet=job_sheet).first()
    if existing is not None:
        return existing

    booking = job_sheet.booking
    snapshots = [_service_snapshot(service) for service in services]
    pricing = calculate_pricing([snapshot["price"] for snapshot in snapshots])
    issued_date = issued_date or timezone.localdate()

    for attempt in range(1, settings.INVOICE_NUMBER_MAX_ATTEMPTS + 1):
        number = generate_invoice_number(issued_date)
        try:
            with transaction.atomic():
                invoice = Invoice.objects.create(
                    garage_id=job_sheet.garage_id,
                    invoice_number=number,
                    job_sheet=job_sheet,
                    booking=booking,
                    customer_name=booking.customer_name,
                    customer=booking.customer_snapshot(),
                    vehicle=booking.vehicle_snapshot(),
                    services=snapshots,
                    subtotal=pricing.subtotal,
                    service_charge=pricing.service_charge,
                    vat=pricing.vat,
                    total_amount=pricing.total,
                    issued_date=issued_date,
                    due_date=issued_date + timedelta(days=settings.INVOICE_DUE_DAYS),
                    created_by=created_by,
                )
        except IntegrityError:
            existing = Invoice.objects.filter(job_sheet=job_sheet).first()
            if existing is not None:
                return existing
            logger.warning("invoice_number_collision number=%s attempt=%s job_sheet=%s", number, attempt, job_sheet.id)
            continue

        logger.info(
            "invoice_created invoice=%s number=%s job_sheet=%s total=%s",
            invoice.id,
            invoice.invoice_number,
            job_sheet.id,
            invoice.total_amount,
        )
        return invoice

    raise InvoiceNumberUnavailable(f"Could not allocate a unique invoice number for {issued_date:%Y-%m-%d}.")


def change_invoice_status(invoice, target, *, payment_method="", paid_date=None, notes=None):
    with transaction.atomic():
        locked = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if target not in INVOICE_TRANSITIONS.get(locked.status, set()):
            raise InvalidTransition(f"Invoice cannot move from {locked.status} to {target}.")

        previous = locked.status
        locked.status = target
        update_fields = ["status", "updated_at"]
        if target == Invoice.Status.PAID:
            locked.paid_date = paid_date or timezone.localdate()
            locked.payment_method = payment_method or ""
            update_fields += ["paid_date", "payment_method"]
        if notes is not None:
            locked.notes = notes
            update_fields.append("notes")
        locked.save(update_fields=update_fields)

    logger.info("invoice_status_changed invoice=%s from=%s to=%s", locked.id, previous, target)
    return locked


def mark_as_paid(invoice, *, payment_method, paid_date=None):
    if payment_method and payment_method not in Invoice.PaymentMethod.values:
        raise ValidationError({"payment_method": f"Payment method must be one of: {', '.join(Invoice.PaymentMethod.values)}."})
    return change_invoice_status(invoice, Invoice.Status.PAID, payment_method=payment_method, paid_date=paid_date)


def mark_overdue_invoices(garage=None, today=None):
    """Flag every sent invoice past its due date as OVERDUE. Returns the count."""
    today = today or timezone.localdate()
    qs = Invoice.objects.filter(status=Invoice.Status.SENT, due_date__lt=today)
    if garage is not None:
        qs = qs.filter(garage=garage)
    updated = qs.update(status=Invoice.Status.OVERDUE, updated_at=timezone.now())
    logger.info("invoices_marked_overdue count=%s garage=%s date=%s", updated, getattr(garage, "id", None), today)
    return updated


def build_invoice_summary(queryset, today=None):
    totals = queryset.aggregate(
        total_invoices=Count("id"),
        grand_total=Sum("total_amount"),
        paid_amount=Sum("total_amount", filter=Q(status=Invoice.Status.PAID)),
        pending_amount=Sum("total_amount", filter=Q(status__in=[Invoice.Status.DRAFT, Invoice.Status.SENT])),
        overdue_amount=Sum("total_amount", filter=overdue_filter(today)),
    )
    return {
        "total_invoices": totals["total_invoices"],
        "total_amount": str(to_money(totals["grand_total"] or 0)),
        "paid_amount": str(to_money(totals["paid_amount"] or 0)),
        "pending_amount": str(to_money(totals["pending_amount"] or 0)),
        "overdue_amount": str(to_money(totals["overdue_amount"] or 0)),
    }


def revenue_by_period(queryset, start_date, end_date):
    """Sum of paid invoice totals issued between two dates, inclusive."""
    total = queryset.filter(
        status=Invoice.Status.PAID,
        issued_date__gte=start_date,
        issued_date__lte=end_date,
    ).aggregate(total=Sum("total_amount"))["total"]
    return to_money(total or 0)
