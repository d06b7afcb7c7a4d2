import logging
from dataclasses import dataclass, field

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from billing.pricing import calculate_pricing
from billing.services import create_invoice_for_job_sheet
from bookings.models import Booking, BookingService
from bookings.services import add_booking_line, set_booking_status
from common.utils import to_money
from core.models import Garage
from inventory.services import availability_for_services, deduct_inventory_for_services
from workshop import transitions
from workshop.duration import calculate_work_duration
from workshop.models import Approval, DiagnosedService, JobSheet, TimeLog

logger = logging.getLogger(__name__)


@dataclass
class WorkResult:
    ok: bool
    job_sheet: JobSheet
    transition: transitions.TransitionResult | None = None
    warnings: list = field(default_factory=list)
    errors: dict = field(default_factory=dict)
    invoice: object = None
    conflict: bool = False


@dataclass
class DiagnosisResult(WorkResult):
    approval: Approval | None = None


def _conflict(job_sheet, message, transition=None, result_class=WorkResult):
    return result_class(ok=False, job_sheet=job_sheet, transition=transition, errors={"status": [message]}, conflict=True)


def _invalid(job_sheet, errors, result_class=WorkResult):
    return result_class(ok=False, job_sheet=job_sheet, errors=errors)


def _lock(job_sheet):
    return JobSheet.objects.select_for_update().get(pk=job_sheet.pk)


def next_job_number(garage_id):
    Garage.objects.select_for_update().get(pk=garage_id)
    return f"JB-{JobSheet.objects.filter(garage_id=garage_id).count() + 1:04d}"


def create_job_sheet(*, booking, technician=None, performed_by=None):
    if booking.status in (Booking.Status.COMPLETED, Booking.Status.CANCELLED):
        raise ValidationError({"booking": f"Cannot open a job sheet for a {booking.status} booking."})

    with transaction.atomic():
        if JobSheet.objects.filter(booking=booking).exists():
            raise ValidationError({"booking": "This booking already has a job sheet."})
        job_sheet = JobSheet.objects.create(
            garage_id=booking.garage_id,
            number=next_job_number(booking.garage_id),
            booking=booking,
            technician=technician or booking.technician,
            requires_diagnosis=booking.requires_diagnosis,
            created_by=performed_by,
        )

    logger.info("job_sheet_created job_sheet=%s number=%s booking=%s", job_sheet.id, job_sheet.number, booking.id)
    return job_sheet


def _line_payload(line, source):
    return {
        "id": str(line.id),
        "service_code": line.service_code,
        "name": line.name,
        "description": line.description,
        "duration_minutes": line.duration_minutes,
        "price": line.price,
        "source": source,
    }


def job_services(job_sheet):
    """Services the job is working on.

    The diagnosed services replace the booked ones unless the diagnosis was
    rejected.
    """
    if job_sheet.approval_status != JobSheet.ApprovalStatus.REJECTED:
        diagnosed = list(job_sheet.diagnosed_services.all())
        if diagnosed:
            return [_line_payload(line, BookingService.Source.DIAGNOSED) for line in diagnosed]
    booked = job_sheet.booking.services.filter(source=BookingService.Source.BOOKED)
    return [_line_payload(line, BookingService.Source.BOOKED) for line in booked]


def _log_time(job_sheet, action, performed_by, reason="", at=None):
    return TimeLog.objects.create(
        job_sheet=job_sheet,
        action=action,
        timestamp=at or timezone.now(),
        performed_by=performed_by,
        reason=reason or "",
    )


def _refresh_duration(job_sheet):
    job_sheet.total_work_duration = calculate_work_duration(job_sheet.time_logs.all())


def _log_transition(job_sheet, transition, performed_by):
    logger.info(
        "job_transition job_sheet=%s number=%s action=%s from=%s to=%s user=%s",
        job_sheet.id,
        job_sheet.number,
        transition.action,
        transition.from_status,
        transition.to_status,
        getattr(performed_by, "username", None),
    )


def _shortage_warnings(report):
    warnings = []
    for shortage in report.shortages:
        if shortage["missing"]:
            warnings.append(f"{shortage['sku']} is not stocked; {shortage['required']} {shortage['unit']} required.")
        else:
            warnings.append(
                f"Insufficient stock for {shortage['name']} ({shortage['sku']}): "
                f"required {shortage['required']}, available {shortage['available']}."
            )
    return warnings


def _approval_warnings(job_sheet):
    if job_sheet.approval_status == JobSheet.ApprovalStatus.PENDING:
        return ["Diagnosis is awaiting approval."]
    if job_sheet.requires_diagnosis and job_sheet.approval_status != JobSheet.ApprovalStatus.APPROVED:
        return ["Work started without an approved diagnosis."]
    return []


def start_job(job_sheet, performed_by=None, note=""):
    with transaction.atomic():
        locked = _lock(job_sheet)
        transition = transitions.evaluate_transition(locked.status, transitions.START)
        if not transition.ok:
            return _conflict(locked, transition.error, transition)
        warnings = _approval_warnings(locked)
        if not locked.inventory_deducted:
            codes = [service["service_code"] for service in job_services(locked) if service["service_code"]]
            warnings += _shortage_warnings(availability_for_services(locked.garage_id, codes))
            deduct_inventory_for_services(
                garage_id=locked.garage_id,
                service_codes=codes,
                performed_by=performed_by,
                reference=locked.number,
                job_sheet_id=locked.id,
                booking_id=locked.booking_id,
            )
            locked.inventory_deducted = True

        now = timezone.now()
        _log_time(locked, transitions.START, performed_by, note, at=now)
        locked.status = transition.to_status
        locked.started_at = now
        locked.save()
        set_booking_status(locked.booking, Booking.Status.IN_PROGRESS)

    _log_transition(locked, transition, performed_by)
    return WorkResult(ok=True, job_sheet=locked, transition=transition, warnings=warnings)


def pause_job(job_sheet, performed_by=None, reason=""):
    with transaction.atomic():
        locked = _lock(job_sheet)
        transition = transitions.evaluate_transition(locked.status, transitions.PAUSE)
        if not transition.ok:
            return _conflict(locked, transition.error, transition)
        if not (reason or "").strip():
            return _invalid(locked, {"reason": ["A reason is required to pause a job."]})

        now = timezone.now()
        _log_time(locked, transitions.PAUSE, performed_by, reason.strip(), at=now)
        locked.status = transition.to_status
        locked.paused_at = now
        _refresh_duration(locked)
        locked.save()

    _log_transition(locked, transition, performed_by)
    return WorkResult(ok=True, job_sheet=locked, transition=transition)


def resume_job(job_sheet, performed_by=None, note=""):
    with transaction.atomic():
        locked = _lock(job_sheet)
        transition = transitions.evaluate_transition(locked.status, transitions.RESUME)
        if not transition.ok:
            return _conflict(locked, transition.error, transition)

        _log_time(locked, transitions.RESUME, performed_by, note)
        locked.status = transition.to_status
        locked.paused_at = None
        locked.save()

    _log_transition(locked, transition, performed_by)
    return WorkResult(ok=True, job_sheet=locked, transition=transition)


def halt_job(job_sheet, performed_by=None, reason=""):
    with transaction.atomic():
        locked = _lock(job_sheet)
        transition = transitions.evaluate_transition(locked.status, transitions.HALT)
        if not transition.ok:
            return _conflict(locked, transition.error, transition)
        if not (reason or "").strip():
            return _invalid(locked, {"reason": ["A reason is required to halt a job."]})

        _log_time(locked, transitions.HALT, performed_by, reason.strip())
        locked.status = transition.to_status
        locked.halt_reason = reason.strip()
        locked.halted_by = performed_by
        _refresh_duration(locked)
        locked.save()

    _log_transition(locked, transition, performed_by)
    return WorkResult(ok=True, job_sheet=locked, transition=transition)


def complete_job(job_sheet, performed_by=None, note="", completed_services=None):
    """Finish the job, issue its invoice and close the booking.

    `completed_services` holds the ids of the service lines the technician has
    ticked off; every line returned by `job_services` must be present.
    """
    with transaction.atomic():
        locked = _lock(job_sheet)
        transition = transitions.evaluate_transition(locked.status, transitions.COMPLETE)
        if not transition.ok:
            return _conflict(locked, transition.error, transition)

        services = job_services(locked)
        ticked = {str(service_id) for service_id in (completed_services or [])}
        outstanding = [service["name"] for service in services if service["id"] not in ticked]
        if outstanding:
            return _invalid(
                locked,
                {"completed_services": [f"Service checklist incomplete: {', '.join(outstanding)}."]},
            )

        now = timezone.now()
        _log_time(locked, transitions.COMPLETE, performed_by, note, at=now)
        locked.status = transition.to_status
        locked.completed_at = now
        _refresh_duration(locked)
        locked.save()

        invoice = create_invoice_for_job_sheet(locked, services, created_by=performed_by)
        set_booking_status(locked.booking, Booking.Status.COMPLETED)

    _log_transition(locked, transition, performed_by)
    return WorkResult(ok=True, job_sheet=locked, transition=transition, invoice=invoice)


def cancel_job(job_sheet, performed_by=None, reason=""):
    with transaction.atomic():
        locked = _lock(job_sheet)
        transition = transitions.evaluate_transition(locked.status, transitions.CANCEL)
        if not transition.ok:
            return _conflict(locked, transition.error, transition)

        locked.status = transition.to_status
        locked.cancelled_at = timezone.now()
        locked.cancellation_reason = (reason or "").strip()
        _refresh_duration(locked)
        locked.save()

    _log_transition(locked, transition, performed_by)
    return WorkResult(ok=True, job_sheet=locked, transition=transition)


def _clean_diagnosed_services(services):
    errors = {}
    cleaned = []
    for index, service in enumerate(services):
        name = str(service.get("name") or "").strip()
        price = service.get("price")
        if not name:
            errors[f"services[{index}].name"] = ["A service name is required."]
            continue
        try:
            price = to_money(price)
            duration = int(service.get("duration_minutes") or service.get("duration") or 0)
        except (ArithmeticError, ValueError, TypeError):
            errors[f"services[{index}]"] = ["A valid price and duration are required."]
            continue
        if price < 0:
            errors[f"services[{index}].price"] = ["Price must be zero or greater."]
            continue
        cleaned.append(
            {
                "service_code": str(service.get("service_code") or service.get("serviceId") or ""),
                "name": name,
                "description": str(service.get("description") or ""),
                "duration_minutes": duration,
                "price": price,
            }
        )
    return cleaned, errors


def submit_diagnosis(job_sheet, services, notes, submitted_by=None):
    """Record a technician's diagnosis and open it for approval.

    A pending approval is updated in place; after a rejection a new approval
    record is opened.
    """
    errors = {}
    services = services or []
    if not services:
        errors["services"] = ["At least one diagnosed service is required."]
    if not (notes or "").strip():
        errors["notes"] = ["Diagnosis notes are required."]
    cleaned, line_errors = _clean_diagnosed_services(services)
    errors.update(line_errors)
    if errors:
        return _invalid(job_sheet, errors, result_class=DiagnosisResult)

    with transaction.atomic():
        locked = _lock(job_sheet)
        if locked.is_terminal:
            return _conflict(locked, f"Cannot diagnose a {locked.status.lower()} job sheet.", result_class=DiagnosisResult)
        if locked.approval_status == JobSheet.ApprovalStatus.APPROVED:
            return _conflict(locked, "The diagnosis has already been approved.", result_class=DiagnosisResult)

        locked.diagnosed_services.all().delete()
        lines = [
            DiagnosedService.objects.create(job_sheet=locked, position=position, added_by=submitted_by, **service)
            for position, service in enumerate(cleaned)
        ]
        pricing = calculate_pricing([line.price for line in lines])
        booking = locked.booking
        snapshot = [
            {key: value for key, value in _line_payload(line, BookingService.Source.DIAGNOSED).items() if key != "source"}
            for line in lines
        ]
        now = timezone.now()

        approval = locked.approvals.filter(status=Approval.Status.PENDING).first()
        if approval is None:
            approval = Approval(garage_id=locked.garage_id, job_sheet=locked, booking=booking)
        approval.customer_name = booking.customer_name
        approval.vehicle_info = booking.vehicle_info
        approval.services = [dict(line, price=str(line["price"])) for line in snapshot]
        approval.subtotal = pricing.subtotal
        approval.service_charge = pricing.service_charge
        approval.vat = pricing.vat
        approval.total_amount = pricing.total
        approval.submitted_by = submitted_by
        approval.submitted_at = now
        approval.save()

        locked.diagnosis_notes = notes.strip()
        locked.approval_status = JobSheet.ApprovalStatus.PENDING
        locked.rejection_reason = ""
        locked.save()
        booking.diagnosis_notes = notes.strip()
        booking.save(update_fields=["diagnosis_notes", "updated_at"])

    logger.info(
        "diagnosis_submitted job_sheet=%s approval=%s services=%s total=%s",
        locked.id,
        approval.id,
        len(lines),
        pricing.total,
    )
    return DiagnosisResult(ok=True, job_sheet=locked, approval=approval)


def approve_diagnosis(job_sheet, reviewer=None, notes=""):
    with transaction.atomic():
        locked = _lock(job_sheet)
        if locked.is_terminal:
            return _conflict(locked, f"Cannot approve a diagnosis on a {locked.status.lower()} job sheet.", result_class=DiagnosisResult)
        if locked.approval_status != JobSheet.ApprovalStatus.PENDING:
            return _conflict(locked, "There is no diagnosis awaiting approval.", result_class=DiagnosisResult)

        now = timezone.now()
        locked.approval_status = JobSheet.ApprovalStatus.APPROVED
        locked.approved_by = reviewer
        locked.approved_at = now
        locked.save()

        approval = locked.approvals.filter(status=Approval.Status.PENDING).first()
        if approval is not None:
            approval.status = Approval.Status.APPROVED
            approval.reviewed_by = reviewer
            approval.reviewed_at = now
            approval.notes = notes or ""
            approval.save()

        booking = locked.booking
        booking.services.filter(source=BookingService.Source.DIAGNOSED).delete()
        for line in locked.diagnosed_services.all():
            add_booking_line(
                booking,
                name=line.name,
                service_code=line.service_code,
                description=line.description,
                duration_minutes=line.duration_minutes,
                price=line.price,
                source=BookingService.Source.DIAGNOSED,
            )

    logger.info("diagnosis_approved job_sheet=%s approval=%s reviewer=%s", locked.id, getattr(approval, "id", None), getattr(reviewer, "username", None))
    return DiagnosisResult(ok=True, job_sheet=locked, approval=approval)


def reject_diagnosis(job_sheet, reviewer=None, reason=""):
    if not (reason or "").strip():
        return _invalid(job_sheet, {"reason": ["A reason is required to reject a diagnosis."]}, result_class=DiagnosisResult)

    with transaction.atomic():
        locked = _lock(job_sheet)
        if locked.approval_status != JobSheet.ApprovalStatus.PENDING:
            return _conflict(locked, "There is no diagnosis awaiting approval.", result_class=DiagnosisResult)

        now = timezone.now()
        locked.approval_status = JobSheet.ApprovalStatus.REJECTED
        locked.rejection_reason = reason.strip()
        locked.save()

        approval = locked.approvals.filter(status=Approval.Status.PENDING).first()
        if approval is not None:
            approval.status = Approval.Status.REJECTED
            approval.reviewed_by = reviewer
            approval.reviewed_at = now
            approval.rejection_reason = reason.strip()
            approval.save()

    logger.info("diagnosis_rejected job_sheet=%s approval=%s reviewer=%s", locked.id, getattr(approval, "id", None), getattr(reviewer, "username", None))
    return DiagnosisResult(ok=True, job_sheet=locked, approval=approval)
