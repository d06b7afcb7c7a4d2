import logging

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.exceptions import InvalidTransition
from vhc.models import VHCResponse
from vhc.scoring import convert_answers_for_storage, score_answers

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (VHCResponse.Status.DRAFT, VHCResponse.Status.IN_PROGRESS)


def create_response(*, garage, template, powertrain, vehicle_id, booking=None, service_codes=None, assigned_to=None, due_at=None, created_by=None):
    if not template.is_active:
        raise ValidationError({"template_id": "This template is no longer active."})

    response = VHCResponse.objects.create(
        garage=garage,
        template=template,
        template_version=template.version,
        powertrain=powertrain,
        status=VHCResponse.Status.IN_PROGRESS,
        vehicle_id=vehicle_id,
        booking=booking,
        service_codes=list(service_codes or []),
        assigned_to=assigned_to,
        assigned_by=created_by if assigned_to else None,
        due_at=due_at,
        created_by=created_by,
    )
    _rescore(response)
    response.save(update_fields=["section_scores", "total_score", "answered_count", "item_count"])
    logger.info("vhc_response_created response=%s template=%s vehicle=%s", response.id, template.id, vehicle_id)
    return response


def _normalize_answer(answer):
    item_id = answer.get("item_id") or answer.get("itemId")
    if not item_id:
        raise ValidationError({"answers": "Every answer needs an item_id."})
    normalized = {"item_id": str(item_id)}
    for key in ("value", "notes", "photos"):
        if key in answer:
            normalized[key] = answer[key]
    return normalized


def _rescore(response):
    score = score_answers(response.template.sections, response.powertrain, response.answers)
    response.section_scores = score.sections
    response.total_score = score.total
    response.answered_count = score.answered
    response.item_count = score.total_items
    return score


def update_answers(response, answers):
    """Merge answers into the response by item id and rescore it."""
    incoming = convert_answers_for_storage([_normalize_answer(answer) for answer in answers])
    with transaction.atomic():
        locked = VHCResponse.objects.select_for_update().select_related("template").get(pk=response.pk)
        if locked.status not in EDITABLE_STATUSES:
            raise InvalidTransition(f"Answers cannot be changed on a {locked.status} health check.")

        merged = {answer["item_id"]: answer for answer in locked.answers}
        for answer in incoming:
            merged[answer["item_id"]] = {**merged.get(answer["item_id"], {}), **answer}
        locked.answers = list(merged.values())
        _rescore(locked)
        locked.save()
    return locked


def _transition(response, allowed_from, target, **changes):
    with transaction.atomic():
        locked = VHCResponse.objects.select_for_update().get(pk=response.pk)
        if locked.status not in allowed_from:
            raise InvalidTransition(f"Cannot move a {locked.status} health check to {target}.")
        previous = locked.status
        locked.status = target
        for name, value in changes.items():
            setattr(locked, name, value)
        locked.save()
    logger.info("vhc_status_changed response=%s from=%s to=%s", locked.id, previous, target)
    return locked


def submit_response(response):
    return _transition(response, EDITABLE_STATUSES, VHCResponse.Status.SUBMITTED, submitted_at=timezone.now())


def approve_response(response, approved_by=None):
    return _transition(
        response,
        (VHCResponse.Status.SUBMITTED,),
        VHCResponse.Status.APPROVED,
        approved_by=approved_by,
        approved_at=timezone.now(),
    )


def void_response(response):
    return _transition(
        response,
        (VHCResponse.Status.DRAFT, VHCResponse.Status.IN_PROGRESS, VHCResponse.Status.SUBMITTED),
        VHCResponse.Status.VOID,
    )
