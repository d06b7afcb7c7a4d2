import json

from django.core.serializers.json import DjangoJSONEncoder
from rest_framework.exceptions import ValidationError

from common.logging import current_request_id
from core.models import AuditLog


def get_request_id(request):
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID") or current_request_id()


def _json_safe(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def create_audit_log(
    *,
    actor=None,
    garage=None,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    return AuditLog.objects.create(
        actor=actor,
        garage=garage,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )


def create_audit_log_from_request(
    request,
    *,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    garage=None,
):
    user = getattr(request, "user", None)
    return create_audit_log(
        actor=user if user is not None and user.is_authenticated else None,
        garage=garage,
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )


class AuditedMutationMixin:
    """Stamp new records with the caller's garage and audit every write."""

    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None, entity=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=entity or self.audit_entity,
            entity_id=instance.pk,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            garage=getattr(instance, "garage", None),
        )

    def perform_create(self, serializer):
        user = self.request.user
        if not getattr(user, "garage_id", None):
            raise ValidationError("Authenticated user must belong to a garage to create records.")

        instance = serializer.save(garage_id=user.garage_id)
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )
