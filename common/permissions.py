import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

Role = User.Role

EVERYONE = frozenset(Role)
FRONT_DESK = frozenset({Role.ADVISOR, Role.MANAGER, Role.ADMIN})
WORKSHOP_FLOOR = frozenset({Role.TECHNICIAN, Role.MANAGER, Role.ADMIN})
MANAGEMENT = frozenset({Role.MANAGER, Role.ADMIN})

ROLE_CAPABILITY_MATRIX = {
    "garage.view": EVERYONE,
    "bookings.view": EVERYONE,
    "bookings.manage": FRONT_DESK,
    "catalog.manage": MANAGEMENT,
    "jobsheet.view": EVERYONE,
    "jobsheet.create": FRONT_DESK,
    "jobsheet.work": WORKSHOP_FLOOR,
    "jobsheet.diagnose": WORKSHOP_FLOOR,
    "jobsheet.cancel": FRONT_DESK,
    "approval.view": FRONT_DESK,
    "approval.decide": FRONT_DESK,
    "inventory.view": EVERYONE,
    "inventory.manage": MANAGEMENT,
    "stock.adjust": MANAGEMENT,
    "billing.view": FRONT_DESK,
    "billing.manage": FRONT_DESK,
    "vhc.view": EVERYONE,
    "vhc.perform": WORKSHOP_FLOOR,
    "vhc.assign": FRONT_DESK,
    "vhc.approve": MANAGEMENT,
    "audit.view": MANAGEMENT,
    "admin.records.manage": frozenset({Role.ADMIN}),
}


def get_user_role(user):
    """Role used for capability checks; superusers and role-less staff act as admin."""
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return Role.ADMIN
    if getattr(user, "role", None):
        return user.role
    return Role.ADMIN if getattr(user, "is_staff", False) else Role.TECHNICIAN


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return get_user_role(user) in ROLE_CAPABILITY_MATRIX.get(capability, ())


def capabilities_for_user(user):
    return sorted(capability for capability in ROLE_CAPABILITY_MATRIX if user_has_capability(user, capability))


class RoleCapabilityPermission(BasePermission):
    """Checks `view.permission_action_map[action]` against the role matrix.

    Actions missing from the map fall through to the other permission classes.
    """

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = getattr(view, "permission_action_map", {}).get(action_key)
        if capability is None or user_has_capability(request.user, capability):
            return True

        logger.warning(
            "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
            capability,
            getattr(request.user, "username", "anonymous"),
            get_user_role(request.user),
            request.method,
            request.path,
            view.__class__.__name__,
            action_key,
        )
        return False
