from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class InvalidTransition(exceptions.APIException):
    """Raised when a lifecycle action is not legal from the current status."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "This action is not allowed in the current state."
    default_code = "invalid_transition"


class ServiceUnavailable(exceptions.APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "The request could not be completed right now. Try again later."
    default_code = "service_unavailable"


# Checked in order; the first matching class wins.
STABLE_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (exceptions.ValidationError, "validation_error"),
    (exceptions.NotAuthenticated, "not_authenticated"),
    (exceptions.AuthenticationFailed, "authentication_failed"),
    (exceptions.PermissionDenied, "permission_denied"),
    (exceptions.NotFound, "not_found"),
    (exceptions.MethodNotAllowed, "method_not_allowed"),
    (exceptions.NotAcceptable, "not_acceptable"),
    (exceptions.UnsupportedMediaType, "unsupported_media_type"),
    (exceptions.ParseError, "parse_error"),
    (exceptions.Throttled, "throttled"),
    (InvalidTransition, "invalid_transition"),
)


def build_error_envelope(
    *,
    code: str,
    message: str,
    errors: Any,
    status_code: int,
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(code=code, message=message, errors=errors, status_code=status_code),
        status=status_code,
    )


def raise_for_result(result: Any) -> None:
    """Raise the API error for a failed service result.

    Results flagged as a conflict carry their message under `errors["status"]`
    and map to 409; any other failure maps to a 400 with the field errors.
    """
    if result.ok:
        return
    if result.conflict:
        messages = result.errors.get("status") or [None]
        raise InvalidTransition(messages[0])
    raise exceptions.ValidationError(result.errors)


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, Http404):
        exc = exceptions.NotFound(*exc.args)
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied(*exc.args)

    view = context.get("view")
    view_name = view.__class__.__name__ if view else "unknown"
    response = drf_exception_handler(exc, context)

    if response is None:
        logger.exception("unhandled_api_exception view=%s", view_name)
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    code = _stable_code(exc)
    if response.status_code >= 500:
        logger.error("api_error code=%s status=%s view=%s", code, response.status_code, view_name)
    elif response.status_code == status.HTTP_409_CONFLICT:
        logger.info("api_conflict code=%s view=%s detail=%s", code, view_name, getattr(exc, "detail", ""))

    response.data = build_error_envelope(
        code=code,
        message=_message(exc, response.data),
        errors=_field_errors(response.data),
        status_code=response.status_code,
    )
    return response


def _stable_code(exc: Exception) -> str:
    for exception_type, code in STABLE_ERROR_CODES:
        if isinstance(exc, exception_type):
            return code
    return str(getattr(exc, "default_code", "api_error"))


def _message(exc: Exception, data: Any) -> str:
    if isinstance(exc, exceptions.ValidationError):
        return "Validation failed."

    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    if isinstance(exc, exceptions.Throttled):
        return "Request was throttled."
    return str(getattr(exc, "detail", "Request failed."))


def _field_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        return None if set(data) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
