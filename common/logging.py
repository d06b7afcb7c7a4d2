from __future__ import annotations

import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

_request_context: ContextVar[dict | None] = ContextVar("request_context", default=None)

CONTEXT_FIELDS = (
    "request_id",
    "path",
    "method",
    "status_code",
    "duration_ms",
    "remote_addr",
    "user_id",
    "garage_id",
)


def current_request_id() -> str | None:
    context = _request_context.get()
    return context.get("request_id") if context else None


class RequestContextFilter(logging.Filter):
    """Stamp the active request id onto every record.

    Service loggers (`job_transition`, `stock_shortfall`, `invoice_created`)
    run far from the request object; this is how their lines stay
    correlated with the request that triggered them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = _request_context.get()
        if context:
            for key, value in context.items():
                if getattr(record, key, None) is None:
                    setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _actor_ids(request):
    user = getattr(request, "user", None)
    if user is None or not getattr(user, "is_authenticated", False):
        return None, None
    garage_id = getattr(user, "garage_id", None)
    return str(user.id), str(garage_id) if garage_id else None


class RequestLogMiddleware:
    """Assign or propagate `X-Request-ID` and log one line per request.

    Server errors are logged at ERROR and client errors at WARNING.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.request_id = request_id
        token = _request_context.set({"request_id": request_id})
        try:
            response = self.get_response(request)
        finally:
            _request_context.reset(token)

        user_id, garage_id = _actor_ids(request)
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.log(
            level,
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
                "remote_addr": request.META.get("REMOTE_ADDR"),
                "user_id": user_id,
                "garage_id": garage_id,
            },
        )
        response["X-Request-ID"] = request_id
        return response
