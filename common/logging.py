from __future__ import annotations

import contextvars
import json
import logging
import time
import uuid
from datetime import datetime, timezone

current_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("current_request_id", default=None)

CONTEXT_FIELDS = (
    "request_id",
    "path",
    "method",
    "status_code",
    "duration_ms",
    "remote_addr",
    "user_id",
    "item_code",
    "location",
    "transfer_request_id",
    "sale_id",
)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logs.

    Domain loggers pass engine context (item code, location, transfer request)
    through ``extra``; the request id of the HTTP request being served is
    attached automatically when the record does not carry one.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = str(value) if isinstance(value, uuid.UUID) else value

        if "request_id" not in payload:
            request_id = current_request_id.get()
            if request_id:
                payload["request_id"] = request_id

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class RequestLogMiddleware:
    """Attach/propagate request ID and emit per-request access logs."""

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.request_id = request_id
        token = current_request_id.set(request_id)

        try:
            response = self.get_response(request)
        finally:
            current_request_id.reset(token)

        duration_ms = round((time.perf_counter() - started_at) * 1000, 2)
        user_id = None
        user = getattr(request, "user", None)
        if user is not None and getattr(user, "is_authenticated", False):
            user_id = str(user.id)

        self.logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.META.get("REMOTE_ADDR"),
                "user_id": user_id,
            },
        )
        response["X-Request-ID"] = request_id
        return response
