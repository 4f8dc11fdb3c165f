import logging
import sys
from datetime import datetime, UTC
from typing import Any, Dict
from uuid import uuid4
from pythonjsonlogger.jsonlogger import JsonFormatter
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from app.core.config import settings
import time

LOGGER_NAMES = [
    "api.request",
    "api.access",
    "api.auth",
    "api.events",
    "db",
    "uvicorn",
]

DENIAL_STATUSES = {401, 403, 410}

CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "event_id",
    "reason",
    "status_code",
    "duration",
)

class EventShareJsonFormatter(JsonFormatter):
    """One JSON object per record, with request and access-decision context lifted to the top level."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=datetime.fromtimestamp(record.created, UTC).isoformat(),
            level=record.levelname,
            logger=record.name,
            location=f"{record.module}:{record.funcName}:{record.lineno}",
            environment=settings.ENVIRONMENT,
        )
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value

def _build_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_JSON:
        handler.setFormatter(EventShareJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
    return handler

def _configure(level: int | str, propagate: bool, reset_root: bool) -> None:
    console_handler = _build_handler()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if reset_root:
        root_logger.handlers = [console_handler]

    for logger_name in LOGGER_NAMES:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        logger.propagate = propagate
        logger.handlers = [console_handler]

def setup_logging() -> None:
    """Configure logging for the application."""
    _configure(settings.LOG_LEVEL.upper(), propagate=False, reset_root=True)

def setup_test_logging() -> None:
    """Same handlers, but records propagate so caplog sees them."""
    _configure(logging.INFO, propagate=True, reset_root=False)

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs how it ended.

    Denied requests (401, 403, 410) are logged at warning level together with
    whether the caller presented a guest session or a bearer token.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        extra: Dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "guest_session": "X-Guest-Session" in request.headers,
            "bearer": request.headers.get("Authorization", "").startswith("Bearer "),
        }

        try:
            response = await call_next(request)
        except Exception as exc:
            extra["duration"] = round(time.perf_counter() - started, 4)
            extra["error_type"] = exc.__class__.__name__
            request_logger.error("Request failed", extra=extra, exc_info=True)
            raise

        extra["duration"] = round(time.perf_counter() - started, 4)
        extra["status_code"] = response.status_code
        if response.status_code in DENIAL_STATUSES:
            request_logger.warning("Request denied", extra=extra)
        else:
            request_logger.info("Request completed", extra=extra)

        response.headers["X-Request-ID"] = request_id
        return response

# Create specific loggers
request_logger = logging.getLogger("api.request")
access_logger = logging.getLogger("api.access")
auth_logger = logging.getLogger("api.auth")
events_logger = logging.getLogger("api.events")
db_logger = logging.getLogger("db")
