"""
Structured JSON logging for the inbox.

Every record carries ts, level and logger name; records emitted while a
request is in flight also carry its request_id. Each HTTP request ends with
one "Request completed" line, enriched with webhook fields on /webhook.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from inbox.metrics import record_http_request


request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REQUEST_LOGGER = "inbox.requests"

# Loggers owned by the server process; routed through our handler
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class InboxJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding ts, level and the in-flight request id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("ts", _utc_timestamp())
        log_record["level"] = record.levelname

        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Install the JSON handler on the root logger and the uvicorn loggers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(InboxJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers = [handler]
        server_logger.propagate = False

    # RequestLoggingMiddleware writes the access line itself
    logging.getLogger("uvicorn.access").disabled = True
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root


def _route_label(request: Request) -> str:
    # Route template, so /messages/{message_id}/status is one series
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with an id, time it, record metrics and log one line.

    Log keys: ts, level, request_id, method, path, status, latency_ms, plus
    message_id, kind, result and dup when the webhook route attached them.
    The id is echoed back in the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id

            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=_route_label(request),
                    status=response.status_code,
                    latency_seconds=elapsed,
                )

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
                **getattr(request.state, "webhook_log_data", {}),
            }
            logging.getLogger(REQUEST_LOGGER).log(
                _level_for(response.status_code), "Request completed", extra=fields
            )
            return response
        finally:
            request_id_ctx.reset(token)


def log_webhook_data(
    request: Request,
    message_id: Optional[str] = None,
    kind: Optional[str] = None,
    result: Optional[str] = None,
    dup: bool = False,
):
    """Stash webhook outcome fields for the request log line."""
    fields = {"message_id": message_id, "kind": kind, "result": result}
    request.state.webhook_log_data = {
        **{key: value for key, value in fields.items() if value is not None},
        "dup": dup,
    }
