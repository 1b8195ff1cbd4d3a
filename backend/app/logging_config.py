"""Logging setup and per-request access logging.

Every record carries the current request id, so lines written by routers,
the importer and the error handlers can be tied back to one HTTP call.
"""
from __future__ import annotations
from contextvars import ContextVar
from typing import Callable
import logging
import sys
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("sqlalchemy.engine", "multipart", "python_multipart", "httpx")

logger = logging.getLogger("app.access")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    # idempotent: create_app may run more than once per process (tests)
    for h in list(root.handlers):
        if getattr(h, "_pubtrack", False):
            root.removeHandler(h)
    handler = logging.StreamHandler(sys.stdout)
    handler._pubtrack = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration; echoes X-Request-ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception("%s %s failed after %.1fms", request.method, request.url.path, duration_ms)
            raise
        else:
            duration_ms = (time.perf_counter() - start) * 1000
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(level, "%s %s -> %d (%.1fms)", request.method, request.url.path, response.status_code, duration_ms)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)
