"""Request context middleware — one correlation id per request.

A single provisioning request fans out into tenant, team, user and
membership calls, each of which logs.  Tagging every one of those lines
with the same request id is what lets an operator reconstruct which
saga step failed for which caller.

The id lives in a ContextVar rather than a thread-local: FastAPI runs
many requests concurrently on one thread, and each asyncio task gets its
own copy of the context.  The filter below copies it onto every
LogRecord, so the formatters in core/logging.py can print it without
any call site passing it along.

If the caller (or an upstream gateway) sends X-Request-ID we keep it;
otherwise we mint a UUID.  Either way it is echoed on the response.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Keep an explicit extra={"request_id": ...} if one was passed
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


def install_request_context_filter(
    target: logging.Logger | logging.Handler | None = None,
) -> None:
    """Attach the filter once; safe to call repeatedly."""
    target = target or logging.getLogger()
    if not any(isinstance(f, _RequestContextFilter) for f in target.filters):
        target.addFilter(_RequestContextFilter())


# Root-logger filters do not run for records from child loggers, so the
# filter is also attached to every root handler in setup_logging().
install_request_context_filter()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, time the request and log one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)

        start = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            request_id_var.reset(token)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
