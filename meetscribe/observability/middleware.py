"""Request id propagation and per-request latency logging."""
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id (the caller's x-request-id or a fresh uuid), echoes it on the response and logs one line per request.
    Why available: Lets a client correlate a failed poll or config write with the server log."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = rid
        start = time.perf_counter()
        fields = {"request_id": rid, "path": request.url.path, "method": request.method}

        try:
            response = await call_next(request)
        except Exception:
            fields["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
            logger.exception("request_failed", extra=fields)
            raise

        fields["status"] = response.status_code
        fields["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "request", extra=fields)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
