"""
Correlation ID middleware
=========================
Tags every request with an X-Correlation-ID (taken from the client or freshly
generated) so the request log line, any access-gate denial and the response
can be matched up.
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

HEADER = "X-Correlation-ID"


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "request %s %s -> %s (%.1fms) correlation_id=%s",
            request.method, request.url.path, response.status_code, elapsed_ms, correlation_id,
        )

        response.headers[HEADER] = correlation_id
        return response
