"""Request logging middleware for the reviewflow API.

Every request gets a correlation id (taken from ``X-Correlation-ID`` or
generated) that is echoed on the response and merged into all log lines and
audit metadata produced while the request is handled. The caller identity
header is bound as ``actor_id`` for the same span, and requests slower than
``slow_request_ms`` are logged at warning level.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware

from reviewflow.logging import clear_entity_context, get_logger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.types import ASGIApp

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
ACTOR_HEADER = "X-User-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration, correlation id and actor."""

    def __init__(self, app: ASGIApp, slow_request_ms: float = 1000.0) -> None:
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        actor = request.headers.get(ACTOR_HEADER)
        if actor:
            structlog.contextvars.bind_contextvars(actor_id=actor)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=self._elapsed_ms(start),
            )
            raise
        finally:
            set_correlation_id(None)
            structlog.contextvars.unbind_contextvars("actor_id")
            clear_entity_context()

        duration_ms = self._elapsed_ms(start)
        log = logger.warning if duration_ms >= self.slow_request_ms else logger.info
        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            correlation_id=correlation_id,
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)
