"""
Request middleware: request id correlation and one access log line per call.

The route template (`/api/v1/bookings/{booking_id}`) and the booking id are
logged instead of the raw path, so log queries can group by endpoint and
follow a single booking across checkout, webhook and admin calls.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from retreat_booking.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Probes and scrapes would drown the booking traffic
QUIET_PATHS = frozenset({"/health", "/metrics"})


def _route_context(request: Request) -> dict:
    """Routing fills the scope in place, so this is only useful after call_next."""
    context = {}
    route = request.scope.get("route")
    if route is not None:
        context["route"] = getattr(route, "path", None)
    booking_id = request.scope.get("path_params", {}).get("booking_id")
    if booking_id:
        context["booking_id"] = booking_id
    return context


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                path=request.url.path,
                error=str(e),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                **_route_context(request),
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"

        if request.url.path in QUIET_PATHS:
            return response

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            "request_completed",
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            **_route_context(request),
        )
        return response
