"""Request tracing for the analytics API: request ids, timing and slow-report warnings."""
import time
import uuid
import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sitelog.config import SLOW_REPORT_MS

logger = logging.getLogger("sitelog-api.middleware")

QUIET_PATHS = {"/health", "/metrics"}
ANALYTICS_PREFIX = "/api/analytics/"


def report_name(path: str) -> Optional[str]:
    """'/api/analytics/breakdown/team' -> 'breakdown'; None outside the analytics router."""
    if not path.startswith(ANALYTICS_PREFIX):
        return None
    head = path[len(ANALYTICS_PREFIX):].split("/", 1)[0]
    return head or None


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Echoes (or mints) X-Request-ID and sets X-Process-Time on every response.

    Analytics requests are logged with the report they hit and the reference
    date they were computed for; those slower than ``slow_ms`` log at WARNING.
    Health and metrics requests are not logged.
    """

    def __init__(self, app, slow_ms: float = SLOW_REPORT_MS):
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        path = request.url.path
        if path in QUIET_PATHS:
            return response

        extra = {"request_id": request_id, "duration_ms": duration_ms}
        report = report_name(path)
        if report is None:
            logger.info(f"{request.method} {path} -> {response.status_code}", extra=extra)
            return response

        extra["report"] = report
        as_of = request.query_params.get("today", "today")
        if duration_ms > self.slow_ms:
            logger.warning(f"Slow report '{report}' as of {as_of}: {duration_ms} ms", extra=extra)
        else:
            logger.info(f"{report} as of {as_of} -> {response.status_code}", extra=extra)
        return response
