"""FastAPI middleware for observability.

Assigns a request ID to every HTTP request and logs one line per request
with the caller's organization, so a slow or failed match can be traced from
the access log to the matcher's own log lines.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import get_logger
from .request_id import generate_request_id, set_request_id

logger = get_logger(__name__)

# Scraped by monitoring every few seconds; logged at DEBUG only
_QUIET_PATHS = frozenset({"/health", "/metrics"})


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate X-Request-ID and log request outcome and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        path = request.url.path
        context = {"method": request.method, "path": path}
        org_header = request.headers.get("X-Org-ID")
        if org_header:
            context["org_id"] = org_header

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"{request.method} {path} failed",
                extra={**context, "duration_ms": _elapsed_ms(start_time)},
                exc_info=True,
            )
            raise

        log = logger.debug if path in _QUIET_PATHS else logger.info
        log(
            f"{request.method} {path} -> {response.status_code}",
            extra={**context, "status_code": response.status_code, "duration_ms": _elapsed_ms(start_time)},
        )

        response.headers["X-Request-ID"] = request_id
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)
