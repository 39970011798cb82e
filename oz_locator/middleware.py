"""Request tracing middleware for the Opportunity Zone locator API"""

import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

TRACE_HEADER = "X-Trace-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns each request a trace id and binds it to the structlog context.

    Everything logged while the request is handled (zone lookups, refreshes
    started on its behalf, geocoder calls) carries the same trace_id, which is
    also echoed back in the X-Trace-ID header and in error bodies.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        request.state.trace_id = trace_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        started = time.perf_counter()
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            query=dict(request.query_params),
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed",
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
                exc_info=True,
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("trace_id")

        logger.info(
            "Request completed",
            trace_id=trace_id,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

        response.headers[TRACE_HEADER] = trace_id
        return response
