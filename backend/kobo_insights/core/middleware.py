"""
Request middleware: correlation ids, timing and request timeouts.
"""
import asyncio
import uuid
import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from fastapi import status
from fastapi.responses import JSONResponse
from kobo_insights.core.errors import ErrorCodes, get_error_response
from kobo_insights.core.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def error_json(status_code: int, error_code: str, correlation_id: str, **headers) -> JSONResponse:
    """JSON error payload carrying the correlation id in body and header."""
    error_info = get_error_response(error_code)
    error_info['correlation_id'] = correlation_id
    return JSONResponse(
        status_code=status_code,
        content=error_info,
        headers={CORRELATION_HEADER: correlation_id, **headers},
    )


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id, time it and log the outcome."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.correlation_id = correlation_id
            return record

        logging.setLogRecordFactory(record_factory)

        start_time = time.time()
        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={"method": request.method, "path": request.url.path}
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            PerformanceMonitor.record_metric(
                "request_duration",
                duration,
                {
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code
                }
            )

            response.headers[CORRELATION_HEADER] = correlation_id
            response.headers["X-Response-Time"] = f"{duration:.3f}"

            logger.info(
                f"Request completed: {request.method} {request.url.path} - {response.status_code} ({duration:.3f}s)",
                extra={"status_code": response.status_code, "duration": duration}
            )
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - {e} ({duration:.3f}s)",
                extra={"error": str(e), "duration": duration},
                exc_info=True
            )
            return error_json(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCodes.UNKNOWN_ERROR, correlation_id)

        finally:
            logging.setLogRecordFactory(old_factory)


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that run longer than the configured timeout."""

    def __init__(self, app, timeout_seconds: float):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            correlation_id = getattr(request.state, 'correlation_id', 'unknown')
            logger.error(f"Request timeout after {self.timeout_seconds} seconds: {request.url.path}")
            return error_json(status.HTTP_504_GATEWAY_TIMEOUT, ErrorCodes.TIMEOUT, correlation_id)
