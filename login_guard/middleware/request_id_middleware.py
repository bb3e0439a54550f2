"""
Request ID Middleware for log correlation.

This middleware:
1. Generates a unique request ID (UUID4) for each request
2. Respects an incoming X-Request-ID header
3. Sets the request_id in contextvars so throttle logs carry it
4. Adds X-Request-ID to response headers
5. Logs request completion with timing and the client IP used for throttling

Usage in main.py:
    from login_guard.middleware.request_id_middleware import RequestIdMiddleware
    app.add_middleware(RequestIdMiddleware)  # Add LAST so it runs FIRST
"""

import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from login_guard.utils.client_ip import extract_client_ip
from login_guard.utils.structured_logger import set_request_id, clear_request_id, get_logger

logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate request IDs.

    Should be added LAST in the middleware chain so it runs FIRST.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        set_request_id(request_id)
        request.state.request_id = request_id
        request.state.client_ip = extract_client_ip(request.headers)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": request.state.client_ip,
                }
            )

            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000

            logger.error(
                "Request failed with exception",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:500],
                },
                exc_info=True
            )
            raise

        finally:
            clear_request_id()
