import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from schoolboard.core.logging import request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id (the caller's, when it sends one) and logs its outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        started = time.perf_counter()
        details = {"method": request.method, "path": request.url.path}
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                details["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
                logger.error(f"{details['method']} {details['path']} failed: {exc}", extra=details)
                raise

            details["status_code"] = response.status_code
            details["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                f"{details['method']} {details['path']} - {response.status_code} ({details['duration_ms']}ms)",
                extra=details,
            )
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
