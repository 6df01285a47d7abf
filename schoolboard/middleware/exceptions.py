from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from schoolboard.core.exceptions import BackendError, PermissionDeniedError, UnknownEntityError
from schoolboard.schemas.response import ErrorResponse, ErrorDetail
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging
import uuid

logger = logging.getLogger(__name__)

def _get_error_code(status_code: int) -> str:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_SERVER_ERROR",
        502: "BAD_GATEWAY",
    }
    return code_map.get(status_code, f"HTTP_{status_code}")

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())

def _error_response(request: Request, status_code: int, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    error_response = ErrorResponse(
        error=ErrorDetail(
            code=code or _get_error_code(status_code),
            message=message,
            details=details
        ),
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=str(request.url),
        request_id=_request_id(request)
    )
    return JSONResponse(status_code=status_code, content=error_response.model_dump())

def jsonable_errors(exc: RequestValidationError):
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"[{_request_id(request)}] Validation error: {exc.errors()}")
    return _error_response(
        request, 422, "Request validation failed",
        code="VALIDATION_ERROR",
        details={"validation_errors": jsonable_errors(exc)}
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning(f"[{_request_id(request)}] HTTP {exc.status_code}: {message}")
    response = _error_response(request, exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response

async def unknown_entity_handler(request: Request, exc: UnknownEntityError):
    logger.warning(f"[{_request_id(request)}] {exc}")
    return _error_response(request, 404, str(exc))

async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    logger.warning(f"[{_request_id(request)}] {exc}")
    return _error_response(request, 403, "You do not have permission to perform this action.")

async def backend_error_handler(request: Request, exc: BackendError):
    status_code = exc.status_code if exc.status_code in (400, 404, 409) else 502
    logger.error(f"[{_request_id(request)}] Backend error {exc.status_code}: {exc.message}")
    return _error_response(request, status_code, exc.message)

async def global_exception_handler(request: Request, exc: Exception):
    request_id = _request_id(request)
    logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
    return _error_response(
        request, 500, "An unexpected error occurred",
        details={"error_type": type(exc).__name__}
    )
