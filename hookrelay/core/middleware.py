"""
FastAPI Middleware and exception handlers

- CorrelationIdMiddleware: adopts a producer-supplied X-Correlation-ID
  (when it is well formed) so one id spans producer, ingestion and delivery
- RequestLoggingMiddleware: one line per request, probes excluded
- exception handlers rendering every error as ``{"error": {code, message, details}}``
"""
import re
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from hookrelay.core.exceptions import AppException, ErrorCode
from hookrelay.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# ids land verbatim in every log line, so only short tokens are adopted
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

_UNLOGGED_PATHS = frozenset({"/health", "/health/ready"})


def _adoptable(correlation_id: str | None) -> str | None:
    if correlation_id and _CORRELATION_ID_PATTERN.match(correlation_id):
        return correlation_id
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(_adoptable(request.headers.get(CORRELATION_HEADER)))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs completion (or failure) of each request with its duration"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in _UNLOGGED_PATHS:
            return await call_next(request)

        started = time.monotonic()
        request_data = {
            "method": request.method,
            "path": path,
            "client_host": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {path}",
                extra_data={
                    **request_data,
                    "duration_seconds": round(time.monotonic() - started, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise

        log = logger.info if response.status_code < 400 else logger.warning
        log(
            f"{request.method} {path} -> {response.status_code}",
            extra_data={
                **request_data,
                "status_code": response.status_code,
                "duration_seconds": round(time.monotonic() - started, 4),
            }
        )
        return response


def _error_response(status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={CORRELATION_HEADER: get_correlation_id()}
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        }
    )
    return _error_response(exc.status_code, exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Body/query schema failures use the same 400 shape as ingestion
    validation, with the first offending field in ``details.field``.
    """
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    error = AppException(
        message=first.get("msg", "Invalid request"),
        error_code=ErrorCode.VALIDATION_ERROR,
        status_code=400,
        details={"field": ".".join(location) or None, "errors": len(errors)},
    )
    return await app_exception_handler(request, error)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected exceptions: logged with traceback, never echoed to the caller"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True
    )
    return _error_response(500, {
        "error": {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "An unexpected error occurred",
            "details": {}
        }
    })


def setup_middleware(app: FastAPI) -> None:
    # the last middleware added is the outermost:
    # CorrelationId → RequestLogging → app
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
