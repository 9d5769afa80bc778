"""Global exception handlers.

Every error leaves the API as ``{"error", "detail", "request_id"}``.
Domain errors (:class:`~app.errors.ForgeError`) carry their own status
code; anything unexpected becomes a 500 without a stack trace.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import ForgeError, format_error_response

logger = logging.getLogger(__name__)

_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def _get_request_id(request: Request) -> str:
    """Request id set by RequestIDMiddleware, or a fresh one (bare test apps)."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _respond(request: Request, status_code: int, error: str, detail: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error=error, detail=detail, request_id=_get_request_id(request),
        ),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for any unhandled exception -- 500."""
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method, request.url.path, _get_request_id(request),
        exc_info=exc,
    )
    return _respond(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", "Internal server error")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Starlette/FastAPI ``HTTPException`` keeps its status code."""
    logger.warning(
        "HTTP %s on %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail,
    )
    detail = str(exc.detail) if exc.detail else None
    return _respond(request, exc.status_code, detail or _TITLES.get(exc.status_code, "Error"), detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body / path validation failures -- 422."""
    errors = exc.errors()
    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, errors)
    return _respond(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors)


async def forge_error_handler(request: Request, exc: ForgeError) -> JSONResponse:
    """Domain errors map to their own status code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return _respond(request, exc.status_code, _TITLES.get(exc.status_code, "Error"), str(exc))


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ForgeError, forge_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
