"""
Translation of engine errors to HTTP responses.

Every error body names the failing step of the multi-step write and its
context (a retryable status commit carries ``saga_id``), plus the request
correlation ID for cross-referencing logs.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.exceptions import (
    ConflictError,
    EngineError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ScanTimeoutError,
    StorageError,
    ValidationError,
)
from src.core.logging import get_correlation_id, get_logger

logger = get_logger(__name__)

# Most specific classes first
ERROR_STATUS_CODES: list[tuple[type[EngineError], int]] = [
    (ScanTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PreconditionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StorageError, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(exc: EngineError) -> int:
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(code: int, body: dict) -> JSONResponse:
    body["correlation_id"] = get_correlation_id()
    return JSONResponse(status_code=code, content=body)


async def handle_engine_error(request: Request, exc: EngineError) -> JSONResponse:
    code = status_code_for(exc)
    log = logger.error if code >= 500 else logger.warning
    log(
        "Request failed",
        method=request.method,
        path=request.url.path,
        status_code=code,
        **exc.to_dict(),
    )
    return error_response(code, exc.to_dict())


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Schema failures are reported at the validate step like engine validation."""
    details = [
        {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
        for error in exc.errors()
    ]
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=details,
    )
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {
            "error": "Request validation failed",
            "error_type": "RequestValidationError",
            "step": "validate",
            "details": details,
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": "An unexpected error occurred",
            "error_type": "InternalServerError",
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, handle_engine_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
