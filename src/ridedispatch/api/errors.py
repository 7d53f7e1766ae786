"""Maps core exceptions to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ridedispatch.core.exceptions import (
    AssignmentFailedError,
    ConflictError,
    DispatchError,
    DuplicateIDError,
    NotFoundError,
    PermissionDeniedError,
    StoreTimeoutError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins
_STATUS_CODES: list[tuple[type[DispatchError], int]] = [
    (StoreTimeoutError, 504),
    (TransientError, 503),
    (ValidationError, 422),
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ConflictError, 409),
    (DuplicateIDError, 409),
    (AssignmentFailedError, 409),
]


def status_code_for(exc: DispatchError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": exc.message},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DispatchError, dispatch_error_handler)  # type: ignore[arg-type]
