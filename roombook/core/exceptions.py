from enum import Enum
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from roombook.core.request_context import request_id_ctx_var


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    NOT_FOUND = "not_found"
    TOKEN_EXPIRED = "token_expired"
    EXTERNAL_SYNC_FAILURE = "external_sync_failure"
    FORBIDDEN = "forbidden"


class BookingError(Exception):
    """Base class for recoverable booking engine errors.

    Subclasses pin the error kind and HTTP status; ``detail`` carries
    structured data the caller needs to render a specific message.
    """

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class BookingValidationError(BookingError):
    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConflictError(BookingError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflict: Any = None) -> None:
        detail = conflict.as_detail() if conflict is not None else None
        super().__init__(message, detail=detail)
        self.conflict = conflict


class InvalidStateError(BookingError):
    kind = ErrorKind.INVALID_STATE
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class TokenExpiredError(BookingError):
    kind = ErrorKind.TOKEN_EXPIRED
    status_code = status.HTTP_410_GONE


class ExternalSyncError(BookingError):
    kind = ErrorKind.EXTERNAL_SYNC_FAILURE
    status_code = status.HTTP_502_BAD_GATEWAY


class ForbiddenError(BookingError):
    kind = ErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN


def _error_payload(code: str, message: str, detail):
    return {
        "error": {
            "code": code,
            "message": message,
            "detail": detail,
        },
        "detail": detail,
        "request_id": request_id_ctx_var.get(),
    }


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(
            code=f"http_{exc.status_code}",
            message=str(exc.detail),
            detail=exc.detail,
        ),
        headers=exc.headers,
    )


async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_payload(
            code="validation_error",
            message="Request validation failed",
            detail=exc.errors(),
        ),
    )


async def booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(
            code=exc.kind.value,
            message=exc.message,
            detail=exc.detail,
        ),
    )
