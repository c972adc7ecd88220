"""
Error types surfaced to API callers.

Every ``ServiceError`` carries an HTTP status and a short machine-readable
``error`` code; the handlers registered in ``flashdeck.create_app`` render it
as ``{"error": ..., "message": ...}``.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = 500
    error = "InternalServerError"

    def __init__(self, message: str, error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error


class NotFoundError(ServiceError):
    status_code = 404
    error = "NotFound"


class DeckNotFoundError(NotFoundError):
    error = "DeckNotFound"


class CardNotFoundError(NotFoundError):
    error = "CardNotFound"


class InvalidInputError(ServiceError):
    status_code = 400
    error = "InvalidInput"


class InvalidRatingError(InvalidInputError):
    error = "InvalidRating"


class InvalidReviewTimeError(InvalidInputError):
    error = "InvalidReviewTime"


class InvalidSnapshotError(InvalidInputError):
    error = "InvalidSnapshot"


class UnauthorizedError(ServiceError):
    status_code = 401
    error = "Unauthorized"


class PersistenceConflictError(ServiceError):
    """Concurrent write detected; the whole review must be retried."""

    status_code = 409
    error = "PersistenceConflict"


class InvariantViolationError(RuntimeError):
    """The scheduler produced a state it must never produce. Programming error."""


def _error_body(error: str, message: str) -> dict[str, str]:
    return {"error": error, "message": message}


async def _handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content=_error_body(exc.error, exc.message)
    )


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}" if loc else err.get("msg", ""))
    return JSONResponse(
        status_code=400,
        content=_error_body("InvalidInput", "; ".join(parts) or "Invalid request"),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("InternalServerError", "An unexpected error occurred."),
    )


def register_error_handlers(application: FastAPI) -> None:
    application.add_exception_handler(ServiceError, _handle_service_error)
    application.add_exception_handler(RequestValidationError, _handle_validation_error)
    application.add_exception_handler(Exception, _handle_unexpected)
