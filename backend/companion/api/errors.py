"""
Exception handlers mapping companion errors to HTTP responses.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    InvalidInput, StorageError, SessionNotFound, SessionEnded,
)

logger = logging.getLogger(__name__)

STORAGE_ERROR_DETAIL = "We couldn't save your message. Please try again."


def _error(status_code: int, code: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "detail": detail})


async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, exc.code, exc.message)


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(
        f"Storage failure on {request.method} {request.url.path}: {exc.message}",
        extra={"extra_fields": {"path": exc.path}}
    )
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc.code, STORAGE_ERROR_DETAIL)


async def session_not_found_handler(request: Request, exc: SessionNotFound) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, exc.code, exc.message)


async def session_ended_handler(request: Request, exc: SessionEnded) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, exc.code, exc.message)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the companion exception handlers on the app."""
    app.add_exception_handler(InvalidInput, invalid_input_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(SessionNotFound, session_not_found_handler)
    app.add_exception_handler(SessionEnded, session_ended_handler)
