"""
Exception handlers mapping core errors onto HTTP responses.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from threadsync.api.schemas import ErrorResponse
from threadsync.exceptions import StorageUnavailableError, ThreadSyncError

logger = logging.getLogger(__name__)

# Documented on every router; the bodies come from the handlers below
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def error_body(error: ThreadSyncError) -> dict[str, str]:
    """Wire form of a core error."""
    return ErrorResponse(detail=error.message, error=error.code).model_dump()


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for ThreadSyncError and storage outages."""

    @app.exception_handler(ThreadSyncError)
    async def handle_threadsync_error(
        request: Request, exc: ThreadSyncError
    ) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(OperationalError)
    async def handle_operational_error(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        logger.error(f"Database unavailable during {request.method} {request.url.path}: {exc}")
        error = StorageUnavailableError("Database is unavailable")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=error_body(error)
        )
