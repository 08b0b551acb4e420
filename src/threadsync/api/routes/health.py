"""
Health check route.
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from threadsync.api.schemas import HealthResponse
from threadsync.db.connection import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": HealthResponse}},
)
def health(session: Session = Depends(get_db)) -> HealthResponse | JSONResponse:
    """Report whether the database is reachable (503 when it is not)."""
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        session.rollback()
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=HealthResponse(status="error", database="disconnected").model_dump(),
        )
    return HealthResponse(status="ok", database="connected")
