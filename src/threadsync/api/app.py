"""
threadsync FastAPI Application.

HTTP surface for threads, messages, branching, sharing and generation.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from threadsync import __version__
from threadsync.api.errors import ERROR_RESPONSES, register_exception_handlers
from threadsync.api.routes import health, messages, shares, threads
from threadsync.config import settings
from threadsync.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Configures logging and reports database reachability before serving.
    """
    setup_logging(context="api")

    from threadsync.db.connection import check_connection

    if check_connection():
        logger.info("✓ Database connection OK")
    else:
        logger.error("Database is unreachable; /health will report 503")

    logger.info("Application startup complete")

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title="threadsync API",
    description="Conversation state synchronization: threads, messages, branches and shares",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(
    threads.router, prefix="/threads", tags=["threads"], responses=ERROR_RESPONSES
)
app.include_router(
    messages.router, prefix="/messages", tags=["messages"], responses=ERROR_RESPONSES
)
app.include_router(
    shares.router, prefix="/shares", tags=["shares"], responses=ERROR_RESPONSES
)
