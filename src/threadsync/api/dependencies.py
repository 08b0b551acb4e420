"""
FastAPI dependencies wiring services to the request session.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from threadsync.db.connection import get_db
from threadsync.providers.title import TitleGenerator
from threadsync.services import ConversationEngine, ShareService, StreamingCoordinator


@lru_cache
def get_title_generator() -> TitleGenerator:
    """Process-wide title generator."""
    return TitleGenerator()


@lru_cache
def get_coordinator() -> StreamingCoordinator:
    """Process-wide streaming coordinator; owns the active-generation registry."""
    return StreamingCoordinator()


def get_engine(
    session: Session = Depends(get_db),
    title_generator: TitleGenerator = Depends(get_title_generator),
) -> ConversationEngine:
    return ConversationEngine(session, title_generator=title_generator)


def get_share_service(session: Session = Depends(get_db)) -> ShareService:
    return ShareService(session)
