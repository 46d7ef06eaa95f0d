"""Shared FastAPI dependencies for the Match routers."""

from backend.card_source import QuizletClient
from backend.database import async_session
from backend.match.progress import ProgressStore
from backend.match.storage import DatabaseStorage


def get_progress_store() -> ProgressStore:
    """Return a progress store backed by the application database."""
    return ProgressStore(DatabaseStorage(async_session))


def get_card_source() -> QuizletClient:
    return QuizletClient()
