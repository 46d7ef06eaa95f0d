"""SQLAlchemy ORM models for the Match game database."""

from backend.models.base import Base
from backend.models.progress_record import ProgressRecord

__all__ = ["Base", "ProgressRecord"]
