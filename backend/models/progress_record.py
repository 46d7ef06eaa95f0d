from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, TimestampMixin


class ProgressRecord(Base, TimestampMixin):
    """One serialized Match progress record per storage key."""

    __tablename__ = "match_progress"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)  # match_progress:<learner>:<set>
    value: Mapped[str] = mapped_column(Text, nullable=False)  # versioned JSON payload
