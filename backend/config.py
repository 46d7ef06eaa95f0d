from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Keeps datetimes naive so they stay compatible with SQLite (which doesn't
    store tz info) and with the stored progress timestamps.
    """
    return datetime.now(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Match Game"
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'match_game.db'}"
    round_size: int = 6
    learn_streak: int = 2  # consecutive correct matches before a card counts as learned
    resolve_delay_ms: int = 250
    ticker_interval_ms: int = 100
    hardest_cards_limit: int = 5
    session_ttl_seconds: int = 7200  # idle API sessions are dropped after 2 hours
    quizlet_api_url: str = "http://localhost:8080"
    quizlet_timeout_seconds: float = 10.0
    debug: bool = False

    model_config = {"env_prefix": "MATCH_GAME_", "env_file": ".env"}


settings = Settings()
