"""Pydantic schemas for API request/response models."""

from datetime import datetime

from pydantic import BaseModel, Field

# --- Match session ---


class CardIn(BaseModel):
    """A card supplied inline when starting a session."""

    id: str
    term: str
    explanation: str


class SessionStartRequest(BaseModel):
    """Request to start a Match session.

    When ``cards`` is omitted the set's cards are fetched from the flashcard API.
    """

    learner_id: str
    set_id: str
    cards: list[CardIn] | None = None
    round_size: int | None = Field(default=None, ge=1)


class PickRequest(BaseModel):
    tile_id: str


class TileResponse(BaseModel):
    id: str
    card_id: str
    side: str  # term, definition
    text: str
    solved: bool
    picked: bool


class HardCardResponse(BaseModel):
    card_id: str
    wrong: int


class ProgressSummaryResponse(BaseModel):
    learned: int
    remaining: int
    mistakes: int
    total_wrong: int
    hardest: list[HardCardResponse]
    best_time_ms: int | None


class MatchStateResponse(BaseModel):
    """The board and counters for an active session."""

    session_id: str
    learner_id: str
    set_id: str
    state: str  # idle, dealt, picking, resolving, completed, empty, ended
    tiles: list[TileResponse]
    locked: bool
    total_cards: int
    batch_size: int
    pairs_left: int
    elapsed_ms: int
    batch_completed: bool
    summary: ProgressSummaryResponse
    persistence_warning: str | None = None


class ResolutionResponse(BaseModel):
    matched: bool
    card_ids: list[str]
    newly_learned: bool
    batch_completed: bool
    elapsed_ms: int | None = None


class PickResponse(BaseModel):
    """Response after picking a tile."""

    outcome: str  # ignored, pending, resolving
    reason: str | None = None
    resolution: ResolutionResponse | None = None
    state: MatchStateResponse


class SessionEndResponse(BaseModel):
    status: str
    summary: ProgressSummaryResponse


# --- Stored progress ---


class CardStatsResponse(BaseModel):
    seen: bool
    wrong: int
    correct: int
    streak: int
    last_seen_at: datetime | None = None


class StoredProgressResponse(BaseModel):
    """Stored progress for one learner and set."""

    learner_id: str
    set_id: str
    completed_card_ids: list[str]
    stats_by_card: dict[str, CardStatsResponse]
    best_time_ms: int | None
    updated_at: datetime
    summary: ProgressSummaryResponse
