"""API routes for Match game sessions."""

import logging
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException

from backend.api.dependencies import get_card_source, get_progress_store
from backend.api.schemas import (
    HardCardResponse,
    MatchStateResponse,
    PickRequest,
    PickResponse,
    ProgressSummaryResponse,
    ResolutionResponse,
    SessionEndResponse,
    SessionStartRequest,
    TileResponse,
)
from backend.card_source import CardSourceError, QuizletClient, parse_cards
from backend.config import settings
from backend.match.progress import ProgressStore, ProgressSummary
from backend.match.session import (
    MatchSession,
    SessionStateError,
    UnknownTileError,
    start_match_session,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/match", tags=["match"])

# In-memory session store, idle sessions expire after settings.session_ttl_seconds
_active_sessions: dict[str, MatchSession] = {}
_last_used: dict[str, float] = {}


def summary_response(summary: ProgressSummary) -> ProgressSummaryResponse:
    return ProgressSummaryResponse(
        learned=summary.learned,
        remaining=summary.remaining,
        mistakes=summary.mistakes,
        total_wrong=summary.total_wrong,
        hardest=[HardCardResponse(card_id=card_id, wrong=wrong) for card_id, wrong in summary.hardest],
        best_time_ms=summary.best_time_ms,
    )


def _state_response(session_id: str, match_session: MatchSession) -> MatchStateResponse:
    snapshot = match_session.snapshot()
    return MatchStateResponse(
        session_id=session_id,
        learner_id=match_session.learner_id,
        set_id=match_session.set_id,
        state=snapshot.state.value,
        tiles=[
            TileResponse(
                id=tile.id,
                card_id=tile.card_id,
                side=tile.side.value,
                text=tile.text,
                solved=tile.solved,
                picked=tile.picked,
            )
            for tile in snapshot.tiles
        ],
        locked=snapshot.locked,
        total_cards=snapshot.total_cards,
        batch_size=snapshot.batch_size,
        pairs_left=snapshot.pairs_left,
        elapsed_ms=snapshot.elapsed_ms,
        batch_completed=snapshot.batch_completed,
        summary=summary_response(snapshot.summary),
        persistence_warning=snapshot.persistence_warning,
    )


def _drop(session_id: str) -> MatchSession | None:
    _last_used.pop(session_id, None)
    return _active_sessions.pop(session_id, None)


def _sweep_expired() -> None:
    """End and forget sessions that have been idle past the TTL."""
    now = time.monotonic()
    expired = [
        session_id
        for session_id, used_at in _last_used.items()
        if now - used_at > settings.session_ttl_seconds
    ]
    for session_id in expired:
        match_session = _drop(session_id)
        if match_session is not None:
            match_session.end()
    if expired:
        logger.info("Expired %d idle match sessions", len(expired))


def _get_active(session_id: str) -> MatchSession:
    _sweep_expired()
    match_session = _active_sessions.get(session_id)
    if not match_session:
        raise HTTPException(status_code=404, detail="Session not found")
    _last_used[session_id] = time.monotonic()
    return match_session


@router.post("/start", response_model=MatchStateResponse)
async def match_start(
    request: SessionStartRequest,
    store: ProgressStore = Depends(get_progress_store),
    card_source: QuizletClient = Depends(get_card_source),
) -> MatchStateResponse:
    """Start a Match session and deal the first batch."""
    if request.cards is not None:
        cards = parse_cards([card.model_dump() for card in request.cards])
    else:
        try:
            cards = await card_source.fetch_set_cards(request.set_id)
        except CardSourceError as exc:
            logger.warning("Card fetch failed for set %s: %s", request.set_id, exc)
            raise HTTPException(status_code=502, detail="Could not load the set's cards") from exc

    match_session = await start_match_session(
        request.learner_id,
        request.set_id,
        cards,
        store,
        round_size=request.round_size,
    )
    _sweep_expired()
    session_id = str(uuid.uuid4())
    _active_sessions[session_id] = match_session
    _last_used[session_id] = time.monotonic()
    return _state_response(session_id, match_session)


@router.get("/{session_id}", response_model=MatchStateResponse)
async def match_state(session_id: str) -> MatchStateResponse:
    """Get the current board and counters."""
    return _state_response(session_id, _get_active(session_id))


@router.post("/{session_id}/pick", response_model=PickResponse)
async def match_pick(session_id: str, request: PickRequest) -> PickResponse:
    """Pick a tile; a second pick is resolved after the reveal delay."""
    match_session = _get_active(session_id)
    try:
        result, resolution = await match_session.pick_and_resolve(request.tile_id)
    except UnknownTileError as exc:
        raise HTTPException(status_code=404, detail="Tile not found") from exc

    resolution_response = None
    if resolution is not None:
        resolution_response = ResolutionResponse(
            matched=resolution.matched,
            card_ids=list(dict.fromkeys(tile.card_id for tile in resolution.tiles)),
            newly_learned=resolution.newly_learned,
            batch_completed=resolution.batch_completed,
            elapsed_ms=resolution.elapsed_ms,
        )
    return PickResponse(
        outcome=result.outcome.value,
        reason=result.reason,
        resolution=resolution_response,
        state=_state_response(session_id, match_session),
    )


@router.post("/{session_id}/next", response_model=MatchStateResponse)
async def match_next(session_id: str) -> MatchStateResponse:
    """Deal the next batch after the current one is cleared."""
    match_session = _get_active(session_id)
    try:
        await match_session.start_batch()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _state_response(session_id, match_session)


@router.post("/{session_id}/reset", response_model=MatchStateResponse)
async def match_reset(session_id: str) -> MatchStateResponse:
    """Forget the learner's progress on this set and deal a fresh batch."""
    match_session = _get_active(session_id)
    try:
        await match_session.reset()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _state_response(session_id, match_session)


@router.post("/{session_id}/end", response_model=SessionEndResponse)
async def match_end(session_id: str) -> SessionEndResponse:
    """End a session and clean up."""
    match_session = _drop(session_id)
    if not match_session:
        raise HTTPException(status_code=404, detail="Session not found")
    summary = match_session.end()
    return SessionEndResponse(status="ended", summary=summary_response(summary))
