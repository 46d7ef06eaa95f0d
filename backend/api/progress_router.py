"""API routes for stored Match progress."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from backend.api.dependencies import get_progress_store
from backend.api.match_router import summary_response
from backend.api.schemas import CardStatsResponse, StoredProgressResponse
from backend.config import settings
from backend.match.progress import ProgressStore, summarize_progress
from backend.match.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.get("/{learner_id}/{set_id}", response_model=StoredProgressResponse)
async def get_progress(
    learner_id: str,
    set_id: str,
    store: ProgressStore = Depends(get_progress_store),
) -> StoredProgressResponse:
    """Get a learner's stored progress on a set (empty if they never played)."""
    progress = await store.load(learner_id, set_id)
    summary = summarize_progress(progress, hardest_limit=settings.hardest_cards_limit)
    return StoredProgressResponse(
        learner_id=learner_id,
        set_id=set_id,
        completed_card_ids=sorted(progress.completed_card_ids),
        stats_by_card={
            card_id: CardStatsResponse(
                seen=stats.seen,
                wrong=stats.wrong,
                correct=stats.correct,
                streak=stats.streak,
                last_seen_at=stats.last_seen_at,
            )
            for card_id, stats in progress.stats_by_card.items()
        },
        best_time_ms=progress.best_time_ms,
        updated_at=progress.updated_at,
        summary=summary_response(summary),
    )


@router.delete("/{learner_id}/{set_id}")
async def reset_progress(
    learner_id: str,
    set_id: str,
    store: ProgressStore = Depends(get_progress_store),
) -> dict:
    """Delete a learner's stored progress on a set."""
    try:
        await store.reset(learner_id, set_id)
    except StorageError as exc:
        logger.warning("Reset failed for learner %s, set %s: %s", learner_id, set_id, exc)
        raise HTTPException(status_code=503, detail="Progress storage unavailable") from exc
    return {"status": "reset", "learner_id": learner_id, "set_id": set_id}
