"""Per-learner Match progress: card statistics, mastery and best batch time.

Progress is keyed by (learner, set) and kept in durable key-value storage
as versioned JSON. Every update below is pure: it returns a new
MatchProgress and leaves its input untouched, so callers can persist
exactly the value they hold.

Mastery is permanent. A card joins ``completed_card_ids`` the first time its
streak reaches the learn threshold and stays there even if later misses
reset the streak.
"""

import json
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from backend.config import utcnow
from backend.match.storage import KeyValueStorage, StorageError

logger = logging.getLogger(__name__)

LEARN_STREAK = 2
PROGRESS_VERSION = 1
KEY_PREFIX = "match_progress"
MAX_TIME_MS = 2**63 - 1


@dataclass
class CardStats:
    """Learning statistics for one card."""

    seen: bool = False
    wrong: int = 0
    correct: int = 0
    streak: int = 0  # consecutive correct matches since the last miss
    last_seen_at: datetime | None = None


@dataclass
class MatchProgress:
    """Everything remembered about one learner playing one set."""

    completed_card_ids: frozenset[str] = frozenset()
    stats_by_card: dict[str, CardStats] = field(default_factory=dict)
    best_time_ms: int | None = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ProgressSummary:
    """Counters shown alongside the board."""

    learned: int
    remaining: int
    mistakes: int
    total_wrong: int
    hardest: list[tuple[str, int]]  # (card_id, wrong), most missed first
    best_time_ms: int | None


def storage_key(learner_id: str, set_id: str) -> str:
    return f"{KEY_PREFIX}:{learner_id}:{set_id}"


def empty_progress(now: datetime | None = None) -> MatchProgress:
    return MatchProgress(updated_at=now or utcnow())


# --- Pure updates ---


def _coerce_count(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, number)


def _normalized(stats: CardStats) -> CardStats:
    return CardStats(
        seen=bool(stats.seen),
        wrong=_coerce_count(stats.wrong),
        correct=_coerce_count(stats.correct),
        streak=_coerce_count(stats.streak),
        last_seen_at=stats.last_seen_at,
    )


def ensure_stats(progress: MatchProgress, card_ids: list[str]) -> dict[str, CardStats]:
    """Return a copy of the stats map with an entry for every id in ``card_ids``.

    Missing ids get fresh default stats. Existing entries are normalized
    (bad counts become 0) but their values are never reset.
    """
    stats = {card_id: _normalized(s) for card_id, s in progress.stats_by_card.items()}
    for card_id in card_ids:
        if card_id not in stats:
            stats[card_id] = CardStats()
    return stats


def mark_correct(
    progress: MatchProgress,
    card_id: str,
    learn_streak: int = LEARN_STREAK,
    now: datetime | None = None,
) -> MatchProgress:
    """Record a successful match for a card, completing it at the learn streak."""
    now = now or utcnow()
    stats = ensure_stats(progress, [card_id])
    current = stats[card_id]
    streak = current.streak + 1
    stats[card_id] = replace(
        current,
        seen=True,
        correct=current.correct + 1,
        streak=streak,
        last_seen_at=now,
    )

    completed = progress.completed_card_ids
    if streak >= learn_streak and card_id not in completed:
        completed = completed | {card_id}
        logger.debug("Card %s learned after %d correct in a row", card_id, streak)

    return replace(progress, completed_card_ids=completed, stats_by_card=stats, updated_at=now)


def mark_wrong(progress: MatchProgress, card_id: str, now: datetime | None = None) -> MatchProgress:
    """Record a mismatch for a card: one more miss and the streak starts over."""
    now = now or utcnow()
    stats = ensure_stats(progress, [card_id])
    current = stats[card_id]
    stats[card_id] = replace(
        current,
        seen=True,
        wrong=current.wrong + 1,
        streak=0,
        last_seen_at=now,
    )
    return replace(progress, stats_by_card=stats, updated_at=now)


def record_batch_time(
    progress: MatchProgress,
    elapsed_ms: int,
    now: datetime | None = None,
) -> MatchProgress:
    """Keep the fastest batch-clear time seen so far."""
    best = elapsed_ms if progress.best_time_ms is None else min(progress.best_time_ms, elapsed_ms)
    return replace(progress, best_time_ms=best, updated_at=now or utcnow())


def summarize_progress(
    progress: MatchProgress,
    card_ids: list[str] | None = None,
    hardest_limit: int = 5,
) -> ProgressSummary:
    """Count learned, remaining and missed cards.

    Counts are scoped to ``card_ids`` when given, otherwise to every card
    the progress has stats for.
    """
    if card_ids is None:
        card_ids = list(progress.stats_by_card)
    stats = ensure_stats(progress, card_ids)
    completed = progress.completed_card_ids

    learned = sum(1 for card_id in card_ids if card_id in completed)
    mistakes = sum(
        1 for card_id in card_ids if card_id not in completed and stats[card_id].wrong > 0
    )
    missed = [(card_id, stats[card_id].wrong) for card_id in card_ids if stats[card_id].wrong > 0]
    missed.sort(key=lambda pair: pair[1], reverse=True)

    return ProgressSummary(
        learned=learned,
        remaining=len(card_ids) - learned,
        mistakes=mistakes,
        total_wrong=sum(stats[card_id].wrong for card_id in card_ids),
        hardest=missed[:hardest_limit],
        best_time_ms=progress.best_time_ms,
    )


# --- Serialization ---


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    except (ValueError, OverflowError):
        return None
    return parsed


def _parse_time_ms(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if not 0 <= value <= MAX_TIME_MS:
        return None
    return int(value)


def _stats_from_json(raw: Any) -> CardStats:
    if not isinstance(raw, dict):
        return CardStats()
    return CardStats(
        seen=bool(raw.get("seen", False)),
        wrong=_coerce_count(raw.get("wrong")),
        correct=_coerce_count(raw.get("correct")),
        streak=_coerce_count(raw.get("streak")),
        last_seen_at=_parse_timestamp(raw.get("lastSeenAt")),
    )


def _stats_to_json(stats: CardStats) -> dict[str, Any]:
    data: dict[str, Any] = {
        "seen": stats.seen,
        "wrong": stats.wrong,
        "correct": stats.correct,
        "streak": stats.streak,
    }
    if stats.last_seen_at is not None:
        data["lastSeenAt"] = stats.last_seen_at.isoformat()
    return data


def encode_progress(progress: MatchProgress) -> str:
    """Serialize progress to the versioned JSON record."""
    return json.dumps(
        {
            "version": PROGRESS_VERSION,
            "completedCardIds": sorted(progress.completed_card_ids),
            "statsByCard": {
                card_id: _stats_to_json(stats) for card_id, stats in progress.stats_by_card.items()
            },
            "bestTimeMs": progress.best_time_ms,
            "updatedAt": progress.updated_at.isoformat(),
        },
        ensure_ascii=False,
    )


def decode_progress(raw: str) -> MatchProgress:
    """Parse a stored record.

    Records without a version are read as the legacy unversioned shape.
    Individually bad fields fall back to their defaults.

    Raises:
        ValueError: If the record is not a JSON object or has an unknown version.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise ValueError("Progress record is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValueError("Progress record is not a JSON object")

    version = data.get("version", 0)
    if not isinstance(version, int) or version > PROGRESS_VERSION:
        raise ValueError(f"Unsupported progress version: {version!r}")

    completed_raw = data.get("completedCardIds")
    completed = (
        frozenset(str(card_id) for card_id in completed_raw)
        if isinstance(completed_raw, list)
        else frozenset()
    )

    stats_raw = data.get("statsByCard")
    stats = (
        {str(card_id): _stats_from_json(value) for card_id, value in stats_raw.items()}
        if isinstance(stats_raw, dict)
        else {}
    )

    return MatchProgress(
        completed_card_ids=completed,
        stats_by_card=stats,
        best_time_ms=_parse_time_ms(data.get("bestTimeMs")),
        updated_at=_parse_timestamp(data.get("updatedAt")) or utcnow(),
    )


# --- Store ---


class ProgressStore:
    """Loads, saves and resets progress records in key-value storage."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    async def load(self, learner_id: str, set_id: str) -> MatchProgress:
        """Return stored progress, or empty progress if there is none usable."""
        key = storage_key(learner_id, set_id)
        try:
            raw = await self.storage.get(key)
        except StorageError:
            logger.warning("Could not read progress %s, starting fresh", key, exc_info=True)
            return empty_progress()
        if raw is None:
            return empty_progress()
        try:
            return decode_progress(raw)
        except (ValueError, OverflowError, RecursionError) as exc:
            logger.warning("Discarding malformed progress %s: %s", key, exc)
            return empty_progress()

    async def save(self, learner_id: str, set_id: str, progress: MatchProgress) -> None:
        await self.storage.set(storage_key(learner_id, set_id), encode_progress(progress))

    async def reset(self, learner_id: str, set_id: str) -> None:
        await self.storage.remove(storage_key(learner_id, set_id))
        logger.info("Reset match progress for learner %s, set %s", learner_id, set_id)
