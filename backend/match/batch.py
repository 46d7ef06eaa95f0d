"""Batch selection for Match rounds.

Picks the cards for the next round from the set's pool:
1. Not-yet-learned cards the learner has missed before
2. Not-yet-learned cards the learner has never seen
3. Any other not-yet-learned cards
If the round still has room (most cards are learned), it is padded with a
random sample from the whole pool so the game never stalls.
"""

import logging
import random
from dataclasses import replace
from datetime import datetime

from backend.config import utcnow
from backend.match.cards import MatchCard
from backend.match.progress import MatchProgress, ensure_stats

logger = logging.getLogger(__name__)

DEFAULT_ROUND_SIZE = 6


def _unique(cards: list[MatchCard]) -> list[MatchCard]:
    seen: set[str] = set()
    unique: list[MatchCard] = []
    for card in cards:
        if card.id not in seen:
            seen.add(card.id)
            unique.append(card)
    return unique


def partition_tiers(
    cards: list[MatchCard],
    progress: MatchProgress,
) -> tuple[list[MatchCard], list[MatchCard], list[MatchCard]]:
    """Split the not-completed cards into (mistakes, new, rest) tiers."""
    stats = ensure_stats(progress, [card.id for card in cards])
    completed = progress.completed_card_ids

    mistakes: list[MatchCard] = []
    new: list[MatchCard] = []
    rest: list[MatchCard] = []
    for card in _unique(cards):
        if card.id in completed:
            continue
        card_stats = stats[card.id]
        if card_stats.wrong > 0:
            mistakes.append(card)
        elif not card_stats.seen:
            new.append(card)
        else:
            rest.append(card)
    return mistakes, new, rest


def pick_next_batch(
    cards: list[MatchCard],
    progress: MatchProgress,
    round_size: int = DEFAULT_ROUND_SIZE,
    rng: random.Random | None = None,
) -> list[MatchCard]:
    """Select the cards for the next round.

    Args:
        cards: The full card pool for the set.
        progress: The learner's current progress.
        round_size: How many cards a round holds.
        rng: Random source (defaults to the ``random`` module).

    Returns:
        Exactly ``min(round_size, len(pool))`` distinct cards.
    """
    if round_size < 1:
        raise ValueError(f"round_size must be at least 1, got {round_size}")
    rng = rng or random
    pool = _unique(cards)
    if not pool:
        return []

    picked: list[MatchCard] = []
    for tier in partition_tiers(pool, progress):
        tier = list(tier)
        rng.shuffle(tier)
        for card in tier:
            if len(picked) >= round_size:
                break
            picked.append(card)

    if len(picked) < round_size:
        picked_ids = {card.id for card in picked}
        leftovers = [card for card in pool if card.id not in picked_ids]
        need = min(round_size - len(picked), len(leftovers))
        picked.extend(rng.sample(leftovers, need))

    batch = picked[: min(round_size, len(pool))]
    logger.debug(
        "Picked batch of %d from pool of %d (%d completed)",
        len(batch),
        len(pool),
        len(progress.completed_card_ids),
    )
    return batch


def commit_batch(
    progress: MatchProgress,
    cards: list[MatchCard],
    batch: list[MatchCard],
    now: datetime | None = None,
) -> MatchProgress:
    """Mark every card in the batch as seen, with stats ensured for the pool."""
    now = now or utcnow()
    stats = ensure_stats(progress, [card.id for card in cards])
    for card in batch:
        stats[card.id] = replace(stats[card.id], seen=True, last_seen_at=now)
    return replace(progress, stats_by_card=stats, updated_at=now)
