"""Match session controller.

Drives one play session over a flashcard set: deals batches of tiles,
handles picks, resolves each picked pair into a match or a mismatch,
times the batch and reports when it is cleared.

States::

    IDLE -> DEALT -> (PICKING <-> RESOLVING)* -> COMPLETED -> DEALT ...

``EMPTY`` means the set has no cards to deal; ``ENDED`` is terminal.
While a pair is RESOLVING input is locked and further picks are ignored.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from backend.config import settings, utcnow
from backend.match.batch import commit_batch, pick_next_batch
from backend.match.cards import MatchCard, Side, Tile, is_match, make_tiles
from backend.match.progress import (
    MatchProgress,
    ProgressStore,
    ProgressSummary,
    empty_progress,
    ensure_stats,
    mark_correct,
    mark_wrong,
    record_batch_time,
    summarize_progress,
)
from backend.match.storage import StorageError
from backend.match.timer import BatchTimer

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    DEALT = "dealt"
    PICKING = "picking"
    RESOLVING = "resolving"
    COMPLETED = "completed"
    EMPTY = "empty"
    ENDED = "ended"


class SessionStateError(RuntimeError):
    """Raised when an action is not valid in the session's current state."""


class UnknownTileError(LookupError):
    """Raised when a pick names a tile that is not on the board."""


class PickOutcome(Enum):
    IGNORED = "ignored"
    PENDING = "pending"  # first tile of a pair
    RESOLVING = "resolving"  # second tile, the pair is locked in


@dataclass(frozen=True)
class PickResult:
    outcome: PickOutcome
    tile: Tile
    reason: str | None = None  # why an ignored pick was ignored


@dataclass(frozen=True)
class Resolution:
    """What happened to a resolved pair."""

    matched: bool
    tiles: tuple[Tile, Tile]
    newly_learned: bool = False
    batch_completed: bool = False
    elapsed_ms: int | None = None  # batch time, set only when the batch was cleared


@dataclass(frozen=True)
class TileView:
    id: str
    card_id: str
    side: Side
    text: str
    solved: bool
    picked: bool


@dataclass(frozen=True)
class MatchSnapshot:
    """Everything a board needs to render the session."""

    state: SessionState
    tiles: list[TileView]
    locked: bool
    total_cards: int
    batch_size: int
    pairs_left: int
    elapsed_ms: int
    batch_completed: bool
    summary: ProgressSummary
    persistence_warning: str | None


class MatchSession:
    """One learner playing Match on one flashcard set."""

    def __init__(
        self,
        learner_id: str,
        set_id: str,
        cards: list[MatchCard],
        store: ProgressStore,
        round_size: int | None = None,
        learn_streak: int | None = None,
        resolve_delay: float | None = None,
        timer: BatchTimer | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.learner_id = learner_id
        self.set_id = set_id
        self.cards = list(cards)
        self.store = store
        self.round_size = round_size if round_size is not None else settings.round_size
        self.learn_streak = learn_streak if learn_streak is not None else settings.learn_streak
        self.resolve_delay = (
            resolve_delay if resolve_delay is not None else settings.resolve_delay_ms / 1000
        )
        self.timer = timer or BatchTimer()
        self._rng = rng

        self.state = SessionState.IDLE
        self.progress: MatchProgress = empty_progress()
        self.batch: list[MatchCard] = []
        self.tiles: list[Tile] = []
        self.solved_tile_ids: set[str] = set()
        self.picked: tuple[Tile, ...] = ()
        self.last_batch_time_ms: int | None = None
        self.persistence_warning: str | None = None
        self._tiles_by_id: dict[str, Tile] = {}
        self._pair_serial = 0

    # --- Derived state ---

    @property
    def locked(self) -> bool:
        return self.state is SessionState.RESOLVING

    @property
    def batch_completed(self) -> bool:
        return self.state is SessionState.COMPLETED

    @property
    def card_ids(self) -> list[str]:
        return list(dict.fromkeys(card.id for card in self.cards))

    def summary(self) -> ProgressSummary:
        return summarize_progress(self.progress, self.card_ids, settings.hardest_cards_limit)

    def snapshot(self) -> MatchSnapshot:
        picked_ids = {tile.id for tile in self.picked}
        return MatchSnapshot(
            state=self.state,
            tiles=[
                TileView(
                    id=tile.id,
                    card_id=tile.card_id,
                    side=tile.side,
                    text=tile.text,
                    solved=tile.id in self.solved_tile_ids,
                    picked=tile.id in picked_ids,
                )
                for tile in self.tiles
            ],
            locked=self.locked,
            total_cards=len(self.card_ids),
            batch_size=len(self.batch),
            pairs_left=(len(self.tiles) - len(self.solved_tile_ids)) // 2,
            elapsed_ms=self.timer.elapsed_ms,
            batch_completed=self.batch_completed,
            summary=self.summary(),
            persistence_warning=self.persistence_warning,
        )

    # --- Lifecycle ---

    async def open(self) -> MatchSnapshot:
        """Load the learner's progress and deal the first batch."""
        if self.state is not SessionState.IDLE:
            raise SessionStateError("Session is already open")
        return await self.start_batch()

    async def start_batch(self) -> MatchSnapshot:
        """Deal a new batch against the current progress."""
        if self.state not in (SessionState.IDLE, SessionState.COMPLETED, SessionState.EMPTY):
            raise SessionStateError(f"Cannot start a batch while {self.state.value}")
        if self.state is SessionState.IDLE:
            self.progress = await self.store.load(self.learner_id, self.set_id)
        await self._deal()
        return self.snapshot()

    async def reset(self) -> MatchSnapshot:
        """Forget all progress for this learner and set, then deal afresh."""
        if self.state is SessionState.ENDED:
            raise SessionStateError("Session has ended")
        try:
            await self.store.reset(self.learner_id, self.set_id)
        except StorageError as exc:
            self._storage_failed(exc)
        self.progress = empty_progress()
        await self._deal()
        return self.snapshot()

    async def replace_cards(self, cards: list[MatchCard]) -> MatchSnapshot:
        """Swap in a changed card pool, keeping stats for cards already known."""
        if self.state is SessionState.ENDED:
            raise SessionStateError("Session has ended")
        self.cards = list(cards)
        if self.state is SessionState.IDLE:
            # Nothing loaded yet; open() will pick up the new pool.
            return self.snapshot()
        self.progress = replace(
            self.progress,
            stats_by_card=ensure_stats(self.progress, self.card_ids),
            updated_at=utcnow(),
        )
        await self._persist()
        if self.state is SessionState.EMPTY and self.cards:
            return await self.start_batch()
        return self.snapshot()

    def end(self) -> ProgressSummary:
        """Stop the clock and close the session."""
        self.timer.stop_ticker()
        if self.timer.running:
            self.timer.pause()
        self.picked = ()
        self.state = SessionState.ENDED
        logger.info("Ended match session for learner %s, set %s", self.learner_id, self.set_id)
        return self.summary()

    def start_ticker(self, on_tick: Callable[[int], None]) -> asyncio.Task:
        """Report the running batch time to ``on_tick`` until the session ends."""
        return self.timer.start_ticker(on_tick, settings.ticker_interval_ms / 1000)

    # --- Play ---

    def pick(self, tile_id: str) -> PickResult:
        """Select a tile.

        Raises:
            UnknownTileError: If no tile on the board has this id.
        """
        tile = self._tiles_by_id.get(tile_id)
        if tile is None:
            raise UnknownTileError(tile_id)
        if self.state is SessionState.RESOLVING:
            return PickResult(PickOutcome.IGNORED, tile, "locked")
        if self.state not in (SessionState.DEALT, SessionState.PICKING):
            return PickResult(PickOutcome.IGNORED, tile, self.state.value)
        if tile.id in self.solved_tile_ids:
            return PickResult(PickOutcome.IGNORED, tile, "solved")
        if any(p.id == tile.id for p in self.picked):
            return PickResult(PickOutcome.IGNORED, tile, "picked")

        self.picked = (*self.picked, tile)
        if len(self.picked) < 2:
            self.state = SessionState.PICKING
            return PickResult(PickOutcome.PENDING, tile)

        self.state = SessionState.RESOLVING
        self._pair_serial += 1
        return PickResult(PickOutcome.RESOLVING, tile)

    async def resolve(self) -> Resolution:
        """Score the locked-in pair and unlock the board."""
        if self.state is not SessionState.RESOLVING:
            raise SessionStateError("No pair is waiting to be resolved")
        first, second = self.picked
        self.picked = ()

        # Session fields are settled before the save; an end() or reset()
        # that runs while it is awaited keeps its own state.
        if not is_match(first, second):
            # Both cards are penalized, whichever one the learner was aiming for.
            for card_id in dict.fromkeys((first.card_id, second.card_id)):
                self.progress = mark_wrong(self.progress, card_id)
            self.state = SessionState.PICKING
            await self._persist()
            return Resolution(matched=False, tiles=(first, second))

        was_learned = first.card_id in self.progress.completed_card_ids
        self.solved_tile_ids.update((first.id, second.id))
        cleared = len(self.solved_tile_ids) == len(self.tiles)
        elapsed_ms = self.timer.pause() if cleared else None

        self.progress = mark_correct(self.progress, first.card_id, self.learn_streak)
        if elapsed_ms is not None:
            self.progress = record_batch_time(self.progress, elapsed_ms)
            self.state = SessionState.COMPLETED
            self.last_batch_time_ms = elapsed_ms
        else:
            self.state = SessionState.PICKING
        newly_learned = not was_learned and first.card_id in self.progress.completed_card_ids
        await self._persist()

        if cleared:
            logger.info(
                "Batch cleared by learner %s in %d ms (best %s ms)",
                self.learner_id,
                elapsed_ms,
                self.progress.best_time_ms,
            )
        return Resolution(
            matched=True,
            tiles=(first, second),
            newly_learned=newly_learned,
            batch_completed=cleared,
            elapsed_ms=elapsed_ms,
        )

    async def pick_and_resolve(self, tile_id: str) -> tuple[PickResult, Resolution | None]:
        """Pick a tile and, once a pair is locked in, resolve it after the reveal delay."""
        result = self.pick(tile_id)
        if result.outcome is not PickOutcome.RESOLVING:
            return result, None
        serial = self._pair_serial
        await asyncio.sleep(self.resolve_delay)
        # A reset or end during the delay discards the pair.
        if self.state is not SessionState.RESOLVING or serial != self._pair_serial:
            return result, None
        return result, await self.resolve()

    # --- Internals ---

    async def _deal(self) -> None:
        self.picked = ()
        self.solved_tile_ids = set()
        self.last_batch_time_ms = None

        batch = pick_next_batch(self.cards, self.progress, self.round_size, self._rng)
        if not batch:
            self.batch = []
            self.tiles = []
            self._tiles_by_id = {}
            self.state = SessionState.EMPTY
            await self._persist()
            logger.info("No cards to study for learner %s, set %s", self.learner_id, self.set_id)
            return

        self.progress = commit_batch(self.progress, self.cards, batch)
        await self._persist()

        self.batch = batch
        self.tiles = make_tiles(batch, self._rng)
        self._tiles_by_id = {tile.id: tile for tile in self.tiles}
        self.state = SessionState.DEALT
        self.timer.restart()
        logger.info(
            "Dealt %d cards (%d tiles) to learner %s for set %s",
            len(batch),
            len(self.tiles),
            self.learner_id,
            self.set_id,
        )

    async def _persist(self) -> None:
        try:
            await self.store.save(self.learner_id, self.set_id, self.progress)
        except StorageError as exc:
            self._storage_failed(exc)
        else:
            self.persistence_warning = None

    def _storage_failed(self, exc: StorageError) -> None:
        logger.warning(
            "Progress for learner %s, set %s not saved, continuing in memory: %s",
            self.learner_id,
            self.set_id,
            exc,
        )
        self.persistence_warning = str(exc)


async def start_match_session(
    learner_id: str,
    set_id: str,
    cards: list[MatchCard],
    store: ProgressStore,
    round_size: int | None = None,
) -> MatchSession:
    """Create a session and deal its first batch."""
    session = MatchSession(learner_id, set_id, cards, store, round_size=round_size)
    await session.open()
    logger.info(
        "Started match session for learner %s, set %s: %d cards, state %s",
        learner_id,
        set_id,
        len(session.card_ids),
        session.state.value,
    )
    return session
