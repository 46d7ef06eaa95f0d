"""Cards and the tiles dealt from them.

Each card is shown as two tiles, one per face. A pair of picked tiles is a
match when both come from the same card and show different faces.
"""

import random
from dataclasses import dataclass
from enum import Enum


class Side(Enum):
    """Which face of a card a tile shows."""

    TERM = "term"
    DEFINITION = "definition"


_SIDE_SUFFIX = {Side.TERM: "t", Side.DEFINITION: "d"}


@dataclass(frozen=True)
class MatchCard:
    """A term/explanation pair from a flashcard set."""

    id: str
    term: str
    explanation: str


@dataclass(frozen=True)
class Tile:
    """One displayed face of a card during a batch."""

    id: str  # "<card_id>:t" or "<card_id>:d"
    card_id: str
    side: Side
    text: str


def tile_id(card_id: str, side: Side) -> str:
    return f"{card_id}:{_SIDE_SUFFIX[side]}"


def make_tiles(cards: list[MatchCard], rng: random.Random | None = None) -> list[Tile]:
    """Build one term tile and one definition tile per card, shuffled."""
    tiles: list[Tile] = []
    for card in cards:
        tiles.append(Tile(tile_id(card.id, Side.TERM), card.id, Side.TERM, card.term))
        tiles.append(
            Tile(tile_id(card.id, Side.DEFINITION), card.id, Side.DEFINITION, card.explanation)
        )
    (rng or random).shuffle(tiles)
    return tiles


def is_match(a: Tile, b: Tile) -> bool:
    """Return True if the two tiles are opposite faces of the same card."""
    return a.card_id == b.card_id and a.side != b.side
