"""Where card pools come from: the flashcard set API or a local file."""

import csv
import io
import json
import logging
from pathlib import Path
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.config import settings
from backend.match.cards import MatchCard

logger = logging.getLogger(__name__)


class CardSourceError(Exception):
    """Raised when a card pool cannot be fetched or read."""


def parse_cards(records: list[Any]) -> list[MatchCard]:
    """Turn raw ``{id, term, explanation}`` records into cards.

    Ids are coerced to strings. Records with a blank term or explanation are
    dropped since they cannot be shown as a tile; repeated ids keep the
    first record.
    """
    cards: list[MatchCard] = []
    seen_ids: set[str] = set()
    for record in records:
        if not isinstance(record, dict):
            continue
        term = str(record.get("term") or "").strip()
        explanation = str(record.get("explanation") or "").strip()
        card_id = record.get("id")
        if card_id is None or not term or not explanation:
            logger.debug("Skipping unusable card record: %r", record)
            continue
        card_id = str(card_id)
        if card_id in seen_ids:
            continue
        seen_ids.add(card_id)
        cards.append(MatchCard(id=card_id, term=term, explanation=explanation))
    return cards


def _read_json_cards(path: Path) -> list[MatchCard]:
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data.get("cards", []) if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise CardSourceError(f"{path} has no card list")
    return parse_cards(records)


def _read_csv_cards(path: Path) -> list[MatchCard]:
    reader = csv.DictReader(io.StringIO(path.read_text(encoding="utf-8")))
    records = []
    for row_number, row in enumerate(reader, 1):
        # Rows without an id column are numbered in file order.
        records.append({**row, "id": row.get("id") or str(row_number)})
    return parse_cards(records)


CARD_FILE_HANDLERS = {
    ".json": _read_json_cards,
    ".csv": _read_csv_cards,
}


def load_cards_from_file(path: Path) -> list[MatchCard]:
    """Read a card pool from a .json or .csv file."""
    handler = CARD_FILE_HANDLERS.get(path.suffix.lower())
    if handler is None:
        raise CardSourceError(
            f"Unsupported card file type: {path.suffix}. Supported: {sorted(CARD_FILE_HANDLERS)}"
        )
    try:
        cards = handler(path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, csv.Error) as exc:
        raise CardSourceError(f"Could not read cards from {path}") from exc
    logger.info("Loaded %d cards from %s", len(cards), path.name)
    return cards


class QuizletClient:
    """Read-only client for the flashcard set API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.quizlet_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.quizlet_timeout_seconds
        self._transport = transport

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get_full_set(self, set_id: str) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.get(f"/api/quizlet/sets/{set_id}/full")
            response.raise_for_status()
            return response.json()

    async def fetch_set_cards(self, set_id: str) -> list[MatchCard]:
        """Fetch the cards of one flashcard set."""
        try:
            data = await self._get_full_set(set_id)
        except httpx.HTTPStatusError as exc:
            raise CardSourceError(
                f"Set {set_id} request failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise CardSourceError(f"Could not fetch set {set_id}") from exc

        records = data.get("cards") if isinstance(data, dict) else None
        cards = parse_cards(records or [])
        logger.info("Fetched %d cards for set %s", len(cards), set_id)
        return cards
