"""Tests for the Match and progress HTTP API."""

from collections.abc import Iterator

import pytest
from httpx import ASGITransport, AsyncClient

from backend.api import match_router
from backend.api.dependencies import get_card_source, get_progress_store
from backend.card_source import CardSourceError
from backend.config import settings
from backend.main import app
from backend.match.cards import MatchCard
from backend.match.progress import ProgressStore
from backend.match.storage import DatabaseStorage, MemoryStorage

CARDS = [
    {"id": "A", "term": "ek", "explanation": "one"},
    {"id": "B", "term": "do", "explanation": "two"},
]


class FakeCardSource:
    def __init__(self, cards: list[MatchCard] | None = None) -> None:
        self.cards = cards

    async def fetch_set_cards(self, set_id: str) -> list[MatchCard]:
        if self.cards is None:
            raise CardSourceError(f"Could not fetch set {set_id}")
        return self.cards


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> Iterator[ProgressStore]:
    monkeypatch.setattr(settings, "resolve_delay_ms", 0)
    shared = ProgressStore(MemoryStorage())
    app.dependency_overrides[get_progress_store] = lambda: shared
    app.dependency_overrides[get_card_source] = lambda: FakeCardSource(
        [MatchCard(id="r1", term="teen", explanation="three")]
    )
    yield shared
    app.dependency_overrides.clear()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _start(client: AsyncClient, **body) -> dict:
    response = await client.post(
        "/api/match/start", json={"learner_id": "u1", "set_id": "s1", "cards": CARDS, **body}
    )
    assert response.status_code == 200
    return response.json()


async def _pick(client: AsyncClient, session_id: str, tile_id: str) -> dict:
    response = await client.post(f"/api/match/{session_id}/pick", json={"tile_id": tile_id})
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health_check() -> None:
    async with _client() as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestMatchApi:
    @pytest.mark.asyncio
    async def test_start_deals_board(self, store: ProgressStore) -> None:
        async with _client() as client:
            data = await _start(client)
        assert data["state"] == "dealt"
        assert data["batch_size"] == 2
        assert data["pairs_left"] == 2
        assert sorted(tile["id"] for tile in data["tiles"]) == ["A:d", "A:t", "B:d", "B:t"]
        assert data["summary"]["remaining"] == 2

    @pytest.mark.asyncio
    async def test_start_fetches_cards_when_omitted(self, store: ProgressStore) -> None:
        async with _client() as client:
            response = await client.post("/api/match/start", json={"learner_id": "u1", "set_id": "s1"})
        assert response.status_code == 200
        assert sorted(tile["id"] for tile in response.json()["tiles"]) == ["r1:d", "r1:t"]

    @pytest.mark.asyncio
    async def test_start_reports_card_source_failure(self, store: ProgressStore) -> None:
        app.dependency_overrides[get_card_source] = lambda: FakeCardSource(None)
        async with _client() as client:
            response = await client.post("/api/match/start", json={"learner_id": "u1", "set_id": "s1"})
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_start_with_empty_set(self, store: ProgressStore) -> None:
        async with _client() as client:
            data = await _start(client, cards=[])
        assert data["state"] == "empty"
        assert data["tiles"] == []

    @pytest.mark.asyncio
    async def test_start_drops_unusable_inline_cards(self, store: ProgressStore) -> None:
        cards = [
            {"id": "A", "term": "", "explanation": "  "},
            {"id": "B", "term": " do ", "explanation": "two"},
            {"id": "B", "term": "duplicate", "explanation": "ignored"},
        ]
        async with _client() as client:
            data = await _start(client, cards=cards)
        assert sorted(tile["id"] for tile in data["tiles"]) == ["B:d", "B:t"]
        assert {tile["text"] for tile in data["tiles"]} == {"do", "two"}
        assert data["total_cards"] == 1

    @pytest.mark.asyncio
    async def test_start_with_only_blank_cards_is_empty(self, store: ProgressStore) -> None:
        async with _client() as client:
            data = await _start(client, cards=[{"id": "A", "term": "", "explanation": "  "}])
        assert data["state"] == "empty"
        assert data["tiles"] == []

    @pytest.mark.asyncio
    async def test_play_a_batch(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]

            first = await _pick(client, session_id, "A:t")
            assert first["outcome"] == "pending"
            assert first["resolution"] is None

            miss = await _pick(client, session_id, "B:d")
            assert miss["outcome"] == "resolving"
            assert miss["resolution"]["matched"] is False
            assert sorted(miss["resolution"]["card_ids"]) == ["A", "B"]
            assert miss["state"]["summary"]["total_wrong"] == 2

            await _pick(client, session_id, "A:t")
            hit = await _pick(client, session_id, "A:d")
            assert hit["resolution"]["matched"] is True
            assert hit["resolution"]["batch_completed"] is False

            solved = await _pick(client, session_id, "A:t")
            assert solved["outcome"] == "ignored"
            assert solved["reason"] == "solved"

            await _pick(client, session_id, "B:t")
            last = await _pick(client, session_id, "B:d")
            assert last["resolution"]["batch_completed"] is True
            assert last["resolution"]["elapsed_ms"] is not None
            assert last["state"]["state"] == "completed"
            assert last["state"]["summary"]["best_time_ms"] == last["resolution"]["elapsed_ms"]

            state = (await client.get(f"/api/match/{session_id}")).json()
            assert state["batch_completed"] is True

            response = await client.post(f"/api/match/{session_id}/next")
            assert response.status_code == 200
            assert response.json()["state"] == "dealt"

    @pytest.mark.asyncio
    async def test_next_mid_batch_conflicts(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]
            response = await client.post(f"/api/match/{session_id}/next")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_tile_and_session(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]
            tile = await client.post(f"/api/match/{session_id}/pick", json={"tile_id": "Z:t"})
            missing = await client.get("/api/match/no-such-session")
        assert tile.status_code == 404
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_reset(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]
            await _pick(client, session_id, "A:t")
            await _pick(client, session_id, "B:d")
            response = await client.post(f"/api/match/{session_id}/reset")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "dealt"
        assert data["summary"]["total_wrong"] == 0

    @pytest.mark.asyncio
    async def test_end(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]
            await _pick(client, session_id, "A:t")
            await _pick(client, session_id, "A:d")
            response = await client.post(f"/api/match/{session_id}/end")
            after = await client.get(f"/api/match/{session_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "ended"
        assert response.json()["summary"]["remaining"] == 2
        assert after.status_code == 404


class TestProgressApi:
    @pytest.mark.asyncio
    async def test_never_played(self, store: ProgressStore) -> None:
        async with _client() as client:
            response = await client.get("/api/progress/u9/s9")
        assert response.status_code == 200
        data = response.json()
        assert data["completed_card_ids"] == []
        assert data["stats_by_card"] == {}
        assert data["best_time_ms"] is None

    @pytest.mark.asyncio
    async def test_reflects_play_and_reset(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]
            await _pick(client, session_id, "A:t")
            await _pick(client, session_id, "A:d")

            data = (await client.get("/api/progress/u1/s1")).json()
            assert data["stats_by_card"]["A"]["correct"] == 1
            assert data["stats_by_card"]["A"]["streak"] == 1
            assert data["stats_by_card"]["B"]["seen"] is True

            response = await client.delete("/api/progress/u1/s1")
            assert response.json() == {"status": "reset", "learner_id": "u1", "set_id": "s1"}

            data = (await client.get("/api/progress/u1/s1")).json()
            assert data["stats_by_card"] == {}


class TestSessionExpiry:
    @pytest.mark.asyncio
    async def test_idle_sessions_expire(self, store: ProgressStore) -> None:
        async with _client() as client:
            idle_id = (await _start(client))["session_id"]
            active_id = (await _start(client))["session_id"]
            idle_session = match_router._active_sessions[idle_id]
            match_router._last_used[idle_id] -= settings.session_ttl_seconds + 1

            active = await client.get(f"/api/match/{active_id}")
            idle = await client.get(f"/api/match/{idle_id}")

        assert active.status_code == 200
        assert idle.status_code == 404
        assert idle_id not in match_router._last_used
        assert idle_session.state.value == "ended"

    @pytest.mark.asyncio
    async def test_end_forgets_session(self, store: ProgressStore) -> None:
        async with _client() as client:
            session_id = (await _start(client))["session_id"]
            await client.post(f"/api/match/{session_id}/end")
        assert session_id not in match_router._active_sessions
        assert session_id not in match_router._last_used


def test_progress_store_uses_database() -> None:
    progress_store = get_progress_store()
    assert isinstance(progress_store, ProgressStore)
    assert isinstance(progress_store.storage, DatabaseStorage)
