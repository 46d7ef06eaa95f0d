"""Tests for the key-value storage backends."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.match.progress import ProgressStore, empty_progress, mark_correct
from backend.match.storage import DatabaseStorage, MemoryStorage, StorageError
from backend.models import Base


@asynccontextmanager
async def _database_storage(tmp_path: Path, create_tables: bool = True) -> AsyncIterator[DatabaseStorage]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
    try:
        if create_tables:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        yield DatabaseStorage(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    finally:
        await engine.dispose()


class TestMemoryStorage:
    @pytest.mark.asyncio
    async def test_get_set_remove(self) -> None:
        storage = MemoryStorage()
        assert await storage.get("k") is None
        await storage.set("k", "v1")
        await storage.set("k", "v2")
        assert await storage.get("k") == "v2"
        assert "k" in storage
        await storage.remove("k")
        assert await storage.get("k") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key(self) -> None:
        await MemoryStorage().remove("nothing")


class TestDatabaseStorage:
    @pytest.mark.asyncio
    async def test_get_set_remove(self, tmp_path: Path) -> None:
        async with _database_storage(tmp_path) as storage:
            assert await storage.get("k") is None
            await storage.set("k", "first")
            assert await storage.get("k") == "first"
            await storage.set("k", "second")
            assert await storage.get("k") == "second"
            await storage.remove("k")
            assert await storage.get("k") is None
            await storage.remove("k")

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, tmp_path: Path) -> None:
        async with _database_storage(tmp_path) as storage:
            await storage.set("a", "1")
            await storage.set("b", "2")
            await storage.remove("a")
            assert await storage.get("b") == "2"

    @pytest.mark.asyncio
    async def test_progress_round_trip(self, tmp_path: Path) -> None:
        async with _database_storage(tmp_path) as storage:
            store = ProgressStore(storage)
            progress = mark_correct(empty_progress(), "card-1")
            await store.save("u1", "s1", progress)
            assert await store.load("u1", "s1") == progress

    @pytest.mark.asyncio
    async def test_missing_table_raises_storage_error(self, tmp_path: Path) -> None:
        async with _database_storage(tmp_path, create_tables=False) as storage:
            with pytest.raises(StorageError):
                await storage.get("k")
            with pytest.raises(StorageError):
                await storage.set("k", "v")
