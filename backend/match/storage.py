"""Durable key-value storage for Match progress records.

The progress store only needs string get/set/remove by key, so any backend
that offers that can hold progress. Reads and writes are awaited before
the session moves on to its next state.
"""

import logging
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.models.progress_record import ProgressRecord

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the underlying storage cannot be read or written."""


class KeyValueStorage(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage that lives as long as the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class DatabaseStorage:
    """Storage backed by the ``match_progress`` table, one row per key."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        try:
            async with self._session_factory() as db:
                record = await db.get(ProgressRecord, key)
                return record.value if record is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read {key!r}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._session_factory() as db:
                record = await db.get(ProgressRecord, key)
                if record is None:
                    db.add(ProgressRecord(key=key, value=value))
                else:
                    record.value = value
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write {key!r}") from exc
        logger.debug("Stored %d bytes under %s", len(value), key)

    async def remove(self, key: str) -> None:
        try:
            async with self._session_factory() as db:
                await db.execute(delete(ProgressRecord).where(ProgressRecord.key == key))
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to remove {key!r}") from exc
