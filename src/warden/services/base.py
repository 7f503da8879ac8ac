from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Generic, TypeVar

import aiosqlite

from ..errors import PersistenceFailure
from .cache import TTLCache

T = TypeVar("T")
log = logging.getLogger("warden.base_service")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class BaseService(ABC, Generic[T]):
    """Base class for all SQLite-backed stores.

    Each operation opens its own short-lived connection. Driver errors other
    than integrity violations surface as `PersistenceFailure`; integrity
    errors are left to the store, which usually turns them into a business
    rule (duplicate id, second appeal).
    """

    def __init__(self, sqlite_path: str, cache_ttl_seconds: int = 120) -> None:
        self._path = sqlite_path
        self._cache: TTLCache[object, T] = TTLCache(default_ttl_seconds=cache_ttl_seconds)
        self._logger = logging.getLogger(f"warden.{self.__class__.__name__.lower()}")

    async def init(self) -> None:
        """Initialize the database schema."""
        async with self._connect() as db:
            await self._create_tables(db)
            await db.commit()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self._path) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except aiosqlite.IntegrityError:
            raise
        except aiosqlite.Error as e:
            self._logger.error("SQLite failure in %s: %s", self.__class__.__name__, e)
            raise PersistenceFailure(f"{self.__class__.__name__}: {e}") from e

    @abstractmethod
    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        """Create the necessary database tables."""

    @abstractmethod
    def _from_row(self, row: aiosqlite.Row) -> T:
        """Convert a database row to the service's data type."""
