from __future__ import annotations

from typing import Optional

import aiosqlite

from ..enforcement.models import WarningState
from .base import BaseService


class WarningsStore(BaseService[WarningState]):
    """Per (guild, user) warning counter rows.

    Pure storage: decay and serialization live in `WarningAccumulator`.
    """

    def __init__(self, sqlite_path: str, cache_ttl: int = 300) -> None:
        super().__init__(sqlite_path, cache_ttl)

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS warning_state (
              guild_id INTEGER NOT NULL,
              user_id INTEGER NOT NULL,
              count INTEGER NOT NULL DEFAULT 0,
              last_increment_at REAL NOT NULL,
              PRIMARY KEY (guild_id, user_id)
            )
            """
        )

    def _from_row(self, row: aiosqlite.Row) -> WarningState:
        return WarningState(
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            count=int(row["count"]),
            last_increment_at=float(row["last_increment_at"]),
        )

    async def get_state(self, guild_id: int, user_id: int) -> Optional[WarningState]:
        async with self._connect() as db:
            async with db.execute(
                "SELECT guild_id, user_id, count, last_increment_at FROM warning_state WHERE guild_id = ? AND user_id = ?",
                (int(guild_id), int(user_id)),
            ) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def put_state(self, state: WarningState) -> None:
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO warning_state (guild_id, user_id, count, last_increment_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(guild_id, user_id) DO UPDATE SET
                    count=excluded.count,
                    last_increment_at=excluded.last_increment_at
                """,
                (int(state.guild_id), int(state.user_id), int(state.count), float(state.last_increment_at)),
            )
            await db.commit()

    async def clear(self, guild_id: int, user_id: int) -> int:
        async with self._connect() as db:
            cur = await db.execute(
                "DELETE FROM warning_state WHERE guild_id = ? AND user_id = ?",
                (int(guild_id), int(user_id)),
            )
            await db.commit()
            return int(cur.rowcount)

    async def list_guild(self, guild_id: int, limit: int = 25) -> list[WarningState]:
        limit = max(1, min(100, int(limit)))
        async with self._connect() as db:
            async with db.execute(
                "SELECT guild_id, user_id, count, last_increment_at FROM warning_state WHERE guild_id = ? ORDER BY count DESC, last_increment_at DESC LIMIT ?",
                (int(guild_id), limit),
            ) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]
