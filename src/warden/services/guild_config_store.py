from __future__ import annotations

import json
from typing import Any, Optional

import aiosqlite

from ..enforcement.config_schema import AutomodConfig, default_config, validate_config
from ..errors import ValidationError
from .base import BaseService, now_iso


class GuildConfigStore(BaseService[AutomodConfig]):
    """Per guild automod config, stored as a JSON document.

    Guilds without a row get the process defaults. Reads are served from the
    TTL cache; writes refresh it.
    """

    def __init__(
        self,
        sqlite_path: str,
        cache_ttl: int = 120,
        *,
        default_warn_threshold: int = 3,
        default_decay_window_seconds: int = 24 * 60 * 60,
    ) -> None:
        super().__init__(sqlite_path, cache_ttl)
        self._defaults = default_config(
            warn_threshold=default_warn_threshold,
            decay_window_seconds=default_decay_window_seconds,
        )

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS automod_config (
              guild_id INTEGER PRIMARY KEY,
              doc_json TEXT NOT NULL,
              updated_by_user_id INTEGER,
              updated_at_iso TEXT NOT NULL
            )
            """
        )

    def _from_row(self, row: aiosqlite.Row) -> AutomodConfig:
        return AutomodConfig.from_dict(json.loads(row["doc_json"]))

    @property
    def defaults(self) -> AutomodConfig:
        return self._defaults

    async def get(self, guild_id: int) -> AutomodConfig:
        cached = self._cache.get(guild_id)
        if cached is not None:
            return cached
        async with self._connect() as db:
            async with db.execute("SELECT doc_json FROM automod_config WHERE guild_id = ?", (int(guild_id),)) as cur:
                row = await cur.fetchone()
        config = self._from_row(row) if row else self._defaults
        self._cache.set(guild_id, config)
        return config

    async def save(self, guild_id: int, config: AutomodConfig, *, updated_by_user_id: Optional[int] = None) -> AutomodConfig:
        doc = config.to_dict()
        issues = validate_config(doc)
        if issues:
            raise ValidationError("Config validation failed: " + "; ".join(f"{i.path}: {i.message}" for i in issues[:10]))

        doc_json = json.dumps(doc, separators=(",", ":"), ensure_ascii=False)
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO automod_config (guild_id, doc_json, updated_by_user_id, updated_at_iso)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    doc_json=excluded.doc_json,
                    updated_by_user_id=excluded.updated_by_user_id,
                    updated_at_iso=excluded.updated_at_iso
                """,
                (int(guild_id), doc_json, updated_by_user_id, now_iso()),
            )
            await db.commit()
        self._cache.set(guild_id, config)
        self._logger.info("Automod config saved for guild=%s by=%s", guild_id, updated_by_user_id)
        return config

    async def update(self, guild_id: int, *, updated_by_user_id: Optional[int] = None, **changes: Any) -> AutomodConfig:
        current = await self.get(guild_id)
        return await self.save(guild_id, current.with_changes(**changes), updated_by_user_id=updated_by_user_id)

    async def reset(self, guild_id: int) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM automod_config WHERE guild_id = ?", (int(guild_id),))
            await db.commit()
        self._cache.delete(guild_id)
