from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import aiosqlite

from ..enforcement.locks import KeyedLock
from ..enforcement.models import ThreatScore
from .base import BaseService, now_iso

HIGH_RISK_SCORE = 5
MEDIUM_RISK_SCORE = 3


class ThreatScoreStore(BaseService[ThreatScore]):
    """Advisory per (guild, user) risk score driven by human reviewers.

    Independent of the automod warning counter: no decay, never read by the
    escalation policy.
    """

    def __init__(self, sqlite_path: str, cache_ttl: int = 300) -> None:
        super().__init__(sqlite_path, cache_ttl)
        self._locks: KeyedLock[tuple[int, int]] = KeyedLock()

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS threat_scores (
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                score INTEGER NOT NULL DEFAULT 0,
                reason TEXT NULL,
                last_changed_iso TEXT NOT NULL,
                PRIMARY KEY (guild_id, user_id)
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_threat_guild_score ON threat_scores (guild_id, score)")

    def _from_row(self, row: aiosqlite.Row) -> ThreatScore:
        return ThreatScore(
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            score=int(row["score"]),
            reason=row["reason"],
            last_changed_iso=str(row["last_changed_iso"]),
        )

    async def get(self, guild_id: int, user_id: int) -> ThreatScore:
        async with self._connect() as db:
            async with db.execute(
                "SELECT guild_id, user_id, score, reason, last_changed_iso FROM threat_scores WHERE guild_id = ? AND user_id = ?",
                (int(guild_id), int(user_id)),
            ) as cur:
                row = await cur.fetchone()
        if row is None:
            return ThreatScore(guild_id=int(guild_id), user_id=int(user_id), score=0, reason=None, last_changed_iso=now_iso())
        return self._from_row(row)

    async def _set(self, guild_id: int, user_id: int, score: int, reason: Optional[str]) -> ThreatScore:
        ts = now_iso()
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO threat_scores (guild_id, user_id, score, reason, last_changed_iso)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(guild_id, user_id) DO UPDATE SET
                    score=excluded.score,
                    reason=excluded.reason,
                    last_changed_iso=excluded.last_changed_iso
                """,
                (int(guild_id), int(user_id), int(score), reason, ts),
            )
            await db.commit()
        return ThreatScore(guild_id=int(guild_id), user_id=int(user_id), score=int(score), reason=reason, last_changed_iso=ts)

    async def increment(self, guild_id: int, user_id: int, amount: int = 1, reason: Optional[str] = None) -> ThreatScore:
        async with self._locks.hold((guild_id, user_id)):
            current = await self.get(guild_id, user_id)
            return await self._set(guild_id, user_id, current.score + int(amount), reason)

    async def decrement(self, guild_id: int, user_id: int, amount: int = 1, reason: Optional[str] = None) -> ThreatScore:
        async with self._locks.hold((guild_id, user_id)):
            current = await self.get(guild_id, user_id)
            return await self._set(guild_id, user_id, max(0, current.score - int(amount)), reason)

    async def reset(self, guild_id: int, user_id: int, reason: str = "Manual reset") -> ThreatScore:
        async with self._locks.hold((guild_id, user_id)):
            return await self._set(guild_id, user_id, 0, reason)

    async def list_guild(self, guild_id: int, limit: int = 50) -> list[ThreatScore]:
        limit = max(1, min(200, int(limit)))
        async with self._connect() as db:
            async with db.execute(
                "SELECT guild_id, user_id, score, reason, last_changed_iso FROM threat_scores WHERE guild_id = ? ORDER BY score DESC, last_changed_iso DESC LIMIT ?",
                (int(guild_id), limit),
            ) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def high_risk(self, guild_id: int, threshold: int = HIGH_RISK_SCORE) -> list[ThreatScore]:
        async with self._connect() as db:
            async with db.execute(
                "SELECT guild_id, user_id, score, reason, last_changed_iso FROM threat_scores WHERE guild_id = ? AND score >= ? ORDER BY score DESC",
                (int(guild_id), int(threshold)),
            ) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def stats(self, guild_id: int) -> dict:
        async with self._connect() as db:
            async with db.execute(
                """
                SELECT
                  COUNT(*) AS total,
                  AVG(CASE WHEN score > 0 THEN score END) AS average,
                  SUM(CASE WHEN score >= ? THEN 1 ELSE 0 END) AS high,
                  SUM(CASE WHEN score >= ? AND score < ? THEN 1 ELSE 0 END) AS medium
                FROM threat_scores WHERE guild_id = ?
                """,
                (HIGH_RISK_SCORE, MEDIUM_RISK_SCORE, HIGH_RISK_SCORE, int(guild_id)),
            ) as cur:
                row = await cur.fetchone()
        total = int(row["total"] or 0)
        high = int(row["high"] or 0)
        medium = int(row["medium"] or 0)
        return {
            "total": total,
            "average": round(float(row["average"] or 0.0), 2),
            "high_risk": high,
            "medium_risk": medium,
            "low_risk": total - high - medium,
        }

    async def cleanup_old(self, guild_id: int, days_old: int = 30) -> int:
        cutoff = (datetime.now(timezone.utc) - timedelta(days=int(days_old))).isoformat(timespec="seconds")
        async with self._connect() as db:
            cur = await db.execute(
                "DELETE FROM threat_scores WHERE guild_id = ? AND score = 0 AND last_changed_iso < ?",
                (int(guild_id), cutoff),
            )
            await db.commit()
            return int(cur.rowcount)
