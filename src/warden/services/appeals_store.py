from __future__ import annotations

from typing import Iterable, Optional

import aiosqlite

from ..enforcement.models import Appeal, AppealStatus
from .base import BaseService

_COLUMNS = "case_id, guild_id, user_id, reason, evidence, contact, status, reviewed_by, review_note, submitted_at_iso, reviewed_at_iso"


class AppealsStore(BaseService[Appeal]):
    """One appeal row per case, enforced by the primary key."""

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS appeals (
              case_id TEXT PRIMARY KEY,
              guild_id INTEGER NOT NULL,
              user_id INTEGER NOT NULL,
              reason TEXT NOT NULL,
              evidence TEXT NULL,
              contact TEXT NULL,
              status TEXT NOT NULL,
              reviewed_by INTEGER NULL,
              review_note TEXT NULL,
              submitted_at_iso TEXT NOT NULL,
              reviewed_at_iso TEXT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_guild_status ON appeals (guild_id, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_guild_user ON appeals (guild_id, user_id)")

    def _from_row(self, row: aiosqlite.Row) -> Appeal:
        return Appeal(
            case_id=str(row["case_id"]),
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            reason=str(row["reason"]),
            status=AppealStatus(row["status"]),
            submitted_at_iso=str(row["submitted_at_iso"]),
            evidence=row["evidence"],
            contact=row["contact"],
            reviewed_by=(int(row["reviewed_by"]) if row["reviewed_by"] is not None else None),
            review_note=row["review_note"],
            reviewed_at_iso=row["reviewed_at_iso"],
        )

    async def insert(self, appeal: Appeal) -> None:
        """Raises `aiosqlite.IntegrityError` if the case already has an appeal."""
        async with self._connect() as db:
            await db.execute(
                f"INSERT INTO appeals ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    appeal.case_id,
                    int(appeal.guild_id),
                    int(appeal.user_id),
                    appeal.reason,
                    appeal.evidence,
                    appeal.contact,
                    appeal.status.value,
                    appeal.reviewed_by,
                    appeal.review_note,
                    appeal.submitted_at_iso,
                    appeal.reviewed_at_iso,
                ),
            )
            await db.commit()

    async def get(self, case_id: str) -> Optional[Appeal]:
        async with self._connect() as db:
            async with db.execute(f"SELECT {_COLUMNS} FROM appeals WHERE case_id = ?", (case_id,)) as cur:
                row = await cur.fetchone()
        return self._from_row(row) if row else None

    async def exists(self, case_id: str, user_id: int, guild_id: int) -> bool:
        async with self._connect() as db:
            async with db.execute(
                "SELECT COUNT(*) FROM appeals WHERE case_id = ? AND user_id = ? AND guild_id = ?",
                (case_id, int(user_id), int(guild_id)),
            ) as cur:
                row = await cur.fetchone()
        return bool(row and int(row[0]) > 0)

    async def transition(
        self,
        case_id: str,
        expected: AppealStatus,
        new_status: AppealStatus,
        *,
        reviewed_by: int,
        review_note: Optional[str],
        reviewed_at_iso: str,
    ) -> bool:
        """Compare-and-set on status. False means another reviewer got there first."""
        async with self._connect() as db:
            cur = await db.execute(
                """
                UPDATE appeals SET status = ?, reviewed_by = ?, review_note = ?, reviewed_at_iso = ?
                WHERE case_id = ? AND status = ?
                """,
                (new_status.value, int(reviewed_by), review_note, reviewed_at_iso, case_id, expected.value),
            )
            await db.commit()
            return cur.rowcount > 0

    async def restore(self, previous: Appeal, current: AppealStatus) -> bool:
        """Put back review fields from `previous` if the row is still at `current`."""
        async with self._connect() as db:
            cur = await db.execute(
                """
                UPDATE appeals SET status = ?, reviewed_by = ?, review_note = ?, reviewed_at_iso = ?
                WHERE case_id = ? AND status = ?
                """,
                (
                    previous.status.value,
                    previous.reviewed_by,
                    previous.review_note,
                    previous.reviewed_at_iso,
                    previous.case_id,
                    current.value,
                ),
            )
            await db.commit()
            return cur.rowcount > 0

    async def list_guild(self, guild_id: int, *, status: Optional[AppealStatus] = None, limit: int = 50) -> list[Appeal]:
        limit = max(1, min(200, int(limit)))
        query = f"SELECT {_COLUMNS} FROM appeals WHERE guild_id = ?"
        params: list = [int(guild_id)]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY submitted_at_iso DESC LIMIT ?"
        params.append(limit)
        async with self._connect() as db:
            async with db.execute(query, tuple(params)) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def list_for_user(self, guild_id: int, user_id: int) -> list[Appeal]:
        async with self._connect() as db:
            async with db.execute(
                f"SELECT {_COLUMNS} FROM appeals WHERE guild_id = ? AND user_id = ? ORDER BY submitted_at_iso DESC",
                (int(guild_id), int(user_id)),
            ) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def stats(self, guild_id: int) -> dict:
        async with self._connect() as db:
            async with db.execute(
                "SELECT status, COUNT(*) AS n FROM appeals WHERE guild_id = ? GROUP BY status",
                (int(guild_id),),
            ) as cur:
                by_status = {str(r["status"]): int(r["n"]) for r in await cur.fetchall()}
        return {"total": sum(by_status.values()), "by_status": by_status}

    async def delete_for_cases(self, case_ids: Iterable[str]) -> int:
        ids = list(case_ids)
        if not ids:
            return 0
        marks = ", ".join("?" for _ in ids)
        async with self._connect() as db:
            cur = await db.execute(f"DELETE FROM appeals WHERE case_id IN ({marks})", tuple(ids))
            await db.commit()
            return int(cur.rowcount)
