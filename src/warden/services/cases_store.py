from __future__ import annotations

from typing import Iterable, Optional

import aiosqlite

from ..enforcement.models import Case, CaseNote, CaseStatus, CaseType
from .base import BaseService

_CASE_COLUMNS = (
    "case_id, guild_id, type, subject_user_id, issuer_id, reason, status, appealable, appealed, "
    "duration_seconds, channel_id, message_id, automated, appeal_reason, appealed_by, appealed_at_iso, "
    "created_at_iso, updated_at_iso"
)


class CasesStore(BaseService[Case]):
    """Append-only case rows plus their ordered notes.

    Rows are never updated except for status/appeal columns and never deleted
    except through `purge`.
    """

    def __init__(self, sqlite_path: str, cache_ttl: int = 300) -> None:
        super().__init__(sqlite_path, cache_ttl)

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS cases (
              case_id TEXT PRIMARY KEY,
              guild_id INTEGER NOT NULL,
              type TEXT NOT NULL,
              subject_user_id INTEGER NOT NULL,
              issuer_id INTEGER NOT NULL,
              reason TEXT NOT NULL,
              status TEXT NOT NULL,
              appealable INTEGER NOT NULL DEFAULT 1,
              appealed INTEGER NOT NULL DEFAULT 0,
              duration_seconds INTEGER NULL,
              channel_id INTEGER NULL,
              message_id INTEGER NULL,
              automated INTEGER NOT NULL DEFAULT 0,
              appeal_reason TEXT NULL,
              appealed_by INTEGER NULL,
              appealed_at_iso TEXT NULL,
              created_at_iso TEXT NOT NULL,
              updated_at_iso TEXT NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS case_notes (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              case_id TEXT NOT NULL,
              content TEXT NOT NULL,
              author_id INTEGER NOT NULL,
              created_at_iso TEXT NOT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_cases_guild_user ON cases (guild_id, subject_user_id, created_at_iso)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_cases_guild_status ON cases (guild_id, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_case_notes_case ON case_notes (case_id, id)")

    def _from_row(self, row: aiosqlite.Row, notes: Iterable[CaseNote] = ()) -> Case:
        return Case(
            case_id=str(row["case_id"]),
            type=CaseType(row["type"]),
            subject_user_id=int(row["subject_user_id"]),
            issuer_id=int(row["issuer_id"]),
            guild_id=int(row["guild_id"]),
            reason=str(row["reason"]),
            status=CaseStatus(row["status"]),
            appealable=bool(row["appealable"]),
            appealed=bool(row["appealed"]),
            duration_seconds=(int(row["duration_seconds"]) if row["duration_seconds"] is not None else None),
            created_at_iso=str(row["created_at_iso"]),
            updated_at_iso=str(row["updated_at_iso"]),
            channel_id=(int(row["channel_id"]) if row["channel_id"] is not None else None),
            message_id=(int(row["message_id"]) if row["message_id"] is not None else None),
            automated=bool(row["automated"]),
            appeal_reason=row["appeal_reason"],
            appealed_by=(int(row["appealed_by"]) if row["appealed_by"] is not None else None),
            appealed_at_iso=row["appealed_at_iso"],
            notes=tuple(notes),
        )

    async def insert(self, case: Case) -> None:
        """Insert a new case. Raises `aiosqlite.IntegrityError` on a duplicate id."""
        async with self._connect() as db:
            await db.execute(
                f"INSERT INTO cases ({_CASE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    case.case_id,
                    int(case.guild_id),
                    case.type.value,
                    int(case.subject_user_id),
                    int(case.issuer_id),
                    case.reason,
                    case.status.value,
                    int(case.appealable),
                    int(case.appealed),
                    case.duration_seconds,
                    case.channel_id,
                    case.message_id,
                    int(case.automated),
                    case.appeal_reason,
                    case.appealed_by,
                    case.appealed_at_iso,
                    case.created_at_iso,
                    case.updated_at_iso,
                ),
            )
            for note in case.notes:
                await db.execute(
                    "INSERT INTO case_notes (case_id, content, author_id, created_at_iso) VALUES (?, ?, ?, ?)",
                    (case.case_id, note.content, int(note.author_id), note.created_at_iso),
                )
            await db.commit()

    async def _notes(self, db: aiosqlite.Connection, case_id: str) -> list[CaseNote]:
        async with db.execute(
            "SELECT content, author_id, created_at_iso FROM case_notes WHERE case_id = ? ORDER BY id",
            (case_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [CaseNote(content=str(r["content"]), author_id=int(r["author_id"]), created_at_iso=str(r["created_at_iso"])) for r in rows]

    async def get(self, case_id: str, guild_id: Optional[int] = None) -> Optional[Case]:
        async with self._connect() as db:
            if guild_id is not None:
                query = f"SELECT {_CASE_COLUMNS} FROM cases WHERE guild_id = ? AND case_id = ?"
                params: tuple = (int(guild_id), case_id)
            else:
                query = f"SELECT {_CASE_COLUMNS} FROM cases WHERE case_id = ?"
                params = (case_id,)
            async with db.execute(query, params) as cur:
                row = await cur.fetchone()
            if row is None:
                return None
            return self._from_row(row, await self._notes(db, case_id))

    async def _select(self, where: str, params: tuple, suffix: str = "") -> list[Case]:
        async with self._connect() as db:
            async with db.execute(f"SELECT {_CASE_COLUMNS} FROM cases WHERE {where} {suffix}", params) as cur:
                rows = await cur.fetchall()
            return [self._from_row(r, await self._notes(db, str(r["case_id"]))) for r in rows]

    async def list_for_user(
        self,
        guild_id: int,
        user_id: int,
        *,
        case_type: Optional[CaseType] = None,
        status: Optional[CaseStatus] = None,
        limit: int = 50,
    ) -> list[Case]:
        where = "guild_id = ? AND subject_user_id = ?"
        params: list = [int(guild_id), int(user_id)]
        if case_type is not None:
            where += " AND type = ?"
            params.append(case_type.value)
        if status is not None:
            where += " AND status = ?"
            params.append(status.value)
        params.append(max(1, min(200, int(limit))))
        return await self._select(where, tuple(params), "ORDER BY created_at_iso DESC, rowid DESC LIMIT ?")

    async def list_for_issuer(self, guild_id: int, issuer_id: int, *, case_type: Optional[CaseType] = None, limit: int = 50) -> list[Case]:
        where = "guild_id = ? AND issuer_id = ?"
        params: list = [int(guild_id), int(issuer_id)]
        if case_type is not None:
            where += " AND type = ?"
            params.append(case_type.value)
        params.append(max(1, min(200, int(limit))))
        return await self._select(where, tuple(params), "ORDER BY created_at_iso DESC, rowid DESC LIMIT ?")

    async def list_guild(self, guild_id: int, *, limit: int = 50, offset: int = 0) -> list[Case]:
        return await self._select(
            "guild_id = ?",
            (int(guild_id), max(1, min(200, int(limit))), max(0, int(offset))),
            "ORDER BY created_at_iso DESC, rowid DESC LIMIT ? OFFSET ?",
        )

    async def set_status(
        self,
        case_id: str,
        expected: CaseStatus,
        new_status: CaseStatus,
        updated_at_iso: str,
        *,
        note: Optional[CaseNote] = None,
    ) -> bool:
        """Compare-and-set the status. Returns False if the row moved underneath us."""
        async with self._connect() as db:
            cur = await db.execute(
                "UPDATE cases SET status = ?, updated_at_iso = ? WHERE case_id = ? AND status = ?",
                (new_status.value, updated_at_iso, case_id, expected.value),
            )
            if cur.rowcount == 0:
                await db.rollback()
                return False
            if note is not None:
                await db.execute(
                    "INSERT INTO case_notes (case_id, content, author_id, created_at_iso) VALUES (?, ?, ?, ?)",
                    (case_id, note.content, int(note.author_id), note.created_at_iso),
                )
            await db.commit()
            return True

    async def mark_appealed(self, case_id: str, reason: str, appellant_id: int, at_iso: str, note: CaseNote) -> bool:
        """Flip an appealable, unappealed, active case to appealed in one statement."""
        async with self._connect() as db:
            cur = await db.execute(
                """
                UPDATE cases
                SET appealed = 1, status = ?, appeal_reason = ?, appealed_by = ?, appealed_at_iso = ?, updated_at_iso = ?
                WHERE case_id = ? AND appealable = 1 AND appealed = 0 AND status = ?
                """,
                (CaseStatus.APPEALED.value, reason, int(appellant_id), at_iso, at_iso, case_id, CaseStatus.ACTIVE.value),
            )
            if cur.rowcount == 0:
                await db.rollback()
                return False
            await db.execute(
                "INSERT INTO case_notes (case_id, content, author_id, created_at_iso) VALUES (?, ?, ?, ?)",
                (case_id, note.content, int(note.author_id), note.created_at_iso),
            )
            await db.commit()
            return True

    async def clear_appeal(self, case_id: str, appellant_id: int, at_iso: str, note: CaseNote) -> bool:
        """Return a freshly appealed case to active and drop its appeal fields."""
        async with self._connect() as db:
            cur = await db.execute(
                """
                UPDATE cases
                SET appealed = 0, status = ?, appeal_reason = NULL, appealed_by = NULL, appealed_at_iso = NULL, updated_at_iso = ?
                WHERE case_id = ? AND appealed = 1 AND status = ? AND appealed_by = ?
                """,
                (CaseStatus.ACTIVE.value, at_iso, case_id, CaseStatus.APPEALED.value, int(appellant_id)),
            )
            if cur.rowcount == 0:
                await db.rollback()
                return False
            await db.execute(
                "INSERT INTO case_notes (case_id, content, author_id, created_at_iso) VALUES (?, ?, ?, ?)",
                (case_id, note.content, int(note.author_id), note.created_at_iso),
            )
            await db.commit()
            return True

    async def add_note(self, case_id: str, note: CaseNote) -> bool:
        async with self._connect() as db:
            cur = await db.execute("UPDATE cases SET updated_at_iso = ? WHERE case_id = ?", (note.created_at_iso, case_id))
            if cur.rowcount == 0:
                await db.rollback()
                return False
            await db.execute(
                "INSERT INTO case_notes (case_id, content, author_id, created_at_iso) VALUES (?, ?, ?, ?)",
                (case_id, note.content, int(note.author_id), note.created_at_iso),
            )
            await db.commit()
            return True

    async def stats(self, guild_id: int) -> dict:
        async with self._connect() as db:
            async with db.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(appealed), 0) AS appealed FROM cases WHERE guild_id = ?",
                (int(guild_id),),
            ) as cur:
                row = await cur.fetchone()
            async with db.execute("SELECT type, COUNT(*) AS n FROM cases WHERE guild_id = ? GROUP BY type", (int(guild_id),)) as cur:
                by_type = {str(r["type"]): int(r["n"]) for r in await cur.fetchall()}
            async with db.execute("SELECT status, COUNT(*) AS n FROM cases WHERE guild_id = ? GROUP BY status", (int(guild_id),)) as cur:
                by_status = {str(r["status"]): int(r["n"]) for r in await cur.fetchall()}
        return {
            "total": int(row["total"]),
            "active": by_status.get(CaseStatus.ACTIVE.value, 0),
            "closed": by_status.get(CaseStatus.CLOSED.value, 0),
            "appealed": int(row["appealed"]),
            "by_type": by_type,
            "by_status": by_status,
        }

    async def purge(self, guild_id: int, statuses: Iterable[CaseStatus], updated_before_iso: str) -> list[str]:
        """Hard delete cases in the given statuses not touched since the cutoff."""
        status_values = [s.value for s in statuses]
        if not status_values:
            return []
        marks = ", ".join("?" for _ in status_values)
        async with self._connect() as db:
            async with db.execute(
                f"SELECT case_id FROM cases WHERE guild_id = ? AND status IN ({marks}) AND updated_at_iso < ?",
                (int(guild_id), *status_values, updated_before_iso),
            ) as cur:
                ids = [str(r["case_id"]) for r in await cur.fetchall()]
            for cid in ids:
                await db.execute("DELETE FROM case_notes WHERE case_id = ?", (cid,))
                await db.execute("DELETE FROM cases WHERE case_id = ?", (cid,))
            await db.commit()
        return ids
