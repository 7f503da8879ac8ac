from __future__ import annotations

import logging
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import aiosqlite

from ..errors import AlreadyAppealed, CaseNotFound, InvalidTransition, NotAppealable, PersistenceFailure, ValidationError
from ..services.appeals_store import AppealsStore
from ..services.base import now_iso
from ..services.cases_store import CasesStore
from .locks import KeyedLock
from .models import (
    TERMINAL_CASE_STATUSES,
    Case,
    CaseInput,
    CaseNote,
    CaseStatus,
    CaseType,
    can_transition_case,
    is_appeal_transition,
)

log = logging.getLogger("warden.ledger")

_ALPHABET = string.digits + string.ascii_lowercase
_ID_ATTEMPTS = 5


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_ALPHABET[r])
    return "".join(reversed(out))


def generate_case_id(guild_id: int, *, now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """`<last 4 of guild id>-<base36 ms timestamp>-<4 random chars>`, upper-cased."""
    ts = int(time.time() * 1000) if now_ms is None else int(now_ms)
    pick = rng or random
    suffix = "".join(pick.choice(_ALPHABET) for _ in range(4))
    return f"{str(int(guild_id))[-4:]}-{_base36(ts)}-{suffix}".upper()


class CaseLedger:
    """Append-only record of enforcement decisions.

    Status changes are serialized per case id and double-checked with a
    compare-and-set in SQL.
    """

    def __init__(
        self,
        cases: CasesStore,
        appeals: Optional[AppealsStore] = None,
        *,
        id_factory: Callable[[int], str] = generate_case_id,
    ) -> None:
        self.cases = cases
        self.appeals = appeals
        self._id_factory = id_factory
        self._locks: KeyedLock[str] = KeyedLock()

    async def create_case(self, data: CaseInput) -> Case:
        if not str(data.reason or "").strip():
            raise ValidationError("reason is required")
        if data.duration_seconds is not None and data.duration_seconds <= 0:
            raise ValidationError("duration_seconds must be positive")

        ts = now_iso()
        for attempt in range(_ID_ATTEMPTS):
            case = Case(
                case_id=self._id_factory(data.guild_id),
                type=CaseType(data.type),
                subject_user_id=data.subject_user_id,
                issuer_id=data.issuer_id,
                guild_id=data.guild_id,
                reason=data.reason,
                status=CaseStatus.ACTIVE,
                appealable=data.appealable,
                appealed=False,
                duration_seconds=data.duration_seconds,
                created_at_iso=ts,
                updated_at_iso=ts,
                channel_id=data.channel_id,
                message_id=data.message_id,
                automated=data.automated,
                notes=tuple(data.notes),
            )
            try:
                await self.cases.insert(case)
            except aiosqlite.IntegrityError:
                log.warning("Case id collision on %s (attempt %d)", case.case_id, attempt + 1)
                continue
            log.info(
                "Case %s created: type=%s user=%s guild=%s issuer=%s",
                case.case_id, case.type.value, case.subject_user_id, case.guild_id, case.issuer_id,
            )
            return case
        raise PersistenceFailure(f"could not allocate a unique case id for guild {data.guild_id}")

    async def get_case_by_id(self, case_id: str, guild_id: Optional[int] = None) -> Optional[Case]:
        """Look a case up. Pass `guild_id` when known; without it every guild is scanned."""
        return await self.cases.get(case_id, guild_id)

    async def require_case(self, case_id: str, guild_id: Optional[int] = None) -> Case:
        case = await self.get_case_by_id(case_id, guild_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    async def update_status(
        self,
        case_id: str,
        new_status: CaseStatus,
        actor_id: Optional[int] = None,
        *,
        guild_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Optional[Case]:
        """Move a case along the lifecycle table. Returns None for unknown ids.

        An audit note is appended when `actor_id` is given. Transitions into and
        out of `appealed` belong to the appeal workflow and are refused here.
        """
        return await self._transition(
            case_id, CaseStatus(new_status), actor_id, guild_id=guild_id, note=note, appeal_outcome=False
        )

    async def record_appeal_outcome(
        self,
        case_id: str,
        new_status: CaseStatus,
        actor_id: int,
        *,
        guild_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Case:
        """Mirror an appeal decision or reopen onto the case."""
        case = await self._transition(
            case_id, CaseStatus(new_status), actor_id, guild_id=guild_id, note=note, appeal_outcome=True
        )
        if case is None:
            raise CaseNotFound(case_id)
        return case

    async def _transition(
        self,
        case_id: str,
        new_status: CaseStatus,
        actor_id: Optional[int],
        *,
        guild_id: Optional[int],
        note: Optional[str],
        appeal_outcome: bool,
    ) -> Optional[Case]:
        async with self._locks.hold(case_id):
            case = await self.get_case_by_id(case_id, guild_id)
            if case is None:
                return None
            if not can_transition_case(case.status, new_status):
                raise InvalidTransition("case", case.status.value, new_status.value)
            if is_appeal_transition(case.status, new_status) != appeal_outcome:
                raise InvalidTransition("case", case.status.value, new_status.value)

            ts = now_iso()
            audit = None
            if actor_id is not None:
                audit = CaseNote(content=note or f"Status changed to: {new_status.value}", author_id=actor_id, created_at_iso=ts)
            if not await self.cases.set_status(case_id, case.status, new_status, ts, note=audit):
                # Another writer outside this process moved the row.
                current = await self.require_case(case_id, guild_id)
                raise InvalidTransition("case", current.status.value, new_status.value)
            log.info("Case %s: %s -> %s (actor=%s)", case_id, case.status.value, new_status.value, actor_id)
            return await self.get_case_by_id(case_id, guild_id)

    async def appeal(self, case_id: str, reason: str, appellant_id: int, *, guild_id: Optional[int] = None) -> Case:
        if not str(reason or "").strip():
            raise ValidationError("appeal reason is required")
        async with self._locks.hold(case_id):
            case = await self.require_case(case_id, guild_id)
            if not case.appealable:
                raise NotAppealable(case_id)
            if case.appealed:
                raise AlreadyAppealed(case_id)
            if case.status is not CaseStatus.ACTIVE:
                raise InvalidTransition("case", case.status.value, CaseStatus.APPEALED.value)

            ts = now_iso()
            note = CaseNote(content=f"Case appealed: {reason}", author_id=appellant_id, created_at_iso=ts)
            if not await self.cases.mark_appealed(case_id, reason, appellant_id, ts, note):
                raise AlreadyAppealed(case_id)
            log.info("Case %s appealed by %s", case_id, appellant_id)
            return await self.require_case(case_id, guild_id)

    async def withdraw_appeal(self, case_id: str, appellant_id: int, reason: str, *, guild_id: Optional[int] = None) -> Case:
        """Undo `appeal` when the appeal row could not be recorded."""
        async with self._locks.hold(case_id):
            note = CaseNote(content=f"Appeal withdrawn: {reason}", author_id=appellant_id, created_at_iso=now_iso())
            if not await self.cases.clear_appeal(case_id, appellant_id, note.created_at_iso, note):
                current = await self.require_case(case_id, guild_id)
                raise InvalidTransition("case", current.status.value, CaseStatus.ACTIVE.value)
            log.warning("Case %s appeal withdrawn: %s", case_id, reason)
            return await self.require_case(case_id, guild_id)

    async def add_note(self, case_id: str, content: str, author_id: int, *, guild_id: Optional[int] = None) -> Case:
        if not str(content or "").strip():
            raise ValidationError("note content is required")
        await self.require_case(case_id, guild_id)
        note = CaseNote(content=content, author_id=author_id, created_at_iso=now_iso())
        if not await self.cases.add_note(case_id, note):
            raise CaseNotFound(case_id)
        return await self.require_case(case_id, guild_id)

    async def close_case(self, case_id: str, actor_id: int, *, guild_id: Optional[int] = None, reason: Optional[str] = None) -> Case:
        """Soft delete: active -> closed."""
        note = f"Case closed: {reason}" if reason else None
        case = await self.update_status(case_id, CaseStatus.CLOSED, actor_id, guild_id=guild_id, note=note)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    async def get_user_cases(
        self,
        user_id: int,
        guild_id: int,
        case_type: Optional[CaseType] = None,
        status: Optional[CaseStatus] = None,
    ) -> list[Case]:
        return await self.cases.list_for_user(guild_id, user_id, case_type=case_type, status=status)

    async def get_issuer_cases(self, issuer_id: int, guild_id: int, case_type: Optional[CaseType] = None) -> list[Case]:
        return await self.cases.list_for_issuer(guild_id, issuer_id, case_type=case_type)

    async def get_guild_cases(self, guild_id: int, limit: int = 50, offset: int = 0) -> list[Case]:
        return await self.cases.list_guild(guild_id, limit=limit, offset=offset)

    async def get_case_stats(self, guild_id: int) -> dict:
        return await self.cases.stats(guild_id)

    async def purge_cases(self, guild_id: int, older_than_days: int) -> int:
        """Physically delete terminal cases untouched for `older_than_days`."""
        if older_than_days < 1:
            raise ValidationError("older_than_days must be at least 1")
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat(timespec="seconds")
        ids = await self.cases.purge(guild_id, TERMINAL_CASE_STATUSES, cutoff)
        if ids and self.appeals is not None:
            await self.appeals.delete_for_cases(ids)
        log.info("Purged %d cases for guild=%s older than %d days", len(ids), guild_id, older_than_days)
        return len(ids)

