from __future__ import annotations

import asyncio
from typing import Any, Optional

from ..enforcement.models import Appeal, Case, Event, ModLogEntry, Notice
from ..errors import ExternalActionFailure


class FakeExecutor:
    """In-memory ActionExecutor that records every call.

    `fail` names actions that raise ExternalActionFailure; `hang` names
    actions that sleep past any reasonable timeout.
    """

    def __init__(self, *, fail: set[str] | None = None, hang: set[str] | None = None, hang_seconds: float = 3600.0) -> None:
        self.fail = set(fail or ())
        self.hang = set(hang or ())
        self.hang_seconds = hang_seconds
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def _record(self, action: str, **params: Any) -> None:
        self.calls.append((action, params))
        if action in self.hang:
            await asyncio.sleep(self.hang_seconds)
        if action in self.fail:
            raise ExternalActionFailure(action, "Forbidden: Missing Permissions")

    def actions(self) -> list[str]:
        return [a for a, _ in self.calls]

    def calls_for(self, action: str) -> list[dict[str, Any]]:
        return [p for a, p in self.calls if a == action]

    async def timeout(self, guild_id: int, user_id: int, duration_seconds: int, reason: str) -> None:
        await self._record("timeout", guild_id=guild_id, user_id=user_id, duration_seconds=duration_seconds, reason=reason)

    async def untimeout(self, guild_id: int, user_id: int, reason: str) -> None:
        await self._record("untimeout", guild_id=guild_id, user_id=user_id, reason=reason)

    async def ban(self, guild_id: int, user_id: int, reason: str) -> None:
        await self._record("ban", guild_id=guild_id, user_id=user_id, reason=reason)

    async def unban(self, guild_id: int, user_id: int, reason: str) -> None:
        await self._record("unban", guild_id=guild_id, user_id=user_id, reason=reason)

    async def kick(self, guild_id: int, user_id: int, reason: str) -> None:
        await self._record("kick", guild_id=guild_id, user_id=user_id, reason=reason)

    async def delete_message(self, event: Event) -> None:
        await self._record("delete_message", guild_id=event.community_id, message_id=event.message_id)

    async def send_direct_message(self, user_id: int, notice: Notice) -> None:
        await self._record("dm", user_id=user_id, notice=notice)


class FakeModLog:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.entries: list[tuple[int, Optional[int], ModLogEntry]] = []
        self.appeals: list[tuple[int, Optional[int], Appeal, Case]] = []

    async def send(self, guild_id: int, channel_id: Optional[int], entry: ModLogEntry) -> None:
        self.entries.append((guild_id, channel_id, entry))
        if self.fail:
            raise ExternalActionFailure("modlog", "Forbidden: Missing Access")

    async def send_appeal(self, guild_id: int, channel_id: Optional[int], appeal: Appeal, case: Case) -> None:
        self.appeals.append((guild_id, channel_id, appeal, case))
        if self.fail:
            raise ExternalActionFailure("modlog", "Forbidden: Missing Access")
