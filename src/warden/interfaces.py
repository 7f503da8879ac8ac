"""
Interface contracts between the enforcement engine and the chat platform.

The engine only talks to these protocols; `warden.enforcement.discord_adapters`
implements them on top of discord.py and `warden.testing.fakes` in memory.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .enforcement.models import Appeal, Case, Event, ModLogEntry, Notice


@runtime_checkable
class ActionExecutor(Protocol):
    """Applies sanctions on the platform. Implementations raise
    `ExternalActionFailure` when the platform rejects a call."""

    async def timeout(self, guild_id: int, user_id: int, duration_seconds: int, reason: str) -> None:
        ...

    async def untimeout(self, guild_id: int, user_id: int, reason: str) -> None:
        ...

    async def ban(self, guild_id: int, user_id: int, reason: str) -> None:
        ...

    async def unban(self, guild_id: int, user_id: int, reason: str) -> None:
        ...

    async def kick(self, guild_id: int, user_id: int, reason: str) -> None:
        ...

    async def delete_message(self, event: Event) -> None:
        ...

    async def send_direct_message(self, user_id: int, notice: Notice) -> None:
        ...


@runtime_checkable
class ModLogSink(Protocol):
    """Posts enforcement records to a community's moderation channel."""

    async def send(self, guild_id: int, channel_id: Optional[int], entry: ModLogEntry) -> None:
        ...

    async def send_appeal(self, guild_id: int, channel_id: Optional[int], appeal: Appeal, case: Case) -> None:
        ...


def validate_executor(executor: object) -> ActionExecutor:
    """Validate and return ActionExecutor interface."""
    if not isinstance(executor, ActionExecutor):
        raise AttributeError(f"Object {executor} does not implement ActionExecutor interface")
    return executor


def validate_modlog(sink: object) -> ModLogSink:
    """Validate and return ModLogSink interface."""
    if not isinstance(sink, ModLogSink):
        raise AttributeError(f"Object {sink} does not implement ModLogSink interface")
    return sink
