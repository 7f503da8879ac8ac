"""
discord.py implementations of the platform protocols in `warden.interfaces`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional, TypeVar

import discord

from ..embeds import appeal_embed, modlog_embed, notice_embed
from ..errors import ExternalActionFailure
from .models import Appeal, Case, Event, ModLogEntry, Notice

log = logging.getLogger("warden.executor")

R = TypeVar("R")

# Discord caps member timeouts at 28 days.
MAX_TIMEOUT_SECONDS = 28 * 24 * 60 * 60


async def _retry(action: str, coro_fn: Callable[[], Awaitable[R]], *, tries: int = 3, base_delay: float = 0.5) -> R:
    """Bounded exponential backoff for transient Discord failures.

    Forbidden and NotFound are permanent and fail immediately.
    """
    last: Optional[BaseException] = None
    for t in range(tries):
        try:
            return await coro_fn()
        except (discord.Forbidden, discord.NotFound) as e:
            raise ExternalActionFailure(action, f"{type(e).__name__}: {e.text or e.status}") from e
        except (discord.HTTPException, asyncio.TimeoutError) as e:
            last = e
            if t + 1 < tries:
                await asyncio.sleep(base_delay * (2**t))
    raise ExternalActionFailure(action, f"{type(last).__name__}: {last}") from last


class DiscordActionExecutor:
    def __init__(self, bot: discord.Client, *, tries: int = 3) -> None:
        self.bot = bot
        self.tries = tries

    def _guild(self, action: str, guild_id: int) -> discord.Guild:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise ExternalActionFailure(action, f"guild {guild_id} not available")
        return guild

    async def _member(self, action: str, guild: discord.Guild, user_id: int) -> discord.Member:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        return await _retry(action, lambda: guild.fetch_member(user_id), tries=self.tries)

    async def timeout(self, guild_id: int, user_id: int, duration_seconds: int, reason: str) -> None:
        guild = self._guild("timeout", guild_id)
        member = await self._member("timeout", guild, user_id)
        until = discord.utils.utcnow() + timedelta(seconds=min(int(duration_seconds), MAX_TIMEOUT_SECONDS))
        await _retry("timeout", lambda: member.timeout(until, reason=reason), tries=self.tries)
        log.info("Timed out user=%s guild=%s for %ss", user_id, guild_id, duration_seconds)

    async def untimeout(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild("untimeout", guild_id)
        member = await self._member("untimeout", guild, user_id)
        await _retry("untimeout", lambda: member.timeout(None, reason=reason), tries=self.tries)
        log.info("Removed timeout for user=%s guild=%s", user_id, guild_id)

    async def ban(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild("ban", guild_id)
        await _retry("ban", lambda: guild.ban(discord.Object(id=user_id), reason=reason, delete_message_seconds=0), tries=self.tries)
        log.info("Banned user=%s guild=%s", user_id, guild_id)

    async def unban(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild("unban", guild_id)
        await _retry("unban", lambda: guild.unban(discord.Object(id=user_id), reason=reason), tries=self.tries)
        log.info("Unbanned user=%s guild=%s", user_id, guild_id)

    async def kick(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild("kick", guild_id)
        await _retry("kick", lambda: guild.kick(discord.Object(id=user_id), reason=reason), tries=self.tries)
        log.info("Kicked user=%s guild=%s", user_id, guild_id)

    async def delete_message(self, event: Event) -> None:
        if not event.channel_id or not event.message_id:
            return
        guild = self._guild("delete_message", event.community_id)
        channel = guild.get_channel_or_thread(event.channel_id)
        if not isinstance(channel, (discord.TextChannel, discord.Thread, discord.VoiceChannel)):
            raise ExternalActionFailure("delete_message", f"channel {event.channel_id} not messageable")
        message = channel.get_partial_message(event.message_id)
        await _retry("delete_message", lambda: message.delete(), tries=self.tries)

    async def send_direct_message(self, user_id: int, notice: Notice) -> None:
        guild = self.bot.get_guild(notice.guild_id)
        embed = notice_embed(notice, guild.name if guild else str(notice.guild_id))
        user = self.bot.get_user(user_id)
        if user is None:
            user = await _retry("dm", lambda: self.bot.fetch_user(user_id), tries=1)
        # Closed DMs are the common case; no retries.
        await _retry("dm", lambda: user.send(embed=embed), tries=1)


class DiscordModLog:
    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    def _channel(self, guild_id: int, channel_id: Optional[int]) -> Optional[discord.TextChannel]:
        if not channel_id:
            return None
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        channel = guild.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            log.warning("Modlog channel %s missing in guild=%s", channel_id, guild_id)
            return None
        return channel

    async def send(self, guild_id: int, channel_id: Optional[int], entry: ModLogEntry) -> None:
        channel = self._channel(guild_id, channel_id)
        if channel is None:
            return
        embed = modlog_embed(entry, channel.guild.get_member(entry.user_id))
        await _retry("modlog", lambda: channel.send(embed=embed), tries=2)

    async def send_appeal(self, guild_id: int, channel_id: Optional[int], appeal: Appeal, case: Case) -> None:
        channel = self._channel(guild_id, channel_id)
        if channel is None:
            return
        embed = appeal_embed(appeal, case)
        await _retry("appeal alert", lambda: channel.send(content="New appeal submitted", embed=embed), tries=2)
