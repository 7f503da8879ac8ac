from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..constants import COLORS
from ..embeds import stats_embed
from ..enforcement.config_schema import FILTER_NAMES, AutomodConfig
from ..enforcement.models import Event
from ..utils import add_field, format_duration, safe_embed, success_embed

log = logging.getLogger("warden.cog.automod")

_FILTER_CHOICES = [app_commands.Choice(name=n, value=n) for n in FILTER_NAMES]


def event_from_message(message: discord.Message) -> Event:
    assert message.guild is not None
    roles = getattr(message.author, "roles", None) or []
    return Event(
        community_id=message.guild.id,
        author_id=message.author.id,
        content=message.content or "",
        channel_id=message.channel.id,
        created_at=message.created_at,
        message_id=message.id,
        author_is_bot=message.author.bot,
        author_role_ids=tuple(r.id for r in roles),
    )


def config_embed(config: AutomodConfig) -> discord.Embed:
    e = safe_embed("AutoMod Configuration", color=COLORS["success"] if config.automod_enabled else COLORS["error"])
    add_field(e, "Enabled", "yes" if config.automod_enabled else "no")
    add_field(e, "Warn threshold", config.warn_threshold)
    add_field(e, "Decay window", format_duration(config.decay_window_seconds))
    add_field(e, "Ban severity", f">= {config.ban_severity}")
    add_field(
        e,
        "Timeouts",
        "\n".join(f"severity >= {sev}: {format_duration(sec)}" for sev, sec in sorted(config.mute_durations_by_severity.items(), reverse=True)),
    )
    add_field(e, "Filters", "\n".join(f"{'off' if n in config.disabled_filters else 'on'}: {n}" for n in FILTER_NAMES))
    add_field(e, "Deny list", f"{len(config.deny_list)} words")
    add_field(e, "Modlog", f"<#{config.modlog_channel_id}>" if config.modlog_channel_id else None)
    add_field(e, "DM users", "yes" if config.dm_notify else "no")
    return e


class AutomodCog(commands.Cog):
    """Feeds guild messages into the enforcement engine and exposes its config."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]

    @property
    def engine(self):
        return self.bot.engine  # type: ignore[attr-defined]

    @property
    def configs(self):
        return self.bot.config_store  # type: ignore[attr-defined]

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.guild is None or message.author.bot:
            return
        self.engine.record_event(event_from_message(message))

    async def _update(self, interaction: discord.Interaction, message: str, **changes) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)
        await self.configs.update(interaction.guild.id, updated_by_user_id=interaction.user.id, **changes)
        await interaction.followup.send(embed=success_embed(message), ephemeral=True)

    # -------------------- /automod --------------------

    automod = app_commands.Group(
        name="automod",
        description="Configure automated moderation",
        guild_only=True,
        default_permissions=discord.Permissions(manage_guild=True),
    )

    @automod.command(name="show", description="Show the automod configuration")
    async def show(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        config = await self.configs.get(interaction.guild.id)
        await interaction.response.send_message(embed=config_embed(config), ephemeral=True)

    @automod.command(name="enable", description="Enable automod")
    async def enable(self, interaction: discord.Interaction) -> None:
        await self._update(interaction, "AutoMod enabled.", automod_enabled=True)

    @automod.command(name="disable", description="Disable automod")
    async def disable(self, interaction: discord.Interaction) -> None:
        await self._update(interaction, "AutoMod disabled.", automod_enabled=False)

    @automod.command(name="threshold", description="Warnings before timeouts and bans apply")
    async def threshold(self, interaction: discord.Interaction, warnings: app_commands.Range[int, 1, 20]) -> None:
        await self._update(interaction, f"Warn threshold set to {warnings}.", warn_threshold=int(warnings))

    @automod.command(name="decay", description="Hours of good behaviour before warnings reset")
    async def decay(self, interaction: discord.Interaction, hours: app_commands.Range[int, 1, 720]) -> None:
        await self._update(interaction, f"Warnings now decay after {hours}h.", decay_window_seconds=int(hours) * 3600)

    @automod.command(name="denylist-add", description="Add a word or phrase to the deny list")
    async def denylist_add(self, interaction: discord.Interaction, word: str) -> None:
        assert interaction.guild is not None
        word = word.strip().lower()
        config = await self.configs.get(interaction.guild.id)
        if word in config.deny_list:
            await interaction.response.send_message(f"`{word}` is already on the deny list.", ephemeral=True)
            return
        await self._update(interaction, f"Added `{word}` to the deny list.", deny_list=config.deny_list + (word,))

    @automod.command(name="denylist-remove", description="Remove a word or phrase from the deny list")
    async def denylist_remove(self, interaction: discord.Interaction, word: str) -> None:
        assert interaction.guild is not None
        word = word.strip().lower()
        config = await self.configs.get(interaction.guild.id)
        if word not in config.deny_list:
            await interaction.response.send_message(f"`{word}` is not on the deny list.", ephemeral=True)
            return
        remaining = tuple(w for w in config.deny_list if w != word)
        await self._update(interaction, f"Removed `{word}` from the deny list.", deny_list=remaining)

    @automod.command(name="filter-toggle", description="Turn a filter on or off")
    @app_commands.choices(name=_FILTER_CHOICES)
    async def filter_toggle(self, interaction: discord.Interaction, name: app_commands.Choice[str]) -> None:
        assert interaction.guild is not None
        config = await self.configs.get(interaction.guild.id)
        if name.value in config.disabled_filters:
            disabled = tuple(n for n in config.disabled_filters if n != name.value)
            state = "enabled"
        else:
            disabled = config.disabled_filters + (name.value,)
            state = "disabled"
        await self._update(interaction, f"Filter `{name.value}` {state}.", disabled_filters=disabled)

    @automod.command(name="modlog", description="Set or clear the moderation log channel")
    async def modlog(self, interaction: discord.Interaction, channel: Optional[discord.TextChannel] = None) -> None:
        if channel is None:
            await self._update(interaction, "Modlog channel cleared.", modlog_channel_id=None)
        else:
            await self._update(interaction, f"Modlog channel set to {channel.mention}.", modlog_channel_id=channel.id)

    @automod.command(name="stats", description="Runtime enforcement counters")
    async def runtime_stats(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_message(embed=stats_embed("AutoMod Runtime", self.engine.stats.snapshot()), ephemeral=True)

    # -------------------- /warnings --------------------

    warnings = app_commands.Group(
        name="warnings",
        description="Automod warning counters",
        guild_only=True,
        default_permissions=discord.Permissions(moderate_members=True),
    )

    @warnings.command(name="view", description="Show a member's active warning count")
    async def warnings_view(self, interaction: discord.Interaction, member: discord.Member) -> None:
        assert interaction.guild is not None
        count = await self.engine.get_warning_count(member.id, interaction.guild.id)
        config = await self.configs.get(interaction.guild.id)
        await interaction.response.send_message(
            f"{member.mention} has **{count}** active warning(s) (threshold {config.warn_threshold}).",
            ephemeral=True,
        )

    @warnings.command(name="reset", description="Reset a member's warning count")
    async def warnings_reset(self, interaction: discord.Interaction, member: discord.Member) -> None:
        assert interaction.guild is not None
        await self.engine.reset_warnings(member.id, interaction.guild.id)
        log.info("Warnings reset for user=%s guild=%s by %s", member.id, interaction.guild.id, interaction.user.id)
        await interaction.response.send_message(embed=success_embed(f"Warnings reset for {member.mention}."), ephemeral=True)
