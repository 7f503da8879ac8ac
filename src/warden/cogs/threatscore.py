from __future__ import annotations

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..embeds import stats_embed, threat_embed
from ..utils import info_embed


class ThreatScoreCog(commands.Cog):
    """Advisory threat scores, adjusted by moderators and never read by automod."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]

    @property
    def store(self):
        return self.bot.threat_store  # type: ignore[attr-defined]

    threatscore = app_commands.Group(
        name="threatscore",
        description="Advisory risk scores for reviewers",
        guild_only=True,
        default_permissions=discord.Permissions(moderate_members=True),
    )

    @threatscore.command(name="view", description="Show a member's threat score")
    async def view(self, interaction: discord.Interaction, member: discord.Member) -> None:
        assert interaction.guild is not None
        score = await self.store.get(interaction.guild.id, member.id)
        await interaction.response.send_message(embed=threat_embed(score), ephemeral=True)

    @threatscore.command(name="add", description="Raise a member's threat score")
    async def add(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1, 10] = 1,
        reason: Optional[str] = None,
    ) -> None:
        assert interaction.guild is not None
        score = await self.store.increment(interaction.guild.id, member.id, int(amount), reason or f"Raised by {interaction.user}")
        await interaction.response.send_message(embed=threat_embed(score), ephemeral=True)

    @threatscore.command(name="remove", description="Lower a member's threat score")
    async def remove(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1, 10] = 1,
        reason: Optional[str] = None,
    ) -> None:
        assert interaction.guild is not None
        score = await self.store.decrement(interaction.guild.id, member.id, int(amount), reason or f"Lowered by {interaction.user}")
        await interaction.response.send_message(embed=threat_embed(score), ephemeral=True)

    @threatscore.command(name="reset", description="Reset a member's threat score to zero")
    async def reset(self, interaction: discord.Interaction, member: discord.Member) -> None:
        assert interaction.guild is not None
        score = await self.store.reset(interaction.guild.id, member.id, f"Reset by {interaction.user}")
        await interaction.response.send_message(embed=threat_embed(score), ephemeral=True)

    @threatscore.command(name="list", description="Highest threat scores in the server")
    async def list_scores(self, interaction: discord.Interaction, high_risk_only: bool = False) -> None:
        assert interaction.guild is not None
        if high_risk_only:
            scores = await self.store.high_risk(interaction.guild.id)
        else:
            scores = await self.store.list_guild(interaction.guild.id, limit=20)
        if not scores:
            await interaction.response.send_message(embed=info_embed("Threat scores", "No scores recorded."), ephemeral=True)
            return
        lines = [f"**{s.score}** <@{s.user_id}> {s.reason or ''}".rstrip() for s in scores[:20]]
        await interaction.response.send_message(embed=info_embed("Threat scores", "\n".join(lines)), ephemeral=True)

    @threatscore.command(name="stats", description="Threat score distribution")
    async def stats(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        data = await self.store.stats(interaction.guild.id)
        await interaction.response.send_message(embed=stats_embed("Threat score statistics", data), ephemeral=True)

    @threatscore.command(name="cleanup", description="Remove zero scores idle for N days")
    async def cleanup(self, interaction: discord.Interaction, days_old: app_commands.Range[int, 1, 365] = 30) -> None:
        assert interaction.guild is not None
        removed = await self.store.cleanup_old(interaction.guild.id, int(days_old))
        await interaction.response.send_message(embed=info_embed("Threat scores", f"Removed {removed} idle record(s)."), ephemeral=True)
