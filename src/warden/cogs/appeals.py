from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..embeds import appeal_embed, stats_embed
from ..enforcement.models import AppealStatus
from ..errors import ValidationError
from ..utils import info_embed, success_embed

log = logging.getLogger("warden.cog.appeals")

_REVIEW = app_commands.checks.has_permissions(moderate_members=True)


def _resolve_guild_id(interaction: discord.Interaction, server_id: Optional[str]) -> int:
    # Banned users can no longer run commands in the server, so DMs carry the id.
    if interaction.guild is not None:
        return interaction.guild.id
    if not server_id or not server_id.strip().isdigit():
        raise ValidationError("Run this in the server, or pass server_id when appealing from DMs.")
    return int(server_id.strip())


class AppealsCog(commands.Cog):
    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]

    @property
    def engine(self):
        return self.bot.engine  # type: ignore[attr-defined]

    appeal = app_commands.Group(name="appeal", description="Contest a moderation case")

    @appeal.command(name="submit", description="Appeal one of your cases")
    @app_commands.describe(
        case_id="Case ID from the moderation notice",
        reason="Why the case should be reconsidered",
        evidence="Links or context supporting the appeal",
        contact="How reviewers can reach you",
        server_id="Only needed when appealing from DMs",
    )
    async def submit(
        self,
        interaction: discord.Interaction,
        case_id: str,
        reason: app_commands.Range[str, 10, 1000],
        evidence: Optional[str] = None,
        contact: Optional[str] = None,
        server_id: Optional[str] = None,
    ) -> None:
        guild_id = _resolve_guild_id(interaction, server_id)
        await interaction.response.defer(ephemeral=True)
        appeal = await self.engine.appeal_case(
            case_id.strip().upper(),
            guild_id,
            interaction.user.id,
            str(reason),
            evidence=evidence,
            contact=contact,
        )
        await interaction.followup.send(
            content="Your appeal was submitted and will be reviewed by the moderators.",
            embed=appeal_embed(appeal),
            ephemeral=True,
        )

    @appeal.command(name="status", description="Check the status of an appeal")
    async def status(self, interaction: discord.Interaction, case_id: str, server_id: Optional[str] = None) -> None:
        guild_id = _resolve_guild_id(interaction, server_id)
        appeal = await self.engine.get_appeal(case_id.strip().upper())
        if appeal is None or appeal.guild_id != guild_id:
            await interaction.response.send_message(embed=info_embed("No appeal", f"No appeal found for case {case_id}."), ephemeral=True)
            return
        is_reviewer = isinstance(interaction.user, discord.Member) and interaction.user.guild_permissions.moderate_members
        if appeal.user_id != interaction.user.id and not is_reviewer:
            raise ValidationError("You can only view your own appeals.")
        await interaction.response.send_message(embed=appeal_embed(appeal), ephemeral=True)

    @appeal.command(name="approve", description="Approve a pending appeal and lift the sanction")
    @app_commands.guild_only()
    @_REVIEW
    async def approve(self, interaction: discord.Interaction, case_id: str, note: Optional[str] = None) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)
        appeal = await self.engine.review_appeal(case_id.strip().upper(), interaction.guild.id, interaction.user.id, approve=True, note=note)
        await interaction.followup.send(embed=appeal_embed(appeal), ephemeral=True)

    @appeal.command(name="deny", description="Deny a pending appeal")
    @app_commands.guild_only()
    @_REVIEW
    async def deny(self, interaction: discord.Interaction, case_id: str, note: Optional[str] = None) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)
        appeal = await self.engine.review_appeal(case_id.strip().upper(), interaction.guild.id, interaction.user.id, approve=False, note=note)
        await interaction.followup.send(embed=appeal_embed(appeal), ephemeral=True)

    @appeal.command(name="reopen", description="Send a decided appeal back to pending")
    @app_commands.guild_only()
    @_REVIEW
    async def reopen(self, interaction: discord.Interaction, case_id: str, note: Optional[str] = None) -> None:
        assert interaction.guild is not None
        appeal = await self.engine.reopen_appeal(case_id.strip().upper(), interaction.guild.id, interaction.user.id, note)
        await interaction.response.send_message(
            content=f"Appeal for case **{appeal.case_id}** is pending again.",
            embed=appeal_embed(appeal),
            ephemeral=True,
        )

    @appeal.command(name="pending", description="List appeals waiting for review")
    @app_commands.guild_only()
    @_REVIEW
    async def pending(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        appeals = await self.engine.list_appeals(interaction.guild.id, AppealStatus.PENDING, 20)
        if not appeals:
            await interaction.response.send_message(embed=success_embed("No pending appeals."), ephemeral=True)
            return
        e = info_embed("Pending appeals", "\n".join(f"`{a.case_id}` <@{a.user_id}>: {a.reason[:80]}" for a in appeals))
        await interaction.response.send_message(embed=e, ephemeral=True)

    @appeal.command(name="stats", description="Appeal statistics for this server")
    @app_commands.guild_only()
    @_REVIEW
    async def stats(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        data = await self.engine.get_appeal_stats(interaction.guild.id)
        await interaction.response.send_message(embed=stats_embed("Appeal statistics", data), ephemeral=True)
