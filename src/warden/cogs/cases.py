from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..embeds import case_embed, case_list_embed, stats_embed
from ..enforcement.models import CaseInput, CaseStatus, CaseType
from ..errors import CaseNotFound
from ..utils import success_embed

log = logging.getLogger("warden.cog.cases")

_TYPE_CHOICES = [app_commands.Choice(name=t.value, value=t.value) for t in CaseType]
_STATUS_CHOICES = [app_commands.Choice(name=s.value, value=s.value) for s in CaseStatus]


class CasesCog(commands.Cog):
    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot  # type: ignore[assignment]

    @property
    def engine(self):
        return self.bot.engine  # type: ignore[attr-defined]

    case = app_commands.Group(
        name="case",
        description="Moderation case ledger",
        guild_only=True,
        default_permissions=discord.Permissions(moderate_members=True),
    )

    @case.command(name="view", description="Show a case with its notes")
    async def view(self, interaction: discord.Interaction, case_id: str) -> None:
        assert interaction.guild is not None
        case = await self.engine.get_case_by_id(case_id.strip().upper(), interaction.guild.id)
        if case is None:
            raise CaseNotFound(case_id)
        await interaction.response.send_message(embed=case_embed(case), ephemeral=True)

    @case.command(name="create", description="Record a manual case")
    @app_commands.choices(case_type=_TYPE_CHOICES)
    async def create(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        case_type: app_commands.Choice[str],
        reason: str,
        duration_minutes: Optional[app_commands.Range[int, 1, 40320]] = None,
        appealable: bool = True,
    ) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)
        case = await self.engine.create_case(
            CaseInput(
                type=CaseType(case_type.value),
                subject_user_id=member.id,
                issuer_id=interaction.user.id,
                guild_id=interaction.guild.id,
                reason=reason,
                appealable=appealable,
                duration_seconds=int(duration_minutes) * 60 if duration_minutes else None,
                channel_id=interaction.channel_id,
            )
        )
        await interaction.followup.send(content=f"Case **{case.case_id}** created.", embed=case_embed(case), ephemeral=True)

    @case.command(name="note", description="Append a note to a case")
    async def note(self, interaction: discord.Interaction, case_id: str, content: str) -> None:
        assert interaction.guild is not None
        case = await self.engine.add_case_note(case_id.strip().upper(), content, interaction.user.id, guild_id=interaction.guild.id)
        await interaction.response.send_message(embed=case_embed(case), ephemeral=True)

    @case.command(name="close", description="Close an active case")
    async def close(self, interaction: discord.Interaction, case_id: str, reason: Optional[str] = None) -> None:
        assert interaction.guild is not None
        case = await self.engine.close_case(case_id.strip().upper(), interaction.user.id, guild_id=interaction.guild.id, reason=reason)
        await interaction.response.send_message(embed=success_embed(f"Case **{case.case_id}** closed."), ephemeral=True)

    @case.command(name="list", description="List a member's cases, or the most recent cases in the server")
    @app_commands.choices(case_type=_TYPE_CHOICES, status=_STATUS_CHOICES)
    async def list_cases(
        self,
        interaction: discord.Interaction,
        member: Optional[discord.Member] = None,
        case_type: Optional[app_commands.Choice[str]] = None,
        status: Optional[app_commands.Choice[str]] = None,
        page: app_commands.Range[int, 1, 100] = 1,
    ) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)
        if member is not None:
            cases = await self.engine.get_user_cases(
                member.id,
                interaction.guild.id,
                CaseType(case_type.value) if case_type else None,
                CaseStatus(status.value) if status else None,
            )
            title = f"Cases: {member}"
        else:
            cases = await self.engine.get_guild_cases(interaction.guild.id, limit=20, offset=(int(page) - 1) * 20)
            if case_type:
                cases = [c for c in cases if c.type.value == case_type.value]
            if status:
                cases = [c for c in cases if c.status.value == status.value]
            title = f"Recent cases (page {page})"
        await interaction.followup.send(embed=case_list_embed(title, cases), ephemeral=True)

    @case.command(name="issued", description="List cases issued by a moderator")
    async def issued(self, interaction: discord.Interaction, moderator: discord.Member) -> None:
        assert interaction.guild is not None
        cases = await self.engine.get_issuer_cases(moderator.id, interaction.guild.id)
        await interaction.response.send_message(embed=case_list_embed(f"Issued by {moderator}", cases), ephemeral=True)

    @case.command(name="stats", description="Case statistics for this server")
    async def stats(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        data = await self.engine.get_case_stats(interaction.guild.id)
        await interaction.response.send_message(embed=stats_embed("Case statistics", data), ephemeral=True)

    @case.command(name="purge", description="Delete closed or decided cases older than N days")
    @app_commands.checks.has_permissions(administrator=True)
    async def purge(self, interaction: discord.Interaction, older_than_days: app_commands.Range[int, 1, 3650]) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)
        removed = await self.engine.purge_cases(interaction.guild.id, int(older_than_days))
        log.info("Purge by %s removed %d cases in guild=%s", interaction.user.id, removed, interaction.guild.id)
        await interaction.followup.send(embed=success_embed(f"Purged {removed} case(s)."), ephemeral=True)
