from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from .constants import ERROR_MESSAGES
from .errors import PersistenceFailure, WardenError
from .utils import error_embed, safe_response

log = logging.getLogger("warden.error_handlers")


def describe_error(error: BaseException) -> str:
    """User-facing text for an error raised by a command."""
    if isinstance(error, PersistenceFailure):
        return ERROR_MESSAGES["persistence"]
    if isinstance(error, WardenError):
        return str(error)
    if isinstance(error, app_commands.MissingPermissions):
        return ERROR_MESSAGES["missing_permissions"]
    if isinstance(error, app_commands.NoPrivateMessage):
        return ERROR_MESSAGES["no_guild"]
    if isinstance(error, app_commands.CommandOnCooldown):
        return f"This command is on cooldown. Try again in {error.retry_after:.1f}s"
    if isinstance(error, app_commands.BotMissingPermissions):
        return "The bot lacks required permissions to run this command."
    return ERROR_MESSAGES["unexpected"]


class ErrorHandler:
    """Maps app command failures to ephemeral error embeds."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        original = error.original if isinstance(error, app_commands.CommandInvokeError) else error
        if isinstance(original, WardenError) and not isinstance(original, PersistenceFailure):
            log.info("Command %s rejected: %s", getattr(interaction.command, "qualified_name", "?"), original)
        elif not isinstance(original, app_commands.AppCommandError):
            log.exception(
                "Unexpected error in app command %s",
                getattr(interaction.command, "qualified_name", "?"),
                exc_info=original,
            )
        await safe_response(interaction, embed=error_embed(describe_error(original)), ephemeral=True)


async def setup_error_handlers(bot: commands.Bot) -> None:
    handler = ErrorHandler(bot)
    bot.tree.on_error = handler.on_app_command_error  # type: ignore[method-assign]
