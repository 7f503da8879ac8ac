from __future__ import annotations

import logging
from typing import Any

import discord

from .constants import COLORS, MAX_EMBED_DESCRIPTION, MAX_EMBED_TITLE, MAX_FIELD_VALUE

log = logging.getLogger("warden.utils")


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def safe_embed(title: str, description: str = "", color: int = COLORS["default"]) -> discord.Embed:
    """Create an embed with safe length limits."""
    return discord.Embed(
        title=truncate(title, MAX_EMBED_TITLE),
        description=truncate(description, MAX_EMBED_DESCRIPTION),
        color=color,
    )


def add_field(embed: discord.Embed, name: str, value: Any, *, inline: bool = True) -> discord.Embed:
    text = str(value) if value not in (None, "") else "-"
    return embed.add_field(name=name, value=truncate(text, MAX_FIELD_VALUE), inline=inline)


def format_duration(seconds: int | None) -> str:
    if not seconds:
        return "-"
    minutes = round(seconds / 60)
    if minutes < 60:
        return f"{minutes} minutes"
    hours, rem = divmod(minutes, 60)
    return f"{hours}h {rem}m" if rem else f"{hours}h"


def error_embed(message: str) -> discord.Embed:
    return safe_embed("Error", message, COLORS["error"])


def success_embed(message: str) -> discord.Embed:
    return safe_embed("Success", message, COLORS["success"])


def info_embed(title: str, message: str = "") -> discord.Embed:
    return safe_embed(title, message, COLORS["info"])


async def safe_response(
    interaction: discord.Interaction,
    content: str | None = None,
    embed: discord.Embed | None = None,
    ephemeral: bool = True,
) -> bool:
    """Respond or follow up, whichever the interaction still allows."""
    try:
        if interaction.response.is_done():
            await interaction.followup.send(content=content, embed=embed, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(content=content, embed=embed, ephemeral=ephemeral)
        return True
    except discord.HTTPException as e:
        log.error("Failed to send response: %s", e)
        return False
