from __future__ import annotations

from typing import Final

# Discord limits
MAX_EMBED_DESCRIPTION: Final[int] = 4096
MAX_EMBED_TITLE: Final[int] = 256
MAX_FIELD_VALUE: Final[int] = 1024
MAX_FIELDS_PER_EMBED: Final[int] = 25

CACHE_TTL_SECONDS: Final[int] = 120

COLORS = {
    "default": 0x5865F2,
    "success": 0x57F287,
    "warning": 0xF1C40F,
    "error": 0xED4245,
    "info": 0x3498DB,
}

# Embed colors per enforcement / appeal outcome.
ACTION_COLORS = {
    "warn": 0xFFFF00,
    "timeout": 0xFF6600,
    "kick": 0xFF6600,
    "ban": 0xFF0000,
    "approved": 0x00FF00,
    "denied": 0xFF0000,
    "pending": 0xFFFF00,
}

ERROR_MESSAGES = {
    "missing_permissions": "You don't have permission to use this command.",
    "no_guild": "This command can only be used in a server.",
    "persistence": "A database error occurred. Please try again later.",
    "unexpected": "Something went wrong while running this command.",
}
