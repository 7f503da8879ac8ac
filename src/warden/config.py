from __future__ import annotations

import os
from dataclasses import dataclass


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


@dataclass(frozen=True)
class Settings:
    token: str
    sqlite_path: str
    log_level: str
    cache_default_ttl_seconds: int
    sync_guild_id: int
    # Bound on every platform call (delete, timeout, ban, DM, modlog post).
    action_timeout_seconds: int
    # Defaults for communities that never saved an automod config.
    default_warn_threshold: int
    default_decay_window_seconds: int
    excerpt_length: int
    # Content filters cannot see message text without this intent.
    message_content_intent: bool = True


def load_settings() -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    return Settings(
        token=token,
        sqlite_path=_get_str("SQLITE_PATH", "warden.sqlite3"),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        cache_default_ttl_seconds=_get_int("CACHE_DEFAULT_TTL_SECONDS", 120),
        sync_guild_id=_get_int("SYNC_GUILD_ID", 0),
        action_timeout_seconds=_get_int("ACTION_TIMEOUT_SECONDS", 10),
        default_warn_threshold=_get_int("DEFAULT_WARN_THRESHOLD", 3),
        default_decay_window_seconds=_get_int("DEFAULT_DECAY_WINDOW_SECONDS", 24 * 60 * 60),
        excerpt_length=_get_int("EXCERPT_LENGTH", 100),
        message_content_intent=_get_bool("MESSAGE_CONTENT_INTENT", True),
    )
