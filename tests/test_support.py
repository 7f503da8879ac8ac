from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from warden.cogs.automod import event_from_message
from warden.config import load_settings
from warden.embeds import modlog_embed
from warden.enforcement.locks import KeyedLock
from warden.enforcement.models import ActionKind, ModLogEntry
from warden.enforcement.orchestrator import excerpt
from warden.services.cache import TTLCache
from warden.utils import format_duration, truncate


def test_settings_require_token(monkeypatch) -> None:
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(RuntimeError):
        load_settings()


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "abc")
    monkeypatch.setenv("DEFAULT_WARN_THRESHOLD", "5")
    monkeypatch.setenv("ACTION_TIMEOUT_SECONDS", "not a number")
    monkeypatch.setenv("MESSAGE_CONTENT_INTENT", "off")
    settings = load_settings()
    assert settings.token == "abc"
    assert settings.default_warn_threshold == 5
    assert settings.action_timeout_seconds == 10
    assert settings.message_content_intent is False


def test_ttl_cache_expires() -> None:
    now = [0.0]
    cache: TTLCache[int, str] = TTLCache(10, clock=lambda: now[0])
    cache.set(1, "a")
    now[0] = 10.0
    assert cache.get(1) == "a"
    now[0] = 10.5
    assert cache.get(1) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_keyed_lock_serializes_per_key_and_cleans_up() -> None:
    locks: KeyedLock[str] = KeyedLock()
    order: list[str] = []

    async def worker(key: str, tag: str) -> None:
        async with locks.hold(key):
            order.append(f"{tag}-in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-out")

    await asyncio.gather(worker("a", "1"), worker("a", "2"))
    assert order == ["1-in", "1-out", "2-in", "2-out"]
    assert len(locks) == 0


def test_format_duration() -> None:
    assert format_duration(None) == "-"
    assert format_duration(1800) == "30 minutes"
    assert format_duration(3600) == "1h"
    assert format_duration(5400) == "1h 30m"


def test_truncate_and_excerpt() -> None:
    assert truncate("abcdef", 5) == "ab..."
    assert excerpt("") == "*No content*"
    assert excerpt("x" * 120) == "x" * 100 + "..."
    assert excerpt("short", 10) == "short"


def test_event_from_message() -> None:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    message = SimpleNamespace(
        guild=SimpleNamespace(id=1),
        author=SimpleNamespace(id=2, bot=False, roles=[SimpleNamespace(id=10), SimpleNamespace(id=11)]),
        channel=SimpleNamespace(id=3),
        content="hi",
        created_at=created,
        id=4,
    )
    event = event_from_message(message)
    assert (event.community_id, event.author_id, event.channel_id, event.message_id) == (1, 2, 3, 4)
    assert event.author_role_ids == (10, 11)
    assert event.created_at == created


def test_modlog_embed_lists_violations_and_failures() -> None:
    entry = ModLogEntry(
        guild_id=1,
        user_id=2,
        channel_id=3,
        action=ActionKind.TIMEOUT,
        case_id="3333-ABC-DEFG",
        warning_count=3,
        violations=[("toxicity", 7), ("links", 3)],
        excerpt="you are an idiot",
        duration_seconds=3600,
        errors=["timeout: Forbidden"],
    )
    fields = {f.name: f.value for f in modlog_embed(entry).fields}
    assert fields["Action"] == "Timeout"
    assert fields["Violations"] == "**toxicity** (7/10)\n**links** (3/10)"
    assert fields["Duration"] == "1h"
    assert fields["Failures"] == "timeout: Forbidden"
