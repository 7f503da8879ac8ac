from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands

from .config import Settings
from .constants import CACHE_TTL_SECONDS
from .database import initialize_database
from .enforcement.discord_adapters import DiscordActionExecutor, DiscordModLog
from .enforcement.engine import EnforcementEngine
from .error_handlers import setup_error_handlers
from .services.appeals_store import AppealsStore
from .services.cases_store import CasesStore
from .services.guild_config_store import GuildConfigStore
from .services.stats import RuntimeStats
from .services.threat_store import ThreatScoreStore
from .services.warnings_store import WarningsStore

log = logging.getLogger("warden.bot")


class _CommandSyncManager:
    def __init__(self, bot: "WardenBot") -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def sync_startup(self) -> None:
        if self.bot.settings.sync_guild_id:
            await self.sync_guild(self.bot.settings.sync_guild_id)
        else:
            await self.sync_global()

    async def sync_global(self) -> None:
        async with self._lock:
            await self.bot.tree.sync()
            log.info("Commands synced globally")
            self._log_tree()

    async def sync_guild(self, guild_id: int) -> None:
        async with self._lock:
            guild = discord.Object(id=guild_id)
            self.bot.tree.copy_global_to(guild=guild)
            await self.bot.tree.sync(guild=guild)
            log.info("Commands synced to guild %d", guild_id)
            self._log_tree()

    def _log_tree(self) -> None:
        cmds = self.bot.tree.get_commands()
        log.info("Tree commands loaded: %d", len(cmds))
        for c in cmds:
            log.info(" - /%s", c.name)


class WardenBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.message_content = bool(settings.message_content_intent)
        log.info("INTENTS: guilds=%s members=%s message_content=%s", intents.guilds, intents.members, intents.message_content)

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            help_command=None,
        )

        self.settings = settings
        self.stats = RuntimeStats()

        cache_ttl = settings.cache_default_ttl_seconds or CACHE_TTL_SECONDS
        self.config_store = GuildConfigStore(
            settings.sqlite_path,
            cache_ttl,
            default_warn_threshold=settings.default_warn_threshold,
            default_decay_window_seconds=settings.default_decay_window_seconds,
        )
        self.warnings_store = WarningsStore(settings.sqlite_path, cache_ttl)
        self.cases_store = CasesStore(settings.sqlite_path, cache_ttl)
        self.appeals_store = AppealsStore(settings.sqlite_path, cache_ttl)
        self.threat_store = ThreatScoreStore(settings.sqlite_path, cache_ttl)

        self.engine = EnforcementEngine(
            configs=self.config_store,
            warnings=self.warnings_store,
            cases=self.cases_store,
            appeals=self.appeals_store,
            executor=DiscordActionExecutor(self),
            modlog=DiscordModLog(self),
            issuer_id=self._system_user_id,
            stats=self.stats,
            action_timeout_seconds=settings.action_timeout_seconds,
            excerpt_length=settings.excerpt_length,
        )
        self._sync_mgr = _CommandSyncManager(self)

    def _system_user_id(self) -> int:
        return self.user.id if self.user else 0

    async def setup_hook(self) -> None:
        await initialize_database(
            self.settings.sqlite_path,
            [self.config_store, self.warnings_store, self.cases_store, self.appeals_store, self.threat_store],
        )
        await setup_error_handlers(self)

        loaded: list[str] = []
        failed: list[str] = []

        async def _load_cog(import_path: str, class_name: str) -> None:
            try:
                mod = __import__(import_path, fromlist=[class_name])
                cls = getattr(mod, class_name)
                await self.add_cog(cls(self))
                log.info("Loaded cog: %s.%s", import_path, class_name)
                loaded.append(f"{import_path}.{class_name}")
            except Exception as e:
                log.exception("Failed to load cog: %s.%s", import_path, class_name)
                failed.append(f"{import_path}.{class_name} ({type(e).__name__})")

        await _load_cog("warden.cogs.automod", "AutomodCog")
        await _load_cog("warden.cogs.cases", "CasesCog")
        await _load_cog("warden.cogs.appeals", "AppealsCog")
        await _load_cog("warden.cogs.threatscore", "ThreatScoreCog")

        log.info("Cogs loaded: %d, failed: %d", len(loaded), len(failed))
        for f in failed:
            log.error("  failed: %s", f)

        await self._sync_mgr.sync_startup()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s) in %d guilds", self.user, self._system_user_id(), len(self.guilds))

    async def close(self) -> None:
        pending = self.engine.orchestrator.pending
        if pending:
            log.info("Draining %d in-flight enforcement events", pending)
            await self.engine.drain()
        await super().close()
