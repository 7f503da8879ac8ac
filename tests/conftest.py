from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio

from warden.database import initialize_database
from warden.enforcement.engine import EnforcementEngine
from warden.enforcement.models import Event
from warden.services.appeals_store import AppealsStore
from warden.services.cases_store import CasesStore
from warden.services.guild_config_store import GuildConfigStore
from warden.services.threat_store import ThreatScoreStore
from warden.services.warnings_store import WarningsStore
from warden.testing.fakes import FakeExecutor, FakeModLog

GUILD_ID = 111122223333
USER_ID = 4242
MOD_ID = 7777
BOT_ID = 9999


@pytest.fixture
def sqlite_path(tmp_path) -> str:
    return str(tmp_path / "warden.sqlite3")


@pytest_asyncio.fixture
async def stores(sqlite_path):
    ns = SimpleNamespace(
        configs=GuildConfigStore(sqlite_path),
        warnings=WarningsStore(sqlite_path),
        cases=CasesStore(sqlite_path),
        appeals=AppealsStore(sqlite_path),
        threat=ThreatScoreStore(sqlite_path),
    )
    await initialize_database(sqlite_path, [ns.configs, ns.warnings, ns.cases, ns.appeals, ns.threat])
    return ns


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def modlog() -> FakeModLog:
    return FakeModLog()


@pytest.fixture
def engine(stores, executor, modlog) -> EnforcementEngine:
    return EnforcementEngine(
        configs=stores.configs,
        warnings=stores.warnings,
        cases=stores.cases,
        appeals=stores.appeals,
        executor=executor,
        modlog=modlog,
        issuer_id=lambda: BOT_ID,
        action_timeout_seconds=1.0,
    )


class EventFactory:
    """Builds message events with increasing ids and controllable timestamps."""

    def __init__(self) -> None:
        self._next_id = 1000
        self.base = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(
        self,
        content: str,
        *,
        at: float = 0.0,
        user_id: int = USER_ID,
        guild_id: int = GUILD_ID,
        channel_id: int = 555,
        is_bot: bool = False,
        role_ids: tuple[int, ...] = (),
    ) -> Event:
        self._next_id += 1
        return Event(
            community_id=guild_id,
            author_id=user_id,
            content=content,
            channel_id=channel_id,
            created_at=datetime.fromtimestamp(self.base.timestamp() + at, tz=timezone.utc),
            message_id=self._next_id,
            author_is_bot=is_bot,
            author_role_ids=role_ids,
        )


@pytest.fixture
def make_event() -> EventFactory:
    return EventFactory()
