from __future__ import annotations

import pytest

from warden.enforcement.engine import EnforcementEngine
from warden.enforcement.models import ActionKind, CaseType
from warden.errors import PersistenceFailure
from warden.services.cases_store import CasesStore
from warden.testing.fakes import FakeExecutor, FakeModLog
from tests.conftest import BOT_ID, GUILD_ID, MOD_ID, USER_ID


def _engine(stores, executor=None, modlog=None, cases=None, **kwargs) -> EnforcementEngine:
    return EnforcementEngine(
        configs=stores.configs,
        warnings=stores.warnings,
        cases=cases or stores.cases,
        appeals=stores.appeals,
        executor=executor or FakeExecutor(),
        modlog=modlog or FakeModLog(),
        issuer_id=lambda: BOT_ID,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_burst_of_messages_warns_on_the_sixth(engine, executor, modlog, make_event) -> None:
    outcomes = [await engine.process_event(make_event("hello there", at=i)) for i in range(6)]
    assert outcomes[:5] == [None] * 5

    last = outcomes[5]
    assert [r.filter_name for r in last.triggered] == ["spam"]
    assert last.warning_count == 1
    assert last.decision.action is ActionKind.WARN
    assert last.case.type is CaseType.WARN
    assert last.case.automated is True
    assert last.case.issuer_id == BOT_ID
    assert "timeout" not in executor.actions()
    assert executor.actions() == ["delete_message", "dm"]
    assert len(modlog.entries) == 1


@pytest.mark.asyncio
async def test_repeated_insults_escalate_to_timeout(engine, executor, make_event) -> None:
    outcomes = [await engine.process_event(make_event("you are an idiot", at=i * 15)) for i in range(3)]
    assert [o.warning_count for o in outcomes] == [1, 2, 3]
    assert [o.decision.action for o in outcomes] == [ActionKind.WARN, ActionKind.WARN, ActionKind.TIMEOUT]

    third = outcomes[2]
    assert third.decision.duration_seconds == 3600
    assert third.case.type is CaseType.TIMEOUT
    assert third.case.duration_seconds == 3600
    assert third.case.reason == "toxicity"
    assert third.action_applied is True

    timeouts = executor.calls_for("timeout")
    assert len(timeouts) == 1
    assert timeouts[0]["duration_seconds"] == 3600
    assert timeouts[0]["reason"] == f"AutoMod: toxicity | Case: {third.case.case_id}"
    assert engine.stats.timeouts_applied == 1

    notice = executor.calls_for("dm")[-1]["notice"]
    assert notice.case_id == third.case.case_id
    assert notice.duration_seconds == 3600


@pytest.mark.asyncio
async def test_clean_message_leaves_no_trace(engine, executor, modlog, make_event) -> None:
    assert await engine.process_event(make_event("lovely weather today")) is None
    assert await engine.get_warning_count(USER_ID, GUILD_ID) == 0
    assert await engine.get_user_cases(USER_ID, GUILD_ID) == []
    assert executor.calls == []
    assert modlog.entries == []


@pytest.mark.asyncio
async def test_bots_are_ignored(engine, executor, make_event) -> None:
    assert await engine.process_event(make_event("you are an idiot", is_bot=True)) is None
    assert executor.calls == []
    assert engine.stats.events_skipped == 1


@pytest.mark.asyncio
async def test_exempt_channel_and_role_are_skipped(engine, stores, executor, make_event) -> None:
    await stores.configs.update(GUILD_ID, updated_by_user_id=MOD_ID, exempt_channel_ids=(555,), exempt_role_ids=(31,))
    assert await engine.process_event(make_event("you are an idiot", channel_id=555)) is None
    assert await engine.process_event(make_event("you are an idiot", channel_id=556, role_ids=(31,))) is None
    assert await engine.process_event(make_event("you are an idiot", channel_id=556)) is not None
    assert await engine.get_warning_count(USER_ID, GUILD_ID) == 1


@pytest.mark.asyncio
async def test_disabled_automod_is_a_no_op(engine, stores, executor, make_event) -> None:
    await stores.configs.update(GUILD_ID, updated_by_user_id=MOD_ID, automod_enabled=False)
    assert await engine.process_event(make_event("you are an idiot")) is None
    assert executor.calls == []


@pytest.mark.asyncio
async def test_reason_lists_filters_by_severity(engine, modlog, make_event) -> None:
    outcome = await engine.process_event(make_event("idiot https://spam.example"))
    assert outcome.case.reason == "toxicity, links"
    entry = modlog.entries[-1][2]
    assert entry.violations == [("toxicity", 7), ("links", 3)]


@pytest.mark.asyncio
async def test_failed_timeout_keeps_case_and_records_failure(stores, make_event) -> None:
    executor = FakeExecutor(fail={"timeout"})
    engine = _engine(stores, executor)
    await stores.configs.update(GUILD_ID, updated_by_user_id=MOD_ID, warn_threshold=1)

    outcome = await engine.process_event(make_event("you are an idiot"))
    assert outcome.decision.action is ActionKind.TIMEOUT
    assert outcome.action_applied is False
    assert outcome.errors == ["timeout: Forbidden: Missing Permissions"]

    stored = await engine.get_case_by_id(outcome.case.case_id, GUILD_ID)
    assert stored is not None
    assert stored.notes[-1].content.startswith("Action failed")
    assert engine.stats.actions_failed == 1
    assert "dm" in executor.actions()


@pytest.mark.asyncio
async def test_hanging_delete_times_out_without_blocking(stores, make_event) -> None:
    executor = FakeExecutor(hang={"delete_message"})
    engine = _engine(stores, executor, action_timeout_seconds=0.05)

    outcome = await engine.process_event(make_event("you are an idiot"))
    assert outcome is not None
    assert outcome.errors == ["delete_message: timed out"]
    assert outcome.action_applied is True
    assert engine.stats.messages_deleted == 0


class _BrokenCases(CasesStore):
    async def insert(self, case) -> None:
        raise PersistenceFailure("disk full")


@pytest.mark.asyncio
async def test_case_persistence_failure_takes_no_action(stores, sqlite_path, make_event) -> None:
    executor, modlog = FakeExecutor(), FakeModLog()
    engine = _engine(stores, executor, modlog, cases=_BrokenCases(sqlite_path))

    assert await engine.process_event(make_event("you are an idiot")) is None
    assert "dm" not in executor.actions()
    assert modlog.entries == []
    assert engine.stats.persistence_failures == 1


@pytest.mark.asyncio
async def test_modlog_failure_is_tolerated(stores, make_event) -> None:
    modlog = FakeModLog(fail=True)
    engine = _engine(stores, modlog=modlog)
    outcome = await engine.process_event(make_event("you are an idiot"))
    assert outcome is not None
    assert len(modlog.entries) == 1


@pytest.mark.asyncio
async def test_dm_skipped_when_notifications_off(engine, stores, executor, modlog, make_event) -> None:
    await stores.configs.update(GUILD_ID, updated_by_user_id=MOD_ID, dm_notify=False, modlog_channel_id=888)
    await engine.process_event(make_event("you are an idiot"))
    assert "dm" not in executor.actions()
    assert modlog.entries[-1][1] == 888


@pytest.mark.asyncio
async def test_record_event_then_drain(engine, make_event) -> None:
    for i in range(3):
        engine.record_event(make_event("you are an idiot", at=i * 15))
    await engine.drain()
    assert engine.orchestrator.pending == 0
    assert await engine.get_warning_count(USER_ID, GUILD_ID) == 3
    cases = await engine.get_user_cases(USER_ID, GUILD_ID)
    assert sorted(c.type.value for c in cases) == ["timeout", "warn", "warn"]
