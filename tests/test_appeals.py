from __future__ import annotations

import asyncio

import aiosqlite
import pytest

from warden.enforcement.engine import EnforcementEngine
from warden.enforcement.models import AppealStatus, CaseInput, CaseStatus, CaseType
from warden.errors import (
    AlreadyAppealed,
    AlreadyReviewed,
    InvalidTransition,
    NotAppealable,
    PersistenceFailure,
    ValidationError,
)
from warden.services.appeals_store import AppealsStore
from warden.services.cases_store import CasesStore
from warden.testing.fakes import FakeExecutor, FakeModLog
from tests.conftest import GUILD_ID, MOD_ID, USER_ID


async def _case(engine, case_type=CaseType.TIMEOUT, **overrides):
    data = dict(
        type=case_type,
        subject_user_id=USER_ID,
        issuer_id=MOD_ID,
        guild_id=GUILD_ID,
        reason="toxicity",
        duration_seconds=3600 if case_type is CaseType.TIMEOUT else None,
    )
    data.update(overrides)
    return await engine.create_case(CaseInput(**data))


@pytest.mark.asyncio
async def test_submit_marks_case_appealed(engine) -> None:
    case = await _case(engine)
    appeal = await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "it was a quote", evidence="link", contact="dm me")
    assert appeal.status is AppealStatus.PENDING
    assert appeal.evidence == "link"

    stored = await engine.get_case_by_id(case.case_id, GUILD_ID)
    assert stored.status is CaseStatus.APPEALED
    assert stored.notes[-1].content == "Case appealed: it was a quote"
    assert not await engine.can_user_appeal(USER_ID, GUILD_ID, case.case_id)


@pytest.mark.asyncio
async def test_only_the_subject_may_appeal(engine) -> None:
    case = await _case(engine)
    with pytest.raises(ValidationError):
        await engine.appeal_case(case.case_id, GUILD_ID, USER_ID + 1, "not me")
    assert (await engine.get_case_by_id(case.case_id)).status is CaseStatus.ACTIVE


@pytest.mark.asyncio
async def test_submit_rejects_unappealable_and_duplicates(engine) -> None:
    locked = await _case(engine, appealable=False)
    with pytest.raises(NotAppealable):
        await engine.appeal_case(locked.case_id, GUILD_ID, USER_ID, "please")

    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "first")
    with pytest.raises(AlreadyAppealed):
        await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "second")
    assert len(await engine.list_appeals(GUILD_ID)) == 1


@pytest.mark.asyncio
async def test_deny_then_reopen_keeps_single_row(engine, executor) -> None:
    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "unfair")

    denied = await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=False, note="insufficient evidence")
    assert denied.status is AppealStatus.DENIED
    assert denied.reviewed_by == MOD_ID
    assert denied.review_note == "insufficient evidence"
    stored = await engine.get_case_by_id(case.case_id)
    assert stored.status is CaseStatus.DENIED
    assert stored.notes[-1].content == "Appeal denied: insufficient evidence"

    dm = executor.calls_for("dm")[-1]["notice"]
    assert dm.title == "Appeal Denied"
    assert dm.reason == "insufficient evidence"
    assert "untimeout" not in executor.actions()

    reopened = await engine.reopen_appeal(case.case_id, GUILD_ID, MOD_ID + 1, "new evidence")
    assert reopened.status is AppealStatus.PENDING
    assert (await engine.get_case_by_id(case.case_id)).status is CaseStatus.APPEALED

    appeals = await engine.list_appeals(GUILD_ID)
    assert [a.case_id for a in appeals] == [case.case_id]


@pytest.mark.asyncio
async def test_reopen_pending_is_invalid(engine) -> None:
    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "unfair")
    with pytest.raises(InvalidTransition):
        await engine.reopen_appeal(case.case_id, GUILD_ID, MOD_ID)


@pytest.mark.asyncio
async def test_reviewing_an_unappealed_case_fails(engine) -> None:
    case = await _case(engine)
    with pytest.raises(ValidationError):
        await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True)
    with pytest.raises(ValidationError):
        await engine.reopen_appeal(case.case_id, GUILD_ID, MOD_ID)


@pytest.mark.asyncio
async def test_second_review_is_rejected(engine) -> None:
    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "unfair")
    await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=False)
    with pytest.raises(AlreadyReviewed):
        await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True)
    assert (await engine.get_appeal(case.case_id)).status is AppealStatus.DENIED


@pytest.mark.asyncio
async def test_racing_reviewers_exactly_one_wins(engine) -> None:
    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "unfair")

    results = await asyncio.gather(
        engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True),
        engine.review_appeal(case.case_id, GUILD_ID, MOD_ID + 1, approve=False),
        return_exceptions=True,
    )
    losers = [r for r in results if isinstance(r, AlreadyReviewed)]
    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(losers) == 1
    assert len(winners) == 1

    final = await engine.get_appeal(case.case_id)
    assert final.status is winners[0].status
    assert (await engine.get_case_by_id(case.case_id)).status.value == final.status.value


@pytest.mark.asyncio
async def test_approving_a_ban_lifts_it_and_records_reversal(engine, executor) -> None:
    case = await _case(engine, CaseType.BAN)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "wrong person")
    approved = await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True)
    assert approved.status is AppealStatus.APPROVED

    assert executor.calls_for("unban") == [
        {"guild_id": GUILD_ID, "user_id": USER_ID, "reason": f"Appeal approved for case {case.case_id}"}
    ]
    reversals = await engine.get_user_cases(USER_ID, GUILD_ID, CaseType.UNBAN)
    assert len(reversals) == 1
    assert reversals[0].appealable is False
    assert reversals[0].issuer_id == MOD_ID
    assert executor.calls_for("dm")[-1]["notice"].title == "Appeal Approved"


@pytest.mark.asyncio
async def test_approval_survives_a_failed_unban(stores, modlog) -> None:
    executor = FakeExecutor(fail={"unban", "dm"})
    engine = EnforcementEngine(
        configs=stores.configs,
        warnings=stores.warnings,
        cases=stores.cases,
        appeals=stores.appeals,
        executor=executor,
        modlog=modlog,
        issuer_id=lambda: 1,
    )
    case = await _case(engine, CaseType.BAN)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "wrong person")
    approved = await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True)
    assert approved.status is AppealStatus.APPROVED
    assert (await engine.get_case_by_id(case.case_id)).status is CaseStatus.APPROVED
    assert len(await engine.get_user_cases(USER_ID, GUILD_ID, CaseType.UNBAN)) == 1


@pytest.mark.asyncio
async def test_approving_a_warn_has_no_reversal(engine, executor) -> None:
    case = await _case(engine, CaseType.WARN)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "misread")
    await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True)
    assert executor.actions() == ["dm"]
    assert len(await engine.get_user_cases(USER_ID, GUILD_ID)) == 1


@pytest.mark.asyncio
async def test_no_decision_dm_when_notifications_disabled(engine, stores, executor) -> None:
    await stores.configs.update(GUILD_ID, updated_by_user_id=MOD_ID, dm_notify=False)
    case = await _case(engine, CaseType.WARN)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "misread")
    await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=False)
    assert executor.calls_for("dm") == []


@pytest.mark.asyncio
async def test_appeal_stats(engine) -> None:
    a = await _case(engine)
    b = await _case(engine)
    await engine.appeal_case(a.case_id, GUILD_ID, USER_ID, "one")
    await engine.appeal_case(b.case_id, GUILD_ID, USER_ID, "two")
    await engine.review_appeal(a.case_id, GUILD_ID, MOD_ID, approve=False)

    stats = await engine.get_appeal_stats(GUILD_ID)
    assert stats["total"] == 2
    assert stats["by_status"] == {"pending": 1, "denied": 1}
    pending = await engine.list_appeals(GUILD_ID, AppealStatus.PENDING)
    assert [p.case_id for p in pending] == [b.case_id]


def _engine(stores, *, cases=None, appeals=None, executor=None, modlog=None, **kwargs) -> EnforcementEngine:
    return EnforcementEngine(
        configs=stores.configs,
        warnings=stores.warnings,
        cases=cases or stores.cases,
        appeals=appeals or stores.appeals,
        executor=executor or FakeExecutor(),
        modlog=modlog or FakeModLog(),
        issuer_id=lambda: 1,
        **kwargs,
    )


class _BrokenAppeals(AppealsStore):
    async def insert(self, appeal) -> None:
        raise PersistenceFailure("disk full")


class _StuckCases(CasesStore):
    async def set_status(self, case_id, expected, new, updated_at_iso, *, note=None) -> bool:
        raise PersistenceFailure("database is locked")


class _SlowModLog(FakeModLog):
    async def send_appeal(self, guild_id, channel_id, appeal, case) -> None:
        await asyncio.sleep(5)


@pytest.mark.asyncio
async def test_failed_appeal_insert_returns_case_to_active(stores, sqlite_path) -> None:
    modlog = FakeModLog()
    engine = _engine(stores, appeals=_BrokenAppeals(sqlite_path), modlog=modlog)
    case = await _case(engine)

    with pytest.raises(PersistenceFailure):
        await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "it was a quote")

    stored = await engine.get_case_by_id(case.case_id, GUILD_ID)
    assert stored.status is CaseStatus.ACTIVE
    assert stored.appealed is False
    assert stored.appeal_reason is None
    assert stored.notes[-1].content == "Appeal withdrawn: appeal could not be stored"
    assert await engine.get_appeal(case.case_id) is None
    assert modlog.appeals == []

    # The user can try again once the store recovers.
    healthy = _engine(stores)
    appeal = await healthy.appeal_case(case.case_id, GUILD_ID, USER_ID, "it was a quote")
    assert appeal.status is AppealStatus.PENDING
    assert (await healthy.get_case_by_id(case.case_id)).status is CaseStatus.APPEALED


@pytest.mark.asyncio
async def test_failed_case_write_restores_pending_appeal(stores, sqlite_path) -> None:
    executor = FakeExecutor()
    engine = _engine(stores, cases=_StuckCases(sqlite_path), executor=executor)
    case = await _case(engine, CaseType.BAN)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "wrong person")

    with pytest.raises(PersistenceFailure):
        await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=True, note="ok")

    appeal = await engine.get_appeal(case.case_id)
    assert appeal.status is AppealStatus.PENDING
    assert appeal.reviewed_by is None
    assert appeal.review_note is None
    assert (await engine.get_case_by_id(case.case_id)).status is CaseStatus.APPEALED
    assert executor.calls_for("unban") == []
    assert executor.calls_for("dm") == []


@pytest.mark.asyncio
async def test_review_refuses_a_case_moved_elsewhere(engine, sqlite_path) -> None:
    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "unfair")
    async with aiosqlite.connect(sqlite_path) as db:
        await db.execute("UPDATE cases SET status = 'closed' WHERE case_id = ?", (case.case_id,))
        await db.commit()

    with pytest.raises(InvalidTransition):
        await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=False)
    assert (await engine.get_appeal(case.case_id)).status is AppealStatus.PENDING


@pytest.mark.asyncio
async def test_plain_status_updates_cannot_decide_an_appeal(engine) -> None:
    case = await _case(engine)
    await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "unfair")

    for status in (CaseStatus.APPROVED, CaseStatus.DENIED, CaseStatus.CLOSED):
        with pytest.raises(InvalidTransition):
            await engine.update_case_status(case.case_id, status, MOD_ID)
    assert (await engine.get_case_by_id(case.case_id)).status is CaseStatus.APPEALED
    assert (await engine.get_appeal(case.case_id)).status is AppealStatus.PENDING

    await engine.review_appeal(case.case_id, GUILD_ID, MOD_ID, approve=False)
    with pytest.raises(InvalidTransition):
        await engine.update_case_status(case.case_id, CaseStatus.APPEALED, MOD_ID)
    assert (await engine.get_case_by_id(case.case_id)).status is CaseStatus.DENIED


@pytest.mark.asyncio
async def test_submit_alerts_the_modlog_channel(engine, stores, modlog) -> None:
    await stores.configs.update(GUILD_ID, updated_by_user_id=MOD_ID, modlog_channel_id=888)
    case = await _case(engine)
    appeal = await engine.appeal_case(case.case_id, GUILD_ID, USER_ID, "it was a quote")

    assert len(modlog.appeals) == 1
    guild_id, channel_id, posted, posted_case = modlog.appeals[0]
    assert (guild_id, channel_id) == (GUILD_ID, 888)
    assert posted == appeal
    assert posted_case.case_id == case.case_id
    assert posted_case.status is CaseStatus.APPEALED


@pytest.mark.asyncio
async def test_appeal_alert_failures_do_not_block_submit(stores) -> None:
    broken = _engine(stores, modlog=FakeModLog(fail=True))
    case = await _case(broken)
    assert (await broken.appeal_case(case.case_id, GUILD_ID, USER_ID, "one")).status is AppealStatus.PENDING

    slow = _engine(stores, modlog=_SlowModLog(), action_timeout_seconds=0.05)
    other = await _case(slow)
    appeal = await asyncio.wait_for(slow.appeal_case(other.case_id, GUILD_ID, USER_ID, "two"), timeout=2)
    assert appeal.status is AppealStatus.PENDING
