from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiosqlite

from ..errors import (
    AlreadyAppealed,
    AlreadyReviewed,
    ExternalActionFailure,
    InvalidTransition,
    NotAppealable,
    PersistenceFailure,
    ValidationError,
)
from ..interfaces import ActionExecutor, ModLogSink
from ..services.appeals_store import AppealsStore
from ..services.base import now_iso
from ..services.guild_config_store import GuildConfigStore
from .ledger import CaseLedger
from .locks import KeyedLock
from .models import (
    Appeal,
    AppealStatus,
    Case,
    CaseInput,
    CaseStatus,
    CaseType,
    Notice,
    can_transition_appeal,
    can_transition_case,
)

log = logging.getLogger("warden.appeals")

_REVERSALS = {CaseType.BAN: CaseType.UNBAN, CaseType.TIMEOUT: CaseType.UNTIMEOUT}


class AppealWorkflow:
    """Appeal state machine on top of the case ledger.

    pending -> approved | denied, and a privileged reopen from approved or
    denied back to pending. The case status mirrors the appeal: appealed,
    approved, denied, and appealed again after a reopen. Cases are addressed
    by case id only.

    Each change writes the appeal row first and the case second. When the case
    write fails the appeal row is put back, so the two never disagree.
    """

    def __init__(
        self,
        ledger: CaseLedger,
        store: AppealsStore,
        *,
        executor: Optional[ActionExecutor] = None,
        modlog: Optional[ModLogSink] = None,
        configs: Optional[GuildConfigStore] = None,
        action_timeout_seconds: float = 10.0,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.executor = executor
        self.modlog = modlog
        self.configs = configs
        self._timeout = action_timeout_seconds
        self._locks: KeyedLock[str] = KeyedLock()

    async def can_user_appeal(self, user_id: int, guild_id: int, case_id: str) -> bool:
        return not await self.store.exists(case_id, user_id, guild_id)

    async def get_appeal(self, case_id: str) -> Optional[Appeal]:
        return await self.store.get(case_id)

    async def list_appeals(self, guild_id: int, status: Optional[AppealStatus] = None, limit: int = 50) -> list[Appeal]:
        return await self.store.list_guild(guild_id, status=status, limit=limit)

    async def appeal_stats(self, guild_id: int) -> dict:
        return await self.store.stats(guild_id)

    async def submit(
        self,
        case_id: str,
        guild_id: int,
        user_id: int,
        reason: str,
        *,
        evidence: Optional[str] = None,
        contact: Optional[str] = None,
    ) -> Appeal:
        case = await self.ledger.require_case(case_id, guild_id)
        if case.subject_user_id != user_id:
            raise ValidationError("Only the sanctioned user can appeal this case")
        if not case.appealable:
            raise NotAppealable(case_id)
        if not await self.can_user_appeal(user_id, guild_id, case_id):
            raise AlreadyAppealed(case_id)

        appealed = await self.ledger.appeal(case_id, reason, user_id, guild_id=guild_id)
        appeal = Appeal(
            case_id=case_id,
            guild_id=guild_id,
            user_id=user_id,
            reason=reason,
            status=AppealStatus.PENDING,
            submitted_at_iso=now_iso(),
            evidence=evidence,
            contact=contact,
        )
        try:
            await self.store.insert(appeal)
        except aiosqlite.IntegrityError as e:
            await self.ledger.withdraw_appeal(case_id, user_id, "appeal already on record", guild_id=guild_id)
            raise AlreadyAppealed(case_id) from e
        except PersistenceFailure:
            await self.ledger.withdraw_appeal(case_id, user_id, "appeal could not be stored", guild_id=guild_id)
            raise
        log.info("Appeal submitted for case %s by %s", case_id, user_id)
        await self._alert_staff(appeal, appealed)
        return appeal

    async def review(
        self,
        case_id: str,
        guild_id: int,
        reviewer_id: int,
        *,
        approve: bool,
        note: Optional[str] = None,
    ) -> Appeal:
        target = AppealStatus.APPROVED if approve else AppealStatus.DENIED
        async with self._locks.hold(case_id):
            case = await self.ledger.require_case(case_id, guild_id)
            if not case.appealed:
                raise ValidationError(f"Case {case_id} has not been appealed")
            appeal = await self.store.get(case_id)
            if appeal is None:
                raise ValidationError(f"No appeal on record for case {case_id}")
            if not can_transition_appeal(appeal.status, target):
                raise AlreadyReviewed(case_id)
            if case.status is not CaseStatus.APPEALED:
                raise InvalidTransition("case", case.status.value, target.value)

            if not await self.store.transition(
                case_id,
                AppealStatus.PENDING,
                target,
                reviewed_by=reviewer_id,
                review_note=note,
                reviewed_at_iso=now_iso(),
            ):
                raise AlreadyReviewed(case_id)

            await self._mirror(
                appeal,
                target,
                CaseStatus(target.value),
                reviewer_id,
                guild_id,
                f"Appeal {target.value}" + (f": {note}" if note else ""),
            )
            log.info("Appeal for case %s %s by %s", case_id, target.value, reviewer_id)

        if approve:
            await self._reverse_sanction(case, reviewer_id)
        await self._notify_decision(case, target, note)

        reviewed = await self.store.get(case_id)
        assert reviewed is not None
        return reviewed

    async def approve(self, case_id: str, guild_id: int, reviewer_id: int, note: Optional[str] = None) -> Appeal:
        return await self.review(case_id, guild_id, reviewer_id, approve=True, note=note)

    async def deny(self, case_id: str, guild_id: int, reviewer_id: int, note: Optional[str] = None) -> Appeal:
        return await self.review(case_id, guild_id, reviewer_id, approve=False, note=note)

    async def reopen(self, case_id: str, guild_id: int, reviewer_id: int, note: Optional[str] = None) -> Appeal:
        """Privileged correction of a decided appeal. Never creates a new appeal row."""
        async with self._locks.hold(case_id):
            case = await self.ledger.require_case(case_id, guild_id)
            appeal = await self.store.get(case_id)
            if appeal is None or not case.appealed:
                raise ValidationError(f"No appeal on record for case {case_id}")
            if not can_transition_appeal(appeal.status, AppealStatus.PENDING):
                raise InvalidTransition("appeal", appeal.status.value, AppealStatus.PENDING.value)
            if not can_transition_case(case.status, CaseStatus.APPEALED):
                raise InvalidTransition("case", case.status.value, CaseStatus.APPEALED.value)

            if not await self.store.transition(
                case_id,
                appeal.status,
                AppealStatus.PENDING,
                reviewed_by=reviewer_id,
                review_note=note,
                reviewed_at_iso=now_iso(),
            ):
                raise AlreadyReviewed(case_id)

            await self._mirror(
                appeal,
                AppealStatus.PENDING,
                CaseStatus.APPEALED,
                reviewer_id,
                guild_id,
                "Appeal reopened" + (f": {note}" if note else ""),
            )
            log.info("Appeal for case %s reopened by %s", case_id, reviewer_id)

        reopened = await self.store.get(case_id)
        assert reopened is not None
        return reopened

    async def _mirror(
        self,
        previous: Appeal,
        appeal_status: AppealStatus,
        case_status: CaseStatus,
        reviewer_id: int,
        guild_id: int,
        note: str,
    ) -> Case:
        try:
            return await self.ledger.record_appeal_outcome(
                previous.case_id, case_status, reviewer_id, guild_id=guild_id, note=note
            )
        except Exception:
            if not await self.store.restore(previous, appeal_status):
                log.error("Could not restore appeal for case %s to %s", previous.case_id, previous.status.value)
            raise

    async def _call(self, label: str, coro) -> bool:
        try:
            await asyncio.wait_for(coro, timeout=self._timeout)
            return True
        except ExternalActionFailure as e:
            log.warning("%s failed: %s", label, e.detail)
        except asyncio.TimeoutError:
            log.warning("%s timed out", label)
        except Exception:
            log.exception("%s raised unexpectedly", label)
        return False

    async def _alert_staff(self, appeal: Appeal, case: Case) -> None:
        if self.modlog is None:
            return
        channel_id = None
        if self.configs is not None:
            channel_id = (await self.configs.get(appeal.guild_id)).modlog_channel_id
        await self._call("appeal alert", self.modlog.send_appeal(appeal.guild_id, channel_id, appeal, case))

    async def _reverse_sanction(self, case: Case, reviewer_id: int) -> Optional[Case]:
        reversal = _REVERSALS.get(case.type)
        if reversal is None:
            return None
        reason = f"Appeal approved for case {case.case_id}"
        if self.executor is not None:
            if reversal is CaseType.UNBAN:
                await self._call("unban", self.executor.unban(case.guild_id, case.subject_user_id, reason))
            else:
                await self._call("untimeout", self.executor.untimeout(case.guild_id, case.subject_user_id, reason))
        return await self.ledger.create_case(
            CaseInput(
                type=reversal,
                subject_user_id=case.subject_user_id,
                issuer_id=reviewer_id,
                guild_id=case.guild_id,
                reason=reason,
                appealable=False,
            )
        )

    async def _notify_decision(self, case: Case, status: AppealStatus, note: Optional[str]) -> None:
        if self.executor is None:
            return
        if self.configs is not None and not (await self.configs.get(case.guild_id)).dm_notify:
            return
        notice = Notice(
            guild_id=case.guild_id,
            title=f"Appeal {status.value.capitalize()}",
            action=status.value,
            case_id=case.case_id,
            reason=note or "No note provided",
        )
        await self._call("appeal dm", self.executor.send_direct_message(case.subject_user_id, notice))
