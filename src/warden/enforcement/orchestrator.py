from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from ..errors import ExternalActionFailure, PersistenceFailure
from ..interfaces import ActionExecutor, ModLogSink
from ..services.guild_config_store import GuildConfigStore
from ..services.stats import RuntimeStats
from .accumulator import WarningAccumulator
from .config_schema import AutomodConfig
from .escalation import decide
from .filters import FilterSet, max_severity
from .ledger import CaseLedger
from .models import (
    ACTION_CASE_TYPES,
    ActionKind,
    Case,
    CaseInput,
    EnforcementOutcome,
    EscalationDecision,
    Event,
    FilterResult,
    ModLogEntry,
    Notice,
)

log = logging.getLogger("warden.orchestrator")

DEFAULT_ACTION_TIMEOUT_SECONDS = 10.0
DEFAULT_EXCERPT_LENGTH = 100


def excerpt(content: str, length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    if not content:
        return "*No content*"
    return content[:length] + "..." if len(content) > length else content


def in_scope(event: Event, config: AutomodConfig) -> bool:
    if not config.automod_enabled:
        return False
    if event.channel_id is not None and event.channel_id in config.exempt_channel_ids:
        return False
    if any(rid in config.exempt_role_ids for rid in event.author_role_ids):
        return False
    return True


class EnforcementOrchestrator:
    """Runs one event through filters, accumulator, escalation and the ledger.

    The case is the authoritative record: once it is written, platform
    failures (delete, sanction, DM, modlog) are logged and attached to the
    outcome but never undo it. Persistence failures before the case exists
    drop the event from enforcement.
    """

    def __init__(
        self,
        *,
        configs: GuildConfigStore,
        filters: FilterSet,
        accumulator: WarningAccumulator,
        ledger: CaseLedger,
        executor: ActionExecutor,
        modlog: ModLogSink,
        issuer_id: Callable[[], int],
        stats: Optional[RuntimeStats] = None,
        action_timeout_seconds: float = DEFAULT_ACTION_TIMEOUT_SECONDS,
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
    ) -> None:
        self.configs = configs
        self.filters = filters
        self.accumulator = accumulator
        self.ledger = ledger
        self.executor = executor
        self.modlog = modlog
        self.stats = stats or RuntimeStats()
        self._issuer_id = issuer_id
        self._timeout = action_timeout_seconds
        self._excerpt_length = excerpt_length
        self._tasks: set[asyncio.Task] = set()

    # -------------------- entry points --------------------

    def record_event(self, event: Event) -> asyncio.Task:
        """Fire-and-forget: schedule the event and return immediately."""
        task = asyncio.create_task(self._run(event), name=f"warden-event-{event.message_id or event.author_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled event to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _run(self, event: Event) -> None:
        try:
            await self.process_event(event)
        except Exception:
            log.exception("Unhandled error processing event from user=%s guild=%s", event.author_id, event.community_id)

    async def process_event(self, event: Event) -> Optional[EnforcementOutcome]:
        self.stats.events_seen += 1

        if event.author_is_bot:
            self.stats.events_skipped += 1
            return None

        try:
            config = await self.configs.get(event.community_id)
        except PersistenceFailure:
            self.stats.persistence_failures += 1
            log.error("Config unavailable for guild=%s; event dropped", event.community_id)
            return None

        if not in_scope(event, config):
            self.stats.events_skipped += 1
            return None

        triggered = self.filters.evaluate(event, config)
        if not triggered:
            return None
        self.stats.violations += 1

        try:
            count = await self.accumulator.record_violation(
                event.author_id,
                event.community_id,
                decay_window_seconds=config.decay_window_seconds,
            )
        except PersistenceFailure as e:
            self.stats.persistence_failures += 1
            log.error("Warning state unavailable, dropping event from user=%s guild=%s: %s", event.author_id, event.community_id, e)
            return None

        errors: list[str] = []
        if await self._best_effort("delete_message", self.executor.delete_message(event), errors):
            self.stats.messages_deleted += 1

        decision = decide(count, max_severity(triggered), config)

        try:
            case = await self.ledger.create_case(
                CaseInput(
                    type=ACTION_CASE_TYPES[decision.action],
                    subject_user_id=event.author_id,
                    issuer_id=self._issuer_id(),
                    guild_id=event.community_id,
                    reason=", ".join(r.filter_name for r in triggered),
                    appealable=True,
                    duration_seconds=decision.duration_seconds,
                    channel_id=event.channel_id,
                    message_id=event.message_id,
                    automated=True,
                )
            )
        except PersistenceFailure as e:
            self.stats.persistence_failures += 1
            log.error("Case creation failed, no action taken for user=%s guild=%s: %s", event.author_id, event.community_id, e)
            return None
        self.stats.cases_created += 1

        applied = await self._apply(decision, event, case, errors)
        if not applied:
            try:
                await self.ledger.add_note(case.case_id, "Action failed: " + "; ".join(errors), self._issuer_id(), guild_id=case.guild_id)
            except PersistenceFailure:
                log.warning("Could not attach failure note to case %s", case.case_id)

        if config.dm_notify:
            await self._notify(event, case, decision, triggered)

        entry = ModLogEntry(
            guild_id=event.community_id,
            user_id=event.author_id,
            channel_id=event.channel_id,
            action=decision.action,
            case_id=case.case_id,
            warning_count=count,
            violations=[(r.filter_name, r.severity) for r in triggered],
            excerpt=excerpt(event.content, self._excerpt_length),
            duration_seconds=decision.duration_seconds,
            errors=list(errors),
        )
        log.info("[automod] %s | %s", decision.action.value, json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=False))
        await self._best_effort("modlog", self.modlog.send(event.community_id, config.modlog_channel_id, entry), [])

        return EnforcementOutcome(
            case=case,
            decision=decision,
            triggered=triggered,
            warning_count=count,
            action_applied=applied,
            errors=errors,
        )

    # -------------------- platform boundary --------------------

    async def _best_effort(self, label: str, call: Awaitable[None], errors: list[str]) -> bool:
        try:
            await asyncio.wait_for(call, timeout=self._timeout)
            return True
        except ExternalActionFailure as e:
            log.warning("%s failed: %s", label, e.detail)
            errors.append(f"{label}: {e.detail}")
        except asyncio.TimeoutError:
            log.warning("%s timed out after %.1fs", label, self._timeout)
            errors.append(f"{label}: timed out")
        except Exception as e:
            log.exception("%s raised unexpectedly", label)
            errors.append(f"{label}: {type(e).__name__}")
        return False

    async def _apply(self, decision: EscalationDecision, event: Event, case: Case, errors: list[str]) -> bool:
        reason = f"AutoMod: {case.reason} | Case: {case.case_id}"
        action = decision.action
        if action is ActionKind.WARN:
            return True
        if action is ActionKind.TIMEOUT:
            call = self.executor.timeout(event.community_id, event.author_id, int(decision.duration_seconds or 0), reason)
        elif action is ActionKind.KICK:
            call = self.executor.kick(event.community_id, event.author_id, reason)
        elif action is ActionKind.BAN:
            call = self.executor.ban(event.community_id, event.author_id, reason)
        else:
            raise ValueError(f"Unhandled action kind: {action!r}")

        before = len(errors)
        ok = await self._best_effort(action.value, call, errors)
        if ok:
            if action is ActionKind.TIMEOUT:
                self.stats.timeouts_applied += 1
            elif action is ActionKind.BAN:
                self.stats.bans_applied += 1
        else:
            self.stats.actions_failed += 1
            log.error("Case %s recorded but %s was not applied: %s", case.case_id, action.value, errors[before:])
        return ok

    async def _notify(self, event: Event, case: Case, decision: EscalationDecision, triggered: list[FilterResult]) -> None:
        notice = Notice(
            guild_id=event.community_id,
            title=f"AutoMod Action: {decision.action.value.capitalize()}",
            action=decision.action.value,
            case_id=case.case_id,
            reason=case.reason,
            duration_seconds=decision.duration_seconds,
            fields={
                "Violations": ", ".join(r.filter_name for r in triggered),
                "Appeal": f"Use `/appeal submit case_id:{case.case_id}` if you believe this is unfair",
            },
        )
        # DM failures are expected (closed DMs) and never retried.
        if not await self._best_effort("dm", self.executor.send_direct_message(event.author_id, notice), []):
            self.stats.notifications_failed += 1
