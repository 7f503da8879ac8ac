from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from ..interfaces import ActionExecutor, ModLogSink, validate_executor, validate_modlog
from ..services.appeals_store import AppealsStore
from ..services.cases_store import CasesStore
from ..services.guild_config_store import GuildConfigStore
from ..services.stats import RuntimeStats
from ..services.warnings_store import WarningsStore
from .accumulator import WarningAccumulator
from .appeals import AppealWorkflow
from .filters import FilterSet
from .ledger import CaseLedger, generate_case_id
from .models import Appeal, AppealStatus, Case, CaseInput, CaseStatus, CaseType, EnforcementOutcome, Event
from .orchestrator import DEFAULT_ACTION_TIMEOUT_SECONDS, DEFAULT_EXCERPT_LENGTH, EnforcementOrchestrator

log = logging.getLogger("warden.engine")


class EnforcementEngine:
    """Single entry point the bot and cogs talk to.

    Owns the filter set, the warning accumulator, the case ledger and the
    appeal workflow, all sharing one SQLite file through their stores.
    """

    def __init__(
        self,
        *,
        configs: GuildConfigStore,
        warnings: WarningsStore,
        cases: CasesStore,
        appeals: AppealsStore,
        executor: ActionExecutor,
        modlog: ModLogSink,
        issuer_id: Callable[[], int],
        filters: Optional[FilterSet] = None,
        stats: Optional[RuntimeStats] = None,
        action_timeout_seconds: float = DEFAULT_ACTION_TIMEOUT_SECONDS,
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
        id_factory: Callable[[int], str] = generate_case_id,
    ) -> None:
        self.configs = configs
        self.executor = validate_executor(executor)
        self.modlog = validate_modlog(modlog)
        self.stats = stats or RuntimeStats()
        self.filters = filters or FilterSet()
        self.accumulator = WarningAccumulator(warnings)
        self.ledger = CaseLedger(cases, appeals, id_factory=id_factory)
        self.appeals = AppealWorkflow(
            self.ledger,
            appeals,
            executor=self.executor,
            modlog=self.modlog,
            configs=configs,
            action_timeout_seconds=action_timeout_seconds,
        )
        self.orchestrator = EnforcementOrchestrator(
            configs=configs,
            filters=self.filters,
            accumulator=self.accumulator,
            ledger=self.ledger,
            executor=self.executor,
            modlog=self.modlog,
            issuer_id=issuer_id,
            stats=self.stats,
            action_timeout_seconds=action_timeout_seconds,
            excerpt_length=excerpt_length,
        )

    # events

    def record_event(self, event: Event) -> asyncio.Task:
        return self.orchestrator.record_event(event)

    async def process_event(self, event: Event) -> Optional[EnforcementOutcome]:
        return await self.orchestrator.process_event(event)

    async def drain(self) -> None:
        await self.orchestrator.drain()

    # warnings

    async def get_warning_count(self, user_id: int, guild_id: int) -> int:
        config = await self.configs.get(guild_id)
        return await self.accumulator.get_warning_count(user_id, guild_id, decay_window_seconds=config.decay_window_seconds)

    async def reset_warnings(self, user_id: int, guild_id: int) -> None:
        await self.accumulator.reset_warnings(user_id, guild_id)

    # cases

    async def create_case(self, data: CaseInput) -> Case:
        case = await self.ledger.create_case(data)
        self.stats.cases_created += 1
        return case

    async def get_case_by_id(self, case_id: str, guild_id: Optional[int] = None) -> Optional[Case]:
        return await self.ledger.get_case_by_id(case_id, guild_id)

    async def update_case_status(
        self,
        case_id: str,
        new_status: CaseStatus,
        actor_id: Optional[int] = None,
        *,
        guild_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Optional[Case]:
        return await self.ledger.update_status(case_id, new_status, actor_id, guild_id=guild_id, note=note)

    async def add_case_note(self, case_id: str, content: str, author_id: int, *, guild_id: Optional[int] = None) -> Case:
        return await self.ledger.add_note(case_id, content, author_id, guild_id=guild_id)

    async def close_case(self, case_id: str, actor_id: int, *, guild_id: Optional[int] = None, reason: Optional[str] = None) -> Case:
        return await self.ledger.close_case(case_id, actor_id, guild_id=guild_id, reason=reason)

    async def get_user_cases(
        self,
        user_id: int,
        guild_id: int,
        case_type: Optional[CaseType] = None,
        status: Optional[CaseStatus] = None,
    ) -> list[Case]:
        return await self.ledger.get_user_cases(user_id, guild_id, case_type, status)

    async def get_issuer_cases(self, issuer_id: int, guild_id: int, case_type: Optional[CaseType] = None) -> list[Case]:
        return await self.ledger.get_issuer_cases(issuer_id, guild_id, case_type)

    async def get_guild_cases(self, guild_id: int, limit: int = 50, offset: int = 0) -> list[Case]:
        return await self.ledger.get_guild_cases(guild_id, limit, offset)

    async def get_case_stats(self, guild_id: int) -> dict:
        return await self.ledger.get_case_stats(guild_id)

    async def purge_cases(self, guild_id: int, older_than_days: int) -> int:
        return await self.ledger.purge_cases(guild_id, older_than_days)

    # appeals

    async def appeal_case(
        self,
        case_id: str,
        guild_id: int,
        user_id: int,
        reason: str,
        *,
        evidence: Optional[str] = None,
        contact: Optional[str] = None,
    ) -> Appeal:
        return await self.appeals.submit(case_id, guild_id, user_id, reason, evidence=evidence, contact=contact)

    async def can_user_appeal(self, user_id: int, guild_id: int, case_id: str) -> bool:
        return await self.appeals.can_user_appeal(user_id, guild_id, case_id)

    async def review_appeal(
        self,
        case_id: str,
        guild_id: int,
        reviewer_id: int,
        *,
        approve: bool,
        note: Optional[str] = None,
    ) -> Appeal:
        return await self.appeals.review(case_id, guild_id, reviewer_id, approve=approve, note=note)

    async def reopen_appeal(self, case_id: str, guild_id: int, reviewer_id: int, note: Optional[str] = None) -> Appeal:
        return await self.appeals.reopen(case_id, guild_id, reviewer_id, note)

    async def get_appeal(self, case_id: str) -> Optional[Appeal]:
        return await self.appeals.get_appeal(case_id)

    async def list_appeals(self, guild_id: int, status: Optional[AppealStatus] = None, limit: int = 50) -> list[Appeal]:
        return await self.appeals.list_appeals(guild_id, status, limit)

    async def get_appeal_stats(self, guild_id: int) -> dict:
        return await self.appeals.appeal_stats(guild_id)
