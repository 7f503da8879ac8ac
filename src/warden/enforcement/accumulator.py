from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..services.warnings_store import WarningsStore
from .locks import KeyedLock
from .models import WarningState

log = logging.getLogger("warden.accumulator")

DEFAULT_DECAY_WINDOW_SECONDS = 24 * 60 * 60


class WarningAccumulator:
    """Per (guild, user) warning counter with time decay.

    `record_violation` is the only place the counter is incremented. Reads and
    writes for one key are serialized, so concurrent events from the same user
    cannot lose an increment.
    """

    def __init__(self, store: WarningsStore, *, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock
        self._locks: KeyedLock[tuple[int, int]] = KeyedLock()

    async def record_violation(
        self,
        user_id: int,
        guild_id: int,
        *,
        decay_window_seconds: int = DEFAULT_DECAY_WINDOW_SECONDS,
        now: Optional[float] = None,
    ) -> int:
        async with self._locks.hold((guild_id, user_id)):
            ts = self._clock() if now is None else now
            state = await self.store.get_state(guild_id, user_id)
            count = 0
            if state is not None and not state.is_expired(ts, decay_window_seconds):
                count = state.count
            elif state is not None and state.count:
                log.debug("Warnings decayed for user=%s guild=%s (was %s)", user_id, guild_id, state.count)
            count += 1
            await self.store.put_state(WarningState(guild_id=guild_id, user_id=user_id, count=count, last_increment_at=ts))
            return count

    async def get_warning_count(
        self,
        user_id: int,
        guild_id: int,
        *,
        decay_window_seconds: int = DEFAULT_DECAY_WINDOW_SECONDS,
        now: Optional[float] = None,
    ) -> int:
        state = await self.store.get_state(guild_id, user_id)
        if state is None:
            return 0
        return state.effective_count(self._clock() if now is None else now, decay_window_seconds)

    async def reset_warnings(self, user_id: int, guild_id: int) -> None:
        async with self._locks.hold((guild_id, user_id)):
            await self.store.clear(guild_id, user_id)
        log.info("Warnings reset for user=%s guild=%s", user_id, guild_id)
