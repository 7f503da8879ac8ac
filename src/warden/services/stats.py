from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field


@dataclass
class RuntimeStats:
    started_at: float = field(default_factory=time.time)
    events_seen: int = 0
    events_skipped: int = 0
    violations: int = 0
    cases_created: int = 0
    messages_deleted: int = 0
    timeouts_applied: int = 0
    bans_applied: int = 0
    actions_failed: int = 0
    notifications_failed: int = 0
    persistence_failures: int = 0

    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)

    def snapshot(self) -> dict[str, int]:
        data = asdict(self)
        data.pop("started_at")
        data["uptime_seconds"] = self.uptime_seconds()
        return data
