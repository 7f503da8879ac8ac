from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ActionKind(str, Enum):
    """Punitive actions the escalation policy can choose."""

    WARN = "warn"
    TIMEOUT = "timeout"
    KICK = "kick"
    BAN = "ban"


class CaseType(str, Enum):
    WARN = "warn"
    TIMEOUT = "timeout"
    KICK = "kick"
    BAN = "ban"
    UNBAN = "unban"
    UNTIMEOUT = "untimeout"
    NOTE = "note"
    STRIKE = "strike"


class CaseStatus(str, Enum):
    ACTIVE = "active"
    APPEALED = "appealed"
    APPROVED = "approved"
    DENIED = "denied"
    CLOSED = "closed"


class AppealStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


TERMINAL_CASE_STATUSES = frozenset({CaseStatus.APPROVED, CaseStatus.DENIED, CaseStatus.CLOSED})

# approved/denied -> appealed is only reachable through an appeal reopen.
CASE_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.ACTIVE: frozenset({CaseStatus.APPEALED, CaseStatus.CLOSED}),
    CaseStatus.APPEALED: frozenset({CaseStatus.APPROVED, CaseStatus.DENIED}),
    CaseStatus.APPROVED: frozenset({CaseStatus.APPEALED}),
    CaseStatus.DENIED: frozenset({CaseStatus.APPEALED}),
    CaseStatus.CLOSED: frozenset(),
}

APPEAL_TRANSITIONS: dict[AppealStatus, frozenset[AppealStatus]] = {
    AppealStatus.PENDING: frozenset({AppealStatus.APPROVED, AppealStatus.DENIED}),
    AppealStatus.APPROVED: frozenset({AppealStatus.PENDING}),
    AppealStatus.DENIED: frozenset({AppealStatus.PENDING}),
}

# A case opened for an automated action carries the matching case type.
ACTION_CASE_TYPES: dict[ActionKind, CaseType] = {
    ActionKind.WARN: CaseType.WARN,
    ActionKind.TIMEOUT: CaseType.TIMEOUT,
    ActionKind.KICK: CaseType.KICK,
    ActionKind.BAN: CaseType.BAN,
}


def can_transition_case(current: CaseStatus, target: CaseStatus) -> bool:
    return target in CASE_TRANSITIONS[current]


def is_appeal_transition(current: CaseStatus, target: CaseStatus) -> bool:
    """Moves into or out of `appealed` are owned by the appeal workflow."""
    return CaseStatus.APPEALED in (current, target)


def can_transition_appeal(current: AppealStatus, target: AppealStatus) -> bool:
    return target in APPEAL_TRANSITIONS[current]


@dataclass(frozen=True)
class Event:
    """Normalized user event passed through the enforcement pipeline.

    Produced by the platform adapter, consumed once.
    """

    community_id: int
    author_id: int
    content: str
    channel_id: Optional[int]
    created_at: datetime
    message_id: Optional[int] = None
    author_is_bot: bool = False
    author_role_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class FilterResult:
    filter_name: str
    triggered: bool
    severity: int
    suggested_action: ActionKind
    # Declaration index in the filter set, used to break severity ties.
    order: int = 0


@dataclass(frozen=True)
class EscalationDecision:
    action: ActionKind
    duration_seconds: Optional[int] = None


@dataclass(frozen=True)
class WarningState:
    guild_id: int
    user_id: int
    count: int
    last_increment_at: float

    def is_expired(self, now: float, decay_window_seconds: int) -> bool:
        return (now - self.last_increment_at) > decay_window_seconds

    def effective_count(self, now: float, decay_window_seconds: int) -> int:
        return 0 if self.is_expired(now, decay_window_seconds) else self.count


@dataclass(frozen=True)
class CaseNote:
    content: str
    author_id: int
    created_at_iso: str


@dataclass(frozen=True)
class CaseInput:
    type: CaseType
    subject_user_id: int
    issuer_id: int
    guild_id: int
    reason: str
    appealable: bool = True
    duration_seconds: Optional[int] = None
    channel_id: Optional[int] = None
    message_id: Optional[int] = None
    automated: bool = False
    notes: tuple[CaseNote, ...] = ()


@dataclass(frozen=True)
class Case:
    case_id: str
    type: CaseType
    subject_user_id: int
    issuer_id: int
    guild_id: int
    reason: str
    status: CaseStatus
    appealable: bool
    appealed: bool
    duration_seconds: Optional[int]
    created_at_iso: str
    updated_at_iso: str
    channel_id: Optional[int] = None
    message_id: Optional[int] = None
    automated: bool = False
    appeal_reason: Optional[str] = None
    appealed_by: Optional[int] = None
    appealed_at_iso: Optional[str] = None
    notes: tuple[CaseNote, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CASE_STATUSES


@dataclass(frozen=True)
class Appeal:
    case_id: str
    guild_id: int
    user_id: int
    reason: str
    status: AppealStatus
    submitted_at_iso: str
    evidence: Optional[str] = None
    contact: Optional[str] = None
    reviewed_by: Optional[int] = None
    review_note: Optional[str] = None
    reviewed_at_iso: Optional[str] = None


@dataclass(frozen=True)
class ThreatScore:
    guild_id: int
    user_id: int
    score: int
    reason: Optional[str]
    last_changed_iso: str


@dataclass(frozen=True)
class Notice:
    """Direct message payload sent to a sanctioned user."""

    guild_id: int
    title: str
    action: str
    case_id: str
    reason: str
    fields: dict[str, str] = field(default_factory=dict)
    duration_seconds: Optional[int] = None


@dataclass(frozen=True)
class ModLogEntry:
    guild_id: int
    user_id: int
    channel_id: Optional[int]
    action: ActionKind
    case_id: str
    warning_count: int
    violations: list[tuple[str, int]]
    excerpt: str
    duration_seconds: Optional[int] = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "guild_id": self.guild_id,
            "user_id": self.user_id,
            "channel_id": self.channel_id,
            "action": self.action.value,
            "case_id": self.case_id,
            "warning_count": self.warning_count,
            "violations": [{"filter": name, "severity": sev} for name, sev in self.violations],
            "excerpt": self.excerpt,
            "duration_seconds": self.duration_seconds,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class EnforcementOutcome:
    case: Case
    decision: EscalationDecision
    triggered: list[FilterResult]
    warning_count: int
    action_applied: bool
    errors: list[str]
