from __future__ import annotations

from .config_schema import AutomodConfig
from .models import ActionKind, EscalationDecision


def decide(warning_count: int, max_severity: int, config: AutomodConfig) -> EscalationDecision:
    """Map accumulated warnings and the worst triggered severity to an action.

    Below `warn_threshold` every violation is a warning. At or above it, the
    severity picks the sanction: `ban_severity` and up bans, otherwise the
    highest `mute_durations_by_severity` floor not above the severity decides
    the timeout length. Anything lower stays a warning.
    """

    if warning_count < config.warn_threshold:
        return EscalationDecision(ActionKind.WARN)

    if max_severity >= config.ban_severity:
        return EscalationDecision(ActionKind.BAN)

    floors = sorted((s for s in config.mute_durations_by_severity if s <= max_severity), reverse=True)
    if floors:
        return EscalationDecision(ActionKind.TIMEOUT, config.mute_durations_by_severity[floors[0]])

    return EscalationDecision(ActionKind.WARN)


_RANK = {ActionKind.WARN: 0, ActionKind.TIMEOUT: 1, ActionKind.KICK: 2, ActionKind.BAN: 3}


def severity_rank(decision: EscalationDecision) -> tuple[int, int]:
    """Orderable strength of a decision: action kind first, then duration."""
    return (_RANK[decision.action], decision.duration_seconds or 0)
