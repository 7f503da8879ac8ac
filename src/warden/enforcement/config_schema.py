from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Optional


DEFAULT_CONFIG_VERSION = 1

DEFAULT_DENY_LIST: tuple[str, ...] = (
    "idiot",
    "stupid",
    "dumb",
    "retard",
    "moron",
    "kill yourself",
    "kys",
    "die",
    "cancer",
)

FILTER_NAMES: tuple[str, ...] = ("spam", "toxicity", "links", "caps", "zalgo")


@dataclass(frozen=True)
class AutomodConfig:
    """Per-community automod settings.

    Only the options below are recognized; unknown keys are rejected by
    `validate_config`.
    """

    automod_enabled: bool = True
    warn_threshold: int = 3
    deny_list: tuple[str, ...] = DEFAULT_DENY_LIST
    decay_window_seconds: int = 24 * 60 * 60
    # severity floor -> timeout seconds; the highest floor <= max severity wins
    mute_durations_by_severity: dict[int, int] = field(default_factory=lambda: {6: 3600, 4: 1800})
    ban_severity: int = 8
    disabled_filters: tuple[str, ...] = ()
    exempt_channel_ids: tuple[int, ...] = ()
    exempt_role_ids: tuple[int, ...] = ()
    modlog_channel_id: Optional[int] = None
    dm_notify: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": DEFAULT_CONFIG_VERSION,
            "automod_enabled": self.automod_enabled,
            "warn_threshold": self.warn_threshold,
            "deny_list": list(self.deny_list),
            "decay_window_seconds": self.decay_window_seconds,
            # JSON object keys are strings
            "mute_durations_by_severity": {str(k): v for k, v in self.mute_durations_by_severity.items()},
            "ban_severity": self.ban_severity,
            "disabled_filters": list(self.disabled_filters),
            "exempt_channel_ids": list(self.exempt_channel_ids),
            "exempt_role_ids": list(self.exempt_role_ids),
            "modlog_channel_id": self.modlog_channel_id,
            "dm_notify": self.dm_notify,
        }

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "AutomodConfig":
        base = cls()
        mutes = doc.get("mute_durations_by_severity")
        return cls(
            automod_enabled=bool(doc.get("automod_enabled", base.automod_enabled)),
            warn_threshold=int(doc.get("warn_threshold", base.warn_threshold)),
            deny_list=tuple(str(w).lower() for w in doc.get("deny_list", base.deny_list)),
            decay_window_seconds=int(doc.get("decay_window_seconds", base.decay_window_seconds)),
            mute_durations_by_severity=(
                {int(k): int(v) for k, v in mutes.items()} if isinstance(mutes, dict) else dict(base.mute_durations_by_severity)
            ),
            ban_severity=int(doc.get("ban_severity", base.ban_severity)),
            disabled_filters=tuple(str(x) for x in doc.get("disabled_filters", ())),
            exempt_channel_ids=tuple(int(x) for x in doc.get("exempt_channel_ids", ())),
            exempt_role_ids=tuple(int(x) for x in doc.get("exempt_role_ids", ())),
            modlog_channel_id=(int(doc["modlog_channel_id"]) if doc.get("modlog_channel_id") is not None else None),
            dm_notify=bool(doc.get("dm_notify", base.dm_notify)),
        )

    def with_changes(self, **changes: Any) -> "AutomodConfig":
        return replace(self, **changes)


def default_config(*, warn_threshold: int = 3, decay_window_seconds: int = 24 * 60 * 60) -> AutomodConfig:
    return AutomodConfig(warn_threshold=warn_threshold, decay_window_seconds=decay_window_seconds)


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str


_KNOWN_KEYS = frozenset(AutomodConfig().to_dict().keys())


def _is_jsonable(obj: Any) -> bool:
    try:
        json.dumps(obj)
        return True
    except (TypeError, ValueError):
        return False


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def validate_config(doc: dict[str, Any]) -> list[ValidationIssue]:
    """Validate an automod config document. Returns list of issues; empty means valid."""

    if not isinstance(doc, dict):
        return [ValidationIssue(path="$", message="Config must be an object")]

    issues: list[ValidationIssue] = []

    if doc.get("version", DEFAULT_CONFIG_VERSION) != DEFAULT_CONFIG_VERSION:
        issues.append(ValidationIssue(path="$.version", message=f"Unsupported version (expected {DEFAULT_CONFIG_VERSION})"))

    for key in doc:
        if key not in _KNOWN_KEYS:
            issues.append(ValidationIssue(path=f"$.{key}", message="unknown option"))

    for k in ("automod_enabled", "dm_notify"):
        if k in doc and not isinstance(doc[k], bool):
            issues.append(ValidationIssue(path=f"$.{k}", message="must be boolean"))

    wt = doc.get("warn_threshold", 3)
    if not _is_int(wt) or wt < 1:
        issues.append(ValidationIssue(path="$.warn_threshold", message="must be integer >= 1"))

    dw = doc.get("decay_window_seconds", 1)
    if not _is_int(dw) or dw <= 0:
        issues.append(ValidationIssue(path="$.decay_window_seconds", message="must be integer > 0"))

    bs = doc.get("ban_severity", 8)
    if not _is_int(bs) or not 0 <= bs <= 10:
        issues.append(ValidationIssue(path="$.ban_severity", message="must be integer in 0..10"))

    dl = doc.get("deny_list", [])
    if not isinstance(dl, list) or not all(isinstance(w, str) and w.strip() for w in dl):
        issues.append(ValidationIssue(path="$.deny_list", message="must be list of non-empty strings"))

    mutes = doc.get("mute_durations_by_severity", {})
    if not isinstance(mutes, dict):
        issues.append(ValidationIssue(path="$.mute_durations_by_severity", message="must be object"))
    else:
        for k, v in mutes.items():
            p = f"$.mute_durations_by_severity.{k}"
            try:
                sev = int(k)
            except (TypeError, ValueError):
                issues.append(ValidationIssue(path=p, message="severity key must be integer"))
                continue
            if not 0 <= sev <= 10:
                issues.append(ValidationIssue(path=p, message="severity key must be in 0..10"))
            if not _is_int(v) or v <= 0:
                issues.append(ValidationIssue(path=p, message="duration must be integer seconds > 0"))

    df = doc.get("disabled_filters", [])
    if not isinstance(df, list) or any(x not in FILTER_NAMES for x in df):
        issues.append(ValidationIssue(path="$.disabled_filters", message=f"must be list of {', '.join(FILTER_NAMES)}"))

    for k in ("exempt_channel_ids", "exempt_role_ids"):
        v = doc.get(k, [])
        if not isinstance(v, list) or not all(_is_int(x) for x in v):
            issues.append(ValidationIssue(path=f"$.{k}", message="must be list of integers"))

    mc = doc.get("modlog_channel_id")
    if mc is not None and not _is_int(mc):
        issues.append(ValidationIssue(path="$.modlog_channel_id", message="must be integer or null"))

    if not _is_jsonable(doc):
        issues.append(ValidationIssue(path="$", message="config must be JSON serializable"))
    return issues
