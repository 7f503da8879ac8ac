from __future__ import annotations

import logging
import re
import unicodedata
from collections import deque
from typing import Iterable, Optional

from .config_schema import AutomodConfig
from .models import ActionKind, Event, FilterResult

log = logging.getLogger("warden.filters")

URL_RE = re.compile(r"https?://[^\s]+", re.I)
_COMBINING_CATEGORIES = frozenset({"Mn", "Mc", "Me"})


class Filter:
    """One policy dimension. Subclasses implement `check`."""

    name: str = "filter"
    severity: int = 0
    suggested_action: ActionKind = ActionKind.WARN

    def check(self, event: Event, config: AutomodConfig) -> bool:
        raise NotImplementedError


class SpamFilter(Filter):
    """Burst detection: more than `max_events` events inside a sliding window.

    Holds a short-lived timestamp buffer per (community, user). `check` never
    awaits, so on a single event loop two checks for the same key cannot
    interleave. Idle buffers are dropped every `prune_every` checks.
    """

    name = "spam"
    severity = 5
    suggested_action = ActionKind.TIMEOUT

    def __init__(self, window_seconds: float = 10.0, max_events: int = 5, *, prune_every: int = 500) -> None:
        self.window_seconds = window_seconds
        self.max_events = max_events
        self.prune_every = max(1, int(prune_every))
        self._events: dict[tuple[int, int], deque[float]] = {}
        self._checks = 0

    def buffer_count(self) -> int:
        return len(self._events)

    def check(self, event: Event, config: AutomodConfig) -> bool:
        key = (event.community_id, event.author_id)
        now = event.created_at.timestamp()
        self._checks += 1
        if self._checks % self.prune_every == 0:
            self.prune(now)
        stamps = self._events.setdefault(key, deque())
        while stamps and (now - stamps[0]) >= self.window_seconds:
            stamps.popleft()
        stamps.append(now)
        return len(stamps) > self.max_events

    def recent_count(self, community_id: int, user_id: int) -> int:
        return len(self._events.get((community_id, user_id), ()))

    def prune(self, now: float) -> int:
        """Drop buffers whose newest entry fell out of the window."""
        stale = [k for k, v in self._events.items() if not v or (now - v[-1]) >= self.window_seconds]
        for k in stale:
            self._events.pop(k, None)
        return len(stale)


class KeywordFilter(Filter):
    name = "toxicity"
    severity = 7
    suggested_action = ActionKind.TIMEOUT

    def check(self, event: Event, config: AutomodConfig) -> bool:
        content = event.content.lower()
        return any(word.lower() in content for word in config.deny_list if word)


class LinkFilter(Filter):
    name = "links"
    severity = 3
    suggested_action = ActionKind.WARN

    def check(self, event: Event, config: AutomodConfig) -> bool:
        return bool(URL_RE.search(event.content))


class CapsFilter(Filter):
    name = "caps"
    severity = 2
    suggested_action = ActionKind.WARN

    def __init__(self, min_length: int = 10, ratio: float = 0.7) -> None:
        self.min_length = min_length
        self.ratio = ratio

    def check(self, event: Event, config: AutomodConfig) -> bool:
        content = event.content
        if len(content) < self.min_length:
            return False
        letters = [c for c in content if c.isalpha()]
        if not letters:
            return False
        upper = sum(1 for c in letters if c.isupper())
        return (upper / len(letters)) > self.ratio


class ZalgoFilter(Filter):
    """Counts combining marks of every Unicode category (Mn, Mc, Me)."""

    name = "zalgo"
    severity = 4
    suggested_action = ActionKind.WARN

    def __init__(self, max_marks: int = 10) -> None:
        self.max_marks = max_marks

    def check(self, event: Event, config: AutomodConfig) -> bool:
        marks = sum(1 for c in event.content if unicodedata.category(c) in _COMBINING_CATEGORIES)
        return marks > self.max_marks


def default_filters() -> list[Filter]:
    return [SpamFilter(), KeywordFilter(), LinkFilter(), CapsFilter(), ZalgoFilter()]


class FilterSet:
    """Runs every enabled filter and returns all triggered results.

    Results are ordered by severity descending; equal severities keep
    declaration order.
    """

    def __init__(self, filters: Optional[Iterable[Filter]] = None) -> None:
        self.filters: list[Filter] = list(filters) if filters is not None else default_filters()

    def get(self, name: str) -> Optional[Filter]:
        for f in self.filters:
            if f.name == name:
                return f
        return None

    def evaluate(self, event: Event, config: AutomodConfig) -> list[FilterResult]:
        triggered: list[FilterResult] = []
        for order, f in enumerate(self.filters):
            if f.name in config.disabled_filters:
                continue
            try:
                hit = f.check(event, config)
            except Exception:
                log.exception("Filter %s raised; treating as not triggered", f.name)
                continue
            if hit:
                triggered.append(
                    FilterResult(
                        filter_name=f.name,
                        triggered=True,
                        severity=f.severity,
                        suggested_action=f.suggested_action,
                        order=order,
                    )
                )
        triggered.sort(key=lambda r: (-r.severity, r.order))
        return triggered


def max_severity(results: Iterable[FilterResult]) -> int:
    return max((r.severity for r in results if r.triggered), default=0)
