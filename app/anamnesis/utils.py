"""Common utility helpers."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from time import perf_counter
from typing import Iterable


_TRIAGE_ORDER = {"NON_URGENT": 0, "URGENT": 1, "EMERGENCY": 2}
_TRIAGE_BY_RANK = {rank: level for level, rank in _TRIAGE_ORDER.items()}

_SEVERITY_ORDER = {"MILD": 0, "MODERATE": 1, "SEVERE": 2, "SHARP": 2, "EMERGENCY": 3}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> float:
    return perf_counter() * 1000.0


def elapsed_ms(start_ms: float) -> int:
    return max(0, int(perf_counter() * 1000.0 - start_ms))


def triage_rank(level: str) -> int:
    return _TRIAGE_ORDER[level]


def max_triage(a: str, b: str) -> str:
    return a if _TRIAGE_ORDER[a] >= _TRIAGE_ORDER[b] else b


def escalate_one_level(level: str) -> str:
    rank = min(_TRIAGE_ORDER[level] + 1, _TRIAGE_ORDER["EMERGENCY"])
    return _TRIAGE_BY_RANK[rank]


def to_wire_level(level: str | None) -> str | None:
    if not level:
        return None
    return level.lower()


def severity_rank(severity: str | None) -> int:
    # Unknown severity rounds up to MODERATE.
    if severity is None:
        return _SEVERITY_ORDER["MODERATE"]
    return _SEVERITY_ORDER.get(severity, _SEVERITY_ORDER["MODERATE"])


def max_severity(a: str | None, b: str | None) -> str | None:
    if a is None:
        return b
    if b is None:
        return a
    return a if _SEVERITY_ORDER[a] >= _SEVERITY_ORDER[b] else b


def unique_preserving(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def merge_unique_lines(primary: list[str], secondary: list[str], *, limit: int | None = None) -> list[str]:
    """Merge two lists of sentences, dropping near-duplicates by alphanumeric key."""
    seen: set[str] = set()
    merged: list[str] = []
    for raw in [*primary, *secondary]:
        line = str(raw or "").strip()
        if not line:
            continue
        key = re.sub(r"[^a-z0-9]+", "", line.lower())
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(line)
        if limit is not None and len(merged) >= limit:
            break
    return merged


class StageTimer:
    """Wall-clock timer keyed by stage name; a stage is recorded even when it fails."""

    def __init__(self) -> None:
        self._started: dict[str, float] = {}
        self._timings: dict[str, int] = {}

    def start(self, name: str) -> None:
        self._started[name] = now_ms()

    def stop(self, name: str) -> int:
        started = self._started.pop(name, None)
        if started is None:
            return self._timings.get(name, 0)
        self._timings[name] = elapsed_ms(started)
        return self._timings[name]

    def to_dict(self) -> dict[str, int]:
        return dict(self._timings)
