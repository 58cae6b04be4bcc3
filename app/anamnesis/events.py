"""Append-only JSONL sink for non-PII pipeline and safety events."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from anamnesis.config import Settings
from anamnesis.utils import utc_now


class SafetyEventLog:
    """Writes ``{timestamp, event, payload}`` lines to ``<event_log_dir>/logs/events.jsonl``.

    Payloads must already be free of user text; callers build them with
    ``safety_processor.summarize_for_analytics`` or from pipeline metadata.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._root = Path(settings.event_log_dir)
        self._events_file = self._root / "logs" / "events.jsonl"
        if settings.event_log_enabled:
            self._events_file.parent.mkdir(parents=True, exist_ok=True)

    @property
    def enabled(self) -> bool:
        return self._settings.event_log_enabled

    @property
    def path(self) -> Path:
        return self._events_file

    async def append_event(self, event_name: str, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        envelope = {
            "timestamp": utc_now().isoformat(),
            "event": event_name,
            "payload": payload,
        }
        with self._events_file.open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(envelope, ensure_ascii=True, default=str) + "\n")

    def read_events(self) -> list[dict[str, Any]]:
        if not self._events_file.exists():
            return []
        lines = self._events_file.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]
