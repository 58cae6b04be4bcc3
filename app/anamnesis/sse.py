"""Server-sent event framing for the streaming query endpoint."""

from __future__ import annotations

import json
from typing import Any

KEEP_ALIVE = ": keep-alive\n\n"


def format_sse(event: str, payload: dict[str, Any]) -> str:
    data = json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)
    return f"event: {event}\ndata: {data}\n\n"


def parse_sse(stream: str) -> list[tuple[str, dict[str, Any]]]:
    """Split a buffered SSE body into ``(event, payload)`` pairs, skipping comments."""
    frames: list[tuple[str, dict[str, Any]]] = []
    for block in stream.split("\n\n"):
        event = ""
        data = ""
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = line[len("data: "):]
        if event and data:
            frames.append((event, json.loads(data)))
    return frames
