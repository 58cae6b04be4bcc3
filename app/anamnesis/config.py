"""Runtime settings and feature flags for the triage pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _region(value: str | None) -> str:
    if not value:
        return "US"
    token = value.strip().upper()
    mapping = {
        "US": "US",
        "USA": "US",
        "UK": "UK",
        "GB": "UK",
        "EU": "EU",
        "AU": "AU",
        "CA": "CA",
    }
    return mapping.get(token, "US")


@dataclass(frozen=True)
class Settings:
    app_name: str = field(default_factory=lambda: os.getenv("ANAMNESIS_APP_NAME", "anamnesis-triage"))
    log_level: str = field(default_factory=lambda: os.getenv("ANAMNESIS_LOG_LEVEL", "INFO").upper())
    default_region: str = field(default_factory=lambda: _region(os.getenv("ANAMNESIS_DEFAULT_REGION")))

    # Question classifier toggles.
    enable_classifier: bool = field(
        default_factory=lambda: _as_bool(os.getenv("ANAMNESIS_ENABLE_CLASSIFIER"), default=True)
    )
    enable_med_query_classifier: bool = field(
        default_factory=lambda: _as_bool(os.getenv("ANAMNESIS_ENABLE_MED_QUERY_CLASSIFIER"), default=False)
    )

    # Response shaping. All default to off for incremental rollout.
    enable_role_mode: bool = field(
        default_factory=lambda: _as_bool(os.getenv("ANAMNESIS_ENABLE_ROLE_MODE"), default=False)
    )
    enable_concise_mode: bool = field(
        default_factory=lambda: _as_bool(os.getenv("ANAMNESIS_ENABLE_CONCISE_MODE"), default=False)
    )
    enable_expansion_prompt: bool = field(
        default_factory=lambda: _as_bool(os.getenv("ANAMNESIS_ENABLE_EXPANSION_PROMPT"), default=False)
    )

    concise_max_bullets: int = field(
        default_factory=lambda: _as_int(os.getenv("ANAMNESIS_CONCISE_MAX_BULLETS"), 5)
    )
    concise_max_sentences: int = field(
        default_factory=lambda: _as_int(os.getenv("ANAMNESIS_CONCISE_MAX_SENTENCES"), 3)
    )
    concise_max_tokens: int = field(
        default_factory=lambda: _as_int(os.getenv("ANAMNESIS_CONCISE_MAX_TOKENS"), 300)
    )
    expansion_ttl_sec: float = field(
        default_factory=lambda: float(os.getenv("ANAMNESIS_EXPANSION_TTL_SEC", "300"))
    )

    # Non-PII analytics sink.
    event_log_enabled: bool = field(
        default_factory=lambda: _as_bool(os.getenv("ANAMNESIS_EVENT_LOG_ENABLED"), default=False)
    )
    event_log_dir: str = field(
        default_factory=lambda: os.getenv("ANAMNESIS_EVENT_LOG_DIR", ".anamnesis_events")
    )

    def is_medication_enhancement_enabled(self) -> bool:
        return self.enable_med_query_classifier or self.enable_role_mode

    def is_response_format_enabled(self) -> bool:
        return self.enable_concise_mode or self.enable_expansion_prompt


def get_settings() -> Settings:
    return Settings()
