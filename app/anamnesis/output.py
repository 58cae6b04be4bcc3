"""Normalize raw router output into the strict LayeredResponse wire contract."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from anamnesis.schemas import LayeredMetadata, LayeredResponse, NormalizationResult

logger = logging.getLogger(__name__)

FALLBACK_GUIDANCE = "System fallback: Provide general, low-risk educational guidance."

_WIRE_LEVELS = frozenset({"emergency", "urgent", "non_urgent"})


def _pick(raw: Mapping[str, Any] | None, camel: str, snake: str) -> Any:
    if not isinstance(raw, Mapping):
        return None
    if camel in raw:
        return raw[camel]
    return raw.get(snake)


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else str(value if value is not None else "")


def _as_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _coerce_metadata(raw: Any, errors: list[str]) -> LayeredMetadata:
    processing_time = _pick(raw, "processingTime", "processing_time")
    if processing_time is None:
        processing_time = 0
    elif not _is_number(processing_time) or processing_time < 0:
        errors.append("metadata.processingTime invalid")
        processing_time = 0

    confidence = _pick(raw, "intentConfidence", "intent_confidence")
    if not _is_number(confidence) or not 0.0 <= confidence <= 1.0:
        confidence = None

    level = _pick(raw, "triageLevel", "triage_level")
    body_system = _pick(raw, "bodySystem", "body_system")
    symptoms = _pick(raw, "symptoms", "symptoms")
    timings = _pick(raw, "stageTimings", "stage_timings")
    if isinstance(timings, Mapping):
        timings = {str(stage): int(ms) for stage, ms in timings.items() if _is_number(ms)}
    else:
        timings = None

    return LayeredMetadata(
        processing_time=int(processing_time),
        intent_confidence=confidence,
        triage_level=level if level in _WIRE_LEVELS else None,
        body_system=body_system if isinstance(body_system, str) else None,
        symptoms=_as_list(symptoms) if isinstance(symptoms, (list, tuple)) else None,
        stage_timings=timings,
    )


def normalize_router_result(partial: Mapping[str, Any] | None) -> NormalizationResult:
    """Build a LayeredResponse from an untrusted dict.

    Keys are accepted in camelCase or snake_case. Missing or malformed fields
    are coerced to safe defaults; ``ok=False`` only reports what was coerced.
    """
    raw = partial if isinstance(partial, Mapping) else {}
    errors: list[str] = []

    metadata = _coerce_metadata(_pick(raw, "metadata", "metadata"), errors)
    enhanced_prompt = _pick(raw, "enhancedPrompt", "enhanced_prompt")
    atd = _pick(raw, "atd", "atd")

    result = LayeredResponse(
        user_input=_as_str(_pick(raw, "userInput", "user_input")),
        enhanced_prompt=_as_str(enhanced_prompt or FALLBACK_GUIDANCE),
        is_high_risk=bool(_pick(raw, "isHighRisk", "is_high_risk")),
        disclaimers=_as_list(_pick(raw, "disclaimers", "disclaimers")),
        suggestions=_as_list(_pick(raw, "suggestions", "suggestions")),
        metadata=metadata,
        atd=_as_list(atd) if atd else None,
    )

    if not result.user_input:
        errors.append("userInput required")
    if not result.enhanced_prompt:
        errors.append("enhancedPrompt required")

    if errors:
        logger.warning("Router result failed contract checks: %s", ", ".join(errors))
    return NormalizationResult(ok=not errors, errors=errors, result=result)
