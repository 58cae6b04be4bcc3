"""Per-turn layer context: construction, merge updates and progressive validation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from anamnesis.schemas import ContextMetadata, Demographics, LayerContext, Triage
from anamnesis.utils import max_triage, triage_rank, unique_preserving

# C0 controls except tab and newline, plus DEL.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_CONTEXT_FIELDS = set(LayerContext.model_fields)


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    code: str
    message: str


def canonicalize_input(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode("utf-8", errors="replace")
    elif isinstance(raw, str):
        text = raw
    else:
        text = str(raw)
    return _CONTROL_CHARS.sub(" ", text).strip()


def create_layer_context(user_input: Any, demographics: Demographics | dict | None = None) -> LayerContext:
    if isinstance(demographics, dict):
        demographics = Demographics.model_validate(demographics)
    return LayerContext(user_input=canonicalize_input(user_input), demographics=demographics)


def _merge_triage(current: Triage | None, incoming: Triage) -> Triage:
    if current is None or triage_rank(incoming.level) >= triage_rank(current.level):
        return incoming

    held = max_triage(current.level, incoming.level)
    return incoming.model_copy(
        update={
            "level": held,
            "is_high_risk": True,
            "reasons": unique_preserving(
                [*incoming.reasons, f"{held} level retained from an earlier assessment."]
            ),
            "safety_flags": unique_preserving([*current.safety_flags, *incoming.safety_flags]),
            "emergency_protocol": current.emergency_protocol or incoming.emergency_protocol,
            "mental_health_crisis": current.mental_health_crisis or incoming.mental_health_crisis,
        }
    )


def update_layer_context(ctx: LayerContext, **patch: Any) -> LayerContext:
    """Merge ``patch`` into ``ctx`` in place.

    A triage patch can only hold or raise the current level, so once a rule has
    set EMERGENCY no later stage can lower it.
    """
    for key, value in patch.items():
        if key not in _CONTEXT_FIELDS:
            raise ValueError(f"Unknown layer context field: {key}")
        if key == "triage" and value is not None:
            value = _merge_triage(ctx.triage, Triage.model_validate(value))
        elif key == "metadata" and isinstance(value, dict):
            value = ctx.metadata.model_copy(update=value)
        elif key == "metadata" and value is None:
            value = ContextMetadata()
        setattr(ctx, key, value)
    return ctx


def validate_layer_context(ctx: LayerContext, *, strict: bool = False) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if not isinstance(ctx.user_input, str):
        issues.append(ValidationIssue("user_input", "type", "user_input must be a string"))
    elif not ctx.user_input.strip():
        issues.append(ValidationIssue("user_input", "empty", "user_input must not be empty"))

    if not strict:
        return issues

    if not ctx.intent or not ctx.intent.type:
        issues.append(ValidationIssue("intent.type", "missing", "intent type is required"))
    if ctx.symptoms is None:
        issues.append(ValidationIssue("symptoms", "missing", "symptoms list is required"))
    if ctx.triage is None:
        issues.append(ValidationIssue("triage.level", "missing", "triage level is required"))
    return issues
