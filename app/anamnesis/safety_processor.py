"""Parallel safety pass: triage, emergency detection and ATD routing for one turn."""

from __future__ import annotations

import logging
import re
from typing import Any

from anamnesis.atd_router import count_critical_flags, route_to_provider
from anamnesis.config import Settings, get_settings
from anamnesis.context import create_layer_context, update_layer_context
from anamnesis.emergency import detect_emergency
from anamnesis.fallback import generate_fallback_response, process_ai_response_for_safety
from anamnesis.intent_parser import parse_intent
from anamnesis.prompt_enhancer import CLINICIAN_DISCLAIMER, PUBLIC_DISCLAIMER
from anamnesis.schemas import (
    Demographics,
    SafetyContext,
    SafetyNotice,
    SafetyProcessingResult,
    TriageWarning,
)
from anamnesis.triage import perform_triage

logger = logging.getLogger(__name__)

GENERAL_NOTICE = "This is not a medical diagnosis. Always consult a licensed healthcare provider for medical decisions."
ASSESSMENT_UNAVAILABLE = "Unable to perform a medical safety assessment. Please consult a healthcare provider."
_ROLE_DISCLAIMER_MARKERS = (CLINICIAN_DISCLAIMER, PUBLIC_DISCLAIMER, "ROLE POLICY")
_REQUIRED_FIELDS = (
    "safety_context",
    "safety_notices",
    "should_block_ai",
    "requires_human_review",
    "emergency_protocol",
    "route_to_provider",
)


def has_role_disclaimers(settings: Settings, *texts: str) -> bool:
    if not settings.enable_role_mode:
        return False
    combined = " ".join(t for t in texts if t)
    return any(marker in combined for marker in _ROLE_DISCLAIMER_MARKERS)


def _safety_notices(context: SafetyContext) -> list[SafetyNotice]:
    notices: list[SafetyNotice] = []
    emergency = context.emergency
    routing = context.atd_routing

    if emergency.is_emergency:
        mental = emergency.emergency_type == "mental_health"
        notices.append(
            SafetyNotice(
                type="mental_health" if mental else "emergency",
                priority="critical" if emergency.severity == "critical" else "high",
                title="Mental health crisis" if mental else "Possible emergency",
                message=emergency.emergency_message,
                actions=list(emergency.immediate_actions),
            )
        )
    elif context.triage.emergency_protocol:
        # Triage escalated without a detector pattern; the protocol still needs a visible notice.
        notices.append(
            SafetyNotice(
                type="mental_health" if context.triage.mental_health_crisis else "emergency",
                priority="high",
                title="Possible emergency",
                message=routing.patient_guidance,
                actions=list(context.triage.recommended_actions),
            )
        )

    if routing.route_to_provider and not notices:
        notices.append(
            SafetyNotice(
                type="urgent" if routing.provider_type == "urgent" else "info",
                priority="medium" if routing.priority_score >= 4 else "low",
                title="Provider follow-up recommended",
                message=routing.patient_guidance,
                actions=list(routing.structured_data.recommended_actions),
            )
        )

    notices.append(SafetyNotice(type="info", priority="low", title="Medical disclaimer", message=GENERAL_NOTICE))
    return notices


def _triage_warning(context: SafetyContext) -> TriageWarning | None:
    triage = context.triage
    emergency = context.emergency
    if triage.level == "NON_URGENT" and not emergency.is_emergency:
        return None
    protocol = triage.emergency_protocol or emergency.is_emergency
    title = "Emergency" if protocol else "Urgent evaluation recommended"
    message = " ".join(triage.reasons) or emergency.emergency_message
    return TriageWarning(
        level=triage.level,
        title=title,
        message=message,
        show_emergency_contacts=protocol,
        contacts=emergency.emergency_contacts if protocol else None,
    )


def should_block_ai(context: SafetyContext) -> bool:
    triage = context.triage
    emergency = context.emergency
    if emergency.is_emergency:
        return True
    if triage.mental_health_crisis and emergency.severity == "critical":
        return True
    return count_critical_flags(triage.safety_flags) >= 2


def process_medical_safety(
    user_input: str | None,
    region: str | None = None,
    demographics: Demographics | dict | None = None,
    session_id: str | None = None,
    settings: Settings | None = None,
) -> SafetyProcessingResult:
    """Run the safety pass. Internal errors yield a blocking, review-required result."""
    settings = settings or get_settings()
    region = region or settings.default_region
    try:
        ctx = create_layer_context(user_input, demographics)
        parsed = parse_intent(ctx.user_input)
        ctx = update_layer_context(ctx, intent=parsed.intent, symptoms=parsed.symptoms)
        triage = perform_triage(ctx)
        emergency = detect_emergency(ctx.user_input, region)
        routing = route_to_provider(
            triage,
            emergency,
            ctx.user_input,
            demographics=ctx.demographics,
            session_id=session_id,
            symptoms=ctx.symptoms,
        )
        context = SafetyContext(triage=triage, emergency=emergency, atd_routing=routing)

        blocked = should_block_ai(context)
        fallback = None
        if blocked:
            mental = triage.mental_health_crisis or emergency.emergency_type == "mental_health"
            fallback = generate_fallback_response(
                ctx.user_input,
                reason="safety_concern" if emergency.is_emergency else "ambiguous_input",
                triage_level=triage.level,
                is_emergency=emergency.is_emergency and not mental,
                is_mental_health=mental,
            )

        return SafetyProcessingResult(
            safety_context=context,
            safety_notices=_safety_notices(context),
            triage_warning=_triage_warning(context),
            fallback_response=fallback,
            should_block_ai=blocked,
            requires_human_review=routing.route_to_provider or triage.mental_health_crisis,
            emergency_protocol=triage.emergency_protocol or emergency.is_emergency,
            route_to_provider=routing.route_to_provider,
            priority_score=routing.priority_score,
        )
    except Exception:
        logger.error("Medical safety processing failed", exc_info=True, extra={"error_code": "SAFETY_FAILED"})
        return SafetyProcessingResult(
            safety_notices=[
                SafetyNotice(type="info", priority="high", title="Assessment unavailable", message=ASSESSMENT_UNAVAILABLE)
            ],
            fallback_response=generate_fallback_response(str(user_input or ""), reason="technical_error"),
            should_block_ai=True,
            requires_human_review=True,
            priority_score=1,
            error_code="SAFETY_FAILED",
        )


def validate_safety_processing(result: SafetyProcessingResult | dict[str, Any]) -> bool:
    data = result.model_dump() if isinstance(result, SafetyProcessingResult) else dict(result)
    missing = [name for name in _REQUIRED_FIELDS if name not in data]
    if missing:
        logger.error("Safety processing result missing fields: %s", ", ".join(missing))
        return False
    if data["emergency_protocol"]:
        notices = data.get("safety_notices") or []
        if not any(n.get("type") in {"emergency", "mental_health"} for n in notices):
            logger.error("Emergency protocol active without an emergency notice")
            return False
    return True


def summarize_for_analytics(result: SafetyProcessingResult, session_id: str | None = None) -> dict[str, Any]:
    """Non-PII record for the analytics sink. Never includes user text."""
    triage = result.safety_context.triage if result.safety_context else None
    return {
        "session_id": session_id or "anonymous",
        "triage_level": triage.level if triage else None,
        "emergency_detected": result.emergency_protocol,
        "routed_to_provider": result.route_to_provider,
        "priority_score": result.priority_score,
        "safety_flag_count": len(triage.safety_flags) if triage else 0,
        "symptom_count": len(triage.symptom_names) if triage else 0,
        "ai_blocked": result.should_block_ai,
        "error_code": result.error_code,
    }


_INVISIBLE = re.compile("[\u200b-\u200d\ufeff\u00a0]")
_BULLETS = re.compile(r"^[ \t]*[•◦●▣*]+", re.MULTILINE)
_DASH_RUNS = re.compile(r"-\s*[-–]{2,}")
_DASH_LINES = re.compile(r"^[ \t]*[-–]{2,}[ \t]*$", re.MULTILINE)
_EXTRA_BREAKS = re.compile(r"\n{3,}")
_SPACE_RUNS = re.compile(r"[ \t]{2,}")


def clean_stray_markers(text: str) -> str:
    cleaned = _INVISIBLE.sub(" ", text or "")
    cleaned = _BULLETS.sub("-", cleaned)
    cleaned = _DASH_RUNS.sub("-", cleaned)
    cleaned = _DASH_LINES.sub("", cleaned)
    cleaned = _EXTRA_BREAKS.sub("\n\n", cleaned)
    cleaned = _SPACE_RUNS.sub(" ", cleaned)
    return cleaned.rstrip()


def process_final_response(
    ai_output: str,
    result: SafetyProcessingResult,
    system_prompt: str = "",
    settings: Settings | None = None,
) -> str:
    """Apply language filters, notices and disclaimers to a model response, then tidy it."""
    settings = settings or get_settings()
    context = result.safety_context
    processed = process_ai_response_for_safety(
        ai_output,
        is_emergency=bool(context and context.emergency.is_emergency),
        is_mental_health=bool(context and context.triage.mental_health_crisis),
        detected_symptoms=context.triage.symptom_names if context else (),
        append_disclaimer=not has_role_disclaimers(settings, system_prompt, ai_output),
    )
    return clean_stray_markers(processed)
