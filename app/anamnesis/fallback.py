"""Deterministic fallback responses and safety post-processing of model output."""

from __future__ import annotations

import re
from typing import Any, Sequence

from anamnesis.disclaimers import BASE_DISCLAIMERS, CRISIS_DISCLAIMER, EMERGENCY_DISCLAIMER
from anamnesis.safety_rules import filter_overconfident_language
from anamnesis.schemas import FallbackResponse

SAFETY_DISCLAIMERS = {
    "emergency": f"{EMERGENCY_DISCLAIMER} Call emergency services or go to the nearest emergency department.",
    "mental_health": f"{CRISIS_DISCLAIMER} If you are in crisis, contact a crisis line or emergency services.",
    "general": " ".join(BASE_DISCLAIMERS),
    "fallback": "Automated guidance is unavailable right now. Please consult a qualified healthcare professional.",
    "medication": "Medication information is general only. Confirm doses and interactions with a pharmacist or prescriber.",
}

EMERGENCY_NOTICE_MARKER = "EMERGENCY NOTICE"
MENTAL_HEALTH_NOTICE_MARKER = "MENTAL HEALTH NOTICE"
SAFE_FALLBACK_NOTE = "Safety note: the original response was replaced due to safety concerns."

CHEST_PAIN_RESPONSE = """CHEST PAIN EMERGENCY DETECTED

Call emergency services immediately if you have:
- Pain spreading to the shoulder, arm, neck, or jaw
- Difficulty breathing or shortness of breath
- Palpitations or an irregular heartbeat
- Sweating, nausea, or lightheadedness
- A crushing or pressure sensation in the chest

Immediate actions:
1. Call emergency services now if symptoms are severe
2. Sit down and rest
3. Loosen tight clothing
4. Stay calm and keep monitoring your symptoms

This could be a heart attack or another life-threatening condition. Do not wait to seek emergency care."""

BREATHING_RESPONSE = """BREATHING EMERGENCY DETECTED

Call emergency services immediately. This is a medical emergency.

Immediate actions:
1. Call emergency services now
2. Sit upright in the most comfortable position
3. Loosen clothing around the neck and chest
4. Stay as calm as possible
5. Breathe slowly if you are able

Difficulty breathing can indicate a heart attack, an asthma attack, an allergic reaction, or a pulmonary embolism."""

_CHEST_CUES = ("chest pain", "chest hurt", "heart pain", "chest pressure", "chest tightness")
_BREATHING_CUES = ("can't breathe", "cannot breathe", "difficulty breathing", "shortness of breath", "short of breath")

_CAUTIONARY_REWRITES = (
    (re.compile(r"\b(infection|pneumonia|bronchitis|flu)\b", re.IGNORECASE), r"possible \1"),
    (re.compile(r"\b(you should|you must)\b", re.IGNORECASE), "you may want to consider"),
    (re.compile(r"\b(this is definitely|certainly|obviously)\b", re.IGNORECASE), "this may be"),
)

PROHIBITED_PHRASES = (
    "you definitely have",
    "the diagnosis is",
    "you're suffering from",
    "take this medication",
    "don't worry",
    "it's nothing serious",
)
_EMERGENCY_CONTENT = ("emergency", "911", "call your doctor", "seek help")
_MEDICATION_CUES = ("medication", "drug", "pill", "dose", "dosage")
HIGH_RISK_REVIEW_KEYWORDS = (
    "surgery",
    "hospital",
    "medication",
    "prescription",
    "dosage",
    "treatment plan",
    "diagnosis",
    "serious condition",
)


def _emergency_fallback(original_query: str) -> FallbackResponse:
    lowered = original_query.lower()
    if any(cue in lowered for cue in _CHEST_CUES):
        return FallbackResponse(
            response=CHEST_PAIN_RESPONSE,
            type="emergency",
            disclaimer=SAFETY_DISCLAIMERS["emergency"],
            recommended_actions=[
                "Call emergency services immediately if experiencing severe symptoms",
                "Sit down and remain calm",
                "Monitor for worsening symptoms",
            ],
            follow_up_questions=[
                "What are the warning signs for future chest pain episodes?",
                "When should I call emergency services again?",
                "What heart attack prevention steps should I know?",
            ],
            fallback_reason="safety_concern",
        )
    if any(cue in lowered for cue in _BREATHING_CUES):
        return FallbackResponse(
            response=BREATHING_RESPONSE,
            type="emergency",
            disclaimer=SAFETY_DISCLAIMERS["emergency"],
            recommended_actions=[
                "Call emergency services immediately",
                "Sit upright in a comfortable position",
                "Loosen tight clothing",
                "Stay calm and breathe slowly",
            ],
            follow_up_questions=[
                "What breathing techniques can help?",
                "What are the warning signs?",
            ],
            fallback_reason="safety_concern",
        )
    return FallbackResponse(
        response=(
            "This may be a medical emergency. Automated guidance is not adequate for emergency situations."
        ),
        type="emergency",
        disclaimer=SAFETY_DISCLAIMERS["emergency"],
        recommended_actions=[
            "Call emergency services immediately",
            "Seek immediate medical attention",
            "Do not rely on automated assistance for emergency care",
        ],
        follow_up_questions=[
            "How can I get immediate help?",
            "What should I do while waiting for help?",
        ],
        fallback_reason="safety_concern",
    )


def generate_fallback_response(
    original_query: str | None = "",
    reason: str = "ai_failure",
    triage_level: str | None = "NON_URGENT",
    is_emergency: bool = False,
    is_mental_health: bool = False,
) -> FallbackResponse:
    """Pick a canned response for when model output is unavailable or unsafe.

    Checked in order: emergency, mental health, urgent triage, technical failure,
    safety concern, then ambiguous input. The result is never empty.
    """
    query = str(original_query or "")
    level = str(triage_level or "").upper()

    if is_emergency:
        return _emergency_fallback(query)

    if is_mental_health:
        return FallbackResponse(
            response=(
                "It sounds like you may be going through a difficult time. Mental health concerns "
                "need specialised care that this assistant cannot provide."
            ),
            type="mental_health",
            disclaimer=SAFETY_DISCLAIMERS["mental_health"],
            recommended_actions=[
                "Reach out to a mental health professional",
                "Contact a crisis line if needed",
                "Talk to someone you trust",
            ],
            fallback_reason="safety_concern",
        )

    if level in {"URGENT", "EMERGENCY"}:
        return FallbackResponse(
            response=(
                "Your symptoms suggest you may need urgent medical attention. Automated guidance is not "
                "adequate for potentially serious conditions."
            ),
            type="general",
            disclaimer=SAFETY_DISCLAIMERS["general"],
            recommended_actions=[
                "Contact your healthcare provider immediately",
                "Visit an urgent care centre or emergency department",
                "Monitor your symptoms closely",
            ],
            fallback_reason="safety_concern" if reason == "safety_concern" else "ai_failure",
        )

    if reason in {"ai_failure", "technical_error"}:
        return FallbackResponse(
            response="Technical difficulties are preventing reliable medical guidance right now.",
            type="technical_error",
            disclaimer=SAFETY_DISCLAIMERS["fallback"],
            recommended_actions=[
                "Try again in a few minutes",
                "Contact your healthcare provider for medical questions",
                "Seek professional medical advice if symptoms persist",
            ],
            fallback_reason=reason,
        )

    if reason == "safety_concern":
        return FallbackResponse(
            response="Appropriate guidance cannot be given for this situation due to safety considerations.",
            type="general",
            disclaimer=SAFETY_DISCLAIMERS["general"],
            recommended_actions=[
                "Consult a healthcare professional",
                "Share complete symptom information with your doctor",
                "Seek appropriate medical evaluation",
            ],
            fallback_reason="safety_concern",
        )

    return FallbackResponse(
        response="The question was not clear enough to give safe guidance.",
        type="general",
        disclaimer=SAFETY_DISCLAIMERS["general"],
        requires_human_intervention=False,
        recommended_actions=[
            "Try rephrasing with more specific symptoms",
            "Include details such as duration and severity",
            "Consult a healthcare provider for complex concerns",
        ],
        fallback_reason="ambiguous_input",
    )


def add_cautionary_language(response: str) -> str:
    cautious = response
    for pattern, replacement in _CAUTIONARY_REWRITES:
        cautious = pattern.sub(replacement, cautious)
    return cautious


def select_safety_disclaimer(
    *,
    is_emergency: bool = False,
    is_mental_health: bool = False,
    detected_symptoms: Sequence[str] = (),
) -> str:
    if is_emergency:
        return SAFETY_DISCLAIMERS["emergency"]
    if is_mental_health:
        return SAFETY_DISCLAIMERS["mental_health"]
    if any(cue in str(name).lower() for name in detected_symptoms for cue in _MEDICATION_CUES):
        return SAFETY_DISCLAIMERS["medication"]
    return SAFETY_DISCLAIMERS["general"]


def process_ai_response_for_safety(
    ai_response: str,
    *,
    is_emergency: bool = False,
    is_mental_health: bool = False,
    detected_symptoms: Sequence[str] = (),
    append_disclaimer: bool = True,
) -> str:
    """Soften model output and append the notice and disclaimer it must carry.

    ``append_disclaimer=False`` skips the trailing disclaimer when a role policy
    disclaimer is already present; emergency notices are always kept.
    """
    processed = add_cautionary_language(filter_overconfident_language(ai_response or ""))
    notice = ""
    if is_emergency:
        notice = f"\n\n{EMERGENCY_NOTICE_MARKER}: {SAFETY_DISCLAIMERS['emergency']}"
    elif is_mental_health:
        notice = f"\n\n{MENTAL_HEALTH_NOTICE_MARKER}: {SAFETY_DISCLAIMERS['mental_health']}"
    if not append_disclaimer:
        return f"{processed}{notice}"
    disclaimer = select_safety_disclaimer(
        is_emergency=is_emergency,
        is_mental_health=is_mental_health,
        detected_symptoms=detected_symptoms,
    )
    return f"{processed}{notice}\n\n{disclaimer}"


def validate_response_safety(response: str) -> dict[str, Any]:
    violations: list[str] = []
    risk_level = "low"
    lowered = (response or "").lower()

    for phrase in PROHIBITED_PHRASES:
        if phrase in lowered:
            violations.append(f'Contains prohibited diagnostic phrase: "{phrase}"')
            risk_level = "high"

    if not any(disclaimer[:20] in (response or "") for disclaimer in SAFETY_DISCLAIMERS.values()):
        violations.append("Missing required medical disclaimer")
        if risk_level == "low":
            risk_level = "medium"

    if any(keyword in lowered for keyword in _EMERGENCY_CONTENT) and EMERGENCY_NOTICE_MARKER not in (response or ""):
        violations.append("Emergency content without an emergency notice")
        risk_level = "high"

    return {"is_valid": not violations, "violations": violations, "risk_level": risk_level}


def create_safe_fallback(original_response: str = "", violations: Sequence[str] = ()) -> str:
    fallback = generate_fallback_response("", reason="safety_concern")
    return f"{fallback.response}\n\n{SAFE_FALLBACK_NOTE}\n\n{fallback.disclaimer}"


def requires_human_review(response: str, *, is_emergency: bool = False, is_mental_health: bool = False) -> bool:
    if is_emergency or is_mental_health:
        return True
    lowered = (response or "").lower()
    return any(keyword in lowered for keyword in HIGH_RISK_REVIEW_KEYWORDS)
