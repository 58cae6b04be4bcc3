"""Disclaimer and advice-to-doctor (ATD) notice selection."""

from __future__ import annotations

from typing import Iterable

from anamnesis.safety_rules import CRISIS_SYMPTOMS
from anamnesis.schemas import DisclaimerPack

BASE_DISCLAIMERS = (
    "This assistant is informational and not a diagnostic tool.",
    "Responses may include general medical information and should not replace a professional evaluation.",
)

CRISIS_DISCLAIMER = "This may be a mental health emergency. Do not delay seeking professional help."
CRISIS_NOTICES = (
    "ATD: This is a mental health crisis requiring immediate medical attention.",
    "Crisis intervention needed - call 988 (National Suicide Prevention Lifeline).",
    "If you are in immediate danger, contact emergency services now.",
)

EMERGENCY_DISCLAIMER = "This may be a medical emergency. Do not delay seeking professional help."
EMERGENCY_NOTICES = (
    "ATD: Call emergency services for immediate medical attention.",
    "If you are alone, consider contacting a neighbor or family member for assistance.",
)

URGENT_DISCLAIMER = "Potentially concerning symptoms reported."
URGENT_NOTICE = "ATD: Seek urgent medical evaluation as soon as possible."
URGENT_SYMPTOM_NOTICES = (
    ("chest pain", "Chest pain can indicate serious heart or lung issues."),
    ("shortness of breath", "Shortness of breath can indicate cardiopulmonary compromise."),
    ("severe headache", "Severe headache with other symptoms may indicate neurological concerns."),
    ("difficulty breathing", "Breathing difficulties require immediate medical attention."),
    ("self harm", "Self-harm behavior requires urgent mental health intervention."),
    ("depression", "Severe depression requires urgent mental health evaluation."),
    ("hopelessness", "Mental health professional consultation recommended."),
    ("anxiety", "Severe anxiety with physical symptoms requires mental health evaluation."),
)

NON_URGENT_DISCLAIMER = "Symptoms described appear non-urgent based on limited information."
MENTAL_HEALTH_NUDGE = "Consider speaking with a mental health professional if symptoms persist or worsen."
_NUDGE_SYMPTOMS = frozenset({"depression", "anxiety", "panic attacks"})


def select_disclaimers(level: str, symptom_names: Iterable[str] = ()) -> DisclaimerPack:
    """Pick disclaimers and ATD notices for a triage level.

    A crisis symptom overrides the level entirely. ``level`` is accepted in
    either case (``EMERGENCY`` or ``emergency``).
    """
    names = {str(name).strip().lower() for name in symptom_names if name}
    level = str(level or "").strip().upper()

    if names & CRISIS_SYMPTOMS:
        return DisclaimerPack(
            disclaimers=(CRISIS_DISCLAIMER, *BASE_DISCLAIMERS),
            atd_notices=CRISIS_NOTICES,
        )

    if level == "EMERGENCY":
        return DisclaimerPack(
            disclaimers=(EMERGENCY_DISCLAIMER, *BASE_DISCLAIMERS),
            atd_notices=EMERGENCY_NOTICES,
        )

    if level == "URGENT":
        notices = [URGENT_NOTICE]
        notices.extend(note for symptom, note in URGENT_SYMPTOM_NOTICES if symptom in names)
        return DisclaimerPack(
            disclaimers=(URGENT_DISCLAIMER, *BASE_DISCLAIMERS),
            atd_notices=tuple(notices),
        )

    # Unknown levels fall through to the non-urgent pack.
    return DisclaimerPack(
        disclaimers=(NON_URGENT_DISCLAIMER, *BASE_DISCLAIMERS),
        atd_notices=(MENTAL_HEALTH_NUDGE,) if names & _NUDGE_SYMPTOMS else (),
    )


def dedupe_disclaimers(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(str(item).strip() for item in items if item and str(item).strip()))
