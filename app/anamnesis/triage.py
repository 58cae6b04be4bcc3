"""Rule-based triage: symptom severity tiers, crisis patterns and conservative escalation."""

from __future__ import annotations

from typing import Any

from anamnesis.safety_rules import (
    CONSERVATIVE_BIAS_RULES,
    EMERGENCY_SYMPTOMS,
    GERIATRIC_AGE,
    MULTIPLE_SYMPTOM_COUNT,
    PEDIATRIC_AGE_LIMIT,
    URGENT_SYMPTOMS,
    CrisisAssessment,
    assess_mental_health_crisis,
    breathing_mentioned,
    chest_mentioned,
    find_red_flags,
    sanitize_for_privacy,
)
from anamnesis.schemas import LayerContext, SeverityAssessment, Symptom, Triage
from anamnesis.utils import escalate_one_level, max_severity, max_triage, unique_preserving

SUMMARY_INPUT_LIMIT = 200


def assess_severity(symptoms: list[Symptom]) -> SeverityAssessment:
    """Count active symptoms per tier. Missing severity is counted as MODERATE."""
    counts = {"MILD": 0, "MODERATE": 0, "SEVERE": 0, "SHARP": 0, "EMERGENCY": 0}
    highest: str | None = None
    for symptom in symptoms:
        if symptom.negated:
            continue
        severity = symptom.severity or "MODERATE"
        counts[severity] += 1
        highest = max_severity(highest, severity)
    return SeverityAssessment(
        emergency_count=counts["EMERGENCY"],
        severe_count=counts["SEVERE"],
        sharp_count=counts["SHARP"],
        moderate_count=counts["MODERATE"],
        mild_count=counts["MILD"],
        total_symptoms=sum(counts.values()),
        highest_severity=highest,
    )


def _symptom_names(active: list[Symptom], crisis: CrisisAssessment) -> list[str]:
    names: list[str] = []
    for symptom in active:
        names.append(symptom.name.lower())
        if symptom.name == "headache" and symptom.severity in {"SEVERE", "SHARP", "EMERGENCY"}:
            names.append("severe headache")
    names.extend(crisis.symptoms)
    return unique_preserving(names)


def _bias_rule_fires(
    condition: str,
    *,
    text: str,
    active: list[Symptom],
    crisis: CrisisAssessment,
    age: int | None,
) -> bool:
    names = {s.name for s in active}
    if condition == "ambiguous_chest_symptoms":
        return chest_mentioned(text) and "chest pain" not in names
    if condition == "breathing_concerns":
        return breathing_mentioned(text) or "shortness of breath" in names
    if condition == "mental_health_indicators":
        return crisis.is_crisis and not crisis.is_high
    if condition == "pediatric_symptoms":
        return age is not None and age < PEDIATRIC_AGE_LIMIT and bool(active)
    if condition == "elderly_symptoms":
        return age is not None and age >= GERIATRIC_AGE and len(active) > 1
    if condition == "multiple_symptoms":
        return len(active) >= MULTIPLE_SYMPTOM_COUNT
    raise ValueError(f"Unknown bias rule: {condition}")


def generate_recommended_actions(level: str, *, mental_health_crisis: bool = False, flags: list[str] | None = None) -> list[str]:
    flags = flags or []
    if level == "EMERGENCY" and mental_health_crisis:
        actions = [
            "Call emergency services or a crisis line immediately.",
            "Do not stay alone; reach out to someone you trust now.",
            "Remove access to anything that could be used for self-harm.",
        ]
    elif level == "EMERGENCY":
        actions = [
            "Call emergency services immediately.",
            "Do not drive yourself to the hospital.",
            "Bring a list of current medications.",
            "Have someone stay with you if possible.",
        ]
    elif level == "URGENT":
        actions = [
            "Seek medical attention within the next few hours.",
            "Monitor symptoms for any worsening.",
            "Prepare a list of symptoms and medications.",
            "Consider urgent care or the emergency department.",
        ]
    else:
        actions = [
            "Schedule an appointment with a healthcare provider.",
            "Monitor symptoms and seek care if they worsen.",
            "Keep a note of how symptoms change over time.",
        ]

    if "CHEST_SYMPTOMS" in flags:
        actions.append("Avoid physical exertion until you have been assessed.")
    if "BREATHING_SYMPTOMS" in flags:
        actions.append("Sit upright and rest; use a prescribed inhaler if you have one.")
    return actions


def perform_triage(ctx: LayerContext) -> Triage:
    """Classify the turn as NON_URGENT, URGENT or EMERGENCY.

    Negated symptoms never contribute. Every rule can only hold or raise the level;
    the conservative bias rules each lift it by one step.
    """
    text = ctx.user_input or ""
    active = [s for s in ctx.symptoms if not s.negated]
    assessment = assess_severity(active)
    crisis = assess_mental_health_crisis(text)
    age = ctx.demographics.age if ctx.demographics else None

    level = "NON_URGENT"
    reasons: list[str] = []
    flags: list[str] = []

    if assessment.emergency_count:
        level = "EMERGENCY"
        emergency_names = [s.name for s in active if (s.severity or "MODERATE") == "EMERGENCY"]
        reasons.append(f"Emergency-level symptoms reported: {', '.join(emergency_names)}.")
        flags.append("EMERGENCY_SYMPTOMS_DETECTED")

    if crisis.is_high:
        level = "EMERGENCY"
        reasons.append("Mental health crisis language requires immediate intervention.")
        flags.append("MENTAL_HEALTH_CRISIS")
        if "suicidal ideation" in crisis.symptoms:
            flags.append("SUICIDE_RISK")

    if assessment.severe_count + assessment.sharp_count >= 1:
        level = max_triage(level, "URGENT")
        reasons.append("Severe or sharp symptoms require prompt evaluation.")
        flags.append("SEVERE_SYMPTOMS")
    elif assessment.moderate_count >= 2:
        level = max_triage(level, "URGENT")
        reasons.append("Several moderate symptoms together require prompt evaluation.")

    for flag in find_red_flags(text, EMERGENCY_SYMPTOMS):
        level = "EMERGENCY"
        reasons.append(f"{flag.description}.")
        flags.append("CRITICAL_SYMPTOMS")
    for flag in find_red_flags(text, URGENT_SYMPTOMS):
        level = max_triage(level, "URGENT")
        reasons.append(f"{flag.description}.")

    for rule in CONSERVATIVE_BIAS_RULES:
        if not _bias_rule_fires(rule.condition, text=text, active=active, crisis=crisis, age=age):
            continue
        escalated = escalate_one_level(level)
        flags.append(rule.flag)
        if escalated != level:
            reasons.append(f"{rule.description} (raised {level} to {escalated}).")
            flags.append("CONSERVATIVE_ESCALATION")
            level = escalated

    emergency_protocol = level == "EMERGENCY"
    if emergency_protocol:
        flags.append("EMERGENCY_PROTOCOL_ACTIVATED")

    flags = unique_preserving(flags)
    return Triage(
        level=level,
        reasons=unique_preserving(reasons),
        symptom_names=_symptom_names(active, crisis),
        is_high_risk=level != "NON_URGENT",
        severity_assessment=assessment,
        safety_flags=flags,
        emergency_protocol=emergency_protocol,
        mental_health_crisis=crisis.is_high,
        recommended_actions=generate_recommended_actions(
            level, mental_health_crisis=crisis.is_high, flags=flags
        ),
    )


def generate_triage_summary(triage: Triage, user_input: str) -> dict[str, Any]:
    excerpt = sanitize_for_privacy(user_input)
    if len(excerpt) > SUMMARY_INPUT_LIMIT:
        excerpt = excerpt[:SUMMARY_INPUT_LIMIT] + "..."
    assessment = triage.severity_assessment
    return {
        "level": triage.level,
        "summary": (
            f"{triage.level} triage with {assessment.total_symptoms} active symptom(s); "
            f"highest severity {assessment.highest_severity or 'none'}."
        ),
        "input_excerpt": excerpt,
        "symptoms": list(triage.symptom_names),
        "safety_flags": list(triage.safety_flags),
        "reasons": list(triage.reasons),
        "emergency_protocol": triage.emergency_protocol,
    }
