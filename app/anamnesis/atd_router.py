"""Advice-to-doctor routing: provider type, priority ordinal and structured clinical record."""

from __future__ import annotations

import re
from typing import Sequence

from anamnesis.safety_rules import GERIATRIC_AGE, PEDIATRIC_AGE_LIMIT, sanitize_for_privacy
from anamnesis.schemas import (
    ATDRouting,
    ChiefComplaint,
    ClinicalFlags,
    Demographics,
    EmergencyDetection,
    EmergencySnapshot,
    PatientInfo,
    RiskAssessment,
    StructuredMedicalData,
    Symptom,
    SymptomAnalysis,
    SystemContext,
    Triage,
    TriageSnapshot,
)
from anamnesis.utils import unique_preserving, utc_now

# Ordinal only; tuned per deployment and not comparable across versions.
MAX_PRIORITY = 10
EMERGENCY_PRIORITY = 10
URGENT_PRIORITY = 7
COMPLEX_URGENT_PRIORITY = 8

CRITICAL_FLAG_MARKERS = ("EMERGENCY", "CRISIS", "SUICIDE")
CHIEF_COMPLAINT_LIMIT = 200

HIGH_RISK_COMBINATIONS = (
    (("chest", "breath"), "CARDIOPULMONARY_SYMPTOMS"),
    (("headache", "vision"), "NEUROLOGICAL_SYMPTOMS"),
    (("fever", "confusion"), "SYSTEMIC_INFECTION_RISK"),
    (("bleeding", "pain"), "TRAUMA_CONCERN"),
)

_TIMELINE_PATTERNS = (
    re.compile(r"\d+\s*(?:hour|hr)s?\s*ago", re.IGNORECASE),
    re.compile(r"\d+\s*(?:day)s?\s*ago", re.IGNORECASE),
    re.compile(r"\d+\s*(?:week|wk)s?\s*ago", re.IGNORECASE),
    re.compile(r"for\s+(?:the\s+)?(?:last\s+|past\s+)?\d+\s*(?:minute|hour|day|week|month)s?", re.IGNORECASE),
    re.compile(r"since\s+(?:yesterday|today|this\s+morning|last\s+night)", re.IGNORECASE),
    re.compile(r"\b(?:suddenly|gradually|slowly|quickly)\b", re.IGNORECASE),
)


def count_critical_flags(flags: Sequence[str]) -> int:
    return sum(1 for flag in flags if any(marker in flag for marker in CRITICAL_FLAG_MARKERS))


def _age_group(age: int | None) -> str:
    if age is None:
        return "unknown"
    if age < PEDIATRIC_AGE_LIMIT:
        return "pediatric"
    if age >= GERIATRIC_AGE:
        return "geriatric"
    return "adult"


def extract_timeline(query: str) -> list[str]:
    found: list[str] = []
    for pattern in _TIMELINE_PATTERNS:
        found.extend(match.group(0).strip() for match in pattern.finditer(query or ""))
    return unique_preserving(found)


def _overall_risk(triage: Triage, emergency: EmergencyDetection) -> str:
    if emergency.is_emergency or triage.level == "EMERGENCY":
        return "HIGH"
    if triage.level == "URGENT" or len(triage.safety_flags) > 2:
        return "MODERATE"
    return "LOW"


def _specific_risks(triage: Triage, age: int | None) -> list[str]:
    risks: list[str] = []
    if age is not None and age >= GERIATRIC_AGE:
        risks.append("Age-related complications")
    if age is not None and age < PEDIATRIC_AGE_LIMIT:
        risks.append("Pediatric considerations")
    if "MULTIPLE_SYMPTOMS" in triage.safety_flags:
        risks.append("Complex symptom interaction")
    if triage.mental_health_crisis:
        risks.append("Risk of self-harm")
    if "CHEST_SYMPTOMS" in triage.safety_flags or "chest pain" in triage.symptom_names:
        risks.append("Possible cardiac involvement")
    if "BREATHING_SYMPTOMS" in triage.safety_flags:
        risks.append("Possible respiratory compromise")
    return risks


def _follow_up_urgency(level: str) -> str:
    return {"EMERGENCY": "IMMEDIATE", "URGENT": "WITHIN_24_HOURS"}.get(level, "ROUTINE")


def _reliability_score(triage: Triage, query: str) -> int:
    score = 7
    if len(query.strip()) < 15:
        score -= 2
    if not triage.symptom_names:
        score -= 1
    elif len(triage.symptom_names) >= 2:
        score += 1
    if "CONSERVATIVE_ESCALATION" in triage.safety_flags:
        score -= 1
    return max(1, min(10, score))


def build_structured_data(
    triage: Triage,
    emergency: EmergencyDetection,
    original_query: str,
    *,
    demographics: Demographics | None,
    session_id: str | None,
    symptoms: Sequence[Symptom] = (),
    combinations: Sequence[str] = (),
) -> StructuredMedicalData:
    age = demographics.age if demographics else None
    sanitized = sanitize_for_privacy(original_query)
    if len(sanitized) > CHIEF_COMPLAINT_LIMIT:
        sanitized = sanitized[:CHIEF_COMPLAINT_LIMIT] + "..."

    categories: dict[str, list[str]] = {}
    for symptom in symptoms:
        if symptom.negated:
            continue
        categories.setdefault(symptom.category or "general", []).append(symptom.name)

    primary = triage.symptom_names[:5]
    summary = ", ".join(primary) if primary else "No specific symptoms identified"
    return StructuredMedicalData(
        patient=PatientInfo(
            age=age,
            sex=demographics.sex if demographics else None,
            age_group=_age_group(age),
            session_id=session_id,
        ),
        chief_complaint=ChiefComplaint(sanitized_query=sanitized, summary=summary, primary_symptoms=primary),
        triage=TriageSnapshot(
            level=triage.level,
            reasons=list(triage.reasons),
            safety_flags=list(triage.safety_flags),
            emergency_protocol=triage.emergency_protocol,
        ),
        symptoms=SymptomAnalysis(
            names=list(triage.symptom_names),
            severity_assessment=triage.severity_assessment,
            categories=categories,
            timeline=extract_timeline(original_query),
            high_risk_combinations=list(combinations),
        ),
        emergency=EmergencySnapshot(
            detected=emergency.is_emergency,
            emergency_type=emergency.emergency_type,
            severity=emergency.severity,
            triggered_categories=list(emergency.triggered_categories),
            requires_emergency_services=emergency.requires_emergency_services,
        ),
        clinical_flags=ClinicalFlags(
            is_pediatric=age is not None and age < PEDIATRIC_AGE_LIMIT,
            is_geriatric=age is not None and age >= GERIATRIC_AGE,
            mental_health_crisis=triage.mental_health_crisis or emergency.emergency_type == "mental_health",
            multiple_severe_symptoms=triage.severity_assessment.severe_count >= 2,
            emergency_protocol=triage.emergency_protocol,
        ),
        recommended_actions=list(triage.recommended_actions),
        risk_assessment=RiskAssessment(
            overall_risk=_overall_risk(triage, emergency),
            specific_risks=_specific_risks(triage, age),
            follow_up_urgency=_follow_up_urgency(triage.level),
        ),
        system_context=SystemContext(processed_at=utc_now(), reliability_score=_reliability_score(triage, original_query)),
    )


def generate_provider_message(data: StructuredMedicalData, clinical_flags: Sequence[str]) -> str:
    lines = ["MEDICAL TRIAGE REFERRAL", "", "PATIENT INFO:"]
    if data.patient.age is not None:
        lines.append(f"Age: {data.patient.age}")
    if data.patient.sex:
        lines.append(f"Sex: {data.patient.sex}")
    lines.append(f"Query time: {data.system_context.processed_at.isoformat()}")
    lines.extend(["", f"TRIAGE LEVEL: {data.triage.level}", f"OVERALL RISK: {data.risk_assessment.overall_risk}"])
    if clinical_flags:
        lines.extend(["", f"CLINICAL FLAGS: {', '.join(clinical_flags)}"])
    if data.emergency.detected:
        lines.extend(
            [
                "",
                f"EMERGENCY DETECTED: {data.emergency.emergency_type} ({data.emergency.severity})",
                f"Categories: {', '.join(data.emergency.triggered_categories)}",
            ]
        )
    if data.symptoms.names:
        lines.extend(["", "KEY SYMPTOMS:"])
        lines.extend(f"- {name}" for name in data.symptoms.names)
    lines.extend(["", "TRIAGE REASONING:"])
    lines.extend(f"- {reason}" for reason in data.triage.reasons or ["No escalation rules fired."])
    if data.recommended_actions:
        lines.extend(["", "RECOMMENDED ACTIONS:"])
        lines.extend(f"- {action}" for action in data.recommended_actions)
    lines.extend(["", "SYSTEM NOTES:"])
    if "CONSERVATIVE_ESCALATION" in data.triage.safety_flags:
        lines.append("- Conservative safety bias applied to triage level")
    lines.append(f"- Reliability score: {data.system_context.reliability_score}/10")
    lines.append(f"- Follow-up urgency: {data.risk_assessment.follow_up_urgency}")
    return "\n".join(lines)


def generate_patient_guidance(route: bool, provider_type: str, priority_score: int) -> str:
    if not route:
        return (
            "Based on your symptoms, monitor your condition and consult a healthcare provider "
            "if symptoms worsen or persist."
        )
    if provider_type == "emergency":
        return (
            "SEEK EMERGENCY CARE IMMEDIATELY - Your symptoms suggest you need emergency medical attention. "
            "Call emergency services or go to the emergency department right away."
        )
    if provider_type == "mental_health":
        return (
            "MENTAL HEALTH CRISIS SUPPORT NEEDED - Please reach out for immediate help. "
            "Contact a crisis line or emergency services."
        )
    if provider_type == "urgent":
        return (
            "URGENT MEDICAL ATTENTION NEEDED - Seek medical care within the next few hours. "
            "Visit urgent care or contact your healthcare provider now."
        )
    if priority_score >= 7:
        return "SCHEDULE A MEDICAL APPOINTMENT SOON - Your symptoms warrant evaluation within the next 1-2 days."
    if priority_score >= 4:
        return "CONSULT A HEALTHCARE PROVIDER - Consider an appointment within the next few days."
    return "MEDICAL CONSULTATION RECOMMENDED - Schedule an appointment with your healthcare provider when convenient."


def route_to_provider(
    triage: Triage,
    emergency: EmergencyDetection,
    original_query: str,
    demographics: Demographics | None = None,
    session_id: str | None = None,
    symptoms: Sequence[Symptom] = (),
) -> ATDRouting:
    """Decide whether and where to route a turn for human clinical review."""
    flags: list[str] = []
    route = False
    provider_type = "routine"
    priority = 1

    if triage.level == "EMERGENCY" or emergency.is_emergency:
        route = True
        provider_type = "mental_health" if emergency.emergency_type == "mental_health" else "emergency"
        priority = EMERGENCY_PRIORITY
        flags.append("EMERGENCY_SITUATION")
        if emergency.emergency_type == "mental_health" or triage.mental_health_crisis:
            flags.append("MENTAL_HEALTH_CRISIS")
            if emergency.severity == "critical" or "SUICIDE_RISK" in triage.safety_flags:
                flags.append("SUICIDE_RISK")
        if "CHEST_SYMPTOMS" in triage.safety_flags or "chest pain" in triage.symptom_names:
            flags.append("CARDIAC_CONCERN")
        if "BREATHING_SYMPTOMS" in triage.safety_flags:
            flags.append("RESPIRATORY_DISTRESS")
    elif triage.level == "URGENT":
        route = True
        provider_type = "urgent"
        priority = URGENT_PRIORITY
        flags.append("URGENT_EVALUATION_NEEDED")
        if "MULTIPLE_SYMPTOMS" in triage.safety_flags:
            flags.append("COMPLEX_SYMPTOM_PATTERN")
            priority = COMPLEX_URGENT_PRIORITY
        if "CONSERVATIVE_ESCALATION" in triage.safety_flags:
            flags.append("CONSERVATIVE_BIAS_APPLIED")

    if count_critical_flags(triage.safety_flags) >= 2 and not route:
        route = True
        provider_type = "urgent"
        priority = max(priority, URGENT_PRIORITY)
        flags.append("CRITICAL_FLAGS_PRESENT")

    age = demographics.age if demographics else None
    if age is not None and age < PEDIATRIC_AGE_LIMIT:
        flags.append("PEDIATRIC_PATIENT")
        priority = min(priority + 1, MAX_PRIORITY)
        if not route and triage.symptom_names:
            route = True
            priority = max(priority, 5)
    elif age is not None and age >= GERIATRIC_AGE:
        flags.append("GERIATRIC_PATIENT")
        if len(triage.symptom_names) > 1:
            priority = min(priority + 1, MAX_PRIORITY)
            if not route:
                route = True
                priority = max(priority, 4)

    if triage.severity_assessment.severe_count >= 2:
        route = True
        provider_type = "urgent" if provider_type == "routine" else provider_type
        flags.append("MULTIPLE_SEVERE_SYMPTOMS")
        priority = min(priority + 2, MAX_PRIORITY)

    combinations: list[str] = []
    for keywords, flag in HIGH_RISK_COMBINATIONS:
        if all(any(keyword in name for name in triage.symptom_names) for keyword in keywords):
            route = True
            provider_type = "urgent" if provider_type == "routine" else provider_type
            combinations.append(flag)
            flags.append(flag)
            priority = min(priority + 1, MAX_PRIORITY)

    flags = unique_preserving(flags)
    data = build_structured_data(
        triage,
        emergency,
        original_query,
        demographics=demographics,
        session_id=session_id,
        symptoms=symptoms,
        combinations=combinations,
    )
    return ATDRouting(
        route_to_provider=route,
        provider_type=provider_type,
        priority_score=priority,
        structured_data=data,
        provider_message=generate_provider_message(data, flags),
        patient_guidance=generate_patient_guidance(route, provider_type, priority),
        clinical_flags=flags,
    )
