"""Raw-text emergency detection, run beside structured triage."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from anamnesis.negation import is_negated
from anamnesis.safety_rules import assess_mental_health_crisis, get_emergency_contacts
from anamnesis.schemas import EmergencyContacts, EmergencyDetection

_SEVERITY_ORDER = {"moderate": 0, "high": 1, "critical": 2}


def _patterns(*items: tuple[str, str]) -> tuple[tuple[re.Pattern[str], str], ...]:
    return tuple((re.compile(r"\b(?:" + pattern + r")", re.IGNORECASE), severity) for pattern, severity in items)


EMERGENCY_PATTERNS: dict[str, tuple[tuple[re.Pattern[str], str], ...]] = {
    "cardiovascular": _patterns(
        (r"heart attack", "critical"),
        (r"cardiac arrest", "critical"),
        (r"crushing chest", "critical"),
        (r"chest pain", "critical"),
        (r"pain (?:radiating|spreading) (?:to|down) (?:my |the )?(?:left )?(?:arm|jaw)", "critical"),
    ),
    "respiratory": _patterns(
        (r"can'?t breathe|cannot breathe|can not breathe|not breathing", "critical"),
        (r"difficulty breathing|struggling to breathe", "critical"),
        (r"choking", "critical"),
        (r"blue (?:lips|fingers|face)", "critical"),
        (r"throat (?:is )?(?:closing|swelling)", "critical"),
        (r"anaphyla\w*|severe allergic reaction", "high"),
    ),
    "neurological": _patterns(
        (r"unconscious|loss of consciousness|passed out", "critical"),
        (r"stroke", "critical"),
        (r"seizure", "critical"),
        (r"paralysis|paralyzed", "critical"),
        (r"worst headache of my life|thunderclap headache", "high"),
        (r"vision loss|lost my vision|can'?t see", "high"),
        (r"can'?t speak|slurred speech", "high"),
    ),
    "trauma": _patterns(
        (r"(?:severe|car|motorcycle|bike) accident", "critical"),
        (r"fell from (?:a )?height|fell off (?:a |the )?(?:roof|ladder)", "critical"),
        (r"severe bleeding|bleeding (?:heavily|won'?t stop)", "critical"),
        (r"broken bones?", "critical"),
        (r"head (?:trauma|injury)", "critical"),
        (r"hit by (?:a )?(?:car|truck|vehicle|bus)", "critical"),
        (r"stab(?:bed)? wound|gunshot|been shot", "critical"),
        (r"severe burn|electric(?:al)? shock", "high"),
    ),
    "mental_health": _patterns(
        (r"overdose|overdosed|took too many pills", "critical"),
        (r"poisoning|swallowed (?:bleach|poison)", "critical"),
    ),
}

_MEDICAL_CATEGORIES = ("cardiovascular", "respiratory", "neurological")


@dataclass(frozen=True)
class CrisisResource:
    name: str
    available: str = "24/7"
    number: str | None = None
    text: str | None = None
    url: str | None = None


@dataclass
class CrisisInterventionResources:
    immediate: list[CrisisResource] = field(default_factory=list)
    followup: list[CrisisResource] = field(default_factory=list)
    online: list[CrisisResource] = field(default_factory=list)


@dataclass
class ChecklistItem:
    step: int
    action: str
    priority: str
    completed: bool = False


def _max_severity(a: str | None, b: str) -> str:
    if a is None:
        return b
    return a if _SEVERITY_ORDER[a] >= _SEVERITY_ORDER[b] else b


def _immediate_actions(emergency_type: str | None, severity: str | None) -> list[str]:
    if emergency_type == "medical" and severity == "critical":
        return [
            "Call emergency services immediately.",
            "Stay where you are and do not drive yourself.",
            "Get someone to help you if possible.",
            "Have your medication list ready.",
        ]
    if emergency_type == "medical":
        return [
            "Seek immediate medical attention.",
            "Go to the emergency department or urgent care.",
            "Call your doctor if they are available.",
        ]
    if emergency_type == "mental_health" and severity == "critical":
        return [
            "You are not alone and help is available.",
            "Call emergency services or a crisis line now.",
            "Reach out to a trusted person immediately.",
            "Stay in a safe place and remove any means of self-harm.",
        ]
    if emergency_type == "mental_health":
        return [
            "You are not alone and help is available.",
            "Call a mental health crisis line.",
            "Talk to someone you trust.",
            "Consider going to the emergency department.",
        ]
    if emergency_type == "trauma":
        return [
            "Call emergency services immediately.",
            "Do not move unless you are in immediate danger.",
            "Apply firm pressure to any bleeding wound.",
            "Wait for professional medical help.",
        ]
    return []


def _emergency_message(emergency_type: str | None, severity: str | None, contacts: EmergencyContacts) -> str:
    if emergency_type is None:
        return ""
    if emergency_type == "medical":
        headline = (
            "MEDICAL EMERGENCY DETECTED - This appears to be a life-threatening situation."
            if severity == "critical"
            else "URGENT MEDICAL SITUATION - You need immediate medical attention."
        )
    elif emergency_type == "mental_health":
        headline = (
            "MENTAL HEALTH CRISIS - Your safety is our immediate concern."
            if severity == "critical"
            else "MENTAL HEALTH SUPPORT NEEDED - You don't have to go through this alone."
        )
    else:
        headline = "TRAUMA EMERGENCY - You need immediate emergency medical care."

    lines: list[str] = []
    if emergency_type == "mental_health" and contacts.crisis:
        lines.append(f"Crisis Line: {contacts.crisis}")
    lines.append(f"Emergency: {contacts.emergency}")
    return f"{headline}\n\nIMMEDIATE HELP:\n" + "\n".join(lines)


def detect_emergency(user_input: str | None, region: str | None = "US") -> EmergencyDetection:
    """Scan raw text against the category pattern table.

    Type priority is mental_health over trauma over medical; severity is the
    highest seen. Crisis language ignores negation, everything else respects it.
    """
    text = str(user_input or "")
    lowered = text.lower()
    contacts = get_emergency_contacts(region)

    triggered: list[str] = []
    categories: list[str] = []
    severity: str | None = None
    found_types: set[str] = set()

    for category, patterns in EMERGENCY_PATTERNS.items():
        for pattern, pattern_severity in patterns:
            match = next(
                (
                    m
                    for m in pattern.finditer(lowered)
                    if category == "mental_health" or not is_negated(lowered, m.start())
                ),
                None,
            )
            if match is None:
                continue
            triggered.append(match.group(0))
            if category not in categories:
                categories.append(category)
            severity = _max_severity(severity, pattern_severity)
            found_types.add("medical" if category in _MEDICAL_CATEGORIES else category)

    crisis = assess_mental_health_crisis(text)
    if crisis.is_crisis:
        triggered.extend(crisis.triggers)
        if "mental_health" not in categories:
            categories.append("mental_health")
        severity = _max_severity(severity, "critical" if crisis.is_high else "high")
        found_types.add("mental_health")

    emergency_type: str | None = None
    for candidate in ("mental_health", "trauma", "medical"):
        if candidate in found_types:
            emergency_type = candidate
            break

    requires_services = severity == "critical" or (
        severity == "high" and emergency_type in {"medical", "trauma"}
    )
    return EmergencyDetection(
        is_emergency=bool(triggered),
        emergency_type=emergency_type,
        severity=severity,
        triggered_patterns=list(dict.fromkeys(triggered)),
        triggered_categories=categories,
        emergency_contacts=contacts,
        immediate_actions=_immediate_actions(emergency_type, severity),
        requires_emergency_services=requires_services,
        emergency_message=_emergency_message(emergency_type, severity, contacts),
    )


def requires_emergency_services(user_input: str, region: str | None = "US") -> bool:
    return detect_emergency(user_input, region).requires_emergency_services


def get_crisis_intervention_resources(emergency_type: str | None, region: str | None = "US") -> CrisisInterventionResources:
    contacts = get_emergency_contacts(region)
    resources = CrisisInterventionResources()
    if emergency_type == "medical":
        resources.immediate.append(CrisisResource("Emergency Services", number=contacts.emergency))
        if contacts.poison:
            resources.immediate.append(CrisisResource("Poison Control", number=contacts.poison))
        resources.followup.append(CrisisResource("Primary care provider", available="Office hours"))
    elif emergency_type == "mental_health":
        if contacts.crisis:
            resources.immediate.append(CrisisResource("Crisis Hotline", number=contacts.crisis))
        resources.immediate.append(CrisisResource("Emergency Services", number=contacts.emergency))
        resources.followup.append(CrisisResource("Mental health professional", available="By appointment"))
        if contacts.region == "US":
            resources.online.append(CrisisResource("Crisis Text Line", text="HOME to 741741"))
            resources.online.append(CrisisResource("988 Suicide & Crisis Lifeline", url="https://988lifeline.org"))
    elif emergency_type == "trauma":
        resources.immediate.append(CrisisResource("Emergency Services", number=contacts.emergency))
    return resources


def generate_emergency_checklist(detection: EmergencyDetection) -> list[ChecklistItem]:
    if not detection.is_emergency:
        return []

    contacts = detection.emergency_contacts
    steps: list[tuple[str, str]] = []
    if detection.requires_emergency_services:
        steps.append((f"Call emergency services ({contacts.emergency}).", "critical"))
    if detection.emergency_type == "mental_health":
        if contacts.crisis:
            steps.append((f"Contact the crisis line ({contacts.crisis}).", "critical"))
        steps.append(("Stay with someone you trust.", "high"))
        steps.append(("Move away from anything that could cause harm.", "high"))
    elif detection.emergency_type == "trauma":
        steps.append(("Do not move unless you are in danger.", "high"))
        steps.append(("Apply pressure to any bleeding.", "high"))
    else:
        steps.append(("Unlock the door and turn on lights for responders.", "medium"))
        steps.append(("Gather your medication list and ID.", "medium"))
    steps.append(("Follow the dispatcher's instructions.", "high"))

    return [ChecklistItem(step=i, action=action, priority=priority) for i, (action, priority) in enumerate(steps, start=1)]
