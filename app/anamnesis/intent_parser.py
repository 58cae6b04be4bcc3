"""Pattern-based intent and symptom extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import NamedTuple

from anamnesis.negation import is_negated
from anamnesis.schemas import Duration, Intent, Symptom
from anamnesis.utils import max_severity, severity_rank

BODY_LOCATIONS = ("CHEST", "HEAD", "ABDOMEN", "LIMB", "GENERAL", "UNSPECIFIED")

_DURATION_PATTERNS = (
    re.compile(r"(\d+)\s*(minute|hour|day|week|month|year)s?", re.IGNORECASE),
    re.compile(r"(since\s+)?(yesterday|today|last\s+night|this\s+morning)", re.IGNORECASE),
    re.compile(r"\b(recently|lately|ongoing|chronic|persistent)\b", re.IGNORECASE),
)

_CONDITION_INDICATORS = (
    ("ACUTE", ("sudden", "sharp", "severe", "intense", "stabbing", "emergency")),
    ("CHRONIC", ("ongoing", "persistent", "long-term", "months", "years", "chronic")),
    ("PREVENTIVE", ("prevent", "avoid", "screening", "checkup", "vaccine", "healthy")),
    ("INFORMATIONAL", ("what is", "how does", "explain", "tell me about", "learn")),
    ("MEDICATION", ("prescription", "medication", "medicine", "drug", "dosage", "pills")),
)

_EMERGENCY_WORDS = ("emergency", "urgent", "serious", "911", "help", "critical")
_INFO_WORDS = ("what is", "tell me", "explain", "how does", "why")

# Ordered lowest to highest; a clause carrying several resolves to the highest.
_SEVERITY_MODIFIERS = (
    (re.compile(r"\b(mild|mildly|slight|slightly|minor|a little|a bit of|light)\b"), "MILD"),
    (re.compile(r"\b(moderate|moderately)\b"), "MODERATE"),
    (re.compile(r"\b(severe|severely|intense|terrible|really bad|very bad|awful|extreme|crushing|high)\b"), "SEVERE"),
    (re.compile(r"\b(sharp|stabbing|shooting)\b"), "SHARP"),
    (re.compile(r"\b(worst|excruciating|unbearable|agonizing|agonising)\b"), "EMERGENCY"),
)
_MODIFIER_REACH = 25
_CLAUSE_BREAK = re.compile(r"[.;!?,]|\bbut\b|\bhowever\b")

_PAIN_WORDS = ("pain", "hurt", "ache", "sore", "tender", "discomfort")
_BODY_PART_WORDS = (
    ("CHEST", re.compile(r"\b(chest|ribs?|sternum)\b")),
    ("HEAD", re.compile(r"\b(head|temple|forehead|skull)\b")),
    ("ABDOMEN", re.compile(r"\b(abdomen|belly|tummy|stomach|gut)\b")),
    ("LIMB", re.compile(r"\b(arms?|legs?|knees?|ankles?|feet|foot|hands?|shoulders?|wrists?|hips?|elbows?)\b")),
)


@dataclass(frozen=True)
class SymptomRule:
    name: str
    patterns: tuple[tuple[re.Pattern[str], str | None], ...]
    location: str
    category: str
    default_severity: str
    floor: str = "MILD"


def _rule(
    name: str,
    patterns: list[str | tuple[str, str]],
    *,
    location: str,
    category: str,
    default: str,
    floor: str = "MILD",
) -> SymptomRule:
    compiled: list[tuple[re.Pattern[str], str | None]] = []
    for item in patterns:
        pattern, implied = item if isinstance(item, tuple) else (item, None)
        compiled.append((re.compile(pattern, re.IGNORECASE), implied))
    return SymptomRule(name, tuple(compiled), location, category, default, floor)


SYMPTOM_RULES: tuple[SymptomRule, ...] = (
    _rule(
        "chest pain",
        [r"chest\s*pain", r"chest\s*hurts?", r"heart\s*pain", r"chest\s*tight(?:ness)?",
         r"chest\s*(?:pressure|discomfort)", r"tight(?:ness)?\s+in\s+(?:my\s+)?chest",
         r"pain\s+in\s+(?:my\s+)?chest"],
        location="CHEST",
        category="cardiovascular",
        default="EMERGENCY",
        floor="SEVERE",
    ),
    _rule(
        "shortness of breath",
        [r"short(?:ness)?\s+of\s+breath", r"(?:difficulty|trouble|hard)\s+(?:time\s+)?breathing",
         r"breathless", r"wheez\w*", r"can'?t\s+catch\s+(?:my\s+)?breath"],
        location="CHEST",
        category="respiratory",
        default="SEVERE",
        floor="SEVERE",
    ),
    _rule(
        "headache",
        [r"head\s*ache", r"head\s*pain", r"head\s*hurts?", (r"migraine", "SEVERE"),
         (r"thunderclap", "EMERGENCY")],
        location="HEAD",
        category="neurological",
        default="MODERATE",
    ),
    _rule(
        "vision changes",
        [r"blurr(?:y|ed)\s+vision", r"vision\s+(?:changes?|loss|problems?)", r"double\s+vision",
         r"(?:lost|losing)\s+(?:my\s+)?(?:vision|sight)"],
        location="HEAD",
        category="neurological",
        default="SEVERE",
        floor="MODERATE",
    ),
    _rule(
        "dizziness",
        [r"dizz(?:y|iness)", r"light\s*-?\s*headed(?:ness)?", r"vertigo"],
        location="HEAD",
        category="neurological",
        default="MODERATE",
    ),
    _rule(
        "stomach pain",
        [r"stomach\s*(?:pain|ache)", r"belly\s*(?:pain|ache)", r"abdom\w*\s*pain", r"tummy\s*(?:pain|ache)"],
        location="ABDOMEN",
        category="gastrointestinal",
        default="MODERATE",
    ),
    _rule(
        "nausea",
        [r"nause(?:a|ous|ated)", r"queasy", r"vomit\w*", r"throw(?:ing)?\s*up"],
        location="GENERAL",
        category="gastrointestinal",
        default="MODERATE",
    ),
    _rule(
        "back pain",
        [r"back\s*(?:pain|ache)", r"spine\s*pain", r"back\s*hurts?"],
        location="UNSPECIFIED",
        category="musculoskeletal",
        default="MODERATE",
    ),
    _rule(
        "limb pain",
        [r"\b(?:arm|leg|knee|ankle|foot|hand|shoulder|wrist|hip|elbow)s?\s+(?:pain|hurts?|aches?)"],
        location="LIMB",
        category="musculoskeletal",
        default="MILD",
    ),
    _rule(
        "fever",
        [r"fever(?:ish)?", r"high\s+temperature", (r"burning\s+up", "SEVERE"),
         (r"\b10[3-9](?:\.\d)?\s*(?:°|degrees?|f\b)", "SEVERE")],
        location="GENERAL",
        category="infectious",
        default="MODERATE",
    ),
    _rule(
        "cough",
        [r"cough\w*"],
        location="CHEST",
        category="respiratory",
        default="MODERATE",
    ),
    _rule(
        "bleeding",
        [r"bleed\w*", r"blood\s+in\s+(?:my\s+)?(?:stool|urine|vomit)", r"coughing\s+(?:up\s+)?blood"],
        location="GENERAL",
        category="hematologic",
        default="SEVERE",
        floor="MODERATE",
    ),
    _rule(
        "fatigue",
        [r"\btired\b", r"fatigue", r"exhausted", r"\bweak(?:ness)?\b", r"low\s+energy"],
        location="GENERAL",
        category="general",
        default="MILD",
    ),
    _rule(
        "rash",
        [r"\brash\b", r"\bhives\b", r"skin\s+lesion", r"red\s+spots?"],
        location="GENERAL",
        category="dermatological",
        default="MILD",
    ),
    _rule(
        "anxiety",
        [r"anxiety", r"anxious", r"nervous"],
        location="GENERAL",
        category="mental_health",
        default="MODERATE",
    ),
    _rule(
        "panic attacks",
        [r"panic(?:\s+attacks?|king)?"],
        location="GENERAL",
        category="mental_health",
        default="SEVERE",
        floor="MODERATE",
    ),
    _rule(
        "depression",
        [r"depress(?:ed|ion)", r"feeling\s+(?:really\s+)?(?:down|low)"],
        location="GENERAL",
        category="mental_health",
        default="MODERATE",
    ),
    _rule(
        "hopelessness",
        [r"hopeless(?:ness)?", r"no\s+reason\s+to\s+live", r"can'?t\s+go\s+on", r"cannot\s+go\s+on"],
        location="GENERAL",
        category="mental_health",
        default="SEVERE",
        floor="SEVERE",
    ),
    _rule(
        "insomnia",
        [r"insomnia", r"can'?t\s+sleep", r"cannot\s+sleep", r"trouble\s+sleeping"],
        location="GENERAL",
        category="mental_health",
        default="MILD",
    ),
    _rule(
        "self harm",
        [r"self[\s-]?harm", r"cutting\s+myself", r"hurt(?:ing)?\s+myself"],
        location="GENERAL",
        category="mental_health",
        default="EMERGENCY",
        floor="SEVERE",
    ),
    _rule(
        "suicidal ideation",
        [r"suicid\w*", r"kill\s+myself", r"end\s+my\s+life", r"want\s+to\s+die", r"end\s+it\s+all"],
        location="GENERAL",
        category="mental_health",
        default="EMERGENCY",
        floor="EMERGENCY",
    ),
    _rule(
        "homicidal ideation",
        [r"homicid\w*", r"kill\s+(?:someone|somebody|him|her|them|people)"],
        location="GENERAL",
        category="mental_health",
        default="EMERGENCY",
        floor="EMERGENCY",
    ),
)


class ParsedQuery(NamedTuple):
    intent: Intent
    symptoms: list[Symptom]


def parse_duration(text: str) -> Duration | None:
    for pattern in _DURATION_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        groups = match.groups()
        value: int | None = None
        if groups[0] and groups[0].strip().isdigit():
            value = int(groups[0])
        unit = groups[1] if len(groups) > 1 and groups[1] else "unknown"
        return Duration(value=value, unit=re.sub(r"\s+", " ", unit.lower()), raw=match.group(0))
    return None


def detect_condition_type(lowered: str) -> str:
    for condition, keywords in _CONDITION_INDICATORS:
        if any(keyword in lowered for keyword in keywords):
            return condition
    return "GENERAL"


def _clause_window(lowered: str, start: int, end: int) -> str:
    left = lowered[max(0, start - _MODIFIER_REACH) : start]
    right = lowered[end : end + _MODIFIER_REACH]

    breaks = list(_CLAUSE_BREAK.finditer(left))
    if breaks:
        left = left[breaks[-1].end() :]
    cut = _CLAUSE_BREAK.search(right)
    if cut:
        right = right[: cut.start()]
    return f"{left} {right}"


def resolve_severity(rule: SymptomRule, window: str, implied: str | None = None) -> str:
    found = [severity for pattern, severity in _SEVERITY_MODIFIERS if pattern.search(window)]
    if implied:
        found.append(implied)
    if not found:
        return max_severity(rule.default_severity, rule.floor) or rule.default_severity

    severity = max(found, key=severity_rank)
    if rule.default_severity == "EMERGENCY" and severity in {"SEVERE", "SHARP"}:
        severity = "EMERGENCY"
    if severity_rank(severity) < severity_rank(rule.floor):
        severity = rule.floor
    return severity


def _match_rule(rule: SymptomRule, text: str, lowered: str, duration: Duration | None) -> Symptom | None:
    affirmed: str | None = None
    denied: str | None = None
    hits = 0
    for pattern, implied in rule.patterns:
        for match in pattern.finditer(text):
            hits += 1
            severity = resolve_severity(rule, _clause_window(lowered, match.start(), match.end()), implied)
            if is_negated(lowered, match.start()):
                denied = max_severity(denied, severity)
            else:
                affirmed = max_severity(affirmed, severity)
    if not hits:
        return None
    return Symptom(
        name=rule.name,
        location=rule.location,
        severity=affirmed if affirmed is not None else denied,
        duration=duration,
        negated=affirmed is None,
        category=rule.category,
    )


def _fallback_symptoms(lowered: str, duration: Duration | None) -> list[Symptom]:
    if not any(word in lowered for word in _PAIN_WORDS):
        return []
    found: list[Symptom] = []
    for location, pattern in _BODY_PART_WORDS:
        match = pattern.search(lowered)
        if not match:
            continue
        found.append(
            Symptom(
                name=f"{location.lower()} pain",
                location=location,
                duration=duration,
                negated=is_negated(lowered, match.start()),
                category="general",
            )
        )
    return found


def parse_symptoms(text: str, duration: Duration | None = None) -> list[Symptom]:
    lowered = text.lower()
    symptoms: list[Symptom] = []
    for rule in SYMPTOM_RULES:
        symptom = _match_rule(rule, text, lowered, duration)
        if symptom is not None:
            symptoms.append(symptom)
    if not symptoms:
        symptoms = _fallback_symptoms(lowered, duration)
    return symptoms


def classify_intent(lowered: str, symptoms: list[Symptom], condition_type: str) -> Intent:
    intent_type = "general_inquiry"
    confidence = 0.3

    if symptoms:
        intent_type = "symptom_check"
        confidence = 0.7 + len(symptoms) * 0.1
    if any(word in lowered for word in _EMERGENCY_WORDS):
        intent_type = "emergency"
        confidence = 0.9
    if any(phrase in lowered for phrase in _INFO_WORDS):
        intent_type = "information_request"
        confidence = 0.6
    if condition_type == "PREVENTIVE":
        intent_type = "prevention_inquiry"
        confidence = 0.8
    if condition_type == "MEDICATION":
        intent_type = "medication_inquiry"
        confidence = 0.7

    return Intent(type=intent_type, confidence=round(min(confidence, 0.95), 2), condition_type=condition_type)


def apply_contextual_correction(symptoms: list[Symptom]) -> list[Symptom]:
    unique: dict[str, Symptom] = {}
    for symptom in symptoms:
        location = symptom.location if symptom.location in BODY_LOCATIONS else "UNSPECIFIED"
        key = f"{symptom.name}:{location}"
        if key in unique:
            continue
        unique[key] = symptom if symptom.location == location else symptom.model_copy(update={"location": location})
    return list(unique.values())


def parse_intent(user_input: str | None) -> ParsedQuery:
    """Extract the intent and symptom mentions from raw user text. Never raises on text input."""
    text = str(user_input or "").strip()
    if not text:
        return ParsedQuery(Intent(type="general_inquiry", confidence=0.0), [])

    lowered = text.lower()
    duration = parse_duration(text)
    condition_type = detect_condition_type(lowered)
    symptoms = apply_contextual_correction(parse_symptoms(text, duration))
    intent = classify_intent(lowered, symptoms, condition_type)
    return ParsedQuery(intent, symptoms)


def infer_body_system(symptoms: list[Symptom]) -> str | None:
    active = [s for s in symptoms if not s.negated and s.category and s.category != "general"]
    if not active:
        return None
    top = max(active, key=lambda s: severity_rank(s.severity))
    return top.category
