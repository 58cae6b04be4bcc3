"""Safety rule tables: red-flag phrases, crisis triggers, bias rules, contacts and privacy filters."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from anamnesis.negation import is_negated
from anamnesis.schemas import EmergencyContacts


@dataclass(frozen=True)
class RedFlag:
    pattern: str
    category: str
    description: str

    def compiled(self) -> re.Pattern[str]:
        return re.compile(r"\b(?:" + self.pattern + r")\b", re.IGNORECASE)


# Phrases that put the whole turn at EMERGENCY unless explicitly denied.
EMERGENCY_SYMPTOMS: tuple[RedFlag, ...] = (
    RedFlag("heart attack", "cardiovascular", "Possible acute myocardial infarction"),
    RedFlag(r"crushing chest (?:pain|pressure)", "cardiovascular", "Severe cardiac symptoms"),
    RedFlag(r"pain (?:radiating|spreading) (?:to|down) (?:my |the )?(?:left )?(?:arm|jaw)", "cardiovascular",
            "Classic cardiac pain pattern"),
    RedFlag("cardiac arrest", "cardiovascular", "Life-threatening emergency"),
    RedFlag(r"can'?t breathe|cannot breathe|can not breathe|not breathing", "respiratory",
            "Severe respiratory distress"),
    RedFlag("choking", "respiratory", "Airway obstruction"),
    RedFlag(r"blue (?:lips|fingers|face)", "respiratory", "Cyanosis indicating hypoxia"),
    RedFlag("loss of consciousness", "neurological", "Altered mental status"),
    RedFlag(r"unconscious|passed out|fainted", "neurological", "Loss of consciousness"),
    RedFlag(r"worst headache(?: of my life)?", "neurological", "Possible intracranial hemorrhage presentation"),
    RedFlag(r"stroke|face (?:is )?drooping|slurred speech", "neurological", "Cerebrovascular emergency"),
    RedFlag(r"seizures?|convulsions?", "neurological", "Neurological emergency"),
    RedFlag("paralysis|can'?t move (?:my )?(?:arm|leg|side)", "neurological", "Acute neurological deficit"),
    RedFlag(r"overdose|overdosed", "mental_health", "Potential poisoning emergency"),
    RedFlag(r"severe bleeding|bleeding (?:heavily|a lot|won'?t stop)", "trauma", "Hemorrhagic emergency"),
    RedFlag(r"head injury|hit my head", "trauma", "Potential traumatic brain injury"),
    RedFlag(r"anaphyla\w*|throat (?:is )?(?:closing|swelling)", "respiratory", "Possible anaphylaxis"),
)

# Phrases that put the turn at URGENT or above.
URGENT_SYMPTOMS: tuple[RedFlag, ...] = (
    RedFlag("high fever", "infection", "Fever requiring evaluation"),
    RedFlag(r"persistent vomiting|can'?t keep (?:anything|food|water) down", "gastrointestinal",
            "Risk of dehydration"),
    RedFlag("severe pain", "pain", "Pain requiring evaluation"),
    RedFlag(r"vision changes|blurr(?:y|ed) vision", "neurological", "Visual disturbances"),
    RedFlag("rash with (?:a )?fever", "dermatological", "Possible systemic infection"),
    RedFlag("broken bone|fracture", "trauma", "Possible fracture requiring evaluation"),
    RedFlag(r"confus(?:ed|ion)", "neurological", "New confusion requires prompt evaluation"),
)


@dataclass(frozen=True)
class CrisisTrigger:
    pattern: re.Pattern[str]
    severity: str
    symptom: str
    response: str


def _trigger(pattern: str, severity: str, symptom: str, response: str) -> CrisisTrigger:
    return CrisisTrigger(re.compile(pattern, re.IGNORECASE), severity, symptom, response)


MENTAL_HEALTH_TRIGGERS: tuple[CrisisTrigger, ...] = (
    _trigger(r"\bkill(?:ing)?\s+myself\b", "high", "suicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\bend(?:ing)?\s+my\s+(?:own\s+)?life\b", "high", "suicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\bsuicid\w*", "high", "suicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\bwant\s+to\s+die\b", "high", "suicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\bend\s+it\s+all\b", "high", "suicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\btake\s+my\s+own\s+life\b", "high", "suicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\bhomicid\w*", "high", "homicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\b(?:want\s+to\s+|going\s+to\s+)kill\s+(?:someone|somebody|him|her|them|people)\b", "high",
             "homicidal ideation", "immediate_crisis_intervention"),
    _trigger(r"\bself[\s-]?harm\w*", "high", "self harm", "crisis_support"),
    _trigger(r"\bcutting\s+myself\b", "high", "self harm", "crisis_support"),
    _trigger(r"\bwant\s+to\s+(?:harm|hurt)\s+myself\b", "high", "self harm", "crisis_support"),
    _trigger(r"\bno\s+reason\s+to\s+live\b", "medium", "hopelessness", "mental_health_support"),
    _trigger(r"\bhopeless\w*", "medium", "hopelessness", "mental_health_support"),
    _trigger(r"\bcan'?t\s+go\s+on\b|\bcannot\s+go\s+on\b", "medium", "hopelessness", "mental_health_support"),
)

CRISIS_SYMPTOMS = frozenset({"suicidal ideation", "homicidal ideation"})


@dataclass(frozen=True)
class CrisisAssessment:
    is_crisis: bool = False
    severity: str | None = None
    triggers: tuple[str, ...] = ()
    symptoms: tuple[str, ...] = ()

    @property
    def is_high(self) -> bool:
        return self.severity == "high"


def assess_mental_health_crisis(text: str) -> CrisisAssessment:
    """Scan raw text for crisis language. Crisis phrases are never treated as negated."""
    triggers: list[str] = []
    symptoms: list[str] = []
    severity: str | None = None
    for trigger in MENTAL_HEALTH_TRIGGERS:
        match = trigger.pattern.search(text or "")
        if not match:
            continue
        triggers.append(match.group(0).lower())
        if trigger.symptom not in symptoms:
            symptoms.append(trigger.symptom)
        if severity is None or trigger.severity == "high":
            severity = trigger.severity
    return CrisisAssessment(
        is_crisis=bool(triggers),
        severity=severity,
        triggers=tuple(triggers),
        symptoms=tuple(symptoms),
    )


def find_red_flags(text: str, flags: tuple[RedFlag, ...]) -> list[RedFlag]:
    """Red flags present in ``text`` with at least one non-negated mention."""
    lowered = (text or "").lower()
    hits: list[RedFlag] = []
    for flag in flags:
        for match in flag.compiled().finditer(lowered):
            if not is_negated(lowered, match.start()):
                hits.append(flag)
                break
    return hits


def is_emergency_symptom(text: str) -> bool:
    return bool(find_red_flags(text, EMERGENCY_SYMPTOMS)) or assess_mental_health_crisis(text).is_high


@dataclass(frozen=True)
class BiasRule:
    condition: str
    description: str
    flag: str


CONSERVATIVE_BIAS_RULES: tuple[BiasRule, ...] = (
    BiasRule("ambiguous_chest_symptoms", "Chest-related symptoms escalate one level", "CHEST_SYMPTOMS"),
    BiasRule("breathing_concerns", "Any breathing difficulty escalates one level", "BREATHING_SYMPTOMS"),
    BiasRule("mental_health_indicators", "Mental health crisis indicators escalate one level", "MENTAL_HEALTH_CONCERN"),
    BiasRule("pediatric_symptoms", "Symptoms in children escalate one level", "PEDIATRIC_ESCALATION"),
    BiasRule("elderly_symptoms", "Several symptoms at age 65+ escalate one level", "GERIATRIC_ESCALATION"),
    BiasRule("multiple_symptoms", "Three or more symptoms together escalate one level", "MULTIPLE_SYMPTOMS"),
)

PEDIATRIC_AGE_LIMIT = 18
GERIATRIC_AGE = 65
MULTIPLE_SYMPTOM_COUNT = 3

_CHEST_MENTION = re.compile(r"\bchest\b")
_BREATH_MENTION = re.compile(r"\bbreath\w*")


def chest_mentioned(text: str) -> bool:
    lowered = (text or "").lower()
    return any(not is_negated(lowered, m.start()) for m in _CHEST_MENTION.finditer(lowered))


def breathing_mentioned(text: str) -> bool:
    lowered = (text or "").lower()
    return any(not is_negated(lowered, m.start()) for m in _BREATH_MENTION.finditer(lowered))


EMERGENCY_CONTACTS: dict[str, dict[str, str]] = {
    "US": {"emergency": "911", "crisis": "988", "poison": "1-800-222-1222"},
    "UK": {"emergency": "999", "crisis": "116 123", "poison": "0344 892 0111"},
    "EU": {"emergency": "112", "crisis": "116 123", "poison": "Local poison control"},
    "AU": {"emergency": "000", "crisis": "13 11 14", "poison": "13 11 26"},
    "CA": {"emergency": "911", "crisis": "1-833-456-4566", "poison": "1-844-764-7669"},
}


def get_emergency_contacts(region: str | None) -> EmergencyContacts:
    key = (region or "US").strip().upper()
    if key not in EMERGENCY_CONTACTS:
        key = "US"
    return EmergencyContacts(region=key, **EMERGENCY_CONTACTS[key])


@dataclass(frozen=True)
class PrivacyExclusion:
    pattern: re.Pattern[str]
    kind: str


PRIVACY_EXCLUSIONS: tuple[PrivacyExclusion, ...] = (
    PrivacyExclusion(re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "pii"),
    PrivacyExclusion(re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "pii"),
    PrivacyExclusion(re.compile(r"(?:\+?1[\s.-]?)?\(?\b\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b"), "pii"),
    PrivacyExclusion(re.compile(r"\b(?i:my name is|i'm|i am)\s+[A-Z][a-z]+"), "pii"),
    PrivacyExclusion(re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"), "phi"),
    PrivacyExclusion(
        re.compile(r"\b(?:insurance|policy|member)\s*(?:number|id|no\.?)\s*:?\s*\w+", re.IGNORECASE),
        "phi",
    ),
)


def sanitize_for_privacy(text: str | None) -> str:
    sanitized = str(text or "")
    for exclusion in PRIVACY_EXCLUSIONS:
        sanitized = exclusion.pattern.sub(f"[{exclusion.kind.upper()}_REDACTED]", sanitized)
    return sanitized


@dataclass(frozen=True)
class PhraseReplacement:
    phrase: str
    replacement: str
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", re.compile(r"\b" + re.escape(self.phrase) + r"\b", re.IGNORECASE))


# Longer phrases first so "You definitely have" wins over "You have".
OVERCONFIDENT_PHRASES: tuple[PhraseReplacement, ...] = (
    PhraseReplacement("You definitely have", "Your symptoms may suggest"),
    PhraseReplacement("The diagnosis is", "These symptoms could indicate"),
    PhraseReplacement("You're suffering from", "You may be experiencing symptoms consistent with"),
    PhraseReplacement("Take this medication", "Discuss with your doctor whether this medication is appropriate"),
    PhraseReplacement("This indicates", "This may suggest"),
    PhraseReplacement("You have", "You may be experiencing"),
    PhraseReplacement("You need", "You may benefit from"),
)


def filter_overconfident_language(response: str) -> str:
    filtered = response
    for item in OVERCONFIDENT_PHRASES:
        filtered = item.pattern.sub(item.replacement, filtered)
    return filtered
