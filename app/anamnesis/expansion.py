"""Detail-expansion follow-ups: request detection, session-scoped state and prompts."""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from anamnesis.schemas import ConversationTurn

EXPANSION_KEYWORDS = ("tell me more", "more details", "expand", "details", "more", "yes")
# Longer turns are new questions, not a request to expand the last answer.
MAX_EXPANSION_WORDS = 8
CLINICIAN_ROLES = frozenset({"doctor", "verified_healthcare"})
EXPANSION_DISCLAIMER = "Informational purposes only. Not a substitute for professional medical advice."

_KEYWORD_PATTERNS = tuple(re.compile(rf"^{re.escape(k)}\b") for k in EXPANSION_KEYWORDS)


def is_clinician(role: str | None) -> bool:
    return (role or "").strip().lower() in CLINICIAN_ROLES


def is_expansion_request(user_input: str | None) -> bool:
    lowered = (user_input or "").strip().lower()
    if not lowered or len(lowered.split()) > MAX_EXPANSION_WORDS:
        return False
    return any(pattern.match(lowered) for pattern in _KEYWORD_PATTERNS)


@dataclass(frozen=True)
class ExpandableQuery:
    query: str
    question_type: str | None
    timestamp: float
    response_id: str | None = None


class ExpansionStore:
    """Last expandable query per session, evicted after ``ttl_sec``."""

    def __init__(self, ttl_sec: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._entries: dict[str, ExpandableQuery] = {}
        self._lock = threading.Lock()

    def _purge_locked(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.timestamp > self._ttl_sec]
        for key in expired:
            del self._entries[key]

    def remember(
        self,
        session_id: str,
        query: str,
        question_type: str,
        response_id: str | None = None,
    ) -> ExpandableQuery:
        with self._lock:
            now = self._clock()
            self._purge_locked(now)
            entry = ExpandableQuery(query.strip(), question_type, now, response_id)
            self._entries[session_id] = entry
            return entry

    def recent(self, session_id: str) -> ExpandableQuery | None:
        with self._lock:
            self._purge_locked(self._clock())
            return self._entries.get(session_id)

    def clear(self, session_id: str | None = None) -> None:
        with self._lock:
            if session_id is None:
                self._entries.clear()
            else:
                self._entries.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked(self._clock())
            return len(self._entries)


def extract_original_query(
    store: ExpansionStore | None,
    session_id: str | None,
    history: Sequence[ConversationTurn | dict] | None = None,
) -> ExpandableQuery | None:
    """Find the question an expansion request refers to.

    Session state wins; otherwise the last user turn in ``history`` that is not
    itself an expansion request. History entries carry no classification.
    """
    if store is not None and session_id:
        entry = store.recent(session_id)
        if entry is not None:
            return entry

    for raw in reversed(list(history or [])):
        turn = raw if isinstance(raw, ConversationTurn) else ConversationTurn.model_validate(raw)
        if turn.role != "user":
            continue
        content = turn.content.strip()
        if content and not is_expansion_request(content):
            return ExpandableQuery(content, None, 0.0)
    return None


def build_expansion_prompt(query: str, question_type: str, role: str | None = "public") -> tuple[str, str]:
    """Return ``(system_prompt, enhanced_prompt)`` for a detail-expansion turn."""
    clinician = is_clinician(role)

    if question_type == "medication":
        audience = (
            "Assume a healthcare professional reader. Use clinical terminology and comprehensive reference data."
            if clinician
            else "Assume a general public reader. Use clear, patient-friendly language."
        )
        focus = (
            "Include: dosage ranges with adjustment criteria, pharmacokinetics, contraindications, "
            "drug interactions, monitoring parameters, clinical pearls, and prescribing considerations."
            if clinician
            else "Include: standard dosages, common side effects, important interactions, contraindications, "
            "how to take it properly, when to contact a healthcare provider, and safety precautions."
        )
        role_line = "You are a medical assistant providing detailed medication information."
    elif question_type == "symptom":
        audience = (
            "Assume a healthcare professional reader. Include differential diagnosis and clinical decision-making."
            if clinician
            else "Assume a general public reader. Focus on practical guidance and when to seek care."
        )
        focus = (
            "Cover: differential diagnosis (common and serious causes), red flag symptoms, diagnostic approach, "
            "immediate management, and triage considerations."
            if clinician
            else "Cover: possible causes (common and concerning), warning signs requiring urgent care, "
            "self-care measures, when to see a doctor, and what to expect during evaluation."
        )
        role_line = "You are a medical assistant providing detailed symptom analysis."
    else:
        audience = (
            "Assume a healthcare professional reader. Include clinical context and evidence-based information."
            if clinician
            else "Assume a general public reader. Use accessible language and practical context."
        )
        focus = (
            "Include: pathophysiology, clinical presentation, diagnostic criteria, treatment algorithms, "
            "prognosis, and current evidence."
            if clinician
            else "Include: definition, causes, risk factors, symptoms, complications, treatment options, "
            "prevention strategies, and when to seek medical care."
        )
        role_line = "You are a medical assistant providing detailed educational information."

    system_prompt = "\n".join(
        [
            "EXPANSION MODE: Provide detailed follow-up information for the original query.",
            role_line,
            audience,
            "Include appropriate disclaimers for the target audience.",
        ]
    )
    enhanced_prompt = "\n".join(
        [
            "[Expansion Mode Active]",
            f'Original Query: "{query}"',
            focus,
            f"Always include: {EXPANSION_DISCLAIMER}",
        ]
    )
    return system_prompt, enhanced_prompt


def expansion_invitation_text(question_type: str, role: str | None = "public") -> str:
    clinician = is_clinician(role)
    if question_type == "medication":
        return (
            "Expand with clinical details (algorithms, monitoring, pearls)?"
            if clinician
            else "Would you like more details (side effects, interactions, precautions)?"
        )
    if question_type == "symptom":
        return (
            "Expand with differential diagnosis and clinical approach?"
            if clinician
            else "Would you like more detailed information about this condition and when to seek medical care?"
        )
    return (
        "Expand with clinical context and evidence-based details?"
        if clinician
        else "Would you like more detailed information about this topic?"
    )


def contains_expansion_prompt(response: str | None) -> bool:
    """True when a model response already ends by offering more detail."""
    tail = (response or "").strip().lower()[-240:]
    return "would you like" in tail or tail.startswith("expand with") or "\nexpand with" in tail
