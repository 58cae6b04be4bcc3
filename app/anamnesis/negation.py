"""Negation predicate for symptom mentions."""

from __future__ import annotations

import re

NEGATION_WINDOW_CHARS = 40

_NEGATION_CUES = re.compile(
    r"\b(no|not|without|never|denies|deny|denied|negative for|free of|don't have|do not have|haven't had)\b"
)
# Phrases that contain a cue word but affirm the symptom ("can not breathe").
_PSEUDO_NEGATIONS = re.compile(
    r"\b(not sure|not able|can ?not|not stop(?:ping)?|no relief|not (?:getting )?better|not improving|"
    r"not go(?:ing)? away|no better|no idea)\b"
)
_CLAUSE_BREAK = re.compile(r"[.;:!?,]|\bbut\b|\bhowever\b|\bthough\b|\balthough\b|\bexcept\b")


def is_negated(text: str, start: int, *, window: int = NEGATION_WINDOW_CHARS) -> bool:
    """True when the phrase starting at ``start`` is denied within its own clause."""
    if start <= 0:
        return False
    lowered = text.lower()
    prefix = lowered[max(0, start - window) : start]

    breaks = list(_CLAUSE_BREAK.finditer(prefix))
    if breaks:
        prefix = prefix[breaks[-1].end() :]

    prefix = _PSEUDO_NEGATIONS.sub(" ", prefix)
    return bool(_NEGATION_CUES.search(prefix))


def phrase_is_negated(text: str, phrase: str) -> bool:
    """True only when every occurrence of ``phrase`` in ``text`` is negated."""
    lowered = text.lower()
    needle = phrase.lower()
    idx = lowered.find(needle)
    if idx < 0:
        return False
    while idx >= 0:
        if not is_negated(lowered, idx):
            return False
        idx = lowered.find(needle, idx + 1)
    return True
