"""Prompt enhancement: template selection, context injection and role/mode policy wrapping."""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from anamnesis.config import Settings, get_settings
from anamnesis.disclaimers import dedupe_disclaimers, select_disclaimers
from anamnesis.expansion import (
    EXPANSION_DISCLAIMER,
    ExpansionStore,
    build_expansion_prompt,
    expansion_invitation_text,
    extract_original_query,
    is_clinician,
    is_expansion_request,
)
from anamnesis.schemas import ConversationTurn, EnhancedPrompt, LayerContext, Symptom


class TemplateKind(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


CONTEXT_TOKEN = "{{CONTEXT}}"

TEMPLATES: dict[TemplateKind, str] = {
    TemplateKind.MILD: (
        "SYSTEM POLICY:\n"
        "- Educational, cautious guidance.\n"
        '- Avoid definitive diagnoses; use "possible", "may", "consider".\n'
        "- Include: (1) Summary, (2) Common causes, (3) Self-care, (4) When to seek care, (5) Sources tier.\n"
        "\n"
        "CONTEXT:\n"
        "{{CONTEXT}}\n"
        "\n"
        "INSTRUCTION:\n"
        "Provide concise, clear, low-risk guidance and ask 2-3 follow-up questions if useful."
    ),
    TemplateKind.MODERATE: (
        "SYSTEM POLICY:\n"
        "- Conservative medical guidance for notable issues.\n"
        '- Avoid definitive diagnoses; use "possible", "may", "consider".\n'
        "- Include: (1) Summary, (2) Differential considerations, (3) Precautions, "
        "(4) When to seek care soon, (5) Sources tier.\n"
        "\n"
        "CONTEXT:\n"
        "{{CONTEXT}}\n"
        "\n"
        "INSTRUCTION:\n"
        "Provide structured advice, note red flags to monitor, and propose next steps."
    ),
    TemplateKind.SEVERE: (
        "SYSTEM POLICY:\n"
        "- Prioritize safety; potential high-risk scenario.\n"
        "- Start with ATD (Advice to Doctor) and urgency level.\n"
        '- Avoid definitive diagnoses; use "possible", "may", "consider".\n'
        "- Include: (1) Summary, (2) Risk flags, (3) Immediate actions, (4) Urgent next steps, (5) Sources tier.\n"
        "\n"
        "CONTEXT:\n"
        "{{CONTEXT}}\n"
        "\n"
        "INSTRUCTION:\n"
        "Be concise and directive. State urgent actions first, then brief rationale."
    ),
}

QUESTION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "educational": (
        "what is", "what are", "what causes", "how does", "how do", "explain", "tell me about",
        "define", "difference between", "why does", "why do",
    ),
    "medication": (
        "dosage", "dose", "medication", "medicine", "drug", "pill", "tablet", "capsule",
        "side effect", "interaction", "prescription", "prescribe",
    ),
    "symptom": (
        "pain", "hurt", "ache", "symptom", "feel", "fever", "cough", "nausea", "dizzy", "headache",
        "rash", "bleeding", "tired", "breath", "i have", "i've been", "i am having",
    ),
}

MEDICATION_KEYWORDS = (
    "dosage", "dose", " mg", " ml", " iu", "contraindication", "interaction", "side effect",
    "pharmacology", "prescribe", "prescription", "tablet", "capsule", "medication", "medicine",
    "drug", "pill",
)

CLINICIAN_DISCLAIMER = "Professional reference only. Verify with official prescribing information."
PUBLIC_DISCLAIMER = EXPANSION_DISCLAIMER

ANALYZE_SUFFIX = "\n\nPlease analyze and respond within the policy above."


def choose_template_kind(level: str | None, symptoms: Sequence[Symptom] = ()) -> TemplateKind:
    if level == "EMERGENCY":
        return TemplateKind.SEVERE
    if level == "URGENT":
        return TemplateKind.MODERATE
    if any(not s.negated and s.severity in {"SEVERE", "SHARP", "EMERGENCY"} for s in symptoms):
        return TemplateKind.MODERATE
    return TemplateKind.MILD


def render_template(kind: TemplateKind, context_block: str) -> str:
    return TEMPLATES[kind].replace(CONTEXT_TOKEN, context_block)


def _describe_symptom(symptom: Symptom) -> str:
    bits = [symptom.name]
    if symptom.location:
        bits.append(f"@{symptom.location.lower()}")
    if symptom.severity:
        bits.append(f"[{symptom.severity.lower()}]")
    if symptom.duration and (symptom.duration.unit or symptom.duration.raw):
        raw = symptom.duration.raw or f"{symptom.duration.value or ''} {symptom.duration.unit}".strip()
        bits.append(f"~{raw}")
    if symptom.negated:
        bits.append("(negated)")
    return " ".join(bits)


def build_context_block(ctx: LayerContext) -> str:
    lines = [f"User input: {ctx.user_input}"]
    if ctx.symptoms:
        lines.append("Symptoms: " + "; ".join(_describe_symptom(s) for s in ctx.symptoms))
    else:
        lines.append("Symptoms: unspecified")

    if ctx.triage is not None:
        reasons = f" ({'; '.join(ctx.triage.reasons)})" if ctx.triage.reasons else ""
        lines.append(f"Triage: {ctx.triage.level}{reasons}")
    else:
        lines.append("Triage: pending")

    if ctx.metadata.body_system:
        lines.append(f"Body system: {ctx.metadata.body_system}")
    return "\n".join(lines)


def classify_question_type(query: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    if not settings.enable_classifier:
        return "general"
    lowered = (query or "").strip().lower()
    for question_type in ("educational", "medication", "symptom"):
        if any(keyword in lowered for keyword in QUESTION_KEYWORDS[question_type]):
            return question_type
    return "general"


def classify_medication_query(query: str, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if not settings.enable_med_query_classifier:
        return False
    lowered = f" {(query or '').lower()}"
    return any(keyword in lowered for keyword in MEDICATION_KEYWORDS)


def build_role_policy(user_role: str, is_medication_query: bool, settings: Settings) -> str:
    if not settings.enable_role_mode or not is_medication_query:
        return ""
    if is_clinician(user_role):
        return (
            "ROLE POLICY (Healthcare Professional):\n"
            "- Provide concise bullets including dosages, algorithms, and clinical pearls\n"
            "- Include typical dosing ranges, adjustment criteria, and monitoring parameters\n"
            "- Use clinical terminology and structured format\n"
            f'- Add disclaimer: "{CLINICIAN_DISCLAIMER}"\n\n'
        )
    return (
        "ROLE POLICY (Public):\n"
        "- Provide concise bullets including typical dosage ranges in simple format\n"
        "- Focus on practical takeaways and key safety information\n"
        "- Use patient-friendly language and clear explanations\n"
        f'- Add disclaimer: "{PUBLIC_DISCLAIMER}"\n\n'
    )


def apply_concise_mode(template: str, user_role: str, settings: Settings) -> str:
    if not settings.enable_concise_mode:
        return template
    expansion_line = (
        "Would you like me to expand with further clinical details (algorithms, monitoring, pearls)?"
        if is_clinician(user_role)
        else "Would you like me to provide further detailed information (side effects, interactions, precautions)?"
    )
    return (
        template
        + "\n\nCONCISE MODE ACTIVE:\n"
        + f"- Keep answers <= {settings.concise_max_bullets} bullets OR {settings.concise_max_sentences} sentences\n"
        + f"- Stay under {settings.concise_max_tokens} tokens\n"
        + "- Use exam-style, high-yield formatting\n"
        + "- Prioritize highest-yield information first\n"
        + "- Be direct and actionable\n"
        + f'- At the end of EVERY answer, add: "{expansion_line}"\n'
        + "- Ensure disclaimers appear BEFORE the expansion question"
    )


def apply_educational_mode(template: str, user_role: str) -> str:
    audience = "healthcare professionals" if is_clinician(user_role) else "the general public"
    detail = "with medical terminology" if is_clinician(user_role) else "in patient-friendly language"
    return (
        template
        + "\n\nEDUCATIONAL MODE:\n"
        + f"- Provide a detailed, structured explanation suitable for {audience}\n"
        + "- Cover definitions, key features, and management overview\n"
        + f"- Include relevant clinical details {detail}\n"
        + "- End with an appropriate disclaimer"
    )


def generate_follow_up_suggestions(ctx: LayerContext) -> list[str]:
    level = ctx.triage.level if ctx.triage else "NON_URGENT"
    if level == "EMERGENCY":
        return [
            "If symptoms worsen or you feel unsafe, call emergency services immediately.",
            "Consider having someone stay with you or take you to emergency care.",
        ]
    if level == "URGENT":
        return [
            "Arrange an urgent medical evaluation within 24 hours if possible.",
            "Monitor symptoms closely and seek emergency care if they worsen.",
        ]

    active = [s for s in ctx.symptoms if not s.negated]
    if not active:
        return [
            "Can you describe your main symptoms in more detail?",
            "When did you first notice these symptoms?",
        ]

    suggestions: list[str] = []
    if not any(s.location and s.location not in {"GENERAL", "UNSPECIFIED"} for s in active):
        suggestions.append("Where exactly are you experiencing these symptoms?")
    if not any(s.duration and (s.duration.raw or s.duration.value) for s in active):
        suggestions.append("How long have you been experiencing these symptoms?")
    suggestions.append("Have you noticed any triggers, or anything that makes the symptoms better or worse?")
    suggestions.append("Have the symptoms gotten better, worse, or stayed the same since they started?")
    return suggestions[:3]


def _expansion_turn(
    ctx: LayerContext,
    user_role: str,
    conversation_history: Sequence[ConversationTurn | dict] | None,
    settings: Settings,
    expansion_store: ExpansionStore | None,
    session_id: str | None,
) -> EnhancedPrompt | None:
    if not settings.enable_expansion_prompt or not is_expansion_request(ctx.user_input):
        return None
    # Never let a follow-up swallow a turn that triaged above NON_URGENT.
    if ctx.triage is not None and ctx.triage.level != "NON_URGENT":
        return None

    original = extract_original_query(expansion_store, session_id, conversation_history)
    if original is None:
        return None

    question_type = original.question_type or classify_question_type(original.query, settings)
    system_prompt, enhanced_prompt = build_expansion_prompt(original.query, question_type, user_role)
    return EnhancedPrompt(
        system_prompt=system_prompt,
        enhanced_prompt=enhanced_prompt,
        disclaimers=[EXPANSION_DISCLAIMER],
        question_type=question_type,
        is_expansion=True,
    )


def enhance_prompt(
    ctx: LayerContext,
    user_role: str = "public",
    conversation_history: Sequence[ConversationTurn | dict] | None = None,
    *,
    settings: Settings | None = None,
    expansion_store: ExpansionStore | None = None,
    session_id: str | None = None,
) -> EnhancedPrompt:
    """Build the system and enhanced prompts for the language model hand-off."""
    settings = settings or get_settings()
    user_role = user_role or "public"

    expansion = _expansion_turn(ctx, user_role, conversation_history, settings, expansion_store, session_id)
    if expansion is not None:
        return expansion

    question_type = classify_question_type(ctx.user_input, settings)
    level = ctx.triage.level if ctx.triage else "NON_URGENT"
    kind = choose_template_kind(level, ctx.symptoms)
    context_block = build_context_block(ctx)
    is_medication_query = question_type == "medication" or classify_medication_query(ctx.user_input, settings)

    symptom_names = (
        ctx.triage.symptom_names
        if ctx.triage is not None
        else [s.name.lower() for s in ctx.symptoms if not s.negated]
    )
    pack = select_disclaimers(level, symptom_names)

    system_prompt = build_role_policy(user_role, is_medication_query, settings) + render_template(kind, context_block)
    if question_type == "educational":
        system_prompt = apply_educational_mode(system_prompt, user_role)
    else:
        system_prompt = apply_concise_mode(system_prompt, user_role, settings)

    header = ""
    if level in {"EMERGENCY", "URGENT"}:
        header = "IMPORTANT:\n" + "\n".join(pack.atd_notices) + "\n\n"
    enhanced_prompt = f"{header}{context_block}{ANALYZE_SUFFIX}"

    expansion_prompt = ""
    if settings.enable_expansion_prompt and not settings.enable_concise_mode and question_type != "educational":
        expansion_prompt = expansion_invitation_text(question_type, user_role)

    if settings.enable_expansion_prompt and expansion_store is not None and session_id and ctx.user_input:
        expansion_store.remember(session_id, ctx.user_input, question_type)

    return EnhancedPrompt(
        system_prompt=system_prompt,
        enhanced_prompt=enhanced_prompt,
        atd_notices=list(pack.atd_notices),
        disclaimers=dedupe_disclaimers(pack.disclaimers),
        suggestions=generate_follow_up_suggestions(ctx),
        expansion_prompt=expansion_prompt,
        question_type=question_type,
        template_kind=kind.value,
        is_medication_query=is_medication_query,
    )
