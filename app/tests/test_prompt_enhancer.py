from anamnesis.config import Settings
from anamnesis.context import create_layer_context, update_layer_context
from anamnesis.disclaimers import EMERGENCY_DISCLAIMER, NON_URGENT_DISCLAIMER
from anamnesis.expansion import (
    EXPANSION_DISCLAIMER,
    ExpansionStore,
    build_expansion_prompt,
    contains_expansion_prompt,
    expansion_invitation_text,
    extract_original_query,
    is_expansion_request,
)
from anamnesis.intent_parser import parse_intent
from anamnesis.prompt_enhancer import (
    TemplateKind,
    choose_template_kind,
    classify_medication_query,
    classify_question_type,
    enhance_prompt,
)
from anamnesis.schemas import Symptom
from anamnesis.triage import perform_triage


def _ctx(text: str):
    ctx = create_layer_context(text)
    parsed = parse_intent(ctx.user_input)
    update_layer_context(ctx, intent=parsed.intent, symptoms=parsed.symptoms)
    return update_layer_context(ctx, triage=perform_triage(ctx))


def test_expansion_request_detection():
    assert is_expansion_request("tell me more") is True
    assert is_expansion_request("Yes please") is True
    assert is_expansion_request("more") is True
    assert is_expansion_request("moreover my head hurts") is False
    assert is_expansion_request("") is False
    assert is_expansion_request("more about why headaches get worse in the winter months") is False


def test_expansion_store_ttl_and_isolation():
    now = [0.0]
    store = ExpansionStore(ttl_sec=10, clock=lambda: now[0])
    store.remember("s1", " what is asthma ", "educational")

    now[0] = 5.0
    entry = store.recent("s1")
    assert entry is not None
    assert entry.query == "what is asthma"
    assert store.recent("s2") is None

    now[0] = 20.0
    assert store.recent("s1") is None
    assert len(store) == 0


def test_original_query_from_history():
    history = [
        {"role": "user", "content": "what is asthma"},
        {"role": "assistant", "content": "Asthma is..."},
        {"role": "user", "content": "tell me more"},
    ]
    original = extract_original_query(None, None, history)
    assert original.query == "what is asthma"
    assert original.question_type is None
    assert extract_original_query(None, None, []) is None


def test_expansion_prompt_for_clinician():
    system_prompt, enhanced_prompt = build_expansion_prompt("what is asthma", "educational", "doctor")

    assert system_prompt.startswith("EXPANSION MODE:")
    assert "healthcare professional" in system_prompt
    assert enhanced_prompt.startswith("[Expansion Mode Active]")
    assert 'Original Query: "what is asthma"' in enhanced_prompt
    assert EXPANSION_DISCLAIMER in enhanced_prompt


def test_expansion_invitation_detection():
    text = expansion_invitation_text("symptom", "public")
    assert contains_expansion_prompt(f"Rest and hydrate.\n\n{text}") is True
    assert contains_expansion_prompt("Rest and hydrate.") is False


def test_emergency_turn_uses_severe_template():
    result = enhance_prompt(_ctx("I have severe chest pain"), settings=Settings())

    assert result.template_kind == TemplateKind.SEVERE.value
    assert result.enhanced_prompt.startswith("IMPORTANT:\n")
    assert result.disclaimers[0] == EMERGENCY_DISCLAIMER
    assert result.suggestions == [
        "If symptoms worsen or you feel unsafe, call emergency services immediately.",
        "Consider having someone stay with you or take you to emergency care.",
    ]
    assert "Start with ATD" in result.system_prompt
    assert "User input: I have severe chest pain" in result.enhanced_prompt


def test_mild_turn_suggestions_and_disclaimers():
    result = enhance_prompt(_ctx("I have a mild headache since yesterday"), settings=Settings())

    assert result.template_kind == TemplateKind.MILD.value
    assert not result.enhanced_prompt.startswith("IMPORTANT:")
    assert result.disclaimers[0] == NON_URGENT_DISCLAIMER
    assert result.suggestions == [
        "Have you noticed any triggers, or anything that makes the symptoms better or worse?",
        "Have the symptoms gotten better, worse, or stayed the same since they started?",
    ]
    assert result.question_type == "symptom"


def test_non_urgent_template_upgrades_for_severe_symptom():
    assert choose_template_kind("NON_URGENT", [Symptom(name="x", severity="SEVERE")]) is TemplateKind.MODERATE
    assert choose_template_kind("NON_URGENT", [Symptom(name="x", severity="SEVERE", negated=True)]) is TemplateKind.MILD
    assert choose_template_kind("URGENT") is TemplateKind.MODERATE


def test_question_classifier_flags():
    settings = Settings(enable_classifier=True, enable_med_query_classifier=False)
    assert classify_question_type("what is asthma", settings) == "educational"
    assert classify_question_type("what dosage of ibuprofen is safe", settings) == "medication"
    assert classify_question_type("I have a cough", settings) == "symptom"
    assert classify_question_type("hello", settings) == "general"
    assert classify_question_type("what is asthma", Settings(enable_classifier=False)) == "general"

    assert classify_medication_query("take 200 mg twice", settings) is False
    assert classify_medication_query("take 200 mg twice", Settings(enable_med_query_classifier=True)) is True


def test_role_policy_for_medication_queries():
    settings = Settings(enable_role_mode=True, enable_med_query_classifier=True)

    doctor = enhance_prompt(_ctx("what dosage of ibuprofen is safe"), "doctor", settings=settings)
    public = enhance_prompt(_ctx("what dosage of ibuprofen is safe"), "public", settings=settings)

    assert doctor.is_medication_query is True
    assert doctor.system_prompt.startswith("ROLE POLICY (Healthcare Professional)")
    assert public.system_prompt.startswith("ROLE POLICY (Public)")

    plain = enhance_prompt(_ctx("what dosage of ibuprofen is safe"), "doctor", settings=Settings())
    assert plain.system_prompt.startswith("SYSTEM POLICY")


def test_concise_mode_skips_educational_questions():
    settings = Settings(enable_concise_mode=True)

    symptom = enhance_prompt(_ctx("I have a mild headache"), settings=settings)
    educational = enhance_prompt(_ctx("what is asthma"), settings=settings)

    assert "CONCISE MODE ACTIVE" in symptom.system_prompt
    assert "CONCISE MODE ACTIVE" not in educational.system_prompt
    assert "EDUCATIONAL MODE" in educational.system_prompt


def test_expansion_invitation_only_without_concise_mode():
    settings = Settings(enable_expansion_prompt=True, enable_concise_mode=False)

    symptom = enhance_prompt(_ctx("I have a mild headache"), settings=settings)
    educational = enhance_prompt(_ctx("what is asthma"), settings=settings)

    assert symptom.expansion_prompt == expansion_invitation_text("symptom", "public")
    assert educational.expansion_prompt == ""


def test_expansion_turn_uses_remembered_query():
    settings = Settings(enable_expansion_prompt=True)
    store = ExpansionStore()

    enhance_prompt(_ctx("what is asthma"), settings=settings, expansion_store=store, session_id="s1")
    follow_up = enhance_prompt(_ctx("tell me more"), settings=settings, expansion_store=store, session_id="s1")

    assert follow_up.is_expansion is True
    assert follow_up.question_type == "educational"
    assert 'Original Query: "what is asthma"' in follow_up.enhanced_prompt
    assert follow_up.disclaimers == [EXPANSION_DISCLAIMER]


def test_expansion_never_applies_to_escalated_turn():
    settings = Settings(enable_expansion_prompt=True)
    store = ExpansionStore()
    store.remember("s1", "what is asthma", "educational")

    result = enhance_prompt(
        _ctx("tell me more about my chest pain"), settings=settings, expansion_store=store, session_id="s1"
    )
    assert result.is_expansion is False
    assert result.disclaimers[0] == EMERGENCY_DISCLAIMER
