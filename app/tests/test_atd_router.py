from anamnesis.atd_router import (
    MAX_PRIORITY,
    count_critical_flags,
    extract_timeline,
    generate_patient_guidance,
    route_to_provider,
)
from anamnesis.context import create_layer_context, update_layer_context
from anamnesis.emergency import detect_emergency
from anamnesis.intent_parser import parse_intent
from anamnesis.triage import perform_triage


def _route(text: str, age: int | None = None, session_id: str | None = None):
    ctx = create_layer_context(text, {"age": age} if age is not None else None)
    parsed = parse_intent(ctx.user_input)
    update_layer_context(ctx, intent=parsed.intent, symptoms=parsed.symptoms)
    triage = perform_triage(ctx)
    return route_to_provider(
        triage,
        detect_emergency(ctx.user_input),
        ctx.user_input,
        demographics=ctx.demographics,
        session_id=session_id,
        symptoms=ctx.symptoms,
    )


def test_chest_pain_routes_to_emergency():
    routing = _route("I have severe chest pain for 20 minutes", session_id="abc")

    assert routing.route_to_provider is True
    assert routing.provider_type == "emergency"
    assert routing.priority_score == 10
    assert "EMERGENCY_SITUATION" in routing.clinical_flags
    assert "CARDIAC_CONCERN" in routing.clinical_flags
    assert routing.patient_guidance.startswith("SEEK EMERGENCY CARE IMMEDIATELY")

    data = routing.structured_data
    assert data.patient.session_id == "abc"
    assert data.risk_assessment.overall_risk == "HIGH"
    assert data.risk_assessment.follow_up_urgency == "IMMEDIATE"
    assert "Possible cardiac involvement" in data.risk_assessment.specific_risks
    assert data.symptoms.categories == {"cardiovascular": ["chest pain"]}
    assert data.symptoms.timeline == ["for 20 minutes"]
    assert routing.provider_message.startswith("MEDICAL TRIAGE REFERRAL")
    assert "TRIAGE LEVEL: EMERGENCY" in routing.provider_message
    assert "EMERGENCY DETECTED: medical (critical)" in routing.provider_message


def test_suicidal_language_routes_to_mental_health():
    routing = _route("I want to kill myself")

    assert routing.provider_type == "mental_health"
    assert "MENTAL_HEALTH_CRISIS" in routing.clinical_flags
    assert "SUICIDE_RISK" in routing.clinical_flags
    assert routing.structured_data.clinical_flags.mental_health_crisis is True
    assert routing.patient_guidance.startswith("MENTAL HEALTH CRISIS SUPPORT NEEDED")


def test_mild_headache_is_not_routed():
    routing = _route("I have a mild headache since yesterday")

    assert routing.route_to_provider is False
    assert routing.provider_type == "routine"
    assert routing.priority_score == 1
    assert routing.clinical_flags == []
    assert routing.patient_guidance.startswith("Based on your symptoms, monitor")
    assert routing.structured_data.risk_assessment.overall_risk == "LOW"
    assert routing.structured_data.risk_assessment.follow_up_urgency == "ROUTINE"


def test_pediatric_urgent_turn_gets_priority_bump():
    routing = _route("I have a mild headache", age=10)

    assert routing.provider_type == "urgent"
    assert routing.priority_score == 8
    assert "CONSERVATIVE_BIAS_APPLIED" in routing.clinical_flags
    assert "PEDIATRIC_PATIENT" in routing.clinical_flags
    assert routing.structured_data.patient.age_group == "pediatric"


def test_geriatric_single_symptom_is_flagged_not_routed():
    routing = _route("a mild headache", age=70)

    assert routing.route_to_provider is False
    assert "GERIATRIC_PATIENT" in routing.clinical_flags
    assert routing.structured_data.patient.age_group == "geriatric"
    assert "Age-related complications" in routing.structured_data.risk_assessment.specific_risks


def test_high_risk_combination_raises_priority():
    routing = _route("I have a bad headache and blurry vision")

    assert routing.provider_type == "urgent"
    assert routing.priority_score == 8
    assert "NEUROLOGICAL_SYMPTOMS" in routing.clinical_flags
    assert routing.structured_data.symptoms.high_risk_combinations == ["NEUROLOGICAL_SYMPTOMS"]


def test_priority_is_capped():
    routing = _route("crushing chest pain and shortness of breath", age=80)
    assert routing.priority_score == MAX_PRIORITY
    assert "CARDIOPULMONARY_SYMPTOMS" in routing.clinical_flags


def test_chief_complaint_is_sanitized_and_truncated():
    text = "call me on 555-123-4567, my knee hurts " + "x" * 300
    complaint = _route(text).structured_data.chief_complaint

    assert "555-123-4567" not in complaint.sanitized_query
    assert complaint.sanitized_query.endswith("...")
    assert len(complaint.sanitized_query) == 203


def test_timeline_extraction():
    assert extract_timeline("pain started 2 days ago and suddenly got worse") == ["2 days ago", "suddenly"]
    assert extract_timeline("") == []


def test_critical_flag_count():
    assert count_critical_flags(["EMERGENCY_PROTOCOL_ACTIVATED", "MENTAL_HEALTH_CRISIS", "SUICIDE_RISK"]) == 3
    assert count_critical_flags(["CHEST_SYMPTOMS"]) == 0


def test_routine_guidance_tiers():
    assert generate_patient_guidance(True, "routine", 7).startswith("SCHEDULE A MEDICAL APPOINTMENT SOON")
    assert generate_patient_guidance(True, "routine", 4).startswith("CONSULT A HEALTHCARE PROVIDER")
    assert generate_patient_guidance(True, "routine", 2).startswith("MEDICAL CONSULTATION RECOMMENDED")
