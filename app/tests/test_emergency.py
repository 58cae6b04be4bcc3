from anamnesis.emergency import (
    detect_emergency,
    generate_emergency_checklist,
    get_crisis_intervention_resources,
    requires_emergency_services,
)


def test_chest_pain_is_critical_medical_emergency():
    detection = detect_emergency("I have crushing chest pain")

    assert detection.is_emergency is True
    assert detection.emergency_type == "medical"
    assert detection.severity == "critical"
    assert detection.requires_emergency_services is True
    assert "cardiovascular" in detection.triggered_categories
    assert detection.emergency_contacts.emergency == "911"
    assert detection.emergency_message.startswith("MEDICAL EMERGENCY DETECTED")
    assert detection.immediate_actions[0] == "Call emergency services immediately."


def test_negated_medical_pattern_is_ignored():
    detection = detect_emergency("no chest pain today")

    assert detection.is_emergency is False
    assert detection.emergency_type is None
    assert detection.severity is None
    assert detection.immediate_actions == []
    assert detection.emergency_message == ""


def test_later_affirmed_mention_fires_after_denied_one():
    detection = detect_emergency("No chest pain this morning. Now I have chest pain and sweating")

    assert detection.is_emergency is True
    assert detection.emergency_type == "medical"
    assert "chest pain" in detection.triggered_patterns


def test_trauma_mention_after_denial_is_detected():
    detection = detect_emergency("I was not hit by a car yesterday, but today I was hit by a car")

    assert detection.is_emergency is True
    assert detection.emergency_type == "trauma"
    assert detection.severity == "critical"


def test_overdose_uses_regional_contacts():
    detection = detect_emergency("I think I overdosed on pills", "UK")

    assert detection.emergency_type == "mental_health"
    assert detection.severity == "critical"
    assert detection.emergency_contacts.emergency == "999"
    assert "Crisis Line: 116 123" in detection.emergency_message


def test_mental_health_takes_priority_over_trauma():
    detection = detect_emergency("after the car accident I want to die")

    assert detection.emergency_type == "mental_health"
    assert "trauma" in detection.triggered_categories
    assert "mental_health" in detection.triggered_categories


def test_unknown_region_falls_back_to_us():
    assert detect_emergency("I want to kill myself", "ZZ").emergency_contacts.region == "US"


def test_requires_emergency_services():
    assert requires_emergency_services("I am having a seizure") is True
    assert requires_emergency_services("I have a mild headache") is False


def test_crisis_resources_by_type():
    mental = get_crisis_intervention_resources("mental_health", "US")
    assert mental.immediate[0].name == "Crisis Hotline"
    assert mental.immediate[0].number == "988"
    assert mental.online

    medical = get_crisis_intervention_resources("medical", "AU")
    assert medical.immediate[0].number == "000"

    assert get_crisis_intervention_resources(None).immediate == []


def test_checklist_steps_are_numbered():
    checklist = generate_emergency_checklist(detect_emergency("I have crushing chest pain"))

    assert checklist[0].action == "Call emergency services (911)."
    assert checklist[0].priority == "critical"
    assert [item.step for item in checklist] == list(range(1, len(checklist) + 1))
    assert checklist[-1].action == "Follow the dispatcher's instructions."

    assert generate_emergency_checklist(detect_emergency("I have a mild headache")) == []
