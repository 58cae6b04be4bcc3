import asyncio
import json
from pathlib import Path

from anamnesis import safety_processor
from anamnesis.config import Settings
from anamnesis.events import SafetyEventLog
from anamnesis.fallback import SAFETY_DISCLAIMERS
from anamnesis.safety_processor import (
    GENERAL_NOTICE,
    clean_stray_markers,
    has_role_disclaimers,
    process_final_response,
    process_medical_safety,
    summarize_for_analytics,
    validate_safety_processing,
)


def test_crisis_blocks_ai_and_requires_review():
    result = process_medical_safety("I want to kill myself", region="US")

    assert result.should_block_ai is True
    assert result.requires_human_review is True
    assert result.emergency_protocol is True
    assert result.fallback_response.type == "mental_health"
    assert result.safety_notices[0].type == "mental_health"
    assert result.safety_notices[0].priority == "critical"
    assert result.safety_notices[-1].message == GENERAL_NOTICE
    assert result.safety_context.atd_routing.provider_type == "mental_health"
    assert validate_safety_processing(result) is True


def test_chest_pain_blocks_with_emergency_fallback():
    result = process_medical_safety("I have severe chest pain")

    assert result.should_block_ai is True
    assert result.fallback_response.type == "emergency"
    assert result.fallback_response.response.startswith("CHEST PAIN EMERGENCY DETECTED")
    assert result.route_to_provider is True
    assert result.priority_score == 10
    assert result.triage_warning.show_emergency_contacts is True
    assert result.triage_warning.contacts.emergency == "911"


def test_region_changes_contacts():
    result = process_medical_safety("I have severe chest pain", region="UK")
    assert result.triage_warning.contacts.emergency == "999"


def test_mild_headache_passes_through():
    result = process_medical_safety("I have a mild headache")

    assert result.should_block_ai is False
    assert result.fallback_response is None
    assert result.triage_warning is None
    assert result.requires_human_review is False
    assert [n.title for n in result.safety_notices] == ["Medical disclaimer"]
    assert result.error_code is None


def test_urgent_turn_gets_provider_notice():
    result = process_medical_safety("I have a mild headache", demographics={"age": 10})

    assert result.route_to_provider is True
    assert result.should_block_ai is False
    assert result.safety_notices[0].type == "urgent"
    assert result.triage_warning.title == "Urgent evaluation recommended"


def test_internal_error_is_conservative(monkeypatch):
    def boom(ctx):
        raise RuntimeError("rule table corrupted")

    monkeypatch.setattr(safety_processor, "perform_triage", boom)
    result = process_medical_safety("I have a mild headache")

    assert result.should_block_ai is True
    assert result.requires_human_review is True
    assert result.error_code == "SAFETY_FAILED"
    assert result.safety_context is None
    assert result.fallback_response.type == "technical_error"


def test_validate_rejects_incomplete_results():
    assert validate_safety_processing({"safety_context": None}) is False
    assert (
        validate_safety_processing(
            {
                "safety_context": None,
                "safety_notices": [],
                "should_block_ai": True,
                "requires_human_review": True,
                "emergency_protocol": True,
                "route_to_provider": True,
            }
        )
        is False
    )


def test_analytics_summary_has_no_user_text():
    text = "my email is pat@example.com and I have chest pain"
    summary = summarize_for_analytics(process_medical_safety(text), "s1")

    assert summary["session_id"] == "s1"
    assert summary["triage_level"] == "EMERGENCY"
    assert summary["ai_blocked"] is True
    dumped = json.dumps(summary)
    assert "pat@example.com" not in dumped
    assert "chest" not in dumped


def test_summary_is_written_to_event_log(tmp_path: Path):
    event_log = SafetyEventLog(Settings(event_log_enabled=True, event_log_dir=str(tmp_path)))
    summary = summarize_for_analytics(process_medical_safety("I have a mild headache"))

    asyncio.run(event_log.append_event("safety.processed", summary))

    events = event_log.read_events()
    assert event_log.path == tmp_path / "logs" / "events.jsonl"
    assert events[0]["event"] == "safety.processed"
    assert events[0]["payload"]["session_id"] == "anonymous"
    assert events[0]["timestamp"]


def test_disabled_event_log_writes_nothing(tmp_path: Path):
    event_log = SafetyEventLog(Settings(event_log_enabled=False, event_log_dir=str(tmp_path)))

    asyncio.run(event_log.append_event("safety.processed", {"a": 1}))

    assert event_log.enabled is False
    assert event_log.read_events() == []
    assert not (tmp_path / "logs").exists()


def test_clean_stray_markers():
    assert clean_stray_markers("• first\n• second") == "- first\n- second"
    assert clean_stray_markers("a\n\n\n\nb") == "a\n\nb"
    assert clean_stray_markers("a    b  ") == "a b"
    assert clean_stray_markers("a\u200bb") == "a b"


def test_final_response_softens_and_appends_disclaimer():
    result = process_medical_safety("I have a mild headache")
    text = process_final_response("You definitely have a cold.", result, settings=Settings())

    assert "definitely" not in text
    assert text.endswith(SAFETY_DISCLAIMERS["general"])


def test_role_policy_disclaimer_suppresses_duplicate():
    settings = Settings(enable_role_mode=True)
    result = process_medical_safety("I have a mild headache")
    text = process_final_response("Rest well.", result, system_prompt="ROLE POLICY (Public):\n", settings=settings)

    assert text == "Rest well."
    assert has_role_disclaimers(settings, "ROLE POLICY (Public)") is True
    assert has_role_disclaimers(Settings(enable_role_mode=False), "ROLE POLICY (Public)") is False


def test_trauma_after_earlier_denial_still_blocks():
    result = process_medical_safety("I was not hit by a car yesterday, but today I was hit by a car")

    assert result.should_block_ai is True
    assert result.emergency_protocol is True
    assert result.fallback_response is not None
    assert result.safety_context.emergency.emergency_type == "trauma"
