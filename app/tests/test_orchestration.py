import asyncio
import json
from pathlib import Path

from anamnesis import orchestration
from anamnesis.config import Settings
from anamnesis.disclaimers import CRISIS_DISCLAIMER, CRISIS_NOTICES
from anamnesis.events import SafetyEventLog
from anamnesis.expansion import ExpansionStore
from anamnesis.orchestration import (
    FALLBACK_PROMPT,
    FALLBACK_SUGGESTION,
    ErrorCode,
    MedicalQueryRouter,
    PipelineState,
    route_medical_query,
)
from anamnesis.schemas import LayeredResponse


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "enable_classifier": True,
        "enable_med_query_classifier": False,
        "enable_role_mode": False,
        "enable_concise_mode": False,
        "enable_expansion_prompt": False,
        "event_log_enabled": False,
        "event_log_dir": str(tmp_path),
    }
    values.update(overrides)
    return Settings(**values)


class Recorder:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event_name, payload):
        self.events.append((event_name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def test_severe_chest_pain_is_high_risk(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))

    result = asyncio.run(router.route("I have severe chest pain for 20 minutes"))

    assert result.metadata.triage_level == "emergency"
    assert result.is_high_risk is True
    assert any("emergency" in d.lower() for d in result.disclaimers)
    assert result.atd
    assert result.metadata.symptoms == ["chest pain"]
    assert result.metadata.body_system == "cardiovascular"
    assert set(result.metadata.stage_timings) >= {"parseIntent", "triage", "enhancePrompt"}
    assert router.last_state is PipelineState.NORMALIZED
    assert router.last_error_code is None
    assert router.last_handoff.system_prompt.startswith("SYSTEM POLICY")


def test_mild_headache_gets_follow_up_questions(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))

    result = asyncio.run(router.route("I have a mild headache since yesterday"))

    assert result.metadata.triage_level == "non_urgent"
    assert result.is_high_risk is False
    assert 2 <= len(result.suggestions) <= 3
    assert any("trigger" in s.lower() for s in result.suggestions)
    assert result.atd is None


def test_empty_input_returns_fallback(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))
    recorder = Recorder()

    result = asyncio.run(router.route("   ", emit=recorder))

    assert result.user_input == ""
    assert result.enhanced_prompt == FALLBACK_PROMPT
    assert result.disclaimers == []
    assert result.suggestions == [FALLBACK_SUGGESTION]
    assert result.metadata.triage_level == "non_urgent"
    assert result.metadata.intent_confidence == 0.0
    assert router.last_state is PipelineState.FALLBACK_NORMALIZED
    assert router.last_error_code is ErrorCode.INPUT_INVALID
    assert recorder.names == ["route.accepted", "stage.failed", "route.fallback", "route.final"]


def test_crisis_turn_uses_crisis_disclaimers(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))

    result = asyncio.run(router.route("I am feeling suicidal"))

    assert result.metadata.triage_level == "emergency"
    assert result.disclaimers[0] == CRISIS_DISCLAIMER
    assert result.atd == list(CRISIS_NOTICES)


def test_garbage_and_oversized_input_never_raise(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))

    for raw in (b"\xff\xfe\x00garbage", "x" * 20000, 12345, None):
        result = asyncio.run(router.route(raw))
        assert isinstance(result, LayeredResponse)
        assert result.enhanced_prompt


def test_emit_sequence_and_final_payload(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))
    recorder = Recorder()

    asyncio.run(router.route("I have a mild headache", emit=recorder, user_role="doctor"))

    assert recorder.names == [
        "route.accepted",
        "stage.completed",
        "stage.completed",
        "stage.completed",
        "route.final",
    ]
    stages = [payload["stage"] for name, payload in recorder.events if name == "stage.completed"]
    assert stages == ["parseIntent", "triage", "enhancePrompt"]

    final = recorder.events[-1][1]
    assert final["state"] == "NORMALIZED"
    assert final["triage_level"] == "non_urgent"
    assert final["user_role"] == "doctor"
    assert final["is_medication_enhanced"] is False
    assert final["response"]["metadata"]["triageLevel"] == "non_urgent"


def test_failing_emitter_yields_fallback(tmp_path: Path):
    router = MedicalQueryRouter(settings=_settings(tmp_path))

    async def broken_emit(event_name, payload):
        raise RuntimeError("client went away")

    result = asyncio.run(router.route("I have a mild headache", emit=broken_emit))

    assert result.enhanced_prompt == FALLBACK_PROMPT
    assert router.last_state is PipelineState.FALLBACK_NORMALIZED
    assert router.last_error_code is ErrorCode.PIPELINE_FAILED


def test_enhance_failure_keeps_triage(tmp_path: Path, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("template missing")

    monkeypatch.setattr(orchestration, "enhance_prompt", boom)
    router = MedicalQueryRouter(settings=_settings(tmp_path))
    recorder = Recorder()

    result = asyncio.run(router.route("I have severe chest pain", emit=recorder))

    assert router.last_error_code is ErrorCode.ENHANCE_FAILED
    assert result.enhanced_prompt == FALLBACK_PROMPT
    assert result.metadata.triage_level == "emergency"
    assert result.is_high_risk is True
    assert result.disclaimers
    assert "stage.failed" in recorder.names
    assert "enhancePrompt" in result.metadata.stage_timings


def test_parse_failure_uses_generic_fallback(tmp_path: Path, monkeypatch):
    def boom(text):
        raise ValueError("bad pattern")

    monkeypatch.setattr(orchestration, "parse_intent", boom)
    router = MedicalQueryRouter(settings=_settings(tmp_path))

    result = asyncio.run(router.route("I have severe chest pain"))

    assert router.last_error_code is ErrorCode.PARSE_FAILED
    assert result.metadata.triage_level == "non_urgent"
    assert result.disclaimers == []


def test_final_event_is_logged_without_user_text(tmp_path: Path):
    settings = _settings(tmp_path, event_log_enabled=True)
    event_log = SafetyEventLog(settings)
    router = MedicalQueryRouter(settings=settings, event_log=event_log)

    asyncio.run(router.route("I have severe chest pain, email me at pat@example.com"))

    events = event_log.read_events()
    assert [e["event"] for e in events] == ["route.final"]
    assert events[0]["payload"]["triage_level"] == "emergency"
    assert "response" not in events[0]["payload"]
    dumped = json.dumps(events)
    assert "chest" not in dumped
    assert "pat@example.com" not in dumped


def test_expansion_follow_up_within_session(tmp_path: Path):
    settings = _settings(tmp_path, enable_expansion_prompt=True)
    router = MedicalQueryRouter(settings=settings, expansion_store=ExpansionStore(ttl_sec=60))

    asyncio.run(router.route("what is asthma", session_id="s1"))
    follow_up = asyncio.run(router.route("tell me more", session_id="s1"))

    assert 'Original Query: "what is asthma"' in follow_up.enhanced_prompt
    assert router.last_handoff.system_prompt.startswith("EXPANSION MODE")

    other = asyncio.run(router.route("tell me more", session_id="s2"))
    assert "Expansion Mode" not in other.enhanced_prompt


def test_module_level_entry_point():
    result = asyncio.run(route_medical_query("I have a mild cough"))
    assert result.metadata.triage_level == "non_urgent"
