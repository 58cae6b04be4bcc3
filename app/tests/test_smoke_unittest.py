import asyncio
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from anamnesis.config import Settings
from anamnesis.events import SafetyEventLog
from anamnesis.orchestration import MedicalQueryRouter, PipelineState
from anamnesis.safety_processor import process_medical_safety


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        enable_classifier=True,
        enable_med_query_classifier=False,
        enable_role_mode=False,
        enable_concise_mode=False,
        enable_expansion_prompt=False,
        event_log_enabled=True,
        event_log_dir=str(tmp_path),
    )


class AnamnesisSmokeTests(unittest.TestCase):
    def test_emergency_query_end_to_end(self):
        with TemporaryDirectory() as tmp:
            settings = _settings(Path(tmp))
            event_log = SafetyEventLog(settings)
            router = MedicalQueryRouter(settings=settings, event_log=event_log)

            events = []

            async def emit(event_name, payload):
                events.append(event_name)

            result = asyncio.run(router.route("I have crushing chest pain and can't breathe", emit=emit))

            self.assertEqual(result.metadata.triage_level, "emergency")
            self.assertTrue(result.is_high_risk)
            self.assertEqual(router.last_state, PipelineState.NORMALIZED)
            self.assertEqual(events[-1], "route.final")
            self.assertEqual(len(event_log.read_events()), 1)

    def test_routine_query_end_to_end(self):
        with TemporaryDirectory() as tmp:
            router = MedicalQueryRouter(settings=_settings(Path(tmp)))
            result = asyncio.run(router.route("I have a mild headache since yesterday"))

            self.assertEqual(result.metadata.triage_level, "non_urgent")
            self.assertFalse(result.is_high_risk)
            self.assertTrue(result.suggestions)

    def test_safety_pass_agrees_with_router(self):
        safety = process_medical_safety("I have crushing chest pain")

        self.assertTrue(safety.should_block_ai)
        self.assertEqual(safety.safety_context.triage.level, "EMERGENCY")
        self.assertEqual(safety.safety_context.atd_routing.provider_type, "emergency")


if __name__ == "__main__":
    unittest.main()
