"""End-to-end query interpretation: parse, triage, enhance, normalize."""

from __future__ import annotations

import logging
from enum import Enum
from time import perf_counter
from typing import Any, Awaitable, Callable, NamedTuple, Sequence
from uuid import uuid4

from anamnesis.config import Settings, get_settings
from anamnesis.context import create_layer_context, update_layer_context, validate_layer_context
from anamnesis.disclaimers import dedupe_disclaimers, select_disclaimers
from anamnesis.events import SafetyEventLog
from anamnesis.expansion import ExpansionStore
from anamnesis.intent_parser import infer_body_system, parse_intent
from anamnesis.output import normalize_router_result
from anamnesis.prompt_enhancer import enhance_prompt
from anamnesis.schemas import (
    ConversationTurn,
    Demographics,
    LayerContext,
    LayeredResponse,
    PromptBundle,
    Triage,
)
from anamnesis.triage import perform_triage
from anamnesis.utils import StageTimer, to_wire_level

logger = logging.getLogger(__name__)

EmitFn = Callable[[str, dict[str, Any]], Awaitable[None]]

FALLBACK_PROMPT = (
    "System fallback: Provide general, low-risk educational guidance and suggest appropriate next steps. "
    "Include red-flag checklist and advise contacting a clinician if concerned."
)
FALLBACK_SUGGESTION = (
    "Describe symptoms, duration, severity, and any red flags (e.g., chest pain, shortness of breath)."
)


class PipelineState(str, Enum):
    INIT = "INIT"
    PARSED = "PARSED"
    TRIAGED = "TRIAGED"
    ENHANCED = "ENHANCED"
    NORMALIZED = "NORMALIZED"
    FAILED = "FAILED"
    FALLBACK_NORMALIZED = "FALLBACK_NORMALIZED"


class ErrorCode(str, Enum):
    INPUT_INVALID = "INPUT_INVALID"
    PARSE_FAILED = "PARSE_FAILED"
    TRIAGE_FAILED = "TRIAGE_FAILED"
    ENHANCE_FAILED = "ENHANCE_FAILED"
    NORMALIZE_FAILED = "NORMALIZE_FAILED"
    PIPELINE_FAILED = "PIPELINE_FAILED"


class StageOutcome(NamedTuple):
    value: Any
    error_code: ErrorCode | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


class ModelHandoff(NamedTuple):
    system_prompt: str
    enhanced_prompt: str
    expansion_prompt: str
    user_role: str
    is_medication_enhanced: bool


def _run_stage(
    name: str,
    error_code: ErrorCode,
    timer: StageTimer,
    fn: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> StageOutcome:
    timer.start(name)
    try:
        value = fn(*args, **kwargs)
    except Exception as exc:
        timer.stop(name)
        logger.error(
            "Stage %s failed: %s",
            name,
            type(exc).__name__,
            exc_info=True,
            extra={"error_code": error_code.value},
        )
        return StageOutcome(None, error_code, f"{type(exc).__name__}: {exc}")
    timer.stop(name)
    return StageOutcome(value)


async def _emit_quietly(emit: EmitFn | None, event: str, payload: dict[str, Any]) -> None:
    if emit is None:
        return
    try:
        await emit(event, payload)
    except Exception:
        logger.warning("Event emitter failed for %s", event, exc_info=True)


class MedicalQueryRouter:
    def __init__(
        self,
        settings: Settings | None = None,
        expansion_store: ExpansionStore | None = None,
        event_log: SafetyEventLog | None = None,
    ):
        self._settings = settings or get_settings()
        self._expansion_store = expansion_store or ExpansionStore(ttl_sec=self._settings.expansion_ttl_sec)
        self._event_log = event_log
        self.last_state = PipelineState.INIT
        self.last_error_code: ErrorCode | None = None
        self.last_handoff: ModelHandoff | None = None

    @property
    def expansion_store(self) -> ExpansionStore:
        return self._expansion_store

    async def route(
        self,
        user_input: Any,
        *,
        user_role: str = "public",
        conversation_history: Sequence[ConversationTurn | dict] | None = None,
        session_id: str | None = None,
        demographics: Demographics | dict | None = None,
        emit: EmitFn | None = None,
    ) -> LayeredResponse:
        """Interpret one user turn. Never raises; failures yield a safe fallback response."""
        request_id = str(uuid4())
        started = perf_counter()
        timer = StageTimer()
        self.last_state = PipelineState.INIT
        self.last_error_code = None
        self.last_handoff = None
        text = ""
        triage: Triage | None = None

        try:
            ctx = create_layer_context(user_input, demographics)
            text = ctx.user_input
            await self._emit(
                emit,
                "route.accepted",
                {"request_id": request_id, "input_length": len(text), "has_session": bool(session_id)},
            )

            if validate_layer_context(ctx):
                logger.warning("Rejected empty query", extra={"error_code": ErrorCode.INPUT_INVALID.value})
                return await self._fallback(
                    request_id, text, ErrorCode.INPUT_INVALID, timer, started, emit, triage=None, confidence=0.0
                )

            parsed = _run_stage("parseIntent", ErrorCode.PARSE_FAILED, timer, parse_intent, text)
            if not parsed.ok:
                return await self._fallback(request_id, text, parsed.error_code, timer, started, emit, triage=None)
            intent, symptoms = parsed.value
            ctx = update_layer_context(
                ctx,
                intent=intent,
                symptoms=symptoms,
                metadata={"body_system": infer_body_system(symptoms)},
            )
            await self._stage_completed(emit, request_id, PipelineState.PARSED, "parseIntent", timer)

            triaged = _run_stage("triage", ErrorCode.TRIAGE_FAILED, timer, perform_triage, ctx)
            if not triaged.ok:
                return await self._fallback(request_id, text, triaged.error_code, timer, started, emit, triage=None)
            triage = triaged.value
            ctx = update_layer_context(ctx, triage=triage)
            await self._stage_completed(emit, request_id, PipelineState.TRIAGED, "triage", timer, level=triage.level)

            enhanced = _run_stage(
                "enhancePrompt",
                ErrorCode.ENHANCE_FAILED,
                timer,
                enhance_prompt,
                ctx,
                user_role,
                conversation_history,
                settings=self._settings,
                expansion_store=self._expansion_store,
                session_id=session_id,
            )
            if not enhanced.ok:
                return await self._fallback(request_id, text, enhanced.error_code, timer, started, emit, triage=triage)
            prompt = enhanced.value
            ctx = update_layer_context(
                ctx,
                prompt=PromptBundle(system_prompt=prompt.system_prompt, enhanced_prompt=prompt.enhanced_prompt),
            )
            await self._stage_completed(emit, request_id, PipelineState.ENHANCED, "enhancePrompt", timer)

            raw = self._raw_result(ctx, timer, started, prompt.enhanced_prompt, prompt.disclaimers)
            raw["suggestions"] = list(prompt.suggestions)
            raw["atd"] = list(prompt.atd_notices) or None
            normalized = _run_stage("normalize", ErrorCode.NORMALIZE_FAILED, timer, normalize_router_result, raw)
            if not normalized.ok:
                return await self._fallback(
                    request_id, text, normalized.error_code, timer, started, emit, triage=triage
                )

            self.last_state = PipelineState.NORMALIZED
            self.last_handoff = ModelHandoff(
                system_prompt=prompt.system_prompt,
                enhanced_prompt=prompt.enhanced_prompt,
                expansion_prompt=prompt.expansion_prompt,
                user_role=user_role or "public",
                is_medication_enhanced=prompt.is_medication_query and self._settings.is_medication_enhancement_enabled(),
            )
            result: LayeredResponse = normalized.value.result
            await self._final(
                emit,
                request_id,
                result,
                question_type=prompt.question_type,
                is_expansion=prompt.is_expansion,
            )
            return result
        except Exception:
            logger.error("Router failed", exc_info=True, extra={"error_code": ErrorCode.PIPELINE_FAILED.value})
            return await self._fallback(
                request_id, text, ErrorCode.PIPELINE_FAILED, timer, started, emit, triage=triage
            )

    async def _emit(self, emit: EmitFn | None, event: str, payload: dict[str, Any]) -> None:
        if emit is not None:
            await emit(event, payload)

    async def _stage_completed(
        self,
        emit: EmitFn | None,
        request_id: str,
        state: PipelineState,
        stage: str,
        timer: StageTimer,
        **extra: Any,
    ) -> None:
        self.last_state = state
        await self._emit(
            emit,
            "stage.completed",
            {
                "request_id": request_id,
                "stage": stage,
                "state": state.value,
                "duration_ms": timer.to_dict().get(stage, 0),
                **extra,
            },
        )

    def _raw_result(
        self,
        ctx: LayerContext,
        timer: StageTimer,
        started: float,
        enhanced_prompt: str,
        disclaimers: list[str],
    ) -> dict[str, Any]:
        triage = ctx.triage
        return {
            "userInput": ctx.user_input,
            "enhancedPrompt": enhanced_prompt,
            "isHighRisk": bool(triage and triage.is_high_risk),
            "disclaimers": disclaimers,
            "metadata": {
                "processingTime": max(0, int((perf_counter() - started) * 1000)),
                "intentConfidence": ctx.intent.confidence,
                "triageLevel": to_wire_level(triage.level) if triage else None,
                "bodySystem": ctx.metadata.body_system,
                "symptoms": list(triage.symptom_names) if triage else [],
                "stageTimings": timer.to_dict(),
            },
        }

    async def _fallback(
        self,
        request_id: str,
        text: str,
        error_code: ErrorCode,
        timer: StageTimer,
        started: float,
        emit: EmitFn | None,
        *,
        triage: Triage | None,
        confidence: float | None = None,
    ) -> LayeredResponse:
        """Build the safe generic response.

        A triage level reached before the failure is kept, so a failure late in the
        pipeline never reports a lower urgency than was already assessed.
        """
        self.last_state = PipelineState.FAILED
        self.last_error_code = error_code
        await _emit_quietly(emit, "stage.failed", {"request_id": request_id, "error_code": error_code.value})

        disclaimers: list[str] = []
        atd = None
        if triage is not None:
            pack = select_disclaimers(triage.level, triage.symptom_names)
            disclaimers = dedupe_disclaimers(pack.disclaimers)
            atd = list(pack.atd_notices) or None

        raw = {
            "userInput": text,
            "enhancedPrompt": FALLBACK_PROMPT,
            "isHighRisk": bool(triage and triage.is_high_risk),
            "disclaimers": disclaimers,
            "suggestions": [FALLBACK_SUGGESTION],
            "atd": atd,
            "metadata": {
                "processingTime": max(0, int((perf_counter() - started) * 1000)),
                "intentConfidence": confidence,
                "triageLevel": to_wire_level(triage.level if triage else "NON_URGENT"),
                "symptoms": list(triage.symptom_names) if triage else [],
                "stageTimings": timer.to_dict(),
            },
        }
        result = normalize_router_result(raw).result
        self.last_state = PipelineState.FALLBACK_NORMALIZED

        await _emit_quietly(
            emit,
            "route.fallback",
            {"request_id": request_id, "error_code": error_code.value, "state": self.last_state.value},
        )
        await self._final(emit, request_id, result)
        return result

    async def _final(
        self,
        emit: EmitFn | None,
        request_id: str,
        result: LayeredResponse,
        *,
        question_type: str | None = None,
        is_expansion: bool = False,
    ) -> None:
        handoff = self.last_handoff
        payload = {
            "request_id": request_id,
            "state": self.last_state.value,
            "error_code": self.last_error_code.value if self.last_error_code else None,
            "triage_level": result.metadata.triage_level,
            "is_high_risk": result.is_high_risk,
            "processing_time": result.metadata.processing_time,
            "stage_timings": result.metadata.stage_timings or {},
            "question_type": question_type,
            "is_expansion": is_expansion,
            "user_role": handoff.user_role if handoff else None,
            "is_medication_enhanced": handoff.is_medication_enhanced if handoff else False,
            "response": result.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        if self._event_log is not None:
            record = {key: value for key, value in payload.items() if key != "response"}
            try:
                await self._event_log.append_event("route.final", record)
            except OSError:
                logger.warning("Could not write route.final to the event log", exc_info=True)
        if self.last_state is PipelineState.FALLBACK_NORMALIZED:
            await _emit_quietly(emit, "route.final", payload)
        else:
            await self._emit(emit, "route.final", payload)


_default_router: MedicalQueryRouter | None = None


def get_router() -> MedicalQueryRouter:
    global _default_router
    if _default_router is None:
        _default_router = MedicalQueryRouter()
    return _default_router


async def route_medical_query(user_input: Any, **kwargs: Any) -> LayeredResponse:
    """Module-level entry point backed by a process-wide router."""
    return await get_router().route(user_input, **kwargs)
