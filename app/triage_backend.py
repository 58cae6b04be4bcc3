"""HTTP entrypoint for the medical query interpretation and safety triage API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from anamnesis.config import get_settings
from anamnesis.events import SafetyEventLog
from anamnesis.expansion import ExpansionStore
from anamnesis.orchestration import MedicalQueryRouter
from anamnesis.safety_processor import process_medical_safety, summarize_for_analytics
from anamnesis.schemas import QueryRequest, SafetyRequest
from anamnesis.sse import KEEP_ALIVE, format_sse
from anamnesis.utils import utc_now

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

event_log = SafetyEventLog(settings)
router = MedicalQueryRouter(
    settings=settings,
    expansion_store=ExpansionStore(ttl_sec=settings.expansion_ttl_sec),
    event_log=event_log,
)

app = FastAPI(title="Anamnesis Triage API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _parse(model: type[QueryRequest] | type[SafetyRequest], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc


@app.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "service": settings.app_name,
        "timestamp": utc_now().isoformat(),
        "default_region": settings.default_region,
        "feature_flags": {
            "classifier": settings.enable_classifier,
            "med_query_classifier": settings.enable_med_query_classifier,
            "role_mode": settings.enable_role_mode,
            "concise_mode": settings.enable_concise_mode,
            "expansion_prompt": settings.enable_expansion_prompt,
        },
        "event_log_enabled": event_log.enabled,
        "active_expansion_sessions": len(router.expansion_store),
    }


@app.post("/v1/query")
async def query(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    request = _parse(QueryRequest, payload)
    result = await router.route(
        request.user_input,
        user_role=request.user_role,
        conversation_history=request.conversation_history,
        session_id=request.session_id,
        demographics=request.demographics,
    )
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/v1/query/stream")
async def query_stream(payload: dict[str, Any] = Body(...)):
    request = _parse(QueryRequest, payload)

    queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()
    done = asyncio.Event()

    async def emit(event_name: str, event_payload: dict[str, Any]) -> None:
        envelope = {
            "event": event_name,
            "timestamp": utc_now().isoformat(),
            **event_payload,
        }
        await queue.put((event_name, envelope))

    async def runner() -> None:
        try:
            await router.route(
                request.user_input,
                user_role=request.user_role,
                conversation_history=request.conversation_history,
                session_id=request.session_id,
                demographics=request.demographics,
                emit=emit,
            )
        finally:
            done.set()

    asyncio.create_task(runner())

    async def event_gen():
        while True:
            if done.is_set() and queue.empty():
                break
            try:
                event_name, envelope = await asyncio.wait_for(queue.get(), timeout=0.75)
                yield format_sse(event_name, envelope)
            except asyncio.TimeoutError:
                yield KEEP_ALIVE

    return StreamingResponse(event_gen(), media_type="text/event-stream")


@app.post("/v1/safety")
async def safety(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    request = _parse(SafetyRequest, payload)
    result = process_medical_safety(
        request.user_input,
        region=request.region,
        demographics=request.demographics,
        session_id=request.session_id,
        settings=settings,
    )
    if event_log.enabled:
        await event_log.append_event("safety.processed", summarize_for_analytics(result, request.session_id))
    return result.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
