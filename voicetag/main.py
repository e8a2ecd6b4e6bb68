"""
FastAPI app: WebSocket endpoint for real-time speaker-labelled transcription;
HTTP API: speaker registry and live-session enrolment.

Client sends binary pcm_f32le mono 16kHz. Server responds with JSON events:
{ "type": "session" | "line" | "partial" | "rename" | "enrolled" | "error" | "stopped", ... }
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from voicetag.config import get_settings
from voicetag.embedding import EmbeddingModel, OnnxInferenceBackend
from voicetag.schemas import EnrolRequest, EnrolResponse, SpeakerListResponse, SpeakerSummary
from voicetag.session_store import get_session, live_session_ids
from voicetag.speakers import JsonProfileStore, SpeakerRegistry
from voicetag.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging() -> None:
    """Root logger from LOG_LEVEL; console always, LOG_FILE too when set."""
    settings = get_settings()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.LOG_FILE:
        log_dir = os.path.dirname(settings.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def _create_embedding_model() -> EmbeddingModel | None:
    """EmbeddingModel for EMBEDDING_BACKEND=onnx; None disables speaker recognition."""
    settings = get_settings()
    if settings.EMBEDDING_BACKEND == "none":
        logger.info("Speaker recognition disabled (EMBEDDING_BACKEND=none)")
        return None
    return EmbeddingModel(OnnxInferenceBackend())


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()

    registry = SpeakerRegistry(JsonProfileStore(settings.SPEAKER_REGISTRY_PATH))
    app.state.registry = registry

    model = _create_embedding_model()
    if model is not None and settings.EMBEDDING_WARM_UP:
        await model.warm_up()
    app.state.embedding_model = model
    yield
    await registry.aclose()
    if model is not None:
        model.close()
    app.state.embedding_model = None


app = FastAPI(
    title="Real-time Speaker-labelled Speech-to-Text",
    description="WebSocket streaming transcription with on-device speaker recognition",
    lifespan=lifespan,
)


def _registry(a: FastAPI) -> SpeakerRegistry:
    registry = getattr(a.state, "registry", None)
    if registry is None:
        raise RuntimeError("App not initialized (lifespan not run?)")
    return registry


@app.websocket("/ws/transcribe")
async def websocket_transcribe(websocket: WebSocket) -> None:
    """
    WebSocket: client sends raw pcm_f32le mono 16kHz (binary) and JSON control messages.
    Server sends transcript events as JSON.
    """
    await websocket.accept()
    a = websocket.app
    manager = WebSocketManager(websocket, _registry(a), getattr(a.state, "embedding_model", None))
    try:
        await manager.run()
    except WebSocketDisconnect:
        pass
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            pass


@app.get("/health")
async def health() -> dict:
    model = getattr(app.state, "embedding_model", None)
    return {
        "status": "ok",
        "speakers": len(_registry(app)),
        "embedding_model": "disabled" if model is None else ("ready" if model.is_ready else "lazy"),
        "live_sessions": len(live_session_ids()),
    }


@app.get("/api/speakers", response_model=SpeakerListResponse)
async def list_speakers() -> SpeakerListResponse:
    profiles = _registry(app).profiles
    return SpeakerListResponse(
        speakers=[SpeakerSummary(name=p.name, samples=len(p.embeddings)) for p in profiles]
    )


@app.delete("/api/speakers")
async def clear_speakers() -> dict:
    """Remove every voiceprint (memory and disk)."""
    registry = _registry(app)
    removed = len(registry)
    registry.clear()
    return {"removed": removed}


@app.post("/api/sessions/{session_id}/enrol", response_model=EnrolResponse)
async def enrol_speaker(session_id: str, request: EnrolRequest) -> EnrolResponse:
    """
    Label a diarized speaker in a live session. Enrols immediately when the speaker
    already has enough audio; otherwise the label is kept and enrolment completes later.
    """
    session = get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found; it must be live on /ws/transcribe")
    try:
        session.enrol(request.name, request.speaker_id, request.start_ms, request.end_ms)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    name = request.name.strip()
    return EnrolResponse(
        session_id=session_id,
        speaker_id=request.speaker_id,
        name=name,
        pending=request.speaker_id in session.assembler.state.pending,
    )
