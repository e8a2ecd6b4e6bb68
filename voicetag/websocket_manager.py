"""
WebSocketManager: binds one client WebSocket to one SessionOrchestrator.

Client -> server:
- binary: raw pcm_f32le 16kHz mono audio, any chunk size;
- text: {"type": "enrol", "name", "speaker_id", "start_ms"?, "end_ms"?} or {"type": "stop"}.
Server -> client (JSON text): session, line, partial, rename, enrolled, error, stopped.
Orchestrator events are queued and written by a single writer task so callbacks never await.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from voicetag.embedding.model import EmbeddingModel
from voicetag.errors import TransportFailed
from voicetag.orchestrator import SessionOrchestrator
from voicetag.schemas import EnrolRequest
from voicetag.session_store import register_session, remove_session
from voicetag.speakers.registry import SpeakerRegistry
from voicetag.transport import TranscriptionTransport

logger = logging.getLogger(__name__)


class WebSocketManager:
    """One WebSocket = one capture session."""

    def __init__(
        self,
        websocket: WebSocket,
        registry: SpeakerRegistry,
        model: Optional[EmbeddingModel],
        transport: Optional[TranscriptionTransport] = None,
    ) -> None:
        self._ws = websocket
        self._outgoing: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue()
        self._closed = False
        self.session = SessionOrchestrator(
            registry,
            model,
            transport=transport,
            emit=self._outgoing.put_nowait,
        )

    async def _writer(self) -> None:
        while True:
            payload = await self._outgoing.get()
            if payload is None:
                return
            if self._closed:
                continue
            try:
                await self._ws.send_text(json.dumps(payload))
            except (WebSocketDisconnect, RuntimeError):
                self._closed = True

    def _handle_text(self, text: str) -> bool:
        """Control message. Returns False when the client asked to stop."""
        try:
            msg = json.loads(text)
        except ValueError:
            self._outgoing.put_nowait({"type": "error", "message": "invalid JSON"})
            return True
        kind = msg.get("type") if isinstance(msg, dict) else None
        if kind == "stop":
            return False
        if kind == "enrol":
            try:
                req = EnrolRequest.model_validate(msg)
                self.session.enrol(req.name, req.speaker_id, req.start_ms, req.end_ms)
            except (ValidationError, ValueError) as e:
                self._outgoing.put_nowait({"type": "error", "message": str(e)})
                return True
            self._outgoing.put_nowait({"type": "enrolled", "speaker_id": req.speaker_id, "name": req.name.strip()})
            return True
        self._outgoing.put_nowait({"type": "error", "message": f"unknown message type {kind!r}"})
        return True

    async def run(self) -> None:
        """Receive loop until disconnect or stop; then stop the session and flush events."""
        writer_task = asyncio.create_task(self._writer())
        try:
            try:
                await self.session.start()
            except TransportFailed as e:
                logger.error("Session %s could not start: %s", self.session.session_id, e)
                self._outgoing.put_nowait({"type": "error", "message": str(e)})
                return
            register_session(self.session)

            while not self._closed:
                try:
                    msg = await self._ws.receive()
                except (WebSocketDisconnect, RuntimeError):
                    break
                if msg.get("type") == "websocket.disconnect":
                    break
                data = msg.get("bytes")
                if data is not None:
                    self.session.push_audio(data)
                    continue
                text = msg.get("text")
                if text is not None and not self._handle_text(text):
                    break
        finally:
            remove_session(self.session.session_id)
            if self.session.running:
                record = await self.session.stop()
                self._outgoing.put_nowait(
                    {"type": "stopped", "session_id": record.session_id, "lines": len(record.lines)}
                )
            self._outgoing.put_nowait(None)
            await writer_task
