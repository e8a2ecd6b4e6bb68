"""
SessionOrchestrator: one capture session from microphone bytes to named transcript lines.

Audio path: client bytes -> AudioReceiver frames -> bounded queue -> sender task,
which appends each frame to the AudioRingStore as it hands it to the transport.
The ring store therefore holds exactly the audio the provider heard, so token
times slice the right samples even after the queue dropped frames.
Token path: transport batches -> consumer task -> TranscriptAssembler, in arrival order.
Events for the client (session, line, partial, rename, error) go to the emit callback.

Stop order matters: end the audio, let the provider flush its last finals through
the assembler, then cancel speaker work, close the transport, persist the registry
and the session record.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Optional

from voicetag.audio import AudioReceiver, AudioRingStore, pcm_f32le_to_float32
from voicetag.config import get_settings
from voicetag.embedding.model import EmbeddingModel
from voicetag.errors import TransportFailed
from voicetag.features.fbank import FeatureExtractor
from voicetag.speakers.models import TimeRange
from voicetag.speakers.registry import SpeakerRegistry
from voicetag.speakers.voice_service import VoiceService
from voicetag.transcript.assembler import TranscriptAssembler
from voicetag.transcript.lines import TranscriptLine
from voicetag.transcript.writer import SessionRecord, SessionRecordWriterBase, create_session_writer
from voicetag.transport import TranscriptionTransport, create_transport

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], None]

_DROP_LOG_EVERY = 100


def generate_session_id() -> str:
    """UUID hex, 12 chars."""
    return uuid.uuid4().hex[:12]


class SessionOrchestrator:
    def __init__(
        self,
        registry: SpeakerRegistry,
        model: Optional[EmbeddingModel] = None,
        transport: Optional[TranscriptionTransport] = None,
        writer: Optional[SessionRecordWriterBase] = None,
        emit: Optional[EventCallback] = None,
        session_id: Optional[str] = None,
        extractor: Optional[FeatureExtractor] = None,
    ) -> None:
        settings = get_settings()
        self.session_id = session_id or generate_session_id()
        self.registry = registry
        self.transport = transport or create_transport()
        self._writer = writer or create_session_writer()
        self._emit = emit

        self.audio_store = AudioRingStore()
        # Without a model, lines still get diarization labels but no names
        self.voice = VoiceService(self.audio_store, model, registry, extractor) if model is not None else None
        self.assembler = TranscriptAssembler(
            self.voice,
            identify_threshold=registry.identify_threshold,
            on_line=self._on_line,
            on_partial=self._on_partial,
            on_rename=self._on_rename,
        )

        self._receiver = AudioReceiver()
        self._frames: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=settings.TRANSPORT_QUEUE_MAX_FRAMES)
        self._drain_timeout = settings.TRANSPORT_DRAIN_TIMEOUT_SEC
        self._sender_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._transport_failed = False
        self._dropped_frames = 0
        self._started_at = time.time()
        self._running = False
        self._stopped = False

    # --- events ---

    def _send_event(self, payload: dict[str, Any]) -> None:
        if self._emit is None:
            return
        try:
            self._emit(payload)
        except RuntimeError as e:
            logger.debug("Event for session %s not delivered: %s", self.session_id, e)

    def _on_line(self, index: int, line: TranscriptLine) -> None:
        self._send_event({"type": "line", "index": index, **line.to_dict()})

    def _on_partial(self, text: str) -> None:
        self._send_event({"type": "partial", "text": text})

    def _on_rename(self, speaker_id: int, name: str) -> None:
        self._send_event({"type": "rename", "speaker_id": speaker_id, "name": name})

    # --- lifecycle ---

    async def start(self) -> None:
        """Connect the transport and start sender/consumer. Raises TransportFailed."""
        if self._running:
            return
        await self.transport.connect()
        self._started_at = time.time()
        self._running = True
        self._sender_task = asyncio.create_task(self._sender(), name=f"sender-{self.session_id}")
        self._consumer_task = asyncio.create_task(self._consumer(), name=f"consumer-{self.session_id}")
        logger.info("Session %s started (transport=%s)", self.session_id, self.transport.name)
        self._send_event({"type": "session", "session_id": self.session_id})

    def push_audio(self, data: bytes) -> None:
        """Producer side. Never blocks: frames go to the send queue."""
        if not self._running or not data:
            return
        self._receiver.feed(data)
        for frame in self._receiver.drain_frames():
            self._accept_frame(frame)

    def _accept_frame(self, frame: bytes) -> None:
        if self._frames.full():
            try:
                self._frames.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self._dropped_frames += 1
            if self._dropped_frames % _DROP_LOG_EVERY == 1:
                logger.warning(
                    "Session %s: transport lagging, dropped %d frame(s)", self.session_id, self._dropped_frames
                )
        self._frames.put_nowait(frame)

    async def _sender(self) -> None:
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            self.audio_store.append(pcm_f32le_to_float32(frame))
            if self._transport_failed:
                continue
            try:
                await self.transport.send_audio(frame)
            except TransportFailed as e:
                self._transport_failed = True
                logger.error("Session %s: transcription stream lost: %s", self.session_id, e)
                self._send_event({"type": "error", "message": str(e)})

    async def _consumer(self) -> None:
        async for batch in self.transport.batches():
            self.assembler.process_batch(batch.finals, batch.partials)
            if batch.finished:
                break
        logger.debug("Session %s: token stream ended", self.session_id)

    def enrol(self, name: str, speaker_id: int, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> None:
        """Label a diarized speaker. Raises ValueError for an empty name or unknown speaker."""
        time_range = None
        if start_ms is not None and end_ms is not None and end_ms > start_ms:
            time_range = TimeRange(start_ms, end_ms)
        self.assembler.enrol(name, speaker_id, time_range)

    async def stop(self) -> SessionRecord:
        """End capture and persist. Safe to call more than once."""
        record = SessionRecord(session_id=self.session_id, started_at=self._started_at)
        if self._stopped:
            record.lines = list(self.assembler.lines)
            return record
        self._stopped = True

        if self._running:
            tail = self._receiver.flush()
            if tail:
                self._accept_frame(tail)
            if self._frames.full():
                self._frames.get_nowait()
                self._dropped_frames += 1
            self._frames.put_nowait(None)
            await self._finish_task(self._sender_task, self._drain_timeout)
            try:
                await self.transport.finalize()
            except TransportFailed as e:
                logger.warning("Session %s: finalize failed: %s", self.session_id, e)
            await self._finish_task(self._consumer_task, self._drain_timeout)
        self._running = False

        await self.assembler.cancel()
        await self.transport.close()

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.registry.flush)

        record.lines = list(self.assembler.lines)
        await self._writer.save(record)
        logger.info(
            "Session %s stopped: %d lines, %d dropped frames", self.session_id, len(record.lines), self._dropped_frames
        )
        return record

    async def _finish_task(self, task: Optional[asyncio.Task], timeout: float) -> None:
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Session %s: %s did not finish in %.1fs", self.session_id, task.get_name(), timeout)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        except TransportFailed as e:
            logger.warning("Session %s: %s ended with %s", self.session_id, task.get_name(), e)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    @property
    def lines(self) -> list[TranscriptLine]:
        return self.assembler.lines
