"""
SonioxTransport: real-time transcription over the Soniox WebSocket API.

- First message is the JSON config (model, diarization, endpoint detection, audio format).
- Audio frames are sent as binary messages; an empty binary message ends the stream.
- Every text message from the server is parsed into a TokenBatch; "finished" ends it.
- The server drops a stream after ~20s without data, so a keepalive is sent
  whenever no audio went out for SONIOX_KEEPALIVE_SEC (capture paused).
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from voicetag.config import get_settings
from voicetag.errors import TransportFailed
from voicetag.transcript.tokens import TokenBatch, parse_provider_message
from voicetag.transport.base import TranscriptionTransport

logger = logging.getLogger(__name__)

_END = None  # queue sentinel


class SonioxTransport(TranscriptionTransport):
    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        model: Optional[str] = None,
        language_hints: Optional[list[str]] = None,
        context: Optional[str] = None,
        sample_rate: Optional[int] = None,
        keepalive_sec: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.SONIOX_API_KEY
        self._url = url or settings.SONIOX_URL
        self._model = model or settings.SONIOX_MODEL
        if language_hints is None:
            language_hints = [h.strip() for h in settings.SONIOX_LANGUAGE_HINTS.split(",") if h.strip()]
        self._language_hints = language_hints
        self._context = context if context is not None else settings.SONIOX_CONTEXT
        self._sample_rate = sample_rate or settings.SAMPLE_RATE
        self._channels = settings.CHANNELS
        self._keepalive_sec = keepalive_sec if keepalive_sec is not None else settings.SONIOX_KEEPALIVE_SEC

        self._ws = None
        self._queue: asyncio.Queue[Optional[TokenBatch]] = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._last_send = 0.0
        self._ended = False

    def build_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "api_key": self._api_key,
            "model": self._model,
            "language_hints": self._language_hints,
            "enable_speaker_diarization": True,
            "enable_endpoint_detection": True,
            "audio_format": "pcm_f32le",
            "sample_rate": self._sample_rate,
            "num_channels": self._channels,
        }
        if self._context:
            config["context"] = self._context
        return config

    async def connect(self) -> None:
        if self._ws is not None:
            return
        if not self._api_key:
            raise TransportFailed("SONIOX_API_KEY is not set")
        try:
            self._ws = await websockets.connect(self._url)
            await self._ws.send(json.dumps(self.build_config()))
        except (OSError, WebSocketException) as e:
            self._ws = None
            raise TransportFailed(f"cannot connect to {self._url}: {e}") from e
        loop = asyncio.get_running_loop()
        self._last_send = loop.time()
        self._reader_task = asyncio.create_task(self._reader(), name="soniox-reader")
        self._keepalive_task = asyncio.create_task(self._keepalive(), name="soniox-keepalive")
        logger.info("Soniox stream open (model=%s, hints=%s)", self._model, self._language_hints)

    async def _reader(self) -> None:
        """Server messages -> queue, in arrival order. Always ends with the sentinel."""
        try:
            async for message in self._ws:
                batch = parse_provider_message(message)
                if batch is None:
                    continue
                await self._queue.put(batch)
                if batch.finished:
                    break
        except ConnectionClosed as e:
            logger.warning("Soniox connection closed: %s", e)
        finally:
            await self._queue.put(_END)

    async def _keepalive(self) -> None:
        loop = asyncio.get_running_loop()
        msg = json.dumps({"type": "keepalive"})
        while True:
            await asyncio.sleep(self._keepalive_sec)
            if self._ws is None or self._ended:
                return
            if loop.time() - self._last_send < self._keepalive_sec:
                continue
            try:
                await self._ws.send(msg)
                logger.debug("Soniox keepalive sent")
            except ConnectionClosed:
                return

    async def send_audio(self, frame: bytes) -> None:
        if self._ws is None or self._ended or not frame:
            return
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise TransportFailed(f"audio send failed: {e}") from e
        self._last_send = asyncio.get_running_loop().time()

    async def finalize(self) -> None:
        if self._ws is None or self._ended:
            return
        self._ended = True
        try:
            await self._ws.send(b"")
        except ConnectionClosed as e:
            logger.warning("Soniox end-of-stream not delivered: %s", e)

    async def close(self) -> None:
        self._ended = True
        for task in (self._keepalive_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._keepalive_task = None
        self._reader_task = None
        if self._ws is not None:
            try:
                await self._ws.close()
            except WebSocketException as e:
                logger.debug("Soniox close: %s", e)
            self._ws = None
        self._queue.put_nowait(_END)

    async def batches(self) -> AsyncIterator[TokenBatch]:
        while True:
            batch = await self._queue.get()
            if batch is _END:
                return
            yield batch
