"""
TranscriptionTransport: abstract streaming speech-recognition connection.

Implementations: SonioxTransport (WebSocket), NoOpTransport (transcription disabled).
Audio goes out as raw pcm_f32le frames; token batches come back in arrival order.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator

from voicetag.transcript.tokens import TokenBatch


class TranscriptionTransport(ABC):
    """
    One provider stream per capture session.
    connect() once; send_audio() per frame; finalize() when capture ends so the
    provider flushes its remaining final tokens; batches() ends after that.
    """

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def send_audio(self, frame: bytes) -> None:
        ...

    @abstractmethod
    async def finalize(self) -> None:
        """Signal end of audio. Remaining final tokens still arrive through batches()."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Tear down the connection. Safe to call more than once."""
        ...

    @abstractmethod
    def batches(self) -> AsyncIterator[TokenBatch]:
        ...

    @property
    def name(self) -> str:
        return type(self).__name__


class NoOpTransport(TranscriptionTransport):
    """When TRANSCRIPTION_BACKEND=none. Accepts audio, never produces tokens."""

    def __init__(self) -> None:
        self._done = asyncio.Event()
        self.frames_sent = 0

    async def connect(self) -> None:
        pass

    async def send_audio(self, frame: bytes) -> None:
        self.frames_sent += 1

    async def finalize(self) -> None:
        self._done.set()

    async def close(self) -> None:
        self._done.set()

    async def batches(self) -> AsyncIterator[TokenBatch]:
        await self._done.wait()
        return
        yield  # pragma: no cover
