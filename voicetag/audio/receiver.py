"""
AudioReceiver: accepts raw pcm_f32le audio from the WebSocket and yields frames.

- Expects float32 little-endian mono 16kHz.
- Emits fixed-size frames (e.g. 120ms = 1920 samples) for the ring store and provider.
- Partial samples (byte count not a multiple of 4) stay buffered until completed.
"""
from __future__ import annotations

import numpy as np

from voicetag.config import get_settings


def pcm_f32le_to_float32(data: bytes) -> np.ndarray:
    """Decode little-endian float32 PCM bytes (length must be a multiple of 4)."""
    return np.frombuffer(data, dtype="<f4").astype(np.float32)


class AudioReceiver:
    """
    Buffers incoming binary WebSocket messages into fixed-size PCM frames.
    Any remainder is kept for the next iteration.
    """

    def __init__(self, frame_bytes: int | None = None) -> None:
        settings = get_settings()
        self._frame_bytes = frame_bytes or settings.frame_bytes
        if self._frame_bytes % 4:
            raise ValueError(f"frame_bytes must be a multiple of 4, got {self._frame_bytes}")
        self._buffer = bytearray()

    def feed(self, data: bytes) -> None:
        """Append raw PCM bytes. Call from WebSocket handler."""
        self._buffer.extend(data)

    def drain_frames(self) -> list[bytes]:
        """Drain all complete frames from the buffer; remainder stays in buffer."""
        out: list[bytes] = []
        while len(self._buffer) >= self._frame_bytes:
            out.append(bytes(self._buffer[: self._frame_bytes]))
            del self._buffer[: self._frame_bytes]
        return out

    def flush(self) -> bytes | None:
        """On disconnect: return leftover whole samples (shorter than one frame), if any."""
        usable = len(self._buffer) - (len(self._buffer) % 4)
        if usable == 0:
            self._buffer.clear()
            return None
        tail = bytes(self._buffer[:usable])
        self._buffer.clear()
        return tail

    def remaining_bytes(self) -> int:
        """Bytes left in buffer (incomplete frame)."""
        return len(self._buffer)
