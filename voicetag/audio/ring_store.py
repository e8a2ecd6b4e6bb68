"""
AudioRingStore: trailing window of captured samples, indexed by absolute time.

- The capture loop appends float32 mono samples in arrival order.
- Identification / enrolment read back time ranges (ms since capture start),
  usually from another thread or task.
- total_frames_received never resets for the session, so
  (total_frames_received - len(buffer)) is the absolute frame of buffer[0].
- Oldest samples are dropped once the buffer exceeds max_seconds.
"""
from __future__ import annotations

import threading

import numpy as np

from voicetag.config import get_settings
from voicetag.errors import AudioUnavailable


class AudioRingStore:
    """
    Lock-protected sample buffer. append() is called by the producer (capture);
    slice() copies the requested span out so readers never hold the lock while
    processing audio.
    """

    def __init__(
        self,
        max_seconds: float | None = None,
        sample_rate: int | None = None,
    ) -> None:
        settings = get_settings()
        self._sample_rate = sample_rate or settings.SAMPLE_RATE
        self._max_seconds = max_seconds if max_seconds is not None else settings.RING_MAX_SECONDS
        self._capacity = max(1, int(self._sample_rate * self._max_seconds))

        self._lock = threading.Lock()
        self._buffer = np.zeros(self._capacity, dtype=np.float32)
        self._size = 0  # valid samples; buffer[:size] is oldest → newest
        self._total_frames = 0

    def append(self, samples: np.ndarray) -> None:
        """Append mono samples. Drops the oldest samples when capacity is exceeded."""
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        n = data.size
        if n == 0:
            return
        with self._lock:
            self._total_frames += n
            if n >= self._capacity:
                self._buffer[:] = data[-self._capacity :]
                self._size = self._capacity
                return
            overflow = self._size + n - self._capacity
            if overflow > 0:
                # Shift left to keep the newest (capacity - n) samples
                keep = self._size - overflow
                self._buffer[:keep] = self._buffer[overflow : self._size]
                self._size = keep
            self._buffer[self._size : self._size + n] = data
            self._size += n

    def slice(self, start_ms: int, end_ms: int) -> np.ndarray:
        """
        Copy of samples for [start_ms, end_ms).
        Raises AudioUnavailable when the range is empty, already evicted, or not captured yet.
        """
        start_frame = self.ms_to_frames(start_ms)
        end_frame = self.ms_to_frames(end_ms)
        if end_frame <= start_frame:
            raise AudioUnavailable(start_ms, end_ms, "empty range")

        with self._lock:
            offset = self._total_frames - self._size
            rel_start = start_frame - offset
            rel_end = end_frame - offset
            if rel_start < 0:
                raise AudioUnavailable(start_ms, end_ms, "evicted")
            if rel_end > self._size:
                raise AudioUnavailable(start_ms, end_ms, "not captured yet")
            return self._buffer[rel_start:rel_end].copy()

    def ms_to_frames(self, ms: int) -> int:
        return int(ms / 1000.0 * self._sample_rate)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def total_frames_received(self) -> int:
        with self._lock:
            return self._total_frames

    def __len__(self) -> int:
        with self._lock:
            return self._size

