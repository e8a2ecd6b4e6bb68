"""
Failure taxonomy for the speaker pipeline.

None of these end a session: callers degrade to "unknown speaker" or skip the
update. ValidationRejected is a deliberate outcome of the auto-learn quality
gate, not a fault.
"""
from __future__ import annotations


class VoiceTagError(Exception):
    """Base class for recoverable speaker-pipeline failures."""


class AudioUnavailable(VoiceTagError):
    """Requested slice was evicted from the ring store or not captured yet."""

    def __init__(self, start_ms: int, end_ms: int, reason: str) -> None:
        super().__init__(f"audio {start_ms}-{end_ms}ms unavailable: {reason}")
        self.start_ms = start_ms
        self.end_ms = end_ms
        self.reason = reason


class ExtractionFailed(VoiceTagError):
    """Audio too short or in the wrong format for feature extraction."""


class InferenceFailed(VoiceTagError):
    """Embedding model not loadable or inference raised."""


class ValidationRejected(VoiceTagError):
    """Candidate embedding did not match the existing voiceprint closely enough."""

    def __init__(self, name: str, mean_similarity: float, lowest_similarity: float) -> None:
        super().__init__(
            f"sample rejected for {name!r}: mean={mean_similarity:.3f} lowest={lowest_similarity:.3f}"
        )
        self.name = name
        self.mean_similarity = mean_similarity
        self.lowest_similarity = lowest_similarity


class PersistenceFailed(VoiceTagError):
    """Durable store read/write failed; in-memory state stays authoritative."""


class TransportFailed(VoiceTagError):
    """Transcription provider connection could not be opened or broke."""
