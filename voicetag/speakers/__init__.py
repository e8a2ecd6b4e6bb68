"""
Speaker recognition: persisted voiceprints, enrolment and identification.

Identity here comes from on-device voice embeddings, independent of the
provider's anonymous diarization ids; the transcript assembler links the two.
"""
from __future__ import annotations

from voicetag.speakers.models import IdentifyResult, SpeakerProfile, TimeRange, recent_ranges, total_duration_ms
from voicetag.speakers.registry import SpeakerRegistry, ValidationOutcome
from voicetag.speakers.similarity import cosine
from voicetag.speakers.storage import JsonProfileStore, MemoryProfileStore, ProfileStore
from voicetag.speakers.voice_service import VoiceService

__all__ = [
    "IdentifyResult",
    "JsonProfileStore",
    "MemoryProfileStore",
    "ProfileStore",
    "SpeakerProfile",
    "SpeakerRegistry",
    "TimeRange",
    "ValidationOutcome",
    "VoiceService",
    "cosine",
    "recent_ranges",
    "total_duration_ms",
]
