"""
Schemas for the speaker registry and live-session enrolment API.

Speaker listings never expose raw embeddings; only names and sample counts.
"""
from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class SpeakerSummary(BaseModel):
    """One enrolled voiceprint."""

    name: str
    samples: int = Field(..., ge=0, description="Number of stored embeddings for this speaker")


class SpeakerListResponse(BaseModel):
    """Response body for GET /api/speakers."""

    speakers: list[SpeakerSummary]


class EnrolRequest(BaseModel):
    """Request body for POST /api/sessions/{session_id}/enrol (also the WebSocket "enrol" message)."""

    name: str = Field(..., min_length=1, description="Display name to attach to the speaker")
    speaker_id: int = Field(..., ge=0, description="Diarization id as shown on transcript lines")
    start_ms: int | None = Field(None, ge=0, description="Optional segment start on the capture timeline")
    end_ms: int | None = Field(None, ge=0, description="Optional segment end on the capture timeline")

    @model_validator(mode="after")
    def _check_range(self) -> "EnrolRequest":
        if (self.start_ms is None) != (self.end_ms is None):
            raise ValueError("start_ms and end_ms must be given together")
        if self.start_ms is not None and self.end_ms <= self.start_ms:
            raise ValueError("end_ms must be greater than start_ms")
        if not self.name.strip():
            raise ValueError("name must not be blank")
        return self


class EnrolResponse(BaseModel):
    """Response body for POST /api/sessions/{session_id}/enrol."""

    session_id: str
    speaker_id: int
    name: str
    pending: bool = Field(..., description="True while the speaker has too little audio to enrol yet")
