"""Pydantic schemas for API request/response."""
from voicetag.schemas.speakers import (
    EnrolRequest,
    EnrolResponse,
    SpeakerListResponse,
    SpeakerSummary,
)

__all__ = [
    "EnrolRequest",
    "EnrolResponse",
    "SpeakerListResponse",
    "SpeakerSummary",
]
