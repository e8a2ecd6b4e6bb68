"""Transcription provider transports."""
from voicetag.config import get_settings
from voicetag.transport.base import NoOpTransport, TranscriptionTransport
from voicetag.transport.soniox import SonioxTransport


def create_transport() -> TranscriptionTransport:
    """Soniox when TRANSCRIPTION_BACKEND=soniox; else no-op."""
    settings = get_settings()
    if settings.TRANSCRIPTION_BACKEND == "soniox":
        return SonioxTransport()
    return NoOpTransport()


__all__ = ["NoOpTransport", "SonioxTransport", "TranscriptionTransport", "create_transport"]
