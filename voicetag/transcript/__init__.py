"""Transcript handling: provider tokens, speaker-attributed lines, session records."""
from .assembler import PendingEnrollment, TranscriptAssembler
from .lines import TranscriptLine, TranscriptModel, default_speaker_name
from .tokens import Token, TokenBatch, UNKNOWN_SPEAKER, parse_provider_message
from .writer import SessionRecord, SessionRecordWriterBase, create_session_writer

__all__ = [
    "PendingEnrollment",
    "SessionRecord",
    "SessionRecordWriterBase",
    "Token",
    "TokenBatch",
    "TranscriptAssembler",
    "TranscriptLine",
    "TranscriptModel",
    "UNKNOWN_SPEAKER",
    "create_session_writer",
    "default_speaker_name",
    "parse_provider_message",
]
