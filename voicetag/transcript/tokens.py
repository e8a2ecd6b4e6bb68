"""
Recognition tokens from the streaming provider.

One provider message carries a list of tokens; final tokens are stable, partial
tokens may still change. "<end>" is the provider's endpoint marker (pause /
sentence boundary) and becomes an endpoint Token with no text, speaker or time.
Tokens are ephemeral: the assembler consumes each batch immediately.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

UNKNOWN_SPEAKER = -1
ENDPOINT_MARKER = "<end>"
FINALIZE_MARKER = "<fin>"


@dataclass(frozen=True)
class Token:
    """
    One recognizer output unit.

    speaker: diarization id (1, 2, ...) or -1 when unknown.
    start_ms, end_ms: absolute offsets into the capture timeline (-1 for endpoints).
    """

    text: str
    is_final: bool
    speaker: int = UNKNOWN_SPEAKER
    is_endpoint: bool = False
    start_ms: int = 0
    end_ms: int = 0

    @classmethod
    def endpoint(cls) -> "Token":
        return cls(text="", is_final=True, speaker=UNKNOWN_SPEAKER, is_endpoint=True, start_ms=-1, end_ms=-1)


@dataclass
class TokenBatch:
    """Tokens from one provider message, split into final and partial."""

    finals: list[Token] = field(default_factory=list)
    partials: list[Token] = field(default_factory=list)
    finished: bool = False  # provider closed the stream after this message

    def __bool__(self) -> bool:
        return bool(self.finals or self.partials or self.finished)


def _parse_speaker(value: Any) -> int:
    """Speaker id may arrive as int or numeric string; anything else is unknown."""
    if isinstance(value, bool):
        return UNKNOWN_SPEAKER
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return UNKNOWN_SPEAKER
    return UNKNOWN_SPEAKER


def _parse_ms(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


def parse_provider_message(message: str | bytes | dict[str, Any]) -> TokenBatch | None:
    """
    Decode one provider JSON message into a TokenBatch.
    Returns None for error responses, malformed JSON, and messages without tokens.
    """
    if isinstance(message, (str, bytes)):
        try:
            obj = json.loads(message)
        except ValueError:
            logger.warning("Dropping malformed provider message (%d bytes)", len(message))
            return None
    else:
        obj = message
    if not isinstance(obj, dict):
        return None

    if obj.get("error_code") is not None:
        logger.error(
            "Transcription provider error %s: %s",
            obj.get("error_code"),
            obj.get("error_message", ""),
        )
        return None

    batch = TokenBatch(finished=bool(obj.get("finished", False)))
    for t in obj.get("tokens") or []:
        if not isinstance(t, dict):
            continue
        text = t.get("text")
        if not isinstance(text, str):
            continue
        if text == ENDPOINT_MARKER:
            batch.finals.append(Token.endpoint())
            continue
        if text == FINALIZE_MARKER:
            continue
        tok = Token(
            text=text,
            is_final=bool(t.get("is_final", False)),
            speaker=_parse_speaker(t.get("speaker")),
            is_endpoint=False,
            start_ms=_parse_ms(t.get("start_ms")),
            end_ms=_parse_ms(t.get("end_ms")),
        )
        if tok.is_final:
            batch.finals.append(tok)
        else:
            batch.partials.append(tok)
    return batch if batch else None
