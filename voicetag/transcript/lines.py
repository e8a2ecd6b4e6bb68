"""
TranscriptModel: the session's speaker-attributed lines.

A line grows while the same speaker keeps talking; a new line starts on a
speaker change or when the caller forces a break (endpoint, rename boundary).
Display names are resolved later and may change (update_name) when a speaker
is identified or labelled.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from voicetag.speakers.models import TimeRange
from voicetag.transcript.tokens import UNKNOWN_SPEAKER


def default_speaker_name(speaker_id: int) -> str:
    """Placeholder label until the speaker is identified: Speaker 1, Speaker 2, ..."""
    if speaker_id == UNKNOWN_SPEAKER:
        return "Unknown"
    return f"Speaker {speaker_id}"


@dataclass
class TranscriptLine:
    """One speaker turn: accumulated text and its time range (ms)."""

    text: str
    speaker_id: int
    speaker_name: str
    start_ms: int
    end_ms: int
    timestamp: float = field(default_factory=time.time)

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_ms, self.end_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TranscriptModel:
    """Ordered lines of the live session."""

    def __init__(self) -> None:
        self.lines: list[TranscriptLine] = []

    def append_or_add(
        self,
        text: str,
        speaker_id: int,
        time_range: TimeRange,
        force_new_line: bool = False,
        speaker_name: str | None = None,
    ) -> tuple[int, TranscriptLine] | None:
        """
        Append text to the last line if it belongs to the same speaker and no break is
        forced; otherwise start a new line. Returns (index, line), or None for empty text.
        """
        if not text:
            return None
        last = self.lines[-1] if self.lines else None
        if force_new_line or last is None or last.speaker_id != speaker_id:
            line = TranscriptLine(
                text=text,
                speaker_id=speaker_id,
                speaker_name=speaker_name or default_speaker_name(speaker_id),
                start_ms=time_range.start_ms,
                end_ms=time_range.end_ms,
            )
            self.lines.append(line)
            return len(self.lines) - 1, line
        last.text += text
        last.end_ms = time_range.end_ms
        if speaker_name:
            last.speaker_name = speaker_name
        return len(self.lines) - 1, last

    def update_name(self, name: str, speaker_id: int) -> list[int]:
        """Rename every line of speaker_id. Returns the indices that changed."""
        changed: list[int] = []
        for i, line in enumerate(self.lines):
            if line.speaker_id == speaker_id and line.speaker_name != name:
                line.speaker_name = name
                changed.append(i)
        return changed

    def clear(self) -> None:
        self.lines.clear()

    def __len__(self) -> int:
        return len(self.lines)
