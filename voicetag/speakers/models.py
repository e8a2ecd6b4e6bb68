"""
Speaker data structures.

SpeakerProfile: one named voiceprint = the ordered history of enrolled embeddings.
TimeRange: [start_ms, end_ms) on the capture timeline (ms since session start).
IdentifyResult: best registry match for a probe embedding.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import numpy as np


@dataclass
class SpeakerProfile:
    """
    Named voiceprint. name is the unique key in the registry; embeddings only grow
    (enrolment appends) until the registry is cleared.
    """

    name: str
    embeddings: list[np.ndarray] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "embeddings": [np.asarray(e, dtype=np.float32).tolist() for e in self.embeddings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpeakerProfile":
        return cls(
            name=str(data["name"]),
            embeddings=[np.asarray(e, dtype=np.float32) for e in data.get("embeddings", [])],
        )

    def copy(self) -> "SpeakerProfile":
        return SpeakerProfile(name=self.name, embeddings=[e.copy() for e in self.embeddings])


@dataclass(frozen=True)
class TimeRange:
    """Half-open time range in ms on the absolute capture timeline."""

    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return max(0, self.end_ms - self.start_ms)


def total_duration_ms(ranges: Iterable[TimeRange]) -> int:
    return sum(r.duration_ms for r in ranges)


def recent_ranges(ranges: Sequence[TimeRange], max_ms: int) -> list[TimeRange]:
    """Newest ranges whose total just reaches max_ms, oldest first. max_ms <= 0 keeps everything."""
    if max_ms <= 0:
        return list(ranges)
    kept: list[TimeRange] = []
    total = 0
    for r in reversed(ranges):
        if total >= max_ms:
            break
        kept.append(r)
        total += r.duration_ms
    kept.reverse()
    return kept


@dataclass(frozen=True)
class IdentifyResult:
    """Registry match: profile name and its best cosine similarity."""

    name: str
    score: float
