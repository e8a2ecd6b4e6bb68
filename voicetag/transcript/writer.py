"""
Session record persistence: one JSON file per capture session.

The record is written once, when the session stops, after speaker names have
settled; live lines are never written half-resolved. sessions/{session_id}.json
holds the title, start time and every line with its final display name.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from voicetag.config import get_settings
from voicetag.transcript.lines import TranscriptLine

logger = logging.getLogger(__name__)


def default_title(started_at: float) -> str:
    return "Session " + datetime.fromtimestamp(started_at).strftime("%Y-%m-%d %H:%M")


@dataclass
class SessionRecord:
    session_id: str
    started_at: float = field(default_factory=time.time)
    title: str = ""
    lines: list[TranscriptLine] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.title:
            self.title = default_title(self.started_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "title": self.title,
            "started_at": self.started_at,
            "lines": [line.to_dict() for line in self.lines],
        }


class SessionRecordWriterBase(ABC):
    """Persists the finished session. Failures are logged, never raised into the session."""

    @abstractmethod
    async def save(self, record: SessionRecord) -> None:
        ...


class NoOpSessionRecordWriter(SessionRecordWriterBase):
    """When session saving is disabled. No file I/O."""

    async def save(self, record: SessionRecord) -> None:
        pass


class JsonSessionRecordWriter(SessionRecordWriterBase):
    """sessions/{session_id}.json, written atomically off the event loop."""

    def __init__(self, session_dir: Optional[str] = None) -> None:
        settings = get_settings()
        self._session_dir = session_dir or settings.SESSION_DIR

    def path_for(self, session_id: str) -> str:
        return os.path.join(self._session_dir, f"{session_id}.json")

    def _write(self, record: SessionRecord) -> str:
        path = self.path_for(record.session_id)
        os.makedirs(self._session_dir, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._session_dir, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return path

    async def save(self, record: SessionRecord) -> None:
        if not record.lines:
            logger.info("Session %s has no lines; nothing saved", record.session_id)
            return
        loop = asyncio.get_running_loop()
        try:
            path = await loop.run_in_executor(None, self._write, record)
        except OSError as e:
            logger.warning("Session record write failed for %s: %s", record.session_id, e)
            return
        logger.info("Session %s saved to %s (%d lines)", record.session_id, path, len(record.lines))


def create_session_writer() -> SessionRecordWriterBase:
    """JSON writer when SESSION_SAVE_ENABLED is true; else no-op."""
    settings = get_settings()
    if not settings.SESSION_SAVE_ENABLED:
        return NoOpSessionRecordWriter()
    return JsonSessionRecordWriter()
