"""
Durable storage for speaker profiles.

The registry is the source of truth while the service runs; the store only has
to survive restarts. insert/update/delete stage changes, save() commits them.
Implementations raise PersistenceFailed; the registry logs and carries on.

- JsonProfileStore: one JSON file, rewritten atomically on save().
- MemoryProfileStore: in-process dict (tests, or persistence disabled).
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod

from voicetag.errors import PersistenceFailed
from voicetag.speakers.models import SpeakerProfile

logger = logging.getLogger(__name__)


class ProfileStore(ABC):
    """Key-value store of SpeakerProfile records keyed by name."""

    @abstractmethod
    def load_profiles(self) -> list[SpeakerProfile]:
        ...

    @abstractmethod
    def insert(self, profile: SpeakerProfile) -> None:
        ...

    @abstractmethod
    def update(self, profile: SpeakerProfile) -> None:
        ...

    @abstractmethod
    def delete(self, profile: SpeakerProfile) -> None:
        ...

    @abstractmethod
    def save(self) -> None:
        """Commit staged changes durably."""
        ...


class MemoryProfileStore(ProfileStore):
    """Dict-backed store. save() counts commits so tests can observe debouncing."""

    def __init__(self, profiles: list[SpeakerProfile] | None = None) -> None:
        self._records: dict[str, SpeakerProfile] = {p.name: p.copy() for p in profiles or []}
        self.save_count = 0

    def load_profiles(self) -> list[SpeakerProfile]:
        return [p.copy() for p in self._records.values()]

    def insert(self, profile: SpeakerProfile) -> None:
        self._records[profile.name] = profile.copy()

    def update(self, profile: SpeakerProfile) -> None:
        self._records[profile.name] = profile.copy()

    def delete(self, profile: SpeakerProfile) -> None:
        self._records.pop(profile.name, None)

    def save(self) -> None:
        self.save_count += 1

    @property
    def records(self) -> dict[str, SpeakerProfile]:
        return self._records


class JsonProfileStore(ProfileStore):
    """
    speakers.json: [{"name": str, "embeddings": [[float, ...], ...]}, ...].
    save() writes a temp file in the same directory and renames it over the old one,
    so an interrupted save never leaves a truncated file.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._records: dict[str, dict] = {}

    def load_profiles(self) -> list[SpeakerProfile]:
        if not os.path.exists(self._path):
            self._records = {}
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            profiles = [SpeakerProfile.from_dict(item) for item in payload]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceFailed(f"cannot read {self._path}: {e}") from e
        self._records = {p.name: p.to_dict() for p in profiles}
        return profiles

    def insert(self, profile: SpeakerProfile) -> None:
        self._records[profile.name] = profile.to_dict()

    def update(self, profile: SpeakerProfile) -> None:
        self._records[profile.name] = profile.to_dict()

    def delete(self, profile: SpeakerProfile) -> None:
        self._records.pop(profile.name, None)

    def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".speakers-", suffix=".json", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(list(self._records.values()), f)
            os.replace(tmp_path, self._path)
            tmp_path = None
        except OSError as e:
            raise PersistenceFailed(f"cannot write {self._path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
        logger.debug("Speaker profiles saved: %s (%d)", self._path, len(self._records))

    @property
    def path(self) -> str:
        return self._path
