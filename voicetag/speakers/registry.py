"""
SpeakerRegistry: named voiceprints, enrolment and identification.

- enroll(): append unconditionally (manual labelling by the user).
- enroll_with_validation(): auto-learning path. A new sample for an existing
  name must match the stored samples on average (>= min_similarity) and at
  worst (>= min_similarity - 0.05); otherwise nothing changes. This keeps a
  misidentified speaker's audio out of someone else's voiceprint.
- identify(): best profile by max cosine similarity over its samples.

Persistence is debounced: each mutation (re)starts a short timer and the store
is written once things go quiet. clear() flushes immediately. Store failures
are logged; the in-memory profiles remain authoritative for the running process.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass

import numpy as np

from voicetag.config import get_settings
from voicetag.errors import PersistenceFailed
from voicetag.speakers.models import IdentifyResult, SpeakerProfile
from voicetag.speakers.similarity import cosine
from voicetag.speakers.storage import MemoryProfileStore, ProfileStore

logger = logging.getLogger(__name__)

# Worst single-sample similarity may sit this far below min_similarity
VALIDATION_MIN_MARGIN = 0.05


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of enroll_with_validation. Truthy when the sample was enrolled."""

    accepted: bool
    mean_similarity: float
    lowest_similarity: float
    bootstrap: bool = False  # first sample for the name; nothing to compare against

    def __bool__(self) -> bool:
        return self.accepted


class SpeakerRegistry:
    """
    In-memory profiles keyed by name, mirrored to a ProfileStore.
    Reads and writes take a lock, so the debounced flush can snapshot from a worker thread.
    """

    def __init__(
        self,
        store: ProfileStore | None = None,
        debounce_ms: int | None = None,
        identify_threshold: float | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store if store is not None else MemoryProfileStore()
        self._debounce_sec = (
            debounce_ms if debounce_ms is not None else settings.REGISTRY_SAVE_DEBOUNCE_MS
        ) / 1000.0
        self._identify_threshold = (
            identify_threshold if identify_threshold is not None else settings.SPEAKER_IDENTIFY_THRESHOLD
        )

        self._profiles: dict[str, SpeakerProfile] = {}
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._dirty: set[str] = set()
        self._deleted: dict[str, SpeakerProfile] = {}
        self._persisted_names: set[str] = set()  # names the store already holds
        self._save_task: asyncio.Task | None = None
        self.load()

    # --- persistence ---

    def load(self) -> None:
        """Replace in-memory profiles with the store's contents. Failure leaves the registry empty."""
        try:
            loaded = self._store.load_profiles()
        except PersistenceFailed as e:
            logger.warning("Speaker profiles could not be loaded, starting empty: %s", e)
            loaded = []
        with self._lock:
            self._profiles = {}
            for p in loaded:
                if p.name in self._profiles:
                    # Keep names unique: merge duplicate records
                    self._profiles[p.name].embeddings.extend(p.embeddings)
                else:
                    self._profiles[p.name] = p
            self._persisted_names = set(self._profiles)
            self._dirty.clear()
            self._deleted.clear()
        logger.info("Speaker registry loaded: %d profile(s)", len(loaded))

    def flush(self) -> bool:
        """Write staged changes to the store now. Returns False if the store failed."""
        with self._flush_lock:
            with self._lock:
                upserts = [self._profiles[n].copy() for n in self._dirty if n in self._profiles]
                deletes = list(self._deleted.values())
                self._dirty.clear()
                self._deleted.clear()
            if not upserts and not deletes:
                return True
            try:
                for profile in deletes:
                    self._store.delete(profile)
                for profile in upserts:
                    if self._store_has(profile.name):
                        self._store.update(profile)
                    else:
                        self._store.insert(profile)
                self._store.save()
            except PersistenceFailed as e:
                logger.warning("Speaker registry save failed (kept in memory): %s", e)
                with self._lock:
                    # Retry these on the next flush
                    self._dirty.update(p.name for p in upserts if p.name in self._profiles)
                    for p in deletes:
                        if p.name not in self._profiles:
                            self._deleted[p.name] = p
                return False
            with self._lock:
                self._persisted_names.difference_update(p.name for p in deletes)
                self._persisted_names.update(p.name for p in upserts)
        return True

    def _store_has(self, name: str) -> bool:
        with self._lock:
            return name in self._persisted_names

    async def aclose(self) -> None:
        """Cancel any pending debounce and flush once (session / app shutdown)."""
        task = self._save_task
        self._save_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.flush)

    def _schedule_save(self) -> None:
        """Restart the debounce timer; without an event loop, flush synchronously."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = loop.create_task(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self._debounce_sec)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.flush)

    def _mark_dirty(self, name: str) -> None:
        self._dirty.add(name)
        self._deleted.pop(name, None)
        self._schedule_save()

    # --- mutations ---

    def enroll(self, name: str, embedding: np.ndarray) -> None:
        """Append a sample to name's profile, creating the profile if needed."""
        emb = np.asarray(embedding, dtype=np.float32).reshape(-1).copy()
        with self._lock:
            profile = self._profiles.get(name)
            if profile is None:
                self._profiles[name] = SpeakerProfile(name=name, embeddings=[emb])
            else:
                profile.embeddings.append(emb)
            self._mark_dirty(name)
        logger.info("Enrolled sample for %r (%d total)", name, len(self._profiles[name].embeddings))

    def enroll_with_validation(
        self,
        name: str,
        embedding: np.ndarray,
        min_similarity: float | None = None,
    ) -> ValidationOutcome:
        """
        Enrol only if the sample is consistent with name's existing samples:
        mean similarity >= min_similarity and lowest >= min_similarity - 0.05.
        The first sample for a name is always accepted.
        """
        if min_similarity is None:
            min_similarity = get_settings().SPEAKER_LEARN_MIN_SIMILARITY
        emb = np.asarray(embedding, dtype=np.float32).reshape(-1).copy()
        with self._lock:
            profile = self._profiles.get(name)
            if profile is None or not profile.embeddings:
                self.enroll(name, emb)
                return ValidationOutcome(True, 1.0, 1.0, bootstrap=True)

            similarities = [cosine(existing, emb) for existing in profile.embeddings]
            mean_sim = float(sum(similarities) / len(similarities))
            lowest = float(min(similarities))
            if mean_sim >= min_similarity and lowest >= min_similarity - VALIDATION_MIN_MARGIN:
                profile.embeddings.append(emb)
                self._mark_dirty(name)
                logger.info(
                    "Validated sample enrolled for %r (mean=%.3f lowest=%.3f, %d total)",
                    name,
                    mean_sim,
                    lowest,
                    len(profile.embeddings),
                )
                return ValidationOutcome(True, mean_sim, lowest)

        logger.info("Sample rejected for %r (mean=%.3f lowest=%.3f)", name, mean_sim, lowest)
        return ValidationOutcome(False, mean_sim, lowest)

    def clear(self) -> None:
        """Remove every profile and flush immediately."""
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = None
        with self._lock:
            for name, profile in self._profiles.items():
                self._deleted[name] = profile
            self._profiles.clear()
            self._dirty.clear()
        logger.info("Speaker registry cleared")
        self.flush()

    # --- queries ---

    def identify(self, embedding: np.ndarray, threshold: float | None = None) -> IdentifyResult | None:
        """
        Best-matching profile: score = max cosine over the profile's samples.
        Ties go to the alphabetically first name. Returns None when the registry is
        empty or the best score is below threshold.
        """
        if threshold is None:
            threshold = self._identify_threshold
        best: IdentifyResult | None = None
        with self._lock:
            for name in sorted(self._profiles):
                profile = self._profiles[name]
                if not profile.embeddings:
                    continue
                score = max(cosine(e, embedding) for e in profile.embeddings)
                if best is None or score > best.score:
                    best = IdentifyResult(name=profile.name, score=score)
        if best is None:
            return None
        if best.score >= threshold:
            return best
        logger.debug("No match: best %r scored %.3f < %.3f", best.name, best.score, threshold)
        return None

    @property
    def profiles(self) -> list[SpeakerProfile]:
        with self._lock:
            return [p.copy() for p in self._profiles.values()]

    @property
    def identify_threshold(self) -> float:
        return self._identify_threshold

    @property
    def store(self) -> ProfileStore:
        return self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._profiles
