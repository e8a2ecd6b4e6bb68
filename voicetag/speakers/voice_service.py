"""
VoiceService: time ranges on the capture timeline -> embeddings -> registry.

For several ranges the audio is concatenated in the given order and a single
embedding is computed from the union; embeddings are never averaged per range.
Ranges that are no longer (or not yet) in the ring store are skipped; the
call fails with AudioUnavailable only if none of them can be read.

Slicing, feature extraction and inference run together as one job on the
model's worker thread; only the registry update happens on the caller's loop.
"""
from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from voicetag.audio.ring_store import AudioRingStore
from voicetag.embedding.model import EmbeddingModel
from voicetag.errors import AudioUnavailable, ValidationRejected
from voicetag.features.fbank import FeatureExtractor
from voicetag.speakers.models import IdentifyResult, TimeRange
from voicetag.speakers.registry import SpeakerRegistry

logger = logging.getLogger(__name__)


class VoiceService:
    """
    Session-scoped speaker context: this session's audio store plus the shared
    extractor, model and registry. Passed explicitly to whatever needs it.
    """

    def __init__(
        self,
        audio_store: AudioRingStore,
        model: EmbeddingModel,
        registry: SpeakerRegistry,
        extractor: FeatureExtractor | None = None,
    ) -> None:
        self.audio_store = audio_store
        self.model = model
        self.registry = registry
        self.extractor = extractor or FeatureExtractor()

    def collect_audio(self, ranges: Sequence[TimeRange]) -> np.ndarray:
        """Concatenate the available ranges in order. Raises AudioUnavailable if none are available."""
        if not ranges:
            raise AudioUnavailable(0, 0, "no ranges requested")
        parts: list[np.ndarray] = []
        for r in ranges:
            try:
                parts.append(self.audio_store.slice(r.start_ms, r.end_ms))
            except AudioUnavailable as e:
                logger.debug("Skipping range: %s", e)
        if not parts:
            raise AudioUnavailable(ranges[0].start_ms, ranges[-1].end_ms, "no requested range is retained")
        return np.concatenate(parts)

    def embed_ranges_sync(self, ranges: Sequence[TimeRange]) -> np.ndarray:
        samples = self.collect_audio(ranges)
        features = self.extractor.make_features(samples, self.audio_store.sample_rate)
        return self.model.embed_sync(features)

    async def embed_ranges(self, ranges: Sequence[TimeRange]) -> np.ndarray:
        """One embedding over the concatenated audio of ranges, computed on the inference worker."""
        return await self.model.submit(self.embed_ranges_sync, list(ranges))

    async def enroll_ranges(self, name: str, ranges: Sequence[TimeRange]) -> None:
        """Unconditional enrolment from the union of ranges (manual labelling)."""
        embedding = await self.embed_ranges(ranges)
        self.registry.enroll(name, embedding)

    async def enroll_ranges_with_validation(
        self,
        name: str,
        ranges: Sequence[TimeRange],
        min_similarity: float | None = None,
    ) -> None:
        """Quality-gated enrolment (auto-learning). Raises ValidationRejected if the gate refuses."""
        embedding = await self.embed_ranges(ranges)
        outcome = self.registry.enroll_with_validation(name, embedding, min_similarity)
        if not outcome:
            raise ValidationRejected(name, outcome.mean_similarity, outcome.lowest_similarity)

    async def identify_ranges(
        self,
        ranges: Sequence[TimeRange],
        threshold: float | None = None,
    ) -> IdentifyResult | None:
        """Best registry match for the union of ranges, or None below threshold."""
        embedding = await self.embed_ranges(ranges)
        return self.registry.identify(embedding, threshold)
