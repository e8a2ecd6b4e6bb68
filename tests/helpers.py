"""Test doubles and synthetic audio shared across test modules."""
from __future__ import annotations

import numpy as np

from voicetag.embedding import InferenceBackend

SAMPLE_RATE = 16000


class BandStdBackend(InferenceBackend):
    """Embedding = per-band standard deviation of the Fbank tensor. Same audio, same vector."""

    def __init__(self) -> None:
        self.loads = 0
        self.runs = 0

    def load(self) -> None:
        self.loads += 1

    def run(self, tensor: np.ndarray) -> np.ndarray:
        self.runs += 1
        return tensor[0].std(axis=1)


def noise(seconds: float, seed: int = 0, scale: float = 0.1) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(int(seconds * SAMPLE_RATE)) * scale).astype(np.float32)


def tone(seconds: float, freq: float, scale: float = 0.3) -> np.ndarray:
    t = np.arange(int(seconds * SAMPLE_RATE)) / SAMPLE_RATE
    return (np.sin(2 * np.pi * freq * t) * scale).astype(np.float32)


def unit(*values: float) -> np.ndarray:
    v = np.asarray(values, dtype=np.float32)
    return v / np.linalg.norm(v)


def embeddings_of(registry, name: str) -> list[np.ndarray]:
    (profile,) = [p for p in registry.profiles if p.name == name]
    return profile.embeddings
