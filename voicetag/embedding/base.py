"""
InferenceBackend: abstract interface for the speaker embedding network.

The network is opaque: a [1, n_mels, T] float32 Fbank tensor goes in, a flat
embedding vector comes out. Implementations: OnnxInferenceBackend.
Calls are synchronous; EmbeddingModel runs them on its own worker thread.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class InferenceBackend(ABC):
    """
    Abstract embedding backend. load() may be slow (model file, session setup)
    and is called exactly once before the first run().
    """

    @abstractmethod
    def load(self) -> None:
        """Load model weights / create the inference session. Raise on failure."""
        ...

    @abstractmethod
    def run(self, tensor: np.ndarray) -> np.ndarray:
        """
        Run inference on one [1, n_mels, T] float32 tensor.
        Returns the raw (unnormalised) embedding; any shape that flattens to [D].
        """
        ...

    @property
    def name(self) -> str:
        return type(self).__name__
