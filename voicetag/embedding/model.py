"""
EmbeddingModel: Fbank features -> L2-normalised speaker embedding.

- Backend load is lazy and happens once; concurrent first callers wait on the
  same load instead of starting their own. A failed load is remembered and
  every later call fails fast with InferenceFailed.
- All inference goes through one worker thread, so a backend session is never
  used by two requests at the same time. embed() and submit() are async: the
  caller's event loop never runs feature or inference work itself.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

import numpy as np

from voicetag.embedding.base import InferenceBackend
from voicetag.errors import InferenceFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Divide by the Euclidean norm; a zero vector is returned unchanged."""
    v = np.asarray(vector, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(v))
    if norm > 0.0:
        return v / norm
    return v


class EmbeddingModel:
    """Wraps an InferenceBackend with lazy load and a single inference worker."""

    def __init__(self, backend: InferenceBackend) -> None:
        self._backend = backend
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="embedding")
        self._init_lock = threading.Lock()
        self._initialized = False
        self._load_error: BaseException | None = None

    def _ensure_initialized(self) -> None:
        """Load the backend once (thread-safe). Raises InferenceFailed if it cannot load."""
        if self._initialized:
            return
        with self._init_lock:
            if not self._initialized and self._load_error is None:
                try:
                    self._backend.load()
                    self._initialized = True
                except Exception as e:
                    self._load_error = e
                    logger.error("Embedding backend %s failed to load: %s", self._backend.name, e)
        if self._load_error is not None:
            raise InferenceFailed(f"embedding model unavailable: {self._load_error}")

    def embed_sync(self, features: np.ndarray) -> np.ndarray:
        """
        Synchronous inference for one (n_mels, n_frames) feature matrix.
        Returns a 1-D float32 embedding, unit length unless the raw output is all zeros.
        """
        self._ensure_initialized()
        feats = np.asarray(features, dtype=np.float32)
        if feats.ndim != 2 or feats.shape[1] == 0:
            raise InferenceFailed(f"expected (n_mels, n_frames) features, got shape {feats.shape}")
        tensor = np.ascontiguousarray(feats[np.newaxis, :, :])
        try:
            raw = self._backend.run(tensor)
        except Exception as e:
            raise InferenceFailed(f"inference failed: {e}") from e
        vector = np.asarray(raw, dtype=np.float32).reshape(-1)
        if vector.size == 0 or not np.all(np.isfinite(vector)):
            raise InferenceFailed("model returned an empty or non-finite embedding")
        return l2_normalize(vector)

    async def embed(self, features: np.ndarray) -> np.ndarray:
        """Run embed_sync on the inference worker without blocking the event loop."""
        return await self.submit(self.embed_sync, features)

    async def submit(self, fn: Callable[..., T], *args: Any) -> T:
        """Run fn(*args) on the inference worker, serialised with every other request."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def warm_up(self) -> bool:
        """Load the backend ahead of the first request. Returns False if loading failed."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._ensure_initialized)
        except InferenceFailed:
            return False
        return True

    @property
    def is_ready(self) -> bool:
        return self._initialized

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
