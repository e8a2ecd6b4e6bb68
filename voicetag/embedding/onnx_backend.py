"""
OnnxInferenceBackend: ECAPA-TDNN speaker embeddings via ONNX Runtime.

- Exported SpeechBrain model with input "fbank" [1, 80, T] and output "embedding".
- Session created lazily in load(); EmbeddingModel guarantees a single call.
- CPU provider; intra-op threads configurable (2 keeps the capture loop responsive).
"""
from __future__ import annotations

import logging
import os
from typing import Any

import numpy as np

from voicetag.config import get_settings
from voicetag.embedding.base import InferenceBackend

logger = logging.getLogger(__name__)

INPUT_NAME = "fbank"
OUTPUT_NAME = "embedding"


class OnnxInferenceBackend(InferenceBackend):
    """ONNX Runtime session over an exported embedding model."""

    def __init__(
        self,
        model_path: str | None = None,
        intra_op_threads: int | None = None,
    ) -> None:
        settings = get_settings()
        self._model_path = model_path or settings.EMBEDDING_MODEL_PATH
        self._threads = intra_op_threads or settings.EMBEDDING_INTRA_OP_THREADS
        self._session: Any = None

    def load(self) -> None:
        try:
            import onnxruntime as ort
        except ImportError as err:
            raise ImportError(
                "onnxruntime is required for EMBEDDING_BACKEND=onnx. "
                "Install with: pip install 'voicetag[onnx]'"
            ) from err
        if not os.path.isfile(self._model_path):
            raise FileNotFoundError(f"Embedding model not found: {self._model_path}")

        options = ort.SessionOptions()
        options.intra_op_num_threads = self._threads
        options.log_severity_level = 2  # warnings and above
        self._session = ort.InferenceSession(
            self._model_path,
            sess_options=options,
            providers=["CPUExecutionProvider"],
        )
        logger.info("Embedding model loaded: %s (threads=%d)", self._model_path, self._threads)

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self._session is None:
            raise RuntimeError("ONNX session not loaded")
        outputs = self._session.run([OUTPUT_NAME], {INPUT_NAME: tensor.astype(np.float32)})
        return np.asarray(outputs[0], dtype=np.float32)

    @property
    def model_path(self) -> str:
        return self._model_path
