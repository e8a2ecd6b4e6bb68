"""Speaker embedding: opaque inference backend + normalising wrapper."""
from .base import InferenceBackend
from .model import EmbeddingModel, l2_normalize
from .onnx_backend import OnnxInferenceBackend

__all__ = [
    "EmbeddingModel",
    "InferenceBackend",
    "OnnxInferenceBackend",
    "l2_normalize",
]
