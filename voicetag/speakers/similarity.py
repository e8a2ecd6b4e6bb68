"""Cosine similarity between speaker embeddings."""
from __future__ import annotations

import numpy as np


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    """
    dot(a, b) / (|a| |b|) over the first min(len(a), len(b)) components.
    Returns 0.0 when either vector has zero norm.
    """
    x = np.asarray(a, dtype=np.float64).reshape(-1)
    y = np.asarray(b, dtype=np.float64).reshape(-1)
    n = min(x.size, y.size)
    x = x[:n]
    y = y[:n]
    denom = float(np.sqrt(np.dot(x, x)) * np.sqrt(np.dot(y, y)))
    if denom <= 0.0:
        return 0.0
    return float(np.dot(x, y) / denom)
