"""EmbeddingModel: lazy single load, normalisation, failure mapping."""
import asyncio
import threading
import time

import numpy as np
import pytest

from voicetag.embedding import EmbeddingModel, InferenceBackend, OnnxInferenceBackend, l2_normalize
from voicetag.errors import InferenceFailed


class _FixedBackend(InferenceBackend):
    def __init__(self, output, load_delay: float = 0.0) -> None:
        self.output = np.asarray(output, dtype=np.float32)
        self.load_delay = load_delay
        self.loads = 0
        self.shapes: list[tuple] = []
        self._lock = threading.Lock()

    def load(self) -> None:
        time.sleep(self.load_delay)
        with self._lock:
            self.loads += 1

    def run(self, tensor: np.ndarray) -> np.ndarray:
        self.shapes.append(tensor.shape)
        return self.output


class _BrokenLoadBackend(InferenceBackend):
    def __init__(self) -> None:
        self.loads = 0

    def load(self) -> None:
        self.loads += 1
        raise FileNotFoundError("model.onnx")

    def run(self, tensor: np.ndarray) -> np.ndarray:  # pragma: no cover
        raise AssertionError("run after failed load")


class _RaisingRunBackend(InferenceBackend):
    def load(self) -> None:
        pass

    def run(self, tensor: np.ndarray) -> np.ndarray:
        raise RuntimeError("bad input shape")


FEATURES = np.zeros((80, 50), dtype=np.float32)


def test_output_is_unit_length_and_input_is_batched():
    backend = _FixedBackend([[3.0, 4.0]])
    model = EmbeddingModel(backend)

    emb = model.embed_sync(FEATURES)

    assert emb.shape == (2,)
    assert np.allclose(emb, [0.6, 0.8])
    assert backend.shapes == [(1, 80, 50)]
    model.close()


def test_zero_output_is_returned_unchanged():
    model = EmbeddingModel(_FixedBackend([0.0, 0.0, 0.0]))

    assert np.array_equal(model.embed_sync(FEATURES), np.zeros(3, dtype=np.float32))
    model.close()


def test_l2_normalize_flattens():
    out = l2_normalize(np.array([[0.0, 2.0]]))

    assert out.shape == (2,)
    assert np.allclose(out, [0.0, 1.0])


@pytest.mark.asyncio
async def test_concurrent_first_calls_load_once():
    backend = _FixedBackend([1.0, 0.0], load_delay=0.05)
    model = EmbeddingModel(backend)

    results = await asyncio.gather(*(model.embed(FEATURES) for _ in range(5)))

    assert backend.loads == 1
    assert all(np.allclose(r, [1.0, 0.0]) for r in results)
    assert model.is_ready
    model.close()


def test_concurrent_threads_load_once():
    backend = _FixedBackend([1.0], load_delay=0.05)
    model = EmbeddingModel(backend)
    threads = [threading.Thread(target=model.embed_sync, args=(FEATURES,)) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert backend.loads == 1
    model.close()


def test_failed_load_is_remembered():
    backend = _BrokenLoadBackend()
    model = EmbeddingModel(backend)

    with pytest.raises(InferenceFailed):
        model.embed_sync(FEATURES)
    with pytest.raises(InferenceFailed):
        model.embed_sync(FEATURES)
    assert backend.loads == 1
    assert not model.is_ready
    model.close()


@pytest.mark.asyncio
async def test_warm_up_reports_load_failure():
    model = EmbeddingModel(_BrokenLoadBackend())

    assert await model.warm_up() is False
    model.close()


def test_backend_errors_become_inference_failed():
    model = EmbeddingModel(_RaisingRunBackend())

    with pytest.raises(InferenceFailed):
        model.embed_sync(FEATURES)
    model.close()


@pytest.mark.parametrize("output", [[], [np.nan, 1.0], [np.inf]])
def test_empty_or_non_finite_output_is_rejected(output):
    model = EmbeddingModel(_FixedBackend(output))

    with pytest.raises(InferenceFailed):
        model.embed_sync(FEATURES)
    model.close()


def test_feature_shape_is_checked():
    model = EmbeddingModel(_FixedBackend([1.0]))

    with pytest.raises(InferenceFailed):
        model.embed_sync(np.zeros(80, dtype=np.float32))
    model.close()


def test_onnx_backend_reports_missing_model_file(tmp_path):
    model = EmbeddingModel(OnnxInferenceBackend(model_path=str(tmp_path / "missing.onnx")))

    with pytest.raises(InferenceFailed):
        model.embed_sync(FEATURES)
    model.close()
