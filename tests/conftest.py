"""Shared fixtures: isolated settings and a deterministic embedding model."""
from __future__ import annotations

import pytest

from voicetag.embedding import EmbeddingModel

from tests.helpers import BandStdBackend


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep every test away from ./data, ./sessions, real providers and model files."""
    monkeypatch.setenv("SPEAKER_REGISTRY_PATH", str(tmp_path / "speakers.json"))
    monkeypatch.setenv("SESSION_DIR", str(tmp_path / "sessions"))
    monkeypatch.setenv("EMBEDDING_BACKEND", "none")
    monkeypatch.setenv("TRANSCRIPTION_BACKEND", "none")
    monkeypatch.setenv("REGISTRY_SAVE_DEBOUNCE_MS", "10")
    monkeypatch.setenv("LOG_FILE", "")


@pytest.fixture
def band_std_model():
    model = EmbeddingModel(BandStdBackend())
    yield model
    model.close()
