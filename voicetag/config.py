"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Audio: float32 mono, 16kHz (client sends pcm_f32le)
    SAMPLE_RATE: int = 16000
    SAMPLE_WIDTH: int = 4  # float32
    CHANNELS: int = 1

    # Frame forwarded to the transcription provider: 120ms @ 16kHz = 1920 samples = 7680 bytes
    FRAME_MS: int = 120

    # Ring store: trailing audio kept for identification/enrolment slices
    RING_MAX_SECONDS: float = 300.0

    # Fbank features (must match the embedding model's training front-end)
    FBANK_N_MELS: int = 80
    FBANK_N_FFT: int = 512
    FBANK_WIN_MS: float = 25.0
    FBANK_HOP_MS: float = 10.0

    # Embedding model: "onnx" | "none" (none = speaker recognition disabled)
    EMBEDDING_BACKEND: Literal["onnx", "none"] = "onnx"
    EMBEDDING_MODEL_PATH: str = "./models/ecapa_tdnn_embedding.onnx"
    EMBEDDING_INTRA_OP_THREADS: int = 2
    EMBEDDING_WARM_UP: bool = False  # load model at startup instead of on first embed

    # Speaker recognition
    SPEAKER_IDENTIFY_THRESHOLD: float = 0.80
    SPEAKER_LEARN_MIN_SIMILARITY: float = 0.85  # stricter than identify
    SPEAKER_MIN_AUDIO_MS: int = 5000  # audio needed before identify / enrol / learn
    SPEAKER_IDENTIFY_WINDOW_MS: int = 30000  # identify from the newest audio only; 0 = whole history
    SPEAKER_REGISTRY_PATH: str = "./data/speakers.json"
    REGISTRY_SAVE_DEBOUNCE_MS: int = 500

    # Transcription provider: "soniox" | "none"
    TRANSCRIPTION_BACKEND: Literal["soniox", "none"] = "soniox"
    SONIOX_API_KEY: str = ""
    SONIOX_URL: str = "wss://stt-rt.soniox.com/transcribe-websocket"
    SONIOX_MODEL: str = "stt-rt-preview"
    SONIOX_LANGUAGE_HINTS: str = "en"  # comma-separated
    SONIOX_CONTEXT: str = ""
    SONIOX_KEEPALIVE_SEC: float = 15.0  # provider closes idle streams after ~20s
    TRANSPORT_QUEUE_MAX_FRAMES: int = 256
    TRANSPORT_DRAIN_TIMEOUT_SEC: float = 10.0

    # Session record: one JSON per session, written at session end.
    SESSION_SAVE_ENABLED: bool = True
    SESSION_DIR: str = "./sessions"

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path empty = console only.
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def frame_samples(self) -> int:
        return int(self.SAMPLE_RATE * self.FRAME_MS / 1000)

    @property
    def frame_bytes(self) -> int:
        return self.frame_samples * self.SAMPLE_WIDTH


def get_settings() -> Settings:
    return Settings()
