"""Audio pipeline: receive client PCM, keep a trailing ring of samples for analysis."""
from .receiver import AudioReceiver, pcm_f32le_to_float32
from .ring_store import AudioRingStore

__all__ = [
    "AudioReceiver",
    "AudioRingStore",
    "pcm_f32le_to_float32",
]
