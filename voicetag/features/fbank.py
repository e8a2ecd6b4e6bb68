"""
80-band log-Mel filterbank (Fbank) features for the speaker embedding model.

The front-end must match what the embedding model saw at training time
(SpeechBrain ECAPA-TDNN recipe with InputNormalization(std_norm=False)):

- 25 ms periodic Hamming window (400 samples), 10 ms hop (160 samples)
- each windowed frame zero-padded to a 512-point FFT; one-sided power over bins 0..255
- 80 triangular filters on the HTK Mel scale, 0-8000 Hz
- log(max(energy, 1e-10)) per filter
- per-band mean subtraction across frames; no variance normalisation, no clipping

Output layout is [n_mels][n_frames], i.e. the model's [1, 80, T] input without the batch axis.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from voicetag.config import get_settings
from voicetag.errors import ExtractionFailed


@dataclass(frozen=True)
class FbankParams:
    """Feature extraction parameters."""

    sample_rate: int = 16000
    win_ms: float = 25.0
    hop_ms: float = 10.0
    n_fft: int = 512
    n_mels: int = 80
    f_min: float = 0.0
    f_max: float = 8000.0
    eps: float = 1e-10

    @property
    def win_length(self) -> int:
        return int(self.win_ms * self.sample_rate / 1000.0)

    @property
    def hop_length(self) -> int:
        return int(self.hop_ms * self.sample_rate / 1000.0)

    @property
    def n_bins(self) -> int:
        return self.n_fft // 2

    @classmethod
    def from_settings(cls) -> "FbankParams":
        settings = get_settings()
        return cls(
            sample_rate=settings.SAMPLE_RATE,
            win_ms=settings.FBANK_WIN_MS,
            hop_ms=settings.FBANK_HOP_MS,
            n_fft=settings.FBANK_N_FFT,
            n_mels=settings.FBANK_N_MELS,
            f_max=settings.SAMPLE_RATE / 2.0,
        )


def hz_to_mel(f: np.ndarray | float) -> np.ndarray:
    return 2595.0 * np.log10(1.0 + np.asarray(f, dtype=np.float64) / 700.0)


def mel_to_hz(m: np.ndarray | float) -> np.ndarray:
    return 700.0 * (10.0 ** (np.asarray(m, dtype=np.float64) / 2595.0) - 1.0)


def hamming_window(length: int) -> np.ndarray:
    """Periodic Hamming window: 0.54 - 0.46 cos(2*pi*n / N)."""
    n = np.arange(length, dtype=np.float64)
    return 0.54 - 0.46 * np.cos(2.0 * np.pi * n / length)


def build_mel_filters(
    n_fft: int,
    sample_rate: float,
    n_mels: int,
    f_min: float,
    f_max: float,
) -> np.ndarray:
    """
    Triangular Mel filterbank of shape (n_mels, n_fft // 2).

    Filter m rises linearly 0 -> 1 from point m-1 to point m and falls 1 -> 0
    to point m+1, where the n_mels + 2 points are equally spaced in Mel between
    f_min and f_max. Bin k sits at k * sample_rate / n_fft Hz.
    """
    mel_points = np.linspace(hz_to_mel(f_min), hz_to_mel(f_max), n_mels + 2)
    hz_points = mel_to_hz(mel_points)
    freqs = np.arange(n_fft // 2, dtype=np.float64) * sample_rate / n_fft

    left = hz_points[:-2, None]
    center = hz_points[1:-1, None]
    right = hz_points[2:, None]

    rising = (freqs - left) / (center - left)
    falling = (right - freqs) / (right - center)
    in_rise = (freqs >= left) & (freqs <= center)
    in_fall = (freqs > center) & (freqs <= right)
    filters = np.where(in_rise, rising, np.where(in_fall, falling, 0.0))
    return filters.astype(np.float32)


class FeatureExtractor:
    """Deterministic Fbank80 transform. Stateless after construction; safe to share across threads."""

    def __init__(self, params: FbankParams | None = None) -> None:
        self.params = params or FbankParams()
        self._window = hamming_window(self.params.win_length)
        self.mel_filters = build_mel_filters(
            n_fft=self.params.n_fft,
            sample_rate=float(self.params.sample_rate),
            n_mels=self.params.n_mels,
            f_min=self.params.f_min,
            f_max=self.params.f_max,
        )

    def num_frames(self, num_samples: int) -> int:
        p = self.params
        if num_samples < p.win_length:
            return 0
        return 1 + (num_samples - p.win_length) // p.hop_length

    def log_mel_energies(self, samples: np.ndarray, sample_rate: int | None = None) -> np.ndarray:
        """Log-Mel energies (n_mels, n_frames) before mean normalisation."""
        p = self.params
        x = self._validate(samples, sample_rate)
        n_frames = self.num_frames(x.size)

        frames = np.lib.stride_tricks.sliding_window_view(x, p.win_length)[:: p.hop_length][:n_frames]
        windowed = frames * self._window

        # Scaled by 1/n_fft before squaring; the constant cancels in mean normalisation.
        spectrum = np.fft.rfft(windowed, n=p.n_fft, axis=1)[:, : p.n_bins] / p.n_fft
        power = spectrum.real ** 2 + spectrum.imag ** 2

        energies = power @ self.mel_filters.T.astype(np.float64)
        return np.log(np.maximum(energies, p.eps)).T.astype(np.float32)

    def make_features(self, samples: np.ndarray, sample_rate: int | None = None) -> np.ndarray:
        """
        Fbank features (n_mels, n_frames), mean-centred per Mel band.
        Raises ExtractionFailed for multi-channel input, wrong sample rate, or < one window.
        """
        feats = self.log_mel_energies(samples, sample_rate)
        feats -= feats.mean(axis=1, keepdims=True)
        return feats

    def _validate(self, samples: np.ndarray, sample_rate: int | None) -> np.ndarray:
        p = self.params
        if sample_rate is not None and sample_rate != p.sample_rate:
            raise ExtractionFailed(f"expected {p.sample_rate} Hz audio, got {sample_rate} Hz")
        x = np.asarray(samples)
        if x.ndim != 1:
            raise ExtractionFailed(f"expected mono 1-D samples, got shape {x.shape}")
        if x.size < p.win_length:
            raise ExtractionFailed(f"need at least {p.win_length} samples, got {x.size}")
        return x.astype(np.float64)
