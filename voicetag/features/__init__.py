"""Acoustic front-end for speaker embeddings."""
from .fbank import FbankParams, FeatureExtractor, build_mel_filters

__all__ = ["FbankParams", "FeatureExtractor", "build_mel_filters"]
