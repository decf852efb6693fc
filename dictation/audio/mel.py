"""
Log-mel feature extraction.

Fixed front end: 16 kHz input, 25 ms Hann window (400 samples) zero-padded
into a 512-point FFT, 10 ms hop, power spectrum, HTK triangular mel
filterbank, natural log, then per-bin normalization over the utterance.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Union

import numpy as np

from dictation.audio.config import MelConfig
from dictation.audio.frame import AudioFrame


@dataclass(frozen=True)
class FeatureMatrix:
    """T x M log-mel energies (time frames x mel bins), float32."""
    values: np.ndarray

    def __post_init__(self) -> None:
        v = np.asarray(self.values, dtype=np.float32)
        if v.ndim != 2:
            raise ValueError(f"feature matrix must be 2-D (T, M), got shape {v.shape}")
        v.setflags(write=False)
        object.__setattr__(self, "values", v)

    @property
    def n_frames(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_mels(self) -> int:
        return int(self.values.shape[1])


def _hz_to_mel(hz):
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def _mel_to_hz(mel):
    return 700.0 * (10.0 ** (np.asarray(mel, dtype=np.float64) / 2595.0) - 1.0)


def hann_window(length: int) -> np.ndarray:
    n = np.arange(length, dtype=np.float64)
    return 0.5 * (1.0 - np.cos(2.0 * np.pi * n / length))


@lru_cache(maxsize=8)
def mel_filterbank(n_mels: int, n_fft: int, sample_rate: int, fmin: float, fmax: float) -> np.ndarray:
    """(n_mels, n_fft // 2 + 1) triangular filters on the HTK mel scale."""
    n_bins = n_fft // 2 + 1
    mel_points = np.linspace(_hz_to_mel(fmin), _hz_to_mel(fmax), n_mels + 2)
    bin_points = _mel_to_hz(mel_points) * n_fft / sample_rate

    k = np.arange(n_bins, dtype=np.float64)[None, :]
    left = bin_points[:-2, None]
    center = bin_points[1:-1, None]
    right = bin_points[2:, None]

    with np.errstate(divide="ignore", invalid="ignore"):
        rising = np.where(center - left > 1e-6, (k - left) / (center - left), 0.0)
        falling = np.where(right - center > 1e-6, (right - k) / (right - center), 0.0)

    bank = np.where((k >= left) & (k <= center), rising, 0.0)
    bank = np.where((k > center) & (k <= right), falling, bank)
    bank = np.clip(bank, 0.0, None)
    bank.setflags(write=False)
    return bank


def num_frames(num_samples: int, cfg: MelConfig = MelConfig()) -> int:
    if num_samples < cfg.win_length:
        return 1
    return (num_samples - cfg.win_length) // cfg.hop_length + 1


def _normalize_per_feature(logmel: np.ndarray, std_floor: float) -> np.ndarray:
    # Welford accumulation over time, vectorized across mel bins
    mean = np.zeros(logmel.shape[1], dtype=np.float64)
    m2 = np.zeros(logmel.shape[1], dtype=np.float64)
    for count, row in enumerate(logmel, start=1):
        delta = row - mean
        mean += delta / count
        m2 += delta * (row - mean)

    std = np.sqrt(m2 / logmel.shape[0])
    std = np.maximum(std, std_floor)
    return (logmel - mean) / std


def extract(pcm: Union[np.ndarray, AudioFrame], cfg: MelConfig = MelConfig()) -> FeatureMatrix:
    """
    Log-mel matrix (frames, n_mels). A single frame has no variance over
    time, so it is returned un-normalized.
    """
    if isinstance(pcm, AudioFrame):
        if pcm.sample_rate != cfg.sample_rate:
            raise ValueError(
                f"mel front end expects {cfg.sample_rate}Hz audio, got {pcm.sample_rate}Hz (resample first)"
            )
        x = pcm.samples
    else:
        x = np.asarray(pcm, dtype=np.float32)
        if x.ndim != 1:
            raise ValueError("audio must be mono 1D array (shape=(n_samples,))")

    x = x.astype(np.float64)
    if len(x) < cfg.win_length:
        x = np.pad(x, (0, cfg.win_length - len(x)))

    n_frames = num_frames(len(x), cfg)
    frames = np.lib.stride_tricks.sliding_window_view(x, cfg.win_length)[:: cfg.hop_length][:n_frames]

    spectrum = np.fft.rfft(frames * hann_window(cfg.win_length), n=cfg.n_fft, axis=1)
    power = spectrum.real ** 2 + spectrum.imag ** 2

    fmax = cfg.fmax if cfg.fmax else cfg.sample_rate / 2.0
    bank = mel_filterbank(cfg.n_mels, cfg.n_fft, cfg.sample_rate, float(cfg.fmin), float(fmax))
    logmel = np.log(power @ bank.T + cfg.log_floor)

    if cfg.normalize_per_feature and logmel.shape[0] > 1:
        logmel = _normalize_per_feature(logmel, cfg.std_floor)

    return FeatureMatrix(logmel.astype(np.float32))
