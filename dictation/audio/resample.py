from __future__ import annotations

from dataclasses import dataclass
from math import gcd
from typing import List

import numpy as np
from scipy import signal as scipy_signal

from dictation.audio.frame import AudioFrame


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """
    Polyphase resampling; identity (same object back) when the rates match.
    """
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError(f"sample rates must be positive ({from_rate} -> {to_rate})")
    if from_rate == to_rate:
        return samples

    x = np.asarray(samples, dtype=np.float32)
    if x.size == 0:
        return np.zeros(0, dtype=np.float32)

    g = gcd(int(from_rate), int(to_rate))
    up, down = int(to_rate) // g, int(from_rate) // g
    y = scipy_signal.resample_poly(x, up, down)
    return y.astype(np.float32, copy=False)


def resample_frame(frame: AudioFrame, to_rate: int) -> AudioFrame:
    if frame.sample_rate == to_rate:
        return frame
    return AudioFrame(resample(frame.samples, frame.sample_rate, to_rate), to_rate)


def rms_level(samples: np.ndarray, window: int = 1600) -> float:
    """RMS of the trailing window (~100 ms at 16 kHz), clipped to 1.0."""
    n = len(samples)
    if n == 0:
        return 0.0
    tail = np.asarray(samples[max(0, n - window):], dtype=np.float64)
    return float(min(1.0, np.sqrt(np.mean(tail * tail))))


# =========================
# Chunking for long utterances
# =========================

@dataclass(frozen=True)
class ChunkBoundary:
    start: int
    end: int


def split_at_silence(
    samples: np.ndarray,
    sample_rate: int,
    target_s: float = 28.0,
    search_s: float = 3.0,
    rms_window_ms: float = 100.0,
) -> List[ChunkBoundary]:
    """
    Cut long audio near every `target_s` seconds, at the quietest RMS window
    within +/- `search_s` of the ideal cut.
    """
    total = len(samples)
    max_chunk = int((target_s + search_s) * sample_rate)
    if total <= max_chunk:
        return [ChunkBoundary(0, total)]

    win = max(1, int(rms_window_ms / 1000.0 * sample_rate))
    n_windows = total // win
    x = np.asarray(samples[: n_windows * win], dtype=np.float64).reshape(n_windows, win)
    rms = np.sqrt(np.mean(x * x, axis=1))

    target = int(target_s * sample_rate)
    search = int(search_s * sample_rate)

    chunks: List[ChunkBoundary] = []
    start = 0
    while start < total:
        if total - start <= max_chunk:
            chunks.append(ChunkBoundary(start, total))
            break

        ideal = start + target
        lo = max(0, ideal - search) // win
        hi = min(min(total, ideal + search) // win, n_windows)
        if hi <= lo:
            cut = min(ideal, total)
        else:
            best = lo + int(np.argmin(rms[lo:hi]))
            cut = min(best * win + win // 2, total)
        if cut <= start:
            cut = min(start + target, total)

        chunks.append(ChunkBoundary(start, cut))
        start = cut

    return chunks
