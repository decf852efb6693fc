from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

TARGET_SAMPLE_RATE = 16000


@dataclass
class CaptureConfig:
    device: Optional[int] = None      # None = system default input
    sample_rate: Optional[int] = None # None = device native rate
    block_ms: int = 20
    latency: str = "low"
    read_timeout_s: float = 0.5


@dataclass(frozen=True)
class MelConfig:
    sample_rate: int = TARGET_SAMPLE_RATE
    n_fft: int = 512
    hop_length: int = 160             # 10 ms
    win_length: int = 400             # 25 ms
    n_mels: int = 80                  # 80 (ctc) / 128 (tdt)
    fmin: float = 0.0
    fmax: Optional[float] = None      # None = sample_rate / 2
    log_floor: float = 1e-10
    std_floor: float = 1e-5
    normalize_per_feature: bool = True


@dataclass
class ChunkConfig:
    target_s: float = 28.0
    search_s: float = 3.0
    rms_window_ms: float = 100.0
