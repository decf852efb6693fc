from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AudioFrame:
    """
    Mono float32 samples tagged with their sample rate. Read-only once built.
    """
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        a = np.asarray(self.samples)
        if a.ndim == 2 and a.shape[1] == 1:
            a = a[:, 0]
        if a.ndim != 1:
            raise ValueError("audio must be mono 1D array (shape=(n_samples,))")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        a = a.astype(np.float32, copy=a.dtype != np.float32 or a.flags.writeable)
        a.setflags(write=False)
        object.__setattr__(self, "samples", a)

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_s(self) -> float:
        return len(self) / float(self.sample_rate)

    @classmethod
    def concat(cls, frames: "list[AudioFrame]", sample_rate: int) -> "AudioFrame":
        if not frames:
            return cls(np.zeros(0, dtype=np.float32), sample_rate)
        for f in frames:
            if f.sample_rate != sample_rate:
                raise ValueError(f"cannot join {f.sample_rate}Hz frame into {sample_rate}Hz buffer")
        return cls(np.concatenate([f.samples for f in frames]), sample_rate)
