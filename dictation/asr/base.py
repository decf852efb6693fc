from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, Protocol, Tuple

from dictation.audio.mel import FeatureMatrix
from dictation.errors import ShapeMismatchError

EngineKind = Literal["ctc", "tdt"]


@dataclass(frozen=True)
class ModelDescriptor:
    model_id: str
    kind: EngineKind
    n_mels: int
    vocab_size: int
    blank_id: int
    model_files: Tuple[Path, ...]
    vocab_path: Path
    max_symbols_per_step: int = 10
    num_durations: int = 5            # tdt only: durations 0..4

    def __post_init__(self) -> None:
        object.__setattr__(self, "model_files", tuple(Path(p) for p in self.model_files))
        object.__setattr__(self, "vocab_path", Path(self.vocab_path))


@dataclass(frozen=True)
class Segment:
    start_ms: int
    end_ms: int
    text: str


@dataclass(frozen=True)
class Transcript:
    text: str
    language: Optional[str] = None
    duration_ms: int = 0
    segments: Tuple[Segment, ...] = field(default_factory=tuple)
    backend: Optional[str] = None


def check_features(features: FeatureMatrix, descriptor: ModelDescriptor) -> None:
    if features.n_mels != descriptor.n_mels:
        raise ShapeMismatchError(
            f"feature matrix has {features.n_mels} mel bins, model '{descriptor.model_id}' expects {descriptor.n_mels}"
        )
    if features.n_frames < 1:
        raise ShapeMismatchError("feature matrix has no frames")


class SpeechEngine(Protocol):
    """
    Any decoder implementing load/decode/unload can be the session's active engine.
    """
    @property
    def descriptor(self) -> Optional[ModelDescriptor]: ...

    @property
    def is_loaded(self) -> bool: ...

    def load(self, descriptor: ModelDescriptor) -> None: ...

    def decode(self, features: FeatureMatrix) -> Transcript: ...

    def unload(self) -> None: ...
