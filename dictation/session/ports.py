from __future__ import annotations

from typing import Protocol

from dictation.asr.base import ModelDescriptor
from dictation.session.config import InjectionMode


class ModelRegistry(Protocol):
    """Supplies descriptors for installed models; raises LoadError for unknown ids."""
    def descriptor(self, model_id: str) -> ModelDescriptor: ...


class TextInjector(Protocol):
    """Delivers final text to the focused application (keystrokes or clipboard)."""
    def inject(self, text: str, mode: InjectionMode) -> None: ...


class AudioSource(Protocol):
    sample_rate: "int | None"

    def open(self) -> "AudioSource": ...

    def read(self, timeout: "float | None" = None): ...

    def frames(self): ...

    def close(self) -> None: ...
