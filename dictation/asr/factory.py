# dictation/asr/factory.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

from dictation.asr.base import EngineKind, ModelDescriptor, SpeechEngine
from dictation.asr.ctc import CTCConfig, CTCEngine
from dictation.asr.tdt import TDTConfig, TDTEngine
from dictation.errors import LoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineEntry:
    cfg_cls: Type[object]
    engine_cls: Type[SpeechEngine]
    model_files: Tuple[str, ...]
    default_n_mels: int


ENGINE_REGISTRY: Dict[str, EngineEntry] = {
    "ctc": EngineEntry(
        cfg_cls=CTCConfig,
        engine_cls=CTCEngine,
        model_files=("model.onnx",),
        default_n_mels=80,
    ),
    "tdt": EngineEntry(
        cfg_cls=TDTConfig,
        engine_cls=TDTEngine,
        model_files=("encoder-model.onnx", "decoder_joint-model.onnx"),
        default_n_mels=128,
    ),
}


def create_engine(kind: EngineKind, cfg: Optional[object] = None) -> SpeechEngine:
    """
    Unloaded engine for the given kind; chosen only from the kind tag.
    """
    norm = str(kind).lower().strip()
    entry = ENGINE_REGISTRY.get(norm)
    if entry is None:
        raise LoadError(f"Unknown engine kind: {kind}")
    return entry.engine_cls(cfg or entry.cfg_cls())


def load_engine(descriptor: ModelDescriptor, cfg: Optional[object] = None) -> SpeechEngine:
    engine = create_engine(descriptor.kind, cfg)
    engine.load(descriptor)
    return engine


class EngineSlot:
    """
    The single active engine. Activating a new model releases the old one
    first, so no decode can reach stale weights.
    """
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._engine: Optional[SpeechEngine] = None

    def get(self) -> Optional[SpeechEngine]:
        with self._lock:
            if self._engine is not None and self._engine.is_loaded:
                return self._engine
            return None

    @property
    def model_id(self) -> Optional[str]:
        engine = self.get()
        return engine.descriptor.model_id if engine is not None and engine.descriptor else None

    def activate(self, descriptor: ModelDescriptor, cfg: Optional[object] = None) -> SpeechEngine:
        """
        Reuse the loaded engine when the descriptor matches and `cfg` is None
        or equal to the engine's config; otherwise reload.
        """
        with self._lock:
            current = self._engine
            if (
                current is not None
                and current.is_loaded
                and current.descriptor == descriptor
                and (cfg is None or getattr(current, "cfg", None) == cfg)
            ):
                return current
            self._release_locked()
            engine = load_engine(descriptor, cfg)
            self._engine = engine
            logger.info("Active engine: %s (%s)", descriptor.model_id, descriptor.kind)
            return engine

    def release(self) -> bool:
        with self._lock:
            return self._release_locked()

    def _release_locked(self) -> bool:
        engine, self._engine = self._engine, None
        if engine is None:
            return False
        engine.unload()
        return True
