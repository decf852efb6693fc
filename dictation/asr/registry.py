from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from dictation.asr.base import ModelDescriptor
from dictation.asr.factory import ENGINE_REGISTRY
from dictation.asr.vocab import find_vocab_file, load_vocabulary
from dictation.errors import LoadError

logger = logging.getLogger(__name__)


def detect_kind(model_dir: Path) -> str:
    # multi-file layouts win
    for kind in sorted(ENGINE_REGISTRY, key=lambda k: -len(ENGINE_REGISTRY[k].model_files)):
        if all((model_dir / name).is_file() for name in ENGINE_REGISTRY[kind].model_files):
            return kind
    raise LoadError(f"No supported ONNX model layout found in {model_dir}")


def descriptor_from_dir(
    model_dir: Path,
    model_id: Optional[str] = None,
    n_mels: Optional[int] = None,
    max_symbols_per_step: int = 10,
) -> ModelDescriptor:
    model_dir = Path(model_dir)
    if not model_dir.is_dir():
        raise LoadError(f"model directory not found: {model_dir}")

    kind = detect_kind(model_dir)
    entry = ENGINE_REGISTRY[kind]
    vocab_path = find_vocab_file(model_dir)
    vocab = load_vocabulary(vocab_path)

    return ModelDescriptor(
        model_id=model_id or model_dir.name,
        kind=kind,
        n_mels=n_mels or entry.default_n_mels,
        vocab_size=vocab.size,
        blank_id=vocab.blank_id,
        model_files=tuple(model_dir / name for name in entry.model_files),
        vocab_path=vocab_path,
        max_symbols_per_step=max_symbols_per_step,
    )


class LocalModelRegistry:
    """
    Installed models live in `<root>/<model id with "/" replaced by "--">/`.
    """
    def __init__(self, root: Path):
        self.root = Path(root)

    def model_dir(self, model_id: str) -> Path:
        return self.root / model_id.replace("/", "--")

    def descriptor(self, model_id: str) -> ModelDescriptor:
        path = self.model_dir(model_id)
        if not path.is_dir():
            raise LoadError(f"Model not installed: {model_id}")
        return descriptor_from_dir(path, model_id=model_id)

    def installed(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name.replace("--", "/") for p in self.root.iterdir() if p.is_dir())
