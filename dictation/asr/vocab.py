from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from dictation.errors import LoadError

logger = logging.getLogger(__name__)

WORD_BOUNDARY = "▁"


@dataclass(frozen=True)
class Vocabulary:
    tokens: Tuple[str, ...]
    blank_id: int

    @property
    def size(self) -> int:
        return len(self.tokens)

    def detokenize(self, ids: Iterable[int]) -> str:
        pieces = [self.tokens[i] for i in ids if 0 <= i < len(self.tokens) and i != self.blank_id]
        return "".join(pieces).replace(WORD_BOUNDARY, " ").strip()


def _from_pairs(pairs: List[Tuple[str, int]], path: Path) -> Vocabulary:
    if any(idx < 0 for _, idx in pairs):
        raise LoadError(f"{path} contains negative token ids")
    pairs.sort(key=lambda p: p[1])
    tokens = [""] * (pairs[-1][1] + 1)
    for token, idx in pairs:
        tokens[idx] = token
    # blank is the last class in NeMo vocabularies
    return Vocabulary(tuple(tokens), blank_id=len(tokens) - 1)


def _read_text(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise LoadError(f"{path} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise LoadError(f"Failed to read {path}: {exc}") from exc


def load_vocab_txt(path: Path) -> Vocabulary:
    """NeMo export format: one "<token> <id>" per line."""
    pairs: List[Tuple[str, int]] = []
    for line in _read_text(path).splitlines():
        line = line.strip()
        if not line:
            continue
        token, sep, idx = line.rpartition(" ")
        if not sep:
            continue
        try:
            pairs.append((token, int(idx)))
        except ValueError:
            continue
    if not pairs:
        raise LoadError(f"{path} is empty or has invalid format")
    return _from_pairs(pairs, path)


def _pairs_from_map(vocab: Dict[str, object]) -> List[Tuple[str, int]]:
    return [(k, int(v)) for k, v in vocab.items() if isinstance(v, int)]


def load_tokenizer_json(path: Path) -> Vocabulary:
    try:
        data = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise LoadError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise LoadError(f"{path} must hold a JSON object, got {type(data).__name__}")

    model = data.get("model")
    model_vocab = model.get("vocab") if isinstance(model, dict) else None
    if isinstance(model_vocab, list):
        tokens = []
        for entry in model_vocab:
            if isinstance(entry, str):
                tokens.append(entry)
            elif isinstance(entry, list) and entry and isinstance(entry[0], str):
                tokens.append(entry[0])
        if tokens:
            return Vocabulary(tuple(tokens), blank_id=len(tokens) - 1)
    elif isinstance(model_vocab, dict) and model_vocab:
        pairs = _pairs_from_map(model_vocab)
        if pairs:
            return _from_pairs(pairs, path)

    top_vocab = data.get("vocab")
    if isinstance(top_vocab, dict):
        pairs = _pairs_from_map(top_vocab)
        if pairs:
            return _from_pairs(pairs, path)

    raise LoadError(f"Could not find vocabulary in {path}")


def find_vocab_file(model_dir: Path) -> Path:
    for name in ("vocab.txt", "tokenizer.json"):
        candidate = Path(model_dir) / name
        if candidate.is_file():
            return candidate
    raise LoadError(f"No vocab.txt or tokenizer.json found in {model_dir}")


def check_vocabulary(vocab: Vocabulary, vocab_size: int, blank_id: int) -> None:
    if vocab.size != vocab_size:
        raise LoadError(f"vocabulary has {vocab.size} tokens, descriptor declares {vocab_size}")
    if vocab.blank_id != blank_id:
        raise LoadError(f"vocabulary blank id is {vocab.blank_id}, descriptor declares {blank_id}")


def load_vocabulary(path: Path) -> Vocabulary:
    path = Path(path)
    if not path.is_file():
        raise LoadError(f"vocabulary file not found: {path}")
    vocab = load_tokenizer_json(path) if path.suffix == ".json" else load_vocab_txt(path)
    logger.info("Loaded %s: %d tokens, blank_id=%d", path.name, vocab.size, vocab.blank_id)
    return vocab
