from __future__ import annotations

import logging
import time
from typing import Iterable, List, Optional

import numpy as np

from dictation.asr.base import ModelDescriptor, Transcript, check_features
from dictation.asr.ctc.config import CTCConfig
from dictation.asr.onnx_session import int_dtype, open_session, run, static_dim
from dictation.asr.vocab import Vocabulary, check_vocabulary, load_vocabulary
from dictation.audio.mel import FeatureMatrix
from dictation.errors import DecodeError, LoadError, ShapeMismatchError

logger = logging.getLogger(__name__)


def collapse_ctc(ids: Iterable[int], blank_id: int) -> List[int]:
    """
    Standard CTC collapse: runs of the same token merge, blanks are dropped,
    and a blank between two equal tokens keeps both.
    """
    out: List[int] = []
    prev: Optional[int] = None
    for token in ids:
        token = int(token)
        if token == blank_id:
            prev = None
            continue
        if token != prev:
            out.append(token)
        prev = token
    return out


def ctc_greedy_decode(logits: np.ndarray, blank_id: int) -> List[int]:
    """(T, V) logits -> collapsed token ids."""
    if logits.shape[0] == 0:
        return []
    return collapse_ctc(np.argmax(logits, axis=-1), blank_id)


class CTCEngine:
    """
    Single ONNX model (`model.onnx`): one forward pass, greedy argmax, collapse.
    """
    def __init__(self, cfg: CTCConfig = CTCConfig()):
        self.cfg = cfg
        self._descriptor: Optional[ModelDescriptor] = None
        self._session = None
        self._vocab: Optional[Vocabulary] = None
        self._length_dtype = None

    @property
    def descriptor(self) -> Optional[ModelDescriptor]:
        return self._descriptor

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    def load(self, descriptor: ModelDescriptor) -> None:
        if descriptor.kind != "ctc":
            raise LoadError(f"CTCEngine cannot load a '{descriptor.kind}' model")
        if len(descriptor.model_files) != 1:
            raise LoadError(f"ctc model expects exactly one model file, got {len(descriptor.model_files)}")

        self.unload()

        vocab = load_vocabulary(descriptor.vocab_path)
        check_vocabulary(vocab, descriptor.vocab_size, descriptor.blank_id)

        logger.info("Loading CTC model '%s' from %s", descriptor.model_id, descriptor.model_files[0])
        session = open_session(descriptor.model_files[0], self.cfg.intra_op_threads, self.cfg.providers)

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise LoadError("ctc model declares no inputs/outputs")

        mel_dim = static_dim(inputs[0].shape, 1)
        if mel_dim is not None and mel_dim != descriptor.n_mels:
            raise LoadError(f"model expects {mel_dim} mel bins, descriptor declares {descriptor.n_mels}")

        out_dim = static_dim(outputs[0].shape, -1)
        if out_dim is not None and out_dim != vocab.size:
            raise LoadError(f"model emits {out_dim} classes, vocabulary has {vocab.size}")

        self._length_dtype = int_dtype(inputs[1]) if len(inputs) > 1 else None
        self._session = session
        self._vocab = vocab
        self._descriptor = descriptor
        logger.info("CTC engine loaded (n_mels=%d, vocab=%d)", descriptor.n_mels, vocab.size)

    def unload(self) -> None:
        if self._session is not None:
            logger.info("Unloading CTC model '%s'", self._descriptor.model_id if self._descriptor else "?")
        self._session = None
        self._vocab = None
        self._descriptor = None
        self._length_dtype = None

    def decode(self, features: FeatureMatrix) -> Transcript:
        if self._session is None or self._descriptor is None or self._vocab is None:
            raise DecodeError("CTC model not loaded")
        check_features(features, self._descriptor)

        start = time.perf_counter()
        inputs = self._session.get_inputs()
        outputs = self._session.get_outputs()

        feed = {inputs[0].name: np.ascontiguousarray(features.values.T[None, :, :], dtype=np.float32)}
        if self._length_dtype is not None:
            feed[inputs[1].name] = np.array([features.n_frames], dtype=self._length_dtype)

        logits = np.asarray(run(self._session, [outputs[0].name], feed, "CTC")[0])
        if logits.ndim == 3:
            logits = logits[0]
        elif logits.ndim != 2:
            raise DecodeError(f"Unexpected CTC output shape: {logits.shape}")
        if logits.shape[-1] != self._vocab.size:
            raise ShapeMismatchError(f"CTC output has {logits.shape[-1]} classes, vocabulary has {self._vocab.size}")

        ids = ctc_greedy_decode(logits, self._vocab.blank_id)
        text = self._vocab.detokenize(ids)
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info("CTC decode (%dms, %d frames): %r", duration_ms, logits.shape[0], text)

        return Transcript(
            text=text,
            duration_ms=duration_ms,
            backend=f"ctc/{self._descriptor.model_id}",
        )
