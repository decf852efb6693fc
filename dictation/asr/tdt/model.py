"""
Token-and-duration transducer (TDT) decoding over two ONNX sessions.

The encoder runs once per utterance. The decoder/joint network runs once per
symbol attempt and predicts a token plus how many encoder frames to skip.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from dictation.asr.base import ModelDescriptor, Transcript, check_features
from dictation.asr.onnx_session import (
    inputs_by_name,
    int_dtype,
    open_session,
    outputs_by_name,
    require,
    run,
    static_dim,
)
from dictation.asr.tdt.config import TDTConfig
from dictation.asr.vocab import Vocabulary, check_vocabulary, load_vocabulary
from dictation.audio.mel import FeatureMatrix
from dictation.errors import DecodeError, LoadError, ShapeMismatchError

logger = logging.getLogger(__name__)

ENCODER_OUTPUTS = ("outputs", "encoded_lengths")
DECODER_INPUTS = ("encoder_outputs", "targets", "target_length", "input_states_1", "input_states_2")
DECODER_OUTPUTS = ("outputs", "output_states_1", "output_states_2")

StateShape = Tuple[int, int, int]


@dataclass
class DecoderState:
    state1: np.ndarray
    state2: np.ndarray
    prev_token: int
    t: int = 0
    emitted_this_step: int = 0


@dataclass(frozen=True)
class JointLayout:
    """Decoder/joint io contract, read from the loaded model."""
    state1_shape: StateShape
    state2_shape: StateShape
    vocab_size: int
    num_durations: int
    targets_dtype: type = np.int32
    target_length_dtype: type = np.int32
    encoder_dim: Optional[int] = None

    @property
    def joint_width(self) -> int:
        return self.vocab_size + self.num_durations

    def initial_state(self, start_token: int) -> DecoderState:
        return DecoderState(
            state1=np.zeros(self.state1_shape, dtype=np.float32),
            state2=np.zeros(self.state2_shape, dtype=np.float32),
            prev_token=start_token,
        )


StepFn = Callable[[np.ndarray, DecoderState], Tuple[np.ndarray, np.ndarray, np.ndarray]]


def tdt_greedy_decode(
    encoded: np.ndarray,
    step: StepFn,
    layout: JointLayout,
    blank_id: int,
    max_symbols_per_step: int,
) -> List[int]:
    """
    encoded: (T', D). `step(frame, state)` returns (joint logits, new state1, new state2).

    Each iteration either advances `t` or bumps the per-frame emission count,
    and the count is capped, so the loop ends for any duration predictions.
    """
    max_symbols = max(1, int(max_symbols_per_step))
    state = layout.initial_state(blank_id)
    tokens: List[int] = []
    t_enc = int(encoded.shape[0])

    while state.t < t_enc:
        logits, new_s1, new_s2 = step(encoded[state.t], state)
        logits = np.asarray(logits, dtype=np.float32).reshape(-1)
        if logits.size != layout.joint_width:
            raise ShapeMismatchError(
                f"joint output has {logits.size} values, expected {layout.vocab_size} tokens + {layout.num_durations} durations"
            )

        token = int(np.argmax(logits[: layout.vocab_size]))
        duration = int(np.argmax(logits[layout.vocab_size:]))

        if token != blank_id:
            new_s1 = np.asarray(new_s1, dtype=np.float32)
            new_s2 = np.asarray(new_s2, dtype=np.float32)
            if new_s1.shape != layout.state1_shape or new_s2.shape != layout.state2_shape:
                raise ShapeMismatchError(
                    f"decoder state shapes {new_s1.shape}/{new_s2.shape} differ from "
                    f"declared {layout.state1_shape}/{layout.state2_shape}"
                )
            # recurrent state only moves on emitted symbols
            state.state1 = new_s1
            state.state2 = new_s2
            state.prev_token = token
            tokens.append(token)
            state.emitted_this_step += 1

        if duration > 0:
            state.t += duration
            state.emitted_this_step = 0
        elif token == blank_id or state.emitted_this_step >= max_symbols:
            state.t += 1
            state.emitted_this_step = 0

    return tokens


def _state_shape(arg, what: str) -> StateShape:
    shape = arg.shape
    if shape is None or len(shape) != 3:
        raise LoadError(f"{what} '{arg.name}' must be 3-D (layers, batch, hidden), model declares {shape}")
    layers = static_dim(shape, 0)
    hidden = static_dim(shape, 2)
    if layers is None or hidden is None:
        raise LoadError(f"cannot determine recurrent state shape from {what} '{arg.name}': {shape}")
    batch = static_dim(shape, 1)
    if batch is not None and batch != 1:
        raise LoadError(f"{what} '{arg.name}' declares batch {batch}, only batch 1 is supported")
    return (layers, 1, hidden)


class TDTEngine:
    """
    encoder-model.onnx + decoder_joint-model.onnx, greedy duration-aware decoding.
    """
    def __init__(self, cfg: TDTConfig = TDTConfig()):
        self.cfg = cfg
        self._descriptor: Optional[ModelDescriptor] = None
        self._encoder = None
        self._decoder = None
        self._vocab: Optional[Vocabulary] = None
        self._layout: Optional[JointLayout] = None
        self._encoder_length_dtype = None

    @property
    def descriptor(self) -> Optional[ModelDescriptor]:
        return self._descriptor

    @property
    def is_loaded(self) -> bool:
        return self._encoder is not None and self._decoder is not None

    @property
    def layout(self) -> Optional[JointLayout]:
        return self._layout

    def load(self, descriptor: ModelDescriptor) -> None:
        if descriptor.kind != "tdt":
            raise LoadError(f"TDTEngine cannot load a '{descriptor.kind}' model")
        if len(descriptor.model_files) != 2:
            raise LoadError(
                f"tdt model expects encoder + decoder_joint files, got {len(descriptor.model_files)}"
            )

        self.unload()

        vocab = load_vocabulary(descriptor.vocab_path)
        check_vocabulary(vocab, descriptor.vocab_size, descriptor.blank_id)

        encoder_path, decoder_path = descriptor.model_files
        logger.info("Loading TDT encoder from %s", encoder_path)
        encoder = open_session(encoder_path, self.cfg.intra_op_threads, self.cfg.providers)
        logger.info("Loading TDT decoder_joint from %s", decoder_path)
        decoder = open_session(decoder_path, self.cfg.intra_op_threads, self.cfg.providers)

        enc_inputs = encoder.get_inputs()
        if not enc_inputs:
            raise LoadError("tdt encoder declares no inputs")
        require(outputs_by_name(encoder), ENCODER_OUTPUTS, "tdt encoder")
        mel_dim = static_dim(enc_inputs[0].shape, 1)
        if mel_dim is not None and mel_dim != descriptor.n_mels:
            raise LoadError(f"encoder expects {mel_dim} mel bins, descriptor declares {descriptor.n_mels}")

        dec_in = inputs_by_name(decoder)
        dec_out = outputs_by_name(decoder)
        require(dec_in, DECODER_INPUTS, "tdt decoder_joint")
        require(dec_out, DECODER_OUTPUTS, "tdt decoder_joint")

        layout = JointLayout(
            state1_shape=_state_shape(dec_in["input_states_1"], "decoder input"),
            state2_shape=_state_shape(dec_in["input_states_2"], "decoder input"),
            vocab_size=vocab.size,
            num_durations=descriptor.num_durations,
            targets_dtype=int_dtype(dec_in["targets"]),
            target_length_dtype=int_dtype(dec_in["target_length"]),
            encoder_dim=static_dim(dec_in["encoder_outputs"].shape, 1),
        )

        joint_dim = static_dim(dec_out["outputs"].shape, -1)
        if joint_dim is not None and joint_dim != layout.joint_width:
            raise LoadError(
                f"joint emits {joint_dim} values, expected {vocab.size} tokens + {descriptor.num_durations} durations"
            )
        for name, expected in (("output_states_1", layout.state1_shape), ("output_states_2", layout.state2_shape)):
            declared = dec_out[name].shape
            for i, size in enumerate(expected):
                dim = static_dim(declared, i)
                if i != 1 and dim is not None and dim != size:
                    raise LoadError(f"decoder output '{name}' {declared} does not match input state {expected}")

        self._encoder_length_dtype = int_dtype(enc_inputs[1]) if len(enc_inputs) > 1 else None
        self._encoder = encoder
        self._decoder = decoder
        self._vocab = vocab
        self._layout = layout
        self._descriptor = descriptor
        logger.info(
            "TDT engine loaded (n_mels=%d, vocab=%d, state=%s, joint=%d)",
            descriptor.n_mels, vocab.size, layout.state1_shape, layout.joint_width,
        )

    def unload(self) -> None:
        if self._encoder is not None:
            logger.info("Unloading TDT model '%s'", self._descriptor.model_id if self._descriptor else "?")
        self._encoder = None
        self._decoder = None
        self._vocab = None
        self._layout = None
        self._descriptor = None
        self._encoder_length_dtype = None

    def _encode(self, features: FeatureMatrix) -> np.ndarray:
        """-> (T', D) encoder frames, trimmed to the encoded length."""
        enc_inputs = self._encoder.get_inputs()
        feed = {enc_inputs[0].name: np.ascontiguousarray(features.values.T[None, :, :], dtype=np.float32)}
        if self._encoder_length_dtype is not None:
            feed[enc_inputs[1].name] = np.array([features.n_frames], dtype=self._encoder_length_dtype)

        out, lengths = run(self._encoder, list(ENCODER_OUTPUTS), feed, "TDT encoder")
        out = np.asarray(out, dtype=np.float32)
        if out.ndim != 3 or out.shape[0] != 1:
            raise ShapeMismatchError(f"Unexpected encoder output shape: {out.shape}")

        encoded = out[0].T  # [1, D, T'] -> [T', D]
        if self._layout.encoder_dim is not None and encoded.shape[1] != self._layout.encoder_dim:
            raise ShapeMismatchError(
                f"encoder emits {encoded.shape[1]}-dim frames, decoder expects {self._layout.encoder_dim}"
            )
        t_enc = int(np.asarray(lengths).reshape(-1)[0])
        logger.debug("Encoder: %d frames x %d dim, encoded_length=%d", encoded.shape[0], encoded.shape[1], t_enc)
        return np.ascontiguousarray(encoded[: max(0, min(t_enc, encoded.shape[0]))])

    def _joint_step(self, frame: np.ndarray, state: DecoderState) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        layout = self._layout
        feed = {
            "encoder_outputs": frame.reshape(1, -1, 1).astype(np.float32, copy=False),
            "targets": np.array([[state.prev_token]], dtype=layout.targets_dtype),
            "target_length": np.array([1], dtype=layout.target_length_dtype),
            "input_states_1": state.state1,
            "input_states_2": state.state2,
        }
        if self.cfg.log_first_step and state.t == 0 and state.prev_token == self._vocab.blank_id:
            logger.debug(
                "TDT decoder first call: encoder_frame=%s targets=%s state1=%s state2=%s",
                feed["encoder_outputs"].shape, feed["targets"].dtype, state.state1.shape, state.state2.shape,
            )
        logits, s1, s2 = run(self._decoder, list(DECODER_OUTPUTS), feed, f"TDT decoder_joint at t={state.t}")
        return logits, s1, s2

    def decode(self, features: FeatureMatrix) -> Transcript:
        if not self.is_loaded or self._descriptor is None or self._vocab is None or self._layout is None:
            raise DecodeError("TDT model not loaded")
        check_features(features, self._descriptor)

        start = time.perf_counter()
        encoded = self._encode(features)
        ids = tdt_greedy_decode(
            encoded,
            self._joint_step,
            self._layout,
            blank_id=self._vocab.blank_id,
            max_symbols_per_step=self._descriptor.max_symbols_per_step,
        )
        text = self._vocab.detokenize(ids)
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info("TDT decode (%dms, %d encoder frames): %r", duration_ms, encoded.shape[0], text)

        return Transcript(
            text=text,
            duration_ms=duration_ms,
            backend=f"tdt/{self._descriptor.model_id}",
        )
