"""Shared fakes: ONNX sessions, model directories and a scripted capture device."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import onnxruntime
import pytest

from dictation.audio.frame import AudioFrame
from dictation.errors import DeviceError, EndOfStream

# "A"=0, "B"=1, blank=2
VOCAB_TXT = "A 0\nB 1\n<blk> 2\n"
VOCAB_SIZE = 3
BLANK = 2


@dataclass
class FakeArg:
    name: str
    shape: list
    type: str = "tensor(float)"


class FakeCTCSession:
    """
    Either scripted (fixed token ids per output frame) or a fixed random
    projection of the features with a bias towards blank.
    """
    def __init__(
        self,
        n_mels: int = 80,
        vocab_size: int = VOCAB_SIZE,
        script: Optional[Sequence[int]] = None,
        seed: int = 0,
        length_type: str = "tensor(int64)",
        gate: Optional[threading.Event] = None,
    ):
        self.n_mels = n_mels
        self.vocab_size = vocab_size
        self.script = list(script) if script is not None else None
        rng = np.random.default_rng(seed)
        self.weights = rng.standard_normal((n_mels, vocab_size)).astype(np.float32)
        self.bias = np.zeros(vocab_size, dtype=np.float32)
        self.bias[vocab_size - 1] = 1.0
        self.gate = gate
        self.calls: List[Dict[str, np.ndarray]] = []
        self._inputs = [
            FakeArg("audio_signal", [1, n_mels, "T"]),
            FakeArg("length", [1], length_type),
        ]
        self._outputs = [FakeArg("logprobs", [1, "T", vocab_size])]

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, feed):
        if self.gate is not None:
            self.gate.wait(5.0)
        self.calls.append(feed)
        x = feed["audio_signal"]
        n_frames = x.shape[2]
        if self.script is not None:
            ids = [self.script[t % len(self.script)] for t in range(n_frames)]
            logits = np.full((1, n_frames, self.vocab_size), -10.0, dtype=np.float32)
            logits[0, np.arange(n_frames), ids] = 10.0
            return [logits]
        logits = x[0].T @ self.weights + self.bias
        return [logits[None, :, :].astype(np.float32)]


class FakeEncoderSession:
    """8x time downsampling; frame t carries value t in its first channel."""
    def __init__(self, n_mels: int = 128, dim: int = 4, length_type: str = "tensor(int64)"):
        self.dim = dim
        self.calls: List[Dict[str, np.ndarray]] = []
        self._inputs = [
            FakeArg("audio_signal", [1, n_mels, "T"]),
            FakeArg("length", [1], length_type),
        ]
        self._outputs = [
            FakeArg("outputs", [1, dim, "T'"]),
            FakeArg("encoded_lengths", [1], "tensor(int64)"),
        ]

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, feed):
        self.calls.append(feed)
        n_frames = feed["audio_signal"].shape[2]
        t_enc = (n_frames + 7) // 8
        out = np.zeros((1, self.dim, t_enc), dtype=np.float32)
        out[0, 0, :] = np.arange(t_enc)
        return [out, np.array([t_enc], dtype=np.int64)]


Policy = Callable[[int, int], "tuple[int, int]"]


class FakeDecoderJointSession:
    """
    policy(frame_index, prev_token) -> (token, duration). Output states are the
    input states + 1, so carried state is observable.
    """
    def __init__(
        self,
        policy: Policy,
        vocab_size: int = VOCAB_SIZE,
        num_durations: int = 5,
        dim: int = 4,
        hidden: int = 8,
        layers: int = 2,
        state_shape: Optional[list] = None,
        joint_width: Optional[int] = None,
        targets_type: str = "tensor(int32)",
    ):
        self.policy = policy
        self.vocab_size = vocab_size
        self.num_durations = num_durations
        self.calls: List[Dict[str, np.ndarray]] = []
        shape = state_shape if state_shape is not None else [layers, "batch", hidden]
        width = joint_width if joint_width is not None else vocab_size + num_durations
        self._inputs = [
            FakeArg("encoder_outputs", [1, dim, 1]),
            FakeArg("targets", [1, 1], targets_type),
            FakeArg("target_length", [1], "tensor(int32)"),
            FakeArg("input_states_1", shape),
            FakeArg("input_states_2", shape),
        ]
        self._outputs = [
            FakeArg("outputs", [1, 1, 1, width]),
            FakeArg("output_states_1", shape),
            FakeArg("output_states_2", shape),
        ]

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, feed):
        self.calls.append(feed)
        frame_index = int(feed["encoder_outputs"][0, 0, 0])
        prev = int(feed["targets"][0, 0])
        token, duration = self.policy(frame_index, prev)
        logits = np.full(self.vocab_size + self.num_durations, -10.0, dtype=np.float32)
        logits[token] = 10.0
        logits[self.vocab_size + duration] = 10.0
        return [
            logits.reshape(1, 1, 1, -1),
            feed["input_states_1"] + 1.0,
            feed["input_states_2"] + 1.0,
        ]


@pytest.fixture
def fake_onnx(monkeypatch: pytest.MonkeyPatch) -> Dict[str, object]:
    """
    Maps model file paths to fake sessions. Register a fake under the file's
    path before loading; InferenceSession(path) then returns it.
    """
    sessions: Dict[str, object] = {}

    def factory(path, sess_options=None, providers=None):
        try:
            return sessions[str(path)]
        except KeyError:
            raise RuntimeError(f"[ONNXRuntimeError] : NO_SUCHFILE : {path}") from None

    monkeypatch.setattr(onnxruntime, "InferenceSession", factory)
    return sessions


def make_model_dir(root: Path, name: str, files: Sequence[str], vocab: str = VOCAB_TXT) -> Path:
    model_dir = root / name
    model_dir.mkdir(parents=True)
    for f in files:
        (model_dir / f).write_bytes(b"onnx")
    (model_dir / "vocab.txt").write_text(vocab, encoding="utf-8")
    return model_dir


@pytest.fixture
def ctc_dir(tmp_path: Path) -> Path:
    return make_model_dir(tmp_path, "parakeet-ctc", ["model.onnx"])


@pytest.fixture
def tdt_dir(tmp_path: Path) -> Path:
    return make_model_dir(tmp_path, "parakeet-tdt", ["encoder-model.onnx", "decoder_joint-model.onnx"])


class FakeCapture:
    """Plays back fixed chunks, then idles (or reports device loss)."""
    def __init__(
        self,
        chunks: Sequence[np.ndarray] = (),
        sample_rate: int = 16000,
        fail_open: bool = False,
        lose_device: bool = False,
        idle_sleep: float = 0.005,
    ):
        self.sample_rate = sample_rate
        self._pending = [np.asarray(c, dtype=np.float32) for c in chunks]
        self._lock = threading.Lock()
        self.fail_open = fail_open
        self.lose_device = lose_device
        self.idle_sleep = idle_sleep
        self.opened = False
        self.closed = False

    def open(self):
        if self.fail_open:
            raise DeviceError("No input device available")
        self.opened = True
        return self

    def read(self, timeout=None):
        with self._lock:
            if self._pending:
                return AudioFrame(self._pending.pop(0), self.sample_rate)
        if self.closed:
            raise EndOfStream("closed")
        if self.lose_device:
            raise DeviceError("Input device stopped delivering audio")
        time.sleep(self.idle_sleep)
        return AudioFrame(np.zeros(0, dtype=np.float32), self.sample_rate)

    def frames(self):
        while True:
            try:
                frame = self.read()
            except EndOfStream:
                return
            if len(frame):
                yield frame

    def close(self):
        self.closed = True


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
