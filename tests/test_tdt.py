"""Duration-aware transducer decoding."""

import numpy as np
import pytest

from conftest import BLANK, FakeDecoderJointSession, FakeEncoderSession
from dictation.asr.registry import descriptor_from_dir
from dictation.asr.tdt import JointLayout, TDTEngine, tdt_greedy_decode
from dictation.audio.config import MelConfig
from dictation.audio.mel import extract
from dictation.errors import DecodeError, LoadError, ShapeMismatchError

STATE = (2, 1, 8)
LAYOUT = JointLayout(state1_shape=STATE, state2_shape=STATE, vocab_size=3, num_durations=5)


def _logits(token: int, duration: int, vocab_size: int = 3, num_durations: int = 5) -> np.ndarray:
    out = np.full(vocab_size + num_durations, -10.0, dtype=np.float32)
    out[token] = 10.0
    out[vocab_size + duration] = 10.0
    return out


def _stepper(policy, state_shape=STATE, **logit_kwargs):
    calls = []

    def step(frame, state):
        calls.append((int(frame[0]), state.prev_token))
        token, duration = policy(int(frame[0]), state.prev_token)
        return (
            _logits(token, duration, **logit_kwargs),
            state.state1 + 1.0 if state_shape == STATE else np.zeros(state_shape, dtype=np.float32),
            state.state2 + 1.0 if state_shape == STATE else np.zeros(state_shape, dtype=np.float32),
        )

    return step, calls


def _encoded(n: int) -> np.ndarray:
    enc = np.zeros((n, 4), dtype=np.float32)
    enc[:, 0] = np.arange(n)
    return enc


class TestGreedyLoop:
    def test_always_emitting_with_zero_duration_terminates(self):
        step, calls = _stepper(lambda t, prev: (0, 0))
        tokens = tdt_greedy_decode(_encoded(4), step, LAYOUT, BLANK, max_symbols_per_step=10)
        assert tokens == [0] * 40
        assert len(calls) == 40

    def test_max_symbols_floor_is_one(self):
        step, _ = _stepper(lambda t, prev: (0, 0))
        tokens = tdt_greedy_decode(_encoded(3), step, LAYOUT, BLANK, max_symbols_per_step=0)
        assert len(tokens) == 3

    def test_blank_with_zero_duration_advances_one_frame(self):
        step, calls = _stepper(lambda t, prev: (BLANK, 0))
        assert tdt_greedy_decode(_encoded(5), step, LAYOUT, BLANK, 10) == []
        assert [frame for frame, _ in calls] == [0, 1, 2, 3, 4]

    def test_duration_skips_frames(self):
        step, calls = _stepper(lambda t, prev: (0, 2))
        assert tdt_greedy_decode(_encoded(6), step, LAYOUT, BLANK, 10) == [0, 0, 0]
        assert [frame for frame, _ in calls] == [0, 2, 4]

    def test_blank_duration_also_skips(self):
        step, calls = _stepper(lambda t, prev: (BLANK, 4))
        tdt_greedy_decode(_encoded(9), step, LAYOUT, BLANK, 10)
        assert [frame for frame, _ in calls] == [0, 4, 8]

    def test_first_step_uses_blank_as_previous_token(self):
        step, calls = _stepper(lambda t, prev: (1, 1))
        assert tdt_greedy_decode(_encoded(3), step, LAYOUT, BLANK, 10) == [1, 1, 1]
        assert [prev for _, prev in calls] == [BLANK, 1, 1]

    def test_several_symbols_on_one_frame(self):
        def policy(t, prev):
            if t == 0 and prev == BLANK:
                return 0, 0
            if t == 0 and prev == 0:
                return 1, 0
            return BLANK, 1

        step, calls = _stepper(policy)
        # frame 0: A, B, then blank from prev=B advances
        assert tdt_greedy_decode(_encoded(2), step, LAYOUT, BLANK, 10) == [0, 1]
        assert calls == [(0, BLANK), (0, 0), (0, 1), (1, 1)]

    def test_empty_encoder_output(self):
        step, calls = _stepper(lambda t, prev: (0, 0))
        assert tdt_greedy_decode(_encoded(0), step, LAYOUT, BLANK, 10) == []
        assert calls == []

    def test_joint_width_mismatch(self):
        step, _ = _stepper(lambda t, prev: (0, 1), num_durations=4)
        with pytest.raises(ShapeMismatchError):
            tdt_greedy_decode(_encoded(3), step, LAYOUT, BLANK, 10)

    def test_state_shape_mismatch(self):
        step, _ = _stepper(lambda t, prev: (0, 1), state_shape=(1, 1, 8))
        with pytest.raises(ShapeMismatchError):
            tdt_greedy_decode(_encoded(3), step, LAYOUT, BLANK, 10)


def _features(seconds: float = 1.0, n_mels: int = 128):
    x = (np.random.default_rng(3).standard_normal(int(16000 * seconds)) * 0.1).astype(np.float32)
    return extract(x, MelConfig(n_mels=n_mels))


def _install(tdt_dir, fake_onnx, encoder=None, decoder=None, policy=None):
    encoder = encoder or FakeEncoderSession()
    decoder = decoder or FakeDecoderJointSession(policy or (lambda t, prev: (BLANK, 1)))
    fake_onnx[str(tdt_dir / "encoder-model.onnx")] = encoder
    fake_onnx[str(tdt_dir / "decoder_joint-model.onnx")] = decoder
    return encoder, decoder


def _ab_policy(t, prev):
    if t == 0 and prev == BLANK:
        return 0, 0
    if t == 0 and prev == 0:
        return 1, 3
    return BLANK, 1


class TestEngine:
    def test_transcript(self, tdt_dir, fake_onnx):
        _install(tdt_dir, fake_onnx, policy=_ab_policy)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        transcript = engine.decode(_features())
        assert transcript.text == "AB"
        assert transcript.backend == "tdt/parakeet-tdt"

    def test_feed_dtypes(self, tdt_dir, fake_onnx):
        encoder, decoder = _install(tdt_dir, fake_onnx, policy=_ab_policy)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        feats = _features()
        engine.decode(feats)

        enc_feed = encoder.calls[-1]
        assert enc_feed["audio_signal"].shape == (1, 128, feats.n_frames)
        assert enc_feed["length"].dtype == np.int64

        first = decoder.calls[0]
        assert first["targets"].dtype == np.int32
        assert first["targets"].tolist() == [[BLANK]]
        assert first["target_length"].dtype == np.int32
        assert first["encoder_outputs"].shape == (1, 4, 1)
        assert first["input_states_1"].shape == STATE

    def test_declared_int64_targets(self, tdt_dir, fake_onnx):
        decoder = FakeDecoderJointSession(_ab_policy, targets_type="tensor(int64)")
        _install(tdt_dir, fake_onnx, decoder=decoder)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        engine.decode(_features())
        assert decoder.calls[0]["targets"].dtype == np.int64

    def test_state_carries_only_after_emission(self, tdt_dir, fake_onnx):
        _, decoder = _install(tdt_dir, fake_onnx, policy=_ab_policy)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        engine.decode(_features())

        levels = [float(call["input_states_1"].max()) for call in decoder.calls]
        # zeros, then +1 after "A", +1 after "B", then unchanged through blanks
        assert levels[:3] == [0.0, 1.0, 2.0]
        assert all(level == 2.0 for level in levels[3:])
        assert [int(call["targets"][0, 0]) for call in decoder.calls[:3]] == [BLANK, 0, 1]

    def test_duration_jump_skips_decoder_calls(self, tdt_dir, fake_onnx):
        _, decoder = _install(tdt_dir, fake_onnx, policy=_ab_policy)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        feats = _features()
        engine.decode(feats)
        t_enc = (feats.n_frames + 7) // 8
        frames = [int(call["encoder_outputs"][0, 0, 0]) for call in decoder.calls]
        assert frames[:3] == [0, 0, 3]
        assert frames[-1] == t_enc - 1
        assert 1 not in frames and 2 not in frames

    def test_adversarial_joint_is_bounded(self, tdt_dir, fake_onnx):
        _, decoder = _install(tdt_dir, fake_onnx, policy=lambda t, prev: (0, 0))
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        feats = _features()
        transcript = engine.decode(feats)
        t_enc = (feats.n_frames + 7) // 8
        assert transcript.text == "A" * (t_enc * 10)
        assert len(decoder.calls) == t_enc * 10

    def test_wrong_mel_count(self, tdt_dir, fake_onnx):
        encoder, _ = _install(tdt_dir, fake_onnx)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        with pytest.raises(ShapeMismatchError):
            engine.decode(_features(n_mels=80))
        assert encoder.calls == []

    def test_joint_output_size_mismatch_at_runtime(self, tdt_dir, fake_onnx):
        decoder = FakeDecoderJointSession(lambda t, prev: (0, 1), num_durations=4)
        decoder._outputs[0].shape = [1, 1, 1, "J"]
        _install(tdt_dir, fake_onnx, decoder=decoder)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        with pytest.raises(ShapeMismatchError):
            engine.decode(_features())

    def test_decode_before_load(self):
        with pytest.raises(DecodeError):
            TDTEngine().decode(_features())

    def test_unload(self, tdt_dir, fake_onnx):
        _install(tdt_dir, fake_onnx)
        engine = TDTEngine()
        engine.load(descriptor_from_dir(tdt_dir))
        engine.unload()
        assert not engine.is_loaded
        assert engine.layout is None


class TestLoadErrors:
    def _load(self, tdt_dir):
        TDTEngine().load(descriptor_from_dir(tdt_dir))

    def test_dynamic_hidden_dim(self, tdt_dir, fake_onnx):
        decoder = FakeDecoderJointSession(_ab_policy, state_shape=[2, "batch", "hidden"])
        _install(tdt_dir, fake_onnx, decoder=decoder)
        with pytest.raises(LoadError, match="state shape"):
            self._load(tdt_dir)

    def test_two_dimensional_state(self, tdt_dir, fake_onnx):
        decoder = FakeDecoderJointSession(_ab_policy, state_shape=[2, 8])
        _install(tdt_dir, fake_onnx, decoder=decoder)
        with pytest.raises(LoadError):
            self._load(tdt_dir)

    def test_wrong_joint_width(self, tdt_dir, fake_onnx):
        decoder = FakeDecoderJointSession(_ab_policy, joint_width=10)
        _install(tdt_dir, fake_onnx, decoder=decoder)
        with pytest.raises(LoadError, match="joint"):
            self._load(tdt_dir)

    def test_missing_decoder_input(self, tdt_dir, fake_onnx):
        decoder = FakeDecoderJointSession(_ab_policy)
        decoder._inputs = [arg for arg in decoder._inputs if arg.name != "target_length"]
        _install(tdt_dir, fake_onnx, decoder=decoder)
        with pytest.raises(LoadError, match="target_length"):
            self._load(tdt_dir)

    def test_encoder_mel_mismatch(self, tdt_dir, fake_onnx):
        _install(tdt_dir, fake_onnx, encoder=FakeEncoderSession(n_mels=80))
        with pytest.raises(LoadError, match="mel"):
            self._load(tdt_dir)

    def test_missing_decoder_file(self, tdt_dir, fake_onnx):
        _install(tdt_dir, fake_onnx)
        descriptor = descriptor_from_dir(tdt_dir)
        (tdt_dir / "decoder_joint-model.onnx").unlink()
        with pytest.raises(LoadError):
            TDTEngine().load(descriptor)
