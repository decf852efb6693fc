"""Engine construction and the single active-engine slot."""

import numpy as np
import pytest

from conftest import FakeCTCSession, make_model_dir
from dictation.asr.ctc import CTCConfig, CTCEngine
from dictation.asr.factory import ENGINE_REGISTRY, EngineSlot, create_engine, load_engine
from dictation.asr.registry import descriptor_from_dir
from dictation.asr.tdt import TDTEngine
from dictation.audio.mel import extract
from dictation.errors import LoadError


def _feats():
    return extract((np.random.default_rng(0).standard_normal(8000) * 0.1).astype(np.float32))


class TestCreate:
    def test_kinds(self):
        assert isinstance(create_engine("ctc"), CTCEngine)
        assert isinstance(create_engine("TDT"), TDTEngine)

    def test_unknown_kind(self):
        with pytest.raises(LoadError):
            create_engine("rnnt")

    def test_custom_config(self):
        cfg = CTCConfig(intra_op_threads=1)
        assert create_engine("ctc", cfg).cfg is cfg

    def test_created_engine_is_unloaded(self):
        engine = create_engine("ctc")
        assert not engine.is_loaded
        assert engine.descriptor is None

    def test_registry_defaults(self):
        assert ENGINE_REGISTRY["ctc"].default_n_mels == 80
        assert ENGINE_REGISTRY["tdt"].default_n_mels == 128

    def test_load_engine(self, ctc_dir, fake_onnx):
        fake_onnx[str(ctc_dir / "model.onnx")] = FakeCTCSession()
        engine = load_engine(descriptor_from_dir(ctc_dir))
        assert engine.is_loaded


class TestSlot:
    def _two_models(self, tmp_path, fake_onnx):
        dir_a = make_model_dir(tmp_path, "model-a", ["model.onnx"])
        dir_b = make_model_dir(tmp_path, "model-b", ["model.onnx"])
        sess_a, sess_b = FakeCTCSession(seed=1), FakeCTCSession(seed=2)
        fake_onnx[str(dir_a / "model.onnx")] = sess_a
        fake_onnx[str(dir_b / "model.onnx")] = sess_b
        return descriptor_from_dir(dir_a), descriptor_from_dir(dir_b), sess_a, sess_b

    def test_empty_slot(self):
        slot = EngineSlot()
        assert slot.get() is None
        assert slot.model_id is None
        assert slot.release() is False

    def test_same_descriptor_is_cached(self, tmp_path, fake_onnx):
        desc_a, _, _, _ = self._two_models(tmp_path, fake_onnx)
        slot = EngineSlot()
        first = slot.activate(desc_a)
        assert slot.activate(desc_a) is first
        assert slot.model_id == "model-a"

    def test_changed_config_reloads(self, tmp_path, fake_onnx):
        desc_a, _, _, _ = self._two_models(tmp_path, fake_onnx)
        slot = EngineSlot()
        one = slot.activate(desc_a, CTCConfig(intra_op_threads=1))
        assert slot.activate(desc_a, CTCConfig(intra_op_threads=1)) is one

        two = slot.activate(desc_a, CTCConfig(intra_op_threads=2))
        assert two is not one
        assert not one.is_loaded
        assert two.cfg.intra_op_threads == 2
        # no config: whatever is loaded is fine
        assert slot.activate(desc_a) is two

    def test_swap_releases_previous_engine(self, tmp_path, fake_onnx):
        desc_a, desc_b, sess_a, sess_b = self._two_models(tmp_path, fake_onnx)
        slot = EngineSlot()
        engine_a = slot.activate(desc_a)
        engine_a.decode(_feats())
        calls_a = len(sess_a.calls)

        engine_b = slot.activate(desc_b)
        assert not engine_a.is_loaded
        assert slot.get() is engine_b
        assert slot.model_id == "model-b"

        slot.get().decode(_feats())
        assert len(sess_b.calls) == 1
        assert len(sess_a.calls) == calls_a

    def test_failed_activation_leaves_slot_empty(self, tmp_path, fake_onnx):
        desc_a, _, _, _ = self._two_models(tmp_path, fake_onnx)
        broken_dir = make_model_dir(tmp_path, "broken", ["model.onnx"])
        slot = EngineSlot()
        engine_a = slot.activate(desc_a)
        with pytest.raises(LoadError):
            slot.activate(descriptor_from_dir(broken_dir))
        assert not engine_a.is_loaded
        assert slot.get() is None

    def test_release(self, tmp_path, fake_onnx):
        desc_a, _, _, _ = self._two_models(tmp_path, fake_onnx)
        slot = EngineSlot()
        engine = slot.activate(desc_a)
        assert slot.release() is True
        assert not engine.is_loaded
        assert slot.get() is None
        assert slot.release() is False
