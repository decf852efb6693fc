from dictation.asr.base import ModelDescriptor, Segment, SpeechEngine, Transcript
from dictation.asr.factory import ENGINE_REGISTRY, EngineSlot, create_engine, load_engine
from dictation.asr.registry import LocalModelRegistry, descriptor_from_dir

__all__ = [
    "ENGINE_REGISTRY",
    "EngineSlot",
    "LocalModelRegistry",
    "ModelDescriptor",
    "Segment",
    "SpeechEngine",
    "Transcript",
    "create_engine",
    "descriptor_from_dir",
    "load_engine",
]
