from dictation.audio.config import CaptureConfig, ChunkConfig, MelConfig, TARGET_SAMPLE_RATE
from dictation.audio.frame import AudioFrame
from dictation.audio.mel import FeatureMatrix, extract
from dictation.audio.resample import ChunkBoundary, resample, resample_frame, rms_level, split_at_silence

__all__ = [
    "AudioFrame",
    "CaptureConfig",
    "ChunkBoundary",
    "ChunkConfig",
    "FeatureMatrix",
    "MelConfig",
    "TARGET_SAMPLE_RATE",
    "extract",
    "resample",
    "resample_frame",
    "rms_level",
    "split_at_silence",
]
