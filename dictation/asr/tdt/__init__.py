from dictation.asr.tdt.config import TDTConfig
from dictation.asr.tdt.model import DecoderState, JointLayout, TDTEngine, tdt_greedy_decode

__all__ = ["DecoderState", "JointLayout", "TDTConfig", "TDTEngine", "tdt_greedy_decode"]
