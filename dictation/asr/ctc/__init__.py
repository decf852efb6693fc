from dictation.asr.ctc.config import CTCConfig
from dictation.asr.ctc.model import CTCEngine, collapse_ctc, ctc_greedy_decode

__all__ = ["CTCConfig", "CTCEngine", "collapse_ctc", "ctc_greedy_decode"]
