from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from dictation.asr.base import Segment, SpeechEngine, Transcript
from dictation.audio.config import ChunkConfig, MelConfig
from dictation.audio.frame import AudioFrame
from dictation.audio.mel import extract
from dictation.audio.resample import resample_frame, split_at_silence

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]


def transcribe_frame(
    engine: SpeechEngine,
    frame: AudioFrame,
    mel_cfg: MelConfig,
    chunk_cfg: ChunkConfig = ChunkConfig(),
    on_progress: Optional[ProgressFn] = None,
    language: Optional[str] = None,
) -> Transcript:
    """
    Resample -> split long audio at quiet points -> extract + decode each chunk.
    """
    audio = resample_frame(frame, mel_cfg.sample_rate)
    rate = audio.sample_rate
    bounds = split_at_silence(
        audio.samples,
        rate,
        target_s=chunk_cfg.target_s,
        search_s=chunk_cfg.search_s,
        rms_window_ms=chunk_cfg.rms_window_ms,
    )
    if len(bounds) > 1:
        logger.info("Decoding %.1fs of audio in %d chunks", audio.duration_s, len(bounds))

    start = time.perf_counter()
    texts: List[str] = []
    segments: List[Segment] = []
    backend = None

    for i, b in enumerate(bounds, start=1):
        features = extract(audio.samples[b.start:b.end], mel_cfg)
        part = engine.decode(features)
        backend = part.backend
        if part.text:
            texts.append(part.text)
            segments.append(Segment(
                start_ms=int(b.start * 1000 / rate),
                end_ms=int(b.end * 1000 / rate),
                text=part.text,
            ))
        if on_progress is not None and len(bounds) > 1:
            on_progress(i, len(bounds))

    return Transcript(
        text=" ".join(texts),
        language=language,
        duration_ms=int((time.perf_counter() - start) * 1000),
        segments=tuple(segments),
        backend=backend,
    )
