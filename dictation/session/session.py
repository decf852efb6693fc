from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional, Union

import numpy as np

from dictation.asr.base import ModelDescriptor, SpeechEngine, Transcript
from dictation.asr.factory import EngineSlot
from dictation.audio.config import ChunkConfig, MelConfig
from dictation.audio.frame import AudioFrame
from dictation.audio.resample import rms_level
from dictation.errors import (
    DecodeError,
    DeviceError,
    EndOfStream,
    LoadError,
    SessionBusyError,
    SessionStateError,
)
from dictation.session.config import SessionSettings
from dictation.session.events import (
    AUDIO_LEVEL,
    RECORDING_STATUS,
    TRANSCRIPTION_COMPLETE,
    TRANSCRIPTION_PROGRESS,
    EventBus,
)
from dictation.session.ports import AudioSource, ModelRegistry, TextInjector
from dictation.transcribe import transcribe_frame

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    ERROR = "error"


def _default_capture() -> AudioSource:
    from dictation.audio.capture import AudioCapture

    return AudioCapture()


class RecordingSession:
    """
    idle -> (loading) -> recording -> transcribing -> idle; any failure goes
    through error back to idle.

    start()/stop() are meant to be driven by a hotkey. Capture is drained by a
    pump thread, decoding runs on a single worker, events go through the bus.
    """
    def __init__(
        self,
        registry: ModelRegistry,
        settings: Union[SessionSettings, Callable[[], SessionSettings]],
        injector: Optional[TextInjector] = None,
        events: Optional[EventBus] = None,
        capture_factory: Callable[[], AudioSource] = _default_capture,
        engine_slot: Optional[EngineSlot] = None,
        chunk_cfg: ChunkConfig = ChunkConfig(),
    ):
        self.registry = registry
        self.injector = injector
        self.events = events or EventBus()
        self._owns_events = events is None
        self._settings_source = settings
        self._capture_factory = capture_factory
        self._slot = engine_slot or EngineSlot()
        self.chunk_cfg = chunk_cfg

        self._lock = threading.RLock()
        self._status = SessionStatus.IDLE
        self._settings: Optional[SessionSettings] = None
        self._capture: Optional[AudioSource] = None
        self._frames: List[AudioFrame] = []
        self._pump_thread: Optional[threading.Thread] = None
        self._pump_stop = threading.Event()
        self._stopping = False
        self._device_error: Optional[DeviceError] = None
        self._idle_timer: Optional[threading.Timer] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="decode")

    # =========================
    # State
    # =========================

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def engine(self) -> Optional[SpeechEngine]:
        return self._slot.get()

    def _read_settings(self) -> SessionSettings:
        src = self._settings_source
        settings = src() if callable(src) else src
        return replace(settings)

    def _set_status(self, status: SessionStatus, error: Optional[BaseException] = None) -> None:
        self._status = status
        payload = {"status": status.value}
        if error is not None:
            payload["error"] = str(error)
        self.events.publish(RECORDING_STATUS, **payload)

    def _fail(self, exc: BaseException) -> None:
        logger.error("%s: %s", type(exc).__name__, exc)
        self._set_status(SessionStatus.ERROR, exc)
        self._set_status(SessionStatus.IDLE)

    # =========================
    # Engine lifecycle
    # =========================

    def _ensure_engine(self, settings: SessionSettings) -> ModelDescriptor:
        if not settings.active_model_id:
            raise LoadError("No speech model selected")
        descriptor = self.registry.descriptor(settings.active_model_id)
        engine = self._slot.get()
        if engine is None or engine.descriptor != descriptor:
            self._set_status(SessionStatus.LOADING)
            started = time.perf_counter()
            self._slot.activate(descriptor)
            logger.info("Loaded '%s' in %.2fs", descriptor.model_id, time.perf_counter() - started)
        return descriptor

    def _load_or_fail(self, settings: SessionSettings) -> ModelDescriptor:
        """_ensure_engine, but every failure ends in error -> idle and surfaces as LoadError."""
        try:
            return self._ensure_engine(settings)
        except LoadError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            err = LoadError(f"Failed to load model '{settings.active_model_id}': {exc}")
            self._fail(err)
            raise err from exc

    def preload(self) -> None:
        """Load the configured model ahead of the first start()."""
        with self._lock:
            if self._status != SessionStatus.IDLE:
                raise SessionBusyError(f"Cannot load model: session is {self._status.value}")
            self._settings = self._read_settings()
            self._load_or_fail(self._settings)
            if self._status != SessionStatus.IDLE:
                self._set_status(SessionStatus.IDLE)
            self._arm_idle_timer()

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        settings = self._settings or self._read_settings()
        timeout = settings.model_idle_timeout_s
        if not timeout or timeout <= 0 or self._slot.get() is None:
            return
        timer = threading.Timer(timeout, self._on_idle_timeout)
        timer.daemon = True
        timer.start()
        self._idle_timer = timer

    def _cancel_idle_timer(self) -> None:
        timer, self._idle_timer = self._idle_timer, None
        if timer is not None:
            timer.cancel()

    def _on_idle_timeout(self) -> None:
        with self._lock:
            if self._status != SessionStatus.IDLE:
                return
            if self._slot.release():
                logger.info("Unloaded speech model after idle timeout")

    # =========================
    # Recording
    # =========================

    def start(self) -> None:
        with self._lock:
            if self._status != SessionStatus.IDLE:
                raise SessionBusyError(f"Cannot start recording: session is {self._status.value}")
            self._cancel_idle_timer()
            self._device_error = None
            settings = self._read_settings()
            self._settings = settings
            self._load_or_fail(settings)

            capture = self._capture_factory()
            try:
                capture.open()
            except DeviceError as exc:
                self._fail(exc)
                self._arm_idle_timer()
                raise

            self._capture = capture
            self._frames = []
            self._stopping = False
            self._pump_stop.clear()
            self._pump_thread = threading.Thread(
                target=self._pump,
                args=(capture, settings.level_interval_s),
                name="capture-pump",
                daemon=True,
            )
            self._set_status(SessionStatus.RECORDING)
            self._pump_thread.start()
            logger.info("Recording started")

    def _pump(self, capture: AudioSource, level_interval_s: float) -> None:
        last_level = 0.0
        tail = np.zeros(0, dtype=np.float32)
        window = max(1, int((capture.sample_rate or 16000) * 0.1))

        while not self._pump_stop.is_set():
            try:
                frame = capture.read()
            except EndOfStream:
                return
            except DeviceError as exc:
                self._on_device_lost(capture, exc)
                return

            if len(frame):
                self._frames.append(frame)
                tail = np.concatenate([tail, frame.samples])[-window:]

            now = time.monotonic()
            if now - last_level >= level_interval_s:
                last_level = now
                self.events.publish(AUDIO_LEVEL, level=rms_level(tail, window))

    def _on_device_lost(self, capture: AudioSource, exc: DeviceError) -> None:
        with self._lock:
            if self._stopping or self._capture is not capture:
                return
            capture.close()
            self._capture = None
            self._pump_thread = None
            dropped = sum(len(f) for f in self._frames)
            self._frames = []
            self._device_error = exc
            logger.warning("Discarded %d captured samples after device loss", dropped)
            self._fail(exc)
            self._arm_idle_timer()

    def stop(self) -> "Future[Optional[Transcript]]":
        """
        Finish recording and decode in the background. Resolves to None when
        nothing was captured.
        """
        with self._lock:
            if self._status != SessionStatus.RECORDING:
                if self._device_error is not None:
                    exc, self._device_error = self._device_error, None
                    raise exc
                raise SessionStateError(f"Cannot stop: session is {self._status.value}")
            if self._stopping:
                raise SessionStateError("Cannot stop: recording is already stopping")
            self._stopping = True
            capture, pump = self._capture, self._pump_thread
            self._pump_stop.set()

        if pump is not None:
            pump.join()
        capture.close()
        self._frames.extend(capture.frames())

        with self._lock:
            self._capture = None
            self._pump_thread = None
            self._stopping = False
            frames, self._frames = self._frames, []
            settings = self._settings or self._read_settings()
            rate = capture.sample_rate or 16000

            done: "Future[Optional[Transcript]]" = Future()
            total = sum(len(f) for f in frames)
            if total == 0:
                logger.info("Recording stopped with no audio, nothing to transcribe")
                self._set_status(SessionStatus.IDLE)
                self._arm_idle_timer()
                done.set_result(None)
                return done

            audio = AudioFrame.concat(frames, rate)
            logger.info("Recording stopped: %d samples at %dHz (%.2fs)", len(audio), rate, audio.duration_s)
            self._set_status(SessionStatus.TRANSCRIBING)
            return self._executor.submit(self._transcribe, audio, settings)

    # =========================
    # Transcription (decode worker)
    # =========================

    def _transcribe(self, audio: AudioFrame, settings: SessionSettings) -> Transcript:
        engine = self._slot.get()
        try:
            if engine is None or engine.descriptor is None:
                raise DecodeError("No speech model loaded")
            mel_cfg = MelConfig(n_mels=settings.n_mels or engine.descriptor.n_mels)
            transcript = transcribe_frame(
                engine,
                audio,
                mel_cfg,
                self.chunk_cfg,
                on_progress=self._publish_progress,
                language=settings.language_hint,
            )
        except DecodeError as exc:
            self._fail_decode(exc)
            raise
        except Exception as exc:
            err = DecodeError(f"Transcription failed: {exc}")
            self._fail_decode(err)
            raise err from exc

        logger.info("Transcription complete: %r (%dms)", transcript.text, transcript.duration_ms)
        injection_error = self._inject(transcript.text, settings)

        with self._lock:
            if injection_error is not None:
                self._set_status(SessionStatus.ERROR, injection_error)
            self._set_status(SessionStatus.IDLE)
            self._arm_idle_timer()
        self.events.publish(TRANSCRIPTION_COMPLETE, text=transcript.text, duration_ms=transcript.duration_ms)
        return transcript

    def _fail_decode(self, exc: DecodeError) -> None:
        with self._lock:
            self._fail(exc)
            self._arm_idle_timer()

    def _publish_progress(self, chunk: int, total: int) -> None:
        self.events.publish(TRANSCRIPTION_PROGRESS, chunk=chunk, total=total)

    def _inject(self, text: str, settings: SessionSettings) -> Optional[Exception]:
        if not text or self.injector is None or settings.injection_mode == "off":
            return None
        try:
            self.injector.inject(text, settings.injection_mode)
        except Exception as exc:
            logger.exception("Text injection failed (%s)", settings.injection_mode)
            return exc
        return None

    # =========================
    # Shutdown
    # =========================

    def shutdown(self) -> None:
        with self._lock:
            self._cancel_idle_timer()
            self._stopping = True
            self._pump_stop.set()
            capture, self._capture = self._capture, None
            pump, self._pump_thread = self._pump_thread, None
        if pump is not None:
            pump.join()
        if capture is not None:
            capture.close()
        self._executor.shutdown(wait=True)
        self._slot.release()
        with self._lock:
            self._stopping = False
            self._frames = []
            self._status = SessionStatus.IDLE
        if self._owns_events:
            self.events.close()

    def __enter__(self) -> "RecordingSession":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
