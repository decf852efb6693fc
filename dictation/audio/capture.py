from __future__ import annotations

import logging
import queue
import threading
from typing import Iterator, Optional

import numpy as np
import sounddevice as sd

from dictation.audio.config import CaptureConfig
from dictation.audio.frame import AudioFrame
from dictation.errors import DeviceError, EndOfStream

logger = logging.getLogger(__name__)


class AudioCapture:
    """
    Capture microphone audio as float32 mono frames at the device's native rate.

    The PortAudio callback only enqueues copies; `read()` drains the queue on
    the consumer side and never waits longer than `read_timeout_s`.
    """
    def __init__(self, cfg: CaptureConfig = CaptureConfig()):
        self.cfg = cfg
        self.sample_rate: Optional[int] = None
        self._queue: "queue.Queue[np.ndarray]" = queue.Queue()
        self._stream: Optional[sd.InputStream] = None
        self._closing = False
        self._device_lost = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> "AudioCapture":
        if self._stream is not None:
            raise DeviceError("capture stream is already open")

        try:
            info = sd.query_devices(self.cfg.device, kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceError(f"No input device available: {exc}") from exc

        rate = int(self.cfg.sample_rate or info["default_samplerate"])
        blocksize = max(1, int(rate * self.cfg.block_ms / 1000))

        self._closing = False
        self._device_lost.clear()
        self._drain()

        try:
            stream = sd.InputStream(
                samplerate=rate,
                channels=1,
                dtype="float32",
                blocksize=blocksize,
                device=self.cfg.device,
                latency=self.cfg.latency,
                callback=self._on_audio,
                finished_callback=self._on_finished,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise DeviceError(f"Failed to open input stream: {exc}") from exc

        self._stream = stream
        self.sample_rate = rate
        logger.info("Audio capture started on '%s' (%dHz)", info.get("name", "?"), rate)
        return self

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning("Input stream status: %s", status)
        self._queue.put_nowait(np.array(indata[:, 0], dtype=np.float32, copy=True))

    def _on_finished(self) -> None:
        if not self._closing:
            logger.error("Input stream stopped unexpectedly (device disconnected?)")
            self._device_lost.set()

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def read(self, timeout: Optional[float] = None) -> AudioFrame:
        """
        Next captured block. An empty frame means nothing arrived within the
        timeout; EndOfStream once closed and drained; DeviceError if the
        device stopped underneath us.
        """
        if self.sample_rate is None:
            raise EndOfStream("capture was never opened")

        if self._stream is None:
            try:
                return AudioFrame(self._queue.get_nowait(), self.sample_rate)
            except queue.Empty:
                raise EndOfStream("capture stream closed") from None

        wait = self.cfg.read_timeout_s if timeout is None else timeout
        try:
            data = self._queue.get(timeout=wait)
        except queue.Empty:
            if self._device_lost.is_set() or not self._stream.active:
                self._device_lost.set()
                raise DeviceError("Input device stopped delivering audio") from None
            return AudioFrame(np.zeros(0, dtype=np.float32), self.sample_rate)
        return AudioFrame(data, self.sample_rate)

    def frames(self) -> Iterator[AudioFrame]:
        while True:
            try:
                frame = self.read()
            except EndOfStream:
                return
            if len(frame):
                yield frame

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        self._closing = True
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as exc:
            # device already gone; the handle is released either way
            logger.warning("Error while closing input stream: %s", exc)
        logger.info("Audio capture stopped (%sHz)", self.sample_rate)

    def __enter__(self) -> "AudioCapture":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()
