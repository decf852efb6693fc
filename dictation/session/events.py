from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

RECORDING_STATUS = "recording-status"
AUDIO_LEVEL = "audio-level"
TRANSCRIPTION_PROGRESS = "transcription-progress"
TRANSCRIPTION_COMPLETE = "transcription-complete"


@dataclass(frozen=True)
class Event:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], None]

_STOP = object()


class EventBus:
    """
    Fire-and-forget notifications. `publish` only enqueues; listeners run on
    a single dispatcher thread, so slow listeners never stall the producer.
    """
    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._queue: "queue.SimpleQueue[object]" = queue.SimpleQueue()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, name: str, **payload: Any) -> None:
        if self._closed:
            logger.debug("Dropping %s after close", name)
            return
        self._ensure_thread()
        self._queue.put(Event(name, payload))

    def _ensure_thread(self) -> None:
        if self._thread is not None:
            return
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._dispatch, name="event-dispatch", daemon=True)
                self._thread.start()

    def _dispatch(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, threading.Event):
                item.set()
                continue
            with self._lock:
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(item)
                except Exception:
                    logger.exception("Event listener failed for %s", item.name)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until everything published so far was delivered."""
        if self._thread is None:
            return True
        marker = threading.Event()
        self._queue.put(marker)
        return marker.wait(timeout)

    def close(self, timeout: float = 5.0) -> None:
        self._closed = True
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join(timeout)
