from __future__ import annotations

import logging
import os
import threading
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Deque, Optional

from fastapi import Depends, FastAPI
from pydantic import BaseModel

from dictation.asr.registry import LocalModelRegistry
from dictation.errors import DictationError
from dictation.session import Event, RecordingSession, SessionSettings
from dictation.session.config import InjectionMode

from services.common import http_error

logger = logging.getLogger(__name__)

_SETTINGS = SessionSettings(
    active_model_id=os.environ.get("DICTATION_MODEL") or None,
    injection_mode="off",
)
_RECENT_EVENTS: Deque[dict] = deque(maxlen=200)
_SESSION: Optional[RecordingSession] = None
_SESSION_LOCK = threading.Lock()


class LoggingInjector:
    """Over HTTP the caller receives the text; injection just logs it."""
    def inject(self, text: str, mode: InjectionMode) -> None:
        logger.info("[%s] %s", mode, text)


class SettingsRequest(BaseModel):
    active_model_id: str | None = None
    language: str | None = None
    injection_mode: InjectionMode | None = None
    model_idle_timeout_s: float | None = None
    n_mels: int | None = None


def _remember(event: Event) -> None:
    _RECENT_EVENTS.append({"event": event.name, **event.payload})


def get_session() -> RecordingSession:
    global _SESSION
    with _SESSION_LOCK:
        if _SESSION is None:
            registry = LocalModelRegistry(Path(os.environ.get("DICTATION_MODELS_DIR", "models")))
            _SESSION = RecordingSession(registry, lambda: _SETTINGS, injector=LoggingInjector())
            _SESSION.events.subscribe(_remember)
        return _SESSION


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _SESSION is not None:
        _SESSION.shutdown()


app = FastAPI(title="dictation Session Service", version="1.0.0", lifespan=lifespan)


@app.get("/health")
def health() -> dict:
    return {"ok": True, "service": "session"}


@app.get("/v1/session/status")
def status(session: RecordingSession = Depends(get_session)) -> dict:
    engine = session.engine
    return {
        "status": session.status.value,
        "model": engine.descriptor.model_id if engine is not None and engine.descriptor else None,
    }


@app.get("/v1/session/settings")
def read_settings() -> dict:
    return asdict(_SETTINGS)


@app.put("/v1/session/settings")
def update_settings(req: SettingsRequest) -> dict:
    # applied at the next start()
    for key, value in req.model_dump(exclude_unset=True).items():
        setattr(_SETTINGS, key, value)
    return asdict(_SETTINGS)


@app.get("/v1/session/events")
def recent_events(limit: int = 50) -> dict:
    return {"events": list(_RECENT_EVENTS)[-max(0, limit):]}


@app.post("/v1/session/start")
def start(session: RecordingSession = Depends(get_session)) -> dict:
    try:
        session.start()
    except DictationError as exc:
        raise http_error(exc) from exc
    return {"status": session.status.value}


@app.post("/v1/session/stop")
def stop(session: RecordingSession = Depends(get_session)) -> dict:
    try:
        transcript = session.stop().result()
    except DictationError as exc:
        raise http_error(exc) from exc

    if transcript is None:
        return {"text": "", "discarded": True, "status": session.status.value}
    return {
        "text": transcript.text,
        "lang": transcript.language,
        "backend": transcript.backend,
        "duration_ms": transcript.duration_ms,
        "segments": [asdict(s) for s in transcript.segments],
        "discarded": False,
        "status": session.status.value,
    }
