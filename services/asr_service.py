from __future__ import annotations

import json
import os
from dataclasses import asdict
from pathlib import Path

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile

from dictation.asr.factory import ENGINE_REGISTRY, EngineSlot
from dictation.asr.registry import LocalModelRegistry
from dictation.audio.config import MelConfig
from dictation.errors import DictationError
from dictation.transcribe import transcribe_frame

from services.common import build_config, http_error, load_wav_upload

app = FastAPI(title="dictation ASR Service", version="1.0.0")

# one loaded model per process, swapped on demand
ENGINE_SLOT = EngineSlot()


def get_registry() -> LocalModelRegistry:
    return LocalModelRegistry(Path(os.environ.get("DICTATION_MODELS_DIR", "models")))


@app.get("/health")
def health() -> dict:
    return {"ok": True, "service": "asr", "model": ENGINE_SLOT.model_id}


@app.get("/v1/asr/models")
def models(registry: LocalModelRegistry = Depends(get_registry)) -> dict:
    return {"models": registry.installed(), "active": ENGINE_SLOT.model_id}


@app.delete("/v1/asr/model")
def unload_model() -> dict:
    return {"unloaded": ENGINE_SLOT.release()}


@app.post("/v1/asr/transcribe")
async def transcribe(
    audio: UploadFile = File(..., description="WAV file"),
    model_id: str = Form(...),
    language: str | None = Form(None),
    config_json: str | None = Form(None),
    registry: LocalModelRegistry = Depends(get_registry),
) -> dict:
    try:
        cfg_dict = json.loads(config_json) if config_json else {}
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"config_json must be valid JSON: {exc}") from exc
    if not isinstance(cfg_dict, dict):
        raise HTTPException(status_code=400, detail="config_json must be a JSON object")

    try:
        descriptor = registry.descriptor(model_id.strip())
    except DictationError as exc:
        raise http_error(exc) from exc

    cfg = build_config(ENGINE_REGISTRY[descriptor.kind].cfg_cls, cfg_dict)
    frame = await load_wav_upload(audio)

    try:
        engine = ENGINE_SLOT.activate(descriptor, cfg)
        res = transcribe_frame(
            engine,
            frame,
            MelConfig(n_mels=descriptor.n_mels),
            language=language,
        )
    except DictationError as exc:
        raise http_error(exc) from exc

    return {
        "text": (res.text or "").strip(),
        "lang": res.language,
        "backend": res.backend,
        "duration_ms": res.duration_ms,
        "segments": [asdict(s) for s in res.segments],
        "sample_rate": frame.sample_rate,
    }
