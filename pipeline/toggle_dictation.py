# pipeline/toggle_dictation.py
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from dictation.asr.registry import LocalModelRegistry
from dictation.errors import DictationError
from dictation.logging_setup import setup_logging
from dictation.session import Event, RecordingSession, SessionSettings, SessionStatus
from dictation.session.config import InjectionMode

logger = logging.getLogger(__name__)


class PrintInjector:
    """Console stand-in for keystroke/clipboard injection."""
    def inject(self, text: str, mode: InjectionMode) -> None:
        print(f"\n>>> {text}\n")


def print_event(event: Event) -> None:
    if event.name == "audio-level":
        bars = int(event.payload.get("level", 0.0) * 40)
        print(f"\r[{'#' * bars:<40}]", end="", flush=True)
    elif event.name == "recording-status":
        err = event.payload.get("error")
        print(f"\n[{event.payload['status']}]" + (f" {err}" if err else ""))
    elif event.name == "transcription-progress":
        print(f"[chunk {event.payload['chunk']}/{event.payload['total']}]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Press Enter to start/stop dictation")
    parser.add_argument("model_id")
    parser.add_argument("--models-dir", default="models")
    parser.add_argument("--language", default="auto")
    parser.add_argument("--idle-timeout", type=float, default=300.0)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    setup_logging(args.log_level.upper())

    settings = SessionSettings(
        active_model_id=args.model_id,
        language=args.language,
        injection_mode="clipboard",
        model_idle_timeout_s=args.idle_timeout,
    )
    session = RecordingSession(
        LocalModelRegistry(Path(args.models_dir)),
        settings,
        injector=PrintInjector(),
    )
    session.events.subscribe(print_event)

    print("Enter = start/stop recording, Ctrl+C = quit")
    try:
        while True:
            input()
            try:
                if session.status == SessionStatus.RECORDING:
                    transcript = session.stop().result()
                    if transcript is None:
                        print("(nothing recorded)")
                else:
                    session.start()
            except DictationError as exc:
                print(f"\n[{type(exc).__name__}] {exc}")
    except (KeyboardInterrupt, EOFError):
        print("\nbye")
    finally:
        session.shutdown()


if __name__ == "__main__":
    main()
