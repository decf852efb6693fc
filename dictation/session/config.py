from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

InjectionMode = Literal["keystroke", "clipboard", "off"]


@dataclass
class SessionSettings:
    active_model_id: Optional[str] = None
    language: str = "auto"                    # hint only, "auto" = none
    injection_mode: InjectionMode = "clipboard"
    model_idle_timeout_s: Optional[float] = 300.0  # None/0 = keep loaded
    n_mels: Optional[int] = None              # None = follow the model
    level_interval_s: float = 0.05

    @property
    def language_hint(self) -> Optional[str]:
        lang = (self.language or "").strip().lower()
        return None if lang in ("", "auto") else lang
