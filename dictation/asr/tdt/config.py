from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass
class TDTConfig:
    intra_op_threads: int = 4
    providers: Tuple[str, ...] = ("CPUExecutionProvider",)
    log_first_step: bool = True       # log decoder/joint io shapes on the first call
