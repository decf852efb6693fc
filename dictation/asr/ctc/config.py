from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass
class CTCConfig:
    intra_op_threads: int = 4
    providers: Tuple[str, ...] = ("CPUExecutionProvider",)
