"""
Logging setup shared by the services and the console driver.

Library modules only call `logging.getLogger(__name__)`; entry points call
`setup_logging()` once.
"""
from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    max_size_mb: int = 10,
    backup_count: int = 3,
) -> logging.Logger:
    global _configured

    root = logging.getLogger()
    if _configured:
        root.setLevel(level)
        return root

    formatter = logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(level)
    # onnxruntime is chatty at INFO
    logging.getLogger("onnxruntime").setLevel(logging.WARNING)

    _configured = True
    return root
