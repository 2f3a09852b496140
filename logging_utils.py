"""Logging helpers."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(
    log_dir: str = "logs",
    level: int = logging.INFO,
    console: bool = False,
) -> str:
    """Attach a rotating file handler (and optionally stderr) to the root logger."""
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "pronunciation_coach.log")

    root = logging.getLogger()
    root.setLevel(level)
    fmt = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(fmt)
        root.addHandler(handler)

    if console and not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        root.addHandler(stream)

    return log_path
