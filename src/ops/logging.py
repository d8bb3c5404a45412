"""
Logging setup.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Capped at WARNING regardless of log_level.
_QUIET_LOGGERS = ("uvicorn.access", "multipart")


def setup_logging(
    log_path: str,
    log_level: str,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    log_dir = os.path.dirname(log_path)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count),
            logging.StreamHandler(),
        ],
        force=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
