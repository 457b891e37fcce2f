# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILE_NAME = "inventory_recon.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
WIRED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")

def setup_logging(settings) -> Path:
    """Rotating file log at <INVENTORY_DATA_ROOT>/logs/inventory_recon.log; safe to call twice."""
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    level = logging.getLevelName(str(settings.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    handler = next((h for h in root.handlers if _is_recon_handler(h)), None)
    if handler is None:
        handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    handler.setLevel(level)

    # uvicorn loggers don't always propagate
    for name in WIRED_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if not any(_is_recon_handler(h) for h in lg.handlers):
            lg.addHandler(handler)

    return log_path


def _is_recon_handler(handler: logging.Handler) -> bool:
    return (
        isinstance(handler, logging.handlers.RotatingFileHandler)
        and getattr(handler, "baseFilename", "").endswith(LOG_FILE_NAME)
    )
