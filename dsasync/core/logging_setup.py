from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

# Request-level chatter from the HTTP stack and workbook parsing.
QUIET_LOGGERS = ("urllib3", "openpyxl", "multipart")
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _file_handler(logfile: str, max_bytes: int, backup_count: int) -> logging.Handler:
    if max_bytes > 0:
        return RotatingFileHandler(logfile, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    return logging.FileHandler(logfile, encoding="utf-8")


def setup_logging(level: str, logfile: str, max_bytes: int = 0, backup_count: int = 0) -> logging.Logger:
    """Send every sync, dsa and scheduler record to ``logfile`` and the console.

    Safe to call again on reload: previous root handlers are replaced.
    """
    Path(logfile).parent.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, (level or "").upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    for handler in (_file_handler(logfile, max_bytes, backup_count), logging.StreamHandler()):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # uvicorn installs its own handlers; funnel its records into the service log.
    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.setLevel(log_level)
        server_logger.propagate = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    root.info(
        "logging_initialized level=%s file=%s rotate_bytes=%s",
        logging.getLevelName(log_level),
        logfile,
        max_bytes,
    )
    return root
