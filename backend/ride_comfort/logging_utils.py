from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any, Iterator

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "ride_comfort"
LOG_FILE_NAME = "ride.log.jsonl"
# Timestamp and level travel with every record; event fields are added per call.
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _level_from_name(name: str) -> int:
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _log_dir_candidates(out_dir: str) -> Iterator[Path]:
    yield Path(out_dir) / "logs"
    yield Path.cwd() / "out" / "logs"
    yield Path(gettempdir()) / "ride-comfort" / "logs"


def _first_writable_dir(out_dir: str) -> Path | None:
    for candidate in _log_dir_candidates(out_dir):
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            marker = candidate / ".write-test"
            marker.touch(exist_ok=True)
            marker.unlink(missing_ok=True)
        except OSError:
            continue
        return candidate
    return None


def build_logger(*, level_name: str, out_dir: str) -> logging.Logger:
    """Configure the package logger once: JSON to stderr plus a best-effort file."""
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_ride_configured", False):
        return logger

    logger.setLevel(_level_from_name(level_name))
    logger.propagate = False
    formatter = jsonlogger.JsonFormatter(LOG_FORMAT)

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    log_dir = _first_writable_dir(out_dir)
    if log_dir is not None:
        try:
            file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger._ride_configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured record; `event` is both the message and a field."""
    global LOGGER
    if LOGGER is None:
        LOGGER = build_logger(level_name=settings.log_level, out_dir=settings.out_dir)
    if not LOGGER.isEnabledFor(level):
        return
    LOGGER.log(level, event, extra={"event": event, **fields})
