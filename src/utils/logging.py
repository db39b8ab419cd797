"""Logging setup shared by the pipeline, workers, and web triggers."""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_LOG_ROOT = _PROJECT_ROOT / "log"
_LOG_FILE_NAME = "media_blurhash.log"
_STANDARD_KEYS = frozenset(logging.makeLogRecord({}).__dict__.keys()) | {"stack_info", "asctime", "message"}


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Return attributes attached to a record through ``extra=``."""

    return {key: value for key, value in record.__dict__.items() if key not in _STANDARD_KEYS}


class _JsonLineFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(_record_extras(record))
        return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)


class _KeyValueFormatter(logging.Formatter):
    """Console formatter that appends ``extra`` fields as sorted key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return base
        pairs = " ".join(f"{key}={value!r}" for key, value in sorted(extras.items()))
        return f"{base} | {pairs}"


def _resolve_level() -> int:
    raw = os.getenv("MEDIA_BLURHASH_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def _configure_root_logger() -> None:
    """Attach console and rotating-file handlers once per process."""

    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(_resolve_level())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_KeyValueFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(console_handler)

    log_root = Path(os.getenv("MEDIA_BLURHASH_LOG_DIR") or _DEFAULT_LOG_ROOT)
    try:
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_root / _LOG_FILE_NAME,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        # Console logging still works when the log directory is read-only.
        root.warning("file_logging_unavailable", extra={"log_root": str(log_root), "error": str(exc)})
        return

    file_handler.setFormatter(_JsonLineFormatter())
    root.addHandler(file_handler)


class _MergingAdapter(logging.LoggerAdapter):
    """Adapter that lets call-site ``extra`` extend the adapter defaults."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str, extra: Dict[str, Any] | None = None) -> logging.LoggerAdapter:
    """Return a logger adapter that attaches ``extra`` to every record.

    The first call configures the root logger. Messages are short event names
    (``blurhash_saved``) with the details carried in ``extra``.
    """

    _configure_root_logger()
    return _MergingAdapter(logging.getLogger(name), extra or {})


__all__ = ["get_logger"]
