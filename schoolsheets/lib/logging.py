"""Logging setup for the API process.

Plain text by default; ``--json-logs`` or ``LOG_JSON=true`` switches to
one JSON object per line for log shippers. uvicorn runs with
``log_config=None`` so its loggers flow through the same root handlers.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

__all__ = [
    "SERVICE_NAME",
    "JSONFormatter",
    "setup_logging",
]

SERVICE_NAME = "school-sheets-api"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "google.auth")


class JSONFormatter(logging.Formatter):
    """Formatter that renders each record as one JSON object.

    Warnings and errors also carry their source location. Attributes
    passed through ``extra=`` land under ``"extra"``.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "service": "school-sheets-api", "logger": "schoolsheets.lib.snapshot",
         "message": "Loaded snapshot from data/snapshot.json"}
    """

    def __init__(
        self,
        service: str = SERVICE_NAME,
        exclude_fields: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__()
        self.service = service
        self.exclude_fields = frozenset(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            payload["source"] = f"{record.module}:{record.lineno}"

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in self.exclude_fields
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, default=str)


def _resolve_level(verbose: bool, level: Optional[str]) -> int:
    if level:
        resolved = logging.getLevelName(level.upper())
        if isinstance(resolved, int):
            return resolved
    return logging.DEBUG if verbose else logging.INFO


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> None:
    """Configure the root logger for the service.

    Args:
        verbose: Debug level and uvicorn access lines
        json_format: Emit JSON lines instead of text
        log_file: Also append to this file
        level: Explicit level name such as ``"WARNING"`` (wins over verbose)
    """
    log_level = _resolve_level(verbose, level)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO if verbose else logging.WARNING)
