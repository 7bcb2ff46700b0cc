"""Logging configuration helpers for solaredgecloud2mqtt (Python 3.12).

Configures root logging with either text or JSON output, honoring a desired
level and a verbose override.
"""

from __future__ import annotations

import json
import logging
from typing import Any


LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


class JsonFormatter(logging.Formatter):
    """JSON log formatter, one object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def resolve_level(level_name: str | None, verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    return LEVELS.get((level_name or "INFO").upper(), logging.INFO)


def configure_logging(
    level_name: str | None = None, fmt: str = "text", verbose: bool = False
) -> None:
    """Configure root logging.

    - `verbose` forces DEBUG.
    - `fmt` is 'text' or 'json'.
    - A missing `level_name` means INFO.
    """
    handler = logging.StreamHandler()
    if fmt == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s:%(name)s:%(message)s"
        )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolve_level(level_name, verbose))
    root.addHandler(handler)
