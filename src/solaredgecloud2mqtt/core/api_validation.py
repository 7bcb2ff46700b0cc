"""Lightweight API response validation helpers (Python 3.12).

These helpers add safe accessors and structural checks for SolarEdge
Monitoring API payloads. They are log-only so callers can decide what to do
when data is missing or malformed.
"""

from __future__ import annotations

from typing import Any
import logging


def as_dict(val: Any, *, ctx: str = "") -> dict[str, Any] | None:
    if isinstance(val, dict):
        return val  # type: ignore[return-value]
    logging.debug(
        "Expected dict for %s but got %s", ctx or "<root>", type(val).__name__
    )
    return None


def as_list(val: Any, *, ctx: str = "") -> list[Any] | None:
    if isinstance(val, list):
        return val
    logging.debug(
        "Expected list for %s but got %s", ctx or "<root>", type(val).__name__
    )
    return None


def get_nested(
    d: dict[str, Any] | None, path: list[str], *, ctx: str = ""
) -> Any | None:
    cur: Any = d
    for p in path:
        if not isinstance(cur, dict) or p not in cur:
            logging.debug("Missing path %s at %s", "/".join(path), ctx or "<root>")
            return None
        cur = cur[p]
    return cur


def as_number(val: Any, default: float = 0.0) -> float:
    """Coerce a numeric API value, falling back to `default`."""
    if isinstance(val, bool):
        return default
    try:
        return float(val)
    except (TypeError, ValueError):
        return default
