"""Retrying HTTP fetch helper (Python 3.12).

Wraps an aiohttp session with a per-call timeout and an exponential backoff
retry loop. Callers decode the returned response themselves.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable
import asyncio
import logging
import re

import aiohttp

from .constants import HTTP_RETRY_BASE_DELAY_MS
from .exceptions import HttpStatusError, TransportError


SleepFn = Callable[[float], Awaitable[Any]]

ALLOWED_METHODS: frozenset[str] = frozenset({"GET", "POST"})

_API_KEY_RE = re.compile(r"(api_key=)[^&]+")


def redact_url(url: str) -> str:
    """Mask the api_key query value so URLs are safe to log."""
    return _API_KEY_RE.sub(r"\1***", url)


def retry_delay_ms(attempt: int) -> int:
    """Delay before retrying after failed attempt number `attempt` (from 1)."""
    return HTTP_RETRY_BASE_DELAY_MS * 2 ** (attempt - 1)


class HttpFetcher:
    """Issue GET/POST requests with timeout and bounded retries.

    `max_retries` is the total number of attempts including the first one.
    Transport errors, timeouts and non-2xx responses are retried; once the
    budget is spent a `TransportError` or `HttpStatusError` is raised.
    """

    def __init__(
        self, session: aiohttp.ClientSession, *, sleep: SleepFn = asyncio.sleep
    ) -> None:
        self.session = session
        self._sleep = sleep

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        timeout_ms: int | None = None,
        max_retries: int = 1,
        body: Any = None,
    ) -> aiohttp.ClientResponse:
        method = (method or "").upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method!r}")
        if not url:
            raise ValueError("URL must not be empty")

        attempts = max(1, int(max_retries))
        kwargs: dict[str, Any] = {}
        if timeout_ms and timeout_ms > 0:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        if method == "POST" and body is not None:
            kwargs["data"] = body
        safe_url = redact_url(url)

        for attempt in range(1, attempts + 1):
            last_attempt = attempt == attempts
            try:
                response = await self.session.request(method, url, **kwargs)
                if 200 <= response.status < 300:
                    await response.read()
                    return response
                response.release()
            except asyncio.TimeoutError as exc:
                if last_attempt:
                    raise TransportError(
                        f"{method} timed out",
                        url=safe_url,
                        attempts=attempt,
                        timed_out=True,
                    ) from exc
                logging.debug(
                    "%s %s timed out (attempt %s/%s)", method, safe_url, attempt, attempts
                )
            except aiohttp.ClientError as exc:
                if last_attempt:
                    raise TransportError(
                        f"{method} failed: {exc}", url=safe_url, attempts=attempt
                    ) from exc
                logging.debug(
                    "%s %s failed (attempt %s/%s): %s",
                    method,
                    safe_url,
                    attempt,
                    attempts,
                    exc,
                )
            else:
                if last_attempt:
                    raise HttpStatusError(
                        f"HTTP {response.status} on {method} {safe_url}: "
                        f"{response.reason or 'Unknown error'}",
                        status=response.status,
                        url=safe_url,
                        attempts=attempt,
                    )
                logging.debug(
                    "%s %s returned HTTP %s (attempt %s/%s)",
                    method,
                    safe_url,
                    response.status,
                    attempt,
                    attempts,
                )

            await self._sleep(retry_delay_ms(attempt) / 1000)

        raise AssertionError("unreachable")  # pragma: no cover
