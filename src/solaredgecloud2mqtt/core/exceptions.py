"""Custom exceptions for solaredgecloud2mqtt (Python 3.12).

Defines a small hierarchy to represent common error categories across
HTTP transport, API authorization, payload decoding, configuration and MQTT.
"""

from __future__ import annotations

from dataclasses import dataclass


class SolarEdgeError(Exception):
    """Base exception for solaredgecloud2mqtt."""


@dataclass(slots=True)
class TransportError(SolarEdgeError):
    """Network failure or timeout after the retry budget was spent."""

    message: str
    url: str | None = None
    attempts: int = 1
    timed_out: bool = False

    def __str__(self) -> str:
        base = f"{self.message} after {self.attempts} attempt(s)"
        if self.timed_out:
            base += " (timeout)"
        if self.url:
            base += f" url={self.url}"
        return base


@dataclass(slots=True)
class HttpStatusError(SolarEdgeError):
    """HTTP request returned a non-success status after all retries."""

    message: str
    status: int
    url: str | None = None
    attempts: int = 1

    def __str__(self) -> str:
        base = f"{self.message} (status={self.status}) after {self.attempts} attempt(s)"
        if self.url:
            base += f" url={self.url}"
        return base


class AuthorizationError(SolarEdgeError):
    """Credential validation against the Monitoring API failed."""


class DecodeError(SolarEdgeError):
    """Response could not be parsed/decoded as expected (e.g., JSON)."""


class ConfigError(SolarEdgeError):
    """Configuration invalid or missing required values."""


class ValidationError(SolarEdgeError):
    """Input or API response validation failed."""


class MQTTError(SolarEdgeError):
    """MQTT connection or publish error."""
