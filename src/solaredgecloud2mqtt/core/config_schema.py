"""Config schema and validation for solaredgecloud2mqtt (Py 3.12)."""

from __future__ import annotations

from typing import Any
import logging

from .exceptions import ConfigError, ValidationError


ALLOWED_TLS: set[str] = {"TLSv1", "TLSv1.1", "TLSv1.2"}
ALLOWED_VERIFY: set[str] = {"CERT_NONE", "CERT_OPTIONAL", "CERT_REQUIRED"}

DEVICE_OPTION_ALIASES: dict[str, str] = {
    "eveHistory": "eve_history",
    "eve_history": "eve_history",
}


def _in_range(name: str, val: int, lo: int, hi: int) -> None:
    if not (lo <= val <= hi):
        raise ValidationError(f"{name} must be between {lo} and {hi}, got {val}")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def collect_api_keys(ns: Any) -> list[str]:
    """Return the configured API keys, stripped and de-duplicated in order."""
    raw = getattr(ns, "api_key", None) or []
    if isinstance(raw, str):
        raw = [raw]
    keys: list[str] = []
    for key in raw:
        key = str(key).strip() if key is not None else ""
        if key and key not in keys:
            keys.append(key)
    return keys


def normalize_devices(devices: Any) -> dict[str, dict[str, Any]]:
    """Normalize per-serial overrides to `{SERIAL: {"eve_history": bool}}`."""
    if devices is None:
        return {}
    if not isinstance(devices, dict):
        raise ValidationError(f"devices must be an object, got {type(devices).__name__}")
    normalized: dict[str, dict[str, Any]] = {}
    for serial, options in devices.items():
        if not isinstance(options, dict):
            raise ValidationError(f"devices.{serial} must be an object")
        entry: dict[str, Any] = {}
        for key, value in options.items():
            name = DEVICE_OPTION_ALIASES.get(key)
            if name is None:
                logging.warning("Ignoring unknown option '%s' for device %s", key, serial)
                continue
            entry[name] = _as_bool(value)
        normalized[str(serial).strip().upper()] = entry
    return normalized


def validate_config(ns: Any) -> None:
    """Validate critical configuration constraints.

    Raises ConfigError/ValidationError on invalid values.
    """
    keys = collect_api_keys(ns)
    if not keys:
        raise ConfigError("At least one SolarEdge API key is required (api_key)")
    setattr(ns, "api_key", keys)

    port = getattr(ns, "mqtt_port", None)
    if port is None:
        raise ConfigError("Missing required port: mqtt_port")
    _in_range("mqtt_port", int(port), 1, 65535)

    for name in ("poll_interval", "mqtt_keepalive"):
        val = getattr(ns, name, None)
        if val is None:
            raise ConfigError(f"Missing required interval: {name}")
        if int(val) <= 0:
            raise ValidationError(f"{name} must be > 0, got {val}")

    if int(getattr(ns, "health_check_interval", 0) or 0) < 0:
        raise ValidationError("health_check_interval must be >= 0")

    base_url = getattr(ns, "api_base_url", None)
    if base_url and not str(base_url).startswith(("http://", "https://")):
        raise ValidationError(f"api_base_url must be an http(s) URL, got {base_url}")

    setattr(ns, "devices", normalize_devices(getattr(ns, "devices", None)))

    tls_version = getattr(ns, "mqtt_tls_version", None)
    if tls_version and tls_version not in ALLOWED_TLS:
        logging.warning(
            "Invalid mqtt_tls_version '%s', clearing to use library default",
            tls_version,
        )
        setattr(ns, "mqtt_tls_version", None)

    verify = getattr(ns, "mqtt_verify_mode", None)
    if verify and verify not in ALLOWED_VERIFY:
        logging.warning(
            "Invalid mqtt_verify_mode '%s', clearing to use library default", verify
        )
        setattr(ns, "mqtt_verify_mode", None)
