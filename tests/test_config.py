# tests/test_config.py

import json
import logging

import pytest

from solaredgecloud2mqtt.__main__ import apply_config, parse_args, parse_config
from solaredgecloud2mqtt.core.config_schema import (
    collect_api_keys,
    normalize_devices,
    validate_config,
)
from solaredgecloud2mqtt.core.exceptions import ConfigError, ValidationError
from solaredgecloud2mqtt.core.logging_config import JsonFormatter, resolve_level


def _args(*extra, config="/nonexistent/solaredgecloud2mqtt.conf"):
    return parse_args(["-c", config, *extra])


def test_defaults():
    args = _args()
    assert args.mqtt_topic == "solaredge"
    assert args.poll_interval == 600
    assert args.eve_history is True
    assert args.health_check_interval == 0
    assert args.devices == {}


def test_missing_api_key_is_rejected():
    with pytest.raises(ConfigError):
        parse_config(_args())


def test_api_keys_are_stripped_and_deduplicated():
    args = _args("-k", " KEY1 ", "-k", "KEY2", "-k", "KEY1")
    parse_config(args)
    assert args.api_key == ["KEY1", "KEY2"]


def test_collect_api_keys_accepts_single_string():
    class Ns:
        api_key = "ABC"

    assert collect_api_keys(Ns()) == ["ABC"]


@pytest.mark.parametrize(
    "extra",
    [
        ("--mqtt_port", "0"),
        ("--poll_interval", "0"),
        ("--health_check_interval", "-1"),
        ("--api_base_url", "ftp://example.com"),
    ],
)
def test_invalid_values_are_rejected(extra):
    with pytest.raises(ValidationError):
        parse_config(_args("-k", "KEY", *extra))


def test_invalid_tls_version_is_cleared(caplog):
    args = _args("-k", "KEY", "--mqtt_tls_version", "SSLv3")
    with caplog.at_level(logging.WARNING):
        parse_config(args)
    assert args.mqtt_tls_version is None
    assert "SSLv3" in caplog.text


def test_config_file_overlays_and_merges_keys(tmp_path):
    path = tmp_path / "bridge.conf"
    path.write_text(
        json.dumps(
            {
                "api_keys": ["FILE1", "FILE2"],
                "mqtt_host": "broker.local",
                "mqtt_port": "8883",
                "eve_history": "false",
                "poll_interval": 300,
                "devices": {"7e12abcd-34": {"eveHistory": True}},
            }
        )
    )
    args = parse_config(_args("-k", "CLI", config=str(path)))

    assert args.api_key == ["CLI", "FILE1", "FILE2"]
    assert args.mqtt_host == "broker.local"
    assert args.mqtt_port == 8883
    assert args.eve_history is False
    assert args.poll_interval == 300
    assert args.devices == {"7E12ABCD-34": {"eve_history": True}}


def test_config_file_must_hold_an_object(tmp_path):
    path = tmp_path / "bridge.conf"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        parse_config(_args("-k", "KEY", config=str(path)))


def test_apply_config_accepts_single_key_string():
    args = apply_config(_args(), {"api_key": "ONLY"})
    assert args.api_key == ["ONLY"]


def test_normalize_devices_ignores_unknown_options(caplog):
    with caplog.at_level(logging.WARNING):
        devices = normalize_devices({"aa-1": {"eve_history": "true", "colour": "red"}})
    assert devices == {"AA-1": {"eve_history": True}}
    assert "colour" in caplog.text


def test_normalize_devices_rejects_non_objects():
    with pytest.raises(ValidationError):
        normalize_devices(["AA-1"])
    with pytest.raises(ValidationError):
        normalize_devices({"AA-1": True})


def test_verbose_forces_debug():
    assert resolve_level("ERROR", verbose=True) == logging.DEBUG
    assert resolve_level("warning") == logging.WARNING
    assert resolve_level(None) == logging.INFO


def test_json_formatter_emits_one_object():
    record = logging.LogRecord("bridge", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello world"
    assert payload["level"] == "INFO"
