"""MQTT publisher (Python 3.12).

Encapsulates the paho-mqtt client lifecycle, TLS setup and publishing of
bridge and device topics.
"""

from __future__ import annotations

from typing import Any, Mapping
import time
import logging
import ssl
from enum import StrEnum

import paho.mqtt.client as mqtt

from .exceptions import MQTTError


PayloadValue = str | int | float | bool | None

CONNECTION_TOPIC = "info/connection"


class TLSVersion(StrEnum):
    TLSv1 = "TLSv1"
    TLSv1_1 = "TLSv1.1"
    TLSv1_2 = "TLSv1.2"

    def to_protocol(self) -> int:
        if self is TLSVersion.TLSv1:
            return ssl.PROTOCOL_TLSv1
        if self is TLSVersion.TLSv1_1:
            return ssl.PROTOCOL_TLSv1_1
        return ssl.PROTOCOL_TLSv1_2


class VerifyMode(StrEnum):
    CERT_NONE = "CERT_NONE"
    CERT_OPTIONAL = "CERT_OPTIONAL"
    CERT_REQUIRED = "CERT_REQUIRED"

    def to_cert_reqs(self) -> int:
        if self is VerifyMode.CERT_NONE:
            return ssl.CERT_NONE
        if self is VerifyMode.CERT_OPTIONAL:
            return ssl.CERT_OPTIONAL
        return ssl.CERT_REQUIRED


def format_payload(value: PayloadValue) -> str:
    """Render a value the way subscribers expect it on the wire."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class MQTTPublisher:
    """Publish values to an MQTT broker with optional TLS and auth."""

    def __init__(
        self,
        host: str,
        port: int,
        keepalive: int,
        clientid: str,
        base_topic: str,
        *,
        enable_timestamp: bool = False,
        tls_enabled: bool = False,
        tls_version: TLSVersion | str | None = None,
        verify_mode_name: VerifyMode | str | None = None,
        ca_path: str | None = None,
        tls_no_verify: bool = False,
        username: str | None = None,
        password: str | None = None,
        verbose: bool = False,
    ) -> None:
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.clientid = clientid
        self.base_topic = base_topic.rstrip("/")
        self.enable_timestamp = enable_timestamp
        self.tls_enabled = tls_enabled
        self.tls_version = TLSVersion(tls_version) if tls_version else None
        self.verify_mode = VerifyMode(verify_mode_name) if verify_mode_name else None
        self.ca_path = ca_path
        self.tls_no_verify = tls_no_verify
        self.username = username
        self.password = password
        self.verbose = verbose

        self.client: mqtt.Client | None = None
        self._connected: bool = False

    def topic(self, topic: str) -> str:
        return f"{self.base_topic}/{topic}"

    def initialize(self) -> mqtt.Client:
        """Create and configure the underlying MQTT client.

        Does not open a network connection; call `connect()` followed by
        `start_loop()` for that.
        """
        logging.debug("Starting MQTT")
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, self.clientid)

        if self.tls_enabled:
            self.client.tls_set(
                ca_certs=self.ca_path or None,
                cert_reqs=self.verify_mode.to_cert_reqs() if self.verify_mode else None,
                tls_version=self.tls_version.to_protocol() if self.tls_version else None,
            )
            self.client.tls_insecure_set(self.tls_no_verify)

        if self.verbose:
            self.client.enable_logger()

        if self.username is not None and self.password is not None:
            self.client.username_pw_set(self.username, self.password)

        # Broker announces us offline if the bridge dies without disconnecting
        self.client.will_set(
            self.topic(CONNECTION_TOPIC), format_payload(False), retain=True
        )
        self.client.reconnect_delay_set(min_delay=1, max_delay=60)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        return self.client

    def connect(self) -> None:
        """Start an asynchronous connection; the network loop handles reconnects."""
        if self.client is None:
            raise MQTTError("MQTT client not initialized")
        try:
            self.client.connect_async(self.host, self.port, self.keepalive)
        except (OSError, ValueError) as exc:
            raise MQTTError(f"Cannot connect to {self.host}:{self.port}: {exc}") from exc

    def start_loop(self) -> None:
        """Start the MQTT network loop in a background thread."""
        if self.client is not None:
            self.client.loop_start()

    def stop_loop(self) -> None:
        if self.client is not None:
            self.client.loop_stop()

    def disconnect(self) -> None:
        """Disconnect from the broker after announcing the bridge offline."""
        if self.client is not None:
            self.publish(CONNECTION_TOPIC, False, retain=True)
            self.client.disconnect()

    def publish(self, topic: str, value: PayloadValue, *, retain: bool = False) -> None:
        """Publish a value under `base_topic` and optionally a timestamp.

        Failures are logged, not raised; `is_connected()` reports state.
        """
        if self.client is None:
            return
        try:
            full_topic = self.topic(topic)
            logging.debug("Publishing to MQTT - Topic: %s, Value: %s", full_topic, value)
            self.client.publish(full_topic, format_payload(value), retain=retain)
            if self.enable_timestamp:
                self.client.publish(f"{full_topic}/timestamp", time.time(), retain=True)
        except (OSError, ValueError):
            logging.exception("MQTT publish error")

    def publish_many(
        self, prefix: str, values: Mapping[str, PayloadValue], *, retain: bool = False
    ) -> None:
        for key, value in values.items():
            self.publish(f"{prefix}/{key}", value, retain=retain)

    def is_connected(self) -> bool:
        """Return True if the client is currently connected to the broker."""
        return bool(self._connected and self.client and self.client.is_connected())

    # Internal callbacks
    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any | None,
    ) -> None:
        logging.info("Connected to MQTT broker with result code %s", reason_code)
        self._connected = True
        self.publish(CONNECTION_TOPIC, True, retain=True)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any | None = None,
    ) -> None:
        logging.info("Disconnected from MQTT broker with result code %s", reason_code)
        self._connected = False
