"""Orchestration: polling context, propagation and health checks (Python 3.12)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol
import asyncio
import logging

from .connection_manager import ConnectionManager
from .constants import DEFAULT_POLL_INTERVAL
from .device_registry import DeviceRegistry, DeviceSink
from .http_fetcher import SleepFn
from .models import Connection, DeviceRecord, SiteSnapshot, TrackedDevice
from .normalizer import NormalizerOptions, normalize
from .site_aggregator import SiteDataAggregator
from .solaredge_client import SolarEdgeClient


class PublishFn(Protocol):
    def __call__(self, topic: str, value: int | float | bool | str) -> None: ...


@dataclass(slots=True)
class PollingContext:
    """State shared by every polling loop of one bridge instance."""

    raw_data: dict[Any, SiteSnapshot] = field(default_factory=dict)
    tracked_devices: dict[str, TrackedDevice] = field(default_factory=dict)
    connections: dict[str, Connection] = field(default_factory=dict)

    def shutdown(self) -> None:
        self.raw_data.clear()
        self.tracked_devices.clear()
        self.connections.clear()


class Orchestrator:
    """Wire the client, aggregator, normalizer and registry together."""

    def __init__(
        self,
        client: SolarEdgeClient,
        sink: DeviceSink,
        api_keys: Iterable[str],
        *,
        options: NormalizerOptions | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        context: PollingContext | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.client = client
        self.sink = sink
        self.options = options or NormalizerOptions()
        self.context = context or PollingContext()
        self.registry = DeviceRegistry(sink, self.context.tracked_devices)
        self.aggregator = SiteDataAggregator(
            client, self.context.raw_data, on_cycle_complete=self.propagate
        )
        self.connection_manager = ConnectionManager(
            client,
            self.context.connections,
            self.aggregator.run_cycle,
            poll_interval=poll_interval,
            sleep=sleep,
        )
        for api_key in api_keys:
            self.connection_manager.add(api_key)
        self.running = False

    def device_records(self) -> dict[str, DeviceRecord]:
        return normalize(self.context.raw_data, self.options)

    def propagate(self, connection: Connection | None = None) -> list[str]:
        """Normalize the whole snapshot cache and reconcile it with the registry."""
        records = self.device_records()
        updated = self.registry.reconcile(records.values())
        logging.debug(
            "Propagated %s device record(s), %s update(s)", len(records), len(updated)
        )
        return updated

    async def start(self) -> None:
        await self.client.initialize()
        self.running = True
        self.connection_manager.start()

    def request_stop(self) -> None:
        self.running = False

    async def shutdown(self) -> None:
        logging.info("Stopping SolarEdge polling")
        self.running = False
        await self.connection_manager.stop()
        await self.client.close()
        clear = getattr(self.sink, "clear", None)
        if callable(clear):
            clear()
        self.context.shutdown()


async def health_check(
    mqtt_publisher,
    client: SolarEdgeClient | None,
    context: PollingContext | None,
    publish_fn: PublishFn,
) -> bool:
    try:
        health_status = {
            "mqtt_connected": bool(mqtt_publisher and mqtt_publisher.is_connected()),
            "api_session_active": bool(client and client.active),
            "any_connection_authorized": bool(
                context and any(c.authorized for c in context.connections.values())
            ),
        }
        for key, value in health_status.items():
            publish_fn(f"health/{key}", value)
        overall_health = all(health_status.values())
        publish_fn("health/overall", overall_health)
        if not overall_health:
            logging.warning("Health check failed: %s", health_status)
        else:
            logging.debug("Health check passed")
        return overall_health
    except Exception:
        logging.exception("health_check error")
        publish_fn("health/overall", False)
        return False
