"""Data model shared by the polling pipeline (Python 3.12)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
import uuid


class ConnectionState(StrEnum):
    UNAUTHORIZED = "unauthorized"
    AUTHORIZING = "authorizing"
    AUTHORIZED = "authorized"


@dataclass(slots=True)
class Connection:
    """One API credential against the Monitoring API."""

    api_key: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ConnectionState = ConnectionState.UNAUTHORIZED

    @property
    def authorized(self) -> bool:
        return self.state is ConnectionState.AUTHORIZED


@dataclass(slots=True)
class SiteSnapshot:
    """Raw, joined API data for one site as of its last successful cycle."""

    site_id: Any
    connection_id: str
    site: dict[str, Any]
    inventory: dict[str, Any]
    powerflow: dict[str, Any]


@dataclass(slots=True)
class FlowNode:
    current_power: float | None = None
    status: str = ""


@dataclass(slots=True, frozen=True)
class FlowEdge:
    source: str
    target: str


@dataclass(slots=True)
class PowerFlowReading:
    """Site power flow with every `current_power` already scaled to watts."""

    unit: str | None = None
    nodes: dict[str, FlowNode] = field(default_factory=dict)
    connections: list[FlowEdge] = field(default_factory=list)

    def node(self, name: str) -> FlowNode:
        return self.nodes.get(name.upper()) or FlowNode()

    @property
    def grid(self) -> FlowNode:
        return self.node("GRID")

    @property
    def pv(self) -> FlowNode:
        return self.node("PV")

    @property
    def load(self) -> FlowNode:
        return self.node("LOAD")


@dataclass(slots=True)
class DeviceRecord:
    """Canonical per-inverter record, keyed by serial number."""

    serial_number: str
    software_version: str
    model: str | None
    manufacturer: str | None
    site_id: Any
    installation_date: str | None
    description: str
    peak_power: float
    powerflow: PowerFlowReading
    online: bool = True
    excluded: bool = False
    eve_history: bool = False


@dataclass(slots=True)
class TrackedDevice:
    serial_number: str
    identity: str
    excluded: bool = False
