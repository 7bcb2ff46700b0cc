"""Inverter accessories published over MQTT (Python 3.12).

An inverter is exposed like an outlet with a hidden battery and light
sensor:

- outlet on: the inverter is generating solar
- battery level: solar generation as a percentage of the site peak power
- charging: generating solar and exporting to the grid
- low battery: importing from the grid
- light level: solar generation in watts as a lux reading

`MqttDeviceSink` maps stable device identities to accessories and is the
outbound sink used by the device registry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable
from enum import StrEnum
import logging
import uuid

from .constants import DEVICE_NAMESPACE
from .models import DeviceRecord, FlowEdge

if TYPE_CHECKING:
    from .mqtt_publisher import MQTTPublisher


MIN_LIGHT_LEVEL = 0.0001


class ChargingState(StrEnum):
    NOT_CHARGING = "NOT_CHARGING"
    CHARGING = "CHARGING"


class LowBattery(StrEnum):
    NORMAL = "BATTERY_LEVEL_NORMAL"
    LOW = "BATTERY_LEVEL_LOW"


def scale_value(
    value: float, source_min: float, source_max: float, target_min: float, target_max: float
) -> float:
    if source_max == source_min:
        return target_min
    value = max(source_min, min(source_max, value))
    return (value - source_min) * (target_max - target_min) / (
        source_max - source_min
    ) + target_min


def derive_charging_state(
    connections: Iterable[FlowEdge],
) -> tuple[ChargingState, LowBattery | None]:
    """Work out which way power flows between the load and the grid.

    LOAD->GRID means exporting (charging, battery normal), GRID->LOAD means
    importing (not charging, battery low). Without either edge the state is
    not charging and the low battery flag is left as it was (None).
    """
    state = ChargingState.NOT_CHARGING
    low_battery: LowBattery | None = None
    for edge in connections:
        source, target = edge.source.upper(), edge.target.upper()
        if source == "LOAD" and target == "GRID":
            state, low_battery = ChargingState.CHARGING, LowBattery.NORMAL
        if source == "GRID" and target == "LOAD":
            state, low_battery = ChargingState.NOT_CHARGING, LowBattery.LOW
    return state, low_battery


def device_identity(serial_number: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{DEVICE_NAMESPACE}.{serial_number}"))


def is_generating(record: DeviceRecord) -> bool:
    pv = record.powerflow.pv
    return (pv.current_power or 0) != 0 or pv.status.upper() == "ACTIVE"


class InverterAccessory:
    """Derived state of one inverter, published under `<serial>/...`."""

    def __init__(self, publisher: "MQTTPublisher", record: DeviceRecord) -> None:
        self.publisher = publisher
        self.identity = device_identity(record.serial_number)
        self.serial_number = record.serial_number
        self.record = record
        self.low_battery = LowBattery.NORMAL

    def setup(self) -> None:
        record = self.record
        self.publisher.publish_many(
            f"{self.serial_number}/info",
            {
                "serial_number": record.serial_number,
                "software_version": record.software_version,
                "model": record.model,
                "manufacturer": record.manufacturer,
                "site_id": record.site_id,
                "installation_date": record.installation_date,
                "description": record.description,
                "peak_power": record.peak_power,
                "eve_history": record.eve_history,
            },
            retain=True,
        )

    def state(self, record: DeviceRecord) -> dict[str, str | float | bool]:
        pv_power = record.powerflow.pv.current_power or 0.0
        generating = is_generating(record)
        charging, low_battery = derive_charging_state(record.powerflow.connections)
        if low_battery is not None:
            self.low_battery = low_battery

        values: dict[str, str | float | bool] = {
            "online": record.online,
            "outlet/on": generating,
            "outlet/in_use": generating,
            "battery/level": scale_value(pv_power, 0, record.peak_power, 0, 100),
            "battery/charging_state": charging,
            "battery/low_battery": self.low_battery,
            "light/level": max(pv_power, MIN_LIGHT_LEVEL),
        }
        for name in ("grid", "pv", "load"):
            power = record.powerflow.node(name).current_power
            if power is not None:
                values[f"power/{name}"] = power
        if record.eve_history:
            values.update(
                {"energy/watts": pv_power, "energy/volts": 0, "energy/amps": 0}
            )
        return values

    def update(self, record: DeviceRecord) -> None:
        self.record = record
        self.publisher.publish_many(self.serial_number, self.state(record))


class MqttDeviceSink:
    """Outbound sink: one accessory per instantiated identity."""

    def __init__(self, publisher: "MQTTPublisher") -> None:
        self.publisher = publisher
        self.accessories: dict[str, InverterAccessory] = {}

    def instantiate(self, record: DeviceRecord) -> str:
        accessory = InverterAccessory(self.publisher, record)
        accessory.setup()
        self.accessories[accessory.identity] = accessory
        logging.info(
            "Added SolarEdge inverter '%s' (%s)", record.description, record.serial_number
        )
        return accessory.identity

    def update(self, identity: str, record: DeviceRecord) -> None:
        accessory = self.accessories.get(identity)
        if accessory is None:
            logging.debug("No accessory registered for identity %s", identity)
            return
        accessory.update(record)

    def clear(self) -> None:
        self.accessories.clear()
