"""Site snapshot normalization (Python 3.12).

Turns the raw per-site snapshot cache into canonical `DeviceRecord`s: power
values are scaled to watts, inverter names are made display safe and the
per-device options are resolved from configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
import copy
import logging
import unicodedata

from .api_validation import as_dict, as_list, as_number
from .constants import DEFAULT_UNIT_MULTIPLIER, UNIT_MULTIPLIERS
from .models import (
    DeviceRecord,
    FlowEdge,
    FlowNode,
    PowerFlowReading,
    SiteSnapshot,
)


EXTRA_NAME_CHARS = frozenset("’.,")


@dataclass(slots=True)
class NormalizerOptions:
    """Account-wide defaults plus per-serial overrides."""

    eve_history: bool = True
    devices: dict[str, dict[str, Any]] = field(default_factory=dict)

    def device_option(self, serial: str, key: str) -> Any:
        for candidate in (serial, serial.upper(), serial.lower()):
            options = self.devices.get(candidate)
            if isinstance(options, dict) and key in options:
                return options[key]
        return None


def unit_multiplier(unit: Any) -> int:
    if isinstance(unit, str):
        return UNIT_MULTIPLIERS.get(unit.strip().upper(), DEFAULT_UNIT_MULTIPLIER)
    return DEFAULT_UNIT_MULTIPLIER


def _is_alnum(ch: str) -> bool:
    return unicodedata.category(ch)[0] in ("L", "N")


def _is_allowed(ch: str) -> bool:
    return unicodedata.category(ch)[0] in ("L", "N", "Z") or ch in EXTRA_NAME_CHARS


def sanitize_name(name: Any) -> str:
    """Make `name` usable as a display name.

    Keeps letters, numbers, separators, the apostrophe ’, '.' and ','; then
    trims anything that is not a letter or number from both ends.
    """
    if not isinstance(name, str):
        return ""
    kept = [ch for ch in name if _is_allowed(ch)]
    start, end = 0, len(kept)
    while start < end and not _is_alnum(kept[start]):
        start += 1
    while end > start and not _is_alnum(kept[end - 1]):
        end -= 1
    return "".join(kept[start:end])


def scale_power_flow(raw: Mapping[str, Any] | None) -> PowerFlowReading:
    """Build a `PowerFlowReading` from a raw power flow, scaled to watts.

    The raw mapping is deep-copied first so the cached snapshot is never
    scaled in place.
    """
    data = copy.deepcopy(dict(raw or {}))
    unit = data.get("unit") if isinstance(data.get("unit"), str) else None
    multiplier = unit_multiplier(unit)

    nodes: dict[str, FlowNode] = {}
    for key, value in data.items():
        if not isinstance(value, dict):
            continue
        power = value.get("currentPower")
        nodes[key.upper()] = FlowNode(
            current_power=as_number(power) * multiplier if power is not None else None,
            status=str(value.get("status") or ""),
        )

    edges: list[FlowEdge] = []
    for entry in as_list(data.get("connections") or [], ctx="connections") or []:
        if isinstance(entry, dict) and entry.get("from") and entry.get("to"):
            edges.append(FlowEdge(source=str(entry["from"]), target=str(entry["to"])))

    return PowerFlowReading(unit=unit, nodes=nodes, connections=edges)


def _describe(inverter_name: Any, city: str) -> str:
    name = inverter_name if isinstance(inverter_name, str) else ""
    if name and city:
        return sanitize_name(f"{name} - {city}")
    return sanitize_name(name or city)


def normalize_site(
    snapshot: SiteSnapshot, options: NormalizerOptions
) -> dict[str, DeviceRecord]:
    site = snapshot.site or {}
    location = as_dict(site.get("location") or {}, ctx="site.location") or {}
    city = location.get("city") if isinstance(location.get("city"), str) else ""
    multiplier = unit_multiplier((snapshot.powerflow or {}).get("unit"))
    peak_power = as_number(site.get("peakPower")) * multiplier

    devices: dict[str, DeviceRecord] = {}
    inverters = as_list((snapshot.inventory or {}).get("inverters") or [], ctx="inverters")
    for inverter in inverters or []:
        if not isinstance(inverter, dict) or not inverter.get("SN"):
            logging.debug("Skipping inverter without serial on site %s", snapshot.site_id)
            continue
        serial = str(inverter["SN"]).upper()
        version = inverter.get("cpuVersion")
        devices[serial] = DeviceRecord(
            serial_number=serial,
            software_version=str(version).replace("-", ".") if version else "",
            model=inverter.get("model"),
            manufacturer=inverter.get("manufacturer"),
            site_id=site.get("id", snapshot.site_id),
            installation_date=site.get("installationDate"),
            description=_describe(inverter.get("name"), city),
            peak_power=peak_power,
            # one reading per record, never shared between records
            powerflow=scale_power_flow(snapshot.powerflow),
            online=True,
            excluded=False,
            eve_history=(
                options.eve_history is True
                or options.device_option(serial, "eve_history") is True
            ),
        )
    return devices


def normalize(
    raw_data: Mapping[Any, SiteSnapshot], options: NormalizerOptions | None = None
) -> dict[str, DeviceRecord]:
    """Derive every device record from the snapshot cache.

    Records are rebuilt from scratch on each call; a serial number seen on
    more than one site keeps the record of the last site iterated.
    """
    options = options or NormalizerOptions()
    devices: dict[str, DeviceRecord] = {}
    for snapshot in raw_data.values():
        devices.update(normalize_site(snapshot, options))
    return devices
