"""Tracked device registry (Python 3.12).

Reconciles each batch of normalized device records against the devices seen
in earlier cycles and routes updates to the outbound sink.
"""

from __future__ import annotations

from typing import Iterable, Protocol
import logging

from .models import DeviceRecord, TrackedDevice


class DeviceSink(Protocol):
    def instantiate(self, record: DeviceRecord) -> str: ...

    def update(self, identity: str, record: DeviceRecord) -> None: ...


class DeviceRegistry:
    """Remembers every serial number ever observed.

    A device is tracked the first time it is seen, either as active (the sink
    instantiated it) or as excluded. Entries are never removed and an entry
    tracked as excluded is never promoted to active.
    """

    def __init__(
        self, sink: DeviceSink, tracked: dict[str, TrackedDevice] | None = None
    ) -> None:
        self.sink = sink
        self.tracked: dict[str, TrackedDevice] = tracked if tracked is not None else {}

    def __contains__(self, serial: object) -> bool:
        return serial in self.tracked

    def __len__(self) -> int:
        return len(self.tracked)

    def get(self, serial: str) -> TrackedDevice | None:
        return self.tracked.get(serial)

    def _track(self, record: DeviceRecord) -> TrackedDevice | None:
        if record.excluded:
            logging.warning(
                "Device '%s' (%s) is ignored due to it being marked as excluded",
                record.description,
                record.serial_number,
            )
            entry = TrackedDevice(
                serial_number=record.serial_number,
                identity="",
                excluded=True,
            )
            self.tracked[record.serial_number] = entry
            return entry

        try:
            identity = self.sink.instantiate(record)
        except Exception:
            logging.exception("Failed to set up device %s", record.serial_number)
            return None
        logging.info(
            "Tracking new device '%s' (%s)", record.description, record.serial_number
        )
        entry = TrackedDevice(
            serial_number=record.serial_number, identity=identity, excluded=False
        )
        self.tracked[record.serial_number] = entry
        return entry

    def reconcile(self, records: Iterable[DeviceRecord]) -> list[str]:
        """Track new records and push updates to tracked active devices.

        Returns the identities that received an update this cycle.
        """
        updated: list[str] = []
        for record in records:
            entry = self.tracked.get(record.serial_number)
            if entry is None:
                entry = self._track(record)
                if entry is None:
                    continue

            if entry.excluded or record.excluded or not entry.identity:
                continue

            try:
                self.sink.update(entry.identity, record)
            except Exception:
                logging.exception("Failed to update device %s", record.serial_number)
                continue
            updated.append(entry.identity)
        return updated

    def clear(self) -> None:
        self.tracked.clear()
