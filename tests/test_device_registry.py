# tests/test_device_registry.py

from dataclasses import replace

from solaredgecloud2mqtt.core.device_registry import DeviceRegistry
from solaredgecloud2mqtt.core.models import DeviceRecord, PowerFlowReading
from tests.fakes import FakeSink


def _record(serial, excluded=False):
    return DeviceRecord(
        serial_number=serial,
        software_version="1.0",
        model="SE5000H",
        manufacturer="SolarEdge",
        site_id=1,
        installation_date="2021-03-01",
        description=f"Inverter {serial}",
        peak_power=5000,
        powerflow=PowerFlowReading(unit="W"),
        excluded=excluded,
    )


def test_new_device_is_instantiated_once_and_updated_every_cycle():
    sink = FakeSink()
    registry = DeviceRegistry(sink)

    registry.reconcile([_record("AA-1")])
    registry.reconcile([_record("AA-1")])

    assert sink.instantiated == ["AA-1"]
    assert sink.updates == [("id-AA-1", "AA-1"), ("id-AA-1", "AA-1")]
    assert registry.get("AA-1").identity == "id-AA-1"
    assert registry.get("AA-1").excluded is False


def test_excluded_device_is_tracked_but_never_instantiated():
    sink = FakeSink()
    registry = DeviceRegistry(sink)

    registry.reconcile([_record("BB-2", excluded=True)])
    registry.reconcile([_record("BB-2", excluded=True)])

    assert "BB-2" in registry
    assert registry.get("BB-2").excluded is True
    assert sink.instantiated == []
    assert sink.updates == []


def test_excluded_device_is_not_promoted_when_exclusion_clears():
    sink = FakeSink()
    registry = DeviceRegistry(sink)

    registry.reconcile([_record("BB-2", excluded=True)])
    returned = registry.reconcile([_record("BB-2", excluded=False)])

    assert returned == []
    assert sink.instantiated == []
    assert sink.updates == []


def test_active_device_later_excluded_receives_no_updates():
    sink = FakeSink()
    registry = DeviceRegistry(sink)

    registry.reconcile([_record("AA-1")])
    registry.reconcile([_record("AA-1", excluded=True)])

    assert sink.updates == [("id-AA-1", "AA-1")]


def test_vanished_device_stays_tracked_without_updates():
    sink = FakeSink()
    registry = DeviceRegistry(sink)

    registry.reconcile([_record("AA-1"), _record("CC-3")])
    updated = registry.reconcile([_record("CC-3")])

    assert updated == ["id-CC-3"]
    assert len(registry) == 2


def test_update_carries_latest_record():
    class CapturingSink(FakeSink):
        def update(self, identity, record):
            self.updates.append((identity, record.peak_power))

    sink = CapturingSink()
    registry = DeviceRegistry(sink)
    first = _record("AA-1")

    registry.reconcile([first])
    registry.reconcile([replace(first, peak_power=7000)])

    assert sink.updates[-1] == ("id-AA-1", 7000)


def test_failing_instantiate_is_retried_next_cycle():
    class FlakySink(FakeSink):
        def __init__(self):
            super().__init__()
            self.fail = True

        def instantiate(self, record):
            if self.fail:
                self.fail = False
                raise RuntimeError("sink unavailable")
            return super().instantiate(record)

    sink = FlakySink()
    registry = DeviceRegistry(sink)

    registry.reconcile([_record("AA-1")])
    assert "AA-1" not in registry

    registry.reconcile([_record("AA-1")])
    assert sink.instantiated == ["AA-1"]


def test_shared_tracking_map_and_clear():
    tracked = {}
    registry = DeviceRegistry(FakeSink(), tracked)

    registry.reconcile([_record("AA-1")])
    assert "AA-1" in tracked

    registry.clear()
    assert tracked == {}
