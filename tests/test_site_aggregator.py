# tests/test_site_aggregator.py

import asyncio
import logging

import pytest

from solaredgecloud2mqtt.core.models import Connection, ConnectionState, SiteSnapshot
from solaredgecloud2mqtt.core.site_aggregator import SiteDataAggregator
from solaredgecloud2mqtt.core.solaredge_client import SolarEdgeClient
from tests.fakes import (
    FakeSession,
    RecordingSleep,
    client_error,
    inventory_payload,
    inverter,
    power_flow_payload,
    site,
    site_payload,
)


def _connection():
    return Connection(api_key="KEY", id="conn-1", state=ConnectionState.AUTHORIZED)


def _client(routes):
    session = FakeSession(routes)
    return SolarEdgeClient("https://api.test", session=session, sleep=RecordingSleep()), session


def _routes():
    return {
        "/sites/list": (200, site_payload(site(1), site(2, city="Perth"))),
        "/site/1/inventory.json": (200, inventory_payload(inverter("AA-1"))),
        "/site/1/currentPowerFlow.json": (200, power_flow_payload()),
        "/site/2/inventory.json": (200, inventory_payload(inverter("BB-2"))),
        "/site/2/currentPowerFlow.json": (200, power_flow_payload(unit="W")),
    }


@pytest.mark.asyncio
async def test_cycle_commits_every_site_and_propagates_once():
    client, session = _client(_routes())
    cache = {}
    calls = []
    aggregator = SiteDataAggregator(client, cache, on_cycle_complete=calls.append)

    committed = await aggregator.run_cycle(_connection())

    assert committed == 2
    assert set(cache) == {1, 2}
    snap = cache[1]
    assert snap.connection_id == "conn-1"
    assert snap.inventory["inverters"][0]["SN"] == "AA-1"
    assert snap.powerflow["unit"] == "kW"
    assert snap.site["location"]["city"] == "Sydney"
    assert len(calls) == 1
    assert all("api_key=KEY" in call["url"] for call in session.calls)


@pytest.mark.asyncio
async def test_one_failing_endpoint_keeps_previous_snapshot():
    routes = _routes()
    routes["/site/2/currentPowerFlow.json"] = (500, {})
    client, _ = _client(routes)
    previous = SiteSnapshot(site_id=2, connection_id="old", site={}, inventory={}, powerflow={})
    cache = {2: previous}

    committed = await SiteDataAggregator(client, cache).run_cycle(_connection())

    assert committed == 1
    assert cache[2] is previous
    assert cache[1].connection_id == "conn-1"


@pytest.mark.asyncio
async def test_failing_endpoint_without_previous_snapshot_leaves_site_absent():
    routes = _routes()
    routes["/site/1/inventory.json"] = asyncio.TimeoutError()
    client, _ = _client(routes)
    cache = {}

    await SiteDataAggregator(client, cache).run_cycle(_connection())

    assert 1 not in cache
    assert 2 in cache


@pytest.mark.asyncio
async def test_sibling_fetch_still_runs_when_one_fails():
    routes = _routes()
    routes["/site/1/inventory.json"] = client_error()
    client, session = _client(routes)

    await SiteDataAggregator(client, {}).run_cycle(_connection())

    assert "/site/1/currentPowerFlow.json" in session.paths()


@pytest.mark.asyncio
async def test_malformed_payload_is_treated_as_failure():
    routes = _routes()
    routes["/site/1/inventory.json"] = (200, {"unexpected": True})
    client, _ = _client(routes)
    cache = {}

    await SiteDataAggregator(client, cache).run_cycle(_connection())

    assert 1 not in cache


@pytest.mark.asyncio
async def test_site_list_failure_skips_cycle_without_propagation():
    routes = _routes()
    routes["/sites/list"] = (403, {})
    client, session = _client(routes)
    calls = []

    committed = await SiteDataAggregator(client, {}, on_cycle_complete=calls.append).run_cycle(
        _connection()
    )

    assert committed == 0
    assert calls == []
    assert session.paths() == ["/sites/list"]


@pytest.mark.asyncio
async def test_unauthorized_connection_is_not_polled():
    client, session = _client(_routes())
    connection = Connection(api_key="KEY")

    assert await SiteDataAggregator(client, {}).run_cycle(connection) == 0
    assert session.calls == []


@pytest.mark.asyncio
async def test_async_cycle_callback_is_awaited():
    client, _ = _client(_routes())
    seen = []

    async def on_complete(connection):
        seen.append(connection.id)

    await SiteDataAggregator(client, {}, on_cycle_complete=on_complete).run_cycle(_connection())

    assert seen == ["conn-1"]


@pytest.mark.asyncio
async def test_site_without_id_is_ignored():
    routes = _routes()
    routes["/sites/list"] = (200, site_payload({"name": "no id"}, site(1)))
    client, _ = _client(routes)
    cache = {}

    assert await SiteDataAggregator(client, cache).run_cycle(_connection()) == 1
    assert list(cache) == [1]


@pytest.mark.asyncio
async def test_site_endpoints_use_fixed_thirty_second_timeout():
    client, session = _client(_routes())

    await SiteDataAggregator(client, {}).run_cycle(_connection())

    timeouts = {call["path"]: call.get("timeout") for call in session.calls}
    assert timeouts["/site/1/inventory.json"].total == 30
    assert timeouts["/site/1/currentPowerFlow.json"].total == 30
    assert timeouts["/sites/list"] is None


@pytest.mark.asyncio
async def test_endpoint_error_is_logged_at_debug(caplog):
    routes = _routes()
    routes["/site/1/inventory.json"] = client_error()
    client, _ = _client(routes)

    with caplog.at_level(logging.DEBUG):
        await SiteDataAggregator(client, {}).run_cycle(_connection())

    errors = [r for r in caplog.records if r.getMessage().startswith("API error obtaining")]
    assert len(errors) == 1
    assert errors[0].levelno == logging.DEBUG
    assert "inventory for site 1" in errors[0].getMessage()


@pytest.mark.asyncio
async def test_endpoint_timeout_is_not_logged(caplog):
    routes = _routes()
    routes["/site/1/currentPowerFlow.json"] = asyncio.TimeoutError()
    client, _ = _client(routes)
    cache = {}

    with caplog.at_level(logging.DEBUG):
        await SiteDataAggregator(client, cache).run_cycle(_connection())

    assert 1 not in cache
    assert "API error obtaining" not in caplog.text
