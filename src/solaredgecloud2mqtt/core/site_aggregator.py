"""Per-connection site data aggregation (Python 3.12).

Lists every site of an account, fetches the inventory and the current power
flow of each site concurrently and joins them into a `SiteSnapshot`. A site
whose fetches do not both succeed keeps its previous snapshot.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, MutableMapping
import asyncio
import logging

from .exceptions import SolarEdgeError, TransportError
from .models import Connection, SiteSnapshot
from .solaredge_client import SolarEdgeClient


CycleCallback = Callable[[Connection], Awaitable[None] | None]


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, TransportError):
        return exc.timed_out
    return isinstance(exc, asyncio.TimeoutError)


class SiteDataAggregator:
    """Fetch-and-join pipeline writing into a shared snapshot cache.

    `raw_data` is keyed by site id; each successful site overwrites its entry
    wholesale. `on_cycle_complete` runs once per connection cycle after all
    listed sites were processed, whether or not any of them committed.
    """

    def __init__(
        self,
        client: SolarEdgeClient,
        raw_data: MutableMapping[Any, SiteSnapshot],
        on_cycle_complete: CycleCallback | None = None,
    ) -> None:
        self.client = client
        self.raw_data = raw_data
        self.on_cycle_complete = on_cycle_complete

    async def fetch_site(self, connection: Connection, site: dict[str, Any]) -> bool:
        """Fetch both endpoints of `site`; commit and return True if both succeed."""
        site_id = site.get("id")
        if site_id is None:
            logging.debug("Ignoring site entry without id: %s", site)
            return False

        inventory, powerflow = await asyncio.gather(
            self.client.fetch_inventory(site_id, connection.api_key),
            self.client.fetch_power_flow(site_id, connection.api_key),
            return_exceptions=True,
        )

        failed = False
        for endpoint, result in (("inventory", inventory), ("currentPowerFlow", powerflow)):
            if not isinstance(result, BaseException):
                continue
            failed = True
            if isinstance(result, asyncio.CancelledError):
                raise result
            if not _is_timeout(result):
                logging.debug(
                    "API error obtaining %s for site %s on connection %s: %s",
                    endpoint,
                    site_id,
                    connection.id,
                    result,
                )
        if failed:
            return False

        self.raw_data[site_id] = SiteSnapshot(
            site_id=site_id,
            connection_id=connection.id,
            site=site,
            inventory=inventory,
            powerflow=powerflow,
        )
        logging.debug("Updated snapshot for site %s", site_id)
        return True

    async def run_cycle(self, connection: Connection) -> int:
        """Run one aggregation cycle for `connection`.

        Returns the number of sites whose snapshot was committed.
        """
        if not connection.authorized:
            return 0

        committed = 0
        try:
            sites = await self.client.list_sites(connection.api_key)
        except SolarEdgeError as exc:
            logging.debug("Site list failed for connection %s: %s", connection.id, exc)
        else:
            results = await asyncio.gather(
                *(self.fetch_site(connection, site) for site in sites),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    logging.error(
                        "Unexpected error processing site",
                        exc_info=(type(result), result, result.__traceback__),
                    )
                elif result:
                    committed += 1
            logging.info(
                "Refreshed %s of %s site(s) for connection %s",
                committed,
                len(sites),
                connection.id,
            )
            if self.on_cycle_complete is not None:
                outcome = self.on_cycle_complete(connection)
                if asyncio.iscoroutine(outcome):
                    await outcome
        return committed
