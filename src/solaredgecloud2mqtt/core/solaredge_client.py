"""SolarEdge Monitoring API client (Python 3.12).

Encapsulates HTTP communication with the SolarEdge cloud using aiohttp.
Owns the session lifecycle and provides the authorization call plus the
site list, inventory and current power flow requests.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, urlencode
import json
import logging

import aiohttp

from .api_validation import as_dict, as_list, get_nested
from .constants import (
    API_BASE_DEFAULT,
    AUTH_FETCH_RETRIES,
    INVENTORY_PATH,
    POWER_FLOW_PATH,
    SITE_FETCH_RETRIES,
    SITE_FETCH_TIMEOUT_MS,
    SITES_LIST_PATH,
)
from .exceptions import (
    AuthorizationError,
    DecodeError,
    HttpStatusError,
    TransportError,
)
from .http_fetcher import HttpFetcher, SleepFn


class SolarEdgeClient:
    """HTTP client for the SolarEdge Monitoring API.

    One client (and one aiohttp session) is shared by every connection; the
    API key is passed per call since each connection holds its own.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self.base_url = (base_url or API_BASE_DEFAULT).rstrip("/")
        self.session: aiohttp.ClientSession | None = session
        self._owns_session = session is None
        self._sleep = sleep
        self.fetcher: HttpFetcher | None = (
            self._make_fetcher(session) if session is not None else None
        )

    def _make_fetcher(self, session: aiohttp.ClientSession) -> HttpFetcher:
        if self._sleep is None:
            return HttpFetcher(session)
        return HttpFetcher(session, sleep=self._sleep)

    async def initialize(self) -> None:
        """Create the underlying aiohttp session if none was supplied."""
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        self.fetcher = self._make_fetcher(self.session)

    async def close(self) -> None:
        """Close the underlying aiohttp session, if this client created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None
        self.fetcher = None

    @property
    def active(self) -> bool:
        return bool(self.session is not None and not self.session.closed)

    # ------------------------------------------------------------------
    def build_url(self, path: str, api_key: str, **params: Any) -> str:
        if not path.startswith("/"):
            path = "/" + path
        query = dict(params)
        query["api_key"] = api_key
        return f"{self.base_url}{path}?{urlencode(query)}"

    def sites_list_url(self, api_key: str) -> str:
        return self.build_url(
            SITES_LIST_PATH, api_key, sortProperty="name", sortOrder="ASC"
        )

    def inventory_url(self, site_id: Any, api_key: str) -> str:
        return self.build_url(
            INVENTORY_PATH.format(site_id=quote(str(site_id), safe="")), api_key
        )

    def power_flow_url(self, site_id: Any, api_key: str) -> str:
        return self.build_url(
            POWER_FLOW_PATH.format(site_id=quote(str(site_id), safe="")), api_key
        )

    # ------------------------------------------------------------------
    async def get_json(
        self, url: str, *, timeout_ms: int | None = None, max_retries: int = 1
    ) -> Any:
        """GET `url` through the fetcher and decode the JSON body."""
        if self.fetcher is None:
            raise TransportError("Client session not initialized", attempts=0)

        response = await self.fetcher.fetch(
            "GET", url, timeout_ms=timeout_ms, max_retries=max_retries
        )
        try:
            return await response.json(content_type=None)
        except (json.JSONDecodeError, ValueError, aiohttp.ContentTypeError) as exc:
            raise DecodeError(f"Invalid JSON payload: {exc}") from exc

    async def authorize(self, api_key: str) -> None:
        """Validate `api_key` with a lightweight site list request.

        The response body is decoded to make sure the API really answered,
        then discarded.
        """
        try:
            await self.get_json(
                self.sites_list_url(api_key), max_retries=AUTH_FETCH_RETRIES
            )
        except (TransportError, HttpStatusError, DecodeError) as exc:
            raise AuthorizationError(str(exc)) from exc

    async def list_sites(self, api_key: str) -> list[dict[str, Any]]:
        data = await self.get_json(self.sites_list_url(api_key))
        sites = as_list(
            get_nested(as_dict(data, ctx="sites/list"), ["sites", "site"], ctx="sites/list"),
            ctx="sites.site",
        )
        if sites is None:
            raise DecodeError("Site list payload missing sites.site")
        return [site for site in sites if isinstance(site, dict)]

    async def fetch_inventory(self, site_id: Any, api_key: str) -> dict[str, Any]:
        data = await self.get_json(
            self.inventory_url(site_id, api_key),
            timeout_ms=SITE_FETCH_TIMEOUT_MS,
            max_retries=SITE_FETCH_RETRIES,
        )
        inventory = as_dict(
            get_nested(as_dict(data, ctx="inventory"), ["Inventory"], ctx="inventory"),
            ctx="Inventory",
        )
        if inventory is None:
            raise DecodeError(f"Inventory payload for site {site_id} missing Inventory")
        return inventory

    async def fetch_power_flow(self, site_id: Any, api_key: str) -> dict[str, Any]:
        data = await self.get_json(
            self.power_flow_url(site_id, api_key),
            timeout_ms=SITE_FETCH_TIMEOUT_MS,
            max_retries=SITE_FETCH_RETRIES,
        )
        power_flow = as_dict(
            get_nested(
                as_dict(data, ctx="currentPowerFlow"),
                ["siteCurrentPowerFlow"],
                ctx="currentPowerFlow",
            ),
            ctx="siteCurrentPowerFlow",
        )
        if power_flow is None:
            raise DecodeError(
                f"Power flow payload for site {site_id} missing siteCurrentPowerFlow"
            )
        logging.debug("Power flow for site %s: %s", site_id, power_flow)
        return power_flow
