"""Connection authorization and per-connection polling (Python 3.12).

Each configured API key is an independent connection: it is authorized with
an exponential backoff on failure and, once authorized, polled by its own
self-rescheduling task.
"""

from __future__ import annotations

from typing import Awaitable, Callable, MutableMapping
import asyncio
import logging

from .constants import AUTH_RETRY_INITIAL_MS, AUTH_RETRY_MAX_MS, DEFAULT_POLL_INTERVAL
from .exceptions import AuthorizationError
from .http_fetcher import SleepFn
from .models import Connection, ConnectionState
from .solaredge_client import SolarEdgeClient


PollFn = Callable[[Connection], Awaitable[object]]


class AuthBackoff:
    """Delay schedule for repeated authorization failures.

    The k-th consecutive failure waits min(initial * 2^(k-1), maximum)
    milliseconds; a success resets the schedule.
    """

    def __init__(
        self, initial_ms: int = AUTH_RETRY_INITIAL_MS, maximum_ms: int = AUTH_RETRY_MAX_MS
    ) -> None:
        self.initial_ms = initial_ms
        self.maximum_ms = maximum_ms
        self.failures = 0

    @property
    def delay_ms(self) -> int:
        if self.failures == 0:
            return self.initial_ms
        return min(self.initial_ms * 2 ** (self.failures - 1), self.maximum_ms)

    def failure(self) -> int:
        self.failures += 1
        return self.delay_ms

    def reset(self) -> int:
        self.failures = 0
        return self.delay_ms


class ConnectionManager:
    """Own the connections and drive their authorize/poll lifecycle."""

    def __init__(
        self,
        client: SolarEdgeClient,
        connections: MutableMapping[str, Connection],
        poll: PollFn,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.client = client
        self.connections = connections
        self.poll = poll
        self.poll_interval = poll_interval
        self._sleep = sleep
        self.running = False
        self._tasks: dict[str, asyncio.Task] = {}
        self._poll_tasks: dict[str, asyncio.Task] = {}
        # tasks currently inside an API call; stop() lets them finish
        self._in_flight: set[asyncio.Task] = set()

    def add(self, api_key: str) -> Connection:
        connection = Connection(api_key=api_key)
        self.connections[connection.id] = connection
        return connection

    async def authorize(self, connection: Connection) -> bool:
        """Validate the connection's credential; never raises on API failure."""
        connection.state = ConnectionState.AUTHORIZING
        logging.info("Performing authorization to SolarEdge Monitoring API")
        try:
            await self.client.authorize(connection.api_key)
        except AuthorizationError as exc:
            connection.state = ConnectionState.UNAUTHORIZED
            logging.error(
                "Authorization failed to SolarEdge Monitoring API for connection %s; "
                "a periodic retry will be triggered: %s",
                connection.id,
                exc,
            )
            return False
        except Exception:
            connection.state = ConnectionState.UNAUTHORIZED
            raise
        connection.state = ConnectionState.AUTHORIZED
        logging.info("Successfully authorized to SolarEdge Monitoring API")
        return True

    async def _poll_loop(self, connection: Connection) -> None:
        task = asyncio.current_task()
        while self.running and connection.authorized:
            self._in_flight.add(task)
            try:
                await self.poll(connection)
            except Exception:
                logging.exception("Polling cycle error for connection %s", connection.id)
            finally:
                self._in_flight.discard(task)
            if not self.running:
                break
            await self._sleep(self.poll_interval)

    def _start_polling(self, connection: Connection) -> None:
        if not self.running:
            return
        task = self._poll_tasks.get(connection.id)
        if task is not None and not task.done():
            return
        self._poll_tasks[connection.id] = asyncio.create_task(
            self._poll_loop(connection), name=f"poll-{connection.id}"
        )

    async def reconnect_loop(self, connection: Connection) -> None:
        task = asyncio.current_task()
        backoff = AuthBackoff()
        while self.running:
            delay_ms = backoff.delay_ms
            try:
                if not connection.authorized:
                    self._in_flight.add(task)
                    try:
                        authorized = await self.authorize(connection)
                    finally:
                        self._in_flight.discard(task)
                    if authorized:
                        delay_ms = backoff.reset()
                        self._start_polling(connection)
                    else:
                        delay_ms = backoff.failure()
                        logging.debug(
                            "Retrying authorization for connection %s in %ss",
                            connection.id,
                            delay_ms / 1000,
                        )
                else:
                    delay_ms = backoff.reset()
            except Exception:
                logging.exception("reconnect_loop error for connection %s", connection.id)
                delay_ms = backoff.failure()
            if not self.running:
                break
            await self._sleep(delay_ms / 1000)

    def start(self) -> None:
        self.running = True
        for connection in self.connections.values():
            task = self._tasks.get(connection.id)
            if task is None or task.done():
                self._tasks[connection.id] = asyncio.create_task(
                    self.reconnect_loop(connection), name=f"auth-{connection.id}"
                )

    async def stop(self) -> None:
        """Stop rescheduling.

        Loops waiting between calls are cancelled; a loop inside an
        authorization or polling cycle finishes that call and then exits.
        """
        self.running = False
        tasks = [*self._tasks.values(), *self._poll_tasks.values()]
        for task in tasks:
            if task not in self._in_flight:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._poll_tasks.clear()
        for connection in self.connections.values():
            connection.state = ConnectionState.UNAUTHORIZED

    def authorized_count(self) -> int:
        return sum(1 for c in self.connections.values() if c.authorized)
