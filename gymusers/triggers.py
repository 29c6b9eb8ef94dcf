"""Signals that make a remote-backed store revalidate its users list.

Every trigger funnels into the same ``revalidate`` coroutine supplied by the
store and runs until its task is cancelled at store teardown. Which triggers are
active is an explicit configuration choice (:class:`RevalidationStrategy`)
rather than runtime feature detection.
"""

from __future__ import annotations

import logging
from contextlib import aclosing, asynccontextmanager
from enum import Enum
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
)

import anyio
import httpx

from .repository import TransportError, normalize_base_url
from .sse import ServerSentEvent, ServerSentEventDecoder

logger = logging.getLogger("gymusers.triggers")

Revalidate = Callable[[], Awaitable[object]]

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_RECONNECT_DELAY = 3.0
MIN_RECONNECT_DELAY = 0.1
DEFAULT_HEALTH_INTERVAL = 10.0
USERS_UPDATED_EVENT = "users-updated"


class RevalidationTrigger(Protocol):
    async def run(self, revalidate: Revalidate) -> None: ...


class RevalidationStrategy(str, Enum):
    """How a remote-backed store learns about changes made elsewhere."""

    EVENTS = "events"
    POLLING = "polling"
    NONE = "none"


class Signal(str, Enum):
    FOCUS = "focus"
    ONLINE = "online"
    FOREGROUND = "foreground"


SignalListener = Callable[[Signal], None]


class LifecycleSignals:
    """Hub through which the host application reports lifecycle changes.

    ``emit`` must be called from the event loop thread that runs the store.
    """

    def __init__(self) -> None:
        self._listeners: Dict[Signal, List[SignalListener]] = {signal: [] for signal in Signal}

    def add_listener(self, signal: Signal, listener: SignalListener) -> None:
        self._listeners[signal].append(listener)

    def remove_listener(self, signal: Signal, listener: SignalListener) -> None:
        if listener in self._listeners[signal]:
            self._listeners[signal].remove(listener)

    def listener_count(self, signal: Signal) -> int:
        return len(self._listeners[signal])

    def emit(self, signal: Signal) -> None:
        for listener in list(self._listeners[signal]):
            try:
                listener(signal)
            except Exception:
                logger.exception("Lifecycle listener for %s failed", signal.value)

    def emit_app_state(self, state: str) -> None:
        """Translate an app-state change; only ``active`` counts as foregrounding."""

        if state == "active":
            self.emit(Signal.FOREGROUND)


class PollingTrigger:
    """Revalidate every ``interval`` seconds."""

    def __init__(self, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.interval = interval

    async def run(self, revalidate: Revalidate) -> None:
        while True:
            await anyio.sleep(self.interval)
            await revalidate()


class SignalTrigger:
    """Revalidate when the host emits one of ``kinds`` on ``signals``.

    Signals arriving while a revalidation is in flight collapse into one.
    """

    def __init__(
        self,
        signals: LifecycleSignals,
        kinds: Iterable[Signal] = (Signal.FOCUS, Signal.ONLINE, Signal.FOREGROUND),
    ) -> None:
        self.signals = signals
        self.kinds = tuple(kinds)

    async def run(self, revalidate: Revalidate) -> None:
        send_stream, receive_stream = anyio.create_memory_object_stream(max_buffer_size=1)

        def _listener(signal: Signal) -> None:
            try:
                send_stream.send_nowait(signal)
            except anyio.WouldBlock:
                pass
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                logger.debug("Dropping %s signal after trigger shutdown", signal.value)

        for kind in self.kinds:
            self.signals.add_listener(kind, _listener)
        try:
            async with receive_stream:
                async for signal in receive_stream:
                    logger.debug("Revalidating after %s signal", signal.value)
                    await revalidate()
        finally:
            for kind in self.kinds:
                self.signals.remove_listener(kind, _listener)
            send_stream.close()


class _StreamClientMixin:
    _client: Optional[httpx.AsyncClient]

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient() as client:
            yield client


class EventStreamTrigger(_StreamClientMixin):
    """Subscribe to the service's ``/events`` stream and revalidate on change.

    The stream is reopened after ``reconnect_delay`` seconds (or the server's
    ``retry`` hint, never below ``MIN_RECONNECT_DELAY``) whenever it drops; each
    reconnect also revalidates, since events published while disconnected are
    lost.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        event: str = USERS_UPDATED_EVENT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self._base_url = normalize_base_url(base_url)
        self._client = client
        self.event = event
        self.reconnect_delay = reconnect_delay

    @property
    def url(self) -> str:
        return f"{self._base_url}/events"

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        """Yield events from one connection until the server closes it."""

        timeout = httpx.Timeout(10.0, read=None)
        async with self._session() as client:
            async with client.stream(
                "GET", self.url, headers={"Accept": "text/event-stream"}, timeout=timeout
            ) as response:
                if response.status_code != 200:
                    raise TransportError(
                        f"Event stream request failed with status {response.status_code}"
                    )
                decoder = ServerSentEventDecoder()
                async for line in response.aiter_lines():
                    event = decoder.decode(line)
                    if event is not None:
                        yield event

    async def run(self, revalidate: Revalidate) -> None:
        delay = self.reconnect_delay
        connections = 0
        while True:
            try:
                async with aclosing(self.events()) as events:
                    async for event in events:
                        if event.retry is not None:
                            delay = max(event.retry / 1000, MIN_RECONNECT_DELAY)
                        if event.event == "connected":
                            connections += 1
                            logger.debug("Connected to %s", self.url)
                            if connections > 1:
                                await revalidate()
                        elif event.event == self.event:
                            await revalidate()
            except (httpx.HTTPError, TransportError) as exc:
                logger.warning(
                    "Event stream %s failed: %s; reconnecting in %.1fs", self.url, exc, delay
                )
            else:
                logger.info("Event stream %s closed; reconnecting in %.1fs", self.url, delay)
            await anyio.sleep(delay)


class HealthTrigger(_StreamClientMixin):
    """Poll ``/health`` and revalidate when the service comes back online."""

    def __init__(
        self,
        base_url: str,
        *,
        interval: float = DEFAULT_HEALTH_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ) -> None:
        self._base_url = normalize_base_url(base_url)
        self._client = client
        self.interval = interval
        self.timeout = timeout
        self.online: Optional[bool] = None

    async def check(self) -> bool:
        try:
            async with self._session() as client:
                response = await client.get(f"{self._base_url}/health", timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return response.status_code == 200

    async def run(self, revalidate: Revalidate) -> None:
        while True:
            online = await self.check()
            previous, self.online = self.online, online
            if previous is False and online:
                logger.info("Users API at %s is reachable again", self._base_url)
                await revalidate()
            elif previous is not False and not online:
                logger.warning("Users API at %s is unreachable", self._base_url)
            await anyio.sleep(self.interval)


def build_triggers(
    strategy: RevalidationStrategy,
    base_url: str,
    *,
    signals: Optional[LifecycleSignals] = None,
    client: Optional[httpx.AsyncClient] = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    health_interval: Optional[float] = None,
) -> Sequence[RevalidationTrigger]:
    """Return the triggers for a store synchronising against ``base_url``."""

    triggers: List[RevalidationTrigger] = []
    if strategy is RevalidationStrategy.EVENTS:
        triggers.append(EventStreamTrigger(base_url, client=client))
    elif strategy is RevalidationStrategy.POLLING:
        triggers.append(PollingTrigger(poll_interval))
    if signals is not None:
        triggers.append(SignalTrigger(signals))
    if health_interval:
        triggers.append(HealthTrigger(base_url, interval=health_interval, client=client))
    return triggers


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "EventStreamTrigger",
    "HealthTrigger",
    "LifecycleSignals",
    "MIN_RECONNECT_DELAY",
    "PollingTrigger",
    "RevalidationStrategy",
    "RevalidationTrigger",
    "Signal",
    "SignalTrigger",
    "USERS_UPDATED_EVENT",
    "build_triggers",
]
