"""In-memory fan-out of change notifications to event-stream subscribers."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Set

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .sse import ServerSentEvent

logger = logging.getLogger("gymusers.events")

DEFAULT_SUBSCRIBER_BUFFER = 16


class EventBroker:
    """Publish events to every open subscription without ever blocking.

    A subscriber whose buffer is full misses the event; clients treat
    notifications as hints to revalidate, so a dropped one is recovered by the
    next.
    """

    def __init__(self, *, buffer_size: int = DEFAULT_SUBSCRIBER_BUFFER) -> None:
        self._buffer_size = buffer_size
        self._subscribers: Set[MemoryObjectSendStream] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @contextmanager
    def subscribe(self) -> Iterator[MemoryObjectReceiveStream]:
        send_stream, receive_stream = anyio.create_memory_object_stream(
            max_buffer_size=self._buffer_size
        )
        self._subscribers.add(send_stream)
        try:
            yield receive_stream
        finally:
            self._subscribers.discard(send_stream)
            send_stream.close()
            receive_stream.close()

    def publish(self, event: str, data: str = "") -> int:
        """Queue ``event`` for all subscribers; returns how many received it."""

        message = ServerSentEvent(event=event, data=data)
        delivered = 0
        for send_stream in list(self._subscribers):
            try:
                send_stream.send_nowait(message)
            except anyio.WouldBlock:
                logger.debug("Subscriber buffer full; dropping %s event", event)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                self._subscribers.discard(send_stream)
            else:
                delivered += 1
        return delivered


__all__ = ["EventBroker"]
