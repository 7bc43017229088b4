"""
Event emitter for the per-turn push channel.

The emitter turns relay outcomes into typed events and hands them to a push
channel, an async callable supplied by the transport. The channel is
backpressure-naive: a send either succeeds immediately or the client is gone,
in which case the emitter raises ChannelClosed.
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

import structlog

from ..errors import ChannelClosed
from ..infrastructure.message_schemas import (
    COMPLETE_MESSAGE,
    CompleteEvent,
    ErrorEvent,
    RelayEvent,
    StateEvent,
    TextEvent,
)

logger = structlog.get_logger()

PushChannel = Callable[[RelayEvent], Awaitable[None]]


class EventEmitter:
    """Builds and sends the four push events of a turn."""

    def __init__(self, send: PushChannel, session_id: Optional[str] = None):
        self._send = send
        self.session_id = session_id
        self.events_sent = 0

    async def emit(self, event: RelayEvent) -> None:
        try:
            await self._send(event)
        except ChannelClosed:
            raise
        except Exception as e:
            logger.warning(
                "emitter.channel_failed",
                session_id=self.session_id,
                event_type=event.type.value,
                error=str(e),
            )
            raise ChannelClosed(f"Push channel failed: {e}", session_id=self.session_id) from e
        self.events_sent += 1

    async def text(self, delta: str) -> None:
        if delta:
            await self.emit(TextEvent(delta=delta))

    async def state(self, partial_data: Mapping[str, Any], missing_fields: list[str]) -> None:
        await self.emit(StateEvent(partial_data=dict(partial_data), missing_fields=list(missing_fields)))

    async def complete(self, data: Mapping[str, Any], message: str = COMPLETE_MESSAGE) -> None:
        await self.emit(CompleteEvent(message=message, data=dict(data)))

    async def error(self, message: str) -> None:
        await self.emit(ErrorEvent(message=message))


_END = object()


class QueueChannel:
    """
    Push channel backed by an unbounded asyncio.Queue.

    The producer sends events; the transport drains them with ``events()``.
    ``close()`` ends the drain and makes every later send fail.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: RelayEvent) -> None:
        if self._closed:
            raise ChannelClosed("Push channel closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_END)

    async def events(self) -> AsyncIterator[RelayEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item
