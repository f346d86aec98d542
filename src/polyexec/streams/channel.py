"""Bounded event channel between a session and the transport that consumes it."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from polyexec.models import ChannelEvent, StreamChunk
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)

_CLOSED = object()


class SessionChannel:
    """Outbound events for one session, with block-on-full backpressure.

    Output chunks are awaited into a bounded queue, so a consumer that stops
    reading stalls the producer instead of growing memory. A program that
    exits on its own ends the stream with :meth:`finish`, which waits for room
    the same way, so a slow consumer still receives every chunk before the
    exit. Forced endings (:meth:`send_exit`, :meth:`send_error`, :meth:`close`)
    never block: when the queue is full they evict the oldest pending chunk.
    """

    def __init__(self, session_id: str, maxsize: int = 256) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue[ChannelEvent | object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._terminal_sent = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    async def send_output(self, chunk: StreamChunk) -> None:
        """Queue an output chunk, waiting while the consumer is behind."""
        if self._closed:
            return
        await self._queue.put(ChannelEvent(type="output", session_id=self.session_id, chunk=chunk))

    def _exit_event(self, exit_code: int | None, reason: str) -> ChannelEvent:
        return ChannelEvent(type="exit", session_id=self.session_id, exit_code=exit_code, reason=reason)

    def _put_evicting(self, item: ChannelEvent | object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                dropped = self._queue.get_nowait()
                logger.debug("channel_event_evicted", session_id=self.session_id, dropped=getattr(dropped, "type", "close"))

    async def finish(self, exit_code: int | None, reason: str) -> None:
        """Queue the exit event and the close marker behind all pending output.

        Waits for room like :meth:`send_output`. A forced :meth:`close` that
        lands while this is waiting takes over and nothing more is queued.
        """
        if self._closed:
            return
        if not self._terminal_sent:
            self._terminal_sent = True
            await self._queue.put(self._exit_event(exit_code, reason))
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    def send_exit(self, exit_code: int | None, reason: str) -> None:
        """Queue the exit event without waiting. Only the first terminal event is delivered."""
        if self._closed or self._terminal_sent:
            return
        self._terminal_sent = True
        self._put_evicting(self._exit_event(exit_code, reason))

    def send_error(self, kind: str, message: str) -> None:
        if self._closed:
            return
        self._put_evicting(ChannelEvent(type="error", session_id=self.session_id, kind=kind, message=message))

    def close(self) -> None:
        """Stop accepting events; consumers drain what is queued and then stop."""
        if self._closed:
            return
        self._closed = True
        self._put_evicting(_CLOSED)

    async def get(self) -> ChannelEvent | None:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter
            self._put_evicting(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[ChannelEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChannelEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event
