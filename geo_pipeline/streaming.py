"""Push channel for progress events (server-sent events)."""

import asyncio
import json
from typing import AsyncIterator, Optional

import structlog

from .models import EventType, StreamEvent

logger = structlog.get_logger()

TERMINAL_EVENTS = (EventType.COMPLETE, EventType.ERROR)


def format_sse(event: StreamEvent) -> str:
    """Serialize one event as an SSE ``data:`` frame."""
    payload = event.model_dump(mode="json", exclude_none=True)
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class EventChannel:
    """
    Queue-backed listener for a ProgressTracker.

    The tracker calls the channel synchronously; a consumer drains it with
    ``async for``. The channel closes itself after a terminal event, or when
    the producer calls ``close()``.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.last_progress = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __call__(self, event: StreamEvent) -> None:
        self.send(event)

    def send(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug("dropping event on closed channel", event_type=event.type.value)
            return
        self.last_progress = max(self.last_progress, event.progress)
        self._queue.put_nowait(event)
        if event.type in TERMINAL_EVENTS:
            self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def get(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """Next event, or None once the channel is closed and drained."""
        item = await asyncio.wait_for(self._queue.get(), timeout) if timeout else await self._queue.get()
        if item is self._CLOSED:
            # keep the sentinel for any other waiter
            self._queue.put_nowait(self._CLOSED)
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    async def sse(self) -> AsyncIterator[str]:
        async for event in self:
            yield format_sse(event)
