"""
In-process, topic-per-session event fanout.

Publishing never waits on a subscriber: each subscriber owns a bounded queue
and a subscriber whose queue overflows is disconnected. Late subscribers get
no replay.
"""
from __future__ import annotations
import asyncio
import json
import logging
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

from ..schemas import AttendanceMarked, SessionClosedEvent

logger = logging.getLogger(__name__)

Event = Union[AttendanceMarked, SessionClosedEvent]
Forwarder = Callable[[dict], Awaitable[None]]

_CLOSE = object()


class Subscription:
    def __init__(self, bus: "EventBus", session_id: uuid.UUID, maxsize: int):
        self.session_id = session_id
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def close(self, drop_buffer: bool = False) -> None:
        self._bus._remove(self)
        if self.closed:
            return
        self.closed = True
        if drop_buffer:
            while not self._queue.empty():
                self._queue.get_nowait()
        # only an empty queue can have a consumer parked on get()
        if self._queue.empty():
            self._queue.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()


class EventBus:
    def __init__(self, *, queue_size: int = 50, forwarder: Forwarder | None = None):
        self.queue_size = queue_size
        self.forwarder = forwarder
        self._topics: dict[uuid.UUID, list[Subscription]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, session_id: uuid.UUID) -> Subscription:
        sub = Subscription(self, session_id, self.queue_size)
        self._topics[session_id].append(sub)
        logger.info("[events] subscriber joined session %s (total %d)", session_id, len(self._topics[session_id]))
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._topics.get(sub.session_id)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._topics[sub.session_id]
            logger.info("[events] subscriber left session %s", sub.session_id)

    def subscriber_count(self, session_id: uuid.UUID) -> int:
        return len(self._topics.get(session_id, ()))

    def publish(self, session_id: uuid.UUID, event: Event) -> int:
        """Deliver to current subscribers; returns how many accepted the event."""
        delivered = 0
        for sub in list(self._topics.get(session_id, ())):
            if sub._offer(event):
                delivered += 1
            else:
                logger.warning("[events] subscriber queue full on session %s, disconnecting", session_id)
                sub.close(drop_buffer=True)

        if isinstance(event, SessionClosedEvent):
            for sub in list(self._topics.get(session_id, ())):
                sub.close()

        if self.forwarder is not None:
            self._forward(event)
        logger.debug("[events] %s -> %d subscriber(s) on %s", event.type, delivered, session_id)
        return delivered

    def _forward(self, event: Event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._run_forwarder(event.model_dump(mode="json")))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_forwarder(self, payload: dict) -> None:
        try:
            await self.forwarder(payload)
        except Exception as e:
            # mirror is best-effort; live subscribers already got the event
            logger.warning("[events] forwarder failed for %s: %s", payload.get("type"), e)

    def close_all(self) -> None:
        for subs in list(self._topics.values()):
            for sub in list(subs):
                sub.close()


def format_sse(event: Event) -> str:
    """SSE frame: ``event: <type>`` + ``data: <json>`` + blank line."""
    data = event.model_dump(mode="json")
    return f"event: {event.type}\ndata: {json.dumps(data)}\n\n"
