"""
In-process change relay: per-user fan-out of bookmark change events.

Writers call ``publish`` and move on. Readers hold a ``Subscription`` (an async
iterator bound to the event loop that opened it) and must close it when done.
Nothing is persisted: a subscriber only sees events published while it is
registered, and a subscriber that falls too far behind is dropped and told so
via ``SubscriptionLost`` so it can reload full state.
"""

import asyncio
import logging
import threading
from typing import Dict, Set

from .config import RELAY_QUEUE_SIZE

logger = logging.getLogger(__name__)

_CLOSED = object()


class SubscriptionLost(Exception):
    """The relay dropped this subscriber; events may have been missed."""


class Subscription:
    def __init__(self, relay: "ChangeRelay", user_id: int, limit: int):
        self.user_id = user_id
        self._relay = relay
        self._limit = limit
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._lost = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def lost(self) -> bool:
        return self._lost

    def _deliver(self, event) -> bool:
        # Called by the relay, possibly from a worker thread.
        try:
            self._loop.call_soon_threadsafe(self._offer, event)
            return True
        except RuntimeError:
            # loop already closed
            return False

    def _offer(self, event) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._limit:
            logger.warning("[relay] user=%s subscriber fell behind (%d queued); dropping", self.user_id, self._limit)
            self._lost = True
            self._shutdown()
            return
        self._queue.put_nowait(event)

    def _shutdown(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        self._relay._unregister(self)
        if self._lost:
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        return True

    def close(self) -> bool:
        """Release the registration. Returns True only for the call that released it."""
        return self._shutdown()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            if self._lost:
                raise SubscriptionLost(f"subscription for user {self.user_id} was dropped")
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()
        return False


class ChangeRelay:
    def __init__(self, queue_size: int = RELAY_QUEUE_SIZE):
        self.queue_size = queue_size
        self._lock = threading.RLock()
        self._channels: Dict[int, Set[Subscription]] = {}

    def subscribe(self, user_id: int) -> Subscription:
        """Open a live channel for ``user_id``. Must be called from a running event loop."""
        sub = Subscription(self, user_id, self.queue_size)
        with self._lock:
            self._channels.setdefault(user_id, set()).add(sub)
            live = len(self._channels[user_id])
        logger.info("[relay] subscribe user=%s (%d live)", user_id, live)
        return sub

    def publish(self, user_id: int, event) -> None:
        with self._lock:
            subs = list(self._channels.get(user_id, ()))
            dead = [sub for sub in subs if not sub._deliver(event)]
            for sub in dead:
                self._unregister(sub)
        logger.debug("[relay] publish user=%s type=%s to %d", user_id, getattr(event, "type", "?"), len(subs) - len(dead))

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._channels.get(user_id, ()))

    def _unregister(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._channels.get(sub.user_id)
            if subs is None or sub not in subs:
                return
            subs.discard(sub)
            if not subs:
                del self._channels[sub.user_id]
        logger.info("[relay] unsubscribe user=%s", sub.user_id)


relay = ChangeRelay()
