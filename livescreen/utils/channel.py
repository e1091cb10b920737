"""
In-process per-session publish/subscribe hub.

Two kinds of messages travel on a session topic:
    {"event": "session-row",   "payload": <durable session row>}
    {"event": "session-state", "payload": <full SessionState>}

Publishing is fire-and-forget and safe from any thread (route handlers run in
the threadpool); delivery happens on the subscriber's own event loop. Every
message is a full value, so a slow subscriber simply loses older messages.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Set

from livescreen.settings import settings
from livescreen.utils.errors import ChannelError
from livescreen.utils.session_state import SessionState

logger = logging.getLogger(__name__)

EVENT_STATE = "session-state"
EVENT_ROW = "session-row"

_CLOSED = object()


class Subscription:
    def __init__(self, hub: "SessionChannelHub", session_id: str, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.hub = hub
        self.session_id = session_id
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(maxsize, 1))
        self.closed = False

    # called on the subscriber loop
    def _deliver(self, message: Any) -> None:
        if message is _CLOSED:
            while not self._queue.empty():
                self._queue.get_nowait()
        elif self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(message)

    def offer(self, message: Any) -> bool:
        """Schedule delivery; returns False if the subscriber loop is gone."""
        try:
            self._loop.call_soon_threadsafe(self._deliver, message)
        except RuntimeError:
            return False
        return True

    async def get(self) -> Dict[str, Any]:
        if self.closed and self._queue.empty():
            raise ChannelError(f"subscription to session {self.session_id} is closed")
        message = await self._queue.get()
        if message is _CLOSED:
            self.closed = True
            raise ChannelError(f"channel for session {self.session_id} disconnected")
        return message

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        return await self.get()

    def close(self) -> None:
        self.hub.unsubscribe(self)
        self.closed = True


class SessionChannelHub:
    def __init__(self, queue_size: int = 64):
        self.queue_size = queue_size
        self._topics: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id: str, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        loop = loop or asyncio.get_running_loop()
        sub = Subscription(self, session_id, loop, self.queue_size)
        with self._lock:
            self._topics.setdefault(session_id, set()).add(sub)
        logger.debug("Subscribed to session %s", session_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._topics.get(sub.session_id)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._topics[sub.session_id]

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._topics.get(session_id, ()))

    def publish(self, session_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Fan a message out to every subscriber of the session. Never blocks."""
        message = {"event": event, "payload": payload}
        with self._lock:
            subs = list(self._topics.get(session_id, ()))
        delivered = 0
        for sub in subs:
            if sub.offer(message):
                delivered += 1
            else:
                # subscriber loop has shut down
                self.unsubscribe(sub)
        return delivered

    def publish_state(self, session_id: str, state: SessionState) -> int:
        return self.publish(session_id, EVENT_STATE, state.to_message())

    def publish_row(self, session_id: str, row: Dict[str, Any]) -> int:
        return self.publish(session_id, EVENT_ROW, row)

    def disconnect(self, session_id: str) -> None:
        """Drop every subscriber of a session; each one sees a ChannelError."""
        with self._lock:
            subs = self._topics.pop(session_id, set())
        for sub in subs:
            sub.offer(_CLOSED)
        if subs:
            logger.info("Disconnected %d subscriber(s) from session %s", len(subs), session_id)

    def close(self) -> None:
        with self._lock:
            session_ids = list(self._topics)
        for sid in session_ids:
            self.disconnect(sid)


hub = SessionChannelHub(queue_size=settings.channel_queue_size)
