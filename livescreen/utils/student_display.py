"""
Read-only student surface.

Holds the last known session row, subtest and session state, applies channel
messages last-received-wins and re-renders after each one. On a channel drop
it keeps showing what it had and resubscribes with exponential backoff; missed
messages are not replayed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from livescreen.settings import settings
from livescreen.utils.channel import EVENT_ROW, EVENT_STATE, SessionChannelHub, hub as default_hub
from livescreen.utils.errors import ChannelError, LiveScreenError, ValidationError
from livescreen.utils.session_state import SessionState
from livescreen.utils.student_view import render_frame

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]
FrameSink = Callable[[Dict[str, Any]], Awaitable[None]]


class Backoff:
    def __init__(self, initial: float, maximum: float, factor: float):
        if initial <= 0 or maximum < initial or factor < 1:
            raise ValueError("backoff needs 0 < initial <= maximum and factor >= 1")
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self._next = initial

    def next(self) -> float:
        delay = self._next
        self._next = min(self._next * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self._next = self.initial

    @classmethod
    def from_settings(cls) -> "Backoff":
        return cls(
            settings.reconnect_initial_seconds,
            settings.reconnect_max_seconds,
            settings.reconnect_factor,
        )


class StudentDisplay:
    def __init__(
        self,
        session_id: str,
        fetch_session: Fetch,
        fetch_subtest: Fetch,
        on_frame: Optional[FrameSink] = None,
        hub: Optional[SessionChannelHub] = None,
        state: Optional[SessionState] = None,
        backoff: Optional[Backoff] = None,
    ):
        self.session_id = session_id
        self.fetch_session = fetch_session
        self.fetch_subtest = fetch_subtest
        self.on_frame = on_frame
        self.hub = hub or default_hub
        self.backoff = backoff or Backoff.from_settings()
        self.session: Optional[Dict[str, Any]] = None
        self.subtest: Optional[Dict[str, Any]] = None
        self.state = state or SessionState()
        self.reconnects = 0

    def frame(self) -> Dict[str, Any]:
        frame = render_frame(self.session, self.subtest, self.state)
        frame["state"] = self.state.to_message()
        return frame

    async def emit(self) -> None:
        if self.on_frame is not None:
            await self.on_frame(self.frame())

    # ---------- applying messages ----------

    def apply_state(self, payload: Dict[str, Any]) -> None:
        try:
            self.state = SessionState.from_message(payload, self.state)
        except ValidationError as e:
            # keep the last good state
            logger.warning("Ignored malformed session state for %s: %s", self.session_id, e.message)

    async def _load_subtest(self, subtest_id: str) -> None:
        try:
            subtest = await self.fetch_subtest(subtest_id)
        except LiveScreenError as e:
            logger.warning("Could not fetch subtest %s: %s", subtest_id, e.message)
            return
        if subtest is None:
            logger.warning("Subtest %s not found for session %s", subtest_id, self.session_id)
            return
        # a newer row may have switched subtests while we were fetching
        if self.session and self.session.get("current_subtest_id") == subtest_id:
            self.subtest = subtest

    async def apply_row(self, row: Dict[str, Any]) -> None:
        previous = (self.session or {}).get("current_subtest_id")
        self.session = row
        current = row.get("current_subtest_id")
        if current != previous or (current and self.subtest is None):
            self.subtest = None
            await self.emit()
            if current:
                await self._load_subtest(current)
        await self.emit()

    async def handle(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        payload = message.get("payload") or {}
        if event == EVENT_STATE:
            self.apply_state(payload)
            await self.emit()
        elif event == EVENT_ROW:
            await self.apply_row(payload)
        else:
            logger.debug("Ignored channel event %r", event)

    async def refresh(self) -> None:
        """Fetch the durable row (and its subtest) once."""
        self.session = await self.fetch_session(self.session_id)
        self.subtest = None
        current = (self.session or {}).get("current_subtest_id")
        if current:
            await self._load_subtest(current)
        await self.emit()

    # ---------- subscription loop ----------

    async def run(self) -> None:
        """Subscribe, render, and resubscribe on drops until cancelled."""
        first = True
        while True:
            sub = self.hub.subscribe(self.session_id)
            try:
                # subscribe before the first fetch so nothing published after it is lost
                if first:
                    await self.refresh()
                    first = False
                async for message in sub:
                    self.backoff.reset()
                    await self.handle(message)
            except ChannelError as e:
                logger.info("Channel dropped for session %s: %s", self.session_id, e.message)
            finally:
                sub.close()
            delay = self.backoff.next()
            self.reconnects += 1
            logger.debug("Resubscribing to session %s in %.2fs", self.session_id, delay)
            await asyncio.sleep(delay)
