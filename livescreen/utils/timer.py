from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SessionTimer:
    """
    Elapsed-seconds timer with an optional ceiling.

    At the ceiling it pauses itself and raises the completion flag. Pause and
    resume keep the elapsed seconds; reset zeroes them and clears completion.
    """

    def __init__(self, max_seconds: Optional[int] = None, elapsed: int = 0, running: bool = False):
        if max_seconds is not None and max_seconds <= 0:
            raise ValueError("max_seconds must be positive")
        self.max_seconds = max_seconds
        self.set(elapsed, running)

    @property
    def remaining(self) -> Optional[int]:
        if self.max_seconds is None:
            return None
        return max(self.max_seconds - self.elapsed, 0)

    def start(self) -> None:
        if not self.complete:
            self.running = True

    def pause(self) -> None:
        self.running = False

    def reset(self) -> None:
        self.running = False
        self.elapsed = 0
        self.complete = False

    def set(self, elapsed: int, running: bool) -> None:
        """Overwrite with an externally supplied value, applying the ceiling."""
        self.reset()
        self.elapsed = max(0, elapsed)
        if self.max_seconds is not None and self.elapsed >= self.max_seconds:
            self.elapsed = self.max_seconds
            self.complete = True
        elif running:
            self.running = True

    def tick(self) -> bool:
        """Advance one second. Returns True on the tick that hits the ceiling."""
        if not self.running:
            return False
        self.elapsed += 1
        if self.max_seconds is not None and self.elapsed >= self.max_seconds:
            self.elapsed = self.max_seconds
            self.running = False
            self.complete = True
            return True
        return False


class TimerDriver:
    """
    Cooperative one-tick-per-interval loop around a SessionTimer.

    Each tick runs `step` (default `timer.tick`) and then `on_tick` in a worker
    thread, so both may wait on locks held by blocking callers without
    stalling the event loop. `step` returns True on the tick that hits the
    ceiling.
    """

    def __init__(
        self,
        timer: SessionTimer,
        on_tick: Callable[[SessionTimer, bool], None],
        interval: float = 1.0,
        step: Optional[Callable[[], bool]] = None,
    ):
        self.timer = timer
        self.on_tick = on_tick
        self.interval = interval
        self.step = step or timer.tick
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Spawn the tick task. The caller starts the timer itself."""
        if self.timer.running and not self.active:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _advance(self) -> bool:
        completed = self.step()
        try:
            self.on_tick(self.timer, completed)
        except Exception:
            logger.exception("Timer tick handler failed")
        return completed

    async def _run(self) -> None:
        while self.timer.running:
            await asyncio.sleep(self.interval)
            if not self.timer.running:
                break
            completed = await asyncio.to_thread(self._advance)
            if completed:
                logger.info("Timer reached its %ss ceiling", self.timer.max_seconds)
