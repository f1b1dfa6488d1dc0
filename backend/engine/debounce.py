from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Single-shot timer that is re-armed on every call to `arm()`.

    Runs on the current asyncio loop when there is one. Sync callers (the HTTP
    handlers run in a threadpool) get a deadline instead: it fires on the first
    `poll()` at or after `delay_s` has elapsed, unless `cancel()` or a new `arm()`
    came first.
    """

    def __init__(
        self,
        delay_s: float,
        callback: Callable[[], None],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.delay_s = max(0.0, float(delay_s))
        self.callback = callback
        self.clock = clock
        self._handle: asyncio.TimerHandle | None = None
        self._deadline: float | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None or self._deadline is not None

    def arm(self) -> None:
        # A superseded timer is always cleared before the new one is armed.
        self.cancel()
        if self.delay_s == 0.0:
            self._fire()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deadline = self.clock() + self.delay_s
            return
        self._handle = loop.call_later(self.delay_s, self._fire)

    def poll(self) -> bool:
        """Fire an expired deadline. Returns True when the callback ran."""
        if self._deadline is None or self.clock() < self._deadline:
            return False
        self._fire()
        return True

    def cancel(self) -> None:
        self._deadline = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._deadline = None
        try:
            self.callback()
        except Exception:
            logger.exception("debounced callback failed")
