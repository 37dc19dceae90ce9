"""
Cancellable "thinking" delay before a bot's action is applied.

Pacing is cosmetic: the action is computed up front and only its application
is deferred. Once cancelled, the callback never runs.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ThinkingDelay:
    """A scheduled callback with an explicit cancel()."""

    def __init__(self, delay_ms: int, callback: Callable[[], None],
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.delay_ms = delay_ms
        self.callback = callback
        self.loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._done: Optional[asyncio.Future] = None
        self.cancelled = False
        self.fired = False
        self.error: Optional[Exception] = None

    def start(self) -> "ThinkingDelay":
        loop = self.loop or asyncio.get_running_loop()
        self._done = loop.create_future()
        self._handle = loop.call_later(self.delay_ms / 1000, self._fire)
        return self

    def _fire(self):
        if self.cancelled:
            return
        self.fired = True
        try:
            self.callback()
        except Exception as e:
            self.error = e
            logger.exception("Delayed bot action failed")
        if not self._done.done():
            self._done.set_result(self.error is None)

    def cancel(self) -> bool:
        """Stop the pending callback. Returns False if it already ran."""
        if self.fired:
            return False
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._done is not None and not self._done.done():
            self._done.set_result(False)
        logger.debug("Thinking delay cancelled")
        return True

    async def wait(self) -> bool:
        """Wait until the callback ran (True), failed or was cancelled (False)."""
        if self._done is None:
            raise RuntimeError("ThinkingDelay not started")
        return await self._done


def schedule(delay_ms: int, callback: Callable[[], None],
             loop: Optional[asyncio.AbstractEventLoop] = None) -> ThinkingDelay:
    return ThinkingDelay(delay_ms, callback, loop).start()
