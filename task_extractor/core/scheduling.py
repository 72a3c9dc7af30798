"""
Timer scheduling on the asyncio event loop
"""
import asyncio
import logging
from typing import Callable, Optional

from .errors import SchedulingError
from .interfaces import IScheduler

logger = logging.getLogger(__name__)


class LoopScheduler(IScheduler):
    """Schedule callbacks with ``loop.call_later``.

    The loop is resolved lazily so the scheduler can be built before the loop
    starts running.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, delay: float, fn: Callable[[], None]) -> asyncio.TimerHandle:
        try:
            return self.loop.call_later(delay, fn)
        except RuntimeError as e:
            raise SchedulingError(f"cannot schedule callback: {e}") from e

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        try:
            handle.cancel()
        except Exception as e:
            raise SchedulingError(f"cannot cancel callback: {e}") from e
