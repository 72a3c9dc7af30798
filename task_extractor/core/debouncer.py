"""
Per-file debouncing of change notifications
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Set

from .errors import SchedulingError
from .interfaces import IScheduler

logger = logging.getLogger(__name__)


class FileChangeDebouncer:
    """Coalesce bursts of change notifications into one downstream call per file.

    Each ``notify(file_id)`` cancels the pending callback for that file (if
    any) and schedules a new one ``delay`` seconds later, so only the last
    notification of a burst reaches ``callback``. Once a callback has fired, a
    new notification starts an independent cycle; preventing overlap with a
    still-running extraction is the processing gate's job.
    """

    def __init__(self, scheduler: IScheduler, callback: Callable[[str], Any], delay: float = 2.0):
        self._scheduler = scheduler
        self._callback = callback
        self._delay = delay
        self._pending: Dict[str, Any] = {}
        self._running: Set[asyncio.Task] = set()

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return len(self._running)

    def is_pending(self, file_id: str) -> bool:
        return file_id in self._pending

    def notify(self, file_id: str) -> None:
        """Schedule (or reschedule) downstream processing for ``file_id``"""
        try:
            existing = self._pending.pop(file_id, None)
            if existing is not None:
                self._scheduler.cancel(existing)
                logger.debug(f"event=debounce_reset file={file_id}")
            self._pending[file_id] = self._scheduler.schedule(self._delay, lambda: self._fire(file_id))
        except SchedulingError as e:
            self._pending.pop(file_id, None)
            logger.error(f"event=debounce_schedule_failed file={file_id} error={e}")

    def _fire(self, file_id: str) -> None:
        self._pending.pop(file_id, None)
        logger.debug(f"event=debounce_fired file={file_id}")
        try:
            result = self._callback(file_id)
        except Exception as e:
            logger.error(f"event=debounce_callback_failed file={file_id} error={e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._running.add(task)
            task.add_done_callback(lambda t: self._on_done(file_id, t))

    def _on_done(self, file_id: str, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"event=debounce_callback_failed file={file_id} error={exc}")

    async def wait_running(self) -> None:
        """Wait for every callback already handed to downstream; failures are logged, not raised"""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def cancel_all(self) -> None:
        """Drop every pending notification without invoking downstream.

        Extractions already handed to downstream keep running.
        """
        for file_id, handle in list(self._pending.items()):
            try:
                self._scheduler.cancel(handle)
            except SchedulingError as e:
                logger.warning(f"event=debounce_cancel_failed file={file_id} error={e}")
        count = len(self._pending)
        self._pending.clear()
        if count:
            logger.info(f"event=debounce_cancelled_all pending={count}")
