"""
Startup scan: process a static list of notes in small groups
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass
class BatchCursor:
    """Snapshot of the candidate list plus a forward-only offset"""
    files: Tuple[str, ...]
    offset: int = 0

    @property
    def exhausted(self) -> bool:
        return self.offset >= len(self.files)

    def next_group(self, size: int) -> List[str]:
        group = list(self.files[self.offset:self.offset + size])
        self.offset += len(group)
        return group


@dataclass
class ScanReport:
    total: int = 0
    group_sizes: List[int] = field(default_factory=list)
    succeeded: int = 0
    failed: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


class BatchScanner:
    """Run ``process_one`` over a file list in groups of ``batch_size``.

    Members of a group run concurrently; the scanner waits for the whole group
    and then pauses ``pause`` seconds before starting the next one. A failure
    for one file is reported and never stops its siblings or later groups.
    """

    def __init__(
        self,
        batch_size: int = 5,
        pause: float = 0.1,
        on_error: Optional[Callable[[str, BaseException], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.pause = pause
        self.on_error = on_error
        self._sleep = sleep
        self._cursor: Optional[BatchCursor] = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._cursor is not None

    def cancel(self) -> None:
        """Stop before the next group; the current group finishes. No effect when no scan is running"""
        self._cancelled = True

    async def scan(self, files: Sequence[str], process_one: Callable[[str], Awaitable[object]]) -> ScanReport:
        self._cancelled = False
        self._cursor = BatchCursor(tuple(files))
        report = ScanReport(total=len(self._cursor.files))
        logger.info(f"event=scan_started files={report.total} batch_size={self.batch_size}")
        try:
            while not self._cursor.exhausted:
                if report.group_sizes and not self._cancelled:
                    await self._sleep(self.pause)
                if self._cancelled:
                    report.cancelled = True
                    logger.info(f"event=scan_cancelled remaining={len(self._cursor.files) - self._cursor.offset}")
                    break
                group = self._cursor.next_group(self.batch_size)
                report.group_sizes.append(len(group))
                results = await asyncio.gather(*(self._run_one(path, process_one) for path in group))
                for path, error in zip(group, results):
                    if error is None:
                        report.succeeded += 1
                    else:
                        report.failed[path] = str(error)
        finally:
            self._cursor = None
        logger.info(
            f"event=scan_finished files={report.total} groups={len(report.group_sizes)} "
            f"succeeded={report.succeeded} failed={len(report.failed)}"
        )
        return report

    async def _run_one(self, path: str, process_one: Callable[[str], Awaitable[object]]) -> Optional[BaseException]:
        try:
            await process_one(path)
            return None
        except Exception as e:
            logger.error(f"event=scan_file_failed file={path} error={e}")
            if self.on_error is not None:
                try:
                    self.on_error(path, e)
                except Exception as cb_error:
                    logger.warning(f"event=scan_error_callback_failed file={path} error={cb_error}")
            return e
