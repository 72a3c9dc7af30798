"""
In-flight tracking: at most one automatic extraction per note
"""
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List

logger = logging.getLogger(__name__)


class ProcessingGate:
    """Tracks which notes are currently being extracted.

    Membership is counted per holder. The automatic paths (debounced changes
    and the startup scan) use ``try_acquire`` and skip a note that already has
    a holder. The manual command uses ``force_acquire``, which never waits or
    refuses but still registers itself, so automatic triggers that arrive
    during a manual run are skipped too. A note returns to idle when every
    holder has released it.
    """

    def __init__(self):
        self._holders: Dict[str, int] = {}

    def try_acquire(self, file_id: str) -> bool:
        if self._holders.get(file_id, 0) > 0:
            logger.info(f"event=task_skipped reason=already_inflight file={file_id}")
            return False
        self._holders[file_id] = 1
        return True

    def force_acquire(self, file_id: str) -> None:
        self._holders[file_id] = self._holders.get(file_id, 0) + 1

    def release(self, file_id: str) -> None:
        count = self._holders.get(file_id, 0)
        if count <= 0:
            logger.warning(f"event=gate_release_unheld file={file_id}")
            return
        if count == 1:
            del self._holders[file_id]
        else:
            self._holders[file_id] = count - 1

    @contextmanager
    def guard(self, file_id: str) -> Iterator[bool]:
        """Scoped ``try_acquire``; yields whether the caller may proceed"""
        acquired = self.try_acquire(file_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(file_id)

    @contextmanager
    def forced(self, file_id: str) -> Iterator[None]:
        """Scoped ``force_acquire``"""
        self.force_acquire(file_id)
        try:
            yield
        finally:
            self.release(file_id)

    def is_in_flight(self, file_id: str) -> bool:
        return self._holders.get(file_id, 0) > 0

    def in_flight(self) -> List[str]:
        return sorted(self._holders)

    @property
    def size(self) -> int:
        return len(self._holders)

    def clear(self) -> None:
        self._holders.clear()
