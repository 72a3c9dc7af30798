"""
User-visible notifications
"""
import logging
import sys
from typing import List, TextIO, Optional

from .interfaces import INotifier

logger = logging.getLogger(__name__)


class ConsoleNotifier(INotifier):
    """Print notices to the terminal and record them in the log"""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def notify(self, message: str) -> None:
        logger.info(f"event=notice message={message!r}")
        print(message, file=self.stream, flush=True)


class RecordingNotifier(INotifier):
    """Keeps notices in memory; used by ``scan`` runs and tests"""

    def __init__(self):
        self.messages: List[str] = []

    def notify(self, message: str) -> None:
        logger.info(f"event=notice message={message!r}")
        self.messages.append(message)
