"""
File system watcher for vault notes
"""
import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from watchdog.observers import Observer as WatchdogObserver
from watchdog.events import FileSystemEventHandler

from .interfaces import IFileWatcher
from .vault import Vault

logger = logging.getLogger(__name__)


class NoteEventHandler(FileSystemEventHandler):
    """Handler for note file system events.

    Runs on the watchdog thread. Every relevant event is marshalled into the
    asyncio loop with ``call_soon_threadsafe`` so all scheduling state is
    touched from the loop thread only.
    """

    def __init__(
        self,
        vault: Vault,
        callback: Callable[[str], None],
        loop: asyncio.AbstractEventLoop,
        include_modified: bool = False,
    ):
        self.vault = vault
        self.callback = callback
        self.loop = loop
        self.include_modified = include_modified

    def on_created(self, event):
        """Handle file creation events"""
        if not event.is_directory:
            self._dispatch(event.src_path)

    def on_modified(self, event):
        """Handle file modification events"""
        if not event.is_directory and self.include_modified:
            self._dispatch(event.src_path)

    def on_moved(self, event):
        """Handle file move/rename events (atomic tmp -> final)."""
        if not event.is_directory:
            dest_path = getattr(event, "dest_path", None)
            if dest_path:
                self._dispatch(dest_path)

    def _dispatch(self, src_path) -> None:
        file_id = self._note_id(src_path)
        if file_id is None:
            return
        try:
            self.loop.call_soon_threadsafe(self.callback, file_id)
        except RuntimeError as e:
            # Loop already closed during shutdown
            logger.debug(f"event=watch_event_dropped file={file_id} error={e}")

    def _note_id(self, src_path) -> Optional[str]:
        if isinstance(src_path, bytes):
            src_path = src_path.decode("utf-8", errors="replace")
        if Path(src_path).suffix.lower() != ".md":
            return None
        file_id = self.vault.file_id_for(src_path)
        if file_id is None or self.vault.is_hidden(file_id):
            return None
        return file_id


class VaultWatcher(IFileWatcher):
    """Recursive watcher over the vault directory.

    Invokes the callback with the vault-relative path of every created (and,
    when enabled, modified) Markdown note.
    """

    def __init__(self, vault: Vault, include_modified: bool = False):
        self.vault = vault
        self.include_modified = include_modified
        self.observer: Optional[object] = None
        self.handler: Optional[NoteEventHandler] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self, callback: Callable[[str], None]):
        """Start watching for note changes.

        Must be called from inside the running event loop.
        """
        if self.observer and self.observer.is_alive():
            logger.warning("VaultWatcher is already running")
            return

        self.vault.root.mkdir(parents=True, exist_ok=True)
        self.loop = asyncio.get_running_loop()
        self.handler = NoteEventHandler(self.vault, callback, self.loop, self.include_modified)
        self.observer = WatchdogObserver()
        self.observer.schedule(self.handler, str(self.vault.root), recursive=True)
        self.observer.start()
        logger.info(f"VaultWatcher started, monitoring: {self.vault.root}")

    def stop(self):
        """Stop file watching."""
        if self.observer and self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=5)
            logger.info("VaultWatcher stopped")
        self.observer = None
        self.handler = None

    async def stop_async(self):
        await asyncio.get_running_loop().run_in_executor(None, self.stop)

    def is_running(self) -> bool:
        """Check if the watcher is currently running."""
        return self.observer is not None and self.observer.is_alive()
