"""
Task Extractor orchestrator - coordinates watching, debouncing, scanning and extraction
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from config import config
from .core import (
    BatchScanner, ConsoleNotifier, DebugEventLog, FileChangeDebouncer, INotifier, IFileWatcher,
    ILLMProvider, IScheduler, LoopScheduler, PipelineFailure, ProcessingGate, ProcessingOutcome,
    ScanReport, Vault, VaultWatcher,
)
from .bridges import LLMProviderManager
from .extraction import TaskProcessor

logger = logging.getLogger(__name__)


class ExtractorOrchestrator:
    """Owns the coordination layer and routes host events into the pipeline.

    File events go through the debouncer, the startup scan through the batch
    scanner; both reach ``process_file``, which is guarded by the processing
    gate. The manual command bypasses debouncing and the gate check.
    """

    def __init__(
        self,
        cfg: Any = None,
        vault: Optional[Vault] = None,
        llm: Optional[ILLMProvider] = None,
        notifier: Optional[INotifier] = None,
        scheduler: Optional[IScheduler] = None,
        watcher: Optional[IFileWatcher] = None,
        sleep=asyncio.sleep,
    ):
        self.cfg = cfg or config
        scheduling = self.cfg.scheduling
        system = self.cfg.system

        self.vault = vault or Vault(self.cfg.processing.vault_dir)
        self.notifier = notifier or ConsoleNotifier()
        self.event_log = DebugEventLog(
            enabled=system.debug_mode,
            max_entries=system.debug_max_entries,
            logs_dir=system.logs_dir,
        )
        self.llm = llm or LLMProviderManager(
            self.cfg.llm,
            cache_ttl=scheduling.service_cache_ttl_seconds,
            notifier=self.notifier,
            event_log=self.event_log,
        )
        self.processor = TaskProcessor(self.vault, self.llm, self.cfg.processing, self.notifier, self.event_log)

        self.gate = ProcessingGate()
        self.debouncer = FileChangeDebouncer(
            scheduler or LoopScheduler(), self.process_file, delay=scheduling.debounce_seconds
        )
        self.scanner = BatchScanner(
            batch_size=scheduling.batch_size, pause=scheduling.batch_pause_seconds, sleep=sleep
        )
        self.watcher = watcher or VaultWatcher(self.vault, include_modified=self.cfg.processing.process_on_update)

        self.running = False
        self._scan_task: Optional[asyncio.Task] = None
        self.last_scan: Optional[ScanReport] = None
        self.stats = {"processed": 0, "skipped": 0, "failed": 0, "notes_created": 0}

        logger.info("ExtractorOrchestrator initialized")

    async def start(self, scan: bool = True):
        """Start watching the vault and kick off the startup scan"""
        if self.running:
            logger.warning("Orchestrator is already running")
            return

        logger.info("Starting Task Extractor...")
        self.running = True

        await self._check_services()
        self.watcher.start(self.debouncer.notify)
        if scan:
            self._scan_task = asyncio.create_task(self.scan_existing_files())

        self._log_startup_status()
        logger.info("Task Extractor started successfully!")

    async def stop(self):
        """Stop watching; pending debounces and unstarted scan groups are dropped.

        Extractions already running finish before the LLM provider is cleaned up.
        """
        if not self.running:
            return

        logger.info("Stopping Task Extractor...")
        self.running = False

        stop_async = getattr(self.watcher, "stop_async", None)
        if stop_async is not None:
            await stop_async()
        else:
            self.watcher.stop()

        self.debouncer.cancel_all()
        if self._scan_task is not None:
            if self.scanner.running:
                self.scanner.cancel()
            else:
                # Scan task created but not started yet
                self._scan_task.cancel()
            await asyncio.gather(self._scan_task, return_exceptions=True)
            self._scan_task = None
        await self.debouncer.wait_running()

        cleanup = getattr(self.llm, "cleanup", None)
        if cleanup is not None:
            await cleanup()

        logger.info("Task Extractor stopped")

    async def _check_services(self):
        try:
            services = await self.llm.detect_services()
        except Exception as e:
            logger.warning(f"event=service_detection_failed error={e}")
            return
        for name, service in services.items():
            logger.info(f"event=service_status service={name} available={service.available} models={len(service.models)}")

    def _watcher_running(self) -> bool:
        is_running = getattr(self.watcher, "is_running", None)
        return bool(is_running()) if is_running is not None else False

    def _log_startup_status(self):
        status_lines = [
            "=== Task Extractor Status ===",
            f"Provider: {self.cfg.llm.provider} ({self.cfg.llm.model})",
            f"Owner: {self.cfg.processing.owner_name or '[--] not configured'}",
            f"File Watcher: {'[OK] Running' if self._watcher_running() else '[--] Stopped'}",
            f"Vault: {self.vault.root}",
            "=============================",
        ]
        for line in status_lines:
            logger.info(line)

    # ------------------------------------------------------------------
    # Entry points

    async def process_file(self, file_id: str) -> Optional[ProcessingOutcome]:
        """Automatic path: skip if the note is already being extracted.

        Raises PipelineFailure when extraction fails; the gate is released
        either way.
        """
        with self.gate.guard(file_id) as acquired:
            if not acquired:
                self.stats["skipped"] += 1
                return None
            try:
                outcome = await self.processor.process_note(file_id)
            except Exception as e:
                self.stats["failed"] += 1
                raise PipelineFailure(file_id, e) from e
        if outcome.processed:
            self.stats["processed"] += 1
            self.stats["notes_created"] += len(outcome.notes_created)
        else:
            self.stats["skipped"] += 1
        return outcome

    async def extract_manually(self, file_id: Optional[str]) -> ProcessingOutcome:
        """Manual command for one note; never blocked by an automatic run"""
        if not file_id:
            return await self.processor.process_note_manually(file_id)
        with self.gate.forced(file_id):
            outcome = await self.processor.process_note_manually(file_id)
        self.stats["notes_created"] += len(outcome.notes_created)
        return outcome

    async def scan_existing_files(self) -> ScanReport:
        """Process every unprocessed matching note once, in small groups"""
        files = self.processor.get_unprocessed_files()
        report = await self.scanner.scan(files, self.process_file)
        self.last_scan = report
        return report

    def resolve_file_id(self, path: str) -> Optional[str]:
        """Vault-relative id for a CLI argument (absolute or relative path)"""
        if not path:
            return None
        candidate = Path(path)
        if candidate.is_absolute() or candidate.exists():
            return self.vault.file_id_for(str(candidate.resolve()))
        return candidate.as_posix()

    def invalidate_service(self, name: str) -> None:
        cache = getattr(self.llm, "service_cache", None)
        if cache is not None:
            cache.invalidate(name)

    def get_status(self) -> Dict[str, Any]:
        """Get orchestrator status"""
        cache = getattr(self.llm, "service_cache", None)
        services = {}
        if cache is not None:
            services = {
                name: {"available": s.available, "url": s.url, "models": list(s.models)}
                for name, s in cache.entries().items()
            }
        return {
            "running": self.running,
            "watcher_running": self._watcher_running(),
            "provider": self.cfg.llm.provider,
            "model": self.cfg.llm.model,
            "pending_changes": self.debouncer.pending_count,
            "in_flight": self.gate.in_flight(),
            "scan_running": self.scanner.running,
            "services": services,
            "stats": dict(self.stats),
        }
