from .interfaces import (
    LLMService, ExtractedTask, TaskExtractionResult, ProcessingOutcome, Level,
    ILLMProvider, INotifier, IFileWatcher, IScheduler
)
from .errors import (
    TaskExtractorError, ConfigurationError, SchedulingError, ProbeFailure,
    LLMProviderError, PipelineFailure
)
from .scheduling import LoopScheduler
from .debouncer import FileChangeDebouncer
from .processing_gate import ProcessingGate
from .batch_scanner import BatchScanner, BatchCursor, ScanReport
from .vault import Vault
from .notifier import ConsoleNotifier, RecordingNotifier
from .event_log import DebugEventLog
from .file_watcher import VaultWatcher

__all__ = [
    "LLMService", "ExtractedTask", "TaskExtractionResult", "ProcessingOutcome", "Level",
    "ILLMProvider", "INotifier", "IFileWatcher", "IScheduler",
    "TaskExtractorError", "ConfigurationError", "SchedulingError", "ProbeFailure",
    "LLMProviderError", "PipelineFailure",
    "LoopScheduler", "FileChangeDebouncer", "ProcessingGate",
    "BatchScanner", "BatchCursor", "ScanReport",
    "Vault", "ConsoleNotifier", "RecordingNotifier", "DebugEventLog", "VaultWatcher",
]
