"""
Core interfaces for the Task Extractor
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from enum import Enum


class Level(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


LEVEL_VALUES = tuple(level.value for level in Level)


@dataclass(frozen=True)
class LLMService:
    """Reachability snapshot for one named LLM service.

    Replaced wholesale on every probe; never mutated in place.
    """
    name: str
    url: str = ""
    available: bool = False
    models: List[str] = field(default_factory=list)
    last_checked: float = 0.0


@dataclass
class ExtractedTask:
    """One task returned by the LLM"""
    task_title: str
    task_details: str = ""
    due_date: Optional[str] = None
    priority: str = Level.MEDIUM.value
    project: Optional[str] = None
    client: Optional[str] = None
    source_excerpt: str = ""
    confidence: str = Level.MEDIUM.value
    extra: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a field by name, falling back to extra keys from the LLM"""
        if key in self.extra:
            value = self.extra[key]
            if value not in (None, ""):
                return value
        if key != "extra" and key in self.__dataclass_fields__:
            return getattr(self, key)
        return default


@dataclass
class TaskExtractionResult:
    """Normalized LLM answer for one note"""
    found: bool
    tasks: List[ExtractedTask] = field(default_factory=list)
    confidence: str = Level.MEDIUM.value

    @classmethod
    def empty(cls) -> "TaskExtractionResult":
        return cls(found=False, tasks=[])


@dataclass
class ProcessingOutcome:
    """What one pipeline run did"""
    file_id: str
    processed: bool
    skipped_reason: str = ""
    tasks_found: int = 0
    notes_created: List[str] = field(default_factory=list)


class ILLMProvider(ABC):
    """Interface for LLM access"""

    @abstractmethod
    async def call_llm(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        """Send a system+user prompt pair, return raw text or None"""
        pass

    @abstractmethod
    async def detect_services(self) -> Dict[str, LLMService]:
        """Probe (or reuse cached state for) the local services"""
        pass


class INotifier(ABC):
    """Interface for user-visible notifications"""

    @abstractmethod
    def notify(self, message: str) -> None:
        """Show a short message to the user"""
        pass


class IFileWatcher(ABC):
    """Interface for vault monitoring"""

    @abstractmethod
    def start(self, callback):
        """Start watching for note changes"""
        pass

    @abstractmethod
    def stop(self):
        """Stop watching"""
        pass


class IScheduler(ABC):
    """Deferred-call abstraction used by the debouncer"""

    @abstractmethod
    def schedule(self, delay: float, fn) -> Any:
        """Run ``fn()`` after ``delay`` seconds; return a cancellation handle"""
        pass

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        """Cancel a handle returned by ``schedule``"""
        pass
