"""
Shared fakes for the Task Extractor tests
"""
import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from task_extractor.core.interfaces import IFileWatcher, ILLMProvider, IScheduler, LLMService


class FakeHandle:
    def __init__(self, when: float, fn):
        self.when = when
        self.fn = fn
        self.cancelled = False


class FakeScheduler(IScheduler):
    """Manual clock; timers fire only inside ``advance``"""

    def __init__(self):
        self.now = 0.0
        self.timers: List[FakeHandle] = []

    def schedule(self, delay, fn):
        handle = FakeHandle(self.now + delay, fn)
        self.timers.append(handle)
        return handle

    def cancel(self, handle):
        handle.cancelled = True

    @property
    def active(self) -> List[FakeHandle]:
        return [h for h in self.timers if not h.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted((h for h in self.active if h.when <= target), key=lambda h: h.when)
            if not due:
                break
            handle = due[0]
            self.timers.remove(handle)
            self.now = handle.when
            handle.fn()
        self.now = target


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeLLM(ILLMProvider):
    """Returns canned responses; optionally blocks until released"""

    def __init__(self, response: Optional[str] = None, error: Optional[BaseException] = None):
        self.response = response
        self.error = error
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self.cleaned_up = False

    async def call_llm(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        self.calls.append((system_prompt, user_prompt))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response

    async def detect_services(self) -> Dict[str, LLMService]:
        return {}

    async def cleanup(self) -> None:
        self.cleaned_up = True


class FakeWatcher(IFileWatcher):
    def __init__(self):
        self.callback = None
        self.running = False

    def start(self, callback):
        self.callback = callback
        self.running = True

    def stop(self):
        self.running = False

    def is_running(self) -> bool:
        return self.running


TWO_TASKS = """{
  "found": true,
  "tasks": [
    {"task_title": "Send the report", "task_details": "Email the Q3 report to finance", "due_date": "2025-03-01",
     "priority": "high", "project": "Q3 Close", "client": null, "source_excerpt": "Alex will send the report", "confidence": "high"},
    {"task_title": "Book venue", "task_details": "Find a room for the offsite", "priority": "low", "confidence": "medium"}
  ],
  "confidence": "high"
}"""


def write_note(root: Path, file_id: str, front: str, body: str = "Alex will send the report by Friday.") -> Path:
    path = root / file_id
    path.parent.mkdir(parents=True, exist_ok=True)
    content = f"---\n{front}\n---\n\n{body}\n" if front is not None else body
    path.write_text(content, encoding="utf-8")
    return path
