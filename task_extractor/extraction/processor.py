"""
Task extraction pipeline: applicability checks, LLM call, task note creation
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional

import yaml

from config.settings import ProcessingConfig, is_valid_trigger_field
from ..core.event_log import DebugEventLog
from ..core.interfaces import ILLMProvider, INotifier, ProcessingOutcome, TaskExtractionResult
from ..core.vault import Vault, get_nested, is_excluded, parse_frontmatter, set_nested, split_frontmatter
from .prompts import build_extraction_prompt
from .response_parser import parse_extraction_response
from .task_writer import write_task_note

logger = logging.getLogger(__name__)

FALLBACK_TRIGGER_FIELD = "Type"

NOTICE_STARTED = "Extracting tasks from current note..."
NOTICE_NO_TASKS = "Task Extractor: No tasks found in current note"
NOTICE_NO_ACTIVE = "Task Extractor: No active note to process"
NOTICE_NOT_MARKDOWN = "Task Extractor: Active file is not a markdown note"
NOTICE_NO_OWNER = "Task Extractor: Owner name not configured in plugin settings"
NOTICE_ERROR = "Task Extractor: Error extracting tasks - see log for details"


def _plural(count: int) -> str:
    return f"{count} task note{'s' if count != 1 else ''}"


class TaskProcessor:
    """Runs one note through extraction.

    ``process_note`` is the automatic path used by the watcher and the
    startup scan; it applies every applicability check and marks the note
    processed. ``process_note_manually`` is the user command: it skips the
    trigger and processed checks, never marks the note and reports every
    outcome through the notifier.
    """

    def __init__(
        self,
        vault: Vault,
        llm: ILLMProvider,
        settings: ProcessingConfig,
        notifier: INotifier,
        event_log: Optional[DebugEventLog] = None,
    ):
        self.vault = vault
        self.llm = llm
        self.settings = settings
        self.notifier = notifier
        self.event_log = event_log or DebugEventLog(enabled=False)

    # ------------------------------------------------------------------
    # Applicability

    def trigger_field(self) -> str:
        name = self.settings.trigger_frontmatter_field
        if is_valid_trigger_field(name):
            return name.strip()
        logger.warning(f"event=invalid_trigger_field value={name!r} fallback={FALLBACK_TRIGGER_FIELD}")
        return FALLBACK_TRIGGER_FIELD

    def is_processed(self, front: Optional[Dict[str, Any]]) -> bool:
        value = get_nested(front, self.settings.processed_frontmatter_key or "taskExtractor.processed")
        return value is True or (isinstance(value, str) and value.strip().lower() == "true")

    def matches_trigger(self, front: Optional[Dict[str, Any]]) -> bool:
        raw = get_nested(front, self.trigger_field())
        value = str(raw).strip().lower() if raw not in (None, "") else ""
        return bool(value) and value in {t.lower() for t in self.settings.trigger_types}

    def is_excluded(self, file_id: str) -> bool:
        return is_excluded(file_id, self.settings.excluded_paths, self.settings.excluded_patterns)

    def get_unprocessed_files(self) -> List[str]:
        """Markdown notes that match a trigger type and are not yet marked processed"""
        candidates = []
        for file_id in self.vault.markdown_files():
            if self.is_excluded(file_id):
                continue
            front = self.vault.frontmatter(file_id)
            if not front:
                continue
            if self.matches_trigger(front) and not self.is_processed(front):
                candidates.append(file_id)
        return candidates

    # ------------------------------------------------------------------
    # Automatic path

    def _skip(self, file_id: str, reason: str, correlation_id: Optional[str] = None) -> ProcessingOutcome:
        logger.debug(f"event=note_skipped file={file_id} reason={reason}")
        self.event_log.log("info", "validation", f"Skipped: {reason}", {"file": file_id}, correlation_id)
        return ProcessingOutcome(file_id=file_id, processed=False, skipped_reason=reason)

    async def process_note(self, file_id: str) -> ProcessingOutcome:
        """Automatic extraction for one note.

        Raises on I/O failures; callers own error reporting.
        """
        if not file_id.lower().endswith(".md"):
            return self._skip(file_id, "not_markdown")
        correlation_id = self.event_log.start_operation("file-processing", "Processing file", {"file": file_id})
        started = time.monotonic()

        if self.is_excluded(file_id):
            return self._skip(file_id, "excluded", correlation_id)

        content = self.vault.read(file_id)
        front = parse_frontmatter(content)
        if not front:
            return self._skip(file_id, "no_frontmatter", correlation_id)
        if self.is_processed(front):
            return self._skip(file_id, "already_processed", correlation_id)
        if not self.matches_trigger(front):
            return self._skip(file_id, "trigger_mismatch", correlation_id)
        if not self.settings.owner_name.strip():
            logger.warning(f"event=owner_not_configured file={file_id}")
            return self._skip(file_id, "owner_not_configured", correlation_id)

        logger.info(f"event=extraction_started file={file_id} chars={len(content)}")
        result = await self.extract_tasks(content, file_id, correlation_id)
        created = self.create_task_notes(result, file_id, correlation_id) if result.found else []
        if created:
            self.notifier.notify(f"Task Extractor: created {_plural(len(created))}")
        self.mark_processed(file_id)

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"event=extraction_finished file={file_id} tasks={len(result.tasks)} "
            f"created={len(created)} duration_ms={duration_ms}"
        )
        return ProcessingOutcome(
            file_id=file_id, processed=True, tasks_found=len(result.tasks), notes_created=created
        )

    # ------------------------------------------------------------------
    # Manual path

    async def process_note_manually(self, file_id: Optional[str]) -> ProcessingOutcome:
        if not file_id:
            self.notifier.notify(NOTICE_NO_ACTIVE)
            return ProcessingOutcome(file_id="", processed=False, skipped_reason="no_active_note")
        if not file_id.lower().endswith(".md"):
            self.notifier.notify(NOTICE_NOT_MARKDOWN)
            return ProcessingOutcome(file_id=file_id, processed=False, skipped_reason="not_markdown")
        if not self.settings.owner_name.strip():
            self.notifier.notify(NOTICE_NO_OWNER)
            return ProcessingOutcome(file_id=file_id, processed=False, skipped_reason="owner_not_configured")

        self.notifier.notify(NOTICE_STARTED)
        correlation_id = self.event_log.start_operation(
            "file-processing", "Manual extraction", {"file": file_id}
        )
        try:
            content = self.vault.read(file_id)
            result = await self.extract_tasks(content, file_id, correlation_id)
            if not result.found or not result.tasks:
                self.notifier.notify(NOTICE_NO_TASKS)
                return ProcessingOutcome(file_id=file_id, processed=True)
            created = self.create_task_notes(result, file_id, correlation_id)
            if not created:
                self.notifier.notify(NOTICE_ERROR)
            else:
                self.notifier.notify(f"Task Extractor: Created {_plural(len(created))}")
            return ProcessingOutcome(
                file_id=file_id, processed=True, tasks_found=len(result.tasks), notes_created=created
            )
        except Exception as e:
            logger.error(f"event=manual_extraction_failed file={file_id} error={e}", exc_info=True)
            self.event_log.log("error", "error", "Manual extraction failed", {"error": str(e)}, correlation_id)
            self.notifier.notify(NOTICE_ERROR)
            return ProcessingOutcome(file_id=file_id, processed=False, skipped_reason="error")

    # ------------------------------------------------------------------
    # Steps

    async def extract_tasks(
        self, content: str, source_path: str, correlation_id: Optional[str] = None
    ) -> TaskExtractionResult:
        """Prompt the LLM and parse its answer; failures mean no tasks"""
        system, user = build_extraction_prompt(self.settings, source_path, content)
        self.event_log.log(
            "info", "llm-call", "Prompt built",
            {"system_chars": len(system), "user_chars": len(user)}, correlation_id,
        )
        try:
            raw = await self.llm.call_llm(system, user)
        except Exception as e:
            logger.error(f"event=llm_call_failed file={source_path} error={e}")
            self.event_log.log("error", "llm-call", "LLM call raised", {"error": str(e)}, correlation_id)
            return TaskExtractionResult.empty()
        result = parse_extraction_response(raw)
        self.event_log.log(
            "info", "llm-call", "Response parsed",
            {"found": result.found, "tasks": len(result.tasks)}, correlation_id,
        )
        return result

    def create_task_notes(
        self, result: TaskExtractionResult, source_id: str, correlation_id: Optional[str] = None
    ) -> List[str]:
        created = []
        for task in result.tasks:
            try:
                created.append(write_task_note(self.vault, task, self.settings, source_id))
            except (OSError, ValueError) as e:
                logger.error(f"event=task_note_failed source={source_id} title={task.task_title!r} error={e}")
                self.event_log.log(
                    "error", "task-creation", "Task note creation failed",
                    {"title": task.task_title, "error": str(e)}, correlation_id,
                )
        return created

    def mark_processed(self, file_id: str) -> None:
        key = self.settings.processed_frontmatter_key
        if not key:
            return
        try:
            self.vault.process_frontmatter(file_id, lambda front: set_nested(front, key, True))
        except (yaml.YAMLError, ValueError) as e:
            logger.warning(f"event=mark_processed_yaml_failed file={file_id} error={e}")
            self._mark_processed_text(file_id, key)

    def _mark_processed_text(self, file_id: str, key: str) -> None:
        """Plain-text marker edit for notes whose frontmatter YAML cannot be rewritten"""
        try:
            content = self.vault.read(file_id)
            text, body = split_frontmatter(content)
            if text is None:
                self.vault.write(file_id, f"---\n{key}: true\n---\n\n{content}")
                return
            if re.search(rf"^{re.escape(key)}:", text, re.MULTILINE):
                return
            self.vault.write(file_id, f"---\n{text}\n{key}: true\n---\n{body}")
        except OSError as e:
            logger.warning(f"event=mark_processed_failed file={file_id} error={e}")
