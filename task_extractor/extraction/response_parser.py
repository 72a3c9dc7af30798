"""
Parsing and validation of LLM task extraction responses
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from ..core.interfaces import ExtractedTask, LEVEL_VALUES, Level, TaskExtractionResult

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_KNOWN_KEYS = (
    "task_title", "task_details", "due_date", "priority",
    "project", "client", "source_excerpt", "confidence",
)
# Legacy single-task answers sometimes use these shorter names
_ALIASES = {"title": "task_title", "details": "task_details"}


def safe_parse_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort JSON object extraction from model output.

    Tries the whole text, then the outermost ``{...}`` block, then that block
    with single quotes swapped for double quotes. Returns None when nothing
    parses to an object.
    """
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_BLOCK.search(text)
        if not match:
            return None
        block = match.group(0)
        try:
            data = json.loads(block)
        except json.JSONDecodeError:
            try:
                data = json.loads(block.replace("'", '"'))
            except json.JSONDecodeError:
                return None
    return data if isinstance(data, dict) else None


def is_valid_task(task: Any) -> bool:
    if not isinstance(task, dict):
        return False
    title = task.get("task_title")
    if not isinstance(title, str) or not title.strip():
        return False
    if task.get("confidence") and task["confidence"] not in LEVEL_VALUES:
        return False
    if task.get("priority") and task["priority"] not in LEVEL_VALUES:
        return False
    due = task.get("due_date")
    if due and isinstance(due, str) and not _ISO_DATE.match(due):
        return False
    return True


def _level(value: Any) -> str:
    return value if value in LEVEL_VALUES else Level.MEDIUM.value


def to_extracted_task(raw: Dict[str, Any]) -> ExtractedTask:
    data = dict(raw)
    for alias, key in _ALIASES.items():
        if not data.get(key) and data.get(alias):
            data[key] = data[alias]
    due = data.get("due_date")
    return ExtractedTask(
        task_title=str(data.get("task_title") or "Unspecified task").strip(),
        task_details=str(data.get("task_details") or ""),
        due_date=due if isinstance(due, str) and due else None,
        priority=_level(data.get("priority")),
        project=data.get("project") or None,
        client=data.get("client") or None,
        source_excerpt=str(data.get("source_excerpt") or ""),
        confidence=_level(data.get("confidence")),
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS and k not in _ALIASES},
    )


def normalize_result(data: Dict[str, Any]) -> Optional[TaskExtractionResult]:
    """Turn a parsed answer (multi-task or legacy single-task) into a result"""
    tasks = data.get("tasks")
    if isinstance(tasks, list):
        valid = [to_extracted_task(t) for t in tasks if is_valid_task(t)]
        if len(valid) != len(tasks):
            logger.info(f"event=invalid_tasks_dropped total={len(tasks)} valid={len(valid)}")
        return TaskExtractionResult(
            found=data.get("found") is True and bool(valid),
            tasks=valid,
            confidence=_level(data.get("confidence")),
        )

    if "found" in data:
        if data["found"] is not True:
            return TaskExtractionResult.empty()
        task = to_extracted_task(data)
        return TaskExtractionResult(found=True, tasks=[task], confidence=task.confidence)

    logger.warning(f"event=unrecognized_response keys={sorted(data)}")
    return None


def parse_extraction_response(text: Optional[str]) -> TaskExtractionResult:
    data = safe_parse_json(text)
    if data is None:
        if text:
            logger.warning(f"event=response_not_json preview={text[:200]!r}")
        return TaskExtractionResult.empty()
    return normalize_result(data) or TaskExtractionResult.empty()
