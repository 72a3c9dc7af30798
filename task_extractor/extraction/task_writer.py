"""
Rendering and creation of task notes
"""
import json
import logging
import re
from datetime import date
from typing import Any, Optional

from config.settings import FrontmatterField, ProcessingConfig
from ..core.interfaces import ExtractedTask
from ..core.vault import Vault

logger = logging.getLogger(__name__)

MAX_FILENAME_CHARS = 120
DEFAULT_TASKS_FOLDER = "Tasks"

_UNSAFE_FILENAME = re.compile(r"[\\/:*?\"<>|#%{}^~\[\]`;'@&=+]")
_UNSAFE_FOLDER = re.compile(r'[\\/:*?"<>|]')
_YAML_SIGNIFICANT = re.compile(r"[:#\[\]{},&*!|>'\"%@]")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_TRUE_WORDS = ("true", "yes", "1")


def make_filename_safe(title: str) -> str:
    safe = re.sub(r"\s+", "-", _UNSAFE_FILENAME.sub("", title or ""))[:MAX_FILENAME_CHARS]
    return safe or "task"


def sanitize_folder(folder: Optional[str]) -> str:
    cleaned = _UNSAFE_FOLDER.sub("", (folder or "").strip())
    return cleaned or DEFAULT_TASKS_FOLDER


def extract_field_value(task: ExtractedTask, f: FrontmatterField, today: Optional[date] = None) -> Any:
    """Pick the value for one frontmatter field from the extracted task"""
    value: Any = None
    for candidate in (f.key, f.key.replace("_", "", 1), f"{f.key}_date", f"task_{f.key}"):
        found = task.get(candidate)
        if found not in (None, ""):
            value = found
            break
    if value is None:
        value = f.default_value
    if value == "{{date}}":
        value = (today or date.today()).isoformat()
    if f.key == "task" and not value:
        value = task.task_title
    return value


def format_field_value(value: Any, f: FrontmatterField) -> str:
    """Render a value for ``f.type``; empty string means no value"""
    if value is None:
        return ""
    if f.type == "boolean":
        if isinstance(value, bool):
            return "true" if value else "false"
        return "true" if str(value).strip().lower() in _TRUE_WORDS else "false"
    if f.type == "select":
        text = str(value).strip()
        if not f.options:
            return text
        for option in f.options:
            if option.lower() == text.lower():
                return option
        return f.default_value
    if f.type == "date":
        match = _ISO_DATE.match(str(value).strip())
        return match.group(0) if match else ""
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value)
    text = str(value)
    if not text:
        return ""
    if _YAML_SIGNIFICANT.search(text) or text != text.strip():
        return json.dumps(text, ensure_ascii=False)
    return text


def render_task_note(
    task: ExtractedTask,
    settings: ProcessingConfig,
    source_id: str,
    today: Optional[date] = None,
) -> str:
    lines = ["---"]
    if not any(f.key == "Type" for f in settings.frontmatter_fields):
        lines.append(f"Type: {settings.default_task_type}")
    for f in settings.frontmatter_fields:
        rendered = format_field_value(extract_field_value(task, f, today), f)
        if rendered:
            lines.append(f"{f.key}: {rendered}")
        elif f.required:
            lines.append(f'{f.key}: ""')
    lines.extend(["---", "", task.task_details or "", ""])
    if settings.link_back:
        lines.append(f"Source: [[{source_id}]]")
    if task.source_excerpt:
        lines.extend(["", "> Justification excerpt:", "> " + task.source_excerpt.replace("\n", " ")])
    return "\n".join(lines) + "\n"


def write_task_note(vault: Vault, task: ExtractedTask, settings: ProcessingConfig, source_id: str) -> str:
    """Create the note under the tasks folder; returns its vault-relative path.

    Name collisions get ``-1``, ``-2``, ... suffixes.
    """
    folder = sanitize_folder(settings.tasks_folder)
    safe_title = make_filename_safe(task.task_title)
    content = render_task_note(task, settings, source_id)
    path = f"{folder}/{safe_title}.md"
    counter = 1
    while True:
        if not vault.exists(path):
            try:
                vault.create(path, content)
                break
            except FileExistsError:
                # Raised by the folder mkdir when the folder path is a file
                if not vault.exists(path):
                    raise
        path = f"{folder}/{safe_title}-{counter}.md"
        counter += 1
    logger.info(f"event=task_note_created source={source_id} path={path}")
    return path
