from .prompts import build_extraction_prompt, DEFAULT_EXTRACTION_PROMPT
from .response_parser import safe_parse_json, parse_extraction_response, is_valid_task
from .task_writer import make_filename_safe, render_task_note, write_task_note
from .processor import TaskProcessor

__all__ = [
    "build_extraction_prompt", "DEFAULT_EXTRACTION_PROMPT",
    "safe_parse_json", "parse_extraction_response", "is_valid_task",
    "make_filename_safe", "render_task_note", "write_task_note",
    "TaskProcessor",
]
