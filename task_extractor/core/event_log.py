"""
Debug event log with correlation ids
"""
import json
import logging
import uuid
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

CATEGORIES = ("file-processing", "llm-call", "task-creation", "service-detection", "validation", "error")


class DebugEventLog:
    """Structured debug events for tracing one note through the pipeline.

    Disabled instances are no-ops. When enabled, the last ``max_entries``
    events are kept in memory and every event is appended as one NDJSON line
    to ``<logs_dir>/events.ndjson`` (rotated at ~1MB, 3 backups).
    """

    def __init__(self, enabled: bool = False, max_entries: int = 1000, logs_dir: Optional[str] = None):
        self.enabled = enabled
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._path = Path(logs_dir) / "events.ndjson" if logs_dir else None

    def start_operation(self, category: str, message: str, data: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if not self.enabled:
            return None
        correlation_id = uuid.uuid4().hex[:12]
        self.log("info", category, message, data, correlation_id)
        return correlation_id

    def log(
        self,
        level: str,
        category: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        if not self.enabled:
            return
        entry: Dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "category": category,
            "message": message,
        }
        if correlation_id:
            entry["correlation_id"] = correlation_id
        if data:
            entry["data"] = data
        self._entries.append(entry)
        self._append(entry)

    def entries(self, correlation_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if correlation_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.get("correlation_id") == correlation_id]

    def clear(self) -> None:
        self._entries.clear()

    def _append(self, entry: Dict[str, Any]) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
            self._rotate()
        except OSError as e:
            logger.warning(f"event=debug_log_write_failed error={e}")

    def _rotate(self, max_bytes: int = 1_000_000, backup_count: int = 3) -> None:
        if self._path.stat().st_size <= max_bytes:
            return
        for idx in range(backup_count - 1, 0, -1):
            src = self._path.with_suffix(self._path.suffix + f".{idx}")
            dst = self._path.with_suffix(self._path.suffix + f".{idx + 1}")
            if src.exists():
                src.replace(dst)
        self._path.replace(self._path.with_suffix(self._path.suffix + ".1"))
