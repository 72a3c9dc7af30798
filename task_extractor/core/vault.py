"""
Vault access: Markdown notes under a root directory, addressed by relative path
"""
import fnmatch
import logging
import re
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def split_frontmatter(content: str) -> "tuple[Optional[str], str]":
    """Return (frontmatter text or None, body)"""
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return None, content
    return match.group(1), content[match.end():]


def parse_frontmatter(content: str) -> Optional[Dict[str, Any]]:
    """Parse YAML frontmatter; None when absent, empty or not a mapping"""
    text, _body = split_frontmatter(content)
    if text is None:
        return None
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.warning(f"Invalid YAML frontmatter: {e}")
        return None
    if not isinstance(data, dict) or not data:
        return None
    return data


def get_nested(front: Optional[Dict[str, Any]], key: str) -> Any:
    """Look up ``a.b.c`` style keys; a literal dotted key wins if present"""
    if not front:
        return None
    if key in front:
        return front[key]
    current: Any = front
    for part in key.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def set_nested(front: Dict[str, Any], key: str, value: Any) -> None:
    parts = key.split(".")
    current = front
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def is_excluded(file_id: str, excluded_paths: Sequence[str], excluded_patterns: Sequence[str]) -> bool:
    """Exact path, folder prefix or glob pattern match"""
    for excluded in excluded_paths:
        excluded = excluded.strip().strip("/")
        if not excluded:
            continue
        if file_id == excluded or file_id.startswith(excluded + "/"):
            return True
    path = PurePosixPath(file_id)
    for pattern in excluded_patterns:
        if fnmatch.fnmatch(file_id, pattern) or path.match(pattern):
            return True
    return False


class Vault:
    """A directory of Markdown notes.

    Notes are identified by their POSIX path relative to the vault root,
    which stays stable for the lifetime of the file.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def abs_path(self, file_id: str) -> Path:
        path = (self.root / file_id).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Path escapes vault: {file_id}")
        return path

    def file_id_for(self, path: str) -> Optional[str]:
        """Vault-relative id for an absolute path, or None if outside the vault"""
        try:
            rel = Path(path).resolve().relative_to(self.root)
        except ValueError:
            return None
        return rel.as_posix()

    def is_hidden(self, file_id: str) -> bool:
        return any(part.startswith(".") for part in PurePosixPath(file_id).parts)

    def markdown_files(self) -> List[str]:
        """All visible ``.md`` files, sorted"""
        if not self.root.exists():
            return []
        ids = []
        for path in self.root.rglob("*.md"):
            if not path.is_file():
                continue
            file_id = path.relative_to(self.root).as_posix()
            if not self.is_hidden(file_id):
                ids.append(file_id)
        return sorted(ids)

    def exists(self, file_id: str) -> bool:
        return self.abs_path(file_id).exists()

    def read(self, file_id: str) -> str:
        return self.abs_path(file_id).read_text(encoding="utf-8")

    def write(self, file_id: str, content: str) -> None:
        self.abs_path(file_id).write_text(content, encoding="utf-8")

    def create(self, file_id: str, content: str) -> None:
        """Create a new note; raises FileExistsError if it already exists"""
        path = self.abs_path(file_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("x", encoding="utf-8") as f:
            f.write(content)

    def frontmatter(self, file_id: str) -> Optional[Dict[str, Any]]:
        try:
            return parse_frontmatter(self.read(file_id))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read frontmatter of {file_id}: {e}")
            return None

    def process_frontmatter(self, file_id: str, mutate: Callable[[Dict[str, Any]], None]) -> None:
        """Parse frontmatter, let ``mutate`` edit it in place, write it back.

        Raises ``yaml.YAMLError`` when the existing frontmatter cannot be parsed.
        """
        content = self.read(file_id)
        text, body = split_frontmatter(content)
        front: Dict[str, Any] = {}
        if text is not None:
            loaded = yaml.safe_load(text)
            if isinstance(loaded, dict):
                front = loaded
        mutate(front)
        dumped = yaml.safe_dump(front, sort_keys=False, allow_unicode=True, default_flow_style=False)
        if text is None:
            body = "\n" + content
        self.write(file_id, f"---\n{dumped}---\n{body}")
