"""
Configuration settings for the Task Extractor
"""
import os
import re
from pathlib import Path
from dataclasses import dataclass, field, fields, replace
from typing import List, Dict, Any, Optional

import yaml
from dotenv import load_dotenv

from task_extractor.core.errors import ConfigurationError

# Load environment variables from .env file; prefer the project root, fall back to CWD
project_env = Path(__file__).parent.parent / ".env"
cwd_env = Path.cwd() / ".env"
if project_env.exists():
    load_dotenv(project_env)
elif cwd_env.exists():
    load_dotenv(cwd_env)

PROVIDERS = ("openai", "anthropic", "ollama", "lmstudio")
LOCAL_PROVIDERS = ("ollama", "lmstudio")
FIELD_TYPES = ("text", "date", "select", "boolean")

_YAML_KEY_PART = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*$")
_YAML_FIELD = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_.-]*$")


@dataclass
class FrontmatterField:
    """One frontmatter line rendered into created task notes"""
    key: str
    default_value: str = ""
    type: str = "text"
    required: bool = False
    options: Optional[List[str]] = None


DEFAULT_FRONTMATTER_FIELDS: List[FrontmatterField] = [
    FrontmatterField("task", "", "text", True),
    FrontmatterField("status", "inbox", "select", True,
                     ["inbox", "next", "waiting", "someday", "done", "cancelled"]),
    FrontmatterField("priority", "medium", "select", True, ["low", "medium", "high", "urgent"]),
    FrontmatterField("due", "", "date", False),
    FrontmatterField("project", "", "text", False),
    FrontmatterField("client", "", "text", False),
    FrontmatterField("created", "{{date}}", "date", True),
    FrontmatterField("tags", "task", "text", False),
]


@dataclass
class LLMConfig:
    """LLM provider configuration"""
    provider: str = "openai"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    ollama_url: str = "http://localhost:11434"
    lmstudio_url: str = "http://localhost:1234"
    anthropic_url: str = "https://api.anthropic.com/v1/messages"
    max_tokens: int = 800
    temperature: float = 0.0
    timeout: int = 30  # seconds per attempt
    retries: int = 3


@dataclass
class ProcessingConfig:
    """Which notes get processed and how task notes are written"""
    vault_dir: str = "vault"
    tasks_folder: str = "Tasks"
    link_back: bool = True
    processed_frontmatter_key: str = "taskExtractor.processed"
    owner_name: str = ""
    process_on_update: bool = False
    trigger_types: List[str] = field(
        default_factory=lambda: ["email", "meetingnote", "meeting note", "meeting notes"]
    )
    trigger_frontmatter_field: str = "Type"
    excluded_paths: List[str] = field(default_factory=list)
    excluded_patterns: List[str] = field(default_factory=list)
    frontmatter_fields: List[FrontmatterField] = field(
        default_factory=lambda: [replace(f) for f in DEFAULT_FRONTMATTER_FIELDS]
    )
    custom_prompt: str = ""
    default_task_type: str = "Task"


@dataclass(frozen=True)
class SchedulingConfig:
    """Timing constants for the coordination layer. Fixed once constructed."""
    debounce_seconds: float = 2.0
    service_cache_ttl_seconds: float = 30 * 60
    batch_size: int = 5
    batch_pause_seconds: float = 0.1


@dataclass
class SystemConfig:
    """System-wide configuration"""
    logs_dir: str = "logs"
    log_level: str = "INFO"
    debug_mode: bool = False
    debug_max_entries: int = 1000


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        return default
    return max(low, min(high, value))


def _clean_str_list(values: Any, max_len: Optional[int] = None, forbidden: Optional[str] = None) -> Optional[List[str]]:
    if not isinstance(values, list):
        return None
    cleaned = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    if max_len is not None:
        cleaned = [v for v in cleaned if len(v) < max_len]
    if forbidden:
        cleaned = [v for v in cleaned if not any(ch in v for ch in forbidden)]
    return cleaned


def is_valid_trigger_field(name: Any) -> bool:
    """Trigger field must be a YAML key; dots allowed but not leading, trailing or doubled."""
    if not isinstance(name, str):
        return False
    name = name.strip()
    return bool(
        name
        and _YAML_FIELD.match(name)
        and ".." not in name
        and not name.startswith(".")
        and not name.endswith(".")
    )


def is_valid_processed_key(key: Any) -> bool:
    if not isinstance(key, str) or not key.strip():
        return False
    return all(part and _YAML_KEY_PART.match(part) for part in key.strip().split("."))


def _parse_fields(raw: Any) -> Optional[List[FrontmatterField]]:
    if not isinstance(raw, list):
        return None
    parsed: List[FrontmatterField] = []
    for item in raw:
        if isinstance(item, FrontmatterField):
            item = item.__dict__
        if not isinstance(item, dict):
            continue
        key = item.get("key")
        default_value = item.get("default_value", item.get("defaultValue"))
        ftype = item.get("type")
        required = item.get("required")
        if not (isinstance(key, str) and key.strip()):
            continue
        if not isinstance(default_value, str) or ftype not in FIELD_TYPES or not isinstance(required, bool):
            continue
        options = item.get("options")
        parsed.append(FrontmatterField(
            key=key.strip(),
            default_value=default_value,
            type=ftype,
            required=required,
            options=list(options) if isinstance(options, list) else None,
        ))
    return parsed or None


def validate_settings(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Sanitize a flat settings mapping.

    Unknown keys are dropped, invalid values fall back to defaults and numeric
    values are clamped to their allowed ranges. Returns a mapping with one
    entry per section: ``llm``, ``processing`` and ``system``.
    """
    raw = raw or {}
    llm = LLMConfig()
    proc = ProcessingConfig()
    system = SystemConfig()

    if raw.get("provider") in PROVIDERS:
        llm.provider = raw["provider"]
    for name in ("api_key", "model", "ollama_url", "lmstudio_url", "anthropic_url"):
        if isinstance(raw.get(name), str):
            setattr(llm, name, raw[name])
    llm.max_tokens = int(_clamp(raw.get("max_tokens"), 100, 2000, llm.max_tokens))
    llm.temperature = float(_clamp(raw.get("temperature"), 0, 1, llm.temperature))
    llm.timeout = int(_clamp(raw.get("timeout"), 10, 120, llm.timeout))
    llm.retries = int(_clamp(raw.get("retries"), 1, 5, llm.retries))

    for name in ("vault_dir", "tasks_folder", "owner_name", "default_task_type"):
        value = raw.get(name)
        if isinstance(value, str) and value.strip():
            setattr(proc, name, value.strip())
    if isinstance(raw.get("custom_prompt"), str):
        proc.custom_prompt = raw["custom_prompt"]
    if is_valid_processed_key(raw.get("processed_frontmatter_key")):
        proc.processed_frontmatter_key = raw["processed_frontmatter_key"].strip()
    if is_valid_trigger_field(raw.get("trigger_frontmatter_field")):
        proc.trigger_frontmatter_field = raw["trigger_frontmatter_field"].strip()
    for name in ("link_back", "process_on_update"):
        if isinstance(raw.get(name), bool):
            setattr(proc, name, raw[name])
    trigger_types = _clean_str_list(raw.get("trigger_types"))
    if trigger_types:
        proc.trigger_types = trigger_types
    excluded_paths = _clean_str_list(raw.get("excluded_paths"), max_len=500)
    if excluded_paths is not None:
        proc.excluded_paths = excluded_paths
    excluded_patterns = _clean_str_list(raw.get("excluded_patterns"), max_len=500, forbidden='<>:"|?')
    if excluded_patterns is not None:
        proc.excluded_patterns = excluded_patterns
    frontmatter_fields = _parse_fields(raw.get("frontmatter_fields"))
    if frontmatter_fields:
        proc.frontmatter_fields = frontmatter_fields

    if isinstance(raw.get("logs_dir"), str) and raw["logs_dir"].strip():
        system.logs_dir = raw["logs_dir"].strip()
    if isinstance(raw.get("log_level"), str) and raw["log_level"].upper() in ("DEBUG", "INFO", "WARNING", "ERROR"):
        system.log_level = raw["log_level"].upper()
    if isinstance(raw.get("debug_mode"), bool):
        system.debug_mode = raw["debug_mode"]
    system.debug_max_entries = int(_clamp(raw.get("debug_max_entries"), 100, 10000, system.debug_max_entries))

    return {"llm": llm, "processing": proc, "system": system}


def _load_settings_file() -> Dict[str, Any]:
    """Read the optional YAML settings file"""
    explicit = os.getenv("TASK_EXTRACTOR_SETTINGS")
    candidates = [Path(explicit)] if explicit else [
        Path(__file__).parent.parent / "settings.yaml",
        Path.cwd() / "settings.yaml",
    ]
    for path in candidates:
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Settings file {path} is not valid YAML: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Settings file {path} must contain a mapping")
            return data
    return {}


# Environment variable -> (flat settings key, parser)
_ENV_OVERRIDES = {
    "TASK_EXTRACTOR_PROVIDER": ("provider", str),
    "TASK_EXTRACTOR_API_KEY": ("api_key", str),
    "TASK_EXTRACTOR_MODEL": ("model", str),
    "OLLAMA_URL": ("ollama_url", str),
    "LMSTUDIO_URL": ("lmstudio_url", str),
    "TASK_EXTRACTOR_TIMEOUT_SEC": ("timeout", int),
    "TASK_EXTRACTOR_RETRIES": ("retries", int),
    "TASK_EXTRACTOR_VAULT_DIR": ("vault_dir", str),
    "TASK_EXTRACTOR_OWNER": ("owner_name", str),
    "TASK_EXTRACTOR_LOG_LEVEL": ("log_level", str),
    "TASK_EXTRACTOR_DEBUG": ("debug_mode", lambda v: v.lower() == "true"),
}


class Config:
    """Main configuration class"""

    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        if raw is None:
            raw = _load_settings_file()
        self._raw = dict(raw)
        sections = validate_settings(self._merged_with_env())
        self.llm: LLMConfig = sections["llm"]
        self.processing: ProcessingConfig = sections["processing"]
        self.system: SystemConfig = sections["system"]
        self.scheduling = SchedulingConfig()

    def _merged_with_env(self) -> Dict[str, Any]:
        merged = dict(self._raw)
        for env_name, (key, parse) in _ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None:
                continue
            try:
                merged[key] = parse(value)
            except ValueError:
                continue
        return merged

    def validate(self) -> List[str]:
        """Validate configuration and return any errors"""
        errors = []
        if not self.processing.owner_name:
            errors.append("owner_name is required (set TASK_EXTRACTOR_OWNER or settings.yaml)")
        if self.llm.provider in ("openai", "anthropic") and not self.llm.api_key.strip():
            errors.append(f"api_key is required for provider {self.llm.provider}")
        if not Path(self.processing.vault_dir).is_dir():
            errors.append(f"vault_dir does not exist: {self.processing.vault_dir}")
        return errors

    def reload_from_env(self) -> None:
        """Re-apply environment overrides to the live config objects.

        Only fields whose environment variable is set are touched, so values
        adjusted at runtime are otherwise left alone.
        """
        merged = validate_settings(self._merged_with_env())
        for env_name, (key, _parse) in _ENV_OVERRIDES.items():
            if os.getenv(env_name) is None:
                continue
            for section in ("llm", "processing", "system"):
                target = getattr(self, section)
                if key in {f.name for f in fields(target)}:
                    setattr(target, key, getattr(merged[section], key))


# Global config instance
config = Config()
