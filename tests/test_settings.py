#!/usr/bin/env python3
"""
Settings validation, environment overrides and settings file loading
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import (
    Config,
    SchedulingConfig,
    is_valid_processed_key,
    is_valid_trigger_field,
    validate_settings,
)
from task_extractor.core.errors import ConfigurationError


def test_defaults():
    sections = validate_settings({})
    llm, proc, system = sections["llm"], sections["processing"], sections["system"]
    assert llm.provider == "openai"
    assert llm.retries == 3
    assert proc.trigger_types == ["email", "meetingnote", "meeting note", "meeting notes"]
    assert proc.processed_frontmatter_key == "taskExtractor.processed"
    assert proc.trigger_frontmatter_field == "Type"
    assert [f.key for f in proc.frontmatter_fields][:3] == ["task", "status", "priority"]
    assert system.debug_mode is False


def test_scheduling_constants_are_fixed():
    scheduling = SchedulingConfig()
    assert scheduling.debounce_seconds == 2.0
    assert scheduling.service_cache_ttl_seconds == 1800
    assert scheduling.batch_size == 5
    assert scheduling.batch_pause_seconds == 0.1
    with pytest.raises(AttributeError):
        scheduling.batch_size = 10


def test_numeric_values_are_clamped():
    llm = validate_settings({"max_tokens": 50000, "temperature": -1, "timeout": 1, "retries": 99})["llm"]
    assert llm.max_tokens == 2000
    assert llm.temperature == 0
    assert llm.timeout == 10
    assert llm.retries == 5

    llm = validate_settings({"max_tokens": "lots", "retries": True})["llm"]
    assert llm.max_tokens == 800
    assert llm.retries == 3


def test_invalid_values_fall_back():
    sections = validate_settings({
        "provider": "gemini",
        "trigger_frontmatter_field": ".Type",
        "processed_frontmatter_key": "task extractor",
        "trigger_types": [],
        "excluded_patterns": ["*.tmp", "bad|pattern", "", 7],
        "frontmatter_fields": [{"key": "x", "type": "number", "required": True, "default_value": ""}],
    })
    assert sections["llm"].provider == "openai"
    proc = sections["processing"]
    assert proc.trigger_frontmatter_field == "Type"
    assert proc.processed_frontmatter_key == "taskExtractor.processed"
    assert proc.trigger_types == ["email", "meetingnote", "meeting note", "meeting notes"]
    assert proc.excluded_patterns == ["*.tmp"]
    assert proc.frontmatter_fields[0].key == "task"


def test_custom_frontmatter_fields_accept_camel_case_default():
    proc = validate_settings({
        "frontmatter_fields": [
            {"key": "context", "defaultValue": "@home", "type": "text", "required": False},
            {"key": "flagged", "default_value": "false", "type": "boolean", "required": True},
        ]
    })["processing"]
    assert [(f.key, f.default_value) for f in proc.frontmatter_fields] == [("context", "@home"), ("flagged", "false")]


def test_field_name_validation():
    assert is_valid_trigger_field("Type")
    assert is_valid_trigger_field("meta.kind")
    assert not is_valid_trigger_field("meta..kind")
    assert not is_valid_trigger_field("kind.")
    assert not is_valid_trigger_field("has space")
    assert not is_valid_trigger_field(None)

    assert is_valid_processed_key("taskExtractor.processed")
    assert is_valid_processed_key("done")
    assert not is_valid_processed_key("a..b")
    assert not is_valid_processed_key("1st.key")


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TASK_EXTRACTOR_PROVIDER", "ollama")
    monkeypatch.setenv("TASK_EXTRACTOR_OWNER", "Sam")
    monkeypatch.setenv("TASK_EXTRACTOR_RETRIES", "not-a-number")
    monkeypatch.setenv("TASK_EXTRACTOR_DEBUG", "true")

    cfg = Config(raw={"provider": "anthropic", "owner_name": "Alex", "retries": 2})
    assert cfg.llm.provider == "ollama"
    assert cfg.processing.owner_name == "Sam"
    assert cfg.llm.retries == 2
    assert cfg.system.debug_mode is True


def test_reload_from_env_touches_only_set_variables(monkeypatch):
    for name in ("TASK_EXTRACTOR_PROVIDER", "TASK_EXTRACTOR_MODEL", "TASK_EXTRACTOR_OWNER"):
        monkeypatch.delenv(name, raising=False)
    cfg = Config(raw={"owner_name": "Alex"})
    cfg.llm.model = "gpt-4o"

    monkeypatch.setenv("TASK_EXTRACTOR_OWNER", "Sam")
    cfg.reload_from_env()

    assert cfg.processing.owner_name == "Sam"
    assert cfg.llm.model == "gpt-4o"


def test_settings_file(tmp_path, monkeypatch):
    monkeypatch.delenv("TASK_EXTRACTOR_PROVIDER", raising=False)
    monkeypatch.delenv("TASK_EXTRACTOR_VAULT_DIR", raising=False)
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text(
        "provider: lmstudio\nvault_dir: {}\ntrigger_types: [email]\n".format(tmp_path),
        encoding="utf-8",
    )
    monkeypatch.setenv("TASK_EXTRACTOR_SETTINGS", str(settings_file))

    cfg = Config()
    assert cfg.llm.provider == "lmstudio"
    assert cfg.processing.trigger_types == ["email"]
    assert cfg.processing.vault_dir == str(tmp_path)


def test_validate_reports_missing_requirements(tmp_path, monkeypatch):
    for name in ("TASK_EXTRACTOR_API_KEY", "TASK_EXTRACTOR_OWNER", "TASK_EXTRACTOR_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    cfg = Config(raw={"provider": "openai", "vault_dir": str(tmp_path / "nope")})
    errors = cfg.validate()
    assert any("owner_name" in e for e in errors)
    assert any("api_key" in e for e in errors)
    assert any("vault_dir" in e for e in errors)


def test_settings_file_must_be_a_mapping(tmp_path, monkeypatch):
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("TASK_EXTRACTOR_SETTINGS", str(settings_file))
    with pytest.raises(ConfigurationError):
        Config()

    settings_file.write_text("provider: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        Config()
