from .settings import (
    Config,
    FrontmatterField,
    LLMConfig,
    ProcessingConfig,
    SchedulingConfig,
    SystemConfig,
    validate_settings,
    config as _real_config,
)


class _ConfigProxy:
    """Lightweight proxy that re-applies env overrides on each access.

    Tests that set os.environ after import observe the new values without
    reloading the module.
    """

    def __getattr__(self, name):  # type: ignore[override]
        _real_config.reload_from_env()
        return getattr(_real_config, name)


config = _ConfigProxy()

__all__ = [
    "config",
    "Config",
    "FrontmatterField",
    "LLMConfig",
    "ProcessingConfig",
    "SchedulingConfig",
    "SystemConfig",
    "validate_settings",
]
