"""Configuration management for Switchyard."""

from switchyard.config.settings import (
    ApplicationConfig,
    SwitchyardConfig,
    WorkflowDefaults,
    clear_config_cache,
    get_config,
    load_config,
)

__all__ = [
    "ApplicationConfig",
    "SwitchyardConfig",
    "WorkflowDefaults",
    "clear_config_cache",
    "get_config",
    "load_config",
]
