"""Configuration settings and loading.

Configuration is always an explicit object. Sessions, engines and data
managers receive a SwitchyardConfig (or values taken from one) through
their constructors; nothing reads a module-level singleton. The only
process-wide state is the cache behind get_config(), keyed openly by
environment name.

Example switchyard.yaml:

    default_app: shop
    applications:
      shop:
        base_url: http://localhost:3000
      admin:
        base_url: http://localhost:3001
        login_path: /admin/login
    workflow:
      step_timeout: 30
      workflow_timeout: 300
    retry:
      max_attempts: 3
      backoff: linear
    environments:
      staging:
        applications:
          shop:
            base_url: https://shop.staging.example.com
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from switchyard.errors import ConfigValidationError, RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "switchyard.yaml"
DEFAULT_ENVIRONMENT = "default"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
VALID_READINESS_STATES = {"load", "domcontentloaded", "networkidle"}


class ApplicationConfig(BaseModel):
    """Connection details for one logical application."""

    base_url: str | None = None
    login_path: str = "/login"
    api_login_path: str = "/api/auth/login"
    readiness_state: str = "load"

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("readiness_state")
    @classmethod
    def validate_readiness_state(cls, v: str) -> str:
        if v not in VALID_READINESS_STATES:
            raise ValueError(
                f"Invalid readiness_state: {v}. Valid: {sorted(VALID_READINESS_STATES)}"
            )
        return v


class WorkflowDefaults(BaseModel):
    """Default execution options applied to every workflow run."""

    step_timeout: float = Field(default=30.0, gt=0)
    workflow_timeout: float = Field(default=300.0, gt=0)
    continue_on_error: bool = False
    capture_screenshots: bool = False
    screenshot_dir: str = "screenshots"
    validate_before_run: bool = False
    initialize_applications: bool = False


class SwitchyardConfig(BaseSettings):
    """Configuration for Switchyard."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHYARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = DEFAULT_ENVIRONMENT
    applications: dict[str, ApplicationConfig] = Field(default_factory=dict)
    default_app: str | None = None
    workflow: WorkflowDefaults = Field(default_factory=WorkflowDefaults)
    retry: dict[str, Any] | None = None
    switch_history_limit: int | None = Field(default=None, ge=1)
    log_level: str = "INFO"
    json_logs: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {v}. Valid: {sorted(VALID_LOG_LEVELS)}")
        return level

    @field_validator("retry", mode="after")
    @classmethod
    def validate_retry(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is None:
            return None
        RetryConfig.from_yaml(v)
        return v

    @model_validator(mode="after")
    def validate_default_app(self) -> SwitchyardConfig:
        if self.default_app and self.applications and self.default_app not in self.applications:
            raise ValueError(
                f"default_app '{self.default_app}' is not one of the configured "
                f"applications: {sorted(self.applications)}"
            )
        return self

    @property
    def retry_config(self) -> RetryConfig | None:
        """Parsed retry configuration, or None when retries are disabled."""
        if self.retry is None:
            return None
        return RetryConfig.from_yaml(self.retry)

    def application(self, app_id: str) -> ApplicationConfig:
        """Configuration for an application; defaults when unconfigured."""
        return self.applications.get(app_id) or ApplicationConfig()


def load_config(
    config_path: str | Path | None = None,
    environment: str | None = None,
) -> SwitchyardConfig:
    """Load configuration from file and environment.

    Priority: env vars > environment overlay > config file > defaults

    Args:
        config_path: YAML file to read. Defaults to ./switchyard.yaml when
            that file exists.
        environment: Name of the overlay under ``environments:`` to apply.
            Falls back to SWITCHYARD_ENVIRONMENT, then the file's
            ``environment`` key.

    Raises:
        ConfigValidationError: If the file cannot be read or the merged
            values are invalid.
    """
    config_data = _read_config_file(config_path)

    overlays = config_data.pop("environments", None) or {}
    if not isinstance(overlays, dict):
        raise ConfigValidationError("'environments' must be a mapping of name to overrides")

    env_name = (
        environment
        or os.environ.get("SWITCHYARD_ENVIRONMENT")
        or config_data.get("environment")
        or DEFAULT_ENVIRONMENT
    )
    if env_name in overlays:
        config_data = _deep_merge(config_data, overlays[env_name] or {})
    elif environment is not None and env_name != DEFAULT_ENVIRONMENT:
        logger.warning(f"No overrides defined for environment '{env_name}'")

    config_data = _deep_merge(config_data, _get_env_overrides())
    config_data["environment"] = env_name

    try:
        return SwitchyardConfig(**config_data)
    except pydantic.ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigValidationError(
            f"Invalid configuration: {'; '.join(problems)}",
            cause=e,
            problems=problems,
        ) from e


def _read_config_file(config_path: str | Path | None) -> dict[str, Any]:
    if config_path is None:
        default = Path(DEFAULT_CONFIG_FILE)
        if not default.exists():
            return {}
        config_path = default

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigValidationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Could not parse {config_path}: {e}", cause=e) from e

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path} must contain a mapping at the top level")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    env_mappings = {
        "SWITCHYARD_DEFAULT_APP": "default_app",
        "SWITCHYARD_LOG_LEVEL": "log_level",
        "SWITCHYARD_JSON_LOGS": ("json_logs", lambda x: x.lower() in ("true", "1", "yes")),
        "SWITCHYARD_SWITCH_HISTORY_LIMIT": ("switch_history_limit", int),
    }

    for env_key, config_key in env_mappings.items():
        value = os.environ.get(env_key)
        if value is not None:
            if isinstance(config_key, tuple):
                key, converter = config_key
                overrides[key] = converter(value)
            else:
                overrides[config_key] = value

    workflow_mappings = {
        "SWITCHYARD_STEP_TIMEOUT": "step_timeout",
        "SWITCHYARD_WORKFLOW_TIMEOUT": "workflow_timeout",
    }
    for env_key, field_name in workflow_mappings.items():
        value = os.environ.get(env_key)
        if value is not None:
            overrides.setdefault("workflow", {})[field_name] = float(value)

    return overrides


_config_cache: dict[str, SwitchyardConfig] = {}


def get_config(
    environment: str | None = None,
    config_path: str | Path | None = None,
) -> SwitchyardConfig:
    """Return the cached configuration for an environment, loading it once."""
    key = environment or os.environ.get("SWITCHYARD_ENVIRONMENT") or DEFAULT_ENVIRONMENT
    if key not in _config_cache:
        _config_cache[key] = load_config(config_path, environment=key)
    return _config_cache[key]


def clear_config_cache() -> None:
    """Forget every cached configuration."""
    _config_cache.clear()
