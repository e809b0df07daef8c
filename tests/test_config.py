"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from switchyard.config import (
    SwitchyardConfig,
    clear_config_cache,
    get_config,
    load_config,
)
from switchyard.errors import BackoffStrategy, ConfigValidationError

CONFIG_YAML = """
default_app: shop
applications:
  shop:
    base_url: http://localhost:3000/
  admin:
    base_url: http://localhost:3001
    login_path: /admin/login
workflow:
  step_timeout: 20
  continue_on_error: true
retry:
  max_attempts: 4
  backoff: linear
  initial_delay: 0.5
environments:
  staging:
    applications:
      shop:
        base_url: https://shop.staging.example.com
    workflow:
      step_timeout: 60
"""


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for key in (
        "SWITCHYARD_ENVIRONMENT",
        "SWITCHYARD_DEFAULT_APP",
        "SWITCHYARD_LOG_LEVEL",
        "SWITCHYARD_JSON_LOGS",
        "SWITCHYARD_SWITCH_HISTORY_LIMIT",
        "SWITCHYARD_STEP_TIMEOUT",
        "SWITCHYARD_WORKFLOW_TIMEOUT",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "switchyard.yaml"
    path.write_text(CONFIG_YAML)
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self) -> None:
        config = load_config()

        assert config.environment == "default"
        assert config.applications == {}
        assert config.workflow.step_timeout == 30.0
        assert config.retry_config is None

    def test_reads_yaml(self, config_file: Path) -> None:
        config = load_config(config_file)

        assert config.default_app == "shop"
        assert config.applications["shop"].base_url == "http://localhost:3000"
        assert config.application("admin").login_path == "/admin/login"
        assert config.workflow.step_timeout == 20
        assert config.workflow.continue_on_error

    def test_default_file_in_cwd(self, config_file: Path) -> None:
        assert load_config().default_app == "shop"

    def test_environment_overlay(self, config_file: Path) -> None:
        config = load_config(config_file, environment="staging")

        assert config.environment == "staging"
        assert config.applications["shop"].base_url == "https://shop.staging.example.com"
        assert config.applications["admin"].base_url == "http://localhost:3001"
        assert config.workflow.step_timeout == 60
        assert config.workflow.continue_on_error

    def test_environment_from_env_var(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SWITCHYARD_ENVIRONMENT", "staging")
        assert load_config(config_file).environment == "staging"

    def test_env_vars_win(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SWITCHYARD_DEFAULT_APP", "admin")
        monkeypatch.setenv("SWITCHYARD_LOG_LEVEL", "debug")
        monkeypatch.setenv("SWITCHYARD_JSON_LOGS", "true")
        monkeypatch.setenv("SWITCHYARD_STEP_TIMEOUT", "5")

        config = load_config(config_file, environment="staging")

        assert config.default_app == "admin"
        assert config.log_level == "DEBUG"
        assert config.json_logs
        assert config.workflow.step_timeout == 5.0
        assert config.workflow.continue_on_error

    def test_retry_config_parsed(self, config_file: Path) -> None:
        retry = load_config(config_file).retry_config

        assert retry is not None
        assert retry.max_attempts == 4
        assert retry.backoff_strategy == BackoffStrategy.LINEAR
        assert retry.base_delay == 0.5

    def test_application_defaults_when_unconfigured(self) -> None:
        app = SwitchyardConfig().application("unknown")
        assert app.base_url is None
        assert app.readiness_state == "load"


class TestValidation:
    """Tests for configuration errors."""

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigValidationError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("applications: [unclosed")
        with pytest.raises(ConfigValidationError, match="Could not parse"):
            load_config(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_config(path)

    @pytest.mark.parametrize(
        "content",
        [
            "applications:\n  shop:\n    base_url: localhost:3000\n",
            "workflow:\n  step_timeout: 0\n",
            "log_level: LOUD\n",
            "default_app: missing\napplications:\n  shop:\n    base_url: http://x.test\n",
            "retry:\n  backoff: sideways\n",
            "switch_history_limit: 0\n",
        ],
    )
    def test_invalid_values(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "invalid.yaml"
        path.write_text(content)

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.context.extra["problems"]
        assert not exc_info.value.recoverable


class TestConfigCache:
    """Tests for get_config."""

    def test_cached_per_environment(self, config_file: Path) -> None:
        default = get_config(config_path=config_file)
        staging = get_config("staging", config_path=config_file)

        assert get_config(config_path=config_file) is default
        assert get_config("staging") is staging
        assert default is not staging

    def test_clear_cache(self, config_file: Path) -> None:
        first = get_config(config_path=config_file)
        clear_config_cache()
        assert get_config(config_path=config_file) is not first
