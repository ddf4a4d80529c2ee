"""Unit tests for config module."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from config import AgentConfig, BrowserConfig, PilotConfig, SessionConfig, load_config
from exceptions import ConfigFileNotFoundError


class TestAgentConfig:
    """Tests for AgentConfig model."""

    def test_default_values(self):
        config = AgentConfig()
        assert config.model == "gemini-2.5-computer-use-preview-10-2025"
        assert config.api_key is None
        assert config.max_retries == 5
        assert config.retry_base_delay == 1.0
        assert config.max_recent_screenshot_turns == 3
        assert config.excluded_predefined_functions == ["drag_and_drop"]

    def test_custom_values(self):
        config = AgentConfig(
            model="custom-model",
            max_retries=2,
            max_recent_screenshot_turns=5,
            excluded_predefined_functions=[],
        )
        assert config.model == "custom-model"
        assert config.max_retries == 2
        assert config.max_recent_screenshot_turns == 5
        assert config.excluded_predefined_functions == []

    def test_max_retries_validation(self):
        with pytest.raises(ValueError):
            AgentConfig(max_retries=0)
        with pytest.raises(ValueError):
            AgentConfig(max_retries=21)

    def test_env_var_loading(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-api-key")
        monkeypatch.setenv("PILOT_MODEL", "env-model")

        config = AgentConfig()
        assert config.api_key == "env-api-key"
        assert config.model == "env-model"

    def test_explicit_value_beats_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-api-key")
        config = AgentConfig(api_key="explicit")
        assert config.api_key == "explicit"


class TestBrowserConfig:
    """Tests for BrowserConfig model."""

    def test_default_values(self):
        config = BrowserConfig()
        assert config.browser_url == "http://localhost:9222"
        assert config.kernel_api_key is None
        assert config.screen_size == (1440, 900)
        assert config.search_engine_url == "https://www.google.com"
        assert config.highlight_mouse is True
        assert config.default_timeout_ms == 60000

    def test_browser_url_trailing_slash_stripped(self):
        config = BrowserConfig(browser_url="http://localhost:9222/")
        assert config.browser_url == "http://localhost:9222"

    def test_viewport_validation(self):
        with pytest.raises(ValueError):
            BrowserConfig(viewport_width=100)  # Too small
        with pytest.raises(ValueError):
            BrowserConfig(viewport_height=100)  # Too small

    def test_env_var_loading(self, monkeypatch):
        monkeypatch.setenv("BROWSER_URL", "http://chrome:9333")
        monkeypatch.setenv("KERNEL_API_KEY", "kernel-key")

        config = BrowserConfig()
        assert config.browser_url == "http://chrome:9333"
        assert config.kernel_api_key == "kernel-key"


class TestSessionConfig:
    """Tests for SessionConfig model."""

    def test_default_values(self):
        config = SessionConfig()
        assert config.logs_folder == Path("./logs")
        assert config.cleanup_delay == 1.0
        assert config.idle_timeout_seconds is None

    def test_path_conversion(self):
        config = SessionConfig(logs_folder="./custom/logs")
        assert isinstance(config.logs_folder, Path)

    def test_idle_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            SessionConfig(idle_timeout_seconds=0)


class TestPilotConfig:
    """Tests for root PilotConfig model."""

    def test_default_nested_configs(self):
        config = PilotConfig()
        assert isinstance(config.agent, AgentConfig)
        assert isinstance(config.browser, BrowserConfig)
        assert isinstance(config.session, SessionConfig)
        assert config.verbose is False

    def test_from_flat_dict(self):
        flat_data = {
            "model": "custom-model",
            "browser_url": "http://chrome:9333",
            "highlight_mouse": False,
            "cleanup_delay": 2.5,
            "verbose": True,
        }
        config = PilotConfig.from_flat_dict(flat_data)

        assert config.agent.model == "custom-model"
        assert config.browser.browser_url == "http://chrome:9333"
        assert config.browser.highlight_mouse is False
        assert config.session.cleanup_delay == 2.5
        assert config.verbose is True


class TestLoadConfig:
    """Tests for load_config function."""

    def test_loads_from_json_file(self, temp_dir: Path):
        config_data = {
            "agent": {
                "model": "test-model",
                "max_retries": 3,
            },
            "browser": {
                "viewport_width": 1280,
            },
        }
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps(config_data))

        config = load_config(config_file)
        assert config.agent.model == "test-model"
        assert config.agent.max_retries == 3
        assert config.browser.viewport_width == 1280

    def test_loads_flat_json(self, temp_dir: Path):
        config_data = {
            "model": "flat-model",
            "browser_url": "http://flat:9222",
        }
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps(config_data))

        config = load_config(config_file)
        assert config.agent.model == "flat-model"
        assert config.browser.browser_url == "http://flat:9222"

    def test_cli_overrides(self, temp_dir: Path):
        config_data = {
            "agent": {"model": "file-model"},
            "browser": {"browser_url": "http://file:9222"},
        }
        config_file = temp_dir / "config.json"
        config_file.write_text(json.dumps(config_data))

        overrides = {
            "model": "cli-model",
            "no_highlight": True,
            "verbose": True,
            "browser_url": None,
        }

        config = load_config(config_file, cli_overrides=overrides)
        assert config.agent.model == "cli-model"
        assert config.browser.highlight_mouse is False
        assert config.browser.browser_url == "http://file:9222"
        assert config.verbose is True

    def test_default_config_path(self, temp_dir: Path, monkeypatch):
        # Change to temp dir where config.json doesn't exist
        monkeypatch.chdir(temp_dir)

        # Should use defaults when no config file exists
        config = load_config()
        assert config.agent.model == "gemini-2.5-computer-use-preview-10-2025"

    def test_missing_explicit_file_raises(self, temp_dir: Path):
        with pytest.raises(ConfigFileNotFoundError):
            load_config(temp_dir / "nope.json")

    def test_yaml_config(self, temp_dir: Path):
        config_yaml = """
agent:
  model: yaml-model
  max_recent_screenshot_turns: 2
session:
  logs_folder: ./trace
"""
        config_file = temp_dir / "config.yaml"
        config_file.write_text(config_yaml)

        config = load_config(config_file)
        assert config.agent.model == "yaml-model"
        assert config.agent.max_recent_screenshot_turns == 2
        assert config.session.logs_folder == Path("./trace")
