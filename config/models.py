"""Pydantic configuration models for the Pilot browser agent."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError


# Load .env file if present
load_dotenv()


def _fill_from_env(data: Any, env_mapping: dict[str, str]) -> Any:
    if not isinstance(data, dict):
        return data
    for field_name, env_var in env_mapping.items():
        if field_name not in data or data[field_name] is None:
            env_value = os.getenv(env_var)
            if env_value:
                data[field_name] = env_value
    return data


class AgentConfig(BaseModel):
    """Reasoning model and agent loop configuration."""

    model: str = Field(
        default="gemini-2.5-computer-use-preview-10-2025",
        description="Gemini model that supports the Computer Use tool",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key for the Gemini API",
    )
    max_retries: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts per inference call before the task fails",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="First backoff delay in seconds, doubled on every retry",
    )
    max_recent_screenshot_turns: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Number of most recent turns that keep their screenshot",
    )
    excluded_predefined_functions: list[str] = Field(
        default_factory=lambda: ["drag_and_drop"],
        description="Predefined Computer Use functions hidden from the model",
    )
    verbose: bool = Field(
        default=True,
        description="Log reasoning and function calls for every iteration",
    )

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Load values from environment variables if not explicitly set."""
        return _fill_from_env(data, {"api_key": "GEMINI_API_KEY", "model": "PILOT_MODEL"})


class BrowserConfig(BaseModel):
    """Browser connection and interaction configuration."""

    browser_url: str = Field(
        default="http://localhost:9222",
        description="CDP address of an already running debuggable browser",
    )
    kernel_api_key: Optional[str] = Field(
        default=None,
        description="Kernel API key; when set a remote browser is provisioned",
    )
    viewport_width: int = Field(
        default=1440,
        ge=320,
        le=3840,
        description="Browser viewport width",
    )
    viewport_height: int = Field(
        default=900,
        ge=240,
        le=2160,
        description="Browser viewport height",
    )
    search_engine_url: str = Field(
        default="https://www.google.com",
        description="Page opened by the search command",
    )
    highlight_mouse: bool = Field(
        default=True,
        description="Draw a marker where the agent clicks, hovers or drags",
    )
    highlight_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Seconds to keep the marker visible before acting",
    )
    default_timeout_ms: float = Field(
        default=60000,
        ge=1000,
        description="Default Playwright timeout for page operations",
    )
    load_timeout_ms: float = Field(
        default=60000,
        ge=0,
        description="How long to wait for the page load signal before moving on",
    )
    settle_delay: float = Field(
        default=0.5,
        ge=0.0,
        le=10.0,
        description="Fixed delay before capturing state, for async rendering",
    )
    wait_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=60.0,
        description="Duration of the wait_5_seconds command",
    )

    @field_validator("browser_url")
    @classmethod
    def validate_browser_url(cls, v: str) -> str:
        """Ensure browser_url doesn't have trailing slash."""
        return v.rstrip("/")

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Load values from environment variables if not explicitly set."""
        return _fill_from_env(data, {"browser_url": "BROWSER_URL", "kernel_api_key": "KERNEL_API_KEY"})

    @property
    def screen_size(self) -> tuple[int, int]:
        return self.viewport_width, self.viewport_height


class SessionConfig(BaseModel):
    """Session lifecycle and trace file configuration."""

    logs_folder: Path = Field(
        default=Path("./logs"),
        description="Directory for per-session trace files",
    )
    write_trace_files: bool = Field(
        default=True,
        description="Write one trace file per session",
    )
    cleanup_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Grace delay before a finished session is purged",
    )
    idle_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Finish sessions idle for longer than this (disabled when unset)",
    )
    reaper_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between idle-session sweeps",
    )

    @field_validator("logs_folder", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class PilotConfig(BaseModel):
    """Root configuration model combining all config sections."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @classmethod
    def from_flat_dict(cls, data: dict[str, Any]) -> "PilotConfig":
        """Create config from a flat dictionary (legacy format compatibility)."""
        sections = {
            "agent": set(AgentConfig.model_fields),
            "browser": set(BrowserConfig.model_fields),
            "session": set(SessionConfig.model_fields),
        }
        nested: dict[str, Any] = {name: {} for name in sections}

        for key, value in data.items():
            if key == "verbose":
                nested["verbose"] = value
                continue
            for section, keys in sections.items():
                if key in keys:
                    nested[section][key] = value
                    break

        return cls.model_validate(nested)


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> PilotConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = Path("config.json")
    elif not Path(config_path).exists():
        raise ConfigFileNotFoundError(str(config_path))
    config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix in {".yaml", ".yml"}:
                config_data = yaml.safe_load(f) or {}
            else:
                config_data = json.load(f)

    # Check if it's flat or nested format
    is_flat = not any(key in config_data for key in ("agent", "browser", "session")) and bool(config_data)

    if is_flat:
        config = PilotConfig.from_flat_dict(config_data)
    else:
        config = PilotConfig.model_validate(config_data)

    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = PilotConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "model": ("agent", "model"),
        "browser_url": ("browser", "browser_url"),
        "no_highlight": ("browser", "highlight_mouse"),  # inverted
        "logs_folder": ("session", "logs_folder"),
        "verbose": ("verbose", None),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "no_highlight":
            if value:
                config_dict["browser"]["highlight_mouse"] = False
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
