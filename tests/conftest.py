"""Pytest fixtures for Pilot unit tests."""
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import types

from config import AgentConfig, BrowserConfig, PilotConfig, SessionConfig
from conversation import EnvironmentState

BROWSER_ACTIONS = [
    "open_web_browser",
    "click_at",
    "hover_at",
    "type_text_at",
    "scroll_document",
    "scroll_at",
    "wait_5_seconds",
    "go_back",
    "go_forward",
    "search",
    "navigate",
    "key_combination",
    "drag_and_drop",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer credentials out of config defaults."""
    for name in ("GEMINI_API_KEY", "PILOT_MODEL", "KERNEL_API_KEY", "BROWSER_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def environment_state() -> EnvironmentState:
    return EnvironmentState(screenshot=b"\x89PNG fake screenshot", url="https://example.com/")


@pytest.fixture
def make_mock_browser(environment_state: EnvironmentState) -> Callable[[], MagicMock]:
    """Factory for mock BrowserControllers with a 1440x900 viewport."""

    def build() -> MagicMock:
        browser = MagicMock()
        browser.start = AsyncMock(return_value=browser)
        browser.stop = AsyncMock()
        browser.screen_size = MagicMock(return_value=(1440, 900))
        browser.current_state = AsyncMock(return_value=environment_state)
        for action in BROWSER_ACTIONS:
            setattr(browser, action, AsyncMock(return_value=environment_state))
        return browser

    return build


@pytest.fixture
def mock_browser(make_mock_browser) -> MagicMock:
    return make_mock_browser()


@pytest.fixture
def agent_config() -> AgentConfig:
    """Agent config with no backoff delay so retry tests run instantly."""
    return AgentConfig(api_key="test-key", retry_base_delay=0.0, verbose=False)


@pytest.fixture
def pilot_config(temp_dir: Path, agent_config: AgentConfig) -> PilotConfig:
    return PilotConfig(
        agent=agent_config,
        browser=BrowserConfig(highlight_mouse=False, settle_delay=0.0),
        session=SessionConfig(logs_folder=temp_dir / "logs", cleanup_delay=0.0),
    )


@pytest.fixture
def mock_genai_client() -> MagicMock:
    """Gemini client whose generate_content replies are set per test."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    return client


@pytest.fixture
def text_part() -> Callable[[str], types.Part]:
    def build(text: str) -> types.Part:
        return types.Part(text=text)

    return build


@pytest.fixture
def call_part() -> Callable[..., types.Part]:
    def build(name: str, **args: Any) -> types.Part:
        return types.Part(function_call=types.FunctionCall(name=name, args=args))

    return build


@pytest.fixture
def make_response() -> Callable[..., types.GenerateContentResponse]:
    """Build a single-candidate model reply from parts."""

    def build(*parts: types.Part, finish_reason: types.FinishReason = types.FinishReason.STOP):
        return types.GenerateContentResponse(
            candidates=[
                types.Candidate(
                    content=types.Content(role="model", parts=list(parts)),
                    finish_reason=finish_reason,
                )
            ]
        )

    return build
