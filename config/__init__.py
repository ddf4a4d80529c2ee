"""Configuration module for the Pilot browser agent."""
from config.models import (
    AgentConfig,
    BrowserConfig,
    SessionConfig,
    PilotConfig,
    load_config,
)

__all__ = [
    "AgentConfig",
    "BrowserConfig",
    "SessionConfig",
    "PilotConfig",
    "load_config",
]
