"""Custom exception hierarchy for the Pilot browser agent."""
from __future__ import annotations

from typing import Any, Optional


class PilotError(Exception):
    """Base exception for all Pilot-related errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Browser-related exceptions
class BrowserError(PilotError):
    """Base exception for browser automation errors."""

    pass


class BrowserConnectionError(BrowserError, ConnectionError):
    """Raised when the browser is unreachable or remote provisioning fails."""

    def __init__(self, message: str, address: Optional[str] = None):
        details = {"address": address} if address else {}
        super().__init__(message, details)
        self.address = address


class BrowserNotStartedError(BrowserError):
    """Raised when attempting to use browser before starting."""

    def __init__(self):
        super().__init__("Browser has not been started. Call start() first.")


# LLM-related exceptions
class LLMError(PilotError):
    """Base exception for reasoning endpoint errors."""

    pass


class InferenceError(LLMError):
    """Raised when the reasoning endpoint keeps failing after all retries."""

    def __init__(self, message: str, attempts: Optional[int] = None):
        details = {"attempts": attempts} if attempts else {}
        super().__init__(message, details)
        self.attempts = attempts


class EmptyResponseError(LLMError):
    """Raised when the reasoning endpoint returns no candidates."""

    def __init__(self, message: str = "Response has no candidates"):
        super().__init__(message)


# Command exceptions
class CommandError(PilotError):
    """Base exception for model-issued command errors."""

    pass


class UnsupportedCommandError(CommandError):
    """Raised when the model asks for a command the executor does not know."""

    def __init__(self, name: str):
        super().__init__(f"Unsupported function: {name}", {"name": name})
        self.name = name


class CommandValidationError(CommandError):
    """Raised when a command's arguments do not match its schema."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid arguments for {name}: {reason}", {"name": name})
        self.name = name
        self.reason = reason


# Session exceptions
class SessionError(PilotError):
    """Base exception for session registry errors."""

    pass


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown to the registry."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class SessionUnavailableError(SessionError):
    """Raised when a session has no live execution unit to talk to."""

    def __init__(self, session_id: str, reason: str = "Worker not available"):
        super().__init__(reason, {"session_id": session_id})
        self.session_id = session_id


# Configuration exceptions
class ConfigurationError(PilotError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path
