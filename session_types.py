"""Typed records shared between the session runtime, registry and observers."""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Union


def now_ms() -> int:
    """Milliseconds since the epoch, the timestamp unit of every event."""
    return int(time.time() * 1000)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    TERMINATED = "terminated"


@dataclass
class LogEntry:
    """A diagnostic line produced inside a session."""

    level: str
    content: str
    timestamp: int = field(default_factory=now_ms)


@dataclass
class AgentIteration:
    """Semantic summary of one agent loop turn."""

    thoughts: str
    commands: List[str] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)


@dataclass
class UserMessage:
    """A follow-up instruction sent by a human."""

    content: str
    timestamp: int = field(default_factory=now_ms)


EventType = Literal["log", "screenshot", "state", "iteration", "user_message"]


@dataclass(frozen=True)
class SessionEvent:
    """One outbound message of a session, as delivered to subscribers."""

    type: EventType
    data: Any

    @classmethod
    def log(cls, entry: LogEntry) -> "SessionEvent":
        return cls("log", entry)

    @classmethod
    def screenshot(cls, image_base64: str) -> "SessionEvent":
        return cls("screenshot", image_base64)

    @classmethod
    def state(cls, value: Union[SessionState, str]) -> "SessionEvent":
        return cls("state", SessionState(value))

    @classmethod
    def iteration(cls, iteration: AgentIteration) -> "SessionEvent":
        return cls("iteration", iteration)

    @classmethod
    def user_message(cls, message: UserMessage) -> "SessionEvent":
        return cls("user_message", message)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form, e.g. for a server-sent-events feed."""
        if isinstance(self.data, SessionState):
            data: Any = self.data.value
        elif isinstance(self.data, (LogEntry, AgentIteration, UserMessage)):
            data = asdict(self.data)
        else:
            data = self.data
        return {"type": self.type, "data": data}
