"""Session registry: owns every live session and the operations callers use on them."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional

from config import PilotConfig
from event_hub import EventHub, Subscription
from exceptions import SessionNotFoundError, SessionUnavailableError
from runtime import ContinueMessage, SessionRuntime, StartMessage, TerminateMessage
from session_types import AgentIteration, LogEntry, SessionEvent, SessionState, UserMessage, now_ms


@dataclass
class SessionData:
    """Everything the registry keeps about one session."""

    id: str
    start_url: str
    state: SessionState = SessionState.INITIALIZING
    created_at: int = field(default_factory=now_ms)
    last_activity: int = field(default_factory=now_ms)
    logs: List[LogEntry] = field(default_factory=list)
    latest_screenshot: Optional[str] = None
    iterations: List[AgentIteration] = field(default_factory=list)
    user_messages: List[UserMessage] = field(default_factory=list)
    runtime: Optional[SessionRuntime] = None
    hub: EventHub = field(default_factory=EventHub)


RuntimeFactory = Callable[..., SessionRuntime]


class SessionManager:
    """Registry of sessions keyed by id.

    Every mutation of a session goes through the record helpers below, which
    also publish the matching event on the session's hub.
    """

    def __init__(
        self,
        config: Optional[PilotConfig] = None,
        runtime_factory: Optional[RuntimeFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PilotConfig()
        self.runtime_factory = runtime_factory or SessionRuntime
        self.logger = logger or logging.getLogger("session_manager")
        self._sessions: Dict[str, SessionData] = {}
        self._cleanup_tasks: set[asyncio.Task] = set()

    @staticmethod
    def generate_session_id() -> str:
        return f"session_{now_ms()}_{uuid.uuid4().hex[:6]}"

    @property
    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ─────────────────────────────────────────────────────────────────────────
    # Caller operations
    # ─────────────────────────────────────────────────────────────────────────

    def create_session(self, start_url: str, instructions: str) -> str:
        """Register a session, spawn its runtime and start the task.

        Must be called from a running event loop.
        """
        if not start_url or not instructions:
            raise ValueError("start_url and instructions are required")

        session_id = self.generate_session_id()
        session = SessionData(id=session_id, start_url=start_url, hub=EventHub(name=session_id, logger=self.logger))
        self._sessions[session_id] = session

        runtime = self.runtime_factory(
            session_id=session_id,
            config=self.config,
            emit=lambda event: self._on_runtime_event(session_id, event),
        )
        session.runtime = runtime
        runtime.post(StartMessage(start_url=start_url, instructions=instructions))
        if runtime.task is not None:
            runtime.task.add_done_callback(lambda task: self._on_runtime_exit(session_id, task))

        self.logger.info(f"Created session {session_id} for {start_url}")
        return session_id

    def send_message(self, session_id: str, text: str) -> None:
        """Forward a follow-up instruction to the session's runtime."""
        if not text:
            raise ValueError("message is required")
        session = self._require(session_id)
        if session.state == SessionState.TERMINATED:
            raise SessionUnavailableError(session_id, reason="Session has been finished")
        if session.runtime is None or not session.runtime.running or session.runtime.terminate_requested:
            raise SessionUnavailableError(session_id)
        self.add_user_message(session_id, UserMessage(content=text))
        session.runtime.post(ContinueMessage(message=text))

    def finish_session(self, session_id: str) -> bool:
        """Terminate the session now and drop it from the registry shortly after."""
        session = self._require(session_id)
        if session.runtime is not None:
            session.runtime.post(TerminateMessage())
        self.update_state(session_id, SessionState.TERMINATED)

        task = asyncio.create_task(self._delete_later(session_id, self.config.session.cleanup_delay))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)
        self.logger.info(f"Finished session {session_id}")
        return True

    def subscribe(self, session_id: str) -> Subscription:
        """Replay the session's events so far, then stream live ones."""
        return self._require(session_id).hub.subscribe()

    # ─────────────────────────────────────────────────────────────────────────
    # Registry operations
    # ─────────────────────────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> Optional[SessionData]:
        return self._sessions.get(session_id)

    def _require(self, session_id: str) -> SessionData:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def update_session(self, session_id: str, **updates: Any) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        allowed = {f.name for f in fields(SessionData)} - {"id", "hub"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        for key, value in updates.items():
            setattr(session, key, value)

    def delete_session(self, session_id: str) -> bool:
        """Remove a session; its runtime finishes on its own and its late events are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        runtime = session.runtime
        if runtime is not None and runtime.running and not runtime.terminate_requested:
            runtime.post(TerminateMessage())
        session.hub.close()
        self.logger.info(f"Deleted session {session_id}")
        return True

    async def _delete_later(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self.delete_session(session_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Record helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _record(self, session_id: str) -> Optional[SessionData]:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity = now_ms()
        return session

    def add_log(self, session_id: str, entry: LogEntry) -> None:
        session = self._record(session_id)
        if session:
            session.logs.append(entry)
            session.hub.publish(SessionEvent.log(entry))

    def add_screenshot(self, session_id: str, image_base64: str) -> None:
        session = self._record(session_id)
        if session:
            # Full screenshot history lives in the hub buffer.
            session.latest_screenshot = image_base64
            session.hub.publish(SessionEvent.screenshot(image_base64))

    def update_state(self, session_id: str, state: SessionState) -> None:
        session = self._record(session_id)
        if session is None:
            return
        state = SessionState(state)
        if session.state == SessionState.TERMINATED and state != SessionState.TERMINATED:
            # Terminated is final; the unit may still report while winding down.
            self.logger.debug(f"Ignoring {state.value} for terminated session {session_id}")
            return
        if session.state == state and state == SessionState.TERMINATED:
            return
        session.state = state
        session.hub.publish(SessionEvent.state(state))

    def add_iteration(self, session_id: str, iteration: AgentIteration) -> None:
        session = self._record(session_id)
        if session:
            session.iterations.append(iteration)
            session.hub.publish(SessionEvent.iteration(iteration))

    def add_user_message(self, session_id: str, message: UserMessage) -> None:
        session = self._record(session_id)
        if session:
            session.user_messages.append(message)
            session.hub.publish(SessionEvent.user_message(message))

    def _on_runtime_event(self, session_id: str, event: SessionEvent) -> None:
        if session_id not in self._sessions:
            return
        if event.type == "log":
            self.add_log(session_id, event.data)
        elif event.type == "screenshot":
            self.add_screenshot(session_id, event.data)
        elif event.type == "state":
            self.update_state(session_id, event.data)
        elif event.type == "iteration":
            self.add_iteration(session_id, event.data)
        elif event.type == "user_message":
            self.add_user_message(session_id, event.data)

    def _on_runtime_exit(self, session_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        session = self._sessions.get(session_id)
        if error is None or session is None:
            return
        self.logger.error(f"Session {session_id} runtime crashed: {error}")
        if session.state != SessionState.TERMINATED:
            self.update_state(session_id, SessionState.ERROR)
            self.add_log(session_id, LogEntry(level="error", content=f"Worker error: {error}"))

    # ─────────────────────────────────────────────────────────────────────────
    # Idle expiry and shutdown
    # ─────────────────────────────────────────────────────────────────────────

    def reap_idle(self, now: Optional[int] = None) -> List[str]:
        """Finish sessions with no activity for longer than the idle timeout."""
        timeout = self.config.session.idle_timeout_seconds
        if timeout is None:
            return []
        now = now if now is not None else now_ms()
        expired = [
            session.id
            for session in self._sessions.values()
            if session.state != SessionState.TERMINATED and now - session.last_activity > timeout * 1000
        ]
        for session_id in expired:
            self.logger.info(f"Session {session_id} idle for more than {timeout:g}s, finishing it")
            self.finish_session(session_id)
        return expired

    async def run_reaper(self) -> None:
        """Periodically reap idle sessions; returns immediately when expiry is disabled."""
        if self.config.session.idle_timeout_seconds is None:
            return
        while True:
            await asyncio.sleep(self.config.session.reaper_interval)
            self.reap_idle()

    async def shutdown(self, grace_period: float = 5.0) -> None:
        """Terminate every session, cancelling units that do not wind down in time."""
        tasks = []
        for session_id, session in list(self._sessions.items()):
            if session.runtime is not None:
                session.runtime.post(TerminateMessage())
                if session.runtime.running:
                    tasks.append(session.runtime.task)
            self.update_state(session_id, SessionState.TERMINATED)

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace_period)
            for task in pending:
                self.logger.warning(f"Cancelling {task.get_name()}")
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for task in list(self._cleanup_tasks):
            task.cancel()
        for session_id in list(self._sessions):
            self.delete_session(session_id)
