"""Session runtime: one asyncio task per session running the agent loop."""
from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from agent import BrowserAgent
from browser import BrowserController
from config import PilotConfig
from conversation import EnvironmentState
from session_types import AgentIteration, SessionEvent, SessionState
from trace_log import close_session_logger, create_session_logger, open_trace_handler


@dataclass(frozen=True)
class StartMessage:
    start_url: str
    instructions: str


@dataclass(frozen=True)
class ContinueMessage:
    message: str


@dataclass(frozen=True)
class TerminateMessage:
    pass


InboundMessage = Union[StartMessage, ContinueMessage, TerminateMessage]
EmitFn = Callable[[SessionEvent], None]


class SessionRuntime:
    """Isolated execution unit for one session.

    Talks to the outside only through ``post`` (inbound messages) and the
    ``emit`` callback (outbound events). Nothing raised inside the unit
    escapes it: failures become an ``error`` state plus a log entry.
    """

    def __init__(
        self,
        session_id: str,
        config: PilotConfig,
        emit: EmitFn,
        browser_factory: Optional[Callable[..., BrowserController]] = None,
        agent_factory: Optional[Callable[..., BrowserAgent]] = None,
    ):
        self.session_id = session_id
        self.config = config
        self._emit = emit
        self.browser_factory = browser_factory or BrowserController
        self.agent_factory = agent_factory or BrowserAgent
        self.logger = create_session_logger(session_id, lambda entry: self._emit(SessionEvent.log(entry)))

        self.browser: Optional[BrowserController] = None
        self.agent: Optional[BrowserAgent] = None
        self.error: Optional[Exception] = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._trace_handler: Optional[logging.Handler] = None
        self._terminate_requested = False
        self._released = False

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def terminate_requested(self) -> bool:
        return self._terminate_requested

    def post(self, message: InboundMessage) -> None:
        """Deliver an inbound message; never blocks."""
        if isinstance(message, StartMessage):
            if self._task is not None:
                self.logger.warning("Session already started, ignoring start message")
                return
            self._task = asyncio.create_task(self._run(message), name=f"session-{self.session_id}")
            return
        if isinstance(message, TerminateMessage):
            # Checked between iterations; an in-flight call finishes first.
            self._terminate_requested = True
        self._inbox.put_nowait(message)

    async def wait(self) -> None:
        """Wait for the unit to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    # ─────────────────────────────────────────────────────────────────────────
    # Outbound events
    # ─────────────────────────────────────────────────────────────────────────

    def _emit_state(self, state: SessionState) -> None:
        self._emit(SessionEvent.state(state))

    def _on_iteration(self, iteration: AgentIteration) -> None:
        self._emit(SessionEvent.iteration(iteration))

    def _on_screenshot(self, state: EnvironmentState) -> None:
        self._emit(SessionEvent.screenshot(base64.b64encode(state.screenshot).decode("ascii")))

    # ─────────────────────────────────────────────────────────────────────────
    # Unit body
    # ─────────────────────────────────────────────────────────────────────────

    async def _run(self, start: StartMessage) -> None:
        try:
            if self.config.session.write_trace_files:
                self._trace_handler = open_trace_handler(self.config.session.logs_folder, start.start_url, self.logger)
                if self._trace_handler is not None:
                    self.logger.addHandler(self._trace_handler)
            self._emit_state(SessionState.RUNNING)
            try:
                await self._drive(start)
            except Exception as e:
                self.error = e
                self.logger.error(f"Error in agent execution: {e}")
                self._emit_state(SessionState.ERROR)
                # Browser stays open for inspection until the session is terminated.
                await self._wait_for_terminate()
                self._emit_state(SessionState.TERMINATED)
        finally:
            await self._teardown()

    async def _drive(self, start: StartMessage) -> None:
        self.browser = self.browser_factory(
            config=self.config.browser,
            initial_url=start.start_url,
            logger=self.logger,
        )
        await self.browser.start()

        self.agent = self.agent_factory(
            browser=self.browser,
            query=start.instructions,
            config=self.config.agent,
            logger=self.logger,
            on_iteration=self._on_iteration,
            on_screenshot=self._on_screenshot,
        )
        self.logger.info("Starting browser agent...")
        await self.agent.agent_loop(
            continuation=self._next_instruction,
            should_stop=lambda: self._terminate_requested,
        )
        if self._terminate_requested:
            self._emit_state(SessionState.TERMINATED)
        else:
            self._emit_state(SessionState.COMPLETED)

    async def _next_instruction(self) -> Optional[str]:
        """Continuation resolver: report completion and wait for a follow-up or terminate."""
        if self._terminate_requested:
            return None
        self._emit_state(SessionState.COMPLETED)
        if self.agent is not None and self.agent.final_reasoning:
            self.logger.info("Final Result:")
            self.logger.info(self.agent.final_reasoning)

        while not self._terminate_requested:
            message = await self._inbox.get()
            if isinstance(message, TerminateMessage):
                break
            if isinstance(message, ContinueMessage) and message.message:
                self._emit_state(SessionState.RUNNING)
                return message.message
        return None

    async def _wait_for_terminate(self) -> None:
        while not self._terminate_requested:
            message = await self._inbox.get()
            if isinstance(message, ContinueMessage):
                self.logger.warning("Session is in error state, ignoring message")

    async def _teardown(self) -> None:
        """Release the browser exactly once and close the trace file."""
        if not self._released:
            self._released = True
            if self.browser is not None:
                try:
                    await self.browser.stop()
                    self.logger.info("Browser closed.")
                except Exception as e:
                    self.logger.error(f"Failed to release browser: {e}")
        close_session_logger(self.logger)
        self._trace_handler = None

