"""Gemini Computer Use agent loop driving a single browser session."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from google import genai
from google.genai import types
from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_exponential

from browser import BrowserController
from config import AgentConfig
from conversation import (
    CommandRequestPart,
    CommandResultPart,
    ConversationEntry,
    EnvironmentState,
    count_images,
    from_genai_content,
    prune_screenshots,
    result_from_state,
    to_genai_contents,
)
from exceptions import EmptyResponseError, InferenceError, PilotError
from executor import ActionExecutor, CommandResult
from session_types import AgentIteration


class AgentState(str, Enum):
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    TERMINATED = "terminated"
    FAILED = "failed"


class IterationStatus(str, Enum):
    COMPLETE = "COMPLETE"
    CONTINUE = "CONTINUE"


class SafetyDecision(str, Enum):
    CONTINUE = "CONTINUE"
    TERMINATE = "TERMINATE"


SafetyResolver = Callable[[dict[str, Any]], Awaitable[SafetyDecision]]
ContinuationResolver = Callable[[], Awaitable[Optional[str]]]


class AutoConfirmSafetyResolver:
    """Confirms every safety prompt; swap in a human-backed resolver to really ask."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("pilot_agent")

    async def __call__(self, safety: dict[str, Any]) -> SafetyDecision:
        decision = safety.get("decision")
        if decision != "require_confirmation":
            raise PilotError(f"Unknown safety decision: {decision}", {"safety_decision": safety})
        self.logger.warning("Safety service requires explicit confirmation!")
        if safety.get("explanation"):
            self.logger.warning(str(safety["explanation"]))
        self.logger.warning("Auto-confirming the action")
        return SafetyDecision.CONTINUE


def describe_call(call: CommandRequestPart) -> str:
    args = ", ".join(f"{k}={v!r}" for k, v in call.args.items() if k != "safety_decision")
    return f"{call.name}({args})"


class BrowserAgent:
    """Alternates model inference and command execution until the task is done."""

    def __init__(
        self,
        browser: BrowserController,
        query: str,
        config: Optional[AgentConfig] = None,
        client: Optional[genai.Client] = None,
        executor: Optional[ActionExecutor] = None,
        safety_resolver: Optional[SafetyResolver] = None,
        logger: Optional[logging.Logger] = None,
        on_iteration: Optional[Callable[[AgentIteration], None]] = None,
        on_screenshot: Optional[Callable[[EnvironmentState], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.browser = browser
        self.query = query
        self.config = config or AgentConfig()
        self.logger = logger or logging.getLogger("pilot_agent")
        self.client = client or genai.Client(api_key=self.config.api_key)
        self.executor = executor or ActionExecutor(browser, logger=self.logger)
        self.safety_resolver = safety_resolver or AutoConfirmSafetyResolver(self.logger)
        self.on_iteration = on_iteration
        self.on_screenshot = on_screenshot
        self._sleep = sleep

        self._history: list[ConversationEntry] = [ConversationEntry.user_text(query)]
        self._generate_content_config = types.GenerateContentConfig(
            tools=[
                types.Tool(
                    computer_use=types.ComputerUse(
                        environment=types.Environment.ENVIRONMENT_BROWSER,
                        excluded_predefined_functions=list(self.config.excluded_predefined_functions),
                    )
                )
            ],
        )

        self.state = AgentState.RUNNING
        self.final_reasoning: Optional[str] = None
        self.error: Optional[Exception] = None

    @property
    def history(self) -> tuple[ConversationEntry, ...]:
        return tuple(self._history)

    def add_user_message(self, text: str) -> None:
        """Append a fresh user instruction to the conversation."""
        self._history.append(ConversationEntry.user_text(text))

    # ─────────────────────────────────────────────────────────────────────────
    # Inference
    # ─────────────────────────────────────────────────────────────────────────

    def _log_retry(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        self.logger.warning(
            f"Generating content failed on attempt {retry_state.attempt_number}. "
            f"Retrying in {delay:g} seconds..."
        )

    async def get_model_response(self) -> types.GenerateContentResponse:
        """Call the model with exponential backoff; raises InferenceError once retries run out."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.retry_base_delay, exp_base=2),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        return await self.client.aio.models.generate_content(
                            model=self.config.model,
                            contents=to_genai_contents(self._history),
                            config=self._generate_content_config,
                        )
                    except Exception as e:
                        self.logger.error(f"Model call failed: {e}")
                        raise
        except RetryError as e:
            cause = e.last_attempt.exception()
            self.logger.error(f"Generating content failed after {self.config.max_retries} attempts.")
            raise InferenceError(
                f"Generating content failed: {cause}", attempts=self.config.max_retries
            ) from cause
        raise InferenceError("Unexpected error in get_model_response")

    # ─────────────────────────────────────────────────────────────────────────
    # One iteration
    # ─────────────────────────────────────────────────────────────────────────

    async def run_one_iteration(self) -> IterationStatus:
        if self.config.verbose:
            self.logger.info("Generating response from Gemini Computer Use...")
        response = await self.get_model_response()

        if not response.candidates:
            self.logger.error("Response has no candidates!")
            raise EmptyResponseError()

        candidate = response.candidates[0]
        model_entry = from_genai_content(candidate.content) if candidate.content else None
        if model_entry is not None and model_entry.parts:
            self._history.append(model_entry)

        reasoning = model_entry.text if model_entry else None
        function_calls = model_entry.command_requests if model_entry else []

        if not function_calls:
            if candidate.finish_reason == types.FinishReason.MALFORMED_FUNCTION_CALL:
                self.logger.warning("Model produced a malformed function call, asking again...")
                return IterationStatus.CONTINUE
            self.logger.info(f"Agent Loop Complete: {reasoning}")
            self.final_reasoning = reasoning
            return IterationStatus.COMPLETE

        call_descriptions = [describe_call(call) for call in function_calls]
        if self.config.verbose:
            self.logger.info(f"Reasoning: {reasoning or '(none)'}")
            self.logger.info("Function Call(s): " + "; ".join(call_descriptions))
        self._emit_iteration(AgentIteration(thoughts=reasoning or "", commands=call_descriptions))

        results: list[CommandResultPart] = []
        status = IterationStatus.CONTINUE
        for index, call in enumerate(function_calls):
            extra_fields: dict[str, Any] = {}
            try:
                safety = call.args.get("safety_decision")
                if safety:
                    decision = await self.safety_resolver(safety)
                    if decision == SafetyDecision.TERMINATE:
                        self.logger.warning("Terminating agent loop")
                        results.extend(self._unexecuted(function_calls[index:], "Action denied by the user."))
                        self.final_reasoning = reasoning
                        status = IterationStatus.COMPLETE
                        break
                    extra_fields["safety_acknowledgement"] = "true"

                if self.config.verbose:
                    self.logger.info(f"Sending command to Computer: {call.name}")
                result = await self.executor.execute_call(call.name, call.args)
            except Exception as e:
                self.logger.error(f"Error while executing {call.name}: {e}. Attempting to recover...")
                results.append(CommandResultPart(name=call.name, response={"error": str(e)}))
                results.extend(
                    self._unexecuted(function_calls[index + 1:], "Skipped after an earlier command failed.")
                )
                self._emit_iteration(AgentIteration(thoughts=f"Error: {e}. Attempting to recover...", commands=[]))
                break
            results.append(self._wrap_result(call.name, result, extra_fields))

        self._history.append(ConversationEntry.command_results(results))
        # Only keep screenshots in the few most recent turns.
        self._history = prune_screenshots(self._history, self.config.max_recent_screenshot_turns)
        self.logger.debug(f"History has {len(self._history)} turns, {count_images(self._history)} screenshots")
        return status

    def _wrap_result(self, name: str, result: CommandResult, extra_fields: dict[str, Any]) -> CommandResultPart:
        if isinstance(result, EnvironmentState):
            if self.on_screenshot:
                self.on_screenshot(result)
            return result_from_state(name, result, extra_fields)
        return CommandResultPart(name=name, response={**result, **extra_fields})

    def _unexecuted(self, calls: list[CommandRequestPart], reason: str) -> list[CommandResultPart]:
        """Results for commands that never ran, so every request still gets an answer."""
        return [CommandResultPart(name=call.name, response={"error": reason}) for call in calls]

    def _emit_iteration(self, iteration: AgentIteration) -> None:
        if self.on_iteration:
            self.on_iteration(iteration)

    # ─────────────────────────────────────────────────────────────────────────
    # Main loop
    # ─────────────────────────────────────────────────────────────────────────

    async def agent_loop(
        self,
        continuation: Optional[ContinuationResolver] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> AgentState:
        """Iterate until the model is done and no new instruction arrives.

        On completion the loop suspends in AWAITING_INPUT and asks
        ``continuation`` for the next instruction; ``None`` ends the loop.
        """
        self.state = AgentState.RUNNING
        while not (should_stop and should_stop()):
            try:
                status = await self.run_one_iteration()
            except Exception as e:
                self.state = AgentState.FAILED
                self.error = e
                self.logger.error(f"Agent loop failed: {e}")
                raise

            if status == IterationStatus.CONTINUE:
                continue

            self.state = AgentState.AWAITING_INPUT
            if continuation is None:
                break
            new_instructions = await continuation()
            if new_instructions is None:
                break
            self.add_user_message(new_instructions)
            self.state = AgentState.RUNNING

        self.state = AgentState.TERMINATED
        return self.state
