"""Translate model commands into browser controller calls."""
from __future__ import annotations

import logging
import math
from typing import Any, Awaitable, Callable, Optional, Union

from browser import BrowserController
from commands import (
    COMMAND_TYPES,
    NORMALIZED_MAX,
    ClickAt,
    Command,
    DragAndDrop,
    GoBack,
    GoForward,
    HoverAt,
    KeyCombination,
    Navigate,
    OpenWebBrowser,
    ScrollAt,
    ScrollDocument,
    Search,
    TypeTextAt,
    Wait5Seconds,
    parse_command,
)
from conversation import EnvironmentState
from exceptions import ConfigurationError, UnsupportedCommandError

# Built-in commands return an EnvironmentState; custom functions may return plain data.
CommandResult = Union[EnvironmentState, dict[str, Any]]


def denormalize(value: float, dimension: int) -> int:
    """Map a 0-1000 model coordinate onto a pixel axis of ``dimension`` pixels."""
    return math.floor(value / NORMALIZED_MAX * dimension)


class ActionExecutor:
    """Stateless mapping from commands to one browser call each.

    Bound to a single BrowserController, so one executor per session.
    """

    def __init__(self, browser: BrowserController, logger: Optional[logging.Logger] = None):
        self.browser = browser
        self.logger = logger or logging.getLogger("executor")
        self._handlers: dict[type[Command], Callable[[Any], Awaitable[CommandResult]]] = {
            OpenWebBrowser: self._open_web_browser,
            ClickAt: self._click_at,
            HoverAt: self._hover_at,
            TypeTextAt: self._type_text_at,
            ScrollDocument: self._scroll_document,
            ScrollAt: self._scroll_at,
            Wait5Seconds: self._wait_5_seconds,
            GoBack: self._go_back,
            GoForward: self._go_forward,
            Search: self._search,
            Navigate: self._navigate,
            KeyCombination: self._key_combination,
            DragAndDrop: self._drag_and_drop,
        }
        missing = set(COMMAND_TYPES.values()) - set(self._handlers)
        if missing:
            names = sorted(cls.name for cls in missing)
            raise ConfigurationError(f"No executor handler for commands: {names}")

    def denormalize_x(self, x: float) -> int:
        return denormalize(x, self.browser.screen_size()[0])

    def denormalize_y(self, y: float) -> int:
        return denormalize(y, self.browser.screen_size()[1])

    async def execute_call(self, name: str, args: Optional[dict[str, Any]] = None) -> CommandResult:
        """Parse a raw function call and execute it."""
        return await self.execute(parse_command(name, args))

    async def execute(self, command: Command) -> CommandResult:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise UnsupportedCommandError(command.name)
        self.logger.debug(f"Executing {command.describe()}")
        return await handler(command)

    async def _open_web_browser(self, command: OpenWebBrowser) -> CommandResult:
        return await self.browser.open_web_browser()

    async def _click_at(self, command: ClickAt) -> CommandResult:
        return await self.browser.click_at(self.denormalize_x(command.x), self.denormalize_y(command.y))

    async def _hover_at(self, command: HoverAt) -> CommandResult:
        return await self.browser.hover_at(self.denormalize_x(command.x), self.denormalize_y(command.y))

    async def _type_text_at(self, command: TypeTextAt) -> CommandResult:
        return await self.browser.type_text_at(
            self.denormalize_x(command.x),
            self.denormalize_y(command.y),
            command.text,
            press_enter=command.press_enter,
            clear_before_typing=command.clear_before_typing,
        )

    async def _scroll_document(self, command: ScrollDocument) -> CommandResult:
        return await self.browser.scroll_document(command.direction)

    async def _scroll_at(self, command: ScrollAt) -> CommandResult:
        if command.direction in ("up", "down"):
            magnitude = self.denormalize_y(command.magnitude)
        else:
            magnitude = self.denormalize_x(command.magnitude)
        return await self.browser.scroll_at(
            self.denormalize_x(command.x),
            self.denormalize_y(command.y),
            command.direction,
            magnitude,
        )

    async def _wait_5_seconds(self, command: Wait5Seconds) -> CommandResult:
        return await self.browser.wait_5_seconds()

    async def _go_back(self, command: GoBack) -> CommandResult:
        return await self.browser.go_back()

    async def _go_forward(self, command: GoForward) -> CommandResult:
        return await self.browser.go_forward()

    async def _search(self, command: Search) -> CommandResult:
        return await self.browser.search()

    async def _navigate(self, command: Navigate) -> CommandResult:
        return await self.browser.navigate(command.url)

    async def _key_combination(self, command: KeyCombination) -> CommandResult:
        return await self.browser.key_combination(command.key_list())

    async def _drag_and_drop(self, command: DragAndDrop) -> CommandResult:
        return await self.browser.drag_and_drop(
            self.denormalize_x(command.x),
            self.denormalize_y(command.y),
            self.denormalize_x(command.destination_x),
            self.denormalize_y(command.destination_y),
        )
