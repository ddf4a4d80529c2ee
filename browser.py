"""Browser controller for the Pilot agent: one CDP-attached page per session."""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Literal, Optional

from kernel import AsyncKernel
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from config import BrowserConfig
from conversation import EnvironmentState
from exceptions import BrowserConnectionError, BrowserNotStartedError

ScrollDirection = Literal["up", "down", "left", "right"]

# Model key names to Playwright key names.
PLAYWRIGHT_KEY_MAP: dict[str, str] = {
    "backspace": "Backspace",
    "tab": "Tab",
    "return": "Enter",
    "enter": "Enter",
    "shift": "Shift",
    "control": "ControlOrMeta",
    "alt": "Alt",
    "escape": "Escape",
    "space": "Space",
    "pageup": "PageUp",
    "pagedown": "PageDown",
    "end": "End",
    "home": "Home",
    "left": "ArrowLeft",
    "up": "ArrowUp",
    "right": "ArrowRight",
    "down": "ArrowDown",
    "insert": "Insert",
    "delete": "Delete",
    "semicolon": ";",
    "equals": "=",
    "multiply": "Multiply",
    "add": "Add",
    "separator": "Separator",
    "subtract": "Subtract",
    "decimal": "Decimal",
    "divide": "Divide",
    "f1": "F1",
    "f2": "F2",
    "f3": "F3",
    "f4": "F4",
    "f5": "F5",
    "f6": "F6",
    "f7": "F7",
    "f8": "F8",
    "f9": "F9",
    "f10": "F10",
    "f11": "F11",
    "f12": "F12",
    "command": "Meta",
}

MARKER_ELEMENT_ID = "pilot-click-marker"


def normalize_keys(keys: list[str]) -> list[str]:
    return [PLAYWRIGHT_KEY_MAP.get(k.lower(), k) for k in keys]


def normalize_url(url: str) -> str:
    if not url.startswith(("http://", "https://")):
        return "https://" + url
    return url


class BrowserController:
    """Owns one live browser connection, one isolated context and one page."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        initial_url: str = "https://www.google.com",
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or BrowserConfig()
        self.initial_url = initial_url
        self.logger = logger or logging.getLogger("browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._kernel: Optional[AsyncKernel] = None
        self._kernel_session_id: Optional[str] = None
        self._stopped = False

    def _ensure_started(self) -> Page:
        """Raise if browser not started."""
        if self.page is None:
            raise BrowserNotStartedError()
        return self.page

    async def start(self) -> "BrowserController":
        """Connect to the browser and open the initial page."""
        try:
            self._playwright = await async_playwright().start()
            if self.config.kernel_api_key:
                cdp_url = await self._provision_remote_browser()
                self.logger.info(f"Connecting to Kernel browser at {cdp_url}...")
                self.browser = await self._playwright.chromium.connect_over_cdp(cdp_url)
                self.logger.info("Connected to Kernel browser instance.")
            else:
                self.logger.info(f"Connecting to existing Chrome instance at {self.config.browser_url}...")
                self.browser = await self._playwright.chromium.connect_over_cdp(self.config.browser_url)
                self.logger.info("Connected to existing Chrome instance.")

            # Fresh context per session: own cookies, storage and auth state.
            self.context = await self.browser.new_context()
            self.page = await self.context.new_page()
            await self.page.set_viewport_size(
                {"width": self.config.viewport_width, "height": self.config.viewport_height}
            )
            self.page.set_default_timeout(self.config.default_timeout_ms)
            await self.page.goto(self.initial_url)
            self.context.on("page", self._handle_new_page)
        except BrowserConnectionError:
            raise
        except Exception as e:
            address = None if self.config.kernel_api_key else self.config.browser_url
            raise BrowserConnectionError(f"Failed to start browser: {e}", address=address) from e
        return self

    async def _provision_remote_browser(self) -> str:
        """Request a remote browser from Kernel and return its CDP address."""
        self.logger.info("Using Kernel browser service...")
        try:
            self._kernel = AsyncKernel(api_key=self.config.kernel_api_key)
            remote = await self._kernel.browsers.create()
        except Exception as e:
            self.logger.error(f"Failed to create Kernel browser: {e}")
            raise BrowserConnectionError(f"Failed to create Kernel browser: {e}") from e
        self._kernel_session_id = remote.session_id
        return remote.cdp_ws_url

    async def stop(self) -> None:
        """Close the browsing context and release any provisioned browser."""
        if self._stopped:
            return
        self._stopped = True

        if self.context:
            try:
                await self.context.close()
            except Exception as e:
                self.logger.warning(f"Failed to close browser context: {e}")

        if self._kernel and self._kernel_session_id:
            try:
                self.logger.info("Terminating Kernel browser...")
                await self._kernel.browsers.delete_by_id(self._kernel_session_id)
                self.logger.info("Kernel browser terminated successfully.")
            except Exception as e:
                self.logger.error(f"Failed to terminate Kernel browser: {e}")

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                self.logger.warning(f"Failed to stop Playwright: {e}")
        self.page = None
        self.logger.info("Browser connection released")

    async def _handle_new_page(self, new_page: Page) -> None:
        """Only one tab is supported: load the new tab's URL in the managed page instead."""
        try:
            await new_page.wait_for_load_state("commit", timeout=5000)
        except PlaywrightTimeout:
            pass
        new_url = new_page.url
        await new_page.close()
        if self.page is not None and new_url and new_url != "about:blank":
            self.logger.info(f"Redirecting new tab into the current page: {new_url}")
            await self.page.goto(new_url)

    async def _wait_for_load_state_safe(self) -> None:
        """Wait for the load signal; a slow page is logged, not fatal."""
        page = self._ensure_started()
        try:
            await page.wait_for_load_state("load", timeout=self.config.load_timeout_ms)
        except PlaywrightTimeout:
            self.logger.warning("Page still loading after timeout, continuing anyway...")

    # ─────────────────────────────────────────────────────────────────────────
    # Observation
    # ─────────────────────────────────────────────────────────────────────────

    async def current_state(self) -> EnvironmentState:
        """Capture a screenshot and the URL once the page has settled."""
        await self._wait_for_load_state_safe()
        # Load events fire before some pages finish rendering.
        await asyncio.sleep(self.config.settle_delay)
        page = self._ensure_started()
        screenshot = await page.screenshot(type="png", full_page=False)
        return EnvironmentState(screenshot=screenshot, url=page.url)

    def screen_size(self) -> tuple[int, int]:
        """Live viewport size, or the configured size when unavailable."""
        viewport: Optional[dict[str, Any]] = self.page.viewport_size if self.page else None
        if viewport:
            return viewport["width"], viewport["height"]
        return self.config.screen_size

    # ─────────────────────────────────────────────────────────────────────────
    # Pointer actions
    # ─────────────────────────────────────────────────────────────────────────

    async def open_web_browser(self) -> EnvironmentState:
        return await self.current_state()

    async def click_at(self, x: int, y: int) -> EnvironmentState:
        page = self._ensure_started()
        await self.highlight_mouse(x, y, "click")
        await page.mouse.click(x, y)
        await self._wait_for_load_state_safe()
        return await self.current_state()

    async def hover_at(self, x: int, y: int) -> EnvironmentState:
        page = self._ensure_started()
        await self.highlight_mouse(x, y, "hover")
        await page.mouse.move(x, y)
        await self._wait_for_load_state_safe()
        return await self.current_state()

    async def drag_and_drop(self, x: int, y: int, destination_x: int, destination_y: int) -> EnvironmentState:
        page = self._ensure_started()
        await self.highlight_mouse(x, y, "drag")
        await page.mouse.move(x, y)
        await self._wait_for_load_state_safe()
        await page.mouse.down()
        await self._wait_for_load_state_safe()

        await self.highlight_mouse(destination_x, destination_y, "drop")
        await page.mouse.move(destination_x, destination_y)
        await self._wait_for_load_state_safe()
        await page.mouse.up()
        return await self.current_state()

    # ─────────────────────────────────────────────────────────────────────────
    # Keyboard input
    # ─────────────────────────────────────────────────────────────────────────

    async def type_text_at(
        self,
        x: int,
        y: int,
        text: str,
        press_enter: bool = False,
        clear_before_typing: bool = True,
    ) -> EnvironmentState:
        page = self._ensure_started()
        await self.highlight_mouse(x, y, "type")
        await page.mouse.click(x, y)
        await self._wait_for_load_state_safe()

        if clear_before_typing:
            select_all = "Command" if sys.platform == "darwin" else "Control"
            await self._press_combination([select_all, "A"])
            await self._press_combination(["Delete"])

        await page.keyboard.type(text)
        await self._wait_for_load_state_safe()

        if press_enter:
            await self._press_combination(["Enter"])
        await self._wait_for_load_state_safe()
        return await self.current_state()

    async def key_combination(self, keys: list[str]) -> EnvironmentState:
        await self._press_combination(keys)
        return await self.current_state()

    async def _press_combination(self, keys: list[str]) -> None:
        """Hold every key but the last, press the last, release in reverse."""
        page = self._ensure_started()
        if not keys:
            raise ValueError("No keys provided")
        normalized = normalize_keys(keys)
        for key in normalized[:-1]:
            await page.keyboard.down(key)
        await page.keyboard.press(normalized[-1])
        for key in reversed(normalized[:-1]):
            await page.keyboard.up(key)

    # ─────────────────────────────────────────────────────────────────────────
    # Scrolling
    # ─────────────────────────────────────────────────────────────────────────

    async def scroll_document(self, direction: ScrollDirection) -> EnvironmentState:
        if direction == "down":
            return await self.key_combination(["PageDown"])
        if direction == "up":
            return await self.key_combination(["PageUp"])
        if direction in ("left", "right"):
            return await self._horizontal_document_scroll(direction)
        raise ValueError(f"Unsupported direction: {direction}")

    async def _horizontal_document_scroll(self, direction: ScrollDirection) -> EnvironmentState:
        page = self._ensure_started()
        # Half a viewport per step.
        amount = self.screen_size()[0] // 2
        if direction == "left":
            amount = -amount
        await page.evaluate(f"window.scrollBy({amount}, 0);")
        await self._wait_for_load_state_safe()
        return await self.current_state()

    async def scroll_at(
        self,
        x: int,
        y: int,
        direction: ScrollDirection,
        magnitude: int = 800,
    ) -> EnvironmentState:
        page = self._ensure_started()
        dx, dy = 0, 0
        if direction == "up":
            dy = -magnitude
        elif direction == "down":
            dy = magnitude
        elif direction == "left":
            dx = -magnitude
        elif direction == "right":
            dx = magnitude
        else:
            raise ValueError(f"Unsupported direction: {direction}")

        await self.highlight_mouse(x, y, "scroll")
        await page.mouse.move(x, y)
        await self._wait_for_load_state_safe()
        await page.mouse.wheel(dx, dy)
        await self._wait_for_load_state_safe()
        return await self.current_state()

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation controls
    # ─────────────────────────────────────────────────────────────────────────

    async def wait_5_seconds(self) -> EnvironmentState:
        await asyncio.sleep(self.config.wait_seconds)
        return await self.current_state()

    async def go_back(self) -> EnvironmentState:
        page = self._ensure_started()
        await page.go_back()
        await self._wait_for_load_state_safe()
        return await self.current_state()

    async def go_forward(self) -> EnvironmentState:
        page = self._ensure_started()
        await page.go_forward()
        await self._wait_for_load_state_safe()
        return await self.current_state()

    async def search(self) -> EnvironmentState:
        return await self.navigate(self.config.search_engine_url)

    async def navigate(self, url: str) -> EnvironmentState:
        page = self._ensure_started()
        await page.goto(normalize_url(url))
        await self._wait_for_load_state_safe()
        return await self.current_state()

    # ─────────────────────────────────────────────────────────────────────────
    # Click marker
    # ─────────────────────────────────────────────────────────────────────────

    async def highlight_mouse(self, x: float, y: float, label: str = "click") -> None:
        """Show a transient marker at viewport coords so a watching human can follow."""
        if not self.config.highlight_mouse or self.page is None:
            return
        try:
            await self.page.evaluate(
                """([vx, vy, lbl, markerId]) => {
                    let el = document.getElementById(markerId);
                    if (!el) {
                        el = document.createElement('div');
                        el.id = markerId;
                        el.style.cssText = `
                            position: fixed; width: 20px; height: 20px; border-radius: 50%;
                            border: 4px solid red; z-index: 9999; pointer-events: none;
                            transform: translate(-50%, -50%);
                        `;
                        document.body?.appendChild(el);
                    }
                    el.title = lbl;
                    el.style.left = `${vx}px`;
                    el.style.top = `${vy}px`;
                    el.hidden = false;
                    setTimeout(() => { el.hidden = true; }, 2000);
                }""",
                [x, y, label[:24], MARKER_ELEMENT_ID],
            )
        except Exception as e:
            self.logger.warning(f"Failed to show click marker: {e}")
            return
        await asyncio.sleep(self.config.highlight_delay)
