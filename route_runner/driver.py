"""Browser driver capability and its Playwright implementation."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

# Verbs accepted by Driver.act().
ACT_VERBS = (
    "click",
    "force_click",
    "double_click",
    "hover",
    "fill",
    "select",
    "check",
    "uncheck",
    "focus",
    "press",
    "scroll_into_view",
)


class DriverError(Exception):
    """Unexpected failure reported by the automation backend."""


class DriverTimeoutError(DriverError):
    """A driver operation exceeded its timeout."""


class Driver:
    """Capability the engine consumes. Every call raises DriverError on failure.

    Handles returned by :meth:`locate` are opaque to the engine and are only
    passed back into this interface.
    """

    def navigate(self, url: str, timeout_ms: int) -> None:
        raise NotImplementedError

    def locate(self, selector: str) -> List[Any]:
        raise NotImplementedError

    def wait_visible(self, selector: str, timeout_ms: int) -> None:
        raise NotImplementedError

    def wait_hidden(self, selector: str, timeout_ms: int) -> None:
        raise NotImplementedError

    def wait_for_url(self, pattern: str, timeout_ms: int) -> None:
        raise NotImplementedError

    def act(self, handle: Any, verb: str, value: Optional[str] = None, timeout_ms: int = 5_000) -> None:
        raise NotImplementedError

    def text_of(self, handle: Any, timeout_ms: int) -> str:
        raise NotImplementedError

    def is_visible(self, handle: Any) -> bool:
        raise NotImplementedError

    def is_checked(self, handle: Any, timeout_ms: int) -> bool:
        raise NotImplementedError

    def tag_name(self, handle: Any) -> str:
        raise NotImplementedError

    def options_of(self, handle: Any) -> List[Tuple[str, str]]:
        """Return ``(value, text)`` pairs of a select element."""
        raise NotImplementedError

    def press_key(self, key: str) -> None:
        raise NotImplementedError

    def scroll_page(self, position: str) -> None:
        raise NotImplementedError

    def current_url(self) -> str:
        raise NotImplementedError

    def viewport_width(self) -> Optional[int]:
        raise NotImplementedError

    def sleep(self, ms: int) -> None:
        raise NotImplementedError

    def screenshot(self) -> bytes:
        raise NotImplementedError

    def dom_snapshot(self) -> str:
        raise NotImplementedError


@contextmanager
def _translated(operation: str) -> Iterator[None]:
    try:
        yield
    except PlaywrightTimeoutError as exc:
        raise DriverTimeoutError(str(exc)) from exc
    except PlaywrightError as exc:
        raise DriverError(f"{operation} failed: {exc.message}") from exc


class PlaywrightDriver(Driver):
    """Driver backed by a Playwright sync-API page."""

    def __init__(self, page) -> None:
        self.page = page

    def navigate(self, url: str, timeout_ms: int) -> None:
        logger.info("Navigating to %s", url)
        with _translated("navigate"):
            self.page.goto(url, timeout=timeout_ms, wait_until="load")

    def locate(self, selector: str) -> List[Any]:
        with _translated("locate"):
            return self.page.locator(selector).all()

    def wait_visible(self, selector: str, timeout_ms: int) -> None:
        with _translated("wait_visible"):
            self.page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms)

    def wait_hidden(self, selector: str, timeout_ms: int) -> None:
        with _translated("wait_hidden"):
            self.page.locator(selector).first.wait_for(state="hidden", timeout=timeout_ms)

    def wait_for_url(self, pattern: str, timeout_ms: int) -> None:
        with _translated("wait_for_url"):
            self.page.wait_for_url(pattern, timeout=timeout_ms)

    # pylint: disable=too-many-branches
    def act(self, handle: Any, verb: str, value: Optional[str] = None, timeout_ms: int = 5_000) -> None:
        with _translated(verb):
            if verb == "click":
                handle.click(timeout=timeout_ms)
            elif verb == "force_click":
                handle.click(force=True, timeout=timeout_ms)
            elif verb == "double_click":
                handle.dblclick(timeout=timeout_ms)
            elif verb == "hover":
                handle.hover(timeout=timeout_ms)
            elif verb == "fill":
                handle.fill(value or "", timeout=timeout_ms)
            elif verb == "select":
                handle.select_option(value or "", timeout=timeout_ms)
            elif verb == "check":
                handle.check(timeout=timeout_ms)
            elif verb == "uncheck":
                handle.uncheck(timeout=timeout_ms)
            elif verb == "focus":
                handle.focus(timeout=timeout_ms)
            elif verb == "press":
                handle.press(value or "", timeout=timeout_ms)
            elif verb == "scroll_into_view":
                handle.scroll_into_view_if_needed(timeout=timeout_ms)
            else:
                raise DriverError(f"Unknown driver verb: {verb}")

    def text_of(self, handle: Any, timeout_ms: int) -> str:
        with _translated("text_content"):
            return handle.text_content(timeout=timeout_ms) or ""

    def is_visible(self, handle: Any) -> bool:
        with _translated("is_visible"):
            return handle.is_visible()

    def is_checked(self, handle: Any, timeout_ms: int) -> bool:
        with _translated("is_checked"):
            return handle.is_checked(timeout=timeout_ms)

    def tag_name(self, handle: Any) -> str:
        with _translated("tag_name"):
            return handle.evaluate("el => el.tagName.toLowerCase()")

    def options_of(self, handle: Any) -> List[Tuple[str, str]]:
        with _translated("options"):
            raw = handle.evaluate(
                "el => Array.from(el.options || []).map(o => [o.value || '', (o.textContent || '').trim()])"
            )
        return [(str(value), str(text)) for value, text in raw]

    def press_key(self, key: str) -> None:
        with _translated("press_key"):
            self.page.keyboard.press(key)

    def scroll_page(self, position: str) -> None:
        script = "window.scrollTo(0, 0)" if position == "top" else "window.scrollTo(0, document.body.scrollHeight)"
        with _translated("scroll"):
            self.page.evaluate(script)

    def current_url(self) -> str:
        with _translated("url"):
            return self.page.url

    def viewport_width(self) -> Optional[int]:
        with _translated("viewport_size"):
            size = self.page.viewport_size
        return size["width"] if size else None

    def sleep(self, ms: int) -> None:
        with _translated("wait_for_timeout"):
            self.page.wait_for_timeout(ms)

    def screenshot(self) -> bytes:
        with _translated("screenshot"):
            return self.page.screenshot(full_page=True)

    def dom_snapshot(self) -> str:
        with _translated("content"):
            return self.page.content()


@contextmanager
def playwright_session(
    headless: bool = True,
    browser_name: str = "chromium",
    viewport: Optional[Tuple[int, int]] = None,
) -> Iterator[PlaywrightDriver]:
    """Launch a fresh browser, context and page; close them on exit."""
    with sync_playwright() as playwright:
        launcher = getattr(playwright, browser_name)
        browser = launcher.launch(headless=headless)
        context_options = {}
        if viewport:
            context_options["viewport"] = {"width": viewport[0], "height": viewport[1]}
        context = browser.new_context(**context_options)
        page = context.new_page()
        try:
            yield PlaywrightDriver(page)
        finally:
            context.close()
            browser.close()
