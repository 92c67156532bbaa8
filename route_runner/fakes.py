"""In-memory driver used by the test suite in place of a real browser."""
from __future__ import annotations

import fnmatch
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional, Tuple

from .driver import Driver, DriverError, DriverTimeoutError


@dataclass
# pylint: disable=too-many-instance-attributes
class FakeElement:
    """A page element with just enough state for the dispatcher."""

    name: str
    tag: str = "div"
    text: str = ""
    visible: bool = True
    checked: bool = False
    value: Optional[str] = None
    options: List[Tuple[str, str]] = field(default_factory=list)
    navigates_to: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)


class FakeDriver(Driver):
    """Driver over a static selector -> elements table.

    ``delayed`` elements only become locatable once :meth:`sleep` has advanced
    the fake clock past their delay. ``crash_on`` makes one verb raise a
    non-driver exception, which is how a dying browser session looks.
    """

    def __init__(
        self,
        elements: Optional[Dict[str, List[FakeElement]]] = None,
        url: str = "about:blank",
        title: str = "Fake page",
        viewport_width: Optional[int] = 1280,
        delayed: Optional[Dict[str, Tuple[int, List[FakeElement]]]] = None,
        crash_on: Optional[str] = None,
        failing_urls: Optional[List[str]] = None,
    ) -> None:
        self.elements: Dict[str, List[FakeElement]] = dict(elements or {})
        self.url = url
        self.title = title
        self.width = viewport_width
        self.delayed = dict(delayed or {})
        self.crash_on = crash_on
        self.failing_urls = list(failing_urls or [])
        self.clock_ms = 0
        self.sleeps: List[int] = []
        self.actions: List[Tuple[str, str, Optional[str]]] = []
        self.keys: List[str] = []
        self.scrolls: List[str] = []
        self.visited: List[str] = []
        self.waited: List[str] = []
        self.capture_fails = False

    def add(self, selector: str, *elements: FakeElement) -> None:
        self.elements.setdefault(selector, []).extend(elements)

    def navigate(self, url: str, timeout_ms: int) -> None:
        self._maybe_crash("navigate")
        if url in self.failing_urls:
            raise DriverTimeoutError(f"Timeout {timeout_ms}ms exceeded navigating to {url}")
        self.visited.append(url)
        self.url = url

    def locate(self, selector: str) -> List[Any]:
        if selector.startswith("!!"):
            raise DriverError(f"locate failed: Unexpected token in selector {selector}")
        found = list(self.elements.get(selector, []))
        if selector in self.delayed:
            delay, elements = self.delayed[selector]
            if self.clock_ms >= delay:
                found.extend(elements)
        return found

    def wait_visible(self, selector: str, timeout_ms: int) -> None:
        self.waited.append(selector)
        if not any(element.visible for element in self.locate(selector)):
            raise DriverTimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for {selector} to be visible")

    def wait_hidden(self, selector: str, timeout_ms: int) -> None:
        self.waited.append(selector)
        if any(element.visible for element in self.locate(selector)):
            raise DriverTimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for {selector} to be hidden")

    def wait_for_url(self, pattern: str, timeout_ms: int) -> None:
        if self.url != pattern and not fnmatch.fnmatch(self.url, pattern):
            raise DriverTimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for url {pattern}")

    def act(self, handle: Any, verb: str, value: Optional[str] = None, timeout_ms: int = 5_000) -> None:
        self._maybe_crash(verb)
        if verb in handle.failures:
            raise DriverError(f"{verb} failed: {handle.failures[verb]}")
        self.actions.append((handle.name, verb, value))
        if verb in ("click", "force_click"):
            if handle.navigates_to:
                self.url = handle.navigates_to
            if handle.tag == "input[checkbox]":
                handle.checked = not handle.checked
        elif verb in ("fill", "select"):
            handle.value = value
        elif verb == "check":
            handle.checked = True
        elif verb == "uncheck":
            handle.checked = False

    def text_of(self, handle: Any, timeout_ms: int) -> str:
        return handle.text

    def is_visible(self, handle: Any) -> bool:
        return handle.visible

    def is_checked(self, handle: Any, timeout_ms: int) -> bool:
        return handle.checked

    def tag_name(self, handle: Any) -> str:
        return handle.tag.split("[", 1)[0]

    def options_of(self, handle: Any) -> List[Tuple[str, str]]:
        return list(handle.options)

    def press_key(self, key: str) -> None:
        self.keys.append(key)

    def scroll_page(self, position: str) -> None:
        self.scrolls.append(position)

    def current_url(self) -> str:
        return self.url

    def viewport_width(self) -> Optional[int]:
        return self.width

    def sleep(self, ms: int) -> None:
        self.sleeps.append(ms)
        self.clock_ms += ms

    def screenshot(self) -> bytes:
        if self.capture_fails:
            raise DriverError("screenshot failed: Target page has been closed")
        return b"\x89PNG fake"

    def dom_snapshot(self) -> str:
        if self.capture_fails:
            raise DriverError("content failed: Target page has been closed")
        return f"<html><head><title>{self.title}</title></head><body></body></html>"

    def _maybe_crash(self, verb: str) -> None:
        if self.crash_on == verb:
            raise RuntimeError("Browser has been closed")


def session_factory(driver: FakeDriver) -> Callable[[], ContextManager[Driver]]:
    """Driver factory for RouteOrchestrator that hands out ``driver`` every time."""

    @contextmanager
    def factory() -> Iterator[Driver]:
        yield driver

    return factory
