"""Maps step verbs onto driver calls."""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
from urllib.parse import urljoin

from .context import RunContext
from .driver import Driver, DriverError, DriverTimeoutError
from .errors import (
    InvalidStepError,
    StepAssertionError,
    TargetNotFoundError,
    UnsupportedActionError,
)
from .models import Step, utc_now
from .resolver import ElementResolver, Resolution

logger = logging.getLogger(__name__)

INTERACTION_TIMEOUT_MS = 5_000
WAIT_TIMEOUT_MS = 10_000
NAVIGATION_TIMEOUT_MS = 30_000


class Action(str, Enum):
    """Closed set of step verbs."""

    NAVIGATE = "navigate"
    CLICK = "click"
    DOUBLE_CLICK = "double_click"
    HOVER = "hover"
    FILL = "fill"
    SELECT = "select"
    CHECK = "check"
    UNCHECK = "uncheck"
    FOCUS = "focus"
    KEYPRESS = "keypress"
    SCROLL = "scroll"
    WAIT_FOR_VISIBLE = "wait_for_visible"
    WAIT_FOR_HIDDEN = "wait_for_hidden"
    WAIT_FOR_URL = "wait_for_url"
    WAIT = "wait"
    ASSERT_VISIBLE = "assert_visible"
    ASSERT_TEXT = "assert_text"
    ASSERT_URL = "assert_url"
    ASSERT_CHECKED = "assert_checked"
    ASSERT_UNCHECKED = "assert_unchecked"
    SCREENSHOT = "screenshot"
    SKIP = "skip"
    UNSUPPORTED = "unsupported"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Action":
        if not raw:
            return cls.UNSUPPORTED
        name = ACTION_ALIASES.get(raw, raw.replace("-", "_").lower())
        try:
            action = cls(name)
        except ValueError:
            return cls.UNSUPPORTED
        return action


# Spellings used by generated route files.
ACTION_ALIASES: Dict[str, str] = {
    "load": "navigate",
    "goto": "navigate",
    "doubleClick": "double_click",
    "dblclick": "double_click",
    "selectOption": "select",
    "keyPress": "keypress",
    "press": "keypress",
    "waitForSelector": "wait_for_visible",
    "waitForHidden": "wait_for_hidden",
    "waitForURL": "wait_for_url",
    "waitForTimeout": "wait",
    "assertVisible": "assert_visible",
    "assertText": "assert_text",
    "assertURL": "assert_url",
    "assertChecked": "assert_checked",
    "assertUnchecked": "assert_unchecked",
}

RESOLVED_ACTIONS = frozenset({
    Action.CLICK,
    Action.DOUBLE_CLICK,
    Action.HOVER,
    Action.FILL,
    Action.SELECT,
    Action.CHECK,
    Action.UNCHECK,
    Action.ASSERT_VISIBLE,
})

# Region names that select boxes usually encode as prefecture codes.
LOCALE_VALUE_MAP: Dict[str, str] = {
    "東京都": "13",
    "東京": "13",
    "Tokyo": "13",
    "大阪府": "27",
    "大阪": "27",
    "Osaka": "27",
    "神奈川県": "14",
    "神奈川": "14",
    "Kanagawa": "14",
    "愛知県": "23",
    "愛知": "23",
    "Aichi": "23",
    "福岡県": "40",
    "福岡": "40",
    "Fukuoka": "40",
}


def reconcile_select_value(options: Sequence[Tuple[str, str]], value: Optional[str]) -> str:
    """Pick the option value that best matches a human-written ``value``.

    Tries exact text, exact value, substring either way and the locale map,
    in that order, and falls back to ``value`` itself.
    """
    if not value:
        if len(options) > 1:
            return options[1][0]
        return ""
    for option_value, text in options:
        if text == value:
            return option_value
    for option_value, _ in options:
        if option_value == value:
            return value
    for option_value, text in options:
        if text and (value in text or text in value):
            return option_value
    if value in LOCALE_VALUE_MAP:
        return LOCALE_VALUE_MAP[value]
    return value


def url_pattern_to_regex(pattern: str) -> str:
    return ".*".join(re.escape(part) for part in pattern.split("*"))


Handler = Callable[[Step, Optional[Resolution], RunContext], None]


class ActionDispatcher:
    """One handler per Action; interactive verbs resolve their target first."""

    def __init__(
        self,
        driver: Driver,
        resolver: ElementResolver,
        interaction_timeout_ms: int = INTERACTION_TIMEOUT_MS,
        wait_timeout_ms: int = WAIT_TIMEOUT_MS,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
    ) -> None:
        self.driver = driver
        self.resolver = resolver
        self.interaction_timeout_ms = interaction_timeout_ms
        self.wait_timeout_ms = wait_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self._handlers: Dict[Action, Handler] = {
            Action.NAVIGATE: self._navigate,
            Action.CLICK: self._click,
            Action.DOUBLE_CLICK: self._simple_act("double_click"),
            Action.HOVER: self._simple_act("hover"),
            Action.FILL: self._fill,
            Action.SELECT: self._select,
            Action.CHECK: self._simple_act("check"),
            Action.UNCHECK: self._simple_act("uncheck"),
            Action.FOCUS: self._focus,
            Action.KEYPRESS: self._keypress,
            Action.SCROLL: self._scroll,
            Action.WAIT_FOR_VISIBLE: self._wait_for_visible,
            Action.WAIT_FOR_HIDDEN: self._wait_for_hidden,
            Action.WAIT_FOR_URL: self._wait_for_url,
            Action.WAIT: self._wait,
            Action.ASSERT_VISIBLE: self._assert_visible,
            Action.ASSERT_TEXT: self._assert_text,
            Action.ASSERT_URL: self._assert_url,
            Action.ASSERT_CHECKED: self._assert_checked(True),
            Action.ASSERT_UNCHECKED: self._assert_checked(False),
            Action.SCREENSHOT: self._screenshot,
            Action.SKIP: self._skip,
            Action.UNSUPPORTED: self._unsupported,
        }
        missing = set(Action) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for actions: {sorted(item.value for item in missing)}")

    def dispatch(self, step: Step, context: RunContext) -> Optional[Resolution]:
        """Run ``step``; raise a StepError or DriverError when it fails."""
        action = Action.parse(step.action)
        resolution = None
        if action in RESOLVED_ACTIONS:
            resolution = self.resolver.resolve(step)
            if not resolution.found:
                raise TargetNotFoundError(step.target)
        self._handlers[action](step, resolution, context)
        if resolution is not None and resolution.new_selector:
            context.record_improvement(
                step_label=step.label,
                original_selector=step.target,
                improved_selector=resolution.new_selector,
                strategy=resolution.strategy,
                confidence=resolution.confidence,
            )
        return resolution

    def _interaction_timeout(self, step: Step) -> int:
        return step.timeout_ms or self.interaction_timeout_ms

    def _wait_timeout(self, step: Step) -> int:
        return step.timeout_ms or self.wait_timeout_ms

    def _require_handle(self, step: Step) -> Any:
        if not step.target:
            raise InvalidStepError(f"{step.action} step missing 'target'")
        handles = self.driver.locate(step.target)
        if not handles:
            try:
                self.driver.wait_visible(step.target, self._wait_timeout(step))
            except DriverTimeoutError as exc:
                raise TargetNotFoundError(step.target) from exc
            handles = self.driver.locate(step.target)
        if not handles:
            raise TargetNotFoundError(step.target)
        return handles[0]

    def _simple_act(self, verb: str) -> Handler:
        def handler(step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
            self.driver.act(resolution.handle, verb, step.value, self._interaction_timeout(step))

        return handler

    def _navigate(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        target = (step.target or step.value or "").strip()
        if not target:
            raise InvalidStepError("navigate step missing 'target' url")
        base_url = context.base_url
        if target.startswith("http://") or target.startswith("https://") or not base_url:
            final_url = target
        else:
            final_url = urljoin(base_url.rstrip("/") + "/", target.lstrip("/"))
        self.driver.navigate(final_url, step.timeout_ms or self.navigation_timeout_ms)

    def _click(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        timeout = self._interaction_timeout(step)
        if resolution.strategy != "manual":
            self.driver.act(resolution.handle, "click", timeout_ms=timeout)
            return
        try:
            self.driver.act(resolution.handle, "click", timeout_ms=timeout)
        except DriverError as exc:
            logger.warning("Manual selector click failed, forcing click: %s", exc)
            self.driver.act(resolution.handle, "force_click", timeout_ms=timeout)

    def _fill(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        timeout = self._interaction_timeout(step)
        if "checkbox" in (step.target or ""):
            self.driver.act(resolution.handle, "click", timeout_ms=timeout)
            return
        if resolution.element_type == "select" or "select" in resolution.strategy or "dropdown" in resolution.strategy:
            logger.info("Target of fill is a select element, selecting instead")
            self._select(step, resolution, context)
            return
        try:
            self.driver.act(resolution.handle, "fill", step.value or "", timeout)
        except DriverError:
            if self._tag_name(resolution.handle) != "select":
                raise
            logger.info("fill failed on a select element, selecting instead")
            self._select(step, resolution, context)

    def _select(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        value = self._reconciled_value(resolution.handle, step.value)
        logger.info("Selecting %s = '%s' -> '%s'", step.target, step.value, value)
        self.driver.act(resolution.handle, "select", value, self._interaction_timeout(step))

    def _focus(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        handle = self._require_handle(step)
        self.driver.act(handle, "focus", timeout_ms=self._interaction_timeout(step))

    def _keypress(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        if not step.value:
            raise InvalidStepError("keypress step missing 'value'")
        if not step.target:
            self.driver.press_key(step.value)
            return
        handle = self._require_handle(step)
        self.driver.act(handle, "press", step.value, self._interaction_timeout(step))

    def _scroll(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        if step.target in ("top", "bottom"):
            self.driver.scroll_page(step.target)
            return
        handle = self._require_handle(step)
        self.driver.act(handle, "scroll_into_view", timeout_ms=self._interaction_timeout(step))

    def _wait_for_visible(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        self.driver.wait_visible(step.target, self._wait_timeout(step))

    def _wait_for_hidden(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        self.driver.wait_hidden(step.target, self._wait_timeout(step))

    def _wait_for_url(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        self.driver.wait_for_url(step.target, self._wait_timeout(step))

    def _wait(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        duration = 1_000
        for raw in (step.target, step.value):
            try:
                duration = int(raw)
                break
            except (TypeError, ValueError):
                continue
        self.driver.sleep(duration)

    def _assert_visible(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        if not self.driver.is_visible(resolution.handle):
            raise StepAssertionError(f"Element exists but is not visible: {step.target}")

    def _assert_text(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        expected = step.value
        if expected is None:
            raise InvalidStepError("assert_text step missing 'value'")
        handle = self._require_handle(step)
        text = self.driver.text_of(handle, self._interaction_timeout(step))
        if expected not in text:
            raise StepAssertionError(f"Expected text '{expected}' but got '{text.strip()}'")

    def _assert_url(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        pattern = step.target or step.value
        if not pattern:
            raise InvalidStepError("assert_url step missing 'target'")
        current = self.driver.current_url()
        if not re.search(url_pattern_to_regex(pattern), current):
            raise StepAssertionError(f"Expected URL matching '{pattern}' but was '{current}'")

    def _assert_checked(self, expected: bool) -> Handler:
        def handler(step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
            handle = self._require_handle(step)
            checked = self.driver.is_checked(handle, self._interaction_timeout(step))
            if checked != expected:
                state = "checked" if expected else "unchecked"
                raise StepAssertionError(f"Expected checkbox to be {state}: {step.target}")

        return handler

    def _screenshot(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        image = self.driver.screenshot()
        steps_dir = context.steps_dir
        if steps_dir is None:
            return
        path = steps_dir / f"screenshot_{utc_now().strftime('%Y%m%dT%H%M%S%f')}.png"
        path.write_bytes(image)
        logger.info("Screenshot saved to %s", path)

    def _skip(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        logger.info("Skipping step %s: %s", step.label, step.fix_reason or "no reason given")

    def _unsupported(self, step: Step, resolution: Optional[Resolution], context: RunContext) -> None:
        raise UnsupportedActionError(step.action)

    def _reconciled_value(self, handle: Any, value: Optional[str]) -> str:
        try:
            options = self.driver.options_of(handle)
        except DriverError as exc:
            logger.warning("Could not read select options, using literal value: %s", exc)
            return value or ""
        return reconcile_select_value(options, value)

    def _tag_name(self, handle: Any) -> Optional[str]:
        try:
            return self.driver.tag_name(handle)
        except DriverError:
            return None
