"""Runs single steps and turns their outcome into StepResults."""
from __future__ import annotations

import logging
from typing import Optional

from .context import RunContext
from .dispatcher import Action, ActionDispatcher
from .driver import Driver, DriverError
from .errors import StepError
from .models import Step, StepResult, utc_now
from .resolver import ElementResolver, Resolution

logger = logging.getLogger(__name__)

SCREENSHOT_POLICIES = ("none", "on-failure", "all")


def first_line(exc: BaseException) -> str:
    lines = str(exc).strip().splitlines()
    return lines[0].strip() if lines else type(exc).__name__


class StepExecutor:
    """Executes steps against a driver; a failing step never aborts the route."""

    def __init__(
        self,
        driver: Driver,
        dispatcher: Optional[ActionDispatcher] = None,
        screenshots: str = "on-failure",
        capture_dom: bool = True,
    ) -> None:
        if screenshots not in SCREENSHOT_POLICIES:
            raise ValueError(f"Unknown screenshot policy: {screenshots}")
        self.driver = driver
        self.dispatcher = dispatcher or ActionDispatcher(driver, ElementResolver(driver))
        self.screenshots = screenshots
        self.capture_dom = capture_dom

    def execute(self, step: Step, context: RunContext) -> bool:
        """Run ``step`` and return True, or raise a StepError."""
        self._dispatch(step, context)
        return True

    def run_step(self, step: Step, index: int, context: RunContext) -> StepResult:
        """Run ``step`` and record its outcome. Only session-level crashes escape."""
        started = utc_now()
        logger.info("Step %s: %s (%s)", index, step.label, step.action)
        result = StepResult(
            label=step.label,
            action=step.action,
            target=step.target,
            value=step.value,
            status="success",
            timestamp=started,
            is_fixed=bool(step.fix_reason or step.is_improved),
            fix_reason=step.fix_reason,
        )

        if Action.parse(step.action) is Action.SKIP:
            logger.info("Step %s skipped: %s", index, step.fix_reason or step.label)
            result.status = "skipped"
            return result

        try:
            resolution = self._dispatch(step, context)
        except StepError as exc:
            result.status = "failed"
            result.error = first_line(exc)
            logger.warning("Step %s failed: %s", index, result.error)
        else:
            if resolution is not None:
                result.strategy = resolution.strategy

        if self._should_capture(result.status != "failed"):
            self._capture(result, index, context)
        return result

    def _dispatch(self, step: Step, context: RunContext) -> Optional[Resolution]:
        try:
            return self.dispatcher.dispatch(step, context)
        except DriverError as exc:
            raise StepError(str(exc)) from exc

    def _should_capture(self, step_success: bool) -> bool:
        if self.screenshots == "none":
            return False
        if self.screenshots == "all":
            return True
        return not step_success

    def _capture(self, result: StepResult, index: int, context: RunContext) -> None:
        steps_dir = context.steps_dir
        if steps_dir is None:
            return
        screenshot_path = steps_dir / f"{index:02d}.png"
        try:
            screenshot_path.write_bytes(self.driver.screenshot())
            result.screenshot_path = str(screenshot_path)
        except (DriverError, OSError) as exc:
            logger.error("Screenshot capture failed: %s", exc)
        if not self.capture_dom:
            return
        dom_path = steps_dir / f"{index:02d}.html"
        try:
            dom_path.write_text(self.driver.dom_snapshot(), encoding="utf-8")
            result.dom_path = str(dom_path)
        except (DriverError, OSError) as exc:
            logger.error("DOM capture failed: %s", exc)

