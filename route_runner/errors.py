"""Exception hierarchy for the route runner."""
from __future__ import annotations


class RouteRunnerError(Exception):
    """Base class for all route runner errors."""


class SetupError(RouteRunnerError):
    """Fatal error raised before or around a run; aborts with a nonzero exit."""


class RouteLoadError(SetupError):
    """Route or batch metadata file is missing or malformed."""


class HistoryError(SetupError):
    """Run history file exists but cannot be read."""


class StepError(RouteRunnerError):
    """Recoverable, step-level failure. Always converted into a StepResult."""


class TargetNotFoundError(StepError):
    """None of the resolver tiers located the step target."""

    def __init__(self, selector: str) -> None:
        super().__init__(f"Target not found: {selector}")
        self.selector = selector


class StepAssertionError(StepError):
    """An assert-* verb observed a different page state than expected."""


class UnsupportedActionError(StepError):
    """The step verb is outside the supported action set."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Unsupported action: {action}")
        self.action = action


class InvalidStepError(StepError):
    """The step is missing a field its verb requires."""
