"""Rule-based repair of a route from the failed steps of its last run."""
from __future__ import annotations

import copy
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence
from uuid import uuid4

from .models import ExecutionResult, Route, Step, utc_now

logger = logging.getLogger(__name__)

SKIP_ACTION = "skip"


@dataclass
class StepFix:
    """Replacement verb for a failed step; ``skip`` drops it from the next run."""

    rule: str
    action: str
    message: str


FixRule = Callable[[Step, str], Optional[StepFix]]


def fix_radio_fill(step: Step, error: str) -> Optional[StepFix]:
    if 'Input of type "radio" cannot be filled' not in error:
        return None
    return StepFix("radio_fix", "check", "ラジオボタンにはfillではなくcheckを使用")


def fix_select_fill(step: Step, error: str) -> Optional[StepFix]:
    if step.action not in ("fill", "type"):
        return None
    if "not a selectable element" not in error and "<select>" not in error:
        return None
    return StepFix("select_fix", "select", f"セレクトボックス「{step.target}」の操作方法を修正: fill → select")


def fix_disabled_element(step: Step, error: str) -> Optional[StepFix]:
    if "not enabled" not in error and "disabled" not in error:
        return None
    return StepFix("disabled_skip", SKIP_ACTION, f"disabled要素「{step.target}」はスキップ")


def fix_not_visible(step: Step, error: str) -> Optional[StepFix]:
    if "not visible" not in error and "hidden" not in error:
        return None
    return StepFix("not_visible_skip", SKIP_ACTION, f"要素「{step.target}」が非表示のためスキップ")


def fix_checkbox_fill(step: Step, error: str) -> Optional[StepFix]:
    if step.action != "fill" or 'Input of type "checkbox" cannot be filled' not in error:
        return None
    return StepFix("checkbox_fix", "click", "チェックボックスはクリックで操作する必要があります")


def fix_hidden_target(step: Step, error: str) -> Optional[StepFix]:
    if "timeout" not in error.lower() or "hidden" not in (step.target or ""):
        return None
    return StepFix("hidden_field_skip", SKIP_ACTION, f"hidden要素「{step.target}」は操作対象外のため、ステップをスキップ")


# First match wins.
FIX_RULES: Sequence[FixRule] = (
    fix_radio_fill,
    fix_select_fill,
    fix_disabled_element,
    fix_not_visible,
    fix_checkbox_fill,
    fix_hidden_target,
)


def suggest_fix(step: Step, error: Optional[str]) -> Optional[StepFix]:
    text = error or ""
    for rule in FIX_RULES:
        fix = rule(step, text)
        if fix is not None:
            return fix
    return None


def apply_fix(step: Step, fix: StepFix) -> Step:
    extras = copy.deepcopy(step.extras)
    extras["original_action"] = step.action
    extras["fix_type"] = fix.rule
    return dataclasses.replace(step, action=fix.action, fix_reason=fix.message, extras=extras)


def generate_fixed_route(route: Route, result: ExecutionResult, now: Optional[datetime] = None) -> Optional[Route]:
    """Return a repaired copy of ``route``, or None when no rule applies.

    Steps are paired with ``result.steps`` by position. Steps that passed,
    and failed steps no rule recognises, are kept unchanged.
    """
    now = now or utc_now()
    steps: List[Step] = []
    fixes: List[StepFix] = []
    for index, step in enumerate(route.steps):
        outcome = result.steps[index] if index < len(result.steps) else None
        fix = None
        if outcome is not None and outcome.status == "failed" and outcome.label == step.label:
            fix = suggest_fix(step, outcome.error)
        if fix is None:
            steps.append(dataclasses.replace(step, extras=copy.deepcopy(step.extras)))
            continue
        logger.info("修复步骤 %s: %s", step.label, fix.message)
        fixes.append(fix)
        steps.append(apply_fix(step, fix))

    if not fixes:
        return None

    extras = copy.deepcopy(route.extras)
    extras["fix_summary"] = {
        "total_steps": len(steps),
        "fixed_steps": len(fixes),
        "skipped_steps": sum(1 for fix in fixes if fix.action == SKIP_ACTION),
        "rules_applied": sorted({fix.rule for fix in fixes}),
    }
    stamp = now.strftime("%Y%m%dT%H%M%SZ")
    return Route(
        route_id=f"fixed_{route.route_id}_{stamp}_{uuid4().hex[:8]}",
        steps=steps,
        category=route.category,
        test_case_id=route.test_case_id,
        original_viewpoint=route.original_viewpoint,
        original_route_id=route.original_route_id or route.route_id,
        fix_timestamp=now.isoformat(),
        extras=extras,
    )
