"""Tests for rule-based route repair."""
from __future__ import annotations

from datetime import datetime, timezone

from .models import ExecutionResult, Route, Step, StepResult
from .repair import SKIP_ACTION, apply_fix, generate_fixed_route, suggest_fix
from .storage import FileStore

T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _result(route, outcomes):
    steps = [
        StepResult(label=step.label, action=step.action, target=step.target, value=step.value,
                   status=status, error=error, timestamp=T0)
        for step, (status, error) in zip(route.steps, outcomes)
    ]
    return ExecutionResult(
        route_id=route.route_id,
        total_steps=len(steps),
        success_count=sum(1 for item in steps if item.status == "success"),
        failed_count=sum(1 for item in steps if item.status == "failed"),
        skipped_count=0,
        execution_time_ms=10,
        timestamp=T0,
        steps=steps,
    )


def test_checkbox_fill_becomes_click():
    step = Step("利用規約に同意", "fill", "#agree", value="on")

    fix = suggest_fix(step, 'fill failed: Input of type "checkbox" cannot be filled')

    assert fix.rule == "checkbox_fix"
    assert fix.action == "click"
    fixed = apply_fix(step, fix)
    assert fixed.action == "click"
    assert fixed.fix_reason == "チェックボックスはクリックで操作する必要があります"
    assert fixed.extras == {"original_action": "fill", "fix_type": "checkbox_fix"}
    assert step.action == "fill"
    assert not step.extras


def test_fill_on_select_becomes_select():
    fix = suggest_fix(Step("都道府県", "fill", "#pref", value="東京都"),
                      "fill failed: Element is not an <input>, <textarea> or <select> element")
    assert fix.rule == "select_fix"
    assert fix.action == "select"


def test_radio_fill_becomes_check():
    fix = suggest_fix(Step("性別", "fill", "#male"), 'fill failed: Input of type "radio" cannot be filled')
    assert fix.action == "check"


def test_hidden_and_disabled_targets_are_skipped():
    hidden = suggest_fix(Step("token", "fill", 'input[type="hidden"]'), "Timeout 5000ms exceeded.")
    invisible = suggest_fix(Step("menu", "click", "#menu"), "click failed: element is not visible")
    disabled = suggest_fix(Step("send", "click", "#send"), "click failed: element is not enabled")

    assert hidden.rule == "hidden_field_skip"
    assert invisible.rule == "not_visible_skip"
    assert invisible.message == "要素「#menu」が非表示のためスキップ"
    assert disabled.rule == "disabled_skip"
    assert {hidden.action, invisible.action, disabled.action} == {SKIP_ACTION}


def test_unknown_error_has_no_fix():
    assert suggest_fix(Step("press", "click", "#missing"), "Target not found: #missing") is None
    assert suggest_fix(Step("press", "click", "#x"), None) is None


def test_generate_fixed_route_touches_only_failed_steps():
    route = Route("route_signup", [
        Step("open", "navigate", "https://example.com/signup"),
        Step("agree", "fill", "#agree", value="on"),
        Step("menu", "click", "#menu"),
        Step("press", "click", "#missing"),
    ], category="signup")
    result = _result(route, [
        ("success", None),
        ("failed", 'fill failed: Input of type "checkbox" cannot be filled'),
        ("failed", "click failed: element is not visible"),
        ("failed", "Target not found: #missing"),
    ])

    fixed = generate_fixed_route(route, result, now=T0)

    assert fixed.route_id.startswith("fixed_route_signup_20250301T000000Z_")
    assert fixed.original_route_id == "route_signup"
    assert fixed.fix_timestamp == T0.isoformat()
    assert fixed.is_fixed
    assert fixed.category == "signup"
    assert [step.action for step in fixed.steps] == ["navigate", "click", SKIP_ACTION, "click"]
    assert fixed.steps[0] == route.steps[0]
    assert fixed.steps[3] == route.steps[3]
    assert fixed.extras["fix_summary"] == {
        "total_steps": 4,
        "fixed_steps": 2,
        "skipped_steps": 1,
        "rules_applied": ["checkbox_fix", "not_visible_skip"],
    }
    assert [step.action for step in route.steps] == ["navigate", "fill", "click", "click"]
    assert "fix_summary" not in route.extras


def test_repaired_route_keeps_first_original_id():
    route = Route("improved_route_a_1", [Step("menu", "click", "#menu")], original_route_id="route_a")
    result = _result(route, [("failed", "click failed: element is not visible")])

    assert generate_fixed_route(route, result, now=T0).original_route_id == "route_a"


def test_nothing_to_repair_returns_none():
    route = Route("route_a", [Step("press", "click", "#missing"), Step("go", "click", "#go")])
    result = _result(route, [("failed", "Target not found: #missing"), ("success", None)])

    assert generate_fixed_route(route, result) is None


def test_mismatched_labels_are_not_repaired():
    route = Route("route_a", [Step("menu", "click", "#menu")])
    result = _result(Route("route_a", [Step("other", "click", "#menu")]),
                     [("failed", "click failed: element is not visible")])

    assert generate_fixed_route(route, result) is None


def test_saved_repair_is_found_for_auto_fix(tmp_path):
    route = Route("route_250301", [Step("menu", "click", "#menu")])
    fixed = generate_fixed_route(route, _result(route, [("failed", "click failed: element is not visible")]))
    store = FileStore(tmp_path)

    path = store.save_route(fixed)

    assert store.find_fixed_routes("route_250301") == [path]
    loaded = store.load_route(path)
    assert loaded.is_fixed
    assert loaded.steps[0].action == SKIP_ACTION
    assert loaded.steps[0].fix_reason == "要素「#menu」が非表示のためスキップ"
    assert loaded.steps[0].extras["fix_type"] == "not_visible_skip"
