"""Tests for the route orchestrator and repaired-route generation."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import pytest

from .errors import RouteLoadError
from .fakes import FakeDriver, FakeElement, session_factory
from .models import Route, SelectorImprovement, Step
from .orchestrator import RouteOrchestrator, RunnerSettings, generate_improved_route
from .storage import FileStore

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _orchestrator(tmp_path, driver, **settings):
    return RouteOrchestrator(RunnerSettings(results_dir=tmp_path, **settings), driver_factory=session_factory(driver))


def _write_route(path, route):
    path.write_text(json.dumps(route.to_dict(), ensure_ascii=False), encoding="utf-8")
    return path


def _login_route():
    return Route("route_login", [
        Step("open", "navigate", "https://example.com/login"),
        Step("user", "fill", "#user", value="alice"),
        Step("go", "click", "#go"),
        Step("home", "assert_url", "*/home"),
    ])


def _login_driver():
    return FakeDriver({
        "#user": [FakeElement("user", tag="input")],
        "#go": [FakeElement("go", tag="button", navigates_to="https://example.com/home")],
    })


def test_successful_run_writes_all_artifacts(tmp_path):
    run = _orchestrator(tmp_path, _login_driver()).run_route(_login_route(), route_file=tmp_path / "route_login.json")

    assert run.result.success
    assert run.result.success_count == 4
    assert run.result_path.name == "result_login.json"
    assert json.loads(run.result_path.read_text(encoding="utf-8"))["success"] is True
    assert (run.artifacts_dir / "runner.log").exists()
    assert run.report_path.read_text(encoding="utf-8").startswith("# 路线执行报告")
    assert run.improved_route_path is None


def test_drifted_selector_produces_improved_route(tmp_path):
    route_path = _write_route(
        tmp_path / "route_phone.json",
        Route("route_phone", [Step("phone number", "fill", 'input[name="phone"]', value="0312345678")]),
    )
    before = route_path.read_text(encoding="utf-8")
    driver = FakeDriver({'[name="tel"]': [FakeElement("tel", tag="input")]})

    run = _orchestrator(tmp_path, driver).run_file(route_path)

    assert run.result.success
    assert run.result.steps[0].strategy == "field_alias"
    assert run.improved_route_path.name.startswith("fixed_route_route_phone_")
    improved = FileStore(tmp_path).load_route(run.improved_route_path)
    assert improved.route_id.startswith("improved_route_phone_")
    assert improved.original_route_id == "route_phone"
    assert improved.steps[0].target == '[name="tel"]'
    assert improved.steps[0].original_target == 'input[name="phone"]'
    assert improved.steps[0].is_improved
    assert route_path.read_text(encoding="utf-8") == before


def test_selector_that_failed_its_action_is_not_kept(tmp_path):
    button = FakeElement("signin", tag="button", failures={"click": "detached", "force_click": "detached"})
    driver = FakeDriver({'button:has-text("Sign in")': [button]})
    route = Route("route_signin", [Step("Sign in", "click", "#login")])

    run = _orchestrator(tmp_path, driver).run_route(route)

    assert run.result.steps[0].status == "failed"
    assert run.result.steps[0].error == "force_click failed: detached"
    assert run.result.selector_improvements == []
    assert run.improved_route_path is None
    assert not list(tmp_path.glob("fixed_route_*.json"))


def test_generate_improved_route_is_pure():
    """Two calls give distinct ids and leave the input alone."""
    route = Route("route_p", [
        Step("phone", "fill", 'input[name="phone"]', value="1"),
        Step("send", "click", "#send"),
    ])
    improvements = [SelectorImprovement("phone", 'input[name="phone"]', '[name="tel"]', "field_alias", 0.85, T0)]

    first = generate_improved_route(route, improvements, now=T0)
    second = generate_improved_route(route, improvements, now=T0)

    assert first.route_id != second.route_id
    assert first.route_id.startswith("improved_route_p_20250101T000000Z_")
    assert route.steps[0].target == 'input[name="phone"]'
    assert first.steps[0].target == '[name="tel"]'
    assert first.steps[0].confidence == 0.85
    assert first.steps[1] == route.steps[1]
    assert first.is_fixed and first.is_improved_route
    assert first.improvement_summary["total_improvements"] == 1
    assert first.improvement_summary["strategies_used"] == ["field_alias"]


def test_session_crash_still_writes_result(tmp_path):
    driver = FakeDriver({"#go": [FakeElement("go")]}, crash_on="click")
    route = Route("route_crash", [
        Step("open", "navigate", "https://example.com"),
        Step("go", "click", "#go"),
        Step("check", "assert_url", "*/done"),
    ])

    run = _orchestrator(tmp_path, driver).run_route(route)

    assert [step.status for step in run.result.steps] == ["success", "unknown", "unknown"]
    assert run.result.error == "Browser has been closed"
    assert not run.result.success
    assert run.result_path.exists()


def test_failed_steps_do_not_abort_and_are_chained(tmp_path):
    route = Route("route_fail", [
        Step("press", "click", "#missing"),
        Step("open", "navigate", "https://example.com"),
        Step("check", "assert_text", "h1", value="Welcome"),
    ])
    driver = FakeDriver({"h1": [FakeElement("h1", text="Error")]})

    result = _orchestrator(tmp_path, driver).run_route(route).result

    assert [step.status for step in result.steps] == ["failed", "success", "failed"]
    assert len(result.failure_chains) == 1
    assert result.failure_chains[0].root.label == "press"
    assert result.success_rate == 33


def test_second_run_is_flagged_duplicate(tmp_path):
    route_path = _write_route(tmp_path / "route_login.json", _login_route())
    orchestrator = _orchestrator(tmp_path, _login_driver())

    first = orchestrator.run_file(route_path)
    second = orchestrator.run_file(route_path)

    assert not first.duplicate.is_duplicate
    assert second.duplicate.is_duplicate
    assert first.result_path != second.result_path


def test_auto_fix_runs_newest_repaired_route(tmp_path):
    route_path = _write_route(tmp_path / "route_abc.json", Route("route_abc", [Step("go", "click", "#old")]))
    driver = FakeDriver({"#new": [FakeElement("new")]})
    assert not _orchestrator(tmp_path, driver).run_file(route_path).result.success

    fixed_path = FileStore(tmp_path).save_route(
        Route("fixed_abc", [Step("go", "click", "#new")], original_route_id="route_abc"),
        "fixed_route_route_abc_20250101T000000Z.json",
    )
    run = _orchestrator(tmp_path, driver, auto_fix=True).run_file(route_path)

    assert run.route_file == fixed_path
    assert run.result.route_id == "fixed_abc"
    assert run.result.is_fixed_route
    assert run.result.success

def test_checkbox_fill_failure_produces_repaired_route(tmp_path):
    """The next auto-fix run clicks the checkbox instead of filling it."""
    box = FakeElement("terms", tag="input[checkbox]", failures={"fill": 'Input of type "checkbox" cannot be filled'})
    driver = FakeDriver({"#terms": [box]})
    route_path = _write_route(tmp_path / "route_terms.json", Route("route_terms", [
        Step("open", "navigate", "https://example.com/signup"),
        Step("terms", "fill", "#terms", value="on"),
    ]))

    first = _orchestrator(tmp_path, driver).run_file(route_path)

    assert first.result.steps[1].status == "failed"
    assert first.improved_route_path is None
    assert first.fixed_route_path.name.startswith("fixed_route_route_terms_")
    fixed = FileStore(tmp_path).load_route(first.fixed_route_path)
    assert fixed.route_id.startswith("fixed_route_terms_")
    assert fixed.original_route_id == "route_terms"
    assert fixed.steps[1].action == "click"
    assert fixed.steps[1].extras["original_action"] == "fill"

    second = _orchestrator(tmp_path, driver, auto_fix=True).run_file(route_path)

    assert second.route_file == first.fixed_route_path
    assert second.result.is_fixed_route
    assert second.result.success
    assert box.checked


def test_unrecognised_failure_produces_no_repaired_route(tmp_path):
    run = _orchestrator(tmp_path, FakeDriver()).run_route(Route("route_x", [Step("press", "click", "#missing")]))

    assert run.result.failed_count == 1
    assert run.fixed_route_path is None


def test_orchestrator_leaves_package_log_level_alone(tmp_path, monkeypatch):
    package_logger = logging.getLogger("route_runner")
    monkeypatch.setattr(package_logger, "level", logging.NOTSET)

    _orchestrator(tmp_path, FakeDriver())

    assert package_logger.level == logging.NOTSET



def test_missing_route_file_is_fatal(tmp_path):
    with pytest.raises(RouteLoadError):
        _orchestrator(tmp_path, FakeDriver()).run_file(tmp_path / "route_none.json")


def test_ai_report_skipped_without_api_key(tmp_path, monkeypatch):
    for name in ("OPENAI_API_KEY", "API_KEY"):
        monkeypatch.delenv(name, raising=False)

    run = _orchestrator(tmp_path, _login_driver(), ai_report=True).run_route(_login_route())

    assert run.result.success
    assert not (run.artifacts_dir / "ai_report.md").exists()
