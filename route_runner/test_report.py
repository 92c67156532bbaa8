"""Tests for the Markdown report generators."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .chains import analyze_failure_chains, failure_records
from .models import BatchResult, BatchRouteResult, CategorySummary, ExecutionResult, SelectorImprovement, StepResult
from .report import BatchReportGenerator, RouteReportGenerator, render_failure_chains

T0 = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def _failed_result():
    steps = [
        StepResult("press | go", "click", "#go", None, "failed", T0, error="Target not found: #go"),
        StepResult("open", "navigate", "/", None, "success", T0 + timedelta(seconds=1)),
        StepResult("check", "assert_text", "h1", "Welcome", "failed", T0 + timedelta(seconds=2),
                   error="Expected text 'Welcome' but got 'Error'"),
    ]
    result = ExecutionResult("route_a", 3, 1, 2, 2500, T0, steps=steps)
    result.failure_chains = analyze_failure_chains(failure_records(result))
    return result


def test_route_report_contains_steps_and_chains():
    result = _failed_result()
    result.selector_improvements = [
        SelectorImprovement("open", "#old", '[name="tel"]', "field_alias", 0.85, T0),
    ]

    report = RouteReportGenerator().render(result)

    assert report.startswith("# 路线执行报告")
    assert "❌ 失败" in report
    assert "| 成功率 | 33% |" in report
    assert "press \\| go" in report
    assert "## 🔗 失败链分析" in report
    assert "共 2 个失败，归为 1 条失败链" in report
    assert "- `element_issue`: 1" in report
    assert "## 🔧 选择器改进" in report
    assert "field_alias | 0.85" in report


def test_route_report_without_failures_has_no_chain_section():
    result = ExecutionResult("route_ok", 1, 1, 0, 100, T0,
                             steps=[StepResult("open", "navigate", "/", None, "success", T0)])

    report = RouteReportGenerator().render(result)

    assert "✅ 通过" in report
    assert "失败链分析" not in report
    assert render_failure_chains([]) == ""


def test_route_report_shows_crash_error():
    result = ExecutionResult("route_x", 2, 0, 0, 10, T0, error="Browser has been closed")
    assert "**运行错误**: Browser has been closed" in RouteReportGenerator().render(result)


def test_write_route_report(tmp_path):
    path = RouteReportGenerator().write_route_report(_failed_result(), tmp_path / "run" / "test_report.md")
    assert path.read_text(encoding="utf-8").startswith("# 路线执行报告")


def test_batch_report_lists_unsuccessful_routes_and_chains(tmp_path):
    execution = _failed_result()
    result = BatchResult(
        batch_id="batch_001",
        executed_at=T0,
        total_execution_time_ms=4000,
        categories=[
            CategorySummary("login", "executed", total=2, successful=1, partial=1, average_success_rate=67),
            CategorySummary("empty", "skipped"),
        ],
        results=[
            BatchRouteResult("route_ok", "login", "success", 100),
            BatchRouteResult("route_a", "login", "partial", 33, execution=execution),
        ],
    )

    path = BatchReportGenerator().write_batch_report(result, tmp_path / "batch_result_001.md")
    report = path.read_text(encoding="utf-8")

    assert report.startswith("# 批量执行报告")
    assert "| ⏭️ 跳过的分类 | 1 |" in report
    assert "| login | executed | 2 | 1 | 1 | 0 | 67% |" in report
    assert "| empty | skipped | 0 | 0 | 0 | 0 | 0% |" in report
    assert "`route_a`" in report
    assert "Target not found: #go" in report
    assert "`route_ok`" not in report
    assert "## 🔗 失败链分析" in report
