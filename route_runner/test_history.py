"""Tests for the run history guard."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from .errors import HistoryError
from .history import RunHistoryGuard
from .models import ExecutionResult, StepResult

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _result(timestamp=NOW, failed=False):
    steps = [StepResult("open", "navigate", "/", None, "success", timestamp)]
    if failed:
        steps.append(StepResult("press", "click", "#go", None, "failed", timestamp, error="Target not found: #go"))
    return ExecutionResult(
        route_id="route_1",
        total_steps=len(steps),
        success_count=1,
        failed_count=1 if failed else 0,
        execution_time_ms=1200,
        timestamp=timestamp,
        steps=steps,
    )


def test_no_history_is_not_duplicate(tmp_path):
    guard = RunHistoryGuard(tmp_path / ".execution-history.json")
    check = guard.check_duplicate("route_250301.json", now=NOW)
    assert not check.is_duplicate
    assert check.last_run is None


def test_recent_run_is_duplicate(tmp_path):
    """A run recorded 10 minutes ago trips the 30 minute window."""
    guard = RunHistoryGuard(tmp_path / ".execution-history.json")
    guard.record("route_250301.json", _result(failed=True))

    check = guard.check_duplicate("route_250301.json", now=NOW + timedelta(minutes=10))

    assert check.is_duplicate
    assert check.failed_count == 1
    assert check.last_failed_steps == [
        {"label": "press", "action": "click", "target": "#go", "error": "Target not found: #go"}
    ]
    assert guard.last_run_failed("route_250301.json")


def test_old_run_is_not_duplicate(tmp_path):
    guard = RunHistoryGuard(tmp_path / ".execution-history.json")
    guard.record("route_250301.json", _result())

    check = guard.check_duplicate("route_250301.json", now=NOW + timedelta(minutes=31))

    assert not check.is_duplicate
    assert check.last_run == NOW


def test_history_keeps_last_ten_entries(tmp_path):
    path = tmp_path / ".execution-history.json"
    guard = RunHistoryGuard(path)
    for minute in range(12):
        guard.record("route_a.json", _result(timestamp=NOW + timedelta(minutes=minute)))

    raw = json.loads(path.read_text(encoding="utf-8"))

    assert len(raw["route_a.json"]) == 10
    assert raw["route_a.json"][0]["timestamp"] == (NOW + timedelta(minutes=2)).isoformat()


def test_history_is_keyed_by_file_name(tmp_path):
    guard = RunHistoryGuard(tmp_path / ".execution-history.json")
    guard.record("/some/where/route_a.json", _result(failed=True))

    assert guard.last_failed_steps("route_a.json")[0]["label"] == "press"
    assert not guard.last_failed_steps("route_b.json")


def test_reads_legacy_entries(tmp_path):
    """Older files nest the counters under 'result' and use Z timestamps."""
    path = tmp_path / ".execution-history.json"
    path.write_text(
        json.dumps({
            "route_old.json": [{
                "timestamp": "2025-03-01T08:50:00.000Z",
                "result": {"success_count": 2, "failed_count": 1},
                "failedSteps": [{"label": "x", "error": "boom"}],
            }]
        }),
        encoding="utf-8",
    )

    check = RunHistoryGuard(path).check_duplicate("route_old.json", now=NOW)

    assert check.is_duplicate
    assert check.success_count == 2
    assert check.last_failed_steps == [{"label": "x", "error": "boom"}]


def test_malformed_history_raises(tmp_path):
    path = tmp_path / ".execution-history.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(HistoryError):
        RunHistoryGuard(path).check_duplicate("route_a.json")


def test_entry_without_timestamp_raises(tmp_path):
    path = tmp_path / ".execution-history.json"
    path.write_text(json.dumps({"route_a.json": [{"success_count": 1}]}), encoding="utf-8")
    with pytest.raises(HistoryError):
        RunHistoryGuard(path).check_duplicate("route_a.json")
