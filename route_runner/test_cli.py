"""Tests for CLI argument handling."""
from __future__ import annotations

import json

import pytest

from .cli import build_parser, build_settings, load_manual_selectors, main, parse_viewport
from .errors import SetupError


def test_parse_viewport():
    assert parse_viewport("375x812") == (375, 812)
    assert parse_viewport("1280X720") == (1280, 720)
    assert parse_viewport(None) is None
    with pytest.raises(SetupError):
        parse_viewport("wide")


def test_build_settings_defaults(monkeypatch):
    monkeypatch.delenv("AUTO_FIX_FAILURES", raising=False)
    settings = build_settings(build_parser().parse_args([]))

    assert settings.headless
    assert settings.interaction_timeout_ms == 5000
    assert settings.wait_timeout_ms == 10000
    assert settings.screenshots == "on-failure"
    assert settings.check_duplicates
    assert not settings.auto_fix
    assert settings.manual_selectors is None


def test_build_settings_from_flags_and_env(monkeypatch, tmp_path):
    monkeypatch.setenv("AUTO_FIX_FAILURES", "true")
    args = build_parser().parse_args([
        "--headed", "--viewport", "375x812", "--timeout", "2000", "--results-dir", str(tmp_path),
        "--skip-duplicate-check", "--no-report", "--base-url", "https://example.com",
    ])

    settings = build_settings(args)

    assert not settings.headless
    assert settings.viewport == (375, 812)
    assert settings.wait_timeout_ms == 4000
    assert settings.results_dir == tmp_path
    assert not settings.check_duplicates
    assert not settings.generate_report
    assert settings.auto_fix
    assert settings.base_url == "https://example.com"


def test_route_and_batch_flags_are_exclusive():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--route-file", "a.json", "--batch-metadata", "b.json"])


def test_load_manual_selectors(tmp_path):
    good = tmp_path / "selectors.json"
    good.write_text(json.dumps({"検索": ['button:has-text("検索")']}, ensure_ascii=False), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"検索": "button"}), encoding="utf-8")

    assert load_manual_selectors(str(good)) == {"検索": ['button:has-text("検索")']}
    assert load_manual_selectors(None) is None
    with pytest.raises(SetupError):
        load_manual_selectors(str(bad))


def test_main_without_routes_fails(tmp_path):
    assert main(["--results-dir", str(tmp_path / "empty")]) == 1


def test_main_with_missing_route_file_fails(tmp_path):
    assert main(["--results-dir", str(tmp_path), "--route-file", str(tmp_path / "route_none.json")]) == 1


def test_main_runs_batch_without_routes(tmp_path):
    metadata = tmp_path / "batch_metadata_009.json"
    metadata.write_text(json.dumps({"batch_id": "batch_009", "categories": ["login"], "routes": []}),
                        encoding="utf-8")

    assert main(["--results-dir", str(tmp_path / "results"), "--batch-metadata", str(metadata)]) == 0
    saved = json.loads((tmp_path / "batch_result_009.json").read_text(encoding="utf-8"))
    assert saved["skipped_categories"] == 1
