"""Command-line interface for the route runner."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from .batch import BatchOrchestrator
from .errors import SetupError
from .orchestrator import RouteOrchestrator, RunnerSettings
from .storage import FileStore, is_category_batch, load_json


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run UI test routes with adaptive element resolution")
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--route-file",
        help="Route JSON to run (default: newest route_*.json in the results directory)",
    )
    source.add_argument(
        "--batch-metadata",
        help="Batch metadata JSON; runs every listed route by category",
    )
    parser.add_argument(
        "--results-dir",
        default="test-results",
        help="Directory for results, history and repaired routes (default: test-results)",
    )
    parser.add_argument("--base-url", help="Base URL that relative navigation targets are joined onto")
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Run browser in headed mode (default is headless)",
    )
    parser.add_argument(
        "--browser",
        choices=["chromium", "firefox", "webkit"],
        default="chromium",
        help="Playwright browser engine",
    )
    parser.add_argument("--viewport", help="Viewport size as WIDTHxHEIGHT, e.g. 375x812")
    parser.add_argument(
        "--timeout",
        type=int,
        default=5_000,
        help="Interaction timeout in milliseconds; waits use twice this value",
    )
    parser.add_argument(
        "--screenshots",
        choices=["none", "on-failure", "all"],
        default="on-failure",
        help="Screenshot capture policy",
    )
    parser.add_argument(
        "--manual-selectors",
        help="JSON file mapping keywords to selector lists, replacing the built-in table",
    )
    parser.add_argument(
        "--skip-duplicate-check",
        action="store_true",
        help="Do not consult the run history before executing",
    )
    parser.add_argument(
        "--auto-fix",
        action="store_true",
        help="Run the newest repaired route when the previous run failed (or AUTO_FIX_FAILURES=true)",
    )
    parser.add_argument(
        "--no-report",
        action="store_true",
        help="Disable the Markdown route report",
    )
    parser.add_argument(
        "--ai-report",
        action="store_true",
        help="Also write an LLM failure narrative (needs OPENAI_API_KEY and OPENAI_MODEL)",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print the result payload to stdout upon completion",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def parse_viewport(raw: Optional[str]) -> Optional[Tuple[int, int]]:
    if not raw:
        return None
    try:
        width, height = raw.lower().split("x", 1)
        return int(width), int(height)
    except ValueError as exc:
        raise SetupError(f"Invalid viewport '{raw}', expected WIDTHxHEIGHT") from exc


def load_manual_selectors(raw_path: Optional[str]) -> Optional[Dict[str, List[str]]]:
    if not raw_path:
        return None
    table = load_json(raw_path)
    for keyword, selectors in table.items():
        if not isinstance(selectors, list) or not all(isinstance(item, str) for item in selectors):
            raise SetupError(f"Manual selectors for '{keyword}' must be a list of strings")
    return table


def build_settings(args: argparse.Namespace) -> RunnerSettings:
    auto_fix_env = os.getenv("AUTO_FIX_FAILURES", "").strip().lower() == "true"
    return RunnerSettings(
        headless=not args.headed,
        browser=args.browser,
        viewport=parse_viewport(args.viewport),
        base_url=args.base_url,
        interaction_timeout_ms=args.timeout,
        wait_timeout_ms=args.timeout * 2,
        results_dir=Path(args.results_dir),
        screenshots=args.screenshots,
        manual_selectors=load_manual_selectors(args.manual_selectors),
        check_duplicates=not args.skip_duplicate_check,
        auto_fix=args.auto_fix or auto_fix_env,
        generate_report=not args.no_report,
        ai_report=args.ai_report,
    )


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    try:
        settings = build_settings(args)
        store = FileStore(settings.results_dir)
        if args.batch_metadata:
            return _run_batch(args, settings, store, Path(args.batch_metadata))

        route_path = Path(args.route_file) if args.route_file else store.latest_route_file()
        if route_path is None:
            logging.error("在 %s 中没有找到 route_*.json，请通过 --route-file 指定", settings.results_dir)
            return 1
        if route_path.is_file() and is_category_batch(load_json(route_path)):
            logging.info("分类批量路线文件，按批量模式执行: %s", route_path)
            return _run_batch(args, settings, store, route_path)
        return _run_route(args, settings, store, route_path)
    except SetupError as exc:
        logging.error("执行失败: %s", exc)
        return 1


def _run_route(args: argparse.Namespace, settings: RunnerSettings, store: FileStore, route_path: Path) -> int:
    orchestrator = RouteOrchestrator(settings, store=store)
    run = orchestrator.run_file(route_path)
    result = run.result

    print("")
    print("=" * 80)
    print("执行完成")
    print("=" * 80)
    print(f"路线ID: {result.route_id}")
    print(f"状态: {'success' if result.success else 'failed'}")
    print(f"成功步骤: {result.success_count}/{result.executed_steps} ({result.success_rate}%)")
    print(f"执行时长: {result.execution_time_ms / 1000:.2f}秒")
    print(f"失败链: {len(result.failure_chains)}")
    print("")
    print(f"结果文件: {run.result_path}")
    print(f"运行目录: {run.artifacts_dir}")
    if run.improved_route_path:
        print(f"改进路线: {run.improved_route_path}")
    if run.fixed_route_path:
        print(f"修复路线: {run.fixed_route_path}")
    print("")

    if args.summary:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))

    return 0 if result.success else 1


def _run_batch(args: argparse.Namespace, settings: RunnerSettings, store: FileStore, metadata_path: Path) -> int:
    print("=" * 80)
    print("批量执行模式")
    print("=" * 80)

    result = BatchOrchestrator(settings, store=store).run_file(metadata_path)

    print("\n" + "=" * 80)
    print("批量执行完成")
    print("=" * 80)
    print(f"批次 ID: {result.batch_id}")
    print(f"总路线数: {result.total_routes}")
    print(f"✓ 成功: {result.successful_routes}")
    print(f"~ 部分成功: {result.partial_routes}")
    print(f"✗ 失败: {result.failed_routes}")
    print(f"跳过分类: {result.skipped_categories}")
    print(f"\n结果目录: {result.artifacts_dir}")

    if args.summary:
        print("\n" + json.dumps(result.to_dict(), ensure_ascii=False, indent=2))

    return 0 if result.successful_routes == result.total_routes else 1


if __name__ == "__main__":
    sys.exit(main())
