"""Runs one route end to end and persists everything it produced."""
from __future__ import annotations

import copy
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, ContextManager, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from .ai_report import AIReportGenerator
from .chains import analyze_failure_chains, failure_records
from .context import RunContext
from .dispatcher import INTERACTION_TIMEOUT_MS, WAIT_TIMEOUT_MS, ActionDispatcher
from .driver import Driver, playwright_session
from .history import RunHistoryGuard
from .models import DuplicateCheck, ExecutionResult, Route, SelectorImprovement, StepResult, utc_now
from .repair import generate_fixed_route
from .report import RouteReportGenerator
from .resolver import ElementResolver
from .step_executor import StepExecutor, first_line
from .storage import FileStore

DriverFactory = Callable[[], ContextManager[Driver]]


@dataclass
# pylint: disable=too-many-instance-attributes
class RunnerSettings:
    """Runtime knobs for route and batch runs."""

    headless: bool = True
    browser: str = "chromium"
    viewport: Optional[Tuple[int, int]] = None
    base_url: Optional[str] = None
    interaction_timeout_ms: int = INTERACTION_TIMEOUT_MS
    wait_timeout_ms: int = WAIT_TIMEOUT_MS
    results_dir: Path = Path("test-results")
    screenshots: str = "on-failure"  # values: none | on-failure | all
    capture_dom: bool = True
    manual_selectors: Optional[Dict[str, List[str]]] = None
    check_duplicates: bool = True
    auto_fix: bool = False
    generate_report: bool = True
    ai_report: bool = False  # LLM narrative, needs OPENAI_API_KEY
    route_pause_ms: int = 1_000


@dataclass
class RouteRun:
    """Everything a single route run left behind."""

    result: ExecutionResult
    result_path: Path
    artifacts_dir: Path
    route_file: Optional[Path] = None
    improved_route_path: Optional[Path] = None
    fixed_route_path: Optional[Path] = None
    report_path: Optional[Path] = None
    duplicate: Optional[DuplicateCheck] = None
    improvements: List[SelectorImprovement] = field(default_factory=list)


def generate_improved_route(
    route: Route,
    improvements: Sequence[SelectorImprovement],
    now: Optional[datetime] = None,
) -> Route:
    """Return a new Route with the improved selectors substituted in.

    ``route`` itself is left untouched. Every call yields a distinct route_id.
    """
    now = now or utc_now()
    by_label = {item.step_label: item for item in improvements}

    steps = []
    for step in route.steps:
        improvement = by_label.get(step.label)
        if improvement is None or step.target != improvement.original_selector:
            steps.append(dataclasses.replace(step, extras=copy.deepcopy(step.extras)))
            continue
        steps.append(
            dataclasses.replace(
                step,
                target=improvement.improved_selector,
                original_target=step.target,
                improvement_strategy=improvement.strategy,
                confidence=improvement.confidence,
                is_improved=True,
                extras=copy.deepcopy(step.extras),
            )
        )

    confidences = [item.confidence for item in improvements]
    summary = {
        "total_improvements": len(improvements),
        "improved_steps": sum(1 for step in steps if step.is_improved),
        "strategies_used": sorted({item.strategy for item in improvements}),
        "average_confidence": round(sum(confidences) / len(confidences), 2) if confidences else 0,
    }
    stamp = now.strftime("%Y%m%dT%H%M%SZ")
    return Route(
        route_id=f"improved_{route.route_id}_{stamp}_{uuid4().hex[:8]}",
        steps=steps,
        category=route.category,
        test_case_id=route.test_case_id,
        original_viewpoint=route.original_viewpoint,
        original_route_id=route.route_id,
        fix_timestamp=route.fix_timestamp,
        improvement_timestamp=now.isoformat(),
        is_improved_route=True,
        improvement_summary=summary,
        extras=copy.deepcopy(route.extras),
    )


class RouteOrchestrator:
    """Runs a Route in a fresh browser session and persists the outcome."""

    def __init__(
        self,
        settings: Optional[RunnerSettings] = None,
        driver_factory: Optional[DriverFactory] = None,
        store: Optional[FileStore] = None,
        history: Optional[RunHistoryGuard] = None,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.store = store or FileStore(self.settings.results_dir)
        self.history = history or RunHistoryGuard(self.store.history_path)
        self.driver_factory = driver_factory or self._playwright_factory
        self.logger = logging.getLogger("route_runner")

    def run_file(self, route_path: Path) -> RouteRun:
        """Run a route file, honouring the duplicate guard and auto-fix."""
        path = Path(route_path)
        duplicate = None
        if self.settings.check_duplicates:
            duplicate = self.history.check_duplicate(path.name)
            if duplicate.is_duplicate:
                for failed in duplicate.last_failed_steps:
                    self.logger.warning("  上次失败: %s - %s", failed.get("label"), failed.get("error"))
                self.logger.warning("继续执行，结果可能与上次相同")

        route = self.store.load_route(path)
        if self.settings.auto_fix and self.history.last_run_failed(path.name):
            fixed_routes = self.store.find_fixed_routes(route.route_id)
            if fixed_routes:
                path = fixed_routes[0]
                self.logger.info("自动修复: 改为执行修复后的路线 %s", path.name)
                route = self.store.load_route(path)
            else:
                self.logger.info("自动修复: 未找到 %s 的修复路线", route.route_id)

        return self.run_route(route, route_file=path, duplicate=duplicate)

    def run_route(
        self,
        route: Route,
        route_file: Optional[Path] = None,
        duplicate: Optional[DuplicateCheck] = None,
    ) -> RouteRun:
        artifacts_dir = self._prepare_artifacts(self._build_run_id(route.route_id))
        log_handler = self._attach_run_logger(artifacts_dir / "runner.log")
        try:
            context = RunContext(route_id=route.route_id, artifacts_dir=artifacts_dir, base_url=self.settings.base_url)
            if route.is_fixed:
                self.logger.info("Running repaired route %s (original: %s)", route.route_id,
                                 route.original_route_id or "unknown")
            result = self._execute(route, context)
            return self._persist(route, route_file, result, context, artifacts_dir, duplicate)
        finally:
            self.logger.removeHandler(log_handler)
            log_handler.close()

    def _execute(self, route: Route, context: RunContext) -> ExecutionResult:
        started_at = utc_now()
        started = time.monotonic()
        step_results: List[StepResult] = []
        error: Optional[str] = None

        self.logger.info("Starting route %s (%d steps)", route.route_id, len(route.steps))
        try:
            with self.driver_factory() as driver:
                executor = self._build_executor(driver)
                for index, step in enumerate(route.steps, start=1):
                    step_results.append(executor.run_step(step, index, context))
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.exception("Run crashed with unexpected error")
            error = first_line(exc)
            for step in route.steps[len(step_results):]:
                step_results.append(
                    StepResult(
                        label=step.label,
                        action=step.action,
                        target=step.target,
                        value=step.value,
                        status="unknown",
                        timestamp=utc_now(),
                        fix_reason=step.fix_reason,
                    )
                )

        result = ExecutionResult(
            route_id=route.route_id,
            total_steps=len(route.steps),
            success_count=sum(1 for item in step_results if item.status == "success"),
            failed_count=sum(1 for item in step_results if item.status == "failed"),
            skipped_count=sum(1 for item in step_results if item.status == "skipped"),
            execution_time_ms=int((time.monotonic() - started) * 1000),
            timestamp=started_at,
            steps=step_results,
            is_fixed_route=route.is_fixed,
            original_route_id=route.original_route_id,
            error=error,
            selector_improvements=list(context.improvements),
        )
        result.failure_chains = analyze_failure_chains(failure_records(result))
        self.logger.info(
            "Route %s finished: %d success, %d failed, %d skipped (%d%%)",
            route.route_id,
            result.success_count,
            result.failed_count,
            result.skipped_count,
            result.success_rate,
        )
        return result

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def _persist(
        self,
        route: Route,
        route_file: Optional[Path],
        result: ExecutionResult,
        context: RunContext,
        artifacts_dir: Path,
        duplicate: Optional[DuplicateCheck],
    ) -> RouteRun:
        result_path = self.store.save_result(result, route_file)
        history_key = route_file.name if route_file is not None else f"{route.route_id}.json"
        self.history.record(history_key, result)

        run = RouteRun(
            result=result,
            result_path=result_path,
            artifacts_dir=artifacts_dir,
            route_file=route_file,
            duplicate=duplicate,
            improvements=list(context.improvements),
        )

        base_route = route
        if context.improvements:
            base_route = generate_improved_route(route, context.improvements)
            run.improved_route_path = self.store.save_route(base_route)
            self.logger.info("生成改进路线: %s (%d 处改进)", base_route.route_id, len(context.improvements))

        if result.failed_count:
            fixed = generate_fixed_route(base_route, result)
            if fixed is not None:
                run.fixed_route_path = self.store.save_route(fixed)
                self.logger.info("生成修复路线: %s (%d 处修复)", fixed.route_id, fixed.extras["fix_summary"]["fixed_steps"])

        if self.settings.generate_report:
            run.report_path = RouteReportGenerator().write_route_report(result, artifacts_dir / "test_report.md")
        if self.settings.ai_report:
            self._write_ai_report(route, result, artifacts_dir / "ai_report.md")
        return run

    def _write_ai_report(self, route: Route, result: ExecutionResult, output_path: Path) -> None:
        try:
            generator = AIReportGenerator()
        except ValueError as exc:
            self.logger.warning("Skipping AI report: %s", exc)
            return
        self.logger.info("Generating AI report...")
        generator.generate_report(route, result, output_path)

    def _build_executor(self, driver: Driver) -> StepExecutor:
        resolver = ElementResolver(driver, manual_selectors=self.settings.manual_selectors)
        dispatcher = ActionDispatcher(
            driver,
            resolver,
            interaction_timeout_ms=self.settings.interaction_timeout_ms,
            wait_timeout_ms=self.settings.wait_timeout_ms,
        )
        return StepExecutor(
            driver,
            dispatcher=dispatcher,
            screenshots=self.settings.screenshots,
            capture_dom=self.settings.capture_dom,
        )

    def _playwright_factory(self) -> ContextManager[Driver]:
        return playwright_session(
            headless=self.settings.headless,
            browser_name=self.settings.browser,
            viewport=self.settings.viewport,
        )

    def _prepare_artifacts(self, run_id: str) -> Path:
        run_dir = self.settings.results_dir / run_id
        suffix = 1
        while run_dir.exists():
            run_dir = self.settings.results_dir / f"{run_id}_{suffix}"
            suffix += 1
        run_dir.mkdir(parents=True)
        return run_dir

    @staticmethod
    def _build_run_id(route_id: str) -> str:
        timestamp = utc_now().strftime("%Y%m%dT%H%M%SZ")
        sanitized = route_id.replace(" ", "-").replace("/", "-")
        return f"run_{timestamp}_{sanitized}"

    def _attach_run_logger(self, log_path: Path) -> logging.Handler:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)
        return handler
