"""Sequential execution of many routes grouped by category."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

from .errors import SetupError
from .models import (
    BatchMetadata,
    BatchResult,
    BatchRouteInfo,
    BatchRouteResult,
    CategorySummary,
    ExecutionResult,
    utc_now,
)
from .orchestrator import RouteOrchestrator, RunnerSettings
from .report import BatchReportGenerator
from .storage import FileStore

logger = logging.getLogger(__name__)


def route_status(result: ExecutionResult) -> str:
    """success when every executed step passed, failed when none did, partial otherwise."""
    if result.success:
        return "success"
    if result.success_count == 0:
        return "failed"
    return "partial"


def summarize_category(category: str, results: List[BatchRouteResult]) -> CategorySummary:
    if not results:
        return CategorySummary(category=category, status="skipped")
    rates = [item.success_rate for item in results]
    return CategorySummary(
        category=category,
        status="executed",
        total=len(results),
        successful=sum(1 for item in results if item.status == "success"),
        partial=sum(1 for item in results if item.status == "partial"),
        failed=sum(1 for item in results if item.status == "failed"),
        average_success_rate=round(sum(rates) / len(rates)),
    )


class BatchOrchestrator:
    """Runs every route of a batch, one category after another."""

    def __init__(
        self,
        settings: Optional[RunnerSettings] = None,
        route_runner: Optional[RouteOrchestrator] = None,
        store: Optional[FileStore] = None,
        pause: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.store = store or FileStore(self.settings.results_dir)
        self.route_runner = route_runner or RouteOrchestrator(self.settings, store=self.store)
        self.pause = pause or time.sleep
        self.logger = logging.getLogger("route_runner.batch")

    def run_file(self, metadata_path: Path) -> BatchResult:
        path = Path(metadata_path)
        metadata = self.store.load_batch_metadata(path)
        return self.run(metadata, output_dir=path.parent)

    def run(self, metadata: BatchMetadata, output_dir: Optional[Path] = None) -> BatchResult:
        output_dir = Path(output_dir) if output_dir is not None else (metadata.base_dir or self.store.results_dir)
        started = time.monotonic()
        result = BatchResult(batch_id=metadata.batch_id, executed_at=utc_now(), artifacts_dir=str(output_dir))

        categories = metadata.ordered_categories()
        self.logger.info("开始批量执行 %s: %d 个分类, %d 条路线", metadata.batch_id, len(categories),
                         len(metadata.routes))
        first_route = True
        for category in categories:
            infos = metadata.routes_for(category)
            if not infos:
                self.logger.info("分类 %s 没有路线，跳过", category)
                result.categories.append(summarize_category(category, []))
                continue

            self.logger.info("执行分类 %s (%d 条路线)", category, len(infos))
            category_results = []
            for index, info in enumerate(infos, start=1):
                if not first_route:
                    self.pause(self.settings.route_pause_ms / 1000)
                first_route = False
                self.logger.info("[%d/%d] 运行: %s", index, len(infos), info.route_id)
                route_result = self._run_route(info, metadata.base_dir)
                category_results.append(route_result)
                result.results.append(route_result)
            result.categories.append(summarize_category(category, category_results))

        result.total_execution_time_ms = int((time.monotonic() - started) * 1000)
        result_path = self.store.save_batch_result(result, output_dir)
        BatchReportGenerator().write_batch_report(result, result_path.with_suffix(".md"))
        self.logger.info(
            "批量执行完成: 成功 %d, 部分成功 %d, 失败 %d, 跳过分类 %d",
            result.successful_routes,
            result.partial_routes,
            result.failed_routes,
            result.skipped_categories,
        )
        return result

    def _run_route(self, info: BatchRouteInfo, base_dir: Optional[Path]) -> BatchRouteResult:
        failed = BatchRouteResult(
            route_id=info.route_id,
            category=info.category,
            status="failed",
            success_rate=0,
            test_case_id=info.test_case_id,
        )
        try:
            if info.route is not None:
                run = self.route_runner.run_route(info.route)
            else:
                route_path = self.store.resolve_route_path(info, base_dir)
                if route_path is None:
                    failed.error = f"Route file not found: {info.route_file_name or info.route_id}"
                    self.logger.error("路线文件不存在: %s", info.route_file_name or info.route_id)
                    return failed
                run = self.route_runner.run_file(route_path)
        except SetupError as exc:
            failed.error = str(exc)
            self.logger.error("路线 %s 无法执行: %s", info.route_id, exc)
            return failed
        except Exception as exc:  # pylint: disable=broad-except
            failed.error = str(exc)
            self.logger.exception("路线 %s 执行异常", info.route_id)
            return failed

        execution = run.result
        return BatchRouteResult(
            route_id=execution.route_id,
            category=info.category,
            status=route_status(execution),
            success_rate=execution.success_rate,
            execution_time_ms=execution.execution_time_ms,
            test_case_id=info.test_case_id,
            error=execution.error,
            result_file=str(run.result_path),
            execution=execution,
        )
