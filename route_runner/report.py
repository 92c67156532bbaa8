"""简单的Markdown报告生成器，不依赖LLM"""
from __future__ import annotations

from pathlib import Path
from typing import List

from .chains import summarize_chains
from .models import BatchResult, ExecutionResult, FailureChain, utc_now

_STATUS_ICONS = {
    "success": "✅",
    "failed": "❌",
    "skipped": "⏭️",
    "unknown": "❔",
    "partial": "⚠️",
}


def _cell(text: object) -> str:
    return str(text if text is not None else "N/A").replace("|", "\\|").replace("\n", " ")


def _footer() -> str:
    return f"---\n\n*报告生成时间: {utc_now().strftime('%Y-%m-%d %H:%M:%S UTC')}*\n"


def render_failure_chains(chains: List[FailureChain]) -> str:
    """失败链分析段落"""
    if not chains:
        return ""
    summary = summarize_chains(chains)
    lines = ["## 🔗 失败链分析", ""]
    lines.append(
        f"共 {summary['total_failures']} 个失败，归为 {summary['total_chains']} 条失败链"
        f"（其中 {summary['cascading_chains']} 条为连锁失败）。"
    )
    lines.append("")
    lines.append("| # | 根因步骤 | 分类 | 影响 | 连锁失败 |")
    lines.append("|---|----------|------|------|----------|")
    for number, chain in enumerate(chains, start=1):
        cascaded = "<br>".join(_cell(record.label) for record in chain.cascaded) or "-"
        lines.append(
            f"| {number} | {_cell(chain.root.label)} | `{chain.root.category.value}` | {chain.impact} | {cascaded} |"
        )
    lines.append("")
    lines.append("**根因分类统计**:")
    lines.append("")
    for category, count in sorted(summary["root_causes_by_category"].items()):
        lines.append(f"- `{category}`: {count}")
    lines.append("")
    return "\n".join(lines) + "\n"


class RouteReportGenerator:
    """生成单条路线的执行报告"""

    def render(self, result: ExecutionResult) -> str:
        status = "✅ 通过" if result.success else "❌ 失败"
        parts = [
            "# 路线执行报告\n\n",
            f"**路线ID**: `{result.route_id}`  \n",
            f"**执行时间**: {result.timestamp.strftime('%Y-%m-%d %H:%M:%S')}  \n",
            f"**结果**: {status}  \n",
        ]
        if result.is_fixed_route:
            parts.append(f"**原始路线**: `{result.original_route_id or 'unknown'}`  \n")
        if result.error:
            parts.append(f"**运行错误**: {result.error}  \n")
        parts.append("\n")

        parts.append("## 📊 总体统计\n\n")
        parts.append("| 指标 | 数值 |\n")
        parts.append("|------|------|\n")
        parts.append(f"| 总步骤数 | {result.total_steps} |\n")
        parts.append(f"| ✅ 成功 | {result.success_count} |\n")
        parts.append(f"| ❌ 失败 | {result.failed_count} |\n")
        parts.append(f"| ⏭️ 跳过 | {result.skipped_count} |\n")
        parts.append(f"| 成功率 | {result.success_rate}% |\n")
        parts.append(f"| 执行时长 | {result.execution_time_ms / 1000:.2f}秒 |\n\n")

        parts.append("## 📝 步骤详情\n\n")
        parts.append("| # | 步骤 | 操作 | 目标 | 状态 | 策略 | 错误信息 |\n")
        parts.append("|---|------|------|------|------|------|----------|\n")
        for index, step in enumerate(result.steps, start=1):
            icon = _STATUS_ICONS.get(step.status, "")
            parts.append(
                f"| {index} | {_cell(step.label)} | `{step.action}` | `{_cell(step.target)}` | "
                f"{icon} {step.status} | {_cell(step.strategy or '-')} | {_cell(step.error or '-')} |\n"
            )
        parts.append("\n")

        parts.append(render_failure_chains(result.failure_chains))

        if result.selector_improvements:
            parts.append("## 🔧 选择器改进\n\n")
            parts.append("| 步骤 | 原选择器 | 新选择器 | 策略 | 置信度 |\n")
            parts.append("|------|----------|----------|------|--------|\n")
            for item in result.selector_improvements:
                parts.append(
                    f"| {_cell(item.step_label)} | `{_cell(item.original_selector)}` | "
                    f"`{_cell(item.improved_selector)}` | {item.strategy} | {item.confidence:.2f} |\n"
                )
            parts.append("\n")

        parts.append(_footer())
        return "".join(parts)

    def write_route_report(self, result: ExecutionResult, report_path: Path) -> Path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(self.render(result), encoding="utf-8")
        return report_path


class BatchReportGenerator:
    """生成批量执行报告"""

    def render(self, result: BatchResult) -> str:
        parts = [
            "# 批量执行报告\n\n",
            f"**批次ID**: `{result.batch_id}`  \n",
            f"**执行时间**: {result.executed_at.strftime('%Y-%m-%d %H:%M:%S')}  \n",
            f"**总时长**: {result.total_execution_time_ms / 1000:.2f}秒  \n\n",
        ]

        parts.append("## 📊 总体统计\n\n")
        parts.append("| 指标 | 数值 |\n")
        parts.append("|------|------|\n")
        parts.append(f"| 总路线数 | {result.total_routes} |\n")
        parts.append(f"| ✅ 成功 | {result.successful_routes} |\n")
        parts.append(f"| ⚠️ 部分成功 | {result.partial_routes} |\n")
        parts.append(f"| ❌ 失败 | {result.failed_routes} |\n")
        parts.append(f"| ⏭️ 跳过的分类 | {result.skipped_categories} |\n\n")

        parts.append("## 📂 分类统计\n\n")
        parts.append("| 分类 | 状态 | 路线数 | 成功 | 部分成功 | 失败 | 平均成功率 |\n")
        parts.append("|------|------|--------|------|----------|------|------------|\n")
        for summary in result.categories:
            parts.append(
                f"| {_cell(summary.category)} | {summary.status} | {summary.total} | {summary.successful} | "
                f"{summary.partial} | {summary.failed} | {summary.average_success_rate}% |\n"
            )
        parts.append("\n")

        unsuccessful = [item for item in result.results if item.status != "success"]
        if unsuccessful:
            parts.append("## ❌ 未通过的路线\n\n")
            parts.append("| 路线ID | 分类 | 状态 | 成功率 | 错误信息 |\n")
            parts.append("|--------|------|------|--------|----------|\n")
            for item in unsuccessful:
                error = item.error
                if error is None and item.execution is not None:
                    error = next((step.error for step in item.execution.steps if step.status == "failed"), None)
                parts.append(
                    f"| `{item.route_id}` | {_cell(item.category)} | {_STATUS_ICONS.get(item.status, '')} "
                    f"{item.status} | {item.success_rate}% | {_cell(error or '-')} |\n"
                )
            parts.append("\n")

        chains = [chain for execution in result.execution_results for chain in execution.failure_chains]
        parts.append(render_failure_chains(chains))
        parts.append(_footer())
        return "".join(parts)

    def write_batch_report(self, result: BatchResult, report_path: Path) -> Path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(self.render(result), encoding="utf-8")
        return report_path
