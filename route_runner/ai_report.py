"""LLM-written failure narrative for a route run."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .chains import summarize_chains
from .llm_client import LLMClient, LLMClientError
from .models import ExecutionResult, Route
from .report import RouteReportGenerator

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """你是一名资深的Web测试工程师，负责解读自动化UI测试的执行结果。

请基于提供的执行数据，用Markdown写一份简明的测试分析报告：

1. 先用一两句话说明本次执行是否通过
2. 对每条失败链，说明根因步骤、可能的原因（元素定位、页面跳转、断言不符等）以及受其影响的后续步骤
3. 如果有选择器改进，说明哪些步骤的选择器已经漂移，以及建议采用的新选择器
4. 最后给出不超过5条具体可执行的修复建议

要求：语言简洁客观，不要编造数据中没有的信息。"""


class AIReportGenerator:
    """Generates a narrative report; falls back to the template report on LLM errors."""

    def __init__(self, llm_client: Optional[LLMClient] = None) -> None:
        self.llm_client = llm_client or LLMClient()

    def generate_report(self, route: Route, result: ExecutionResult, output_path: Optional[Path] = None) -> str:
        try:
            report = self._generate_llm_report(self.build_context(route, result))
        except LLMClientError as exc:
            logger.warning("LLM report generation failed, falling back to template: %s", exc)
            report = RouteReportGenerator().render(result)

        if output_path:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(report, encoding="utf-8")
            logger.info("AI report saved to %s", output_path)
        return report

    @staticmethod
    def build_context(route: Route, result: ExecutionResult) -> Dict[str, Any]:
        """Facts handed to the model; only what the run actually recorded."""
        return {
            "route": {
                "route_id": route.route_id,
                "category": route.category,
                "test_case_id": route.test_case_id,
                "viewpoint": route.original_viewpoint,
                "is_fixed_route": route.is_fixed,
            },
            "summary": {
                "total_steps": result.total_steps,
                "success_count": result.success_count,
                "failed_count": result.failed_count,
                "skipped_count": result.skipped_count,
                "success_rate": result.success_rate,
                "error": result.error,
            },
            "failed_steps": [
                {"label": step.label, "action": step.action, "target": step.target, "error": step.error}
                for step in result.steps
                if step.status == "failed"
            ],
            "failure_chains": [chain.to_dict() for chain in result.failure_chains],
            "chain_summary": summarize_chains(result.failure_chains),
            "selector_improvements": [item.to_dict() for item in result.selector_improvements],
        }

    def _generate_llm_report(self, context: Dict[str, Any]) -> str:
        user_prompt = (
            "请分析以下UI测试执行数据并生成报告：\n\n```json\n"
            + json.dumps(context, ensure_ascii=False, indent=2)
            + "\n```"
        )
        return self.llm_client.chat_completion(
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0.3,
        )
