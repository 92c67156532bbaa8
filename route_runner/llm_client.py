"""Thin OpenAI chat-completions wrapper used for failure narratives."""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from .errors import RouteRunnerError

DEFAULT_TIMEOUT = 60.0
DEFAULT_BASE_URL = "https://api.openai.com/v1"


class LLMClientError(RouteRunnerError):
    """The LLM endpoint failed or answered without text."""


def _env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


class LLMClient:
    """Chat client configured from arguments or the environment.

    Raises ValueError on construction when no API key or model is configured.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Any = None,
    ) -> None:
        resolved_key = api_key or _env("OPENAI_API_KEY", "API_KEY")
        if not resolved_key:
            raise ValueError("OPENAI_API_KEY (或 API_KEY) 未配置，无法调用 LLM")
        resolved_model = model or _env("OPENAI_MODEL", "MODEL_STD")
        if not resolved_model:
            raise ValueError("OPENAI_MODEL (或 MODEL_STD) 未配置，无法确定默认模型")

        timeout_env = os.getenv("LLM_TIMEOUT")
        self.timeout = timeout or (float(timeout_env) if timeout_env else DEFAULT_TIMEOUT)
        self.model = resolved_model
        self.client = client or OpenAI(
            api_key=resolved_key,
            base_url=base_url or _env("OPENAI_BASE_URL", "BASE_URL") or DEFAULT_BASE_URL,
        )

    def chat_completion(self, messages: List[Dict[str, Any]], *, temperature: float = 0.2) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                timeout=self.timeout,
            )
        except OpenAIError as exc:
            raise LLMClientError(f"LLM API 调用失败：{exc}") from exc

        if not response.choices:
            raise LLMClientError("LLM 返回结果为空")
        content = getattr(response.choices[0].message, "content", None)
        if isinstance(content, str) and content.strip():
            return content.strip()
        if isinstance(content, list):
            texts = [item.get("text") for item in content if isinstance(item, dict) and item.get("text")]
            if texts:
                return "".join(texts).strip()
        raise LLMClientError("LLM 返回结果不包含文本内容")
