"""Tests for the LLM client wrapper and the AI report generator."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from .ai_report import AIReportGenerator
from .llm_client import LLMClient, LLMClientError
from .models import ExecutionResult, Route, Step, StepResult

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class _StubLLM:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def chat_completion(self, messages, *, temperature=0.2):
        self.calls.append((messages, temperature))
        if self.error:
            raise self.error
        return self.reply


class _Completions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return self.response


def _openai_stub(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _route_and_result():
    route = Route("route_a", [Step("press", "click", "#go")], category="login")
    result = ExecutionResult(
        "route_a", 1, 0, 1, 800, T0,
        steps=[StepResult("press", "click", "#go", None, "failed", T0, error="Target not found: #go")],
    )
    return route, result


def test_report_uses_llm_reply(tmp_path):
    llm = _StubLLM(reply="# AI 分析报告\n\n按钮选择器失效。")
    route, result = _route_and_result()

    report = AIReportGenerator(llm_client=llm).generate_report(route, result, tmp_path / "ai_report.md")

    assert report.startswith("# AI 分析报告")
    assert (tmp_path / "ai_report.md").read_text(encoding="utf-8") == report
    messages, temperature = llm.calls[0]
    assert temperature == 0.3
    assert messages[0]["role"] == "system"
    assert "Target not found: #go" in messages[1]["content"]


def test_report_falls_back_to_template_on_llm_error():
    llm = _StubLLM(error=LLMClientError("LLM API 调用失败：timeout"))
    route, result = _route_and_result()

    report = AIReportGenerator(llm_client=llm).generate_report(route, result)

    assert report.startswith("# 路线执行报告")


def test_build_context_only_carries_recorded_facts():
    route, result = _route_and_result()

    context = AIReportGenerator.build_context(route, result)

    assert context["route"]["category"] == "login"
    assert context["summary"]["success_rate"] == 0
    assert context["failed_steps"] == [
        {"label": "press", "action": "click", "target": "#go", "error": "Target not found: #go"}
    ]
    json.dumps(context, ensure_ascii=False)


def test_client_requires_api_key(monkeypatch):
    for name in ("OPENAI_API_KEY", "API_KEY"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ValueError):
        LLMClient(model="gpt-4o-mini")


def test_client_requires_model(monkeypatch):
    for name in ("OPENAI_MODEL", "MODEL_STD"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ValueError):
        LLMClient(api_key="sk-test")


def test_chat_completion_returns_stripped_text(monkeypatch):
    monkeypatch.delenv("LLM_TIMEOUT", raising=False)
    completions = _Completions(response=_response("  报告内容  "))
    client = LLMClient(api_key="sk-test", model="gpt-4o-mini", client=_openai_stub(completions))

    assert client.chat_completion([{"role": "user", "content": "hi"}]) == "报告内容"
    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert completions.kwargs["timeout"] == 60.0


def test_timeout_from_environment(monkeypatch):
    monkeypatch.setenv("LLM_TIMEOUT", "15")
    client = LLMClient(api_key="sk-test", model="m", client=_openai_stub(_Completions()))
    assert client.timeout == 15.0


@pytest.mark.parametrize(
    "completions",
    [
        _Completions(error=OpenAIError("connection reset")),
        _Completions(response=SimpleNamespace(choices=[])),
        _Completions(response=_response("   ")),
    ],
)
def test_chat_completion_errors(completions):
    client = LLMClient(api_key="sk-test", model="m", client=_openai_stub(completions))
    with pytest.raises(LLMClientError):
        client.chat_completion([{"role": "user", "content": "hi"}])
