"""Data models for the route runner."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

# JSON spellings accepted for Step fields; generated route files use camelCase.
_STEP_KEY_ALIASES = {
    "timeout": "timeout_ms",
    "expectsNavigation": "expects_navigation",
    "fixReason": "fix_reason",
    "originalTarget": "original_target",
    "original_target": "original_target",
    "improvementStrategy": "improvement_strategy",
    "isImproved": "is_improved",
}

_STEP_FIELDS = (
    "label",
    "action",
    "target",
    "value",
    "timeout_ms",
    "expects_navigation",
    "fix_reason",
    "scenario_id",
    "field_mapping",
    "original_target",
    "improvement_strategy",
    "confidence",
    "is_improved",
)

_ROUTE_FIELDS = (
    "route_id",
    "steps",
    "category",
    "test_case_id",
    "original_viewpoint",
    "original_route_id",
    "fix_timestamp",
    "improvement_timestamp",
    "is_improved_route",
    "improvement_summary",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class FailureCategory(str, Enum):
    """Step-level failure taxonomy."""

    ELEMENT_ISSUE = "element_issue"
    NAVIGATION_ISSUE = "navigation_issue"
    ASSERTION_FAILURE = "assertion_failure"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class Step:
    """A single declarative UI interaction or assertion."""

    label: str
    action: str
    target: str = ""
    value: Optional[str] = None
    timeout_ms: Optional[int] = None
    expects_navigation: bool = False
    fix_reason: Optional[str] = None
    scenario_id: Optional[str] = None
    field_mapping: Optional[Dict[str, Any]] = None
    original_target: Optional[str] = None
    improvement_strategy: Optional[str] = None
    confidence: Optional[float] = None
    is_improved: bool = False
    extras: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Step":
        if not isinstance(raw, dict):
            raise ValueError("Each step must be an object")
        data: Dict[str, Any] = {}
        extras: Dict[str, Any] = {}
        for key, value in raw.items():
            name = _STEP_KEY_ALIASES.get(key, key)
            if name in _STEP_FIELDS:
                data[name] = value
            else:
                extras[key] = value

        action = data.get("action")
        if not action or not isinstance(action, str):
            raise ValueError("Each step requires an 'action' field")
        target = data.get("target")
        data["target"] = "" if target is None else str(target)
        if not data.get("label"):
            data["label"] = f"{action} {data['target']}".strip()
        value = data.get("value")
        if value is not None and not isinstance(value, str):
            data["value"] = str(value)
        if data.get("timeout_ms") is not None:
            try:
                data["timeout_ms"] = int(data["timeout_ms"])
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Step '{data['label']}' has a non-numeric timeout") from exc
        data["expects_navigation"] = bool(data.get("expects_navigation", False))
        data["is_improved"] = bool(data.get("is_improved", False))
        return cls(extras=extras, **data)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extras)
        payload["label"] = self.label
        payload["action"] = self.action
        payload["target"] = self.target
        for name in _STEP_FIELDS[3:]:
            value = getattr(self, name)
            if value is None or value is False:
                continue
            payload[name] = value
        return payload


@dataclass
class Route:
    """An ordered, versioned sequence of steps representing one test case."""

    route_id: str
    steps: List[Step]
    category: Optional[str] = None
    test_case_id: Optional[str] = None
    original_viewpoint: Optional[str] = None
    original_route_id: Optional[str] = None
    fix_timestamp: Optional[str] = None
    improvement_timestamp: Optional[str] = None
    is_improved_route: bool = False
    improvement_summary: Optional[Dict[str, Any]] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_fixed(self) -> bool:
        return bool(self.original_route_id or self.fix_timestamp)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Route":
        if not isinstance(raw, dict):
            raise ValueError("Route must be a JSON object")
        raw_steps = raw.get("steps")
        if not isinstance(raw_steps, list):
            raise ValueError("Route must include a 'steps' list")
        steps = [Step.from_dict(item) for item in raw_steps]
        extras = {key: value for key, value in raw.items() if key not in _ROUTE_FIELDS}
        return cls(
            route_id=str(raw.get("route_id") or "unknown"),
            steps=steps,
            category=raw.get("category"),
            test_case_id=raw.get("test_case_id"),
            original_viewpoint=raw.get("original_viewpoint"),
            original_route_id=raw.get("original_route_id"),
            fix_timestamp=raw.get("fix_timestamp"),
            improvement_timestamp=raw.get("improvement_timestamp"),
            is_improved_route=bool(raw.get("is_improved_route", False)),
            improvement_summary=raw.get("improvement_summary"),
            extras=extras,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extras)
        payload["route_id"] = self.route_id
        for name in _ROUTE_FIELDS[2:]:
            value = getattr(self, name)
            if value is None or value is False:
                continue
            payload[name] = value
        payload["steps"] = [step.to_dict() for step in self.steps]
        return payload


@dataclass
class StepResult:
    """Outcome of one step within one execution."""

    label: str
    action: str
    target: str
    value: Optional[str]
    status: str
    timestamp: datetime
    error: Optional[str] = None
    is_fixed: bool = False
    fix_reason: Optional[str] = None
    strategy: Optional[str] = None
    screenshot_path: Optional[str] = None
    dom_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "action": self.action,
            "target": self.target,
            "value": self.value,
            "status": self.status,
            "error": self.error,
            "is_fixed": self.is_fixed,
            "fix_reason": self.fix_reason,
            "timestamp": self.timestamp.isoformat(),
            "strategy": self.strategy,
            "screenshot": self.screenshot_path,
            "dom_snapshot": self.dom_path,
        }


@dataclass
class SelectorImprovement:
    """A selector that worked better than the one written in the route."""

    step_label: str
    original_selector: str
    improved_selector: str
    strategy: str
    confidence: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_label": self.step_label,
            "original_selector": self.original_selector,
            "improved_selector": self.improved_selector,
            "strategy": self.strategy,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FailureRecord:
    """Failed step as seen by the chain analyzer."""

    label: str
    action: str
    target: str
    error: str
    category: FailureCategory
    route_id: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "action": self.action,
            "target": self.target,
            "error": self.error,
            "category": self.category.value,
            "route_id": self.route_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FailureChain:
    """One root failure and the failures attributed to it."""

    root: FailureRecord
    cascaded: List[FailureRecord] = field(default_factory=list)

    @property
    def impact(self) -> str:
        return "cascading" if self.cascaded else "direct"

    @property
    def size(self) -> int:
        return 1 + len(self.cascaded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root.to_dict(),
            "cascaded": [record.to_dict() for record in self.cascaded],
            "impact": self.impact,
        }


@dataclass
class ExecutionResult:
    """Outcome of one route run. Written once, never updated in place."""

    route_id: str
    total_steps: int
    success_count: int
    failed_count: int
    execution_time_ms: int
    timestamp: datetime
    steps: List[StepResult] = field(default_factory=list)
    skipped_count: int = 0
    is_fixed_route: bool = False
    original_route_id: Optional[str] = None
    error: Optional[str] = None
    failure_chains: List[FailureChain] = field(default_factory=list)
    selector_improvements: List[SelectorImprovement] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_count == 0 and self.error is None

    @property
    def executed_steps(self) -> int:
        return self.total_steps - self.skipped_count

    @property
    def success_rate(self) -> int:
        if self.error is not None and self.success_count == 0:
            return 0
        if self.executed_steps <= 0:
            return 100 if self.error is None else 0
        return round(self.success_count / self.executed_steps * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_id": self.route_id,
            "timestamp": self.timestamp.isoformat(),
            "total_steps": self.total_steps,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
            "is_fixed_route": self.is_fixed_route,
            "original_route_id": self.original_route_id,
            "error": self.error,
            "steps": [step.to_dict() for step in self.steps],
            "failure_chains": [chain.to_dict() for chain in self.failure_chains],
            "selector_improvements": [item.to_dict() for item in self.selector_improvements],
        }


@dataclass
class RunHistoryEntry:
    """One remembered execution of a route file."""

    route_file: str
    timestamp: datetime
    success_count: int
    failed_count: int
    failed_steps: List[Dict[str, Any]] = field(default_factory=list)
    execution_time_ms: int = 0
    is_fixed_route: bool = False
    original_route_id: Optional[str] = None

    @classmethod
    def from_dict(cls, route_file: str, raw: Dict[str, Any]) -> "RunHistoryEntry":
        timestamp = parse_timestamp(raw.get("timestamp"))
        if timestamp is None:
            raise ValueError(f"History entry for {route_file} has no valid timestamp")
        # Older history files nest the counters under "result".
        counters = raw.get("result") if isinstance(raw.get("result"), dict) else raw
        failed_steps = raw.get("failed_steps", raw.get("failedSteps")) or []
        return cls(
            route_file=route_file,
            timestamp=timestamp,
            success_count=int(counters.get("success_count") or 0),
            failed_count=int(counters.get("failed_count") or 0),
            failed_steps=list(failed_steps),
            execution_time_ms=int(counters.get("execution_time_ms", counters.get("execution_time")) or 0),
            is_fixed_route=bool(raw.get("is_fixed_route", raw.get("isFixedRoute", False))),
            original_route_id=raw.get("original_route_id", raw.get("originalRouteId")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_file": self.route_file,
            "timestamp": self.timestamp.isoformat(),
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "execution_time_ms": self.execution_time_ms,
            "failed_steps": self.failed_steps,
            "is_fixed_route": self.is_fixed_route,
            "original_route_id": self.original_route_id,
        }


@dataclass
class DuplicateCheck:
    """Advisory answer of the run history guard."""

    is_duplicate: bool
    route_file: str
    last_run: Optional[datetime] = None
    success_count: int = 0
    failed_count: int = 0
    last_failed_steps: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BatchRouteInfo:
    """One route reference inside batch metadata."""

    route_id: str
    category: str
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    test_case_id: Optional[str] = None
    step_count: Optional[int] = None
    assertion_count: Optional[int] = None
    route: Optional[Route] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "BatchRouteInfo":
        if not isinstance(raw, dict):
            raise ValueError("Each batch route entry must be an object")
        category = raw.get("category")
        if not category:
            raise ValueError("Batch route entry requires a 'category'")
        return cls(
            route_id=str(raw.get("route_id") or "unknown"),
            category=str(category),
            file_name=raw.get("file_name"),
            file_path=raw.get("file_path"),
            test_case_id=raw.get("test_case_id"),
            step_count=raw.get("step_count"),
            assertion_count=raw.get("assertion_count"),
        )

    @property
    def route_file_name(self) -> Optional[str]:
        if self.file_name:
            return self.file_name
        if self.file_path:
            return Path(self.file_path).name
        return None


@dataclass
class BatchMetadata:
    """Routes grouped by category with a recommended execution order."""

    batch_id: str
    categories: List[str]
    execution_order: List[str]
    routes: List[BatchRouteInfo]
    base_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], base_dir: Optional[Path] = None) -> "BatchMetadata":
        if not isinstance(raw, dict):
            raise ValueError("Batch metadata must be a JSON object")
        batch_id = raw.get("batch_id")
        if not batch_id:
            raise ValueError("Batch metadata requires a 'batch_id'")
        raw_routes = raw.get("routes") or []
        if not isinstance(raw_routes, list):
            raise ValueError("Batch metadata 'routes' must be a list")
        routes = [BatchRouteInfo.from_dict(item) for item in raw_routes]
        categories = [str(name) for name in raw.get("categories") or []]
        for info in routes:
            if info.category not in categories:
                categories.append(info.category)
        execution_order = [str(name) for name in raw.get("execution_order") or categories]
        return cls(
            batch_id=str(batch_id),
            categories=categories,
            execution_order=execution_order,
            routes=routes,
            base_dir=base_dir,
        )

    def ordered_categories(self) -> List[str]:
        ordered = [name for name in self.execution_order if name in self.categories]
        ordered.extend(name for name in self.categories if name not in ordered)
        return ordered

    def routes_for(self, category: str) -> List[BatchRouteInfo]:
        return [info for info in self.routes if info.category == category]


@dataclass
class BatchRouteResult:
    """Outcome of one route inside a batch."""

    route_id: str
    category: str
    status: str
    success_rate: int
    execution_time_ms: int = 0
    test_case_id: Optional[str] = None
    error: Optional[str] = None
    result_file: Optional[str] = None
    execution: Optional[ExecutionResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_id": self.route_id,
            "category": self.category,
            "test_case_id": self.test_case_id,
            "status": self.status,
            "success_rate": self.success_rate,
            "execution_time_ms": self.execution_time_ms,
            "error": self.error,
            "result_file": self.result_file,
            "execution": self.execution.to_dict() if self.execution else None,
        }


@dataclass
class CategorySummary:
    """Per-category aggregate of a batch."""

    category: str
    status: str
    total: int = 0
    successful: int = 0
    partial: int = 0
    failed: int = 0
    average_success_rate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "status": self.status,
            "total": self.total,
            "successful": self.successful,
            "partial": self.partial,
            "failed": self.failed,
            "average_success_rate": self.average_success_rate,
        }


@dataclass
class BatchResult:
    """Aggregated batch outcome."""

    batch_id: str
    executed_at: datetime
    total_execution_time_ms: int = 0
    categories: List[CategorySummary] = field(default_factory=list)
    results: List[BatchRouteResult] = field(default_factory=list)
    artifacts_dir: Optional[str] = None

    @property
    def total_routes(self) -> int:
        return len(self.results)

    @property
    def successful_routes(self) -> int:
        return sum(1 for item in self.results if item.status == "success")

    @property
    def partial_routes(self) -> int:
        return sum(1 for item in self.results if item.status == "partial")

    @property
    def failed_routes(self) -> int:
        return sum(1 for item in self.results if item.status == "failed")

    @property
    def skipped_categories(self) -> int:
        return sum(1 for item in self.categories if item.status == "skipped")

    @property
    def execution_results(self) -> List[ExecutionResult]:
        return [item.execution for item in self.results if item.execution is not None]

    def category(self, name: str) -> Optional[CategorySummary]:
        for summary in self.categories:
            if summary.category == name:
                return summary
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "executed_at": _isoformat(self.executed_at),
            "total_execution_time_ms": self.total_execution_time_ms,
            "total_routes": self.total_routes,
            "successful_routes": self.successful_routes,
            "partial_routes": self.partial_routes,
            "failed_routes": self.failed_routes,
            "skipped_categories": self.skipped_categories,
            "category_summary": {summary.category: summary.to_dict() for summary in self.categories},
            "results": [item.to_dict() for item in self.results],
        }
