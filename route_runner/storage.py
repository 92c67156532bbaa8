"""File-backed storage for routes, results and batch artifacts.

Artifacts are append-only: nothing written here ever replaces an existing
file. A name that is already taken gets a run-timestamp suffix instead.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import RouteLoadError
from .history import HISTORY_FILE_NAME
from .models import BatchMetadata, BatchResult, BatchRouteInfo, ExecutionResult, Route, utc_now

logger = logging.getLogger(__name__)

CATEGORY_BATCH_MODE = "category_batch"


def run_timestamp() -> str:
    return utc_now().strftime("%Y%m%dT%H%M%SZ")


def _ensure_path(source: Any) -> Path:
    if isinstance(source, (str, Path)):
        return Path(source)
    raise TypeError(f"Unsupported path type: {type(source)!r}")


def load_json(source: Any) -> Dict[str, Any]:
    """Read a JSON object, raising RouteLoadError for anything unusable."""
    path = _ensure_path(source)
    if not path.is_file():
        raise RouteLoadError(f"File not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise RouteLoadError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise RouteLoadError(f"{path} must contain a JSON object")
    return raw


def is_category_batch(raw: Dict[str, Any]) -> bool:
    return raw.get("processing_mode") == CATEGORY_BATCH_MODE


def metadata_from_category_batch(raw: Dict[str, Any], base_dir: Optional[Path] = None) -> BatchMetadata:
    """Convert a route file with inline routes grouped per category."""
    categories: List[str] = []
    routes: List[BatchRouteInfo] = []
    for group in raw.get("categories") or []:
        if not isinstance(group, dict) or not group.get("category"):
            raise ValueError("Each category_batch group needs a 'category'")
        name = str(group["category"])
        categories.append(name)
        for raw_route in group.get("routes") or []:
            route = Route.from_dict(raw_route)
            if route.category is None:
                route.category = name
            routes.append(
                BatchRouteInfo(
                    route_id=route.route_id,
                    category=name,
                    test_case_id=route.test_case_id,
                    step_count=len(route.steps),
                    assertion_count=sum(1 for step in route.steps if step.action.lower().startswith("assert")),
                    route=route,
                )
            )
    return BatchMetadata(
        batch_id=str(raw.get("batch_id") or f"batch_{run_timestamp()}"),
        categories=categories,
        execution_order=list(raw.get("execution_order") or categories),
        routes=routes,
        base_dir=base_dir,
    )


def _unique_path(path: Path) -> Path:
    if not path.exists():
        return path
    candidate = path.with_name(f"{path.stem}_{run_timestamp()}{path.suffix}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{run_timestamp()}_{counter}{path.suffix}")
        counter += 1
    return candidate


def _write_json(path: Path, payload: Dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("x", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    return path


class FileStore:
    """Reads and writes artifacts under a results directory."""

    def __init__(self, results_dir: Path) -> None:
        self.results_dir = Path(results_dir)

    @property
    def history_path(self) -> Path:
        return self.results_dir / HISTORY_FILE_NAME

    def load_route(self, source: Any) -> Route:
        path = _ensure_path(source)
        raw = load_json(path)
        if is_category_batch(raw):
            raise RouteLoadError(f"{path} is a category batch; run it as a batch")
        try:
            return Route.from_dict(raw)
        except ValueError as exc:
            raise RouteLoadError(f"Invalid route {path}: {exc}") from exc

    def load_batch_metadata(self, source: Any) -> BatchMetadata:
        path = _ensure_path(source)
        raw = load_json(path)
        try:
            if is_category_batch(raw):
                return metadata_from_category_batch(raw, base_dir=path.parent)
            return BatchMetadata.from_dict(raw, base_dir=path.parent)
        except ValueError as exc:
            raise RouteLoadError(f"Invalid batch metadata {path}: {exc}") from exc

    def resolve_route_path(self, info: BatchRouteInfo, base_dir: Optional[Path] = None) -> Optional[Path]:
        """Locate the route file of a batch entry, or None when it is missing."""
        candidates = []
        if info.file_path:
            candidates.append(Path(info.file_path))
        if info.route_file_name:
            for directory in (base_dir, self.results_dir):
                if directory is not None:
                    candidates.append(Path(directory) / info.route_file_name)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def save_route(self, route: Route, file_name: Optional[str] = None) -> Path:
        if file_name is None:
            original = route.original_route_id or route.route_id
            file_name = f"fixed_route_{original}_{run_timestamp()}.json"
        path = _unique_path(self.results_dir / file_name)
        _write_json(path, route.to_dict())
        logger.info("Route saved to %s", path)
        return path

    def save_result(self, result: ExecutionResult, route_file: Optional[Any] = None) -> Path:
        """Write ``result_<suffix>.json`` where the suffix follows the route file name."""
        if route_file is not None:
            stem = _ensure_path(route_file).stem
            suffix = stem[len("route_"):] if stem.startswith("route_") else stem
        else:
            suffix = f"{result.route_id}_{run_timestamp()}"
        path = _unique_path(self.results_dir / f"result_{suffix}.json")
        _write_json(path, result.to_dict())
        logger.info("Result saved to %s", path)
        return path

    def save_batch_result(self, result: BatchResult, directory: Optional[Path] = None) -> Path:
        batch_key = result.batch_id[len("batch_"):] if result.batch_id.startswith("batch_") else result.batch_id
        target_dir = Path(directory) if directory is not None else self.results_dir
        path = _unique_path(target_dir / f"batch_result_{batch_key}.json")
        _write_json(path, result.to_dict())
        logger.info("批量执行结果已保存: %s", path)
        return path

    def find_fixed_routes(self, route_id: str) -> List[Path]:
        """Repaired versions of ``route_id``, newest first."""
        if not self.results_dir.is_dir():
            return []
        key = route_id[len("route_"):] if route_id.startswith("route_") else route_id
        pattern = re.compile(rf"^fixed_.*{re.escape(key)}.*\.json$")
        matches = [path for path in self.results_dir.iterdir() if path.is_file() and pattern.match(path.name)]
        return sorted(matches, key=lambda path: path.name, reverse=True)

    def latest_route_file(self) -> Optional[Path]:
        if not self.results_dir.is_dir():
            return None
        routes = sorted(self.results_dir.glob("route_*.json"), key=lambda path: path.stat().st_mtime)
        return routes[-1] if routes else None
