"""Advisory guard against re-running the same route within a cool-down window."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import HistoryError
from .models import DuplicateCheck, ExecutionResult, RunHistoryEntry, utc_now

logger = logging.getLogger(__name__)

HISTORY_FILE_NAME = ".execution-history.json"
DUPLICATE_WINDOW = timedelta(minutes=30)
MAX_ENTRIES_PER_ROUTE = 10


class RunHistoryGuard:
    """Keeps the last few runs of each route file in a JSON history file.

    The history file maps a route file name to its entries, oldest first.
    No lock protects it; two concurrent runs of the same route may both
    pass the check.
    """

    def __init__(
        self,
        history_path: Path,
        window: timedelta = DUPLICATE_WINDOW,
        max_entries: int = MAX_ENTRIES_PER_ROUTE,
    ) -> None:
        self.history_path = Path(history_path)
        self.window = window
        self.max_entries = max_entries

    def check_duplicate(self, route_file: str, now: Optional[datetime] = None) -> DuplicateCheck:
        key = Path(route_file).name
        entries = self._entries_for(key)
        if not entries:
            return DuplicateCheck(is_duplicate=False, route_file=key)

        latest = entries[-1]
        current = now or utc_now()
        elapsed = current - latest.timestamp
        is_duplicate = timedelta(0) <= elapsed < self.window
        if is_duplicate:
            logger.warning(
                "路线 %s 在 %d 分钟前已执行过 (成功 %d, 失败 %d)",
                key,
                int(elapsed.total_seconds() // 60),
                latest.success_count,
                latest.failed_count,
            )
        return DuplicateCheck(
            is_duplicate=is_duplicate,
            route_file=key,
            last_run=latest.timestamp,
            success_count=latest.success_count,
            failed_count=latest.failed_count,
            last_failed_steps=list(latest.failed_steps),
        )

    def last_failed_steps(self, route_file: str) -> List[Dict[str, Any]]:
        entries = self._entries_for(Path(route_file).name)
        return list(entries[-1].failed_steps) if entries else []

    def last_run_failed(self, route_file: str) -> bool:
        entries = self._entries_for(Path(route_file).name)
        return bool(entries) and entries[-1].failed_count > 0

    def record(self, route_file: str, result: ExecutionResult) -> RunHistoryEntry:
        key = Path(route_file).name
        entry = RunHistoryEntry(
            route_file=key,
            timestamp=result.timestamp,
            success_count=result.success_count,
            failed_count=result.failed_count,
            execution_time_ms=result.execution_time_ms,
            failed_steps=[
                {
                    "label": step.label,
                    "action": step.action,
                    "target": step.target,
                    "error": step.error,
                }
                for step in result.steps
                if step.status == "failed"
            ],
            is_fixed_route=result.is_fixed_route,
            original_route_id=result.original_route_id,
        )
        raw = self._read()
        entries = list(raw.get(key) or [])
        entries.append(entry.to_dict())
        raw[key] = entries[-self.max_entries:]
        self._write(raw)
        logger.info("执行历史已记录: %s", key)
        return entry

    def _entries_for(self, key: str) -> List[RunHistoryEntry]:
        raw_entries = self._read().get(key) or []
        if not isinstance(raw_entries, list):
            raise HistoryError(f"History for {key} is not a list: {self.history_path}")
        try:
            entries = [RunHistoryEntry.from_dict(key, item) for item in raw_entries]
        except (AttributeError, TypeError, ValueError) as exc:
            raise HistoryError(f"Malformed history entry for {key}: {exc}") from exc
        entries.sort(key=lambda entry: entry.timestamp)
        return entries

    def _read(self) -> Dict[str, Any]:
        if not self.history_path.exists():
            return {}
        try:
            with self.history_path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise HistoryError(f"Cannot read run history {self.history_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise HistoryError(f"Run history must be a JSON object: {self.history_path}")
        return raw

    def _write(self, raw: Dict[str, Any]) -> None:
        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        with self.history_path.open("w", encoding="utf-8") as handle:
            json.dump(raw, handle, ensure_ascii=False, indent=2)
