"""Per-run mutable state passed explicitly through the step call chain."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .models import SelectorImprovement, utc_now

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State of one route run: where artifacts go and what the resolver learned."""

    route_id: str
    artifacts_dir: Optional[Path] = None
    base_url: Optional[str] = None
    improvements: List[SelectorImprovement] = field(default_factory=list)

    def record_improvement(
        self,
        step_label: str,
        original_selector: str,
        improved_selector: str,
        strategy: str,
        confidence: float,
    ) -> Optional[SelectorImprovement]:
        if not improved_selector or improved_selector == original_selector:
            return None
        improvement = SelectorImprovement(
            step_label=step_label,
            original_selector=original_selector,
            improved_selector=improved_selector,
            strategy=strategy,
            confidence=confidence,
            timestamp=utc_now(),
        )
        self.improvements.append(improvement)
        logger.info("记录选择器改进: %s (%s -> %s)", step_label, original_selector, improved_selector)
        return improvement

    @property
    def steps_dir(self) -> Optional[Path]:
        if self.artifacts_dir is None:
            return None
        path = self.artifacts_dir / "steps"
        path.mkdir(parents=True, exist_ok=True)
        return path
