"""Failure chain analysis: which failures are roots and which are fallout."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Sequence

from .classifier import classify
from .models import ExecutionResult, FailureCategory, FailureChain, FailureRecord

logger = logging.getLogger(__name__)

_CAUSAL_PAIRS = (
    (FailureCategory.NAVIGATION_ISSUE, FailureCategory.ASSERTION_FAILURE),
    (FailureCategory.ELEMENT_ISSUE, FailureCategory.ASSERTION_FAILURE),
)


def failure_records(result: ExecutionResult) -> List[FailureRecord]:
    """Build the chain analyzer input from the failed steps of a run."""
    records = []
    for step in result.steps:
        if step.status != "failed":
            continue
        error = step.error or ""
        records.append(
            FailureRecord(
                label=step.label,
                action=step.action,
                target=step.target,
                error=error,
                category=classify(error),
                route_id=result.route_id,
                timestamp=step.timestamp,
            )
        )
    return records


def is_cascaded(root: FailureRecord, later: FailureRecord) -> bool:
    """Return True when ``later`` is attributed to ``root``.

    The same-route, later-in-time rule makes the first failure of a route the
    root of everything after it.
    """
    if (root.category, later.category) in _CAUSAL_PAIRS:
        return True
    if root.route_id == later.route_id:
        return later.timestamp > root.timestamp
    return False


def analyze_failure_chains(failures: Sequence[FailureRecord]) -> List[FailureChain]:
    """Greedy left-to-right partition of ``failures`` into chains.

    Every record ends up in exactly one chain, either as its root or as one
    of its cascaded members.
    """
    chains: List[FailureChain] = []
    processed = set()

    for i, root in enumerate(failures):
        if i in processed:
            continue
        cascaded = []
        for j in range(i + 1, len(failures)):
            if j in processed:
                continue
            if is_cascaded(root, failures[j]):
                cascaded.append(failures[j])
                processed.add(j)
        chains.append(FailureChain(root=root, cascaded=cascaded))
        processed.add(i)

    logger.debug("Grouped %d failures into %d chains", len(failures), len(chains))
    return chains


def summarize_chains(chains: Sequence[FailureChain]) -> Dict[str, object]:
    root_categories = Counter(chain.root.category.value for chain in chains)
    return {
        "total_chains": len(chains),
        "cascading_chains": sum(1 for chain in chains if chain.impact == "cascading"),
        "total_failures": sum(chain.size for chain in chains),
        "root_causes_by_category": dict(root_categories),
    }
