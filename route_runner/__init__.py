"""Adaptive UI route runner with failure-chain analysis."""
from .batch import BatchOrchestrator
from .chains import analyze_failure_chains
from .classifier import classify
from .orchestrator import RouteOrchestrator, RunnerSettings, generate_improved_route

__all__ = [
    "BatchOrchestrator",
    "RouteOrchestrator",
    "RunnerSettings",
    "analyze_failure_chains",
    "classify",
    "generate_improved_route",
]

__version__ = "0.1.0"
