"""Posture dispatch and side-by-side strategy comparison."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from vllm_planner.errors import InsufficientMemoryError
from vllm_planner.optimization import balanced, latency, throughput
from vllm_planner.optimization.common import StrategyResult
from vllm_planner.specs import PlanRequest, Posture

logger = logging.getLogger(__name__)

STRATEGIES: dict[Posture, Callable[[PlanRequest], StrategyResult]] = {
    Posture.THROUGHPUT: throughput.optimize,
    Posture.LATENCY: latency.optimize,
    Posture.BALANCED: balanced.optimize,
}

# Posture recommended first for each workload kind
WORKLOAD_PREFERENCE: dict[str, Posture] = {
    "chat": Posture.LATENCY,
    "completion": Posture.THROUGHPUT,
    "code-generation": Posture.BALANCED,
    "batch": Posture.THROUGHPUT,
    "serving": Posture.BALANCED,
    "embedding": Posture.THROUGHPUT,
}


@dataclass(frozen=True)
class StrategyComparison:
    results: dict[str, StrategyResult]
    failures: dict[str, str] = field(default_factory=dict)
    recommended: str | None = None


def optimize(request: PlanRequest) -> StrategyResult:
    """Run the posture named in the request's workload."""
    posture = request.workload.posture
    logger.info("Optimizing for %s", posture.value)
    return STRATEGIES[posture](request)


def compare_strategies(request: PlanRequest) -> StrategyComparison:
    """Run every posture; postures that do not fit are reported, not raised.

    Raises the last InsufficientMemoryError only when no posture fits.
    """
    results: dict[str, StrategyResult] = {}
    failures: dict[str, str] = {}
    last_error: InsufficientMemoryError | None = None

    for posture, strategy in STRATEGIES.items():
        try:
            results[posture.value] = strategy(request)
        except InsufficientMemoryError as e:
            logger.info("%s posture not viable: %s", posture.value, e)
            failures[posture.value] = str(e)
            last_error = e

    if not results:
        raise last_error

    preferred = WORKLOAD_PREFERENCE.get(request.workload.workload_kind, Posture.BALANCED).value
    if preferred in results:
        recommended = preferred
    else:
        recommended = min(results, key=lambda name: results[name].memory.gpu_memory_utilization)
    return StrategyComparison(results=results, failures=failures, recommended=recommended)
