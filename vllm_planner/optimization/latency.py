"""Latency posture: conservative memory, small batches, fast first token."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vllm_planner.optimization.common import (
    BatchLimits,
    MemoryStrategy,
    PerformanceProfile,
    StrategyResult,
    allocate,
    base_parameters,
    build_result,
    estimate_performance,
    plan_batch,
)
from vllm_planner.specs import PlanRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatencyTarget:
    utilization: float
    max_seqs: int
    max_tokens: int
    block_size: int
    bandwidth_utilization: float
    p95_factor: float


TARGETS: dict[str, LatencyTarget] = {
    "ultra-low": LatencyTarget(0.75, 8, 512, 8, 0.5, 1.2),
    "low": LatencyTarget(0.80, 32, 2048, 16, 0.6, 1.5),
    "balanced": LatencyTarget(0.80, 64, 4096, 16, 0.6, 1.5),
}
DEFAULT_TARGET = "low"

KV_CACHE_SHARE = 0.7
SAFETY_MARGIN = 0.7
MAX_SWAP_GB = 2
SWAP_FRACTION = 0.05
P99_OVER_P95 = 1.3


def resolve_target(name: str) -> tuple[str, LatencyTarget]:
    if name not in TARGETS:
        logger.warning("Unknown latency target '%s', falling back to '%s'", name, DEFAULT_TARGET)
        name = DEFAULT_TARGET
    return name, TARGETS[name]


def memory_strategy(request: PlanRequest, target: LatencyTarget) -> MemoryStrategy:
    vram = request.gpu.total_memory_gb
    allocated, remaining = allocate(vram, request.model.model_size_gb, target.utilization)
    return MemoryStrategy(
        posture="latency",
        gpu_memory_utilization=target.utilization,
        allocated_vram_gb=allocated,
        kv_cache_budget_gb=remaining * KV_CACHE_SHARE,
        reserved_gb=vram - allocated,
        swap_space_gb=min(MAX_SWAP_GB, vram * SWAP_FRACTION),
        block_size=target.block_size,
        enable_chunked_prefill=False,
    )


def optimize(request: PlanRequest) -> StrategyResult:
    name, target = resolve_target(request.workload.latency_target)
    memory = memory_strategy(request, target)
    workload = request.workload

    limits = BatchLimits(
        safety_margin=SAFETY_MARGIN,
        max_seqs_ceiling=target.max_seqs,
        max_seqs_floor=1,
        max_tokens_ceiling=target.max_tokens,
        max_tokens_floor=256,
    )
    batch = plan_batch(
        memory.allocated_vram_gb,
        request.model.model_size_gb,
        request.model.architecture,
        workload.max_sequence_length,
        workload.average_sequence_length,
        limits,
    )

    profile = PerformanceProfile(
        bandwidth_utilization=target.bandwidth_utilization,
        p95_factor=target.p95_factor,
        p99_factor=target.p95_factor * P99_OVER_P95,
        max_efficient_seqs=32,
    )
    performance = estimate_performance(
        request.model.model_size_gb, request.gpu, batch, workload.max_sequence_length, profile
    )
    logger.debug("Latency target %s: TTFT %.1f ms", name, performance.time_to_first_token_ms)

    parameters = base_parameters(request, memory, batch)
    parameters["disable-log-stats"] = True
    return build_result(request, memory, batch, performance, parameters)
