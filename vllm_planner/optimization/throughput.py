"""Throughput posture: aggressive memory use, large batches."""

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
class ThroughputWorkload:
    utilization: float
    swap_cap_gb: float
    swap_fraction: float  # of total VRAM


WORKLOADS: dict[str, ThroughputWorkload] = {
    "batch": ThroughputWorkload(0.95, 16, 0.5),
    "serving": ThroughputWorkload(0.90, 8, 0.25),
    "mixed": ThroughputWorkload(0.85, 4, 0.15),
}
DEFAULT_WORKLOAD = "serving"

LIMITS = BatchLimits(
    safety_margin=0.85,
    max_seqs_ceiling=256,
    max_seqs_floor=1,
    max_tokens_ceiling=8192,
    max_tokens_floor=256,
)

PROFILE = PerformanceProfile(
    bandwidth_utilization=0.7,
    ttft_divisor=50,
    ttft_floor_ms=100,
    itl_penalty_threshold=64,
    itl_penalty_per_seq=0.02,
    p95_factor=1.5,
    p99_factor=2.0,
    min_efficient_seqs=64,
)

LARGE_BLOCK_KV_GB = 8
CHUNKED_PREFILL_KV_GB = 4
CHUNKED_PREFILL_SEQ_LEN = 8192


def memory_strategy(request: PlanRequest) -> MemoryStrategy:
    kind = request.workload.workload_kind
    if kind not in WORKLOADS:
        logger.debug("No throughput profile for workload '%s', using %s", kind, DEFAULT_WORKLOAD)
        kind = DEFAULT_WORKLOAD
    workload = WORKLOADS[kind]

    vram = request.gpu.total_memory_gb
    allocated, remaining = allocate(vram, request.model.model_size_gb, workload.utilization)
    kv_budget = remaining
    return MemoryStrategy(
        posture="throughput",
        gpu_memory_utilization=workload.utilization,
        allocated_vram_gb=allocated,
        kv_cache_budget_gb=kv_budget,
        reserved_gb=vram - allocated,
        swap_space_gb=min(workload.swap_cap_gb, vram * workload.swap_fraction),
        block_size=32 if kv_budget > LARGE_BLOCK_KV_GB else 16,
        enable_chunked_prefill=(
            kv_budget > CHUNKED_PREFILL_KV_GB
            or request.workload.max_sequence_length > CHUNKED_PREFILL_SEQ_LEN
        ),
    )


def optimize(request: PlanRequest) -> StrategyResult:
    memory = memory_strategy(request)
    workload = request.workload
    batch = plan_batch(
        memory.allocated_vram_gb,
        request.model.model_size_gb,
        request.model.architecture,
        workload.max_sequence_length,
        workload.average_sequence_length,
        LIMITS,
    )
    performance = estimate_performance(
        request.model.model_size_gb, request.gpu, batch, workload.max_sequence_length, PROFILE
    )

    parameters = base_parameters(request, memory, batch)
    if workload.workload_kind == "batch":
        parameters["disable-log-stats"] = True
    return build_result(request, memory, batch, performance, parameters)
