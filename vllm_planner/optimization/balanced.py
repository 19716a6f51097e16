"""Balanced posture, refined by a named target profile.

Unknown target names fall back to ``general`` with a warning instead of
failing the request.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass

from vllm_planner.optimization.common import (
    BatchLimits,
    MemoryStrategy,
    PerformanceEstimate,
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
class BalanceTarget:
    priority: str
    utilization: float
    max_seqs: int


TARGETS: dict[str, BalanceTarget] = {
    "general": BalanceTarget("balanced", 0.85, 128),
    "web-api": BalanceTarget("latency-focused", 0.80, 96),
    "multi-user": BalanceTarget("throughput-focused", 0.90, 160),
    "cost-optimized": BalanceTarget("efficiency", 0.85, 64),
    "production": BalanceTarget("reliability", 0.80, 96),
}
DEFAULT_TARGET = "general"

TOKEN_CEILINGS = {"throughput-focused": 6144, "latency-focused": 3072}
DEFAULT_TOKEN_CEILING = 4096

KV_CACHE_SHARE = 0.75
SAFETY_MARGIN = 0.8
ACTIVATION_SCALE = 0.5
MIN_SEQS = 8
MIN_TOKENS = 1024
MAX_SWAP_GB = 4
SWAP_FRACTION = 0.1

CHUNKED_PREFILL_CONCURRENCY = 32
CHUNKED_PREFILL_SEQ_LEN = 2048

# Performance scoring
THROUGHPUT_SCORE_SCALE = 1000  # tokens/s per GB of weights that counts as 1.0
LATENCY_SCORE_BUDGET_MS = 5000
_PERFORMANCE_CLASSES = ((0.8, "excellent"), (0.6, "good"), (0.4, "fair"))


def resolve_target(name: str) -> tuple[str, BalanceTarget]:
    if name not in TARGETS:
        logger.warning("Unknown balance target '%s', falling back to '%s'", name, DEFAULT_TARGET)
        name = DEFAULT_TARGET
    return name, TARGETS[name]


def _bandwidth_utilization(name: str) -> float:
    if name == "multi-user":
        return 0.75
    if name in ("web-api", "production"):
        return 0.55
    return 0.65


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def score(performance: PerformanceEstimate, model_gb: float) -> PerformanceEstimate:
    """Attach a 0-1 balance score and a coarse performance class."""
    throughput_score = _clamp(performance.tokens_per_second / (model_gb * THROUGHPUT_SCORE_SCALE))
    latency_score = _clamp(1 - performance.total_latency_ms / LATENCY_SCORE_BUDGET_MS)
    balance = (throughput_score + latency_score) / 2

    performance_class = "poor"
    for threshold, label in _PERFORMANCE_CLASSES:
        if balance > threshold:
            performance_class = label
            break
    return dataclasses.replace(
        performance, balance_score=round(balance, 3), performance_class=performance_class
    )


def memory_strategy(request: PlanRequest, name: str, target: BalanceTarget) -> MemoryStrategy:
    vram = request.gpu.total_memory_gb
    workload = request.workload
    allocated, remaining = allocate(vram, request.model.model_size_gb, target.utilization)
    return MemoryStrategy(
        posture="balanced",
        gpu_memory_utilization=target.utilization,
        allocated_vram_gb=allocated,
        kv_cache_budget_gb=remaining * KV_CACHE_SHARE,
        reserved_gb=vram - allocated,
        swap_space_gb=min(MAX_SWAP_GB, vram * SWAP_FRACTION),
        block_size=32 if name == "multi-user" else 16,
        enable_chunked_prefill=(
            workload.expected_concurrency > CHUNKED_PREFILL_CONCURRENCY
            and workload.max_sequence_length > CHUNKED_PREFILL_SEQ_LEN
        ),
    )


def optimize(request: PlanRequest) -> StrategyResult:
    name, target = resolve_target(request.workload.balance_target)
    memory = memory_strategy(request, name, target)
    workload = request.workload
    model_gb = request.model.model_size_gb

    limits = BatchLimits(
        safety_margin=SAFETY_MARGIN,
        max_seqs_ceiling=target.max_seqs,
        max_seqs_floor=MIN_SEQS,
        max_tokens_ceiling=TOKEN_CEILINGS.get(target.priority, DEFAULT_TOKEN_CEILING),
        max_tokens_floor=MIN_TOKENS,
        activation_scale=ACTIVATION_SCALE,
    )
    batch = plan_batch(
        memory.allocated_vram_gb,
        model_gb,
        request.model.architecture,
        workload.max_sequence_length,
        workload.average_sequence_length,
        limits,
    )

    profile = PerformanceProfile(
        bandwidth_utilization=_bandwidth_utilization(name),
        decode_efficiency=0.8,
        tensor_core_intensity=1.3,
        ttft_divisor=80,
        ttft_floor_ms=75,
        itl_floor_ms=10,
        itl_penalty_threshold=32,
        itl_penalty_per_seq=0.05,
        p95_factor=1.3,
        p99_factor=1.6,
        min_efficient_seqs=MIN_SEQS,
    )
    performance = score(
        estimate_performance(model_gb, request.gpu, batch, workload.max_sequence_length, profile),
        model_gb,
    )

    parameters = base_parameters(request, memory, batch)
    if name == "production":
        parameters["disable-log-requests"] = True
    return build_result(request, memory, batch, performance, parameters)
