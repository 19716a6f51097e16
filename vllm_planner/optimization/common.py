"""Shared decision procedure for the three optimization postures.

Each posture supplies its own constants (:class:`BatchLimits`,
:class:`PerformanceProfile`) and memory split; the arithmetic lives here so
that every posture honors the same budget rule::

    model_weights + kv_cache + activations <= allocated VRAM
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from vllm_planner import config
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import InsufficientMemoryError
from vllm_planner.memory.activations import activation_memory
from vllm_planner.memory.breakdown import (
    analyze_memory_pressure,
    efficiency_rating,
    memory_breakdown,
    reserved_memory,
)
from vllm_planner.memory.kv_cache import kv_cache_memory
from vllm_planner.memory.overhead import runtime_overhead_breakdown
from vllm_planner.quantization import lookup
from vllm_planner.specs import GPUSpec, PlanRequest

logger = logging.getLogger(__name__)

BYTES_PER_GIB = 1024**3

# Strategies size the KV cache in fp16 regardless of weight format
KV_CACHE_PRECISION = "fp16"

# Latency thresholds that flag a bottleneck
TTFT_BOTTLENECK_MS = 200
ITL_BOTTLENECK_MS = 50


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MemoryStrategy:
    posture: str
    gpu_memory_utilization: float
    allocated_vram_gb: float
    kv_cache_budget_gb: float
    reserved_gb: float
    swap_space_gb: float
    block_size: int
    enable_chunked_prefill: bool


@dataclass(frozen=True)
class BatchLimits:
    """Posture constants for the batch-size stage."""

    safety_margin: float
    max_seqs_ceiling: int
    max_seqs_floor: int
    max_tokens_ceiling: int
    max_tokens_floor: int
    activation_scale: float = 1.0


@dataclass(frozen=True)
class BatchPlan:
    max_num_seqs: int
    max_num_batched_tokens: int
    kv_cache_memory_gb: float
    activation_memory_gb: float
    memory_utilization: float  # (weights + kv + activations) / allocated
    memory_limit: int  # sequences that fit before clamping


@dataclass(frozen=True)
class PerformanceProfile:
    """Posture constants for the performance estimate."""

    bandwidth_utilization: float
    decode_efficiency: float = 1.0
    tensor_core_intensity: float = 1.5
    ttft_divisor: float = 100.0
    ttft_floor_ms: float = 50.0
    itl_floor_ms: float = 0.0
    itl_penalty_threshold: int = 1  # sequences served before the penalty applies
    itl_penalty_per_seq: float = 0.1
    p95_factor: float = 1.5
    p99_factor: float = 1.95
    output_tokens: int = 100
    min_efficient_seqs: int | None = None
    max_efficient_seqs: int | None = None


@dataclass(frozen=True)
class PerformanceEstimate:
    """Rough guidance only; never a throughput guarantee."""

    tokens_per_second: float
    requests_per_second: float
    time_to_first_token_ms: float
    inter_token_latency_ms: float
    total_latency_ms: float
    latency_percentiles: dict[str, float]
    bottlenecks: list[str] = field(default_factory=list)
    balance_score: float | None = None
    performance_class: str | None = None


@dataclass(frozen=True)
class StrategyResult:
    posture: str
    model_memory_gb: float
    architecture: ModelArchitecture
    memory: MemoryStrategy
    batch: BatchPlan
    performance: PerformanceEstimate
    parameters: dict[str, Any]
    summary: dict[str, Any]


# ---------------------------------------------------------------------------
# Memory allocation stage
# ---------------------------------------------------------------------------


def allocate(total_vram_gb: float, model_gb: float, utilization: float) -> tuple[float, float]:
    """Return (allocated, remaining-after-weights) for a utilization fraction.

    Raises InsufficientMemoryError when the weights alone fill the GPU.
    """
    if total_vram_gb <= model_gb:
        raise InsufficientMemoryError(model_gb, total_vram_gb, "model weights exceed total VRAM")
    allocated = total_vram_gb * utilization
    return allocated, allocated - model_gb


# ---------------------------------------------------------------------------
# Batch-size stage
# ---------------------------------------------------------------------------


def plan_batch(
    available_gb: float,
    model_gb: float,
    architecture: ModelArchitecture,
    max_seq_len: int,
    avg_seq_len: int,
    limits: BatchLimits,
) -> BatchPlan:
    """Largest concurrent-sequence count that fits *available_gb* under *limits*.

    The safety margin absorbs fragmentation and transient peaks that the
    linear estimate ignores.  Posture floors never push the count above what
    memory allows.
    """
    if available_gb <= model_gb:
        raise InsufficientMemoryError(
            model_gb, available_gb, "no memory left for KV cache after model weights"
        )

    remaining = available_gb - model_gb
    kv_per_seq = kv_cache_memory(1, max_seq_len, architecture, KV_CACHE_PRECISION)
    act_per_token = activation_memory(1, 1, architecture, KV_CACHE_PRECISION) * limits.activation_scale
    per_seq = kv_per_seq + act_per_token * avg_seq_len

    memory_limit = math.floor(limits.safety_margin * remaining / per_seq)
    if memory_limit < 1:
        raise InsufficientMemoryError(
            model_gb + per_seq / limits.safety_margin,
            available_gb,
            f"not even one {max_seq_len}-token sequence fits",
        )

    max_num_seqs = max(
        min(memory_limit, limits.max_seqs_ceiling),
        min(limits.max_seqs_floor, memory_limit),
    )

    token_memory_cap = int(remaining * BYTES_PER_GIB / (4 * architecture.hidden_size))
    max_tokens = min(max_num_seqs * avg_seq_len, limits.max_tokens_ceiling, token_memory_cap)
    max_tokens = max(max_tokens, limits.max_tokens_floor)

    kv_gb = max_num_seqs * kv_per_seq
    act_gb = max_num_seqs * avg_seq_len * act_per_token
    logger.debug(
        "Batch plan: limit=%d seqs=%d tokens=%d kv=%.3f GB act=%.3f GB",
        memory_limit, max_num_seqs, max_tokens, kv_gb, act_gb,
    )

    return BatchPlan(
        max_num_seqs=max_num_seqs,
        max_num_batched_tokens=max_tokens,
        kv_cache_memory_gb=kv_gb,
        activation_memory_gb=act_gb,
        memory_utilization=(model_gb + kv_gb + act_gb) / available_gb,
        memory_limit=memory_limit,
    )


# ---------------------------------------------------------------------------
# Performance estimate stage
# ---------------------------------------------------------------------------


def estimate_performance(
    model_gb: float,
    gpu: GPUSpec,
    batch: BatchPlan,
    max_seq_len: int,
    profile: PerformanceProfile,
) -> PerformanceEstimate:
    effective_bw = gpu.memory_bandwidth_gbps * profile.bandwidth_utilization
    seqs = batch.max_num_seqs

    tokens_per_second = effective_bw / model_gb * seqs * profile.decode_efficiency

    intensity = profile.tensor_core_intensity if gpu.has_tensor_cores else 1.0
    ttft = max(
        profile.ttft_floor_ms,
        max_seq_len * model_gb / (effective_bw * intensity * profile.ttft_divisor),
    )

    penalty = 1 + max(0, seqs - profile.itl_penalty_threshold) * profile.itl_penalty_per_seq
    itl = max(profile.itl_floor_ms, 1000 * model_gb / effective_bw * penalty)

    total = ttft + profile.output_tokens * itl
    requests_per_second = min(tokens_per_second / profile.output_tokens, 1000 / total * seqs)

    bottlenecks = []
    if ttft > TTFT_BOTTLENECK_MS:
        bottlenecks.append("prefill_compute")
    if itl > ITL_BOTTLENECK_MS:
        bottlenecks.append("memory_bandwidth")
    if not gpu.has_tensor_cores:
        bottlenecks.append("compute_capacity")
    if (profile.min_efficient_seqs is not None and seqs < profile.min_efficient_seqs) or (
        profile.max_efficient_seqs is not None and seqs > profile.max_efficient_seqs
    ):
        bottlenecks.append("batch_size")

    return PerformanceEstimate(
        tokens_per_second=round(tokens_per_second, 1),
        requests_per_second=round(requests_per_second, 2),
        time_to_first_token_ms=round(ttft, 1),
        inter_token_latency_ms=round(itl, 1),
        total_latency_ms=round(total, 1),
        latency_percentiles={
            "p50": round(total, 1),
            "p95": round(total * profile.p95_factor, 1),
            "p99": round(total * profile.p99_factor, 1),
        },
        bottlenecks=bottlenecks,
    )


# ---------------------------------------------------------------------------
# Result assembly
# ---------------------------------------------------------------------------


def base_parameters(request: PlanRequest, memory: MemoryStrategy, batch: BatchPlan) -> dict[str, Any]:
    """vLLM server parameters shared by every posture."""
    fmt = lookup(request.model.quantization)
    params: dict[str, Any] = {
        "model": request.model.model_path or config.MODEL_PLACEHOLDER,
        "host": config.SERVER_HOST,
        "port": config.SERVER_PORT,
        "gpu-memory-utilization": memory.gpu_memory_utilization,
        "max-num-seqs": batch.max_num_seqs,
        "max-num-batched-tokens": batch.max_num_batched_tokens,
        "max-model-len": request.workload.max_sequence_length,
        "block-size": memory.block_size,
        "swap-space": round(memory.swap_space_gb, 2),
        "enable-chunked-prefill": memory.enable_chunked_prefill,
    }
    if fmt.vllm_method:
        params["quantization"] = fmt.vllm_method
    elif fmt.vllm_dtype and fmt.name != "fp16":
        params["dtype"] = fmt.vllm_dtype
    if request.gpu.gpu_count > 1:
        params["tensor-parallel-size"] = request.gpu.gpu_count
    return params


def build_result(
    request: PlanRequest,
    memory: MemoryStrategy,
    batch: BatchPlan,
    performance: PerformanceEstimate,
    parameters: dict[str, Any],
) -> StrategyResult:
    gpu = request.gpu
    model_gb = request.model.model_size_gb
    used = model_gb + batch.kv_cache_memory_gb + batch.activation_memory_gb

    summary = {
        "breakdown": memory_breakdown(model_gb, batch.kv_cache_memory_gb, batch.activation_memory_gb),
        "pressure": analyze_memory_pressure(used / gpu.total_memory_gb * 100, gpu.total_memory_gb - used),
        "efficiency": efficiency_rating(batch.memory_utilization),
        "runtime_overhead": runtime_overhead_breakdown(
            model_gb,
            batch.max_num_seqs,
            gpu_type=gpu.gpu_type,
            total_vram_gb=gpu.total_memory_gb,
            multi_gpu=gpu.gpu_count > 1,
        ),
        "recommended_reserved_gb": reserved_memory(gpu.total_memory_gb, memory.posture),
    }
    logger.info(
        "%s plan: %d seqs, %d batched tokens, %.1f%% of allocated VRAM",
        memory.posture, batch.max_num_seqs, batch.max_num_batched_tokens,
        batch.memory_utilization * 100,
    )
    return StrategyResult(
        posture=memory.posture,
        model_memory_gb=model_gb,
        architecture=request.model.architecture,
        memory=memory,
        batch=batch,
        performance=performance,
        parameters=parameters,
        summary=summary,
    )
