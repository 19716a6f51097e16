"""Workload-driven vLLM parameter recommendations.

Unlike the posture strategies in :mod:`vllm_planner.optimization`, this
works from a description of the traffic (workload type, concurrency and
requirements) rather than from a sized model and GPU.  When the VRAM and
model size are known the swap space is sized from them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from vllm_planner import config, validation
from vllm_planner.memory.breakdown import optimal_swap_space

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkloadType:
    name: str
    description: str
    average_input_length: int
    average_output_length: int
    latency_requirement: str
    throughput_priority: str
    priority: str
    special_features: tuple[str, ...] = ()


@dataclass(frozen=True)
class PerformancePriority:
    name: str
    batch_size_multiplier: float
    memory_utilization: float
    block_size: int
    max_num_seqs: int


@dataclass(frozen=True)
class WorkloadConstraints:
    max_memory_utilization: float | None = None
    max_batch_size: int | None = None
    max_sequence_length: int | None = None
    disabled_features: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkloadOptimization:
    workload_type: str
    strategy: str
    parameters: dict[str, Any]
    enabled_features: list[str] = field(default_factory=list)
    considerations: list[str] = field(default_factory=list)
    tradeoffs: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    bottlenecks: list[str] = field(default_factory=list)


WORKLOAD_TYPES: dict[str, WorkloadType] = {
    "chat": WorkloadType(
        "Interactive Chat", "Real-time conversational AI with users",
        256, 150, "low", "medium", "latency", ("prefix-caching", "chunked-prefill"),
    ),
    "completion": WorkloadType(
        "Text Completion", "Batch text completion and generation tasks",
        512, 200, "medium", "high", "throughput", ("batching-optimization",),
    ),
    "code-generation": WorkloadType(
        "Code Generation", "Programming assistance and code completion",
        400, 100, "low", "medium", "quality", ("prefix-caching", "longer-context"),
    ),
    "batch": WorkloadType(
        "Batch Processing", "Large-scale offline batch processing",
        800, 300, "relaxed", "very-high", "throughput", ("high-batch-sizes", "chunked-prefill"),
    ),
    "serving": WorkloadType(
        "General API Serving", "General-purpose API serving for various applications",
        400, 150, "balanced", "balanced", "balanced", ("adaptive-batching",),
    ),
    "embedding": WorkloadType(
        "Embedding Generation", "Text embedding generation for similarity and search",
        300, 0, "medium", "very-high", "throughput", ("high-batch-sizes", "no-generation"),
    ),
}
DEFAULT_WORKLOAD_TYPE = "serving"

PERFORMANCE_PRIORITIES: dict[str, PerformancePriority] = {
    "latency": PerformancePriority("Latency Optimized", 0.5, 0.80, 8, 32),
    "throughput": PerformancePriority("Throughput Optimized", 2.0, 0.95, 16, 256),
    "balanced": PerformancePriority("Balanced Performance", 1.0, 0.85, 16, 128),
    "quality": PerformancePriority("Quality Optimized", 0.8, 0.85, 16, 64),
}

TRADEOFFS: dict[str, tuple[str, ...]] = {
    "latency": (
        "Lower latency at the cost of reduced throughput",
        "Conservative memory usage may limit concurrent capacity",
    ),
    "throughput": (
        "Higher throughput may increase individual request latency",
        "Aggressive memory usage requires careful monitoring",
    ),
    "balanced": (
        "Balanced approach may not achieve peak performance in either dimension",
        "Good general-purpose configuration for mixed workloads",
    ),
    "quality": (
        "Quality focus may reduce throughput and increase costs",
        "Conservative batching ensures consistent output quality",
    ),
}

MAX_BASE_BATCH = 256
MAX_SEQ_LEN = 8192
MAX_BATCHED_TOKENS = 16384
CHUNKED_PREFILL_SEQ_LEN = 2048
PREFIX_CACHING_CONCURRENCY = 64


def select_strategy(
    workload: WorkloadType, latency_requirement: str, throughput_priority: str
) -> str:
    if latency_requirement in ("low", "very-low"):
        return "latency"
    if throughput_priority in ("high", "very-high"):
        return "throughput"
    return workload.priority


def recommended_quantization(strategy: str, cost_sensitivity: str) -> str:
    if strategy == "quality":
        return "fp16"
    if strategy == "throughput" or cost_sensitivity == "high":
        return "awq"
    return "fp16"


def _enabled_features(workload: WorkloadType, strategy: str, total_len: int, concurrency: int) -> list[str]:
    features = list(workload.special_features)
    if strategy == "throughput":
        features.append("high-batch-sizes")
    if total_len > CHUNKED_PREFILL_SEQ_LEN:
        features.append("chunked-prefill")
    if concurrency > PREFIX_CACHING_CONCURRENCY:
        features.append("prefix-caching")
    return list(dict.fromkeys(features))


def _swap_space(
    strategy: str, cost_sensitivity: str, total_vram_gb: float | None, model_size_gb: float | None
) -> float:
    if total_vram_gb:
        posture = strategy if strategy in ("latency", "throughput") else "balanced"
        return optimal_swap_space(total_vram_gb, model_size_gb or 0, posture)
    return 2 if cost_sensitivity == "high" else 4


def optimize_for_workload(
    workload_type: str = DEFAULT_WORKLOAD_TYPE,
    average_input_length: int | None = None,
    average_output_length: int | None = None,
    peak_concurrency: int = 100,
    latency_requirement: str = "balanced",
    throughput_priority: str = "medium",
    cost_sensitivity: str = "medium",
    reliability_requirement: str = "standard",
    constraints: WorkloadConstraints | None = None,
    gpu_count: int = 1,
    total_vram_gb: float | None = None,
    model_size_gb: float | None = None,
    model_path: str | None = None,
) -> WorkloadOptimization:
    """Recommend vLLM parameters for a described workload."""
    considerations: list[str] = []
    if workload_type not in WORKLOAD_TYPES:
        logger.warning("Unknown workload type '%s', using %s", workload_type, DEFAULT_WORKLOAD_TYPE)
        considerations.append("Unknown workload type - using general serving optimizations")
        workload_type = DEFAULT_WORKLOAD_TYPE
    workload = WORKLOAD_TYPES[workload_type]
    constraints = constraints or WorkloadConstraints()

    peak_concurrency = validation.positive_integer(peak_concurrency, "peak_concurrency")
    gpu_count = validation.positive_integer(gpu_count, "gpu_count", maximum=validation.MAX_GPU_COUNT)
    input_len = validation.non_negative_integer(
        average_input_length or workload.average_input_length, "average_input_length"
    )
    output_len = validation.non_negative_integer(
        workload.average_output_length if average_output_length is None else average_output_length,
        "average_output_length",
    )
    total_len = validation.positive_integer(input_len + output_len, "total_sequence_length")

    strategy = select_strategy(workload, latency_requirement, throughput_priority)
    priority = PERFORMANCE_PRIORITIES[strategy]

    max_seqs = math.floor(min(peak_concurrency, MAX_BASE_BATCH) * priority.batch_size_multiplier)
    max_seq_len = min(total_len * 2, MAX_SEQ_LEN)
    max_tokens = min(max_seqs * total_len, MAX_BATCHED_TOKENS)
    utilization = priority.memory_utilization
    features = _enabled_features(workload, strategy, total_len, peak_concurrency)
    extra: dict[str, Any] = {}

    if workload_type == "chat":
        extra["enable-prefix-caching"] = True
        max_seqs = min(max_seqs, 128)
    elif workload_type == "code-generation":
        max_seq_len = max(max_seq_len, 4096)
    elif workload_type == "batch":
        max_seqs = max(max_seqs, 256)
        extra["disable-log-stats"] = True
        extra["disable-log-requests"] = True
    elif workload_type == "embedding":
        max_seqs = max(max_seqs, 512)
        max_tokens = max_seqs * input_len

    if constraints.max_memory_utilization is not None:
        utilization = min(utilization, constraints.max_memory_utilization)
    if constraints.max_batch_size is not None:
        max_seqs = min(max_seqs, constraints.max_batch_size)
    if constraints.max_sequence_length is not None:
        max_seq_len = min(max_seq_len, constraints.max_sequence_length)
    features = [f for f in features if f not in constraints.disabled_features]
    if "prefix-caching" in constraints.disabled_features:
        extra.pop("enable-prefix-caching", None)

    max_seqs = max(1, max_seqs)
    max_tokens = max(max_tokens, max_seqs)
    chunked = max_seq_len > CHUNKED_PREFILL_SEQ_LEN and "chunked-prefill" not in constraints.disabled_features
    quantization = recommended_quantization(strategy, cost_sensitivity)
    swap = _swap_space(strategy, cost_sensitivity, total_vram_gb, model_size_gb)

    parameters: dict[str, Any] = {
        "model": model_path or config.MODEL_PLACEHOLDER,
        "max-num-seqs": max_seqs,
        "max-num-batched-tokens": max_tokens,
        "max-model-len": max_seq_len,
        "gpu-memory-utilization": utilization,
        "swap-space": swap,
        "block-size": priority.block_size,
        "enable-chunked-prefill": chunked,
        **extra,
    }
    if quantization == "awq":
        parameters["quantization"] = "awq"
    if gpu_count > 1:
        parameters["tensor-parallel-size"] = gpu_count
        parameters["pipeline-parallel-size"] = 1

    considerations += [
        f"Workload: {workload.name} - {workload.description}",
        f"Latency requirement: {workload.latency_requirement}",
        f"Throughput priority: {workload.throughput_priority}",
        f"Typical sequence length: {workload.average_input_length + workload.average_output_length} tokens",
    ]

    recommendations = []
    if max_seqs > 128:
        recommendations.append("High batch size may increase latency - monitor response times")
    if utilization > 0.90:
        recommendations.append("High memory utilization - ensure adequate cooling and monitoring")
    if quantization == "awq":
        recommendations.append("AWQ quantization reduces memory usage and costs while maintaining quality")
    if reliability_requirement == "high":
        recommendations.append("Consider setting up monitoring and auto-scaling for production")
        recommendations.append("Implement health checks and graceful shutdown procedures")
    recommendations.append("Monitor GPU memory usage and batch queue lengths")
    if "prefix-caching" in features:
        recommendations.append("Monitor prefix cache hit rates for optimization opportunities")

    bottlenecks = []
    if max_seqs > peak_concurrency * 2:
        bottlenecks.append("Batch size larger than expected concurrency - may underutilize resources")
    if utilization > 0.95:
        bottlenecks.append("Very high memory utilization - risk of OOM errors")
    if total_len > 4096 and "chunked-prefill" not in features:
        bottlenecks.append("Long sequences without chunked prefill - may impact latency")

    logger.info("Workload %s optimized for %s", workload_type, strategy)
    return WorkloadOptimization(
        workload_type=workload_type,
        strategy=strategy,
        parameters=parameters,
        enabled_features=features,
        considerations=considerations,
        tradeoffs=list(TRADEOFFS[strategy]),
        recommendations=recommendations,
        bottlenecks=bottlenecks,
    )
