"""Total memory breakdown and supporting VRAM analyses.

Every result is recomputed per call; nothing is cached between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from vllm_planner import architecture as arch_estimator
from vllm_planner import validation
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import ValidationError
from vllm_planner.memory.activations import activation_memory
from vllm_planner.memory.kv_cache import kv_cache_memory, optimal_block_size
from vllm_planner.memory.overhead import system_overhead
from vllm_planner.memory.weights import calculate_model_weights_memory
from vllm_planner.quantization import lookup

logger = logging.getLogger(__name__)

# Swap space as a fraction of VRAM per posture (batch workloads swap more)
SWAP_RATIOS = {"throughput": 0.15, "latency": 0.05, "balanced": 0.1}
BATCH_SWAP_RATIO = 0.2
MAX_SWAP_GB = 16

RESERVATION_RATES = {"throughput": 0.03, "latency": 0.08, "balanced": 0.05, "conservative": 0.1}
MIN_RESERVED_GB = 0.5
MAX_RESERVED_GB = 8

# (threshold percent, level, description)
_PRESSURE_LEVELS = (
    (95, "Critical", "Memory usage is at critical levels. System instability likely."),
    (90, "High", "High memory pressure. Performance degradation possible."),
    (80, "Moderate", "Moderate memory usage. Generally safe for production."),
    (60, "Low", "Comfortable memory usage with good headroom."),
    (0, "Very Low", "Memory is underutilized. Efficiency could be improved."),
)

_PRESSURE_ADVICE = {
    "Critical": [
        "Reduce batch size immediately",
        "Use more aggressive quantization",
        "Consider model sharding across multiple GPUs",
        "Reduce maximum sequence length",
    ],
    "High": [
        "Reduce batch size for stability",
        "Monitor for OOM errors",
        "Consider using int8 or 4-bit quantization",
    ],
    "Moderate": [
        "Monitor memory usage during peak loads",
        "Have scaling plans ready",
    ],
    "Low": [
        "Consider increasing batch size for better throughput",
        "Room for handling traffic spikes",
    ],
    "Very Low": [
        "Increase batch size significantly",
        "Optimize for throughput rather than memory conservation",
    ],
}

_EFFICIENCY_RATINGS = (
    (0.9, "Excellent"),
    (0.8, "Very Good"),
    (0.7, "Good"),
    (0.6, "Fair"),
    (0.5, "Poor"),
)


@dataclass(frozen=True)
class MemoryBreakdown:
    model_weights_gb: float
    kv_cache_gb: float
    activations_gb: float
    system_overhead_gb: float
    total_gb: float
    shares: dict[str, float]  # percent of total per component


@dataclass(frozen=True)
class MemoryUsage:
    breakdown: MemoryBreakdown
    architecture: ModelArchitecture
    quantization: str
    per_sequence_gb: float
    per_1k_tokens_gb: float
    recommended_block_size: int


@dataclass(frozen=True)
class MemoryPressure:
    level: str
    description: str
    utilization_percent: float
    available_gb: float
    is_stable: bool
    has_headroom: bool
    recommendations: list[str] = field(default_factory=list)


def memory_breakdown(
    weights_gb: float,
    kv_cache_gb: float,
    activations_gb: float,
    overhead_fraction: float | None = None,
) -> MemoryBreakdown:
    for name, value in (
        ("weights_gb", weights_gb),
        ("kv_cache_gb", kv_cache_gb),
        ("activations_gb", activations_gb),
    ):
        validation.number(value, name, minimum=0)

    overhead_gb = system_overhead(weights_gb, kv_cache_gb, activations_gb, overhead_fraction)
    total_gb = weights_gb + kv_cache_gb + activations_gb + overhead_gb
    components = {
        "model_weights": weights_gb,
        "kv_cache": kv_cache_gb,
        "activations": activations_gb,
        "system_overhead": overhead_gb,
    }
    shares = {
        name: round(value / total_gb * 100, 1) if total_gb else 0.0
        for name, value in components.items()
    }
    return MemoryBreakdown(
        model_weights_gb=round(weights_gb, 3),
        kv_cache_gb=round(kv_cache_gb, 3),
        activations_gb=round(activations_gb, 3),
        system_overhead_gb=round(overhead_gb, 3),
        total_gb=round(total_gb, 3),
        shares=shares,
    )


def _activation_dtype(quantization: str) -> str:
    # quantized weights still run fp16 activations
    return quantization if quantization in ("fp32", "bf16") else "fp16"


def estimate_memory_usage(
    num_params_b: float | None = None,
    model_size_gb: float | None = None,
    quantization: str = "fp16",
    kv_precision: str = "fp16",
    batch_size: int = 1,
    max_seq_len: int = 2048,
    seq_len: int = 512,
    architecture: ModelArchitecture | None = None,
    overhead_fraction: float | None = None,
) -> MemoryUsage:
    """Full inference memory estimate for one model and one batch shape.

    KV cache is sized for *max_seq_len*; activations for the current
    *seq_len*.  A missing architecture is estimated from the parameter count,
    or from the weight size when only that is known.
    """
    if num_params_b is None and model_size_gb is None:
        raise ValidationError(
            "requires num_params_b or model_size_gb", field="model", value=None
        )
    fmt = lookup(quantization)

    if model_size_gb is not None:
        weights_gb = validation.positive_number(
            model_size_gb, "model_size_gb", maximum=validation.MAX_MODEL_SIZE_GB
        )
    else:
        weights_gb = calculate_model_weights_memory(num_params_b, fmt.name).total_memory_gb

    if architecture is None:
        params_b = num_params_b if num_params_b is not None else weights_gb / fmt.bytes_per_parameter
        architecture = arch_estimator.estimate(params_b)

    kv_gb = kv_cache_memory(batch_size, max_seq_len, architecture, kv_precision)
    act_gb = activation_memory(batch_size, seq_len, architecture, _activation_dtype(fmt.name))
    breakdown = memory_breakdown(weights_gb, kv_gb, act_gb, overhead_fraction)

    dynamic_gb = kv_gb + act_gb
    total_tokens = batch_size * max_seq_len
    return MemoryUsage(
        breakdown=breakdown,
        architecture=architecture,
        quantization=fmt.name,
        per_sequence_gb=round(dynamic_gb / batch_size, 3) if batch_size else 0.0,
        per_1k_tokens_gb=round(dynamic_gb / total_tokens * 1000, 3) if total_tokens else 0.0,
        recommended_block_size=optimal_block_size(kv_gb),
    )


def compare_memory_usage(configs: list[Mapping]) -> tuple[list[MemoryUsage], int]:
    """Estimate each configuration; return the results and the index of the smallest total."""
    configs = validation.sequence(configs, "configs")
    if not configs:
        raise ValidationError("must not be empty", field="configs", value=configs)
    results = [estimate_memory_usage(**dict(cfg)) for cfg in configs]
    best = min(range(len(results)), key=lambda i: results[i].breakdown.total_gb)
    return results, best


# ---------------------------------------------------------------------------
# Supporting analyses
# ---------------------------------------------------------------------------


def optimal_swap_space(
    total_vram_gb: float,
    model_size_gb: float,
    posture: str = "balanced",
    workload_kind: str = "serving",
) -> float:
    """CPU swap space in GiB, clamped to [max(1, 10% of model), min(16, 25% of VRAM)]."""
    total_vram_gb = validation.positive_number(total_vram_gb, "total_vram_gb")
    ratio = SWAP_RATIOS.get(posture, SWAP_RATIOS["balanced"])
    if posture == "throughput" and workload_kind == "batch":
        ratio = BATCH_SWAP_RATIO
    upper = min(MAX_SWAP_GB, total_vram_gb * 0.25)
    lower = max(1.0, model_size_gb * 0.1)
    return round(min(upper, max(lower, total_vram_gb * ratio)), 3)


def reserved_memory(total_vram_gb: float, posture: str = "balanced") -> float:
    total_vram_gb = validation.positive_number(total_vram_gb, "total_vram_gb")
    rate = RESERVATION_RATES.get(posture, RESERVATION_RATES["balanced"])
    upper = min(MAX_RESERVED_GB, total_vram_gb * 0.15)
    return round(min(upper, max(MIN_RESERVED_GB, total_vram_gb * rate)), 3)


def analyze_memory_pressure(utilization_percent: float, available_gb: float) -> MemoryPressure:
    utilization_percent = validation.number(utilization_percent, "utilization_percent", minimum=0)
    for threshold, level, description in _PRESSURE_LEVELS:
        if utilization_percent >= threshold:
            break
    return MemoryPressure(
        level=level,
        description=description,
        utilization_percent=round(utilization_percent, 1),
        available_gb=round(available_gb, 3),
        is_stable=utilization_percent < 90,
        has_headroom=available_gb > 2.0,
        recommendations=list(_PRESSURE_ADVICE[level]),
    )


def efficiency_rating(score: float) -> str:
    for threshold, rating in _EFFICIENCY_RATINGS:
        if score >= threshold:
            return rating
    return "Very Poor"
