"""Quantization format catalog and format recommendation.

Pure computation, no I/O.  The catalog is built once at import time and
exposed read-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType

from vllm_planner import validation
from vllm_planner.errors import UnsupportedFormatError

logger = logging.getLogger(__name__)

BYTES_PER_GIB = 1024**3

# Fraction of VRAM a recommendation may occupy (10% headroom)
RECOMMENDATION_HEADROOM = 0.9

# Rough per-item activation estimate used only for format recommendation
_ROUGH_ACTIVATION_GB_PER_ITEM = 0.5


@dataclass(frozen=True)
class QuantizationFormat:
    name: str
    bits_per_parameter: int
    bytes_per_parameter: float
    memory_efficiency: float  # fraction of the fp32 footprint
    quality_loss: float  # 0-1 estimate
    overhead_fraction: float  # scales/zero-points etc. on top of the weights
    description: str
    group_size: int | None = None
    recommended_for_size: str | None = None
    vllm_method: str | None = None  # value for vLLM's --quantization
    vllm_dtype: str | None = None  # value for vLLM's --dtype

    @property
    def memory_factor(self) -> float:
        return round(self.memory_efficiency + self.overhead_fraction, 3)


@dataclass(frozen=True)
class QualityImpact:
    format: str
    quality_loss: float
    severity: str  # low | medium | high
    description: str
    recommendation: str


@dataclass(frozen=True)
class FormatRecommendation:
    format: str
    can_fit: bool
    memory_usage_gb: float
    memory_utilization_percent: int
    reason: str
    quality_impact: QualityImpact
    weights_gb: float
    kv_cache_gb: float | None = None
    activations_gb: float | None = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

_FORMATS = (
    QuantizationFormat(
        "fp32", 32, 4.0, 1.0, 0.0, 0.0,
        "Full 32-bit floating point precision", vllm_dtype="float32",
    ),
    QuantizationFormat(
        "fp16", 16, 2.0, 0.5, 0.02, 0.0,
        "16-bit floating point (recommended default)", vllm_dtype="float16",
    ),
    QuantizationFormat(
        "bf16", 16, 2.0, 0.5, 0.01, 0.0,
        "Brain Float 16 (better numerical stability than fp16)", vllm_dtype="bfloat16",
    ),
    QuantizationFormat(
        "int8", 8, 1.0, 0.25, 0.05, 0.02,
        "Dynamic 8-bit integer quantization", vllm_method="bitsandbytes",
    ),
    QuantizationFormat(
        "int4", 4, 0.5, 0.125, 0.15, 0.03,
        "Static 4-bit integer quantization", vllm_method="bitsandbytes",
    ),
    QuantizationFormat(
        "awq", 4, 0.5, 0.125, 0.03, 0.01,
        "Activation-aware Weight Quantization (4-bit)",
        group_size=128, recommended_for_size="7B+", vllm_method="awq",
    ),
    QuantizationFormat(
        "gptq", 4, 0.5, 0.125, 0.05, 0.02,
        "GPTQ post-training quantization (4-bit)",
        group_size=32, recommended_for_size="3B+", vllm_method="gptq",
    ),
    QuantizationFormat(
        "ggml", 4, 0.5, 0.125, 0.08, 0.02,
        "GGML quantization format", vllm_method="gguf",
    ),
)

QUANTIZATION_FORMATS: MappingProxyType[str, QuantizationFormat] = MappingProxyType(
    {fmt.name: fmt for fmt in _FORMATS}
)

# Candidate order per recommendation priority
PRIORITY_ORDERS: dict[str, tuple[str, ...]] = {
    "quality": ("fp16", "bf16", "awq", "gptq", "int8", "int4"),
    "memory": ("int4", "awq", "gptq", "int8", "fp16", "bf16"),
    "balanced": ("fp16", "awq", "bf16", "gptq", "int8", "int4"),
}

MOST_AGGRESSIVE_FORMAT = "int4"


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def supported_formats() -> list[str]:
    return list(QUANTIZATION_FORMATS)


def lookup(name: str, field: str = "quantization") -> QuantizationFormat:
    """Case-insensitive catalog lookup.

    Raises UnsupportedFormatError listing the valid names for unknown formats.
    """
    key = name.strip().lower() if isinstance(name, str) else name
    if key not in QUANTIZATION_FORMATS:
        raise UnsupportedFormatError(name, supported_formats(), field=field)
    return QUANTIZATION_FORMATS[key]


def memory_factor(name: str, include_overhead: bool = True) -> float:
    fmt = lookup(name)
    if not include_overhead:
        return fmt.memory_efficiency
    return fmt.memory_factor


def compare(names: list[str]) -> list[QuantizationFormat]:
    """Return the formats sorted by effective memory fraction, most compressed first."""
    names = validation.sequence(names, "formats")
    return sorted((lookup(name) for name in names), key=lambda fmt: fmt.memory_factor)


# ---------------------------------------------------------------------------
# Quality impact
# ---------------------------------------------------------------------------


def _recommendation_text(fmt: QuantizationFormat, params_b: float) -> str:
    savings = (1 - fmt.memory_factor) * 100
    if fmt.name == "fp32":
        return "Use only for research or when maximum precision is required"
    if fmt.name in ("fp16", "bf16"):
        return "Recommended for most production deployments with good balance of speed and quality"
    if fmt.name == "awq":
        size = "large" if params_b >= 7 else "smaller"
        return f"Excellent for {size} models, ~{savings:.0f}% memory savings with minimal quality loss"
    if fmt.name == "gptq":
        return f"Good for memory-constrained environments, {savings:.0f}% memory reduction"
    if fmt.name == "int8":
        return "Use when memory is very limited, may impact quality on smaller models"
    if fmt.name == "int4":
        return "Extreme memory savings but significant quality trade-offs for most models"
    return f"{savings:.0f}% memory savings - evaluate quality trade-offs for your use case"


def estimate_quality_impact(name: str, params_b: float) -> QualityImpact:
    """Adjust the catalog quality loss for model size.

    Larger models (>= 7B) tolerate compression better, so their loss is scaled
    by 0.8; smaller ones by 1.2.
    """
    params_b = validation.positive_number(params_b, "params_b")
    fmt = lookup(name)
    adjusted = fmt.quality_loss * (0.8 if params_b >= 7 else 1.2)

    if adjusted <= 0.05:
        severity = "low"
    elif adjusted <= 0.10:
        severity = "medium"
    else:
        severity = "high"

    return QualityImpact(
        format=fmt.name,
        quality_loss=round(adjusted, 2),
        severity=severity,
        description=fmt.description,
        recommendation=_recommendation_text(fmt, params_b),
    )


# ---------------------------------------------------------------------------
# Recommendation
# ---------------------------------------------------------------------------


def _weights_gb(fmt: QuantizationFormat, params_b: float) -> float:
    base = params_b * fmt.bytes_per_parameter
    return round(base * (1 + fmt.overhead_fraction), 3)


def recommend(
    vram_gb: float,
    params_b: float,
    batch_size: int = 1,
    max_seq_len: int = 2048,
    priority: str = "balanced",
) -> FormatRecommendation:
    """Pick the first format in *priority* order whose rough total fits in 90% of VRAM.

    The KV and activation terms are deliberately coarse: they only rank
    formats against each other.  When nothing fits, the most aggressive format
    is returned with ``can_fit=False``.
    """
    vram_gb = validation.positive_number(vram_gb, "vram_gb", maximum=validation.MAX_VRAM_GB)
    params_b = validation.positive_number(params_b, "params_b")
    batch_size = validation.batch_size(batch_size)
    max_seq_len = validation.sequence_length(max_seq_len, "max_seq_len")
    priority = validation.one_of(priority, PRIORITY_ORDERS, "priority")

    kv_gb = batch_size * max_seq_len * params_b * 2 * 2 / BYTES_PER_GIB
    activations_gb = batch_size * _ROUGH_ACTIVATION_GB_PER_ITEM

    for name in PRIORITY_ORDERS[priority]:
        fmt = QUANTIZATION_FORMATS[name]
        weights = _weights_gb(fmt, params_b)
        total = weights + kv_gb + activations_gb
        if total <= vram_gb * RECOMMENDATION_HEADROOM:
            logger.debug("Recommending %s: %.2f GB of %.2f GB", name, total, vram_gb)
            return FormatRecommendation(
                format=name,
                can_fit=True,
                memory_usage_gb=round(total, 2),
                memory_utilization_percent=round(total / vram_gb * 100),
                reason=_recommendation_text(fmt, params_b),
                quality_impact=estimate_quality_impact(name, params_b),
                weights_gb=weights,
                kv_cache_gb=round(kv_gb, 2),
                activations_gb=activations_gb,
            )

    fmt = QUANTIZATION_FORMATS[MOST_AGGRESSIVE_FORMAT]
    weights = _weights_gb(fmt, params_b)
    logger.info("No format fits %.1fB params in %.1f GB", params_b, vram_gb)
    return FormatRecommendation(
        format=fmt.name,
        can_fit=False,
        memory_usage_gb=weights,
        memory_utilization_percent=round(weights / vram_gb * 100),
        reason=(
            "Model too large for available VRAM even with maximum quantization. "
            "Consider model parallelism or larger GPU."
        ),
        quality_impact=estimate_quality_impact(fmt.name, params_b),
        weights_gb=weights,
    )
