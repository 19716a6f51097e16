"""Model weight memory under a quantization format.

Weights use the decimal convention (``bytes / 1e9``) so that 7B fp16
parameters come out at exactly 14 GB, matching published checkpoint sizes.
"""

from __future__ import annotations

from dataclasses import dataclass

from vllm_planner import validation
from vllm_planner.quantization import lookup

# Values at or below this are parameter counts in billions; above, raw counts
BILLIONS_THRESHOLD = 1000


@dataclass(frozen=True)
class WeightsMemory:
    num_params: float
    quantization: str
    base_memory_gb: float
    overhead_gb: float
    total_memory_gb: float
    memory_factor: float
    bits_per_parameter: int
    description: str


@dataclass(frozen=True)
class RescaledWeights:
    quantization: str
    original_size_gb: float
    quantized_size_gb: float
    savings_gb: float
    savings_percent: float


def weights_gb(num_params: float, quantization: str = "fp16", include_overhead: bool = True) -> float:
    """Unrounded weight memory in GB, the canonical value behind the report."""
    num_params = validation.positive_number(
        num_params, "num_params", maximum=validation.MAX_PARAMETERS
    )
    fmt = lookup(quantization)
    params = num_params * 1e9 if num_params <= BILLIONS_THRESHOLD else num_params
    base_gb = params * fmt.bytes_per_parameter / 1e9
    if include_overhead:
        return base_gb * (1 + fmt.overhead_fraction)
    return base_gb


def calculate_model_weights_memory(
    num_params: float,
    quantization: str = "fp16",
    include_overhead: bool = True,
) -> WeightsMemory:
    """Memory for the model weights.

    *num_params* may be given in billions (``7`` for 7B) or as a raw count
    (``7e9``).  The format's fixed overhead fraction is added unless
    *include_overhead* is False.
    """
    num_params = validation.positive_number(
        num_params, "num_params", maximum=validation.MAX_PARAMETERS
    )
    fmt = lookup(quantization)

    params = num_params * 1e9 if num_params <= BILLIONS_THRESHOLD else num_params
    base_gb = params * fmt.bytes_per_parameter / 1e9
    overhead_gb = base_gb * fmt.overhead_fraction if include_overhead else 0.0

    return WeightsMemory(
        num_params=num_params,
        quantization=fmt.name,
        base_memory_gb=round(base_gb, 3),
        overhead_gb=round(overhead_gb, 3),
        total_memory_gb=round(base_gb + overhead_gb, 3),
        memory_factor=fmt.memory_factor,
        bits_per_parameter=fmt.bits_per_parameter,
        description=fmt.description,
    )


def weights_memory_from_size(fp16_size_gb: float, quantization: str) -> RescaledWeights:
    """Rescale an fp16 checkpoint size into *quantization*."""
    fp16_size_gb = validation.positive_number(
        fp16_size_gb, "model_size_gb", maximum=validation.MAX_MODEL_SIZE_GB
    )
    fmt = lookup(quantization)
    fp16 = lookup("fp16")

    quantized = fp16_size_gb / fp16.memory_efficiency * fmt.memory_efficiency
    quantized *= 1 + fmt.overhead_fraction
    savings = fp16_size_gb - quantized

    return RescaledWeights(
        quantization=fmt.name,
        original_size_gb=fp16_size_gb,
        quantized_size_gb=round(quantized, 3),
        savings_gb=round(savings, 3),
        savings_percent=round(savings / fp16_size_gb * 100, 1),
    )
