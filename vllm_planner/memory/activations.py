"""Activation memory for inference (and a coarse training estimate).

Activations are modeled as five weighted components of
``batch x seq_len x hidden x layers x bytes``, scaled by a global inference
efficiency factor.  Training doubles the forward total as a coarse stand-in
for backward-pass buffers; it is not a per-layer gradient accounting.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from vllm_planner import validation
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import UnsupportedFormatError

BYTES_PER_GIB = 1024**3

ACTIVATION_PRECISION_BYTES = MappingProxyType({"fp32": 4, "fp16": 2, "bf16": 2})

_DTYPE_ALIASES = {"float32": "fp32", "float16": "fp16", "bfloat16": "bf16"}

# Empirical weights; they sum to 0.80, not 1.0, and are kept that way.
COMPONENT_WEIGHTS = MappingProxyType({
    "attention": 0.30,
    "mlp": 0.20,
    "layernorm": 0.05,
    "residual": 0.10,
    "overhead": 0.15,
})

# Calibration point: inference keeps far fewer activations alive than training
INFERENCE_EFFICIENCY = 0.5

TRAINING_MULTIPLIER = 2.0

PHASE_MULTIPLIERS: dict[str, dict[str, float]] = {
    "inference": {"prefill": 1.5, "decode": 0.3, "average": 1.0},
    "training": {"forward": 1.0, "backward": 2.5, "optimizer": 1.2, "average": 1.6},
}


@dataclass(frozen=True)
class ActivationBreakdown:
    precision: str
    training: bool
    components_gb: dict[str, float]
    forward_gb: float
    total_gb: float
    per_layer_gb: float
    per_sequence_gb: float


@dataclass(frozen=True)
class PeakActivations:
    phase: str
    base_gb: float
    peaks_gb: dict[str, float]


def activation_precision(name: str) -> str:
    key = name.strip().lower() if isinstance(name, str) else name
    key = _DTYPE_ALIASES.get(key, key)
    if key not in ACTIVATION_PRECISION_BYTES:
        raise UnsupportedFormatError(
            name, list(ACTIVATION_PRECISION_BYTES), field="activation_precision"
        )
    return key


def _component_bytes(
    batch_size: int,
    seq_len: int,
    architecture: ModelArchitecture,
    precision: str,
) -> dict[str, float]:
    batch_size = validation.non_negative_integer(
        batch_size, "batch_size", maximum=validation.MAX_BATCH_SIZE
    )
    seq_len = validation.non_negative_integer(
        seq_len, "seq_len", maximum=validation.MAX_SEQUENCE_LENGTH
    )
    bytes_per_element = ACTIVATION_PRECISION_BYTES[activation_precision(precision)]
    base = batch_size * seq_len * architecture.hidden_size * architecture.num_layers
    return {
        name: base * weight * bytes_per_element * INFERENCE_EFFICIENCY
        for name, weight in COMPONENT_WEIGHTS.items()
    }


def activation_memory(
    batch_size: int,
    seq_len: int,
    architecture: ModelArchitecture,
    precision: str = "fp16",
) -> float:
    """Inference activation memory in GiB."""
    return sum(_component_bytes(batch_size, seq_len, architecture, precision).values()) / BYTES_PER_GIB


def activation_breakdown(
    batch_size: int,
    seq_len: int,
    architecture: ModelArchitecture,
    precision: str = "fp16",
    training: bool = False,
) -> ActivationBreakdown:
    components = _component_bytes(batch_size, seq_len, architecture, precision)
    forward_gb = sum(components.values()) / BYTES_PER_GIB
    total_gb = forward_gb * TRAINING_MULTIPLIER if training else forward_gb
    return ActivationBreakdown(
        precision=activation_precision(precision),
        training=training,
        components_gb={name: round(b / BYTES_PER_GIB, 3) for name, b in components.items()},
        forward_gb=round(forward_gb, 3),
        total_gb=round(total_gb, 3),
        per_layer_gb=round(total_gb / architecture.num_layers, 3),
        per_sequence_gb=round(total_gb / batch_size, 3) if batch_size else 0.0,
    )


def peak_activation_memory(
    batch_size: int,
    seq_len: int,
    architecture: ModelArchitecture,
    precision: str = "fp16",
    phase: str = "inference",
) -> PeakActivations:
    """Activation memory at the peaks of each serving (or training) phase."""
    phase = validation.one_of(phase, PHASE_MULTIPLIERS, "phase")
    base_gb = activation_memory(batch_size, seq_len, architecture, precision)
    return PeakActivations(
        phase=phase,
        base_gb=round(base_gb, 3),
        peaks_gb={
            name: round(base_gb * multiplier, 3)
            for name, multiplier in PHASE_MULTIPLIERS[phase].items()
        },
    )
