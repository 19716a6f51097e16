"""Transformer shape estimation from a parameter count.

Pure computation, no I/O.  Sizes close to a known preset reuse that preset;
sizes between presets are linearly interpolated; sizes outside the preset
range are clamped to the nearest edge preset rather than extrapolated.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from vllm_planner import validation
from vllm_planner.errors import ValidationError

logger = logging.getLogger(__name__)

# Relative distance from the closest preset beyond which we interpolate
INTERPOLATION_THRESHOLD = 0.3

# Presets within this relative distance count as "similar" for recommendations
SIMILARITY_WINDOW = 0.5

DEFAULT_VOCAB_SIZE = 32000


@dataclass(frozen=True)
class ModelArchitecture:
    num_layers: int
    hidden_size: int
    num_heads: int
    vocab_size: int = DEFAULT_VOCAB_SIZE
    intermediate_size: int | None = None

    def __post_init__(self) -> None:
        if self.intermediate_size is None:
            object.__setattr__(self, "intermediate_size", 4 * self.hidden_size)

    @property
    def head_dim(self) -> int:
        return self.hidden_size // self.num_heads


@dataclass(frozen=True)
class ArchitectureEstimate:
    architecture: ModelArchitecture
    name: str
    is_interpolated: bool
    closest_preset: str


@dataclass(frozen=True)
class ArchitectureValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ArchitectureRecommendations:
    estimate: ArchitectureEstimate
    similar_presets: list[tuple[float, str]]
    considerations: list[str]


# ---------------------------------------------------------------------------
# Presets, keyed by parameter count in billions
# ---------------------------------------------------------------------------

_PRESETS: dict[float, tuple[str, ModelArchitecture]] = {
    0.1: ("tiny", ModelArchitecture(6, 512, 8, 32000, 2048)),
    0.5: ("small", ModelArchitecture(12, 768, 12, 50257, 3072)),
    1: ("medium-1b", ModelArchitecture(16, 1024, 16, 32000, 4096)),
    1.5: ("medium-1.5b", ModelArchitecture(20, 1280, 20, 32000, 5120)),
    3: ("medium-3b", ModelArchitecture(24, 1536, 24, 32000, 6144)),
    7: ("large-7b", ModelArchitecture(32, 4096, 32, 32000, 11008)),  # Llama-2 7B, Mistral 7B
    8: ("large-8b", ModelArchitecture(32, 4096, 32, 128256, 14336)),  # Llama-3 8B
    13: ("large-13b", ModelArchitecture(40, 5120, 40, 32000, 13824)),
    30: ("xl-30b", ModelArchitecture(60, 6656, 52, 32000, 17920)),
    34: ("xl-34b", ModelArchitecture(60, 6656, 52, 32000, 17920)),  # Code Llama 34B
    65: ("xl-65b", ModelArchitecture(80, 8192, 64, 32000, 22016)),
    70: ("xl-70b", ModelArchitecture(80, 8192, 64, 32000, 28672)),  # Llama-2 70B
    175: ("xxl-175b", ModelArchitecture(96, 12288, 96, 50257, 49152)),  # GPT-3
    405: ("xxl-405b", ModelArchitecture(126, 16384, 128, 128256, 53248)),  # Llama-3 405B
}

ARCHITECTURE_PRESETS = MappingProxyType(_PRESETS)
_PRESET_SIZES = tuple(sorted(_PRESETS))


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _closest_preset(params_b: float) -> float:
    closest = _PRESET_SIZES[0]
    for size in _PRESET_SIZES:
        # strict comparison keeps the smaller preset on ties
        if abs(size - params_b) < abs(closest - params_b):
            closest = size
    return closest


def _interpolate(params_b: float) -> ModelArchitecture:
    lower, upper = _PRESET_SIZES[0], _PRESET_SIZES[-1]
    for lo, hi in zip(_PRESET_SIZES, _PRESET_SIZES[1:]):
        if lo <= params_b <= hi:
            lower, upper = lo, hi
            break

    low_arch = _PRESETS[lower][1]
    high_arch = _PRESETS[upper][1]
    factor = (params_b - lower) / (upper - lower)

    def lerp(attr: str) -> int:
        a = getattr(low_arch, attr)
        b = getattr(high_arch, attr)
        return _round_half_up(a + (b - a) * factor)

    num_heads = max(1, lerp("num_heads"))
    # head dimension must stay an integer
    hidden_size = max(num_heads, _round_half_up(lerp("hidden_size") / num_heads) * num_heads)
    return ModelArchitecture(
        num_layers=max(1, lerp("num_layers")),
        hidden_size=hidden_size,
        num_heads=num_heads,
        vocab_size=lerp("vocab_size"),
        intermediate_size=lerp("intermediate_size"),
    )


def estimate_detailed(params_b: float) -> ArchitectureEstimate:
    """Estimate a transformer shape and report how it was obtained."""
    params_b = validation.positive_number(params_b, "params_b")

    closest = _closest_preset(params_b)
    preset_name, preset_arch = _PRESETS[closest]
    within_range = _PRESET_SIZES[0] <= params_b <= _PRESET_SIZES[-1]

    if abs(params_b - closest) > closest * INTERPOLATION_THRESHOLD and within_range:
        arch = _interpolate(params_b)
        logger.debug("Interpolated architecture for %gB near %s: %s", params_b, preset_name, arch)
        return ArchitectureEstimate(
            architecture=arch,
            name=f"custom-{params_b:g}b",
            is_interpolated=True,
            closest_preset=preset_name,
        )

    return ArchitectureEstimate(
        architecture=preset_arch,
        name=preset_name,
        is_interpolated=False,
        closest_preset=preset_name,
    )


def estimate(params_b: float) -> ModelArchitecture:
    return estimate_detailed(params_b).architecture


# ---------------------------------------------------------------------------
# User-supplied architectures
# ---------------------------------------------------------------------------

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "num_layers": ("num_layers", "numLayers", "layers", "num_hidden_layers"),
    "hidden_size": ("hidden_size", "hiddenSize"),
    "num_heads": ("num_heads", "numHeads", "num_attention_heads"),
    "vocab_size": ("vocab_size", "vocabSize", "vocabularySize"),
    "intermediate_size": ("intermediate_size", "intermediateSize", "feedForwardSize"),
}

_FIELD_LIMITS: dict[str, int | None] = {
    "num_layers": validation.MAX_LAYERS,
    "hidden_size": validation.MAX_HIDDEN_SIZE,
    "num_heads": validation.MAX_HEADS,
    "vocab_size": None,
    "intermediate_size": None,
}


def _first(mapping: Mapping, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def architecture_from_mapping(mapping: Mapping, field: str = "architecture") -> ModelArchitecture:
    """Build an architecture from snake_case or camelCase keys.

    Layers, hidden size and heads are required; the vocabulary defaults to
    32000 and the feed-forward size to four times the hidden size.
    """
    validation.require_fields(mapping, [], field)
    values: dict[str, int] = {}
    for name, aliases in _FIELD_ALIASES.items():
        raw = _first(mapping, aliases)
        if raw is None:
            if name in ("vocab_size", "intermediate_size"):
                continue
            raise ValidationError(f"missing required field '{name}'", field=field, value=dict(mapping))
        values[name] = validation.positive_integer(raw, f"{field}.{name}", maximum=_FIELD_LIMITS[name])
    return ModelArchitecture(**values)


def has_architecture_fields(mapping: Mapping) -> bool:
    """True when *mapping* carries at least the layer count."""
    return _first(mapping, _FIELD_ALIASES["num_layers"]) is not None


def validate_architecture(arch: ModelArchitecture) -> ArchitectureValidation:
    errors: list[str] = []
    warnings: list[str] = []
    recommendations: list[str] = []

    if arch.num_layers < 1:
        errors.append("Number of layers must be at least 1")
    elif arch.num_layers > 200:
        warnings.append("Very deep model (>200 layers) may have training instability")

    if arch.hidden_size < 64:
        errors.append("Hidden size must be at least 64")
    elif arch.hidden_size % 64 != 0:
        warnings.append("Hidden size should be divisible by 64 for optimal performance")

    if arch.num_heads < 1:
        errors.append("Number of attention heads must be at least 1")
    elif arch.hidden_size % arch.num_heads != 0:
        errors.append("Hidden size must be divisible by number of attention heads")
    else:
        head_dim = arch.head_dim
        if head_dim < 32:
            warnings.append(f"Small head dimension ({head_dim}) may limit attention capacity")
            recommendations.append("Reduce the number of heads or increase the hidden size")
        elif head_dim > 256:
            warnings.append(f"Large head dimension ({head_dim}) may be inefficient")
            recommendations.append("Increase the number of heads to keep head_dim at or below 256")

    return ArchitectureValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        recommendations=recommendations,
    )


def _considerations(params_b: float, arch: ModelArchitecture) -> list[str]:
    considerations = []
    if params_b < 1:
        considerations.append("Small model: Good for testing and development, limited capability")
    elif params_b < 7:
        considerations.append("Medium model: Good balance of performance and resource usage")
    elif params_b < 30:
        considerations.append("Large model: High capability, requires significant resources")
    else:
        considerations.append(
            "Very large model: Cutting-edge capability, requires substantial infrastructure"
        )

    if arch.hidden_size >= 8192:
        considerations.append("Large hidden size: Consider tensor parallelism for memory distribution")
    if arch.num_layers >= 80:
        considerations.append("Deep model: May benefit from pipeline parallelism")
    if arch.num_heads >= 64:
        considerations.append("Many attention heads: Excellent for complex reasoning tasks")
    return considerations


def architecture_recommendations(params_b: float) -> ArchitectureRecommendations:
    detailed = estimate_detailed(params_b)
    similar = sorted(
        (size for size in _PRESET_SIZES if abs(size - params_b) <= params_b * SIMILARITY_WINDOW),
        key=lambda size: abs(size - params_b),
    )[:3]
    return ArchitectureRecommendations(
        estimate=detailed,
        similar_presets=[(size, _PRESETS[size][0]) for size in similar],
        considerations=_considerations(params_b, detailed.architecture),
    )
