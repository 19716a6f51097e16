"""Type and range checks for externally supplied values.

Every validator returns the (possibly normalized) value on success and raises
:class:`~vllm_planner.errors.ValidationError` carrying the field name and the
offending value otherwise.  Validators never catch their own errors.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from vllm_planner.errors import InsufficientMemoryError, ValidationError

# ---------------------------------------------------------------------------
# Domain bounds: values beyond these are rejected as unrealistic
# ---------------------------------------------------------------------------
MAX_SEQUENCE_LENGTH = 1_000_000
MAX_BATCH_SIZE = 10_000
MAX_VRAM_GB = 1000
MAX_BANDWIDTH_GBPS = 10_000
MAX_PARAMETERS = 1e13
MAX_MODEL_SIZE_GB = 1000
MAX_LAYERS = 1000
MAX_HIDDEN_SIZE = 100_000
MAX_HEADS = 1000
MAX_GPU_COUNT = 64

_POSITIVE_EPSILON = 1e-6


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------


def number(
    value: Any,
    field: str,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    # bool is an int subclass, but True is never a valid memory size
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError("must be a valid number", field=field, value=value)
    if minimum is not None and value < minimum:
        raise ValidationError(f"must be at least {minimum}", field=field, value=value)
    if maximum is not None and value > maximum:
        raise ValidationError(f"must be at most {maximum}", field=field, value=value)
    return value


def positive_number(value: Any, field: str, maximum: float | None = None) -> float:
    return number(value, field, minimum=_POSITIVE_EPSILON, maximum=maximum)


def positive_integer(value: Any, field: str, maximum: int | None = None) -> int:
    number(value, field, maximum=maximum)
    if value < 1 or int(value) != value:
        raise ValidationError("must be a positive integer", field=field, value=value)
    return int(value)


def non_negative_integer(value: Any, field: str, maximum: int | None = None) -> int:
    """Like :func:`positive_integer` but admits zero (sweep endpoints)."""
    number(value, field, maximum=maximum)
    if value < 0 or int(value) != value:
        raise ValidationError("must be a non-negative integer", field=field, value=value)
    return int(value)


def one_of(value: Any, allowed: Iterable[str], field: str) -> str:
    """Case-insensitive membership check; returns the canonical lower-case form."""
    allowed = list(allowed)
    text = non_empty_string(value, field).lower()
    if text not in allowed:
        raise ValidationError(
            f"must be one of: {', '.join(allowed)}", field=field, value=value
        )
    return text


def non_empty_string(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("must be a non-empty string", field=field, value=value)
    return value.strip()


def require_fields(value: Any, required: Iterable[str], field: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise ValidationError("must be an object", field=field, value=value)
    for key in required:
        if key not in value:
            raise ValidationError(f"missing required field '{key}'", field=field, value=value)
    return value


def sequence(value: Any, field: str) -> list:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ValidationError("must be an array", field=field, value=value)
    return list(value)


# ---------------------------------------------------------------------------
# Domain validators
# ---------------------------------------------------------------------------


def sequence_length(value: Any, field: str = "sequence_length") -> int:
    return positive_integer(value, field, maximum=MAX_SEQUENCE_LENGTH)


def batch_size(value: Any, field: str = "batch_size") -> int:
    return positive_integer(value, field, maximum=MAX_BATCH_SIZE)


def gpu_specs(specs: Any, field: str = "gpu") -> dict:
    """Validate a GPU description with snake_case keys."""
    require_fields(specs, ["total_memory_gb"], field)
    result = dict(specs)
    result["total_memory_gb"] = positive_number(
        specs["total_memory_gb"], f"{field}.total_memory_gb", maximum=MAX_VRAM_GB
    )
    if specs.get("memory_bandwidth_gbps") is not None:
        result["memory_bandwidth_gbps"] = positive_number(
            specs["memory_bandwidth_gbps"], f"{field}.memory_bandwidth_gbps",
            maximum=MAX_BANDWIDTH_GBPS,
        )
    if specs.get("gpu_count") is not None:
        result["gpu_count"] = positive_integer(
            specs["gpu_count"], f"{field}.gpu_count", maximum=MAX_GPU_COUNT
        )
    return result


def model_specs(specs: Any, field: str = "model") -> dict:
    """Validate a model description: a size or a parameter count is required."""
    require_fields(specs, [], field)
    if specs.get("model_size_gb") is None and specs.get("num_params_b") is None:
        raise ValidationError(
            "requires model_size_gb or num_params_b", field=field, value=dict(specs)
        )
    result = dict(specs)
    if specs.get("model_size_gb") is not None:
        result["model_size_gb"] = positive_number(
            specs["model_size_gb"], f"{field}.model_size_gb", maximum=MAX_MODEL_SIZE_GB
        )
    if specs.get("num_params_b") is not None:
        result["num_params_b"] = positive_number(
            specs["num_params_b"], f"{field}.num_params_b", maximum=MAX_PARAMETERS / 1e9
        )
    for key, limit in (
        ("num_layers", MAX_LAYERS),
        ("hidden_size", MAX_HIDDEN_SIZE),
        ("num_heads", MAX_HEADS),
    ):
        if specs.get(key) is not None:
            result[key] = positive_integer(specs[key], f"{field}.{key}", maximum=limit)
    return result


def memory_requirements(required_gb: float, available_gb: float) -> None:
    """Raise InsufficientMemoryError when *required_gb* exceeds *available_gb*."""
    number(required_gb, "required_gb", minimum=0)
    number(available_gb, "available_gb", minimum=0)
    if required_gb > available_gb:
        raise InsufficientMemoryError(required_gb, available_gb)
