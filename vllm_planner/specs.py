"""Validated input models and request normalization.

Callers may send a fully structured request (``gpuSpecs`` / ``modelSpecs`` /
``workloadSpecs``), a flat record with every field at one level, or a hybrid
of both.  :func:`normalize_request` resolves the shape once and returns a
single canonical :class:`PlanRequest`; nothing downstream branches on shape.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from vllm_planner import architecture as arch_estimator
from vllm_planner import validation
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import ValidationError
from vllm_planner.memory.weights import weights_gb
from vllm_planner.quantization import lookup

logger = logging.getLogger(__name__)

DEFAULT_AVERAGE_SEQUENCE_LENGTH = 512


class Posture(Enum):
    THROUGHPUT = "throughput"
    LATENCY = "latency"
    BALANCED = "balanced"


class InputShape(Enum):
    STRUCTURED = "structured"
    FLAT = "flat"
    HYBRID = "hybrid"


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------


class GPUSpec(BaseModel):
    """Hardware the deployment runs on.  Memory is the total across all GPUs."""

    model_config = ConfigDict(frozen=True, strict=True)

    total_memory_gb: float = Field(
        80.0, gt=0, le=validation.MAX_VRAM_GB, description="Total VRAM across GPUs in GB"
    )
    memory_bandwidth_gbps: float = Field(
        900.0, gt=0, le=validation.MAX_BANDWIDTH_GBPS, description="Memory bandwidth per GPU in GB/s"
    )
    has_tensor_cores: bool = True
    gpu_count: int = Field(1, ge=1, le=validation.MAX_GPU_COUNT)
    gpu_type: str = Field("default", description="GPU family for overhead modeling, e.g. a100")


class ModelSpec(BaseModel):
    """Model to serve.  Size and architecture are always resolved after normalization."""

    model_config = ConfigDict(frozen=True, strict=True, protected_namespaces=())

    num_params_b: float | None = Field(
        None, gt=0, le=validation.MAX_PARAMETERS / 1e9, description="Parameter count in billions"
    )
    model_size_gb: float = Field(
        ..., gt=0, le=validation.MAX_MODEL_SIZE_GB, description="Weight memory in GB"
    )
    quantization: str = Field("fp16", description="Catalog name of the weight format")
    architecture: ModelArchitecture
    model_path: str | None = Field(None, description="HF repo ID or local path passed to --model")


class WorkloadSpec(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    expected_concurrency: int = Field(100, ge=1, le=validation.MAX_BATCH_SIZE)
    average_sequence_length: int = Field(
        DEFAULT_AVERAGE_SEQUENCE_LENGTH, ge=1, le=validation.MAX_SEQUENCE_LENGTH
    )
    max_sequence_length: int = Field(2048, ge=1, le=validation.MAX_SEQUENCE_LENGTH)
    posture: Posture = Posture.BALANCED
    workload_kind: str = Field("serving", description="e.g. batch, serving, mixed, chat")
    latency_target: str = Field("low", description="ultra-low, low or balanced")
    balance_target: str = Field("general", description="Named balanced-posture profile")

    @model_validator(mode="before")
    @classmethod
    def _default_average(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("average_sequence_length") is None:
            data = dict(data)
            data.pop("average_sequence_length", None)
            max_len = data.get("max_sequence_length", 2048)
            if isinstance(max_len, int) and not isinstance(max_len, bool):
                data["average_sequence_length"] = min(DEFAULT_AVERAGE_SEQUENCE_LENGTH, max_len)
        return data

    @model_validator(mode="after")
    def _average_within_max(self) -> "WorkloadSpec":
        if self.average_sequence_length > self.max_sequence_length:
            raise ValueError(
                "average_sequence_length must not exceed max_sequence_length "
                f"({self.average_sequence_length} > {self.max_sequence_length})"
            )
        return self


class PlanRequest(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    gpu: GPUSpec
    model: ModelSpec
    workload: WorkloadSpec


# ---------------------------------------------------------------------------
# Field aliases: canonical name -> accepted external spellings
# ---------------------------------------------------------------------------

SECTION_KEYS: dict[str, tuple[str, ...]] = {
    "gpu": ("gpuSpecs", "gpu_specs", "gpu"),
    "model": ("modelSpecs", "model_specs", "model"),
    "workload": ("workloadSpecs", "workload_specs", "workload"),
}

GPU_FIELDS: dict[str, tuple[str, ...]] = {
    "total_memory_gb": ("total_memory_gb", "totalMemoryGB", "totalVRAMGB", "vram_gb", "vramGB"),
    "memory_bandwidth_gbps": (
        "memory_bandwidth_gbps", "memoryBandwidthGBps", "gpuMemoryBandwidthGBps", "bandwidth_gbps",
    ),
    "has_tensor_cores": ("has_tensor_cores", "hasTensorCores", "tensorCores"),
    "gpu_count": ("gpu_count", "gpuCount"),
    "gpu_type": ("gpu_type", "gpuType"),
}

MODEL_FIELDS: dict[str, tuple[str, ...]] = {
    "num_params_b": ("num_params_b", "numParamsB", "params_b", "paramsBillion", "num_params", "numParams"),
    "model_size_gb": ("model_size_gb", "modelSizeGB", "size_gb", "sizeGB"),
    "quantization": ("quantization", "quantizationFormat", "quantization_format", "precision"),
    "model_path": ("model_path", "modelPath", "model_id", "modelId", "hf_model_id"),
}

WORKLOAD_FIELDS: dict[str, tuple[str, ...]] = {
    "expected_concurrency": (
        "expected_concurrency", "expectedConcurrency", "concurrent_requests", "concurrentRequests",
    ),
    "average_sequence_length": (
        "average_sequence_length", "averageSequenceLength", "averageTokensPerRequest", "avg_seq_len",
    ),
    "max_sequence_length": (
        "max_sequence_length", "maxSequenceLength", "maxSeqLen", "max_seq_len", "maxModelLen",
    ),
    "posture": ("posture", "optimizationPosture", "optimization_posture", "optimizationTarget"),
    "workload_kind": ("workload_kind", "workloadKind", "workloadType", "workload_type"),
    "latency_target": ("latency_target", "latencyTarget"),
    "balance_target": ("balance_target", "balanceTarget", "targetProfile"),
}

# Short spellings only meaningful inside their own nested section
_SECTION_ONLY_FIELDS: dict[str, dict[str, tuple[str, ...]]] = {
    "gpu": {"gpu_count": ("count",), "memory_bandwidth_gbps": ("bandwidth",), "gpu_type": ("type", "name")},
    "model": {"model_path": ("name", "id", "path"), "model_size_gb": ("size",)},
    "workload": {"expected_concurrency": ("concurrency",)},
}


def detect_shape(raw: Mapping) -> InputShape:
    nested = sum(1 for keys in SECTION_KEYS.values() if _section(raw, keys) is not None)
    if nested == len(SECTION_KEYS):
        return InputShape.STRUCTURED
    if nested == 0:
        return InputShape.FLAT
    return InputShape.HYBRID


def _section(raw: Mapping, keys: tuple[str, ...]) -> Mapping | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, Mapping):
            return value
    return None


def _first(mapping: Mapping, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _collect(
    section_name: str,
    section: Mapping | None,
    flat: Mapping,
    fields: dict[str, tuple[str, ...]],
) -> dict[str, Any]:
    """Nested section wins over flat top-level keys; missing fields are left to defaults."""
    section_only = _SECTION_ONLY_FIELDS.get(section_name, {})
    values: dict[str, Any] = {}
    for name, aliases in fields.items():
        value = None
        if section is not None:
            value = _first(section, aliases + section_only.get(name, ()))
        if value is None:
            value = _first(flat, aliases)
        if value is not None:
            values[name] = value
    return values


# ---------------------------------------------------------------------------
# Section resolution
# ---------------------------------------------------------------------------


def _gpu_values(section: Mapping | None, flat: Mapping) -> dict[str, Any]:
    values = _collect("gpu", section, flat, GPU_FIELDS)
    # legacy nest: {"gpu": {"memory": per-GPU GB, "count": n}}
    if "total_memory_gb" not in values and section is not None and section.get("memory") is not None:
        per_gpu = validation.positive_number(section["memory"], "gpu.memory", maximum=validation.MAX_VRAM_GB)
        count = validation.positive_integer(values.get("gpu_count", 1), "gpu.gpu_count")
        values["total_memory_gb"] = per_gpu * count
    if isinstance(values.get("gpu_type"), str):
        values["gpu_type"] = values["gpu_type"].strip().lower()
    return values


def _model_values(section: Mapping | None, flat: Mapping) -> dict[str, Any]:
    values = _collect("model", section, flat, MODEL_FIELDS)
    if "model_path" not in values and isinstance(flat.get("model"), str):
        values["model_path"] = flat["model"]

    fmt = lookup(values.get("quantization", "fp16"), field="model.quantization")
    values["quantization"] = fmt.name

    params_b = values.get("num_params_b")
    if params_b is not None:
        params_b = validation.positive_number(params_b, "model.num_params_b", maximum=validation.MAX_PARAMETERS)
        if params_b > 1000:
            params_b = params_b / 1e9  # raw parameter count
        values["num_params_b"] = params_b

    size_gb = values.get("model_size_gb")
    if size_gb is None:
        if params_b is None:
            raise ValidationError(
                "requires model_size_gb or num_params_b", field="model", value=dict(section or {})
            )
        size_gb = weights_gb(params_b, fmt.name)
    else:
        size_gb = validation.positive_number(size_gb, "model.model_size_gb", maximum=validation.MAX_MODEL_SIZE_GB)
    values["model_size_gb"] = size_gb

    arch_source = None
    for source in (section, flat):
        if source is None:
            continue
        nested_arch = source.get("architecture")
        if isinstance(nested_arch, Mapping):
            arch_source = nested_arch
            break
        if arch_estimator.has_architecture_fields(source):
            arch_source = source
            break

    if arch_source is not None:
        values["architecture"] = arch_estimator.architecture_from_mapping(
            arch_source, field="model.architecture"
        )
    else:
        estimate_from = params_b if params_b is not None else size_gb / fmt.bytes_per_parameter
        values["architecture"] = arch_estimator.estimate(estimate_from)
    return values


def _workload_values(section: Mapping | None, flat: Mapping) -> dict[str, Any]:
    values = _collect("workload", section, flat, WORKLOAD_FIELDS)
    for name in ("posture", "workload_kind", "latency_target", "balance_target"):
        if isinstance(values.get(name), str):
            values[name] = values[name].strip().lower()
    posture = values.get("posture")
    if posture is not None and not isinstance(posture, Posture):
        values["posture"] = Posture(
            validation.one_of(posture, [p.value for p in Posture], "workload.posture")
        )
    return values


def _build(model_cls: type[BaseModel], section_name: str, values: dict[str, Any]) -> Any:
    """Construct a section model, re-raising pydantic errors as our ValidationError."""
    try:
        return model_cls(**values)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join([section_name, *(str(part) for part in first["loc"])])
        raise ValidationError(first["msg"], field=field, value=first.get("input")) from e


def normalize_request(raw: Mapping) -> PlanRequest:
    """Resolve any accepted request shape into one canonical PlanRequest."""
    validation.require_fields(raw, [], "request")
    shape = detect_shape(raw)
    logger.debug("Request shape resolved as %s", shape.value)

    gpu_section = _section(raw, SECTION_KEYS["gpu"])
    model_section = _section(raw, SECTION_KEYS["model"])
    workload_section = _section(raw, SECTION_KEYS["workload"])

    return PlanRequest(
        gpu=_build(GPUSpec, "gpu", _gpu_values(gpu_section, raw)),
        model=_build(ModelSpec, "model", _model_values(model_section, raw)),
        workload=_build(WorkloadSpec, "workload", _workload_values(workload_section, raw)),
    )
