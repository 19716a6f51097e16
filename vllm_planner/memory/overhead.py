"""System overhead: flat heuristic and per-component runtime model."""

from __future__ import annotations

from dataclasses import dataclass

from vllm_planner import config, validation

# Fixed runtime costs in GB
CUDA_CONTEXT_GB = 0.5
VLLM_RUNTIME_GB = 0.3
INTERPRETER_GB = 0.2

MODEL_SIZE_FRACTION = 0.05
PER_EXTRA_BATCH_ITEM_GB = 0.1
FRAGMENTATION_RATE = 0.02
MULTI_GPU_FRACTION = 0.3
DEVELOPMENT_TOOLS_GB = 0.2

# Per-GPU family: (fixed base GB, extra model-proportional fraction)
GPU_OVERHEAD: dict[str, tuple[float, float]] = {
    "h100": (0.8, 0.03),
    "a100": (0.6, 0.04),
    "v100": (0.5, 0.05),
    "rtx4090": (0.4, 0.06),
    "default": (0.5, 0.05),
}

DEPLOYMENTS = ("development", "production", "research")


@dataclass(frozen=True)
class RuntimeOverhead:
    gpu_type: str
    base_gb: float
    model_gb: float
    batch_gb: float
    fragmentation_gb: float
    multi_gpu_gb: float
    deployment_gb: float
    total_gb: float


def system_overhead(
    weights_gb: float,
    kv_cache_gb: float,
    activations_gb: float,
    fraction: float | None = None,
) -> float:
    """Flat overhead as *fraction* of the other components (default from config)."""
    if fraction is None:
        fraction = config.OVERHEAD_FRACTION
    fraction = validation.number(fraction, "overhead_fraction", minimum=0, maximum=1)
    return fraction * (weights_gb + kv_cache_gb + activations_gb)


def runtime_overhead_breakdown(
    model_memory_gb: float,
    batch_size: int = 1,
    gpu_type: str = "default",
    total_vram_gb: float = 0,
    multi_gpu: bool = False,
    deployment: str = "production",
) -> RuntimeOverhead:
    """Model CUDA context, runtime, fragmentation and multi-GPU costs separately.

    Unknown GPU families use the default row.  Fragmentation is only counted
    when the total VRAM is known.
    """
    model_memory_gb = validation.positive_number(model_memory_gb, "model_memory_gb")
    batch_size = validation.positive_integer(batch_size, "batch_size")
    deployment = validation.one_of(deployment, DEPLOYMENTS, "deployment")

    gpu_key = gpu_type.lower() if gpu_type and gpu_type.lower() in GPU_OVERHEAD else "default"
    gpu_base, gpu_scaling = GPU_OVERHEAD[gpu_key]

    base = CUDA_CONTEXT_GB + VLLM_RUNTIME_GB + INTERPRETER_GB + gpu_base
    model = model_memory_gb * (MODEL_SIZE_FRACTION + gpu_scaling)
    batch = max(0, batch_size - 1) * PER_EXTRA_BATCH_ITEM_GB
    fragmentation = (model_memory_gb + base) * FRAGMENTATION_RATE if total_vram_gb > 0 else 0.0
    multi = (CUDA_CONTEXT_GB + VLLM_RUNTIME_GB) * MULTI_GPU_FRACTION if multi_gpu else 0.0
    tools = DEVELOPMENT_TOOLS_GB if deployment == "development" else 0.0

    return RuntimeOverhead(
        gpu_type=gpu_key,
        base_gb=round(base, 3),
        model_gb=round(model, 3),
        batch_gb=round(batch, 3),
        fragmentation_gb=round(fragmentation, 3),
        multi_gpu_gb=round(multi, 3),
        deployment_gb=tools,
        total_gb=round(base + model + batch + fragmentation + multi + tools, 3),
    )
