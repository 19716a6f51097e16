"""GPU hardware specs sourced from dbgpu (TechPowerUp database).

Turns a friendly GPU name into the ``gpuSpecs`` section of a plan request.
"""

import logging

from dbgpu import GPUDatabase

from vllm_planner import validation
from vllm_planner.errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# GPU name mapping: friendly name → dbgpu specification key (slug)
# ---------------------------------------------------------------------------
GPU_NAME_TO_DBGPU_KEY: dict[str, str] = {
    "A10": "a10-pcie",
    "A10G": "a10g",
    "A100": "a100-pcie-40gb",
    "A100_80G": "a100-sxm4-80gb",
    "A40": "a40-pcie",
    "A6000": "rtx-a6000",
    "B200": "b200",
    "H100": "h100-sxm5-80gb",
    "H100NVL": "h100-nvl-94gb",
    "H200": "h200-sxm-141gb",
    "L4": "l4",
    "L40": "l40",
    "L40S": "l40s",
    "RTX3090": "geforce-rtx-3090",
    "RTX4090": "geforce-rtx-4090",
    "RTX5090": "geforce-rtx-5090",
    "RTX6000Ada": "rtx-6000-ada-generation",
    "T4": "tesla-t4",
    "V100": "tesla-v100-sxm2-16gb",
}

# dbgpu reports per-die specs for dual-die (MCM) packages
MULTI_DIE_CHIPS: dict[str, int] = {
    "GB100": 2,  # B200
}

# Friendly-name prefix → runtime overhead profile
_OVERHEAD_PROFILES: tuple[tuple[str, str], ...] = (
    ("H1", "h100"),
    ("H2", "h100"),
    ("A100", "a100"),
    ("V100", "v100"),
    ("RTX4090", "rtx4090"),
)

# Architectures without tensor cores
_NO_TENSOR_CORES = {"Pascal", "Maxwell", "Kepler"}


def known_gpus() -> list[str]:
    return list(GPU_NAME_TO_DBGPU_KEY)


def _resolve_name(name: str) -> str:
    wanted = name.strip().upper().replace("-", "").replace(" ", "")
    for gpu_name in GPU_NAME_TO_DBGPU_KEY:
        if gpu_name.upper() == wanted:
            return gpu_name
    raise ValidationError(
        f"unknown GPU, expected one of: {', '.join(known_gpus())}", field="gpu", value=name
    )


def overhead_profile(gpu_name: str) -> str:
    for prefix, profile in _OVERHEAD_PROFILES:
        if gpu_name.upper().startswith(prefix):
            return profile
    return "default"


def lookup_gpu(name: str, gpu_count: int = 1) -> dict:
    """Build a ``gpuSpecs`` section for *gpu_count* GPUs of the named model.

    Raises:
        ValidationError: If the name is not in :data:`GPU_NAME_TO_DBGPU_KEY`.
        KeyError: If the installed dbgpu release lacks the mapped entry.
    """
    gpu_name = _resolve_name(name)
    gpu_count = validation.positive_integer(gpu_count, "gpu_count", maximum=validation.MAX_GPU_COUNT)
    dbgpu_key = GPU_NAME_TO_DBGPU_KEY[gpu_name]

    specs_map = GPUDatabase.default().specifications
    if dbgpu_key not in specs_map:
        raise KeyError(
            f"GPU '{gpu_name}' not found in dbgpu (key='{dbgpu_key}'). "
            f"Update GPU_NAME_TO_DBGPU_KEY or upgrade dbgpu."
        )
    gpu = specs_map[dbgpu_key]

    mem_gb = gpu.memory_size_gb or 0
    bw_gb_s = gpu.memory_bandwidth_gb_s or 0
    die_count = MULTI_DIE_CHIPS.get(gpu.gpu_name, 1)
    if die_count > 1:
        mem_gb *= die_count
        bw_gb_s *= die_count

    logger.debug("%s: %.0f GB, %.0f GB/s (dbgpu key %s)", gpu_name, mem_gb, bw_gb_s, dbgpu_key)
    return {
        "total_memory_gb": round(mem_gb * gpu_count, 1),
        "memory_bandwidth_gbps": round(bw_gb_s, 1),
        "has_tensor_cores": gpu.architecture not in _NO_TENSOR_CORES,
        "gpu_count": gpu_count,
        "gpu_type": overhead_profile(gpu_name),
    }
