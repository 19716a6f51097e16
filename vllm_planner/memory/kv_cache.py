"""Key/value cache memory.

Pure computation, no I/O.  The estimate is exact for standard multi-head
attention: ``2 (key+value) x batch x seq_len x layers x hidden x bytes``,
reported in GiB.  It is linear in every dimension and a zero batch or
sequence length gives exactly zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from vllm_planner import validation
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import UnsupportedFormatError

BYTES_PER_GIB = 1024**3

KV_PRECISION_BYTES = MappingProxyType({
    "fp32": 4,
    "fp16": 2,
    "bf16": 2,
    "fp8": 1,
    "int8": 1,
})

# dtype spellings accepted alongside the short names
_PRECISION_ALIASES = {
    "float32": "fp32",
    "float16": "fp16",
    "half": "fp16",
    "bfloat16": "bf16",
    "fp8_e4m3": "fp8",
    "fp8_e5m2": "fp8",
}

# Block size tiers by total KV cache size: (< 4 GB, < 16 GB, otherwise)
_BLOCK_SIZE_TIERS: dict[str, tuple[int, int, int]] = {
    "latency": (8, 16, 16),
    "throughput": (16, 32, 32),
    "balanced": (16, 16, 32),
}


@dataclass(frozen=True)
class KVCacheBreakdown:
    precision: str
    bytes_per_element: int
    total_gb: float
    per_sequence_gb: float
    per_layer_gb: float
    per_token_bytes: int


def kv_precision(name: str) -> str:
    """Normalize a KV cache precision name, e.g. ``float16`` -> ``fp16``."""
    key = name.strip().lower() if isinstance(name, str) else name
    key = _PRECISION_ALIASES.get(key, key)
    if key not in KV_PRECISION_BYTES:
        raise UnsupportedFormatError(name, list(KV_PRECISION_BYTES), field="kv_precision")
    return key


def kv_cache_memory(
    batch_size: int,
    seq_len: int,
    architecture: ModelArchitecture,
    precision: str = "fp16",
) -> float:
    batch_size = validation.non_negative_integer(
        batch_size, "batch_size", maximum=validation.MAX_BATCH_SIZE
    )
    seq_len = validation.non_negative_integer(
        seq_len, "seq_len", maximum=validation.MAX_SEQUENCE_LENGTH
    )
    bytes_per_element = KV_PRECISION_BYTES[kv_precision(precision)]
    total_bytes = (
        2 * batch_size * seq_len
        * architecture.num_layers * architecture.hidden_size
        * bytes_per_element
    )
    return total_bytes / BYTES_PER_GIB


def kv_cache_breakdown(
    batch_size: int,
    seq_len: int,
    architecture: ModelArchitecture,
    precision: str = "fp16",
) -> KVCacheBreakdown:
    total_gb = kv_cache_memory(batch_size, seq_len, architecture, precision)
    key = kv_precision(precision)
    bytes_per_element = KV_PRECISION_BYTES[key]
    per_token = 2 * architecture.num_layers * architecture.hidden_size * bytes_per_element
    return KVCacheBreakdown(
        precision=key,
        bytes_per_element=bytes_per_element,
        total_gb=round(total_gb, 3),
        per_sequence_gb=round(total_gb / batch_size, 3) if batch_size else 0.0,
        per_layer_gb=round(total_gb / architecture.num_layers, 3),
        per_token_bytes=per_token,
    )


def kv_cache_scaling(
    batch_size: int,
    seq_lens: list[int],
    architecture: ModelArchitecture,
    precision: str = "fp16",
) -> list[tuple[int, float]]:
    """KV cache size for each sequence length in *seq_lens* (zero allowed)."""
    seq_lens = validation.sequence(seq_lens, "seq_lens")
    return [
        (seq_len, kv_cache_memory(batch_size, seq_len, architecture, precision))
        for seq_len in seq_lens
    ]


def optimal_block_size(total_kv_gb: float, posture: str = "balanced") -> int:
    """PagedAttention block size: small caches favor fine-grained blocks."""
    total_kv_gb = validation.number(total_kv_gb, "total_kv_gb", minimum=0)
    posture = validation.one_of(posture, _BLOCK_SIZE_TIERS, "posture")
    small, medium, large = _BLOCK_SIZE_TIERS[posture]
    if total_kv_gb < 4:
        return small
    if total_kv_gb < 16:
        return medium
    return large
