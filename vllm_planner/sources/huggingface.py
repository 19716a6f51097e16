"""HuggingFace Hub model source: API metadata + config.json."""

import logging
import re

import httpx

from vllm_planner import config
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import ValidationError

logger = logging.getLogger(__name__)

_SIZE_IN_NAME = re.compile(r"(\d+(?:\.\d+)?)[bB]")

# Tag / name marker -> catalog format, checked in order
_QUANT_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("awq", "4-bit-awq"), "awq"),
    (("gptq", "4-bit-gptq"), "gptq"),
    (("ggml", "gguf"), "ggml"),
    (("8-bit", "int8"), "int8"),
    (("4-bit", "int4"), "int4"),
)
_NAME_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("-awq", "_awq"), "awq"),
    (("-gptq", "_gptq"), "gptq"),
    (("ggml", "gguf"), "ggml"),
    (("8bit", "int8"), "int8"),
    (("4bit", "int4"), "int4"),
)
_DTYPE_FORMATS = {"float16": "fp16", "bfloat16": "bf16", "float32": "fp32"}


def _headers() -> dict[str, str]:
    if config.HF_TOKEN:
        return {"Authorization": f"Bearer {config.HF_TOKEN}"}
    return {}


def _get_json(url: str) -> dict | None:
    try:
        response = httpx.get(
            url, headers=_headers(), timeout=config.HTTP_TIMEOUT, follow_redirects=True
        )
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as e:
        logger.warning("Request to %s failed: %s", url, e)
        return None


def fetch_model_info(hf_id: str) -> dict | None:
    """Fetch model metadata (tags, safetensors totals) from the HF API."""
    info = _get_json(f"{config.HF_API_BASE}/api/models/{hf_id}")
    if info is not None:
        logger.info("Fetched model info for %s", hf_id)
    return info


def fetch_hf_config(hf_id: str) -> dict | None:
    """Fetch a HuggingFace model config.json for architecture details."""
    hf_config = _get_json(f"{config.HF_API_BASE}/{hf_id}/raw/main/config.json")
    if hf_config is not None:
        logger.info("Fetched config.json for %s", hf_id)
    return hf_config


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def resolve_text_config(hf_config: dict) -> dict:
    """Unwrap multimodal configs to get the text backbone."""
    text_config = hf_config.get("text_config")
    if isinstance(text_config, dict) and "num_hidden_layers" not in hf_config:
        return text_config
    return hf_config


def _require(hf_config: dict, key: str) -> int:
    """Extract a required integer config field."""
    val = hf_config.get(key)
    if val is None:
        raise ValidationError(f"required config field '{key}' is missing", field=f"config.{key}")
    return int(val)


def _model_name(info: dict | None) -> str:
    if not info:
        return ""
    return info.get("modelId") or info.get("id") or ""


def extract_param_count(info: dict | None, hf_config: dict | None = None) -> float | None:
    """Parameter count in billions, or None when nothing usable is published."""
    totals = ((info or {}).get("safetensors") or {}).get("parameters") or {}
    if totals:
        return round(sum(totals.values()) / 1e9, 2)

    for key in ("num_parameters", "n_parameters"):
        count = (hf_config or {}).get(key)
        if count:
            return count / 1e9

    match = _SIZE_IN_NAME.search(_model_name(info))
    if match:
        return float(match.group(1))
    return None


def _quant_method_format(quant_config: dict) -> str | None:
    method = (quant_config.get("quant_method") or "").lower()
    if method in ("awq", "gptq"):
        return method
    if method == "gguf":
        return "ggml"
    if method == "bitsandbytes":
        return "int4" if quant_config.get("load_in_4bit") else "int8"
    if method == "fp8":
        return "int8"
    if method == "compressed-tensors":
        for group in (quant_config.get("config_groups") or {}).values():
            bits = (group.get("weights") or {}).get("num_bits")
            if bits:
                return "int4" if bits <= 4 else "int8"
    if method:
        logger.warning("Unrecognized quant_method '%s'", method)
    return None


def detect_quantization(info: dict | None, hf_config: dict | None = None) -> str:
    """Best-effort catalog format name for a hub model."""
    text_config = resolve_text_config(hf_config or {})
    quant_config = text_config.get("quantization_config") or (hf_config or {}).get("quantization_config")
    if isinstance(quant_config, dict):
        fmt = _quant_method_format(quant_config)
        if fmt:
            return fmt

    tags = [str(tag).lower() for tag in (info or {}).get("tags", [])]
    for markers, fmt in _QUANT_MARKERS:
        if any(marker in tags for marker in markers):
            return fmt

    name = _model_name(info).lower()
    for markers, fmt in _NAME_MARKERS:
        if any(marker in name for marker in markers):
            return fmt
    if "quant" in name:
        return "int4"

    dtype = text_config.get("torch_dtype") or text_config.get("dtype")
    return _DTYPE_FORMATS.get(dtype, "fp16")


def architecture_from_config(hf_config: dict) -> ModelArchitecture:
    """Read layer/hidden/head counts from a transformers config."""
    text_config = resolve_text_config(hf_config)
    values = {
        "num_layers": _require(text_config, "num_hidden_layers"),
        "hidden_size": _require(text_config, "hidden_size"),
        "num_heads": _require(text_config, "num_attention_heads"),
    }
    if text_config.get("vocab_size"):
        values["vocab_size"] = int(text_config["vocab_size"])
    if text_config.get("intermediate_size"):
        values["intermediate_size"] = int(text_config["intermediate_size"])
    return ModelArchitecture(**values)


def model_specs_from_hub(hf_id: str) -> dict:
    """Build a ``modelSpecs`` section for request normalization.

    Raises:
        ValidationError: If neither a parameter count nor a size can be found.
    """
    info = fetch_model_info(hf_id)
    hf_config = fetch_hf_config(hf_id)
    if info is None and hf_config is None:
        raise ValidationError("model not found on the hub", field="hf_model", value=hf_id)

    params_b = extract_param_count(info, hf_config)
    if params_b is None:
        raise ValidationError("could not determine parameter count", field="hf_model", value=hf_id)

    specs: dict = {
        "num_params_b": params_b,
        "quantization": detect_quantization(info, hf_config),
        "model_path": hf_id,
    }
    if hf_config is not None:
        try:
            arch = architecture_from_config(hf_config)
        except ValidationError as e:
            logger.warning("Using estimated architecture for %s: %s", hf_id, e)
        else:
            specs["architecture"] = {
                "num_layers": arch.num_layers,
                "hidden_size": arch.hidden_size,
                "num_heads": arch.num_heads,
                "vocab_size": arch.vocab_size,
                "intermediate_size": arch.intermediate_size,
            }
    logger.info("Hub model %s: %.2fB params, %s", hf_id, params_b, specs["quantization"])
    return specs
