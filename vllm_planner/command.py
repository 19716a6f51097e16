"""Render a parameter map as a vLLM launch command, docker run line or k8s manifest.

The emitter is deliberately forgiving: unknown or borderline parameters and
a missing model become warnings, never exceptions, so that partial
configurations can still be previewed.  :func:`ensure_consistent` is the
strict counterpart.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

from vllm_planner import config
from vllm_planner.errors import ConfigurationError, ValidationError
from vllm_planner.optimization.common import StrategyResult

logger = logging.getLogger(__name__)

SERVER_MODULE = "vllm.entrypoints.openai.api_server"
STYLES = ("module", "serve")

# Borderline thresholds that produce warnings
MAX_SAFE_MEMORY_UTILIZATION = 0.95
MAX_PARALLEL_GPUS = 8


@dataclass(frozen=True)
class ParameterSpec:
    kind: str  # string | integer | number | boolean | array
    description: str
    minimum: float | None = None
    maximum: float | None = None
    options: tuple[Any, ...] | None = None
    required: bool = False


@dataclass(frozen=True)
class ValidationReport:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RuntimeConfiguration:
    parameters: dict[str, Any]
    command: str
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Known vLLM server parameters
# ---------------------------------------------------------------------------

VLLM_PARAMETERS: dict[str, ParameterSpec] = {
    # Model and tokenizer
    "model": ParameterSpec("string", "Model name or path", required=True),
    "tokenizer": ParameterSpec("string", "Tokenizer name or path"),
    "trust-remote-code": ParameterSpec("boolean", "Trust remote code in model"),
    "download-dir": ParameterSpec("string", "Directory to download and cache model weights"),
    "revision": ParameterSpec("string", "Model revision (branch, tag, or commit)"),
    "served-model-name": ParameterSpec("string", "Model name used in API"),
    # Model execution
    "dtype": ParameterSpec(
        "string", "Model data type",
        options=("auto", "half", "float16", "bfloat16", "float", "float32"),
    ),
    "kv-cache-dtype": ParameterSpec(
        "string", "KV cache data type", options=("auto", "fp8", "fp8_e5m2", "fp8_e4m3"),
    ),
    "quantization": ParameterSpec(
        "string", "Quantization method",
        options=("awq", "gptq", "bitsandbytes", "gguf", "squeezellm", "fp8", "marlin"),
    ),
    "enforce-eager": ParameterSpec("boolean", "Disable CUDA graphs"),
    # Memory and batching
    "gpu-memory-utilization": ParameterSpec(
        "number", "GPU memory utilization fraction", minimum=0.1, maximum=1.0
    ),
    "swap-space": ParameterSpec("number", "CPU swap space per GPU in GiB", minimum=0),
    "cpu-offload-gb": ParameterSpec("number", "CPU offload memory in GB", minimum=0),
    "max-num-batched-tokens": ParameterSpec("integer", "Maximum batched tokens", minimum=1),
    "max-num-seqs": ParameterSpec("integer", "Maximum concurrent sequences", minimum=1),
    "max-model-len": ParameterSpec("integer", "Maximum model context length", minimum=1),
    "block-size": ParameterSpec("integer", "Token block size for KV cache", options=(8, 16, 32, 64, 128)),
    "enable-chunked-prefill": ParameterSpec("boolean", "Enable chunked prefill"),
    "enable-prefix-caching": ParameterSpec("boolean", "Enable prefix caching"),
    "seed": ParameterSpec("integer", "Random seed for reproducibility"),
    # Parallelism
    "tensor-parallel-size": ParameterSpec("integer", "Tensor parallelism degree", minimum=1),
    "pipeline-parallel-size": ParameterSpec("integer", "Pipeline parallelism degree", minimum=1),
    "distributed-executor-backend": ParameterSpec(
        "string", "Distributed backend", options=("ray", "mp"),
    ),
    # Serving and API
    "host": ParameterSpec("string", "Host to bind the server"),
    "port": ParameterSpec("integer", "Port number for the server", minimum=1, maximum=65535),
    "api-key": ParameterSpec("string", "API key required from clients"),
    "allowed-origins": ParameterSpec("array", "Allowed origins for CORS"),
    "chat-template": ParameterSpec("string", "Chat template to use"),
    # Logging
    "disable-log-stats": ParameterSpec("boolean", "Disable logging statistics"),
    "disable-log-requests": ParameterSpec("boolean", "Disable logging requests"),
    "max-log-len": ParameterSpec("integer", "Maximum length of logged prompts", minimum=0),
}


# ---------------------------------------------------------------------------
# Deployment templates
# ---------------------------------------------------------------------------

COMMAND_TEMPLATES: dict[str, dict[str, Any]] = {
    "development": {
        "host": "127.0.0.1",
        "port": 8000,
        "gpu-memory-utilization": 0.85,
        "disable-log-requests": False,
        "max-log-len": 200,
    },
    "production": {
        "host": "0.0.0.0",
        "port": 8000,
        "gpu-memory-utilization": 0.90,
        "disable-log-requests": True,
        "disable-log-stats": False,
        "max-log-len": 100,
    },
    "debugging": {
        "host": "127.0.0.1",
        "port": 8000,
        "gpu-memory-utilization": 0.75,
        "enforce-eager": True,
        "disable-log-requests": False,
        "max-log-len": 500,
    },
    "high-throughput": {
        "host": "0.0.0.0",
        "port": 8000,
        "gpu-memory-utilization": 0.95,
        "max-num-seqs": 256,
        "max-num-batched-tokens": 8192,
        "enable-chunked-prefill": True,
        "disable-log-requests": True,
    },
    "low-latency": {
        "host": "0.0.0.0",
        "port": 8000,
        "gpu-memory-utilization": 0.80,
        "max-num-seqs": 32,
        "max-num-batched-tokens": 2048,
        "block-size": 8,
        "disable-log-requests": True,
    },
}


# ---------------------------------------------------------------------------
# Flag formatting
# ---------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def canonical_flag(key: str) -> str:
    """``maxNumSeqs``, ``max_num_seqs`` and ``--max-num-seqs`` all become ``max-num-seqs``."""
    key = key.strip().lstrip("-")
    key = _CAMEL_BOUNDARY.sub(r"-\1", key)
    return key.replace("_", "-").lower()


def canonicalize(parameters: Mapping[str, Any]) -> dict[str, Any]:
    return {canonical_flag(key): value for key, value in parameters.items()}


def _render_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


def format_parameter(flag: str, value: Any) -> list[str]:
    """Tokens for one parameter: bare flag for True, nothing for False/None."""
    if value is None or value is False:
        return []
    if value is True:
        return [f"--{flag}"]
    return [f"--{flag}", _render_value(value)]


def command_args(parameters: Mapping[str, Any]) -> list[str]:
    """Server arguments (``--model`` first) for the given parameter map."""
    params = canonicalize(parameters)
    args = format_parameter("model", params.get("model") or config.MODEL_PLACEHOLDER)
    for flag, value in params.items():
        if flag == "model":
            continue
        args.extend(format_parameter(flag, value))
    return args


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _kind_matches(kind: str, value: Any) -> bool:
    if kind == "boolean":
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if kind == "integer":
        return isinstance(value, int)
    if kind == "number":
        return isinstance(value, (int, float))
    if kind == "array":
        return isinstance(value, (list, tuple))
    return isinstance(value, str)


def _check_parameter(flag: str, value: Any, spec: ParameterSpec) -> str | None:
    if not _kind_matches(spec.kind, value):
        return f"{flag}: expected {spec.kind}, got {value!r}"
    if spec.options is not None and value not in spec.options:
        return f"{flag}: {value!r} is not one of {', '.join(str(o) for o in spec.options)}"
    if spec.minimum is not None and value < spec.minimum:
        return f"{flag}: {value} is below the minimum {spec.minimum}"
    if spec.maximum is not None and value > spec.maximum:
        return f"{flag}: {value} is above the maximum {spec.maximum}"
    return None


def validate_parameters(parameters: Mapping[str, Any]) -> ValidationReport:
    """Check a parameter map against :data:`VLLM_PARAMETERS` and cross-field rules."""
    params = canonicalize(parameters)
    errors: list[str] = []
    warnings: list[str] = []

    if not params.get("model"):
        warnings.append(f"model is not set; using placeholder '{config.MODEL_PLACEHOLDER}'")

    for flag, value in params.items():
        if value is None:
            continue
        spec = VLLM_PARAMETERS.get(flag)
        if spec is None:
            warnings.append(f"{flag}: unknown vLLM parameter")
            continue
        problem = _check_parameter(flag, value, spec)
        if problem:
            errors.append(problem)

    utilization = params.get("gpu-memory-utilization")
    if isinstance(utilization, (int, float)) and utilization > MAX_SAFE_MEMORY_UTILIZATION:
        warnings.append(
            f"gpu-memory-utilization {utilization} leaves little headroom and may cause OOM errors"
        )

    tensor = params.get("tensor-parallel-size") or 1
    pipeline = params.get("pipeline-parallel-size") or 1
    if isinstance(tensor, int) and isinstance(pipeline, int) and tensor * pipeline > MAX_PARALLEL_GPUS:
        warnings.append(
            f"tensor-parallel-size x pipeline-parallel-size = {tensor * pipeline} "
            f"exceeds {MAX_PARALLEL_GPUS} GPUs"
        )

    tokens = params.get("max-num-batched-tokens")
    seqs = params.get("max-num-seqs")
    model_len = params.get("max-model-len")
    if isinstance(tokens, int) and isinstance(seqs, int) and tokens < seqs:
        errors.append(f"max-num-batched-tokens ({tokens}) must be at least max-num-seqs ({seqs})")
    if (
        isinstance(tokens, int)
        and isinstance(model_len, int)
        and tokens < model_len
        and not params.get("enable-chunked-prefill")
    ):
        warnings.append(
            f"max-num-batched-tokens ({tokens}) is below max-model-len ({model_len}) "
            "without chunked prefill; long prompts will be rejected"
        )

    return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)


def ensure_consistent(parameters: Mapping[str, Any]) -> ValidationReport:
    """Strict check: raise ConfigurationError when the report has errors."""
    report = validate_parameters(parameters)
    if report.errors:
        raise ConfigurationError(report.errors)
    return report


# ---------------------------------------------------------------------------
# Output shapes
# ---------------------------------------------------------------------------


def emit(parameters: Mapping[str, Any], *, style: str = "module") -> RuntimeConfiguration:
    """Build the launch command and collect every problem as a warning."""
    if style not in STYLES:
        raise ValidationError(f"must be one of: {', '.join(STYLES)}", field="style", value=style)

    params = canonicalize(parameters)
    params["model"] = params.get("model") or config.MODEL_PLACEHOLDER
    report = validate_parameters(parameters)
    args = command_args(params)

    if style == "serve":
        # vllm serve takes the model positionally
        tokens = ["vllm", "serve", args[1], *args[2:]]
    else:
        tokens = ["python", "-m", SERVER_MODULE, *args]

    warnings = report.errors + report.warnings
    for warning in warnings:
        logger.warning("Configuration: %s", warning)
    return RuntimeConfiguration(
        parameters=params,
        command=shlex.join(tokens),
        warnings=warnings,
    )


def runtime_configuration(result: StrategyResult, style: str = "module") -> RuntimeConfiguration:
    return emit(result.parameters, style=style)


def from_template(name: str, overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    if name not in COMMAND_TEMPLATES:
        raise ValidationError(
            f"unknown template, expected one of: {', '.join(COMMAND_TEMPLATES)}",
            field="template",
            value=name,
        )
    params = dict(COMMAND_TEMPLATES[name])
    params.update(canonicalize(overrides or {}))
    return params


DEFAULT_RESOURCE_REQUESTS = {"memory": "8Gi", "cpu": "2"}
DEFAULT_RESOURCE_LIMITS = {"memory": "16Gi", "cpu": "4"}


def _visible_devices(gpu_count: int) -> str:
    return ",".join(str(i) for i in range(gpu_count))


def docker_command(
    parameters: Mapping[str, Any],
    image: str | None = None,
    gpu_count: int = 1,
    port: int | None = None,
    volumes: Mapping[str, str] | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    """``docker run`` line for the OpenAI-compatible server image.

    The image's entrypoint already starts the API server, so only server
    arguments follow the image name.
    """
    params = canonicalize(parameters)
    port = port or params.get("port") or config.SERVER_PORT
    tokens = [
        "docker", "run", "--gpus", "all",
        "-e", f"CUDA_VISIBLE_DEVICES={_visible_devices(gpu_count)}",
        "-p", f"{port}:{port}",
    ]
    for host_path, container_path in (volumes or {}).items():
        tokens += ["-v", f"{host_path}:{container_path}"]
    for key, value in (env or {}).items():
        tokens += ["-e", f"{key}={value}"]
    tokens.append(image or config.CONTAINER_IMAGE)
    tokens.extend(command_args(params))
    return shlex.join(tokens)


def kubernetes_manifest(
    parameters: Mapping[str, Any],
    name: str = "vllm-server",
    namespace: str = "default",
    replicas: int = 1,
    image: str | None = None,
    gpu_count: int = 1,
    resources: Mapping[str, Mapping[str, str]] | None = None,
    service_type: str = "ClusterIP",
    service_port: int | None = None,
) -> str:
    """Deployment plus Service as a multi-document YAML string.

    *resources* may carry ``requests`` and ``limits`` entries that override
    the default CPU and memory sizing; the GPU count always comes from
    *gpu_count*.
    """
    params = canonicalize(parameters)
    port = params.get("port") or config.SERVER_PORT
    labels = {"app": name}
    resources = resources or {}
    requests = {**DEFAULT_RESOURCE_REQUESTS, **resources.get("requests", {}), "nvidia.com/gpu": gpu_count}
    limits = {**DEFAULT_RESOURCE_LIMITS, **resources.get("limits", {}), "nvidia.com/gpu": gpu_count}

    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [{
                        "name": "vllm",
                        "image": image or config.CONTAINER_IMAGE,
                        "command": ["python3", "-m", SERVER_MODULE],
                        "args": command_args(params),
                        "ports": [{"containerPort": port}],
                        "resources": {"requests": requests, "limits": limits},
                        "env": [{"name": "CUDA_VISIBLE_DEVICES", "value": _visible_devices(gpu_count)}],
                    }],
                },
            },
        },
    }
    service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": f"{name}-service", "namespace": namespace},
        "spec": {
            "selector": labels,
            "ports": [{"port": service_port or port, "targetPort": port, "protocol": "TCP"}],
            "type": service_type,
        },
    }
    return yaml.safe_dump_all([deployment, service], sort_keys=False)
