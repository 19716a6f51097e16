"""CLI entry point for the vLLM memory planner."""

import argparse
import json
import logging
import sys
from pathlib import Path

from vllm_planner.command import docker_command, emit, ensure_consistent, kubernetes_manifest
from vllm_planner.errors import ConfigurationError, InsufficientMemoryError, ValidationError
from vllm_planner.exporters.json_export import export_plan, to_jsonable
from vllm_planner.memory.weights import weights_gb
from vllm_planner.optimization.planner import compare_strategies, optimize
from vllm_planner.sources.gpu_catalog import lookup_gpu
from vllm_planner.sources.huggingface import model_specs_from_hub
from vllm_planner.specs import SECTION_KEYS, PlanRequest, normalize_request
from vllm_planner.workload import optimize_for_workload

logger = logging.getLogger(__name__)

# flag dest -> (section, canonical field)
FLAG_FIELDS: dict[str, tuple[str, str]] = {
    "vram": ("gpu", "total_memory_gb"),
    "bandwidth": ("gpu", "memory_bandwidth_gbps"),
    "gpu_count": ("gpu", "gpu_count"),
    "params": ("model", "num_params_b"),
    "model_size": ("model", "model_size_gb"),
    "quantization": ("model", "quantization"),
    "model": ("model", "model_path"),
    "workload": ("workload", "workload_kind"),
    "concurrency": ("workload", "expected_concurrency"),
    "avg_seq_len": ("workload", "average_sequence_length"),
    "max_seq_len": ("workload", "max_sequence_length"),
    "latency_target": ("workload", "latency_target"),
    "balance_target": ("workload", "balance_target"),
}


def _section(raw: dict, name: str) -> dict:
    """Return a writable copy of the named section, stored back under its existing key."""
    for key in SECTION_KEYS[name]:
        if isinstance(raw.get(key), dict):
            raw[key] = dict(raw[key])
            return raw[key]
    key = SECTION_KEYS[name][0]
    raw[key] = {}
    return raw[key]


def load_request(path: Path | None) -> dict:
    if path is None:
        return {}
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, dict):
        raise ValidationError("request file must contain a JSON object", field="request")
    logger.info("Loaded request from %s", path)
    return raw


def build_request(args: argparse.Namespace) -> PlanRequest:
    """Layer request file, flags, GPU catalog and hub lookups into one request."""
    raw = load_request(args.request)

    for dest, (section, field) in FLAG_FIELDS.items():
        value = getattr(args, dest)
        if value is not None:
            _section(raw, section)[field] = value
    if args.posture and args.posture != "compare":
        _section(raw, "workload")["posture"] = args.posture

    if args.gpu:
        _section(raw, "gpu").update(lookup_gpu(args.gpu, gpu_count=args.gpu_count or 1))
    if args.hf_model:
        _section(raw, "model").update(model_specs_from_hub(args.hf_model))

    return normalize_request(raw)


def render(parameters: dict, gpu_count: int, args: argparse.Namespace) -> str:
    if args.strict:
        ensure_consistent(parameters)
    if args.format == "docker":
        return docker_command(parameters, gpu_count=gpu_count)
    if args.format == "k8s":
        return kubernetes_manifest(parameters, gpu_count=gpu_count)
    return emit(parameters, style=args.style).command


def run_workload_profile(args: argparse.Namespace) -> str:
    """Recommend parameters from a workload description instead of a sized request."""
    gpu_count = args.gpu_count or 1
    total_vram_gb = args.vram
    if args.gpu:
        total_vram_gb = lookup_gpu(args.gpu, gpu_count=gpu_count)["total_memory_gb"]
    model_size_gb = args.model_size
    if model_size_gb is None and args.params is not None:
        model_size_gb = weights_gb(args.params, args.quantization or "fp16")

    result = optimize_for_workload(
        args.workload_profile,
        average_input_length=args.avg_seq_len,
        peak_concurrency=args.concurrency or 100,
        latency_requirement=args.latency_target or "balanced",
        throughput_priority=args.throughput_priority,
        cost_sensitivity=args.cost_sensitivity,
        gpu_count=gpu_count,
        total_vram_gb=total_vram_gb,
        model_size_gb=model_size_gb,
        model_path=args.model,
    )
    if args.format == "json":
        if args.strict:
            ensure_consistent(result.parameters)
        output = json.dumps(to_jsonable(result), indent=2)
    else:
        output = render(result.parameters, gpu_count, args)

    if args.output:
        export_plan(result, args.output)
    return output


def run(args: argparse.Namespace) -> str:
    request = build_request(args)

    if args.posture == "compare":
        comparison = compare_strategies(request)
        plan = comparison
        if args.format == "json":
            output = json.dumps(to_jsonable(comparison), indent=2)
        else:
            blocks = []
            for name, result in comparison.results.items():
                marker = " (recommended)" if name == comparison.recommended else ""
                blocks.append(f"# {name}{marker}\n{render(result.parameters, request.gpu.gpu_count, args)}")
            for name, reason in comparison.failures.items():
                blocks.append(f"# {name}: not viable - {reason}")
            output = "\n\n".join(blocks)
    else:
        result = optimize(request)
        plan = result
        if args.format == "json":
            if args.strict:
                ensure_consistent(result.parameters)
            output = json.dumps(to_jsonable(result), indent=2)
        else:
            output = render(result.parameters, request.gpu.gpu_count, args)

    if args.output:
        export_plan(plan, args.output)
    return output


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="vLLM GPU memory planner and configuration recommender")
    parser.add_argument("--request", type=Path, help="Request JSON file (structured, flat or hybrid)")

    gpu = parser.add_argument_group("GPU")
    gpu.add_argument("--gpu", help="GPU name from the catalog, e.g. H100 or RTX4090")
    gpu.add_argument("--vram", type=float, help="Total VRAM in GB across all GPUs")
    gpu.add_argument("--bandwidth", type=float, help="Memory bandwidth in GB/s")
    gpu.add_argument("--gpu-count", type=int)

    model = parser.add_argument_group("Model")
    model.add_argument("--hf-model", help="HuggingFace model ID to look up")
    model.add_argument("--model", help="Model path or ID placed in the launch command")
    model.add_argument("--params", type=float, help="Parameters in billions")
    model.add_argument("--model-size", type=float, help="Weights size in GB")
    model.add_argument("--quantization")

    workload = parser.add_argument_group("Workload")
    workload.add_argument(
        "--posture",
        choices=["throughput", "latency", "balanced", "compare"],
        default=None,
        help="Optimization posture, or 'compare' to run all three",
    )
    workload.add_argument("--workload", help="Workload kind, e.g. serving, batch, chat")
    workload.add_argument("--concurrency", type=int)
    workload.add_argument("--avg-seq-len", type=int)
    workload.add_argument("--max-seq-len", type=int)
    workload.add_argument("--latency-target")
    workload.add_argument("--balance-target")

    profile = parser.add_argument_group("Workload profile")
    profile.add_argument(
        "--workload-profile",
        help="Recommend from a workload type (chat, completion, code-generation, batch, serving, embedding) "
        "instead of sizing a request",
    )
    profile.add_argument("--throughput-priority", default="medium", help="low, medium, high or very-high")
    profile.add_argument("--cost-sensitivity", default="medium", help="low, medium or high")

    output = parser.add_argument_group("Output")
    output.add_argument("--format", choices=["command", "docker", "k8s", "json"], default="command")
    output.add_argument("--style", choices=["module", "serve"], default="module")
    output.add_argument("--output", type=Path, help="Also write the JSON plan to this path")
    output.add_argument("--strict", action="store_true", help="Fail on inconsistent parameters")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
    )
    return parser


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        print(run_workload_profile(args) if args.workload_profile else run(args))
    except (ValidationError, InsufficientMemoryError, ConfigurationError) as e:
        logger.error("%s", e)
        sys.exit(1)
    except KeyError as e:
        logger.error("GPU catalog error: %s", e)
        sys.exit(1)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("I/O error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
