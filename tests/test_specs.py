"""Tests for request normalization across structured, flat and hybrid shapes."""

import pytest

from vllm_planner import architecture
from vllm_planner.errors import UnsupportedFormatError, ValidationError
from vllm_planner.specs import InputShape, Posture, detect_shape, normalize_request

STRUCTURED_REQUEST = {
    "gpuSpecs": {"totalMemoryGB": 80, "memoryBandwidthGBps": 2000, "gpuCount": 1},
    "modelSpecs": {"numParamsB": 7, "quantization": "fp16"},
    "workloadSpecs": {
        "expectedConcurrency": 50,
        "averageSequenceLength": 1024,
        "maxSequenceLength": 4096,
        "optimizationPosture": "latency",
    },
}

FLAT_REQUEST = {
    "totalVRAMGB": 80,
    "memoryBandwidthGBps": 2000,
    "gpuCount": 1,
    "numParams": 7,
    "quantization": "fp16",
    "concurrentRequests": 50,
    "averageSequenceLength": 1024,
    "maxSeqLen": 4096,
    "optimizationPosture": "latency",
}

HYBRID_REQUEST = {
    "gpuSpecs": {"totalMemoryGB": 80, "memoryBandwidthGBps": 2000},
    "numParams": 7,
    "quantization": "fp16",
    "concurrentRequests": 50,
    "averageSequenceLength": 1024,
    "maxSeqLen": 4096,
    "optimizationPosture": "latency",
}


class TestShapes:
    def test_detect_shape(self):
        assert detect_shape(STRUCTURED_REQUEST) is InputShape.STRUCTURED
        assert detect_shape(FLAT_REQUEST) is InputShape.FLAT
        assert detect_shape(HYBRID_REQUEST) is InputShape.HYBRID

    def test_all_shapes_normalize_identically(self):
        structured = normalize_request(STRUCTURED_REQUEST)
        assert normalize_request(FLAT_REQUEST) == structured
        assert normalize_request(HYBRID_REQUEST) == structured

    def test_canonical_values(self):
        request = normalize_request(STRUCTURED_REQUEST)
        assert request.gpu.total_memory_gb == 80
        assert request.model.model_size_gb == pytest.approx(14.0)
        assert request.model.architecture == architecture.estimate(7)
        assert request.workload.posture is Posture.LATENCY
        assert request.workload.expected_concurrency == 50

    def test_nested_section_wins_over_flat(self):
        raw = {**FLAT_REQUEST, "gpuSpecs": {"totalMemoryGB": 48}}
        assert normalize_request(raw).gpu.total_memory_gb == 48


class TestModelResolution:
    def test_raw_parameter_count(self):
        request = normalize_request({"vram_gb": 80, "numParams": 7e9})
        assert request.model.num_params_b == pytest.approx(7)

    def test_explicit_size_wins(self):
        request = normalize_request({"vram_gb": 80, "modelSpecs": {"numParamsB": 7, "modelSizeGB": 13.5}})
        assert request.model.model_size_gb == 13.5

    def test_explicit_architecture(self):
        request = normalize_request({
            "vram_gb": 80,
            "modelSpecs": {
                "modelSizeGB": 10,
                "architecture": {"numLayers": 28, "hiddenSize": 3072, "numHeads": 24},
            },
        })
        assert request.model.architecture == architecture.ModelArchitecture(28, 3072, 24)

    def test_flat_model_string_becomes_path(self):
        request = normalize_request({"vram_gb": 80, "numParams": 7, "model": "meta-llama/Llama-2-7b-hf"})
        assert request.model.model_path == "meta-llama/Llama-2-7b-hf"

    def test_quantized_size_from_params(self):
        request = normalize_request({"vram_gb": 24, "numParams": 7, "quantization": "AWQ"})
        assert request.model.quantization == "awq"
        assert request.model.model_size_gb == pytest.approx(3.535)

    def test_tiny_model_keeps_nonzero_size(self):
        request = normalize_request({"vram_gb": 80, "modelSpecs": {"numParamsB": 0.0001}})
        assert request.model.model_size_gb == pytest.approx(0.0002)
        assert request.model.model_size_gb > 0

    def test_unknown_quantization(self):
        with pytest.raises(UnsupportedFormatError, match="model.quantization"):
            normalize_request({"vram_gb": 80, "numParams": 7, "quantization": "fp7"})

    def test_missing_model(self):
        with pytest.raises(ValidationError, match="requires model_size_gb or num_params_b"):
            normalize_request({"vram_gb": 80})


class TestGpuAndWorkload:
    def test_legacy_per_gpu_memory(self):
        request = normalize_request({"gpu": {"memory": 24, "count": 4}, "numParams": 7})
        assert request.gpu.total_memory_gb == 96
        assert request.gpu.gpu_count == 4

    def test_defaults(self):
        request = normalize_request({"numParams": 7})
        assert request.gpu.total_memory_gb == 80
        assert request.workload.posture is Posture.BALANCED
        assert request.workload.average_sequence_length == 512

    def test_average_defaults_below_short_max(self):
        request = normalize_request({"numParams": 7, "maxSeqLen": 256})
        assert request.workload.average_sequence_length == 256

    def test_average_above_max_rejected(self):
        with pytest.raises(ValidationError, match="workload"):
            normalize_request({"numParams": 7, "averageSequenceLength": 4096, "maxSeqLen": 1024})

    def test_pydantic_errors_carry_dotted_field(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_request({"numParams": 7, "totalVRAMGB": -5})
        assert exc_info.value.field == "gpu.total_memory_gb"
        assert exc_info.value.value == -5

    @pytest.mark.parametrize(
        "key, value, field",
        [
            ("totalMemoryGB", "80", "gpu.total_memory_gb"),
            ("totalMemoryGB", True, "gpu.total_memory_gb"),
            ("gpuCount", True, "gpu.gpu_count"),
            ("hasTensorCores", "no", "gpu.has_tensor_cores"),
            ("maxSequenceLength", "4096", "workload.max_sequence_length"),
            ("expectedConcurrency", 12.0, "workload.expected_concurrency"),
        ],
    )
    def test_wrong_primitive_kind_rejected(self, key, value, field):
        raw = {
            "gpuSpecs": {**STRUCTURED_REQUEST["gpuSpecs"]},
            "modelSpecs": STRUCTURED_REQUEST["modelSpecs"],
            "workloadSpecs": {**STRUCTURED_REQUEST["workloadSpecs"]},
        }
        section = "gpuSpecs" if field.startswith("gpu.") else "workloadSpecs"
        raw[section][key] = value
        with pytest.raises(ValidationError) as exc_info:
            normalize_request(raw)
        assert exc_info.value.field == field
        assert exc_info.value.value == value

    def test_posture_must_be_string(self):
        with pytest.raises(ValidationError, match="workload.posture"):
            normalize_request({"numParams": 7, "posture": 1})

    def test_unknown_posture(self):
        with pytest.raises(ValidationError, match="workload.posture"):
            normalize_request({"numParams": 7, "posture": "fastest"})

    def test_request_must_be_mapping(self):
        with pytest.raises(ValidationError):
            normalize_request([1, 2])
