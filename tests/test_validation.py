"""Tests for input validators and the shared exception types."""

import math

import pytest

from vllm_planner import validation
from vllm_planner.errors import (
    ConfigurationError,
    InsufficientMemoryError,
    UnsupportedFormatError,
    ValidationError,
)


class TestNumber:
    def test_accepts_int_and_float(self):
        assert validation.number(3, "x") == 3
        assert validation.number(2.5, "x") == 2.5

    @pytest.mark.parametrize("value", ["12", None, [1], True, math.nan])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError, match="must be a valid number"):
            validation.number(value, "x")

    def test_bounds(self):
        with pytest.raises(ValidationError, match="at least 1"):
            validation.number(0, "x", minimum=1)
        with pytest.raises(ValidationError, match="at most 10"):
            validation.number(11, "x", maximum=10)

    def test_error_carries_field_and_value(self):
        with pytest.raises(ValidationError) as exc_info:
            validation.positive_number(-1, "gpu.total_memory_gb")
        err = exc_info.value
        assert err.field == "gpu.total_memory_gb"
        assert err.value == -1
        assert "gpu.total_memory_gb" in str(err)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            validation.positive_number(0, "x")


class TestIntegers:
    def test_positive_integer_accepts_integral_float(self):
        assert validation.positive_integer(4.0, "n") == 4

    @pytest.mark.parametrize("value", [0, -3, 2.5])
    def test_positive_integer_rejects(self, value):
        with pytest.raises(ValidationError):
            validation.positive_integer(value, "n")

    def test_non_negative_integer_allows_zero(self):
        assert validation.non_negative_integer(0, "n") == 0

    def test_sequence_length_upper_bound(self):
        assert validation.sequence_length(validation.MAX_SEQUENCE_LENGTH) == validation.MAX_SEQUENCE_LENGTH
        with pytest.raises(ValidationError):
            validation.sequence_length(validation.MAX_SEQUENCE_LENGTH + 1)

    def test_batch_size_upper_bound(self):
        with pytest.raises(ValidationError):
            validation.batch_size(validation.MAX_BATCH_SIZE + 1)


class TestStringsAndCollections:
    def test_one_of_is_case_insensitive(self):
        assert validation.one_of(" Latency ", ["latency", "throughput"], "posture") == "latency"

    def test_one_of_lists_allowed_values(self):
        with pytest.raises(ValidationError, match="latency, throughput"):
            validation.one_of("fast", ["latency", "throughput"], "posture")

    def test_non_empty_string(self):
        with pytest.raises(ValidationError):
            validation.non_empty_string("   ", "name")

    def test_require_fields(self):
        with pytest.raises(ValidationError, match="missing required field 'a'"):
            validation.require_fields({"b": 1}, ["a"], "obj")
        with pytest.raises(ValidationError, match="must be an object"):
            validation.require_fields([1], [], "obj")

    def test_sequence_rejects_strings(self):
        with pytest.raises(ValidationError, match="must be an array"):
            validation.sequence("abc", "items")
        assert validation.sequence((1, 2), "items") == [1, 2]


class TestDomainValidators:
    def test_gpu_specs(self):
        result = validation.gpu_specs({"total_memory_gb": 80, "gpu_count": 2})
        assert result["total_memory_gb"] == 80
        assert result["gpu_count"] == 2

    def test_gpu_specs_rejects_unrealistic_vram(self):
        with pytest.raises(ValidationError, match="gpu.total_memory_gb"):
            validation.gpu_specs({"total_memory_gb": validation.MAX_VRAM_GB + 1})

    def test_model_specs_requires_size_or_params(self):
        with pytest.raises(ValidationError, match="requires model_size_gb or num_params_b"):
            validation.model_specs({"quantization": "fp16"})

    def test_model_specs_checks_architecture_fields(self):
        with pytest.raises(ValidationError, match="model.num_layers"):
            validation.model_specs({"num_params_b": 7, "num_layers": 0})

    def test_memory_requirements(self):
        validation.memory_requirements(10, 10)
        with pytest.raises(InsufficientMemoryError) as exc_info:
            validation.memory_requirements(12.5, 10)
        assert exc_info.value.required_gb == 12.5
        assert exc_info.value.available_gb == 10


class TestErrors:
    def test_unsupported_format_lists_valid_names(self):
        err = UnsupportedFormatError("fp7", ["fp16", "int8"])
        assert isinstance(err, ValidationError)
        assert err.valid_names == ["fp16", "int8"]
        assert "fp16, int8" in str(err)

    def test_insufficient_memory_message(self):
        err = InsufficientMemoryError(20, 16, "weights")
        assert "required 20.000 GB" in str(err)
        assert "(weights)" in str(err)

    def test_configuration_error_joins_problems(self):
        err = ConfigurationError(["a is wrong", "b is wrong"])
        assert err.problems == ["a is wrong", "b is wrong"]
        assert "a is wrong; b is wrong" in str(err)
