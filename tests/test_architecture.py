"""Tests for architecture presets, interpolation and user-supplied shapes."""

import pytest

from vllm_planner import architecture
from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import ValidationError


class TestPresets:
    def test_7b_preset(self):
        arch = architecture.estimate(7)
        assert (arch.num_layers, arch.hidden_size, arch.num_heads) == (32, 4096, 32)
        assert arch.head_dim == 128

    def test_close_size_reuses_preset(self):
        detailed = architecture.estimate_detailed(6.7)
        assert not detailed.is_interpolated
        assert detailed.name == "large-7b"

    def test_intermediate_size_defaults_to_4x_hidden(self):
        arch = ModelArchitecture(num_layers=4, hidden_size=256, num_heads=4)
        assert arch.intermediate_size == 1024
        assert arch.vocab_size == architecture.DEFAULT_VOCAB_SIZE


class TestInterpolation:
    def test_between_presets(self):
        detailed = architecture.estimate_detailed(20)
        assert detailed.is_interpolated
        assert detailed.name == "custom-20b"
        arch = detailed.architecture
        low, high = architecture.estimate(13), architecture.estimate(30)
        assert low.num_layers <= arch.num_layers <= high.num_layers
        assert low.hidden_size <= arch.hidden_size <= high.hidden_size

    def test_interpolated_hidden_divisible_by_heads(self):
        for size in (2.2, 20, 45, 120, 250):
            arch = architecture.estimate(size)
            assert arch.hidden_size % arch.num_heads == 0

    def test_clamps_below_and_above_range(self):
        assert architecture.estimate(0.01) == architecture.ARCHITECTURE_PRESETS[0.1][1]
        assert architecture.estimate(1000) == architecture.ARCHITECTURE_PRESETS[405][1]

    def test_rejects_non_positive(self):
        with pytest.raises(ValidationError):
            architecture.estimate(0)


class TestFromMapping:
    def test_camel_and_hf_aliases(self):
        arch = architecture.architecture_from_mapping(
            {"numLayers": 40, "hiddenSize": 5120, "num_attention_heads": 40}
        )
        assert arch == ModelArchitecture(40, 5120, 40)

    def test_missing_required_field(self):
        with pytest.raises(ValidationError, match="hidden_size"):
            architecture.architecture_from_mapping({"num_layers": 32, "num_heads": 32})

    def test_out_of_range_field(self):
        with pytest.raises(ValidationError, match="architecture.num_layers"):
            architecture.architecture_from_mapping(
                {"num_layers": 5000, "hidden_size": 4096, "num_heads": 32}
            )

    def test_has_architecture_fields(self):
        assert architecture.has_architecture_fields({"num_hidden_layers": 32})
        assert not architecture.has_architecture_fields({"hidden_size": 4096})


class TestValidateArchitecture:
    def test_valid_preset(self):
        result = architecture.validate_architecture(architecture.estimate(70))
        assert result.is_valid
        assert result.errors == []

    def test_indivisible_heads(self):
        result = architecture.validate_architecture(ModelArchitecture(32, 4096, 30))
        assert not result.is_valid
        assert any("divisible" in e for e in result.errors)

    def test_small_head_dim_warns(self):
        result = architecture.validate_architecture(ModelArchitecture(12, 512, 32))
        assert result.is_valid
        assert any("Small head dimension" in w for w in result.warnings)


class TestRecommendations:
    def test_similar_presets_and_considerations(self):
        rec = architecture.architecture_recommendations(70)
        assert rec.similar_presets[0] == (70, "xl-70b")
        assert any("tensor parallelism" in c for c in rec.considerations)
