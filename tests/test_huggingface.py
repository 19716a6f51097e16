"""Tests for HuggingFace Hub metadata extraction.

All payloads are embedded; HTTP is patched out.
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from vllm_planner.architecture import ModelArchitecture
from vllm_planner.errors import ValidationError
from vllm_planner.sources import huggingface

LLAMA_INFO = {
    "modelId": "meta-llama/Llama-2-7b-hf",
    "tags": ["transformers", "safetensors", "llama"],
    "safetensors": {"parameters": {"F16": 6_738_415_616}},
}

LLAMA_CONFIG = {
    "model_type": "llama",
    "hidden_size": 4096,
    "intermediate_size": 11008,
    "num_hidden_layers": 32,
    "num_attention_heads": 32,
    "vocab_size": 32000,
    "torch_dtype": "float16",
}

# Multimodal wrapper: backbone fields live under text_config
LLAVA_CONFIG = {
    "model_type": "llava",
    "text_config": {
        "hidden_size": 5120,
        "num_hidden_layers": 40,
        "num_attention_heads": 40,
        "torch_dtype": "bfloat16",
    },
}


class TestFetch:
    def test_http_error_returns_none(self, caplog):
        with patch("vllm_planner.sources.huggingface.httpx.get", side_effect=httpx.ConnectError("down")):
            assert huggingface.fetch_model_info("org/model") is None
        assert "failed" in caplog.text

    def test_token_sent_when_configured(self, monkeypatch):
        monkeypatch.setattr("vllm_planner.config.HF_TOKEN", "hf_secret")
        response = MagicMock()
        response.json.return_value = LLAMA_CONFIG
        with patch("vllm_planner.sources.huggingface.httpx.get", return_value=response) as mock_get:
            assert huggingface.fetch_hf_config("org/model") == LLAMA_CONFIG
        url = mock_get.call_args.args[0]
        assert url.endswith("/org/model/raw/main/config.json")
        assert mock_get.call_args.kwargs["headers"] == {"Authorization": "Bearer hf_secret"}


class TestParamCount:
    def test_safetensors_total(self):
        assert huggingface.extract_param_count(LLAMA_INFO) == pytest.approx(6.74)

    def test_config_count(self):
        assert huggingface.extract_param_count({}, {"num_parameters": 3e9}) == pytest.approx(3.0)

    def test_name_fallback(self):
        assert huggingface.extract_param_count({"modelId": "org/Mistral-7B-v0.1"}) == 7.0

    def test_nothing_found(self):
        assert huggingface.extract_param_count(None, None) is None


class TestQuantization:
    def test_quant_config_wins(self):
        hf_config = {**LLAMA_CONFIG, "quantization_config": {"quant_method": "gptq", "bits": 4}}
        info = {**LLAMA_INFO, "tags": ["awq"]}
        assert huggingface.detect_quantization(info, hf_config) == "gptq"

    @pytest.mark.parametrize(
        "quant_config, expected",
        [
            ({"quant_method": "bitsandbytes", "load_in_4bit": True}, "int4"),
            ({"quant_method": "bitsandbytes", "load_in_8bit": True}, "int8"),
            ({"quant_method": "fp8"}, "int8"),
            ({"quant_method": "gguf"}, "ggml"),
            ({"quant_method": "compressed-tensors", "config_groups": {"g0": {"weights": {"num_bits": 4}}}}, "int4"),
        ],
    )
    def test_quant_methods(self, quant_config, expected):
        assert huggingface.detect_quantization({}, {"quantization_config": quant_config}) == expected

    def test_tags(self):
        assert huggingface.detect_quantization({"tags": ["4-bit", "gptq"]}) == "gptq"

    def test_name_markers(self):
        assert huggingface.detect_quantization({"modelId": "TheBloke/Llama-2-7B-AWQ"}) == "awq"
        assert huggingface.detect_quantization({"modelId": "someone/llama-quantized"}) == "int4"

    def test_dtype(self):
        assert huggingface.detect_quantization(LLAMA_INFO, LLAVA_CONFIG) == "bf16"
        assert huggingface.detect_quantization({}, {}) == "fp16"


class TestArchitecture:
    def test_from_config(self):
        arch = huggingface.architecture_from_config(LLAMA_CONFIG)
        assert arch == ModelArchitecture(32, 4096, 32, 32000, 11008)

    def test_text_config_unwrapped(self):
        arch = huggingface.architecture_from_config(LLAVA_CONFIG)
        assert (arch.num_layers, arch.hidden_size, arch.num_heads) == (40, 5120, 40)

    def test_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            huggingface.architecture_from_config({"hidden_size": 4096})
        assert exc_info.value.field == "config.num_hidden_layers"


class TestModelSpecsFromHub:
    def test_full_metadata(self):
        with (
            patch("vllm_planner.sources.huggingface.fetch_model_info", return_value=LLAMA_INFO),
            patch("vllm_planner.sources.huggingface.fetch_hf_config", return_value=LLAMA_CONFIG),
        ):
            specs = huggingface.model_specs_from_hub("meta-llama/Llama-2-7b-hf")
        assert specs["num_params_b"] == pytest.approx(6.74)
        assert specs["quantization"] == "fp16"
        assert specs["model_path"] == "meta-llama/Llama-2-7b-hf"
        assert specs["architecture"]["num_layers"] == 32

    def test_incomplete_config_falls_back(self, caplog):
        with (
            patch("vllm_planner.sources.huggingface.fetch_model_info", return_value=LLAMA_INFO),
            patch("vllm_planner.sources.huggingface.fetch_hf_config", return_value={"hidden_size": 4096}),
        ):
            specs = huggingface.model_specs_from_hub("meta-llama/Llama-2-7b-hf")
        assert "architecture" not in specs
        assert "estimated architecture" in caplog.text

    def test_not_found(self):
        with (
            patch("vllm_planner.sources.huggingface.fetch_model_info", return_value=None),
            patch("vllm_planner.sources.huggingface.fetch_hf_config", return_value=None),
        ):
            with pytest.raises(ValidationError, match="not found"):
                huggingface.model_specs_from_hub("nobody/nothing")

    def test_no_param_count(self):
        with (
            patch("vllm_planner.sources.huggingface.fetch_model_info", return_value={"modelId": "org/tiny"}),
            patch("vllm_planner.sources.huggingface.fetch_hf_config", return_value=None),
        ):
            with pytest.raises(ValidationError, match="parameter count"):
                huggingface.model_specs_from_hub("org/tiny")
