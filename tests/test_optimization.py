"""Tests for the throughput, latency and balanced strategies and their comparison.

The reference request is a 7B fp16 model (14 GB of weights) on an 80 GB GPU.
With the default workload one sequence costs 1.0 GiB of KV cache plus
0.05 GiB of activations.
"""

import pytest

from vllm_planner.errors import InsufficientMemoryError
from vllm_planner.optimization import balanced, latency, planner, throughput
from vllm_planner.optimization.common import BatchLimits, plan_batch
from vllm_planner.specs import normalize_request

STRATEGIES = [throughput.optimize, latency.optimize, balanced.optimize]


def _request(**overrides):
    raw = {
        "gpuSpecs": {"totalMemoryGB": 80, "memoryBandwidthGBps": 2000},
        "modelSpecs": {"numParamsB": 7, "quantization": "fp16"},
        "workloadSpecs": {"maxSequenceLength": 2048, "averageSequenceLength": 512},
    }
    for key, value in overrides.items():
        section, field = key.split("__")
        raw[section] = {**raw[section], field: value}
    return normalize_request(raw)


class TestBudget:
    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_fits_allocated_vram(self, strategy):
        result = strategy(_request())
        used = result.model_memory_gb + result.batch.kv_cache_memory_gb + result.batch.activation_memory_gb
        assert used <= result.memory.allocated_vram_gb
        assert result.batch.memory_utilization <= 1

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_weights_equal_to_vram_raise(self, strategy):
        request = _request(gpuSpecs__totalMemoryGB=14, modelSpecs__modelSizeGB=14)
        with pytest.raises(InsufficientMemoryError):
            strategy(request)

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_weights_above_allocation_raise(self, strategy):
        request = _request(gpuSpecs__totalMemoryGB=64, modelSpecs__modelSizeGB=60)
        with pytest.raises(InsufficientMemoryError):
            strategy(request)

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_deterministic(self, strategy):
        assert strategy(_request()) == strategy(_request())


class TestPlanBatch:
    LIMITS = BatchLimits(
        safety_margin=1.0, max_seqs_ceiling=1000, max_seqs_floor=64, max_tokens_ceiling=8192, max_tokens_floor=256
    )

    def test_floor_never_exceeds_memory_limit(self):
        request = _request()
        batch = plan_batch(24, 14, request.model.architecture, 2048, 512, self.LIMITS)
        assert batch.memory_limit == 9
        assert batch.max_num_seqs == 9

    def test_not_even_one_sequence(self):
        request = _request()
        with pytest.raises(InsufficientMemoryError, match="not even one"):
            plan_batch(14.5, 14, request.model.architecture, 2048, 512, self.LIMITS)


class TestThroughput:
    def test_reference_plan(self):
        result = throughput.optimize(_request())
        assert result.memory.gpu_memory_utilization == 0.90
        assert result.batch.max_num_seqs == 46
        assert result.batch.max_num_batched_tokens == 8192
        assert result.memory.block_size == 32
        assert result.memory.enable_chunked_prefill

    def test_batch_workload_uses_more_memory(self):
        result = throughput.optimize(_request(workloadSpecs__workloadKind="batch"))
        assert result.memory.gpu_memory_utilization == 0.95
        assert result.parameters["disable-log-stats"] is True

    def test_unknown_workload_falls_back_to_serving(self):
        result = throughput.optimize(_request(workloadSpecs__workloadKind="chat"))
        assert result.memory.gpu_memory_utilization == 0.90


class TestLatency:
    def test_reference_plan(self):
        result = latency.optimize(_request())
        assert result.memory.gpu_memory_utilization == 0.80
        assert result.batch.max_num_seqs == 32
        assert result.batch.max_num_batched_tokens == 2048
        assert not result.memory.enable_chunked_prefill
        assert result.parameters["disable-log-stats"] is True

    def test_ultra_low_target(self):
        result = latency.optimize(_request(workloadSpecs__latencyTarget="ultra-low"))
        assert result.memory.gpu_memory_utilization == 0.75
        assert result.batch.max_num_seqs == 8
        assert result.memory.block_size == 8

    def test_unknown_target_falls_back(self, caplog):
        result = latency.optimize(_request(workloadSpecs__latencyTarget="instant"))
        assert result.batch.max_num_seqs == 32
        assert "Unknown latency target" in caplog.text

    def test_percentiles_ordered(self):
        p = latency.optimize(_request()).performance.latency_percentiles
        assert p["p50"] <= p["p95"] <= p["p99"]


class TestBalanced:
    def test_reference_plan(self):
        result = balanced.optimize(_request())
        assert result.memory.gpu_memory_utilization == 0.85
        assert result.batch.max_num_seqs == 42
        assert result.batch.max_num_batched_tokens == 4096
        assert 0 <= result.performance.balance_score <= 1
        assert result.performance.performance_class in ("excellent", "good", "fair", "poor")

    def test_unknown_target_falls_back_to_general(self, caplog):
        result = balanced.optimize(_request(workloadSpecs__balanceTarget="nonsense"))
        assert result.memory.gpu_memory_utilization == 0.85
        assert "Unknown balance target" in caplog.text

    def test_production_target_disables_request_logs(self):
        result = balanced.optimize(_request(workloadSpecs__balanceTarget="production"))
        assert result.parameters["disable-log-requests"] is True

    def test_multi_user_uses_large_blocks(self):
        result = balanced.optimize(_request(workloadSpecs__balanceTarget="multi-user"))
        assert result.memory.block_size == 32


class TestParameters:
    def test_shared_parameters(self):
        params = balanced.optimize(_request()).parameters
        assert params["model"] == "MODEL_PATH"
        assert params["max-model-len"] == 2048
        assert params["max-num-seqs"] == 42
        assert "quantization" not in params
        assert "tensor-parallel-size" not in params

    def test_quantized_model_sets_method(self):
        params = balanced.optimize(_request(modelSpecs__quantization="awq")).parameters
        assert params["quantization"] == "awq"

    def test_multi_gpu_sets_tensor_parallel(self):
        params = balanced.optimize(_request(gpuSpecs__gpuCount=2, gpuSpecs__totalMemoryGB=160)).parameters
        assert params["tensor-parallel-size"] == 2


class TestPlanner:
    def test_dispatch_by_posture(self):
        result = planner.optimize(_request(workloadSpecs__posture="throughput"))
        assert result.posture == "throughput"

    def test_compare_recommends_preferred_posture(self):
        comparison = planner.compare_strategies(_request(workloadSpecs__workloadKind="chat"))
        assert set(comparison.results) == {"throughput", "latency", "balanced"}
        assert comparison.failures == {}
        assert comparison.recommended == "latency"

    def test_compare_reports_partial_failures(self):
        # 60 GB of weights on 72 GB: throughput (0.90) fits, latency (0.80) does not
        comparison = planner.compare_strategies(
            _request(gpuSpecs__totalMemoryGB=72, modelSpecs__modelSizeGB=60)
        )
        assert "latency" in comparison.failures
        assert "throughput" in comparison.results
        assert comparison.recommended in comparison.results

    def test_compare_raises_when_nothing_fits(self):
        with pytest.raises(InsufficientMemoryError):
            planner.compare_strategies(_request(gpuSpecs__totalMemoryGB=14, modelSpecs__modelSizeGB=14))
