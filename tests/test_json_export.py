"""Tests for JSON plan export."""

import json
from dataclasses import dataclass
from pathlib import Path

from vllm_planner.exporters.json_export import export_plan, to_jsonable
from vllm_planner.specs import Posture, normalize_request


@dataclass(frozen=True)
class Sample:
    name: str
    sizes: tuple[int, ...]
    posture: Posture
    where: Path


class TestToJsonable:
    def test_dataclass_with_enum_and_path(self):
        sample = Sample("a", (1, 2), Posture.LATENCY, Path("/tmp/x"))
        assert to_jsonable(sample) == {"name": "a", "sizes": [1, 2], "posture": "latency", "where": "/tmp/x"}

    def test_pydantic_model(self):
        request = normalize_request({"numParams": 7, "vram_gb": 80})
        data = to_jsonable(request)
        assert data["gpu"]["total_memory_gb"] == 80
        assert data["workload"]["posture"] == "balanced"
        assert data["model"]["architecture"]["num_layers"] == 32
        json.dumps(data)

    def test_mapping_keys_become_strings(self):
        assert to_jsonable({1: {2.5}}) == {"1": [2.5]}


class TestExportPlan:
    def test_writes_file(self, tmp_path):
        out = export_plan({"posture": Posture.THROUGHPUT}, tmp_path / "plans" / "plan.json")
        assert out.exists()
        payload = json.loads(out.read_text())
        assert payload["plan"] == {"posture": "throughput"}
        assert "exported_at" in payload
        assert out.read_text().endswith("\n")
