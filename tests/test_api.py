"""
Tests for the FastAPI endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from llm_vram_calc.main import app


client = TestClient(app)


def calc_request(**overrides):
    body = {
        "gpu": {"source": "catalog", "name": "RTX 4090"},
        "model": {"source": "catalog", "name": "Qwen3-8B"},
        "weight_quantization": "fp8",
        "kv_cache_quantization": "fp8",
        "max_context_tokens": 8192,
        "concurrent_users": 1,
        "parallel_gpus": 1,
        "vram_utilization": 0.9,
        "min_reserve_gb": 2,
    }
    body.update(overrides)
    return body


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_ok(self):
        """Health check should return healthy status."""
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data


class TestCatalogEndpoints:
    """Tests for the GPU and model listings."""

    def test_list_gpus(self):
        """Should return list of available GPUs."""
        response = client.get("/api/gpus")
        assert response.status_code == 200
        data = response.json()
        assert data["count"] > 0
        assert len(data["gpus"]) == data["count"]
        for field in ["name", "vendor", "vram_gb", "memory_bandwidth_gbs", "compute_throughput"]:
            assert field in data["gpus"][0]

    def test_list_models(self):
        """Should return list of available models."""
        response = client.get("/api/models")
        assert response.status_code == 200
        data = response.json()
        assert data["count"] > 0
        names = [m["name"] for m in data["models"]]
        assert "Qwen3-8B" in names

    def test_moe_flag(self):
        models = {m["name"]: m for m in client.get("/api/models").json()["models"]}
        assert models["Qwen3-30B-A3B"]["is_moe"] is True
        assert models["Qwen3-8B"]["is_moe"] is False


class TestCalculateEndpoint:
    """Tests for the calculation endpoint."""

    def test_calculate_valid_request(self):
        """Qwen3-8B at its native FP8 fits on an RTX 4090."""
        response = client.post("/api/calculate", json=calc_request())
        assert response.status_code == 200
        data = response.json()

        assert data["feasible"] is True
        assert data["error"] is None
        assert data["memory"]["weights_gb"] == 4.86
        assert data["memory"]["usable_vram_gb"] == 21.6
        assert data["memory"]["reserved_gb"] == 2.4
        assert data["throughput"]["gen_speed"] > 0
        assert data["gpu_name"] == "RTX 4090"
        assert data["model_name"] == "Qwen3-8B"

    def test_infeasible_is_not_an_http_error(self):
        """A context that doesn't fit comes back as a 200 with an explanation."""
        response = client.post("/api/calculate", json=calc_request(max_context_tokens=5_000_000))
        assert response.status_code == 200
        data = response.json()
        assert data["feasible"] is False
        assert data["error"].startswith("Insufficient VRAM")
        assert data["memory"]["total_required_gb"] > data["memory"]["usable_vram_gb"]
        assert data["throughput"]["gen_speed"] == 0

    def test_calculate_invalid_gpu(self):
        """Unknown GPU name should return 404."""
        response = client.post("/api/calculate", json=calc_request(
            gpu={"source": "catalog", "name": "nonexistent-gpu"}
        ))
        assert response.status_code == 404

    def test_calculate_invalid_model(self):
        """Unknown model name should return 404."""
        response = client.post("/api/calculate", json=calc_request(
            model={"source": "catalog", "name": "nonexistent-model"}
        ))
        assert response.status_code == 404

    def test_kv_quant_defaults_to_gpu_setting(self):
        """Without an explicit KV choice, the GPU's KV precision is used."""
        body = calc_request(gpu={"source": "catalog", "name": "RTX 3090"})
        del body["kv_cache_quantization"]
        data = client.post("/api/calculate", json=body).json()
        assert data["kv_cache_quantization"] == "fp16"

    def test_custom_gpu_and_model(self):
        response = client.post("/api/calculate", json=calc_request(
            gpu={"source": "custom", "vram_gb": 48, "memory_bandwidth_gbs": 960, "fp16_tflops": 150},
            model={"source": "custom", "total_params_b": 14, "layers": 40,
                   "num_kv_heads": 8, "head_dim": 128},
            weight_quantization="int4",
            kv_cache_quantization=None,
        ))
        assert response.status_code == 200
        data = response.json()
        assert data["feasible"] is True
        assert data["gpu_name"] == "Custom GPU"
        assert data["kv_cache_quantization"] == "fp8"
        assert data["memory"]["weights_gb"] == 8.31

    def test_custom_model_with_bad_active_params(self):
        response = client.post("/api/calculate", json=calc_request(
            model={"source": "custom", "total_params_b": 7, "active_params_b": 8},
        ))
        assert response.status_code == 422

    @pytest.mark.parametrize("override", [
        {"vram_utilization": 1.5},
        {"parallel_gpus": 0},
        {"concurrent_users": 0},
        {"weight_quantization": "fp4"},
        {"gpu": {"source": "cloud", "name": "x"}},
    ])
    def test_validation_errors(self, override):
        response = client.post("/api/calculate", json=calc_request(**override))
        assert response.status_code == 422

    def test_more_users_share_throughput(self):
        one = client.post("/api/calculate", json=calc_request(concurrent_users=1)).json()
        ten = client.post("/api/calculate", json=calc_request(concurrent_users=10)).json()
        assert ten["throughput"]["gen_speed"] == one["throughput"]["gen_speed"]
        assert ten["throughput"]["shared_gen"] < one["throughput"]["shared_gen"]
