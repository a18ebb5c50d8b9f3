"""
GPU and model catalog.

Loads the read-only reference tables shipped under ``data/`` and turns
catalog picks or user-entered values into canonical specs, so the
calculator never needs to know where a spec came from.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from .calculator import (
    GpuSpec,
    ModelSpec,
    QuantKind,
    QuantLike,
    estimate_model_size_gb,
    to_quant,
)
from .models import (
    CatalogGpuSource,
    CatalogModelSource,
    CustomGpuSource,
    CustomModelSource,
    GPURecord,
    ModelRecord,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"


def load_gpus_db(data_dir: Path = DATA_DIR) -> dict:
    """Load GPUs database from JSON file."""
    with open(data_dir / "gpus.json", "r") as f:
        return json.load(f)


def load_models_db(data_dir: Path = DATA_DIR) -> dict:
    """Load models database from JSON file."""
    with open(data_dir / "models.json", "r") as f:
        return json.load(f)


def gpu_from_record(record: GPURecord) -> GpuSpec:
    native = None
    if record.native_quant_kinds is not None:
        native = frozenset(record.native_quant_kinds)
    return GpuSpec(
        name=record.name,
        vram_gb=record.vram_gb,
        memory_bandwidth_gbs=record.memory_bandwidth_gbs,
        compute_throughput=dict(record.compute_throughput),
        kv_cache_quant=QuantKind(record.kv_cache_quant.value) if record.kv_cache_quant else None,
        native_quant_kinds=native,
    )


def model_from_record(record: ModelRecord) -> ModelSpec:
    return ModelSpec(
        name=record.name,
        total_params_b=record.total_params_b,
        active_params_b=record.active_params_b,
        model_size_gb=record.model_size_gb,
        native_quant=QuantKind(record.native_quant.value),
        per_token_kv_bytes_fp8=record.per_token_kv_bytes_fp8,
        layers=record.layers,
        num_kv_heads=record.num_kv_heads,
        head_dim=record.head_dim,
    )


def gpu_from_custom(source: CustomGpuSource) -> GpuSpec:
    """Build a GPU spec from user-entered fields (fp16 throughput only)."""
    return GpuSpec(
        name=source.name,
        vram_gb=source.vram_gb,
        memory_bandwidth_gbs=source.memory_bandwidth_gbs,
        compute_throughput={QuantKind.FP16: source.fp16_tflops},
        kv_cache_quant=QuantKind(source.kv_cache_quant.value),
    )


def model_from_custom(source: CustomModelSource, weight_quant: QuantLike) -> ModelSpec:
    """
    Build a model spec from user-entered fields.

    The entered size is taken to be measured at the selected weight
    quantization. When it is left blank it is estimated from the parameter
    count; a blank per-token KV size is derived from the layer shape.
    """
    weight_quant = to_quant(weight_quant)
    model_size_gb = source.model_size_gb
    if model_size_gb is None:
        model_size_gb = estimate_model_size_gb(source.total_params_b, weight_quant)
    active = source.active_params_b if source.active_params_b is not None else source.total_params_b
    return ModelSpec(
        name=source.name,
        total_params_b=source.total_params_b,
        active_params_b=active,
        model_size_gb=model_size_gb,
        native_quant=weight_quant,
        per_token_kv_bytes_fp8=source.per_token_kv_bytes_fp8,
        layers=source.layers,
        num_kv_heads=source.num_kv_heads,
        head_dim=source.head_dim,
    )


class Catalog:
    """Read-only lookup over GPU and model reference data."""

    def __init__(self, gpus: List[GPURecord], models: List[ModelRecord]):
        self.gpu_records: Dict[str, GPURecord] = {g.name: g for g in gpus}
        self.model_records: Dict[str, ModelRecord] = {m.name: m for m in models}
        self._gpus: Dict[str, GpuSpec] = {g.name: gpu_from_record(g) for g in gpus}
        self._models: Dict[str, ModelSpec] = {m.name: model_from_record(m) for m in models}

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Catalog":
        data_dir = data_dir or DATA_DIR
        gpus = [GPURecord(**g) for g in load_gpus_db(data_dir)["gpus"]]
        models = [ModelRecord(**m) for m in load_models_db(data_dir)["models"]]
        logger.info("Loaded catalog from %s: %d GPUs, %d models", data_dir, len(gpus), len(models))
        return cls(gpus, models)

    @property
    def gpus(self) -> List[GpuSpec]:
        return list(self._gpus.values())

    @property
    def models(self) -> List[ModelSpec]:
        return list(self._models.values())

    def get_gpu(self, name: str) -> GpuSpec:
        """Get GPU spec by name (KeyError if unknown)."""
        try:
            return self._gpus[name]
        except KeyError:
            raise KeyError(f"GPU '{name}' not found") from None

    def get_model(self, name: str) -> ModelSpec:
        """Get model spec by name (KeyError if unknown)."""
        try:
            return self._models[name]
        except KeyError:
            raise KeyError(f"Model '{name}' not found") from None

    def resolve_gpu(self, source: Union[CatalogGpuSource, CustomGpuSource]) -> GpuSpec:
        if isinstance(source, CustomGpuSource):
            return gpu_from_custom(source)
        return self.get_gpu(source.name)

    def resolve_model(
        self,
        source: Union[CatalogModelSource, CustomModelSource],
        weight_quant: QuantLike,
    ) -> ModelSpec:
        if isinstance(source, CustomModelSource):
            return model_from_custom(source, weight_quant)
        return self.get_model(source.name)
