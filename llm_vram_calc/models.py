"""
Pydantic models for catalog records and API request/response validation.
"""

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .calculator import DEFAULT_MIN_RESERVE_GB, DEFAULT_VRAM_UTILIZATION, QuantKind

DEFAULT_MAX_CONTEXT_TOKENS = 1024
DEFAULT_CONCURRENT_USERS = 20


class QuantizationType(str, Enum):
    """Selectable quantization types for weights and KV cache."""
    FP16 = "fp16"
    FP8 = "fp8"
    INT8 = "int8"
    INT4 = "int4"


# --- Catalog records -------------------------------------------------------

class GPURecord(BaseModel):
    """GPU entry in gpus.json."""
    name: str
    vendor: str = "NVIDIA"
    vram_gb: float = Field(..., gt=0)
    memory_bandwidth_gbs: float = Field(..., gt=0)
    compute_throughput: Dict[QuantKind, float] = Field(..., min_length=1)
    kv_cache_quant: Optional[QuantizationType] = None
    native_quant_kinds: Optional[List[QuantKind]] = None


class ModelRecord(BaseModel):
    """Model entry in models.json."""
    name: str
    provider: str = "Unknown"
    total_params_b: float = Field(..., gt=0)
    active_params_b: float = Field(..., gt=0)
    model_size_gb: float = Field(..., gt=0)
    native_quant: QuantizationType
    per_token_kv_bytes_fp8: Optional[float] = Field(default=None, gt=0)
    layers: Optional[int] = Field(default=None, gt=0)
    num_kv_heads: Optional[int] = Field(default=None, gt=0)
    head_dim: Optional[int] = Field(default=None, gt=0)

    class Config:
        protected_namespaces = ()


# --- Spec sources ----------------------------------------------------------

class CatalogGpuSource(BaseModel):
    """A GPU picked from the catalog by name."""
    source: Literal["catalog"] = "catalog"
    name: str


class CustomGpuSource(BaseModel):
    """A user-entered GPU."""
    source: Literal["custom"] = "custom"
    name: str = "Custom GPU"
    vram_gb: float = Field(default=24, gt=0)
    memory_bandwidth_gbs: float = Field(default=600, gt=0)
    fp16_tflops: float = Field(default=30, gt=0)
    kv_cache_quant: QuantizationType = QuantizationType.FP8


class CatalogModelSource(BaseModel):
    """A model picked from the catalog by name."""
    source: Literal["catalog"] = "catalog"
    name: str


class CustomModelSource(BaseModel):
    """A user-entered model. Missing sizes are estimated from the shape."""
    source: Literal["custom"] = "custom"
    name: str = "Custom Model"
    total_params_b: float = Field(default=7, gt=0)
    active_params_b: Optional[float] = Field(default=None, gt=0)
    model_size_gb: Optional[float] = Field(default=None, gt=0)
    layers: int = Field(default=32, gt=0)
    num_kv_heads: int = Field(default=8, gt=0)
    head_dim: int = Field(default=128, gt=0)
    per_token_kv_bytes_fp8: Optional[float] = Field(default=None, gt=0)

    class Config:
        protected_namespaces = ()


GpuSource = Annotated[
    Union[CatalogGpuSource, CustomGpuSource], Field(discriminator="source")
]
ModelSource = Annotated[
    Union[CatalogModelSource, CustomModelSource], Field(discriminator="source")
]


# --- API -------------------------------------------------------------------

class CalculationRequest(BaseModel):
    """Request model for a VRAM / throughput calculation."""
    gpu: GpuSource
    model: ModelSource

    # Quantization settings
    weight_quantization: QuantizationType = Field(
        default=QuantizationType.INT4,
        description="Weight quantization type"
    )
    kv_cache_quantization: Optional[QuantizationType] = Field(
        default=None,
        description="KV cache quantization type (defaults to the GPU's KV cache setting)"
    )

    # Inference parameters
    max_context_tokens: int = Field(
        default=DEFAULT_MAX_CONTEXT_TOKENS,
        ge=1,
        le=10_000_000,
        description="Maximum sequence length in tokens"
    )
    concurrent_users: int = Field(
        default=DEFAULT_CONCURRENT_USERS,
        ge=1,
        le=10_000,
        description="Number of users sharing the throughput"
    )

    # GPU configuration
    parallel_gpus: int = Field(default=1, ge=1, le=64, description="Number of GPUs")
    vram_utilization: float = Field(
        default=DEFAULT_VRAM_UTILIZATION,
        gt=0,
        le=1,
        description="Fraction of raw VRAM considered usable"
    )
    min_reserve_gb: float = Field(
        default=DEFAULT_MIN_RESERVE_GB,
        ge=0,
        description="VRAM held back regardless of utilization, in GB"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "gpu": {"source": "catalog", "name": "RTX 4090"},
                "model": {"source": "catalog", "name": "Qwen3-8B"},
                "weight_quantization": "fp8",
                "kv_cache_quantization": "fp8",
                "max_context_tokens": 8192,
                "concurrent_users": 1,
                "parallel_gpus": 1,
                "vram_utilization": 0.9,
                "min_reserve_gb": 2
            }
        }


class MemoryBreakdown(BaseModel):
    """Memory side of a calculation."""
    weights_gb: float = Field(..., description="Memory for model weights in GB")
    kv_cache_gb: float = Field(..., description="KV cache for one full-length sequence in GB")
    total_required_gb: float = Field(..., description="Weights plus one full-length KV cache in GB")
    total_device_vram_gb: float = Field(..., description="Raw VRAM across all GPUs in GB")
    usable_vram_gb: float = Field(..., description="VRAM left after the reserve in GB")
    usable_kv_cache_gb: float = Field(..., description="Usable VRAM left for KV cache in GB")
    reserved_gb: float = Field(..., description="Reserve actually applied in GB")


class ThroughputBreakdown(BaseModel):
    """Throughput side of a calculation (zero when infeasible)."""
    gen_speed: float = Field(..., description="Generation tokens/s, single stream")
    prompt_speed: float = Field(..., description="Prompt processing tokens/s, single stream")
    shared_gen: float = Field(..., description="Generation tokens/s per user")
    shared_prompt: float = Field(..., description="Prompt processing tokens/s per user")
    compute_scaling: float
    bandwidth_scaling: float


class CalculationResponse(BaseModel):
    """Response model for a calculation."""
    feasible: bool
    error: Optional[str] = None

    memory: MemoryBreakdown
    throughput: ThroughputBreakdown

    full_length_sequence_capacity: float = Field(
        ..., description="Concurrent full-context sequences that fit"
    )
    max_simultaneous_tokens: float
    vram_utilization_percent: float = Field(
        ..., description="Share of raw VRAM used by one full-length request"
    )

    # Input echo for reference
    gpu_name: str
    model_name: str
    weight_quantization: QuantizationType
    kv_cache_quantization: QuantizationType

    class Config:
        protected_namespaces = ()


class GPUInfo(BaseModel):
    """GPU information from the catalog."""
    name: str
    vendor: str
    vram_gb: float
    memory_bandwidth_gbs: float
    compute_throughput: Dict[str, float]
    kv_cache_quant: Optional[str] = None


class ModelInfo(BaseModel):
    """Model information from the catalog."""
    name: str
    provider: str
    total_params_b: float
    active_params_b: float
    model_size_gb: float
    native_quant: str
    per_token_kv_bytes_fp8: float
    is_moe: bool

    class Config:
        protected_namespaces = ()


class GPUsResponse(BaseModel):
    """Response for listing all GPUs."""
    gpus: List[GPUInfo]
    count: int


class ModelsResponse(BaseModel):
    """Response for listing all models."""
    models: List[ModelInfo]
    count: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "0.1.0"
