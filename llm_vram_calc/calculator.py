"""
LLM VRAM Calculator - Core Calculation Engine

Closed-form estimates of GPU memory and inference throughput for a model
served on one or more identical GPUs.

Key formulas:
1. Model weights: native quantization uses the measured size, otherwise
   M_weights = params_B * bytes_per_param * group_overhead
2. KV cache: M_kv = kv_bytes_fp8 * bytes_per_value * max_context * 2 / 2^30
   (factor of 2 for K and V)
3. Usable VRAM: total - max(total * (1 - utilization), min_reserve)
4. Generation (bandwidth bound): tok/s = BW * N^0.8 / (active_B * bytes_per_param)
5. Prompt processing (compute bound): tok/s = TFLOPS * N^0.6 * 1000 / (total_B * sqrt(2))
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class QuantKind(str, Enum):
    """Numeric precision kinds for weights, KV cache and compute throughput."""
    FP32 = "fp32"
    FP16 = "fp16"
    FP8 = "fp8"
    INT8 = "int8"
    INT4 = "int4"


# Bytes per element for each precision kind
BYTES_PER_VALUE = {
    QuantKind.FP32: 4.0,
    QuantKind.FP16: 2.0,
    QuantKind.FP8: 1.0,
    QuantKind.INT8: 1.0,
    QuantKind.INT4: 0.5,
}

# Worst case for grouped quantization: group of 32, one fp16 scale and one
# fp16 zero point per group.
GROUPED_QUANT_OVERHEAD = (0.5 + 3 / 32) / 0.5

QUANT_OVERHEAD = {
    QuantKind.FP8: GROUPED_QUANT_OVERHEAD,
    QuantKind.INT4: GROUPED_QUANT_OVERHEAD,
}

# Sub-linear multi-GPU scaling exponents
COMPUTE_SCALING_EXPONENT = 0.6
BANDWIDTH_SCALING_EXPONENT = 0.8

DEFAULT_KV_QUANT = QuantKind.FP8
DEFAULT_VRAM_UTILIZATION = 0.9
DEFAULT_MIN_RESERVE_GB = 2.0

GIB = 1024 ** 3

QuantLike = Union[QuantKind, str]


@dataclass(frozen=True)
class GpuSpec:
    """Hardware parameters of a single GPU."""
    name: str
    vram_gb: float
    memory_bandwidth_gbs: float
    # TFLOPS per precision, stored read-only
    compute_throughput: Mapping[QuantKind, float] = field(hash=False)
    kv_cache_quant: Optional[QuantKind] = None
    # Precisions with a native fast path. When declared, other sub-16-bit
    # weight formats pay double the bytes per parameter during generation.
    native_quant_kinds: Optional[FrozenSet[QuantKind]] = None

    def __post_init__(self):
        if self.vram_gb <= 0:
            raise ValueError(f"GPU '{self.name}': vram_gb must be > 0")
        if self.memory_bandwidth_gbs <= 0:
            raise ValueError(f"GPU '{self.name}': memory_bandwidth_gbs must be > 0")
        if not self.compute_throughput:
            raise ValueError(f"GPU '{self.name}': at least one compute throughput entry is required")
        object.__setattr__(self, "compute_throughput", MappingProxyType(dict(self.compute_throughput)))
        if self.native_quant_kinds is not None:
            object.__setattr__(self, "native_quant_kinds", frozenset(self.native_quant_kinds))

    def tflops_for(self, quant: QuantKind) -> float:
        """Compute throughput for ``quant``, falling back to fp16, then 0."""
        if quant in self.compute_throughput:
            return self.compute_throughput[quant]
        return self.compute_throughput.get(QuantKind.FP16, 0.0)


@dataclass(frozen=True)
class ModelSpec:
    """Architecture parameters of a model."""
    name: str
    total_params_b: float
    active_params_b: float
    model_size_gb: float
    native_quant: QuantKind
    per_token_kv_bytes_fp8: Optional[float] = None
    layers: Optional[int] = None
    num_kv_heads: Optional[int] = None
    head_dim: Optional[int] = None

    def __post_init__(self):
        if self.total_params_b <= 0:
            raise ValueError(f"Model '{self.name}': total_params_b must be > 0")
        if not 0 < self.active_params_b <= self.total_params_b:
            raise ValueError(
                f"Model '{self.name}': active_params_b must be in (0, total_params_b]"
            )
        if self.model_size_gb <= 0:
            raise ValueError(f"Model '{self.name}': model_size_gb must be > 0")
        if self.kv_bytes_per_token_fp8 <= 0:
            raise ValueError(f"Model '{self.name}': per-token KV size must be > 0")

    @property
    def is_moe(self) -> bool:
        """True for mixture-of-experts models (fewer active than total parameters)."""
        return self.active_params_b < self.total_params_b

    @property
    def kv_bytes_per_token_fp8(self) -> float:
        """Per-token KV bytes at 8-bit, given directly or derived from shape."""
        if self.per_token_kv_bytes_fp8 is not None:
            return self.per_token_kv_bytes_fp8
        if self.layers and self.num_kv_heads and self.head_dim:
            return kv_bytes_per_token_from_shape(self.layers, self.num_kv_heads, self.head_dim)
        raise ValueError(
            f"Model '{self.name}': per_token_kv_bytes_fp8 or "
            "(layers, num_kv_heads, head_dim) is required"
        )


@dataclass(frozen=True)
class CapacityPlan:
    """Usable VRAM across all participating GPUs."""
    total_device_vram_gb: float
    reserved_gb: float
    usable_vram_gb: float


@dataclass(frozen=True)
class CalculationResult:
    """Outcome of one evaluation. ``error`` is set when the configuration fails."""
    model_weights_gb: float
    kv_cache_gb: float
    total_required_gb: float
    total_device_vram_gb: float
    usable_vram_gb: float
    usable_kv_cache_gb: float
    reserved_gb: float

    gen_speed: float
    prompt_speed: float
    shared_gen: float
    shared_prompt: float
    compute_scaling: float
    bandwidth_scaling: float

    full_length_sequence_capacity: float
    max_simultaneous_tokens: float

    error: Optional[str] = field(default=None)

    @property
    def feasible(self) -> bool:
        return self.error is None

    @property
    def vram_utilization_percent(self) -> float:
        """Share of raw device VRAM taken by one full-length request."""
        if self.total_device_vram_gb <= 0:
            return 0.0
        return self.total_required_gb / self.total_device_vram_gb * 100


def to_quant(value: QuantLike) -> QuantKind:
    """Coerce a string such as ``"fp8"`` to a QuantKind (ValueError if unknown)."""
    return QuantKind(value)


def kv_bytes_per_token_from_shape(layers: int, num_kv_heads: int, head_dim: int) -> int:
    """Per-token KV bytes at 8-bit: one byte per scalar."""
    return layers * num_kv_heads * head_dim


def model_weights_gb(model: ModelSpec, quant: QuantLike) -> float:
    """
    Calculate memory required for model weights.

    The catalog's measured size is trusted for the model's native quantization.
    Other precisions are recomputed from the parameter count. Billions of
    parameters are read directly as GB here, without a 1e9 / 2^30 conversion.

    Args:
        model: Model specification
        quant: Target weight quantization

    Returns:
        Memory in GB
    """
    quant = to_quant(quant)
    if quant == model.native_quant:
        return model.model_size_gb

    bytes_per_param = BYTES_PER_VALUE[quant]
    overhead = QUANT_OVERHEAD.get(quant, 1.0)
    return model.total_params_b * bytes_per_param * overhead


def estimate_model_size_gb(total_params_b: float, quant: QuantLike) -> float:
    """Estimated weight size for a user-entered model, rounded to 0.01 GB."""
    quant = to_quant(quant)
    size = total_params_b * BYTES_PER_VALUE[quant] * QUANT_OVERHEAD.get(quant, 1.0)
    return round(size, 2)


def kv_cache_gb(model: ModelSpec, quant: QuantLike, max_context_tokens: int) -> float:
    """
    Calculate KV cache memory for one sequence at full context length.

    Formula: kv_bytes_fp8 * bytes_per_value * max_context * 2 / 2^30

    Args:
        model: Model specification
        quant: KV cache quantization
        max_context_tokens: Target sequence length in tokens

    Returns:
        Memory in GB
    """
    bytes_per_value = BYTES_PER_VALUE[to_quant(quant)]
    total_bytes = model.kv_bytes_per_token_fp8 * bytes_per_value * max_context_tokens * 2
    return total_bytes / GIB


def plan_capacity(
    gpu: GpuSpec,
    parallel_gpu_count: int,
    vram_utilization: float,
    min_reserve_gb: float,
) -> CapacityPlan:
    """
    Calculate the usable VRAM ceiling across all GPUs.

    The reserve is the larger of the proportional reserve and the fixed
    minimum. Inputs are assumed validated.
    """
    total = gpu.vram_gb * parallel_gpu_count
    proportional_reserve = total * (1 - vram_utilization)
    reserve = max(proportional_reserve, min_reserve_gb)
    usable = max(0.0, total - reserve)
    return CapacityPlan(total_device_vram_gb=total, reserved_gb=reserve, usable_vram_gb=usable)


def scaling_factors(parallel_gpu_count: int) -> Tuple[float, float]:
    """Return (compute_scaling, bandwidth_scaling) for N GPUs."""
    return (
        parallel_gpu_count ** COMPUTE_SCALING_EXPONENT,
        parallel_gpu_count ** BANDWIDTH_SCALING_EXPONENT,
    )


def generation_bytes_per_param(gpu: GpuSpec, quant: QuantLike) -> float:
    """Bytes read per active parameter per generated token."""
    quant = to_quant(quant)
    bytes_per_param = BYTES_PER_VALUE[quant]
    if (
        gpu.native_quant_kinds is not None
        and bytes_per_param < 2
        and quant not in gpu.native_quant_kinds
    ):
        # No fast path: weights are dequantized on the fly
        bytes_per_param *= 2
    return bytes_per_param


def generation_speed(
    gpu: GpuSpec,
    model: ModelSpec,
    weight_quant: QuantLike,
    parallel_gpu_count: int = 1,
) -> float:
    """
    Estimate single-stream decode speed in tokens/second.

    Decoding is memory-bandwidth bound: every generated token reads the full
    active parameter set once.

    Args:
        gpu: GPU specification
        model: Model specification
        weight_quant: Weight quantization
        parallel_gpu_count: Number of GPUs

    Returns:
        Tokens per second
    """
    _, bandwidth_scaling = scaling_factors(parallel_gpu_count)
    effective_bandwidth = gpu.memory_bandwidth_gbs * bandwidth_scaling
    bytes_per_param = generation_bytes_per_param(gpu, weight_quant)
    return effective_bandwidth / (model.active_params_b * bytes_per_param)


def prompt_speed(
    gpu: GpuSpec,
    model: ModelSpec,
    weight_quant: QuantLike,
    parallel_gpu_count: int = 1,
) -> float:
    """
    Estimate prompt processing (prefill) speed in tokens/second.

    Prefill is compute bound. The sqrt(2) divisor is an empirical correction
    to the naive 2 * params FLOP count per token.
    """
    compute_scaling, _ = scaling_factors(parallel_gpu_count)
    effective_compute = gpu.tflops_for(to_quant(weight_quant)) * compute_scaling
    return (effective_compute * 1000) / (model.total_params_b * math.sqrt(2))


def resolve_kv_quant(gpu: GpuSpec, requested: Optional[QuantLike] = None) -> QuantKind:
    """KV cache precision: explicit choice, else the GPU's default, else fp8."""
    if requested is not None:
        return to_quant(requested)
    if gpu.kv_cache_quant is not None:
        return gpu.kv_cache_quant
    return DEFAULT_KV_QUANT


def _check_preconditions(
    max_context_tokens: int,
    concurrent_users: int,
    parallel_gpu_count: int,
    vram_utilization: float,
    min_reserve_gb: float,
) -> None:
    if max_context_tokens < 1:
        raise ValueError(f"max_context_tokens must be >= 1, got {max_context_tokens}")
    if concurrent_users < 1:
        raise ValueError(f"concurrent_users must be >= 1, got {concurrent_users}")
    if parallel_gpu_count < 1:
        raise ValueError(f"parallel_gpu_count must be >= 1, got {parallel_gpu_count}")
    if not 0 < vram_utilization <= 1:
        raise ValueError(f"vram_utilization must be in (0, 1], got {vram_utilization}")
    if min_reserve_gb < 0:
        raise ValueError(f"min_reserve_gb must be >= 0, got {min_reserve_gb}")


def _failure(
    reason: str,
    weights_gb: float,
    kv_gb: float,
    plan: CapacityPlan,
    compute_scaling: float,
    bandwidth_scaling: float,
) -> CalculationResult:
    logger.debug("Configuration rejected: %s", reason)
    return CalculationResult(
        model_weights_gb=weights_gb,
        kv_cache_gb=kv_gb,
        total_required_gb=weights_gb + kv_gb,
        total_device_vram_gb=plan.total_device_vram_gb,
        usable_vram_gb=plan.usable_vram_gb,
        usable_kv_cache_gb=0.0,
        reserved_gb=plan.reserved_gb,
        gen_speed=0.0,
        prompt_speed=0.0,
        shared_gen=0.0,
        shared_prompt=0.0,
        compute_scaling=compute_scaling,
        bandwidth_scaling=bandwidth_scaling,
        full_length_sequence_capacity=0.0,
        max_simultaneous_tokens=0.0,
        error=reason,
    )


def calculate(
    gpu: GpuSpec,
    model: ModelSpec,
    weight_quant: QuantLike,
    kv_quant: QuantLike,
    max_context_tokens: int,
    concurrent_users: int = 1,
    parallel_gpu_count: int = 1,
    vram_utilization: float = DEFAULT_VRAM_UTILIZATION,
    min_reserve_gb: float = DEFAULT_MIN_RESERVE_GB,
) -> CalculationResult:
    """
    Evaluate one deployment configuration.

    This is the main entry point. Infeasible or degenerate configurations
    come back as a result with ``error`` set; only invalid arguments raise.

    Args:
        gpu: GPU specification (per device)
        model: Model specification
        weight_quant: Weight quantization
        kv_quant: KV cache quantization
        max_context_tokens: Target maximum sequence length
        concurrent_users: Users sharing the throughput
        parallel_gpu_count: Number of identical GPUs
        vram_utilization: Fraction of raw VRAM considered usable, in (0, 1]
        min_reserve_gb: Fixed VRAM held back regardless of utilization

    Returns:
        CalculationResult

    Raises:
        ValueError: if an argument is outside its valid range
    """
    _check_preconditions(
        max_context_tokens, concurrent_users, parallel_gpu_count,
        vram_utilization, min_reserve_gb,
    )
    weight_quant = to_quant(weight_quant)
    kv_quant = to_quant(kv_quant)

    # 1. Memory requirements
    weights_gb = model_weights_gb(model, weight_quant)
    kv_gb = kv_cache_gb(model, kv_quant, max_context_tokens)
    required_gb = weights_gb + kv_gb

    # 2. Capacity and feasibility gate
    plan = plan_capacity(gpu, parallel_gpu_count, vram_utilization, min_reserve_gb)
    compute_scaling, bandwidth_scaling = scaling_factors(parallel_gpu_count)

    if weights_gb <= 0:
        reason = "Invalid model VRAM calculation"
    elif kv_gb <= 0:
        reason = "Invalid KV cache calculation"
    elif plan.usable_vram_gb <= 0:
        reason = "No usable VRAM available"
    elif required_gb > plan.usable_vram_gb:
        reason = (
            f"Insufficient VRAM: {plan.usable_vram_gb:.2f} GB available, "
            f"{required_gb:.2f} GB required."
        )
    else:
        reason = None

    if reason is not None:
        return _failure(reason, weights_gb, kv_gb, plan, compute_scaling, bandwidth_scaling)

    usable_kv_gb = max(0.0, plan.usable_vram_gb - weights_gb)
    sequence_capacity = usable_kv_gb / kv_gb

    # 3. Throughput
    gen = generation_speed(gpu, model, weight_quant, parallel_gpu_count)
    prompt = prompt_speed(gpu, model, weight_quant, parallel_gpu_count)

    return CalculationResult(
        model_weights_gb=weights_gb,
        kv_cache_gb=kv_gb,
        total_required_gb=required_gb,
        total_device_vram_gb=plan.total_device_vram_gb,
        usable_vram_gb=plan.usable_vram_gb,
        usable_kv_cache_gb=usable_kv_gb,
        reserved_gb=plan.reserved_gb,
        gen_speed=gen,
        prompt_speed=prompt,
        shared_gen=gen / concurrent_users,
        shared_prompt=prompt / concurrent_users,
        compute_scaling=compute_scaling,
        bandwidth_scaling=bandwidth_scaling,
        full_length_sequence_capacity=sequence_capacity,
        max_simultaneous_tokens=max_context_tokens * sequence_capacity,
    )
