"""
LLM VRAM Calculator API

FastAPI application exposing the calculator. Every request is evaluated
independently against the read-only catalog; the client owns all state.
"""

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .calculator import CalculationResult, calculate, resolve_kv_quant
from .catalog import Catalog
from .models import (
    CalculationRequest,
    CalculationResponse,
    GPUInfo,
    GPUsResponse,
    HealthResponse,
    MemoryBreakdown,
    ModelInfo,
    ModelsResponse,
    ThroughputBreakdown,
)

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="LLM VRAM Calculator API",
    description="Estimate VRAM requirements and throughput for self-hosted LLM inference",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CATALOG = Catalog.load()


def to_response(result: CalculationResult, request: CalculationRequest,
                gpu_name: str, model_name: str, kv_quant: str) -> CalculationResponse:
    """Map a calculator result onto the API response shape."""
    return CalculationResponse(
        feasible=result.feasible,
        error=result.error,
        memory=MemoryBreakdown(
            weights_gb=round(result.model_weights_gb, 2),
            kv_cache_gb=round(result.kv_cache_gb, 3),
            total_required_gb=round(result.total_required_gb, 2),
            total_device_vram_gb=round(result.total_device_vram_gb, 2),
            usable_vram_gb=round(result.usable_vram_gb, 2),
            usable_kv_cache_gb=round(result.usable_kv_cache_gb, 2),
            reserved_gb=round(result.reserved_gb, 2),
        ),
        throughput=ThroughputBreakdown(
            gen_speed=round(result.gen_speed, 1),
            prompt_speed=round(result.prompt_speed, 1),
            shared_gen=round(result.shared_gen, 2),
            shared_prompt=round(result.shared_prompt, 2),
            compute_scaling=round(result.compute_scaling, 3),
            bandwidth_scaling=round(result.bandwidth_scaling, 3),
        ),
        full_length_sequence_capacity=round(result.full_length_sequence_capacity, 2),
        max_simultaneous_tokens=round(result.max_simultaneous_tokens),
        vram_utilization_percent=round(result.vram_utilization_percent, 1),
        gpu_name=gpu_name,
        model_name=model_name,
        weight_quantization=request.weight_quantization,
        kv_cache_quantization=kv_quant,
    )


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@app.get("/api/gpus", response_model=GPUsResponse, tags=["Data"])
async def list_gpus():
    """List all catalog GPUs."""
    gpus = []
    for record in CATALOG.gpu_records.values():
        gpus.append(GPUInfo(
            name=record.name,
            vendor=record.vendor,
            vram_gb=record.vram_gb,
            memory_bandwidth_gbs=record.memory_bandwidth_gbs,
            compute_throughput={k.value: v for k, v in record.compute_throughput.items()},
            kv_cache_quant=record.kv_cache_quant.value if record.kv_cache_quant else None,
        ))
    return GPUsResponse(gpus=gpus, count=len(gpus))


@app.get("/api/models", response_model=ModelsResponse, tags=["Data"])
async def list_models():
    """List all catalog models."""
    models = []
    for record in CATALOG.model_records.values():
        spec = CATALOG.get_model(record.name)
        models.append(ModelInfo(
            name=spec.name,
            provider=record.provider,
            total_params_b=spec.total_params_b,
            active_params_b=spec.active_params_b,
            model_size_gb=spec.model_size_gb,
            native_quant=spec.native_quant.value,
            per_token_kv_bytes_fp8=spec.kv_bytes_per_token_fp8,
            is_moe=spec.is_moe,
        ))
    return ModelsResponse(models=models, count=len(models))


@app.post("/api/calculate", response_model=CalculationResponse, tags=["Calculation"])
async def calculate_endpoint(request: CalculationRequest):
    """
    Calculate VRAM requirements and throughput for the given configuration.

    An infeasible configuration is not an HTTP error: the response has
    ``feasible`` set to false and ``error`` explains why.
    """
    try:
        gpu = CATALOG.resolve_gpu(request.gpu)
        model = CATALOG.resolve_model(request.model, request.weight_quantization.value)
    except KeyError as e:
        logger.warning("Catalog lookup failed: %s", e.args[0])
        raise HTTPException(status_code=404, detail=e.args[0])
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    requested_kv = request.kv_cache_quantization.value if request.kv_cache_quantization else None
    kv_quant = resolve_kv_quant(gpu, requested_kv)

    result = calculate(
        gpu,
        model,
        weight_quant=request.weight_quantization.value,
        kv_quant=kv_quant,
        max_context_tokens=request.max_context_tokens,
        concurrent_users=request.concurrent_users,
        parallel_gpu_count=request.parallel_gpus,
        vram_utilization=request.vram_utilization,
        min_reserve_gb=request.min_reserve_gb,
    )

    return to_response(result, request, gpu.name, model.name, kv_quant.value)

