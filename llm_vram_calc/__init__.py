"""
LLM VRAM Calculator
"""

__version__ = "0.1.0"

from .calculator import (
    calculate,
    model_weights_gb,
    kv_cache_gb,
    plan_capacity,
    generation_speed,
    prompt_speed,
    CalculationResult,
    CapacityPlan,
    GpuSpec,
    ModelSpec,
    QuantKind,
)
from .catalog import Catalog
from .main import app

__all__ = [
    "app",
    "calculate",
    "model_weights_gb",
    "kv_cache_gb",
    "plan_capacity",
    "generation_speed",
    "prompt_speed",
    "CalculationResult",
    "CapacityPlan",
    "Catalog",
    "GpuSpec",
    "ModelSpec",
    "QuantKind",
]
