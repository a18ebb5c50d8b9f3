"""
Model catalog builder for Hugging Face model repos.

What this script does (per repo):
- Downloads config.json (and uses nested text_config when present)
- Extracts layers, KV heads, head_dim and MoE routing
- Derives the per-token KV size at 8-bit used by the calculator
- Sums weight shard sizes via model_info() for the native model size
- Reads the parameter count from safetensors metadata when available

Notes:
- Gated repos (Meta, Gemma, ...) need HF_TOKEN after accepting terms:
    export HF_TOKEN=hf_...
- Models with latent attention (DeepSeek-V3/R1) use a non-standard KV layout
  and are skipped.

Usage:
    python scripts/fetch_model_defs.py Qwen/Qwen3-8B-FP8 Qwen/Qwen3-30B-A3B-FP8 -o models_hf.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from huggingface_hub import HfApi, hf_hub_download

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv is optional

from llm_vram_calc.calculator import BYTES_PER_VALUE, GIB, QuantKind, kv_bytes_per_token_from_shape

logger = logging.getLogger("fetch_model_defs")

DEFAULT_REPO_IDS: List[str] = [
    "Qwen/Qwen3-0.6B-FP8",
    "Qwen/Qwen3-1.7B-FP8",
    "Qwen/Qwen3-4B-FP8",
    "Qwen/Qwen3-8B-FP8",
    "Qwen/Qwen3-14B-FP8",
    "Qwen/Qwen3-32B-FP8",
    "Qwen/Qwen3-30B-A3B-FP8",
    "Qwen/Qwen3-235B-A22B-FP8",
]

HF_TOKEN = os.getenv("HF_TOKEN")  # set this for gated models after accepting terms

PROVIDER_MAP = {
    "meta-llama": "Meta",
    "Qwen": "Alibaba",
    "mistralai": "Mistral AI",
    "google": "Google",
    "microsoft": "Microsoft",
}


def _safe_int(x: Any) -> Optional[int]:
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def _pick_subcfg(cfg: Dict[str, Any], keys: Tuple[str, ...]) -> Dict[str, Any]:
    for k in keys:
        sub = cfg.get(k)
        if isinstance(sub, dict):
            return sub
    return cfg


def _load_json(repo_id: str, filename: str) -> Dict[str, Any]:
    path = hf_hub_download(repo_id, filename, token=HF_TOKEN)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _head_dim(text_cfg: Dict[str, Any]) -> Optional[int]:
    if isinstance(text_cfg.get("head_dim"), int):
        return int(text_cfg["head_dim"])
    hs = _safe_int(text_cfg.get("hidden_size"))
    nh = _safe_int(text_cfg.get("num_attention_heads"))
    if hs and nh and hs % nh == 0:
        return hs // nh
    return None


def _kv_heads(text_cfg: Dict[str, Any]) -> Optional[int]:
    kv = text_cfg.get("num_key_value_heads")
    if isinstance(kv, int):
        return kv
    # MHA => kv_heads == heads
    return _safe_int(text_cfg.get("num_attention_heads"))


def _layers(text_cfg: Dict[str, Any]) -> Optional[int]:
    return _safe_int(text_cfg.get("num_hidden_layers")) or _safe_int(text_cfg.get("n_layer"))


def _looks_nonstandard_kv(text_cfg: Dict[str, Any]) -> bool:
    flags = ("kv_lora_rank", "q_lora_rank", "qk_rope_head_dim")
    return any(f in text_cfg for f in flags)


def native_quant(cfg: Dict[str, Any]) -> QuantKind:
    """Precision the published weights are stored at."""
    qcfg = cfg.get("quantization_config") or {}
    method = str(qcfg.get("quant_method", "")).lower()
    bits = _safe_int(qcfg.get("bits"))
    if method == "fp8":
        return QuantKind.FP8
    if bits == 4 or method in ("awq", "gptq"):
        return QuantKind.INT4
    if bits == 8:
        return QuantKind.INT8
    dtype = str(cfg.get("torch_dtype", "")).lower()
    if dtype == "float32":
        return QuantKind.FP32
    return QuantKind.FP16


def active_fraction(text_cfg: Dict[str, Any]) -> float:
    """
    Rough share of parameters touched per token.

    For MoE models this is experts_per_token / experts; attention and
    embeddings are ignored, so it slightly underestimates.
    """
    experts = (
        _safe_int(text_cfg.get("num_local_experts"))
        or _safe_int(text_cfg.get("num_experts"))
        or _safe_int(text_cfg.get("n_routed_experts"))
    )
    per_token = _safe_int(text_cfg.get("num_experts_per_tok"))
    if experts and per_token:
        return per_token / experts
    return 1.0


def build_record(
    repo_id: str,
    cfg: Dict[str, Any],
    weight_bytes: int,
    param_count: Optional[int] = None,
) -> Optional[Dict[str, Any]]:
    """
    Convert a downloaded config plus weight inventory to a models.json record.

    Returns None when the model's KV layout can't be described by
    layers x kv_heads x head_dim.
    """
    text_cfg = _pick_subcfg(cfg, ("text_config", "language_config", "llm_config"))
    if _looks_nonstandard_kv(text_cfg):
        return None

    layers = _layers(text_cfg)
    kv_heads = _kv_heads(text_cfg)
    head_dim = _head_dim(text_cfg)
    if not (layers and kv_heads and head_dim and weight_bytes):
        return None

    quant = native_quant(cfg)
    if param_count:
        total_params_b = param_count / 1e9
    else:
        total_params_b = weight_bytes / BYTES_PER_VALUE[quant] / 1e9

    parts = repo_id.split("/")
    return {
        "name": parts[-1],
        "provider": PROVIDER_MAP.get(parts[0], parts[0]) if len(parts) > 1 else "Unknown",
        "total_params_b": round(total_params_b, 2),
        "active_params_b": round(total_params_b * active_fraction(text_cfg), 2),
        "model_size_gb": round(weight_bytes / GIB, 2),
        "native_quant": quant.value,
        "per_token_kv_bytes_fp8": kv_bytes_per_token_from_shape(layers, kv_heads, head_dim),
        "layers": layers,
        "num_kv_heads": kv_heads,
        "head_dim": head_dim,
    }


def weight_inventory(api: HfApi, repo_id: str) -> Tuple[int, Optional[int]]:
    """Total weight-file bytes and (if published) the safetensors parameter count."""
    info = api.model_info(repo_id, files_metadata=True)
    total = 0
    for s in info.siblings or []:
        if s.rfilename.endswith((".safetensors", ".bin")) and isinstance(s.size, int):
            total += s.size
    params = info.safetensors.total if info.safetensors else None
    return total, params


def extract_one(api: HfApi, repo_id: str) -> Optional[Dict[str, Any]]:
    cfg = _load_json(repo_id, "config.json")
    weight_bytes, params = weight_inventory(api, repo_id)
    return build_record(repo_id, cfg, weight_bytes, params)


def main() -> None:
    parser = argparse.ArgumentParser(description="Build models.json records from Hugging Face repos")
    parser.add_argument("repo_ids", nargs="*", default=DEFAULT_REPO_IDS)
    parser.add_argument("-o", "--output", default="scripts/models_hf.json")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    api = HfApi(token=HF_TOKEN)

    models: List[Dict[str, Any]] = []
    errors = 0
    for repo_id in args.repo_ids:
        logger.info("Processing: %s", repo_id)
        try:
            record = extract_one(api, repo_id)
        except Exception as e:  # gated repos, network errors
            logger.error("%s: %s", repo_id, e)
            errors += 1
            continue
        if record is None:
            logger.warning("%s: non-standard or incomplete config, skipped", repo_id)
            continue
        models.append(record)

    with open(args.output, "w", encoding="utf-8") as f:
        json.dump({"models": models}, f, indent=2, ensure_ascii=False)

    logger.info("Done. %d records written to %s, %d errors.", len(models), args.output, errors)
    if errors:
        logger.info("Tip: most errors are usually gated repos; set HF_TOKEN after accepting terms.")


if __name__ == "__main__":
    main()
