"""Environment-backed service configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_MODEL = "gemini-2.5-flash-image"
DEFAULT_FALLBACK_MODEL = "gemini-2.5-flash-image"


@dataclass(frozen=True)
class ServiceConfig:
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    temperature: float = 0.1
    fetch_timeout: float = 30.0
    max_workers: int = 4
    estimated_cost: float = 0.002
    base_delay: float = 2.0
    max_jitter: float = 1.0


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ValueError(f"{key} must be >= 1, got {value}")
    return value


def load_config(env: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    env = os.environ if env is None else env
    return ServiceConfig(
        api_key=env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY") or None,
        model=env.get("PRODUCT_IMAGE_MODEL") or DEFAULT_MODEL,
        fallback_model=env.get("PRODUCT_IMAGE_FALLBACK_MODEL") or DEFAULT_FALLBACK_MODEL,
        temperature=_float_env(env, "PRODUCT_IMAGE_TEMPERATURE", 0.1),
        fetch_timeout=_float_env(env, "PRODUCT_IMAGE_FETCH_TIMEOUT", 30.0),
        max_workers=_int_env(env, "PRODUCT_IMAGE_MAX_WORKERS", 4),
        estimated_cost=_float_env(env, "PRODUCT_IMAGE_ESTIMATED_COST", 0.002),
    )
