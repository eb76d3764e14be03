from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def get_env(name: str, default: Optional[str] = None) -> str:
    val = os.environ.get(name, default)
    if val is None:
        raise RuntimeError(f"Missing required env var: {name}")
    return val


def _optional_env(name: str) -> Optional[str]:
    val = os.environ.get(name, "").strip()
    return val or None


def _int_env(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = get_env(name, str(default)).strip()
    try:
        val = int(raw)
    except ValueError:
        raise RuntimeError(f"Env var {name} must be an integer, got {raw!r}") from None
    if val < lo or val > hi:
        raise RuntimeError(f"Env var {name} must be between {lo} and {hi}, got {val}")
    return val


def _float_env(name: str, default: float) -> float:
    raw = get_env(name, str(default)).strip()
    try:
        val = float(raw)
    except ValueError:
        raise RuntimeError(f"Env var {name} must be a number, got {raw!r}") from None
    if val <= 0:
        raise RuntimeError(f"Env var {name} must be positive, got {val}")
    return val


@dataclass(frozen=True)
class Settings:
    table_name: str
    secondary_index_name: str = "GSI1"
    page_size: int = 50
    timeout_seconds: float = 5.0
    region: Optional[str] = None
    endpoint_url: Optional[str] = None


def load_settings() -> Settings:
    return Settings(
        table_name=get_env("TABLE_NAME"),
        secondary_index_name=get_env("GSI_NAME", "GSI1").strip() or "GSI1",
        page_size=_int_env("PAGE_SIZE", 50, lo=1, hi=1000),
        timeout_seconds=_float_env("STORAGE_TIMEOUT_SECONDS", 5.0),
        region=_optional_env("AWS_REGION"),
        endpoint_url=_optional_env("DYNAMODB_ENDPOINT_URL"),
    )
