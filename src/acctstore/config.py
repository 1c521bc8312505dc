# src/acctstore/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

Json = Dict[str, Any]

_ALLOWED_MODES = {"dev", "prod"}
_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


@dataclass(frozen=True)
class StoreConfig:
    # Root directory holding one subdirectory per account, or IN_MEMORY_DIR.
    store_dir: str
    mode: str  # "dev" | "prod"

    api_host: str
    api_port: int

    log_level: str


def validate_store_config(cfg: StoreConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.store_dir, str) or not cfg.store_dir.strip():
        raise ValueError("store_dir must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if str(cfg.log_level or "").strip().upper() not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {sorted(_ALLOWED_LOG_LEVELS)}; got: {cfg.log_level!r}")


def default_store_config() -> StoreConfig:
    return StoreConfig(
        store_dir="./data/accounts",
        mode="prod",
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def _read_raw(path: Path) -> Json:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("store config must be a mapping")
    return raw


def _from_raw(raw: Json, d: StoreConfig) -> StoreConfig:
    return StoreConfig(
        store_dir=_as_str(raw.get("store_dir"), d.store_dir),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )


def read_store_config_file(path: str) -> StoreConfig:
    return _from_raw(_read_raw(Path(path)), default_store_config())


def apply_env_overrides(cfg: StoreConfig) -> StoreConfig:
    env = {
        "store_dir": os.environ.get("ACCTSTORE_STORE_DIR"),
        "mode": os.environ.get("ACCTSTORE_MODE"),
        "api_host": os.environ.get("ACCTSTORE_API_HOST"),
        "api_port": os.environ.get("ACCTSTORE_API_PORT"),
        "log_level": os.environ.get("ACCTSTORE_LOG_LEVEL"),
    }
    set_fields = {k: v for k, v in env.items() if v is not None and str(v).strip()}
    if not set_fields:
        return cfg
    merged = _from_raw(set_fields, cfg)
    return replace(cfg, **{k: getattr(merged, k) for k in set_fields})


def load_store_config(*, config_path: Optional[str] = None) -> StoreConfig:
    p = config_path or os.environ.get("ACCTSTORE_CONFIG_PATH")
    cfg = read_store_config_file(p) if p else default_store_config()
    cfg = apply_env_overrides(cfg)
    validate_store_config(cfg)
    return cfg
