from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import os


BACKENDS = ("memory", "redis")


@dataclass(frozen=True)
class Settings:
    env: str
    backend: str
    redis_url: str
    key_prefix: str
    source_service: str = "erc20-ledger"
    log_level: str = "INFO"


def load_settings(path: str | Path = "config/settings.yaml") -> Settings:
    p = Path(path)

    # Keep imports optional at module import time (tests/tools may not need YAML).
    try:
        import yaml  # type: ignore
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "PyYAML is required to load config/settings.yaml. Install with: pip install pyyaml"
        ) from e

    data: Dict[str, Any] = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    ledger_section = data.get("ledger") or {}
    redis_section = data.get("redis") or {}

    # Env overrides (used to point one checkout at different stores).
    backend = os.getenv("LEDGER_BACKEND") or ledger_section.get("backend", "memory")
    if backend not in BACKENDS:
        raise ValueError(f"ledger.backend must be one of {BACKENDS}, got {backend!r}")

    redis_url = os.getenv("LEDGER_REDIS_URL") or redis_section.get("url", "redis://localhost:6379/0")
    return Settings(
        env=data.get("env", "dev"),
        backend=backend,
        redis_url=redis_url,
        key_prefix=os.getenv("LEDGER_KEY_PREFIX") or ledger_section.get("key_prefix", "erc20"),
        source_service=ledger_section.get("source_service", "erc20-ledger"),
        log_level=(os.getenv("LEDGER_LOG_LEVEL") or data.get("log_level", "INFO")).upper(),
    )
