"""Runtime configuration for successmap.

NOTE:
- Do not hardcode secrets.
- Prefer environment variables for runtime configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_REMOTE_BASE_URL = "http://localhost:8000/api"


@dataclass(frozen=True)
class RemoteConfig:
    base_url: str
    timeout_seconds: float
    api_key: str | None = None


@dataclass(frozen=True)
class CacheConfig:
    root: Path


def load_remote_config() -> RemoteConfig:
    base = str(os.getenv("SMAP_REMOTE_BASE_URL", "")).strip() or DEFAULT_REMOTE_BASE_URL
    try:
        timeout = float(os.getenv("SMAP_REMOTE_TIMEOUT_SECONDS", "30"))
    except Exception:  # noqa: BLE001
        timeout = 30.0
    timeout = max(1.0, timeout)
    key = str(os.getenv("SMAP_REMOTE_API_KEY", "")).strip() or None
    return RemoteConfig(base_url=base.rstrip("/"), timeout_seconds=timeout, api_key=key)


def load_cache_config() -> CacheConfig:
    root = str(os.getenv("SMAP_CACHE_ROOT", "")).strip()
    if root:
        return CacheConfig(root=Path(root))
    return CacheConfig(root=Path.home() / ".cache" / "successmap")


def store_root() -> Path:
    return Path(os.getenv("SMAP_STORE_ROOT", "/data/successmap"))
