"""Identifiers, clocks and canonical encoding shared by every storage tier."""

from __future__ import annotations

import json
import os
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


def new_node_id() -> str:
    return str(uuid.uuid4())


def new_map_id() -> str:
    return uuid.uuid4().hex[:12]


def now_ms() -> int:
    """Wall clock in epoch milliseconds; pinned by SOURCE_DATE_EPOCH when set."""
    sde = os.getenv("SOURCE_DATE_EPOCH")
    if sde and sde.isdigit():
        return int(sde) * 1000
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.fromtimestamp(now_ms() / 1000.0, tz=timezone.utc).isoformat()


def canonical_bytes(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def is_safe_id(value: str) -> bool:
    return bool(_SAFE_ID_RE.match(str(value)))


def require_project_id(value: Any) -> str:
    s = str(value if value is not None else "").strip()
    if not s:
        raise ValueError("project_id must be non-empty")
    if not is_safe_id(s):
        raise ValueError(f"invalid project_id: {s!r}")
    return s
