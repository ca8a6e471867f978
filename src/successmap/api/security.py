from __future__ import annotations

import re

from fastapi import HTTPException


_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")
_TOOLS = ("cynefin", "tcof-journey")


def require_safe_id(value: str | None, *, kind: str) -> str:
    v = str(value if value is not None else "").strip()
    if not _ID_RE.match(v):
        raise HTTPException(status_code=400, detail=f"invalid {kind}")
    return v


def require_tool(value: str) -> str:
    if value not in _TOOLS:
        raise HTTPException(status_code=400, detail="invalid tool")
    return value
