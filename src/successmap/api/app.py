from __future__ import annotations

import os
from importlib import metadata

from fastapi import FastAPI

from successmap.api.goal_maps_api import router as goal_maps_router
from successmap.api.progress_api import router as progress_router

API_PREFIX = "/api"

app = FastAPI(title="successmap")


def _package_version() -> str:
    try:
        return metadata.version("successmap")
    except metadata.PackageNotFoundError:
        return "0.0.0"


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict:
    payload: dict = {"version": _package_version(), "api_prefix": API_PREFIX}
    sha = (os.getenv("SMAP_GIT_SHA") or "").strip()
    if sha:
        payload["git_sha"] = sha
    return payload


# Remote goal-map contract + sibling tool progress.
app.include_router(goal_maps_router, prefix=API_PREFIX)
app.include_router(progress_router, prefix=API_PREFIX)
