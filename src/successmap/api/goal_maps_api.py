from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from successmap.api.security import require_safe_id
from successmap.api.store import GoalMapStore, response_shape
from successmap.contracts import validate as contracts_validate

router = APIRouter()


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except Exception:  # noqa: BLE001
        raise HTTPException(status_code=400, detail="invalid json")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="body must be a json object")
    return payload


def _require_contract(payload: dict[str, Any], schema: str) -> None:
    code, msg = contracts_validate.validate_payload(payload, schema)
    if code != contracts_validate.EXIT_OK:
        raise HTTPException(status_code=422, detail=msg)


@router.get("/goal-maps")
def get_goal_map(projectId: str) -> dict[str, Any]:
    pid = require_safe_id(projectId, kind="projectId")
    rec = GoalMapStore().get_by_project(pid)
    if rec is None:
        raise HTTPException(status_code=404, detail="goal map not found")
    return response_shape(rec)


@router.post("/goal-maps")
async def create_goal_map(request: Request) -> dict[str, Any]:
    """Persist a project's map. A second POST for the same project overwrites in place."""
    payload = await _json_body(request)
    _require_contract(payload, contracts_validate.GOAL_MAP_SAVE_REQUEST_V1)
    data = payload["data"]
    raw_pid = payload.get("projectId") or data.get("projectId")
    if not raw_pid:
        raise HTTPException(status_code=422, detail="missing projectId")
    pid = require_safe_id(raw_pid, kind="projectId")
    rec = GoalMapStore().upsert(project_id=pid, name=payload.get("name"), data=data)
    return response_shape(rec)


@router.put("/goal-maps/{map_id}")
async def update_goal_map(request: Request, map_id: str) -> dict[str, Any]:
    mid = require_safe_id(map_id, kind="map_id")
    payload = await _json_body(request)
    _require_contract(payload, contracts_validate.GOAL_MAP_SAVE_REQUEST_V1)
    store = GoalMapStore()
    existing = store.get_by_id(mid)
    if existing is None:
        raise HTTPException(status_code=404, detail="goal map not found")
    body_pid = payload.get("projectId") or payload["data"].get("projectId")
    if body_pid and str(body_pid) != existing.get("projectId"):
        raise HTTPException(status_code=422, detail="projectId does not match the stored goal map")
    rec = store.upsert(
        project_id=str(existing["projectId"]),
        name=payload.get("name"),
        data=payload["data"],
        map_id=mid,
    )
    return response_shape(rec)


@router.post("/project-progress/goal-mapping/complete")
async def complete_goal_mapping(request: Request) -> dict[str, Any]:
    """Mark goal mapping complete; non-empty ``currentGoals`` are written through first."""
    payload = await _json_body(request)
    _require_contract(payload, contracts_validate.GOAL_MAP_COMPLETE_REQUEST_V1)
    pid = require_safe_id(payload["projectId"], kind="projectId")
    store = GoalMapStore()

    current = payload.get("currentGoals")
    rec = store.get_by_project(pid)
    if current and rec is not None:
        keep = {str(g.get("id")) for g in current}
        data = dict(rec.get("data") or {})
        data["goals"] = list(current)
        data["connections"] = [
            c
            for c in (data.get("connections") or [])
            if str(c.get("sourceId")) in keep and str(c.get("targetId")) in keep
        ]
        data["timestamp"] = None
        rec = store.upsert(project_id=pid, name=rec.get("name"), data=data, map_id=str(rec.get("id")))

    store.mark_complete(pid)
    goals = list(current) if current else list(((rec or {}).get("data") or {}).get("goals") or [])
    return {"projectId": pid, "completed": True, "goals": goals}
