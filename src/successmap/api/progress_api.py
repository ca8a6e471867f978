from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from successmap.api.goal_maps_api import _json_body
from successmap.api.security import require_safe_id, require_tool
from successmap.api.store import GoalMapStore
from successmap.policies.load import load_sync_policy
from successmap.progress.aggregator import (
    CYNEFIN,
    TCOF_JOURNEY,
    BearingsSignals,
    build_report,
    cynefin_signal,
    journey_signal,
)

router = APIRouter()


def _get_tool(tool: str, projectId: str) -> dict[str, Any]:
    pid = require_safe_id(projectId, kind="projectId")
    doc = GoalMapStore().get_tool_payload(require_tool(tool), pid)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"{tool} data not found")
    return doc


async def _put_tool(tool: str, request: Request, projectId: str | None) -> dict[str, Any]:
    payload = await _json_body(request)
    raw_pid = projectId or payload.get("projectId")
    if not raw_pid:
        raise HTTPException(status_code=422, detail="missing projectId")
    pid = require_safe_id(raw_pid, kind="projectId")
    if not isinstance(payload.get("data", {}), dict):
        raise HTTPException(status_code=422, detail="data must be a json object")
    return GoalMapStore().put_tool_payload(require_tool(tool), pid, payload)


@router.get("/cynefin-selections")
def get_cynefin(projectId: str) -> dict[str, Any]:
    return _get_tool(CYNEFIN, projectId)


@router.post("/cynefin-selections")
async def post_cynefin(request: Request, projectId: str | None = None) -> dict[str, Any]:
    return await _put_tool(CYNEFIN, request, projectId)


@router.get("/tcof-journeys")
def get_tcof_journey(projectId: str) -> dict[str, Any]:
    return _get_tool(TCOF_JOURNEY, projectId)


@router.post("/tcof-journeys")
async def post_tcof_journey(request: Request, projectId: str | None = None) -> dict[str, Any]:
    return await _put_tool(TCOF_JOURNEY, request, projectId)


@router.get("/project-progress/{project_id}")
def get_project_progress(project_id: str) -> dict[str, Any]:
    pid = require_safe_id(project_id, kind="projectId")
    store = GoalMapStore()
    flags = store.get_progress(pid).get("tools") or {}
    completed = sorted(t for t, st in flags.items() if isinstance(st, dict) and st.get("completed"))

    rec = store.get_by_project(pid)
    goals = ((rec or {}).get("data") or {}).get("goals") or []
    signals = BearingsSignals(
        goal_mapping=bool(goals),
        cynefin=cynefin_signal(store.get_tool_payload(CYNEFIN, pid)),
        tcof_journey=journey_signal(store.get_tool_payload(TCOF_JOURNEY, pid)),
    )
    policy = load_sync_policy()
    report = build_report(
        pid,
        signals,
        completed_tools=completed,
        weights=policy.tool_weights,
        started_credit=policy.started_credit,
    )
    out = report.to_json_obj()
    out["completedTools"] = completed
    out["completionEvents"] = len(store.completion_events(pid))
    return out
