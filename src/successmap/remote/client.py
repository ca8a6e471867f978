from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from successmap.contracts.validate import GOAL_MAP_V1, ContractInvalid, require_valid
from successmap.core.config import RemoteConfig, load_remote_config
from successmap.core.ids import new_map_id, now_iso, now_ms
from successmap.graph.model import GoalMap, goal_map_from_json_obj

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = "1.0"

# Sibling tools read by the progress aggregator: tool -> collection path.
TOOL_PATHS = {
    "cynefin": "/cynefin-selections",
    "tcof-journey": "/tcof-journeys",
}


class RemoteError(RuntimeError):
    """Network, HTTP or payload failure talking to the remote store."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteNotFound(RemoteError):
    pass


class RemoteStore(Protocol):
    async def fetch_goal_map(self, project_id: str) -> GoalMap | None: ...

    async def create_goal_map(self, goal_map: GoalMap) -> dict[str, Any]: ...

    async def update_goal_map(self, goal_map: GoalMap) -> dict[str, Any]: ...

    async def complete_goal_mapping(self, project_id: str, current_goals: list[dict[str, Any]] | None) -> dict[str, Any]: ...

    async def fetch_tool_payload(self, tool: str, project_id: str) -> dict[str, Any] | None: ...

    async def fetch_completed_tools(self, project_id: str) -> list[str]: ...


def save_request_body(goal_map: GoalMap, *, include_project: bool = True) -> dict[str, Any]:
    """POST/PUT body: nodes travel as ``data.goals`` with a timestamp and payload version."""
    body: dict[str, Any] = {
        "name": goal_map.name,
        "data": {
            "projectId": goal_map.project_id,
            "goals": [n.to_json_obj() for n in goal_map.nodes],
            "connections": [c.to_json_obj() for c in goal_map.connections],
            "timestamp": now_iso(),
            "version": PAYLOAD_VERSION,
        },
    }
    if include_project:
        body["projectId"] = goal_map.project_id
    return body


def _parse_goal_map_doc(doc: Any, project_id: str) -> GoalMap:
    try:
        require_valid(doc, GOAL_MAP_V1)
        return goal_map_from_json_obj(doc, project_id=project_id)
    except (ContractInvalid, ValueError) as e:
        raise RemoteError(f"invalid goal map payload: {e}") from e


class HttpRemoteStore:
    """httpx-backed client for the goal-map resource.

    No retry loop: a failure is surfaced to the caller, and retrying is a
    deliberate repeated save by the user.
    """

    def __init__(self, config: RemoteConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or load_remote_config()
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"content-type": "application/json"}
            if self.config.api_key:
                headers["authorization"] = f"Bearer {self.config.api_key}"
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds, headers=headers)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpRemoteStore":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    async def _request(self, method: str, path: str, *, params: dict[str, str] | None = None, body: Any = None) -> Any:
        try:
            r = await self._http().request(
                method,
                self._url(path),
                params=params,
                content=None if body is None else json.dumps(body),
                headers={"content-type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {path} failed: {type(e).__name__}: {e}") from e
        if r.status_code == 404:
            raise RemoteNotFound(f"{method} {path}: not found", status_code=404)
        if r.status_code >= 400:
            raise RemoteError(f"{method} {path}: HTTP {r.status_code}: {r.text[:500]}", status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise RemoteError(f"{method} {path}: response is not JSON") from e

    async def fetch_goal_map(self, project_id: str) -> GoalMap | None:
        try:
            doc = await self._request("GET", "/goal-maps", params={"projectId": project_id})
        except RemoteNotFound:
            return None
        return _parse_goal_map_doc(doc, project_id)

    async def create_goal_map(self, goal_map: GoalMap) -> dict[str, Any]:
        doc = await self._request("POST", "/goal-maps", body=save_request_body(goal_map))
        if not isinstance(doc, dict) or doc.get("id") is None:
            raise RemoteError("create response carries no id")
        return doc

    async def update_goal_map(self, goal_map: GoalMap) -> dict[str, Any]:
        if goal_map.id is None:
            raise ValueError("update requires a persisted goal map id")
        doc = await self._request("PUT", f"/goal-maps/{goal_map.id}", body=save_request_body(goal_map, include_project=False))
        if not isinstance(doc, dict):
            raise RemoteError("update response must be a JSON object")
        return doc

    async def complete_goal_mapping(self, project_id: str, current_goals: list[dict[str, Any]] | None) -> dict[str, Any]:
        body: dict[str, Any] = {"projectId": project_id}
        if current_goals is not None:
            body["currentGoals"] = current_goals
        doc = await self._request("POST", "/project-progress/goal-mapping/complete", body=body)
        return doc if isinstance(doc, dict) else {}

    async def fetch_tool_payload(self, tool: str, project_id: str) -> dict[str, Any] | None:
        path = TOOL_PATHS.get(tool)
        if path is None:
            raise ValueError(f"unsupported tool={tool!r}")
        try:
            doc = await self._request("GET", path, params={"projectId": project_id})
        except RemoteNotFound:
            return None
        return doc if isinstance(doc, dict) else None

    async def fetch_completed_tools(self, project_id: str) -> list[str]:
        doc = await self._request("GET", f"/project-progress/{project_id}")
        tools = doc.get("completedTools") if isinstance(doc, dict) else None
        return [str(t) for t in tools] if isinstance(tools, list) else []


@dataclass(frozen=True)
class FakeScenario:
    fail_fetch: bool = False
    fail_save: bool = False
    fail_complete: bool = False
    # Answer every fetch with the stored metadata but zero nodes (a stale replica).
    empty_fetch: bool = False
    # "goals" echoes currentGoals, "empty" returns goals=[], "none" omits the key.
    complete_echo: str = "goals"


class FakeRemoteStore:
    """Deterministic in-memory remote for tests and offline demos.

    ``hold(op)`` parks the next calls of ``op`` (optionally for one project,
    ``hold("fetch", "P")``) until ``release`` so tests can resolve requests out of
    issue order.
    """

    def __init__(self, scenario: FakeScenario | None = None) -> None:
        self.scenario = scenario or FakeScenario()
        self.maps: dict[str, dict[str, Any]] = {}
        self.tool_payloads: dict[tuple[str, str], dict[str, Any]] = {}
        self.completed: dict[str, bool] = {}
        self.calls: list[tuple[str, str]] = []
        self._gates: dict[str, asyncio.Event] = {}

    def hold(self, op: str, project_id: str | None = None) -> None:
        self._gates[op if project_id is None else f"{op}:{project_id}"] = asyncio.Event()

    def release(self, op: str, project_id: str | None = None) -> None:
        gate = self._gates.pop(op if project_id is None else f"{op}:{project_id}", None)
        if gate is not None:
            gate.set()

    async def _enter(self, op: str, project_id: str) -> None:
        self.calls.append((op, project_id))
        for key in (f"{op}:{project_id}", op):
            gate = self._gates.get(key)
            if gate is not None:
                await gate.wait()
                return
        await asyncio.sleep(0)

    def seed(self, goal_map: GoalMap) -> GoalMap:
        doc = goal_map.to_json_obj()
        doc["id"] = doc.get("id") or new_map_id()
        doc.pop("revision", None)
        self.maps[goal_map.project_id] = doc
        return goal_map_from_json_obj(doc)

    async def fetch_goal_map(self, project_id: str) -> GoalMap | None:
        await self._enter("fetch", project_id)
        if self.scenario.fail_fetch:
            raise RemoteError("GET /goal-maps: simulated network failure")
        doc = self.maps.get(project_id)
        if doc is None:
            return None
        doc = copy.deepcopy(doc)
        if self.scenario.empty_fetch:
            doc["nodes"] = []
            doc["connections"] = []
        return goal_map_from_json_obj(doc)

    def _store(self, goal_map: GoalMap, map_id: str) -> dict[str, Any]:
        doc = goal_map.to_json_obj()
        doc.pop("revision", None)
        doc["id"] = map_id
        doc["lastUpdated"] = now_ms()
        self.maps[goal_map.project_id] = doc
        return copy.deepcopy(doc)

    async def create_goal_map(self, goal_map: GoalMap) -> dict[str, Any]:
        await self._enter("save", goal_map.project_id)
        if self.scenario.fail_save:
            raise RemoteError("POST /goal-maps: simulated failure", status_code=500)
        return self._store(goal_map, new_map_id())

    async def update_goal_map(self, goal_map: GoalMap) -> dict[str, Any]:
        await self._enter("save", goal_map.project_id)
        if self.scenario.fail_save:
            raise RemoteError(f"PUT /goal-maps/{goal_map.id}: simulated failure", status_code=500)
        existing = self.maps.get(goal_map.project_id)
        if existing is None or existing.get("id") != goal_map.id:
            raise RemoteNotFound(f"PUT /goal-maps/{goal_map.id}: not found", status_code=404)
        return self._store(goal_map, str(goal_map.id))

    async def complete_goal_mapping(self, project_id: str, current_goals: list[dict[str, Any]] | None) -> dict[str, Any]:
        await self._enter("complete", project_id)
        if self.scenario.fail_complete:
            raise RemoteError("POST /project-progress/goal-mapping/complete: simulated failure", status_code=500)
        self.completed[project_id] = True
        out: dict[str, Any] = {"projectId": project_id, "completed": True}
        if self.scenario.complete_echo == "goals":
            out["goals"] = copy.deepcopy(current_goals or [])
        elif self.scenario.complete_echo == "empty":
            out["goals"] = []
        return out

    async def fetch_tool_payload(self, tool: str, project_id: str) -> dict[str, Any] | None:
        await self._enter(f"tool:{tool}", project_id)
        doc = self.tool_payloads.get((tool, project_id))
        return copy.deepcopy(doc) if doc is not None else None

    async def fetch_completed_tools(self, project_id: str) -> list[str]:
        await self._enter("progress", project_id)
        return ["goal-mapping"] if self.completed.get(project_id) else []
