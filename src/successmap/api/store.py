"""JSON-file persistence for the reference goal-map backend.

Layout under ``root``:
  goal_maps/<projectId>.json        one persisted map per project
  tools/<tool>/<projectId>.json     sibling tool payloads
  progress/<projectId>.json         completion flags
  progress/events.jsonl             append-only completion log
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from successmap.core.config import store_root
from successmap.core.ids import canonical_bytes, new_map_id, now_iso, now_ms
from successmap.graph.model import DEFAULT_MAP_NAME

_FILE_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _write_json_atomic(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.parent / (path.name + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def _jsonl_append(path: Path, obj: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("ab") as f:
        f.write(canonical_bytes(obj) + b"\n")


def iter_jsonl(path: Path) -> Iterable[dict[str, Any]]:
    if not path.is_file():
        return []
    out: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for ln in f:
            ln = ln.strip()
            if not ln:
                continue
            doc = json.loads(ln)
            if isinstance(doc, dict):
                out.append(doc)
    return out


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _file_name(project_id: str) -> str:
    return _FILE_RE.sub("_", project_id) + ".json"


@dataclass(frozen=True)
class StorePaths:
    root: Path
    goal_maps_dir: Path
    tools_dir: Path
    progress_dir: Path
    progress_events: Path


def store_paths(root: Path | None = None) -> StorePaths:
    r = Path(root) if root is not None else store_root()
    return StorePaths(
        root=r,
        goal_maps_dir=r / "goal_maps",
        tools_dir=r / "tools",
        progress_dir=r / "progress",
        progress_events=r / "progress" / "events.jsonl",
    )


def response_shape(record: dict[str, Any]) -> dict[str, Any]:
    """Persisted record -> GET/POST/PUT response (nodes lifted out of ``data``)."""
    data = record.get("data") if isinstance(record.get("data"), dict) else {}
    return {
        "id": record.get("id"),
        "name": record.get("name"),
        "projectId": record.get("projectId"),
        "nodes": list(data.get("goals") or []),
        "connections": list(data.get("connections") or []),
        "lastUpdated": record.get("lastUpdated"),
    }


class GoalMapStore:
    def __init__(self, *, root: Path | None = None) -> None:
        self.paths = store_paths(root)

    def _map_path(self, project_id: str) -> Path:
        return self.paths.goal_maps_dir / _file_name(project_id)

    def get_by_project(self, project_id: str) -> dict[str, Any] | None:
        p = self._map_path(project_id)
        if not p.is_file():
            return None
        doc = _load_json(p)
        if not isinstance(doc, dict) or doc.get("projectId") != project_id:
            return None
        return doc

    def get_by_id(self, map_id: str) -> dict[str, Any] | None:
        d = self.paths.goal_maps_dir
        if not d.is_dir():
            return None
        for p in sorted(d.glob("*.json")):
            doc = _load_json(p)
            if isinstance(doc, dict) and str(doc.get("id")) == map_id:
                return doc
        return None

    def upsert(self, *, project_id: str, name: str | None, data: dict[str, Any], map_id: str | None = None) -> dict[str, Any]:
        existing = self.get_by_project(project_id)
        record = {
            "id": map_id or (existing or {}).get("id") or new_map_id(),
            "name": name or (existing or {}).get("name") or DEFAULT_MAP_NAME,
            "projectId": project_id,
            "data": {
                "goals": list(data.get("goals") or []),
                "connections": list(data.get("connections") or []),
                "timestamp": data.get("timestamp") or now_iso(),
                "version": data.get("version") or "1.0",
            },
            "lastUpdated": now_ms(),
        }
        _write_json_atomic(self._map_path(project_id), record)
        return record

    def mark_complete(self, project_id: str, tool: str = "goal-mapping") -> dict[str, Any]:
        p = self.paths.progress_dir / _file_name(project_id)
        doc = _load_json(p) if p.is_file() else {"projectId": project_id, "tools": {}}
        tools = doc.setdefault("tools", {})
        tools[tool] = {"completed": True, "lastUpdated": now_iso()}
        _write_json_atomic(p, doc)
        _jsonl_append(
            self.paths.progress_events,
            {"event_type": "TOOL_COMPLETED", "projectId": project_id, "tool": tool, "recorded_at": now_iso()},
        )
        return doc

    def get_progress(self, project_id: str) -> dict[str, Any]:
        p = self.paths.progress_dir / _file_name(project_id)
        if not p.is_file():
            return {"projectId": project_id, "tools": {}}
        return _load_json(p)

    def completion_events(self, project_id: str) -> list[dict[str, Any]]:
        return [ev for ev in iter_jsonl(self.paths.progress_events) if ev.get("projectId") == project_id]

    def get_tool_payload(self, tool: str, project_id: str) -> dict[str, Any] | None:
        p = self.paths.tools_dir / tool / _file_name(project_id)
        return _load_json(p) if p.is_file() else None

    def put_tool_payload(self, tool: str, project_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        record = dict(doc)
        record["projectId"] = project_id
        record["lastUpdated"] = now_ms()
        _write_json_atomic(self.paths.tools_dir / tool / _file_name(project_id), record)
        return record
