"""Goal-map data model and its wire encoding.

A GoalMap is immutable; graph operations in ``successmap.graph.ops`` return new
instances. The JSON shape uses the camelCase keys of the remote store and also
reads the legacy ``goals`` key and the persisted ``data`` envelope.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_MAP_NAME = "Project Goals"
LEGACY_LEVEL_BUCKET = 3
LEGACY_MAX_LEVEL = 5


@dataclass(frozen=True)
class GoalNode:
    id: str
    text: str
    timeframe: str = ""
    level: int = 1
    last_modified_at: int = 0

    def to_json_obj(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "timeframe": self.timeframe,
            "level": int(self.level),
            "lastModifiedAt": int(self.last_modified_at),
        }


@dataclass(frozen=True)
class Connection:
    source_id: str
    target_id: str

    def pair(self) -> frozenset[str]:
        return frozenset((self.source_id, self.target_id))

    def touches(self, node_id: str) -> bool:
        return self.source_id == node_id or self.target_id == node_id

    def to_json_obj(self) -> dict[str, Any]:
        return {"sourceId": self.source_id, "targetId": self.target_id}


@dataclass(frozen=True)
class GoalMap:
    project_id: str
    name: str = DEFAULT_MAP_NAME
    id: str | None = None
    nodes: tuple[GoalNode, ...] = field(default_factory=tuple)
    connections: tuple[Connection, ...] = field(default_factory=tuple)
    last_updated: int = 0
    revision: int = 0

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def has_content(self) -> bool:
        return len(self.nodes) > 0

    def get_node(self, node_id: str) -> GoalNode | None:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def count_at_level(self, level: int, *, exclude_id: str | None = None) -> int:
        return sum(1 for n in self.nodes if n.level == level and n.id != exclude_id)

    def to_json_obj(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "projectId": self.project_id,
            "nodes": [n.to_json_obj() for n in self.nodes],
            "connections": [c.to_json_obj() for c in self.connections],
            "lastUpdated": int(self.last_updated),
            "revision": int(self.revision),
        }

    def content_obj(self) -> dict[str, Any]:
        """Nodes and connections only, ignoring session bookkeeping."""
        return {
            "nodes": sorted(
                ({"id": n.id, "text": n.text, "timeframe": n.timeframe, "level": n.level} for n in self.nodes),
                key=lambda d: d["id"],
            ),
            "connections": sorted(
                ({"sourceId": c.source_id, "targetId": c.target_id} for c in self.connections),
                key=lambda d: (d["sourceId"], d["targetId"]),
            ),
        }


def empty_goal_map(project_id: str, *, name: str | None = None, last_updated: int = 0) -> GoalMap:
    return GoalMap(project_id=str(project_id), name=name or DEFAULT_MAP_NAME, last_updated=last_updated)


def _str_or_empty(v: Any) -> str:
    return "" if v is None else str(v)


def _int_or(v: Any, default: int) -> int:
    if isinstance(v, bool):
        return default
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v)
    if isinstance(v, str) and v.strip().lstrip("-").isdigit():
        return int(v.strip())
    return default


def _legacy_level(index: int) -> int:
    return min(index // LEGACY_LEVEL_BUCKET + 1, LEGACY_MAX_LEVEL)


def _node_from_json_obj(doc: dict[str, Any], index: int) -> GoalNode:
    return GoalNode(
        id=str(doc["id"]),
        text=_str_or_empty(doc.get("text")),
        timeframe=_str_or_empty(doc.get("timeframe")),
        level=_int_or(doc.get("level"), _legacy_level(index)),
        last_modified_at=_int_or(doc.get("lastModifiedAt"), 0),
    )


def _node_list(doc: dict[str, Any]) -> list[dict[str, Any]]:
    for key in ("nodes", "goals"):
        v = doc.get(key)
        if isinstance(v, list):
            return [x for x in v if isinstance(x, dict) and x.get("id") is not None]
    data = doc.get("data")
    if isinstance(data, dict):
        return _node_list({k: data.get(k) for k in ("nodes", "goals")})
    return []


def _connection_list(doc: dict[str, Any]) -> list[dict[str, Any]]:
    v = doc.get("connections")
    if not isinstance(v, list):
        data = doc.get("data")
        v = data.get("connections") if isinstance(data, dict) else None
    if not isinstance(v, list):
        return []
    return [x for x in v if isinstance(x, dict) and x.get("sourceId") is not None and x.get("targetId") is not None]


def goal_map_from_json_obj(doc: dict[str, Any], *, project_id: str | None = None) -> GoalMap:
    """Parse a snapshot document from either storage tier."""
    if not isinstance(doc, dict):
        raise ValueError("goal map document must be a JSON object")
    pid = doc.get("projectId")
    if pid is None and isinstance(doc.get("data"), dict):
        pid = doc["data"].get("projectId")
    if pid is None:
        pid = project_id
    if pid is None:
        raise ValueError("goal map document has no projectId")

    raw_id = doc.get("id")
    return GoalMap(
        project_id=str(pid),
        name=_str_or_empty(doc.get("name")) or DEFAULT_MAP_NAME,
        id=None if raw_id is None else str(raw_id),
        nodes=tuple(_node_from_json_obj(n, i) for i, n in enumerate(_node_list(doc))),
        connections=tuple(Connection(str(c["sourceId"]), str(c["targetId"])) for c in _connection_list(doc)),
        last_updated=_int_or(doc.get("lastUpdated"), 0),
        revision=_int_or(doc.get("revision"), 0),
    )
