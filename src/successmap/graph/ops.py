"""Pure goal-graph operations.

Every function takes a GoalMap and returns a new one (or raises, leaving the input
untouched). Mutations bump ``revision`` and stamp ``last_updated``; the touched node
records the revision in ``last_modified_at``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from successmap.core.ids import new_node_id, now_ms
from successmap.graph.errors import LEVEL_LIMIT, TOTAL_LIMIT, CapacityError, GraphValidationError
from successmap.graph.model import Connection, GoalMap, GoalNode
from successmap.policies.load import GraphLimits

DEFAULT_LIMITS = GraphLimits()
PATCH_FIELDS = ("text", "timeframe", "level")


@dataclass(frozen=True)
class Violation:
    code: str
    detail: str

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


def _bumped(goal_map: GoalMap, **changes: Any) -> GoalMap:
    return replace(goal_map, revision=goal_map.revision + 1, last_updated=now_ms(), **changes)


def _check_text(text: Any) -> str:
    s = "" if text is None else str(text).strip()
    if not s:
        raise GraphValidationError("goal text must be non-empty")
    return s


def _check_level(level: Any, limits: GraphLimits) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise GraphValidationError(f"level must be an integer (got={level!r})")
    if not limits.min_level <= level <= limits.max_level:
        raise GraphValidationError(f"level must be within {limits.min_level}..{limits.max_level} (got={level})")
    return level


def add_node(
    goal_map: GoalMap,
    text: str,
    timeframe: str | None = "",
    level: int = 1,
    *,
    limits: GraphLimits = DEFAULT_LIMITS,
    node_id: str | None = None,
) -> tuple[GoalMap, str]:
    if len(goal_map.nodes) >= limits.max_nodes:
        raise CapacityError(TOTAL_LIMIT, f"maximum of {limits.max_nodes} goals reached")
    lvl = _check_level(level, limits)
    if goal_map.count_at_level(lvl) >= limits.max_per_level:
        raise CapacityError(LEVEL_LIMIT, f"level {lvl} already holds {limits.max_per_level} goals")
    txt = _check_text(text)
    nid = node_id or new_node_id()
    if goal_map.get_node(nid) is not None:
        raise GraphValidationError(f"duplicate node id: {nid}")

    rev = goal_map.revision + 1
    node = GoalNode(id=nid, text=txt, timeframe="" if timeframe is None else str(timeframe), level=lvl, last_modified_at=rev)
    return _bumped(goal_map, nodes=goal_map.nodes + (node,)), nid


def update_node(
    goal_map: GoalMap,
    node_id: str,
    patch: dict[str, Any],
    *,
    limits: GraphLimits = DEFAULT_LIMITS,
) -> GoalMap:
    unknown = sorted(set(patch) - set(PATCH_FIELDS))
    if unknown:
        raise GraphValidationError(f"unsupported node fields: {unknown}")
    current = goal_map.get_node(node_id)
    if current is None:
        # Stale UI reference; nothing to update.
        return goal_map

    changes: dict[str, Any] = {}
    if "text" in patch:
        changes["text"] = _check_text(patch["text"])
    if "timeframe" in patch:
        changes["timeframe"] = "" if patch["timeframe"] is None else str(patch["timeframe"])
    if "level" in patch:
        lvl = _check_level(patch["level"], limits)
        if lvl != current.level and goal_map.count_at_level(lvl, exclude_id=node_id) >= limits.max_per_level:
            raise CapacityError(LEVEL_LIMIT, f"level {lvl} already holds {limits.max_per_level} goals")
        changes["level"] = lvl

    if all(getattr(current, k) == v for k, v in changes.items()):
        return goal_map

    rev = goal_map.revision + 1
    updated = replace(current, last_modified_at=rev, **changes)
    nodes = tuple(updated if n.id == node_id else n for n in goal_map.nodes)
    return _bumped(goal_map, nodes=nodes)


def remove_node(goal_map: GoalMap, node_id: str) -> GoalMap:
    if goal_map.get_node(node_id) is None:
        return goal_map
    nodes = tuple(n for n in goal_map.nodes if n.id != node_id)
    connections = tuple(c for c in goal_map.connections if not c.touches(node_id))
    return _bumped(goal_map, nodes=nodes, connections=connections)


def add_connection(goal_map: GoalMap, source_id: str, target_id: str) -> GoalMap:
    if source_id == target_id:
        raise GraphValidationError("a goal cannot be connected to itself")
    missing = [nid for nid in (source_id, target_id) if goal_map.get_node(nid) is None]
    if missing:
        raise GraphValidationError(f"connection endpoint not found: {missing}")
    conn = Connection(source_id=str(source_id), target_id=str(target_id))
    # Unordered-pair set: A->B and B->A are the same relationship.
    if any(c.pair() == conn.pair() for c in goal_map.connections):
        return goal_map
    return _bumped(goal_map, connections=goal_map.connections + (conn,))


def remove_connection(goal_map: GoalMap, source_id: str, target_id: str) -> GoalMap:
    kept = tuple(c for c in goal_map.connections if not (c.source_id == source_id and c.target_id == target_id))
    if len(kept) == len(goal_map.connections):
        return goal_map
    return _bumped(goal_map, connections=kept)


def clear(goal_map: GoalMap) -> GoalMap:
    """Explicit user reset: drop every node and connection, keep the map identity."""
    return _bumped(goal_map, nodes=(), connections=())


def validate(goal_map: GoalMap, limits: GraphLimits = DEFAULT_LIMITS) -> list[Violation]:
    out: list[Violation] = []
    if len(goal_map.nodes) > limits.max_nodes:
        out.append(Violation("total_limit", f"{len(goal_map.nodes)} goals > {limits.max_nodes}"))

    seen: set[str] = set()
    per_level: dict[int, int] = {}
    for n in goal_map.nodes:
        if n.id in seen:
            out.append(Violation("duplicate_node_id", n.id))
        seen.add(n.id)
        if not n.text.strip():
            out.append(Violation("empty_text", n.id))
        if not limits.min_level <= n.level <= limits.max_level:
            out.append(Violation("level_range", f"{n.id} level={n.level}"))
        per_level[n.level] = per_level.get(n.level, 0) + 1
    for lvl in sorted(per_level):
        if per_level[lvl] > limits.max_per_level:
            out.append(Violation("level_limit", f"level {lvl} holds {per_level[lvl]} goals > {limits.max_per_level}"))

    for c in goal_map.connections:
        if c.source_id == c.target_id:
            out.append(Violation("self_loop", c.source_id))
            continue
        for end in (c.source_id, c.target_id):
            if end not in seen:
                out.append(Violation("dangling_connection", f"{c.source_id}->{c.target_id} missing {end}"))
    return out
