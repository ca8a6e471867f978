"""Project-scoped durable storage of one serialized GoalMap per key."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from successmap.contracts.validate import GOAL_MAP_V1, ContractInvalid, require_valid
from successmap.core.config import load_cache_config
from successmap.graph.errors import PersistenceError
from successmap.graph.model import GoalMap, goal_map_from_json_obj

logger = logging.getLogger(__name__)

GOAL_MAP_TOOL = "goal-map-data"
_KEY_FILE_RE = re.compile(r"[^A-Za-z0-9_.-]")


def cache_key(project_id: str, tool: str = GOAL_MAP_TOOL) -> str:
    pid = str(project_id).strip()
    if not pid:
        raise ValueError("project_id must be non-empty")
    return f"{tool}:{pid}"


def project_of_key(key: str) -> str:
    return key.split(":", 1)[1] if ":" in key else ""


class LocalCache(Protocol):
    def get(self, key: str) -> GoalMap | None: ...

    def set(self, key: str, goal_map: GoalMap) -> None: ...


def _decode_entry(key: str, doc: Any) -> GoalMap | None:
    if not isinstance(doc, dict) or doc.get("key") != key:
        logger.warning("local cache entry for %s has a mismatched key; ignoring", key)
        return None
    body = doc.get("goal_map")
    try:
        require_valid(body, GOAL_MAP_V1)
        gm = goal_map_from_json_obj(body)
    except (ContractInvalid, ValueError) as e:
        logger.warning("local cache entry for %s is invalid; ignoring: %s", key, e)
        return None
    expected = project_of_key(key)
    if expected and gm.project_id != expected:
        logger.warning("local cache entry for %s belongs to project %s; ignoring", key, gm.project_id)
        return None
    return gm


def _encode_entry(key: str, goal_map: GoalMap) -> dict[str, Any]:
    expected = project_of_key(key)
    if expected and goal_map.project_id != expected:
        raise PersistenceError(f"refusing to cache project {goal_map.project_id} under key {key}")
    return {"key": key, "goal_map": goal_map.to_json_obj()}


class InMemoryLocalCache:
    """Process-local cache; entries are stored as JSON text so callers never share state."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def get(self, key: str) -> GoalMap | None:
        raw = self._entries.get(key)
        if raw is None:
            return None
        return _decode_entry(key, json.loads(raw))

    def set(self, key: str, goal_map: GoalMap) -> None:
        self._entries[key] = json.dumps(_encode_entry(key, goal_map), sort_keys=True)

    def keys(self) -> list[str]:
        return sorted(self._entries)


class FileLocalCache:
    """One JSON file per key under ``root``; writes are atomic (tmp + replace)."""

    def __init__(self, *, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else load_cache_config().root

    def path_for(self, key: str) -> Path:
        return self.root / (_KEY_FILE_RE.sub("_", key) + ".json")

    def get(self, key: str) -> GoalMap | None:
        p = self.path_for(key)
        if not p.is_file():
            return None
        try:
            doc = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("local cache file %s is not valid JSON; ignoring: %s", p, e)
            return None
        except OSError as e:
            raise PersistenceError(f"cannot read {p}: {e}") from e
        return _decode_entry(key, doc)

    def set(self, key: str, goal_map: GoalMap) -> None:
        entry = _encode_entry(key, goal_map)
        p = self.path_for(key)
        tmp = p.parent / (p.name + ".tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(entry, indent=2, sort_keys=True) + "\n", encoding="utf-8")
            tmp.replace(p)
        except OSError as e:
            raise PersistenceError(f"cannot write {p}: {e}") from e
