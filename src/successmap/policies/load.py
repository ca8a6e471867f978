from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

STALE_MODES = ("strict", "lenient")

DEFAULT_TOOL_WEIGHTS: dict[str, int] = {
    "goal-mapping": 15,
    "cynefin": 10,
    "tcof-journey": 10,
    "plan-block1": 20,
    "plan-block2": 20,
    "plan-block3": 20,
    "checklist": 5,
}


class PolicyInvalid(ValueError):
    """Policy asset is present but malformed."""


@dataclass(frozen=True)
class GraphLimits:
    max_nodes: int = 10
    max_per_level: int = 3
    min_level: int = 1
    max_level: int = 5


@dataclass(frozen=True)
class SyncPolicy:
    policy_id: str = "sync_policy_v1"
    graph_limits: GraphLimits = field(default_factory=GraphLimits)
    stale_response_mode: str = "strict"
    tool_weights: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TOOL_WEIGHTS))
    started_credit: float = 0.5


def load_yaml(path: Path) -> Any:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def find_repo_root() -> Path:
    candidates: list[Path] = []
    env_root = os.getenv("SMAP_REPO")
    if env_root:
        candidates.append(Path(env_root))
    cwd = Path.cwd()
    candidates.append(cwd)
    candidates.extend(cwd.parents)

    here = Path(__file__).resolve()
    candidates.append(here)
    candidates.extend(here.parents)

    for c in candidates:
        if c.is_dir() and (c / "policies").is_dir() and (c / "policies" / "sync_policy_v1.yaml").is_file():
            return c
    return cwd


def default_policy_path() -> Path:
    p = os.getenv("SMAP_POLICY_PATH")
    if p and p.strip():
        return Path(p)
    return find_repo_root() / "policies" / "sync_policy_v1.yaml"


def _int_field(doc: dict[str, Any], key: str, default: int) -> int:
    v = doc.get(key, default)
    if isinstance(v, bool) or not isinstance(v, int):
        raise PolicyInvalid(f"graph_limits.{key} must be an integer (got={v!r})")
    if v < 0:
        raise PolicyInvalid(f"graph_limits.{key} must be >= 0 (got={v!r})")
    return v


def parse_sync_policy(doc: Any) -> SyncPolicy:
    if doc is None:
        return SyncPolicy()
    if not isinstance(doc, dict):
        raise PolicyInvalid("sync policy must be a YAML mapping")

    gl_doc = doc.get("graph_limits") or {}
    if not isinstance(gl_doc, dict):
        raise PolicyInvalid("graph_limits must be a mapping")
    base = GraphLimits()
    limits = GraphLimits(
        max_nodes=_int_field(gl_doc, "max_nodes", base.max_nodes),
        max_per_level=_int_field(gl_doc, "max_per_level", base.max_per_level),
        min_level=_int_field(gl_doc, "min_level", base.min_level),
        max_level=_int_field(gl_doc, "max_level", base.max_level),
    )
    if limits.min_level > limits.max_level:
        raise PolicyInvalid("graph_limits.min_level must be <= max_level")

    mode = str(doc.get("stale_response_mode", "strict")).strip().lower()
    if mode not in STALE_MODES:
        raise PolicyInvalid(f"stale_response_mode must be one of {list(STALE_MODES)} (got={mode!r})")

    prog = doc.get("progress") or {}
    if not isinstance(prog, dict):
        raise PolicyInvalid("progress must be a mapping")
    weights_doc = prog.get("tool_weights") or DEFAULT_TOOL_WEIGHTS
    if not isinstance(weights_doc, dict):
        raise PolicyInvalid("progress.tool_weights must be a mapping")
    weights: dict[str, int] = {}
    for tool, w in weights_doc.items():
        if isinstance(w, bool) or not isinstance(w, (int, float)) or w < 0:
            raise PolicyInvalid(f"progress.tool_weights.{tool} must be a non-negative number")
        weights[str(tool)] = int(w)
    try:
        started_credit = float(prog.get("started_credit", 0.5))
    except (TypeError, ValueError) as e:
        raise PolicyInvalid("progress.started_credit must be a number") from e
    if not 0.0 <= started_credit <= 1.0:
        raise PolicyInvalid("progress.started_credit must be within [0, 1]")

    return SyncPolicy(
        policy_id=str(doc.get("policy_id", "sync_policy_v1")),
        graph_limits=limits,
        stale_response_mode=mode,
        tool_weights=weights,
        started_credit=started_credit,
    )


def load_sync_policy(path: Path | None = None) -> SyncPolicy:
    """Load the sync policy asset; a missing file yields built-in defaults."""
    p = Path(path) if path is not None else default_policy_path()
    if not p.is_file():
        return SyncPolicy()
    return parse_sync_policy(load_yaml(p))
